def serialize_settled_order(order) -> dict:
    return {
        "orderId": order.order_id,
        "orderStatus": order.status,
        "totalAmount": order.total_amount,
        "estimatedDelivery": order.estimated_delivery,
        "pointsEarned": order.points_earned,
        "seller": {"id": order.seller_id},
        "itemCount": order.item_count,
    }


def serialize_checkout(identity, pricing, settlement) -> dict:
    return {
        "orderIds": [o.order_id for o in settlement.orders],
        "orders": [serialize_settled_order(o) for o in settlement.orders],
        "summary": {
            "totalAmount": pricing.final_total,
            "subtotal": pricing.subtotal,
            "shippingCost": pricing.shipping_cost,
            "totalPointsEarned": pricing.points_earned,
            "pointsUsed": pricing.points_used,
            "totalDiscount": pricing.total_discount,
            "itemsCheckedOut": pricing.item_count,
            "sellersCount": len(pricing.allocations),
            "isGuestOrder": not identity.authenticated,
        },
    }


def serialize_place_order(checkout: dict) -> dict:
    """Single-order view of a checkout; orderId is the first seller's order."""
    first = checkout["orders"][0]
    summary = checkout["summary"]
    return {
        "orderId": first["orderId"],
        "orderIds": checkout["orderIds"],
        "orderStatus": first["orderStatus"],
        "totalAmount": summary["totalAmount"],
        "estimatedDelivery": first["estimatedDelivery"],
        "pointsEarned": summary["totalPointsEarned"],
        "pointsUsed": summary["pointsUsed"],
        "isGuestOrder": summary["isGuestOrder"],
    }
