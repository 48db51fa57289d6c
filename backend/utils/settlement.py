import asyncio
import logging
from datetime import datetime

from config.constants import DEFAULT_SHIPPING_METHOD, PAYMENT_COMPLETED, PAYMENT_METHOD_RAZORPAY
from config.env import NEW_ORDER_STATUS, SETTLEMENT_MAX_ATTEMPTS
from models.checkout import SettledOrder, SettlementResult
from utils.errors import InsufficientPoints, TransactionConflict, TransactionTimeout
from utils.inventory import reserve_stock

logger = logging.getLogger(__name__)


# ======================================================
# RECORD BUILDERS
# ======================================================

def _shipping_doc(shipping, allocation, now: datetime) -> dict:
    return {
        "carrier": shipping.carrier,
        "shipping_method": shipping.shipping_method or DEFAULT_SHIPPING_METHOD,
        "shipping_cost": allocation.shipping_cost,
        "estimated_delivery": shipping.estimated_delivery,
        "destination": {
            "address": shipping.address,
            "city": shipping.city,
            "state": shipping.state,
            "zip": shipping.zip,
            "country": shipping.country,
        },
        "shipping_notes": {
            **(shipping.shipping_notes or {}),
            "seller_id": allocation.seller_id,
            "original_shipping_cost": shipping.shipping_cost,
        },
        "created_at": now,
    }


def _payment_doc(payment, allocation, *, paid_amount, split: bool, now: datetime) -> dict:
    transaction_id = payment.gateway_payment_id
    if split:
        transaction_id = f"{transaction_id}_{allocation.seller_id}"

    return {
        "payment_method": PAYMENT_METHOD_RAZORPAY,
        "transaction_id": transaction_id,
        "status": PAYMENT_COMPLETED,
        "payment_date": now,
        "metadata": {
            "gateway_order_id": payment.gateway_order_id,
            "gateway_payment_id": payment.gateway_payment_id,
            "signature": payment.signature,
            "seller_id": allocation.seller_id,
            "paid_amount": allocation.final_amount,
            "gateway_paid_amount": paid_amount,
            "original_transaction_id": payment.gateway_payment_id,
        },
        "created_at": now,
    }


def _order_doc(
    identity,
    allocation,
    *,
    shipping_record_id: str,
    payment_record_id: str,
    status: str,
    coupon_code: str | None,
    order_notes: str | None,
    now: datetime,
) -> dict:
    seller_note = f"Seller: {allocation.seller_id}"
    return {
        "user_id": identity.user_id,
        "seller_id": allocation.seller_id,
        "total_amount": allocation.final_amount,
        "status": status,
        "shipping_record_id": shipping_record_id,
        "payment_record_id": payment_record_id,
        "points_earned": allocation.points_earned,
        "points_used": allocation.points_used,
        "discount_amount": allocation.discount,
        "coupon_code": coupon_code or None,
        "notes": f"{order_notes} | {seller_note}" if order_notes else seller_note,
        "is_guest_order": not identity.authenticated,
        "created_at": now,
        "updated_at": now,
    }


# ======================================================
# SETTLEMENT
# ======================================================

async def _all_or_cancel(coros) -> list:
    """
    gather() that leaves nothing running behind it: if one awaitable
    fails, every sibling is cancelled and awaited before the error
    propagates, so no write lands after the transaction aborts.
    """
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _settle(
    store,
    *,
    identity,
    pricing,
    shipping,
    payment,
    paid_amount,
    coupon_code,
    order_notes,
    order_status,
    cart_id,
    cart_item_ids,
    listing_ids,
    max_wait,
) -> SettlementResult:
    now = datetime.utcnow()
    allocations = pricing.allocations
    split = len(allocations) > 1

    async with store.transaction(max_wait=max_wait) as tx:
        # Shipping/payment rows are independent of each other
        shipping_ids, payment_ids = await _all_or_cancel([
            _all_or_cancel(
                tx.create_shipping_record(_shipping_doc(shipping, a, now))
                for a in allocations
            ),
            _all_or_cancel(
                tx.create_payment_record(
                    _payment_doc(payment, a, paid_amount=paid_amount, split=split, now=now)
                )
                for a in allocations
            ),
        ])

        orders = []
        reservations = []

        for allocation, shipping_id, payment_id in zip(allocations, shipping_ids, payment_ids):
            order_id = await tx.create_order(
                _order_doc(
                    identity,
                    allocation,
                    shipping_record_id=shipping_id,
                    payment_record_id=payment_id,
                    status=order_status,
                    coupon_code=coupon_code,
                    order_notes=order_notes,
                    now=now,
                )
            )

            await tx.create_order_items([
                {
                    "order_id": order_id,
                    "listing_id": item.listing_id,
                    "seller_id": allocation.seller_id,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "total_price": item.line_total,
                }
                for item in allocation.items
            ])

            reservations.extend((item.listing_id, item.quantity) for item in allocation.items)

            orders.append(
                SettledOrder(
                    order_id=order_id,
                    seller_id=allocation.seller_id,
                    status=order_status,
                    total_amount=allocation.final_amount,
                    points_earned=allocation.points_earned,
                    item_count=len(allocation.items),
                    shipping_record_id=shipping_id,
                    payment_record_id=payment_id,
                    estimated_delivery=shipping.estimated_delivery,
                )
            )

        # Listings are disjoint rows; decrement them concurrently
        await _all_or_cancel(
            reserve_stock(tx, listing_id, quantity)
            for listing_id, quantity in reservations
        )

        points_delta = 0
        if identity.authenticated:
            points_delta = pricing.points_earned - pricing.points_used
            if pricing.points_used or pricing.points_earned:
                applied = await tx.apply_points_delta(
                    identity.user_id,
                    points_delta,
                    points_used=pricing.points_used,
                )
                if not applied:
                    raise InsufficientPoints("Points balance changed during checkout")

        if cart_id is not None:
            if cart_item_ids:
                await tx.delete_cart_items(cart_id, list(cart_item_ids))
            elif listing_ids:
                await tx.delete_cart_items_for_listings(cart_id, list(listing_ids))

            if await tx.count_cart_items(cart_id) == 0:
                await tx.deactivate_cart(cart_id)

    return SettlementResult(orders=orders, points_delta=points_delta)


async def settle_checkout(
    store,
    *,
    identity,
    pricing,
    shipping,
    payment,
    paid_amount,
    coupon_code: str | None = None,
    order_notes: str | None = None,
    order_status: str = NEW_ORDER_STATUS,
    cart_id=None,
    cart_item_ids=(),
    listing_ids=(),
    timeout: float,
    max_wait: float,
) -> SettlementResult:
    """
    Persist a priced checkout atomically: one order per seller bucket,
    its shipping/payment records and items, every stock decrement, the
    net points delta and the cart cleanup. Either all of it commits or
    none of it does.

    A transaction that loses a write conflict is retried from scratch,
    up to SETTLEMENT_MAX_ATTEMPTS, inside the same wall-clock timeout.
    A retry re-runs the conditional decrements, so a buyer who lost the
    race for the last units gets InsufficientStock.
    """

    async def attempts() -> SettlementResult:
        for attempt in range(1, SETTLEMENT_MAX_ATTEMPTS + 1):
            try:
                return await _settle(
                    store,
                    identity=identity,
                    pricing=pricing,
                    shipping=shipping,
                    payment=payment,
                    paid_amount=paid_amount,
                    coupon_code=coupon_code,
                    order_notes=order_notes,
                    order_status=order_status,
                    cart_id=cart_id,
                    cart_item_ids=cart_item_ids,
                    listing_ids=listing_ids,
                    max_wait=max_wait,
                )
            except TransactionConflict:
                if attempt >= SETTLEMENT_MAX_ATTEMPTS:
                    raise
                logger.warning(
                    "SETTLEMENT_CONFLICT_RETRY user=%s attempt=%s",
                    identity.user_id,
                    attempt,
                )
                await asyncio.sleep(0.05 * attempt)

    try:
        result = await asyncio.wait_for(attempts(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("SETTLEMENT_TIMEOUT user=%s timeout=%ss", identity.user_id, timeout)
        raise TransactionTimeout("Checkout could not be completed in time. Please retry.")
    except TransactionConflict:
        logger.warning("SETTLEMENT_CONFLICT user=%s attempts=%s", identity.user_id, SETTLEMENT_MAX_ATTEMPTS)
        raise

    logger.info(
        "CHECKOUT_SETTLED user=%s orders=%s total=%s",
        identity.user_id,
        ",".join(o.order_id for o in result.orders),
        pricing.final_total,
    )
    return result
