from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

from config.constants import (
    CENT,
    LISTING_ACTIVE,
    PLATFORM_SELLER_ID,
    POINT_VALUE,
    POINTS_EARN_RATE,
)
from models.checkout import CheckoutPricing, LineItem, SellerAllocation, SellerBucket
from utils.errors import InsufficientStock, ItemUnavailable

# ============================================================
# PRICING & ALLOCATION
# ============================================================
# All money is Decimal in currency units. Per-seller shares of
# shipping and discount are rounded to the cent and the last
# seller absorbs the remainder, so seller totals always add up
# to the checkout total. Points are always floored.
# ============================================================


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def build_line_item(listing, quantity: int, cart_item_id=None) -> LineItem:
    return LineItem(
        listing_id=str(listing.id),
        seller_id=str(listing.seller_id) if listing.seller_id else PLATFORM_SELLER_ID,
        name=listing.name,
        quantity=quantity,
        unit_price=Decimal(listing.price),
        listing_status=listing.status,
        quantity_available=listing.quantity_available,
        cart_item_id=str(cart_item_id) if cart_item_id is not None else None,
    )


def validate_line_items(items: list[LineItem]) -> None:
    for item in items:
        if item.listing_status != LISTING_ACTIVE:
            raise ItemUnavailable(item.listing_id, item.name)

        if item.quantity_available < item.quantity:
            raise InsufficientStock(
                item.listing_id,
                available=item.quantity_available,
                requested=item.quantity,
                name=item.name,
            )


def group_by_seller(items: list[LineItem]) -> list[SellerBucket]:
    buckets: dict[str, SellerBucket] = {}
    for item in items:
        bucket = buckets.get(item.seller_id)
        if bucket is None:
            bucket = buckets[item.seller_id] = SellerBucket(seller_id=item.seller_id)
        bucket.items.append(item)
    return list(buckets.values())


def resolve_coupon_discount(coupon_code: str | None) -> Decimal:
    # Coupons are accepted and recorded but carry no discount yet.
    return Decimal("0")


def compute_points_used(requested: int, balance: int, *, authenticated: bool) -> int:
    if not authenticated or requested <= 0:
        return 0
    return max(0, min(requested, balance))


def compute_points_earned(amount: Decimal) -> int:
    if amount <= 0:
        return 0
    return _floor(amount * POINTS_EARN_RATE)


def allocate(
    buckets: list[SellerBucket],
    *,
    shipping_cost: Decimal,
    coupon_discount: Decimal,
    points_used: int,
) -> CheckoutPricing:
    grand_subtotal = sum((b.subtotal for b in buckets), Decimal("0"))
    total_discount = coupon_discount + points_used * POINT_VALUE
    seller_count = len(buckets)
    shipping_share = _cents(shipping_cost / seller_count) if seller_count else Decimal("0")

    allocations = []
    shipping_left = shipping_cost
    discount_left = total_discount

    for index, bucket in enumerate(buckets):
        subtotal = bucket.subtotal
        if grand_subtotal > 0:
            ratio = subtotal / grand_subtotal
        else:
            ratio = Decimal(1) / seller_count

        if index == seller_count - 1:
            seller_shipping = shipping_left
            seller_discount = discount_left
        else:
            seller_shipping = shipping_share
            seller_discount = _cents(total_discount * ratio)
            shipping_left -= seller_shipping
            discount_left -= seller_discount

        final_amount = subtotal + seller_shipping - seller_discount

        allocations.append(
            SellerAllocation(
                seller_id=bucket.seller_id,
                items=bucket.items,
                subtotal=subtotal,
                shipping_cost=seller_shipping,
                discount=seller_discount,
                points_used=_floor(points_used * ratio),
                final_amount=final_amount,
                points_earned=compute_points_earned(final_amount),
            )
        )

    return CheckoutPricing(
        allocations=allocations,
        subtotal=grand_subtotal,
        shipping_cost=shipping_cost,
        coupon_discount=coupon_discount,
        points_used=points_used,
        total_discount=total_discount,
        final_total=grand_subtotal + shipping_cost - total_discount,
    )


def price_checkout(
    items: list[LineItem],
    *,
    shipping_cost: Decimal,
    coupon_code: str | None,
    requested_points: int,
    points_balance: int,
    authenticated: bool,
) -> CheckoutPricing:
    validate_line_items(items)
    buckets = group_by_seller(items)

    shipping_cost = Decimal(shipping_cost or 0)
    coupon_discount = resolve_coupon_discount(coupon_code)
    points_used = compute_points_used(requested_points, points_balance, authenticated=authenticated)

    # Points never push the payable amount below zero.
    payable = sum((b.subtotal for b in buckets), Decimal("0")) + shipping_cost - coupon_discount
    points_used = min(points_used, max(0, _floor(payable / POINT_VALUE)))

    return allocate(
        buckets,
        shipping_cost=shipping_cost,
        coupon_discount=coupon_discount,
        points_used=points_used,
    )
