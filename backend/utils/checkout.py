import logging

from config.env import (
    CART_CHECKOUT_TX_MAX_WAIT_SECONDS,
    CART_CHECKOUT_TX_TIMEOUT_SECONDS,
    NEW_ORDER_STATUS,
    PLACE_ORDER_TX_MAX_WAIT_SECONDS,
    PLACE_ORDER_TX_TIMEOUT_SECONDS,
)
from models.order import CartCheckoutRequest, PlaceOrderRequest
from utils.background import spawn_background
from utils.errors import CartNotFound, EmptyCart, ListingNotFound, ValidationError
from utils.identity import Registered, resolve_identity
from utils.notifications import notify_order_placed
from utils.pricing import build_line_item, price_checkout
from utils.seller_metrics import update_seller_metrics
from utils.serializers import serialize_checkout
from utils.settlement import settle_checkout
from utils.validators import require_guest_info, require_positive_quantity, require_shipping_fields

logger = logging.getLogger(__name__)

# ======================================================
# CHECKOUT ORCHESTRATOR
# ======================================================
# One use case for both entry points. The payload type picks the
# item source: an explicit item list (place-order) or a cart
# reference / guest cart payload (cart-checkout).
#
#   validate -> identity -> items -> pricing -> payment
#            -> settlement -> post-commit fan-out -> response
# ======================================================


def validate_checkout_input(payload, *, authenticated: bool) -> None:
    require_shipping_fields(payload.shipping_details)

    if not authenticated:
        require_guest_info(payload.guest_info)

    if isinstance(payload, PlaceOrderRequest):
        if not payload.order_items:
            raise ValidationError("Order items are required and must be a non-empty array")
        for item in payload.order_items:
            if not item.listing_id:
                raise ValidationError("Each order item must have a valid listingId and positive integer quantity")
            require_positive_quantity(item.quantity)
    else:
        if authenticated:
            if not payload.cart_id:
                raise ValidationError("Cart ID is required for authenticated users")
        else:
            if not payload.cart_items:
                raise ValidationError("Cart items are required for guest checkout")
            for item in payload.cart_items:
                if not item.listing_id:
                    raise ValidationError("Each cart item must have a valid listingId and positive integer quantity")
                require_positive_quantity(item.quantity)

        for selected in payload.selected_items:
            if selected.quantity is not None:
                require_positive_quantity(selected.quantity)

    payment = payload.payment_details
    if payment is None or not (payment.gateway_order_id and payment.gateway_payment_id and payment.signature):
        raise ValidationError("Payment details (gatewayOrderId, gatewayPaymentId, signature) are required")


async def _line_items_for(store, requested: list[tuple]) -> list:
    """requested: (listing_id, quantity, cart_item_id) triples."""
    listings = await store.get_listings({listing_id for listing_id, _, _ in requested})

    items = []
    for listing_id, quantity, cart_item_id in requested:
        listing = listings.get(str(listing_id))
        if listing is None:
            raise ListingNotFound(listing_id)
        items.append(build_line_item(listing, quantity, cart_item_id))
    return items


def _apply_selection(requested: list[tuple], selected_items) -> list[tuple]:
    if not selected_items:
        return requested

    overrides = {str(s.cart_item_id): s.quantity for s in selected_items}
    chosen = []
    for listing_id, quantity, cart_item_id in requested:
        if str(cart_item_id) not in overrides:
            continue
        chosen.append((listing_id, overrides[str(cart_item_id)] or quantity, cart_item_id))
    return chosen


async def resolve_items(store, payload, identity) -> tuple[list, dict]:
    """Return line items and the cart cleanup to run at settlement."""
    cleanup = {"cart_id": None, "cart_item_ids": (), "listing_ids": ()}

    if isinstance(payload, PlaceOrderRequest):
        requested = [(i.listing_id, i.quantity, None) for i in payload.order_items]
        items = await _line_items_for(store, requested)

        if isinstance(identity, Registered):
            cart = await store.get_active_cart(identity.user_id)
            if cart:
                cleanup["cart_id"] = cart["id"]
                cleanup["listing_ids"] = tuple(i.listing_id for i in items)
        return items, cleanup

    if isinstance(identity, Registered):
        cart = await store.get_active_cart(identity.user_id, payload.cart_id)
        if not cart or not cart["items"]:
            raise CartNotFound("No active cart found or cart is empty")
        requested = [(i["listing_id"], i["quantity"], i["id"]) for i in cart["items"]]
        cleanup["cart_id"] = cart["id"]
    else:
        requested = [(i.listing_id, i.quantity, i.id) for i in payload.cart_items]

    requested = _apply_selection(requested, payload.selected_items)
    if not requested:
        raise EmptyCart("No items selected for checkout")

    items = await _line_items_for(store, requested)
    if cleanup["cart_id"] is not None:
        cleanup["cart_item_ids"] = tuple(i.cart_item_id for i in items)
    return items, cleanup


async def run_checkout(
    store,
    verifier,
    payload,
    *,
    user_id=None,
    notifier=None,
    spawn=spawn_background,
    order_status: str = NEW_ORDER_STATUS,
) -> dict:
    """
    Turn a checkout request into settled, per-seller orders.

    Any failure before settlement leaves no trace; settlement itself is
    all-or-nothing. Seller metrics and notifications run after commit as
    detached tasks and can never undo the orders.
    """
    validate_checkout_input(payload, authenticated=bool(user_id))

    identity = await resolve_identity(store, user_id=user_id, guest_info=payload.guest_info)

    items, cleanup = await resolve_items(store, payload, identity)

    pricing = price_checkout(
        items,
        shipping_cost=payload.shipping_details.shipping_cost,
        coupon_code=payload.coupon_code,
        requested_points=payload.points_to_use,
        points_balance=identity.points_balance if identity.authenticated else 0,
        authenticated=identity.authenticated,
    )

    paid_amount = await verifier.confirm_payment(payload.payment_details, pricing.final_total)

    if isinstance(payload, CartCheckoutRequest):
        timeout, max_wait = CART_CHECKOUT_TX_TIMEOUT_SECONDS, CART_CHECKOUT_TX_MAX_WAIT_SECONDS
    else:
        timeout, max_wait = PLACE_ORDER_TX_TIMEOUT_SECONDS, PLACE_ORDER_TX_MAX_WAIT_SECONDS

    settlement = await settle_checkout(
        store,
        identity=identity,
        pricing=pricing,
        shipping=payload.shipping_details,
        payment=payload.payment_details,
        paid_amount=paid_amount,
        coupon_code=payload.coupon_code,
        order_notes=payload.order_notes,
        order_status=order_status,
        timeout=timeout,
        max_wait=max_wait,
        **cleanup,
    )

    response = serialize_checkout(identity, pricing, settlement)

    spawn(
        update_seller_metrics(store, user_id=identity.user_id, orders=settlement.orders),
        name=f"seller-metrics:{identity.user_id}",
    )
    if notifier is not None:
        spawn(
            notify_order_placed(store, notifier, customer_email=identity.email, payload=response),
            name=f"order-notifications:{identity.user_id}",
        )

    return response
