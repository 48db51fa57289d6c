"""Tests for the atomic order settlement transaction."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from models.order import ShippingDetails
from utils.errors import InsufficientPoints, InsufficientStock, TransactionConflict, TransactionTimeout
from utils.identity import Guest, Registered
from utils.pricing import build_line_item, price_checkout
from utils.settlement import settle_checkout

from conftest import payment_details

SHIPPING = ShippingDetails(
    address="12 Market Road",
    city="Pune",
    state="MH",
    zip="411001",
    country="IN",
    shipping_cost=Decimal("40"),
    estimated_delivery="2026-11-01",
)


async def _priced(store, lines, *, points=0, balance=0, authenticated=True, shipping=SHIPPING):
    listings = await store.get_listings([listing_id for listing_id, _ in lines])
    items = [build_line_item(listings[listing_id], quantity) for listing_id, quantity in lines]
    return price_checkout(
        items,
        shipping_cost=shipping.shipping_cost,
        coupon_code=None,
        requested_points=points,
        points_balance=balance,
        authenticated=authenticated,
    )


async def _settle(store, identity, pricing, **kwargs):
    kwargs.setdefault("timeout", 1)
    kwargs.setdefault("max_wait", 1)
    return await settle_checkout(
        store,
        identity=identity,
        pricing=pricing,
        shipping=SHIPPING,
        payment=payment_details(),
        paid_amount=pricing.final_total,
        **kwargs,
    )


@pytest.fixture
def buyer(store) -> Registered:
    user_id = store.add_user(email="buyer@example.com", points_balance=30)
    return Registered(user_id=user_id, email="buyer@example.com", full_name="buyer", points_balance=30)


@pytest.fixture
def two_sellers(store) -> tuple[str, str]:
    return (
        store.add_listing(seller_id="seller-a", price=300, quantity=5),
        store.add_listing(seller_id="seller-b", price=100, quantity=5),
    )


class TestSettlementWrites:
    """One order per seller, with its own shipping and payment records."""

    async def test_one_order_per_seller(self, store, buyer, two_sellers) -> None:
        a, b = two_sellers
        pricing = await _priced(store, [(a, 1), (b, 2)])
        result = await _settle(store, buyer, pricing)

        assert [o.seller_id for o in result.orders] == ["seller-a", "seller-b"]
        assert len(store.state["orders"]) == 2
        assert len(store.state["shipping_records"]) == 2
        assert len(store.state["payment_records"]) == 2
        assert len(store.state["order_items"]) == 2
        assert store.stock(a) == 4
        assert store.stock(b) == 3

    async def test_orders_reference_their_records(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1), (two_sellers[1], 1)])
        result = await _settle(store, buyer, pricing)

        for settled in result.orders:
            order = store.state["orders"][settled.order_id]
            assert order["shipping_record_id"] == settled.shipping_record_id
            assert order["payment_record_id"] == settled.payment_record_id
            assert order["seller_id"] == settled.seller_id
            assert order["status"] == "pending"
            assert order["notes"] == f"Seller: {settled.seller_id}"

    async def test_split_payment_transaction_ids(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1), (two_sellers[1], 1)])
        await _settle(store, buyer, pricing)

        records = list(store.state["payment_records"].values())
        assert sorted(r["transaction_id"] for r in records) == ["pay_T1_seller-a", "pay_T1_seller-b"]
        assert all(r["status"] == "completed" for r in records)
        assert all(r["metadata"]["gateway_order_id"] == "order_T1" for r in records)
        assert sum(r["metadata"]["paid_amount"] for r in records) == pricing.final_total

    async def test_single_seller_keeps_payment_id(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1)])
        await _settle(store, buyer, pricing)

        (record,) = store.state["payment_records"].values()
        assert record["transaction_id"] == "pay_T1"

    async def test_order_status_policy(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1)])
        result = await _settle(store, buyer, pricing, order_status="confirmed", order_notes="Leave at door")

        order = store.state["orders"][result.orders[0].order_id]
        assert order["status"] == "confirmed"
        assert order["notes"] == "Leave at door | Seller: seller-a"


class TestAtomicity:
    """Any failure inside settlement leaves no trace."""

    async def test_failed_write_rolls_back_everything(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1), (two_sellers[1], 1)])
        store.fail_on["create_order_items"] = RuntimeError("write conflict")

        with pytest.raises(RuntimeError):
            await _settle(store, buyer, pricing)

        assert store.state["orders"] == {}
        assert store.state["payment_records"] == {}
        assert store.stock(two_sellers[0]) == 5
        assert store.state["users"][buyer.user_id]["points_balance"] == 30

    async def test_stock_drained_after_pricing(self, store, buyer, two_sellers) -> None:
        a, b = two_sellers
        pricing = await _priced(store, [(a, 1), (b, 3)])
        store.state["listings"][b]["quantity_available"] = 2

        with pytest.raises(InsufficientStock):
            await _settle(store, buyer, pricing)

        assert store.stock(a) == 5
        assert store.stock(b) == 2
        assert store.state["orders"] == {}

    async def test_timeout_is_retryable_and_rolls_back(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1)])
        store.delay["create_order"] = 0.5

        with pytest.raises(TransactionTimeout) as exc_info:
            await _settle(store, buyer, pricing, timeout=0.05)

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 500
        assert store.state["shipping_records"] == {}
        assert store.stock(two_sellers[0]) == 5

    async def test_failed_reservation_cancels_pending_siblings(self, store, buyer, two_sellers) -> None:
        a, b = two_sellers
        pricing = await _priced(store, [(a, 1), (b, 1)])
        store.fail_on[("decrement_listing_stock", a)] = RuntimeError("disk full")
        store.delay[("decrement_listing_stock", b)] = 0.05

        with pytest.raises(RuntimeError):
            await _settle(store, buyer, pricing)

        # Give a leaked sibling decrement time to land.
        await asyncio.sleep(0.2)

        assert store.stock(a) == 5
        assert store.stock(b) == 5
        assert store.state["orders"] == {}
        assert store.owners == {}

    async def test_failed_record_write_cancels_sibling_records(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1), (two_sellers[1], 1)])
        store.fail_on["create_payment_record"] = RuntimeError("disk full")
        store.delay["create_shipping_record"] = 0.05

        with pytest.raises(RuntimeError):
            await _settle(store, buyer, pricing)
        await asyncio.sleep(0.2)

        assert store.state["shipping_records"] == {}
        assert store.state["payment_records"] == {}


class TestWriteConflicts:
    """A checkout that loses a write conflict is retried whole."""

    async def test_conflict_is_retried_after_holder_commits(self, store, buyer, two_sellers, caplog) -> None:
        a, _ = two_sellers
        pricing = await _priced(store, [(a, 1)])

        async with store.transaction(max_wait=1) as holder:
            assert await holder.decrement_listing_stock(a, 1) is True
            pending = asyncio.ensure_future(_settle(store, buyer, pricing))
            await asyncio.sleep(0.02)
            assert not pending.done()

        result = await pending

        assert len(result.orders) == 1
        assert store.stock(a) == 3
        assert len(store.state["orders"]) == 1
        assert "SETTLEMENT_CONFLICT_RETRY" in caplog.text

    async def test_exhausted_retries_surface_retryable_conflict(self, store, buyer, two_sellers) -> None:
        pricing = await _priced(store, [(two_sellers[0], 1)])
        store.fail_on["decrement_listing_stock"] = TransactionConflict("Write conflict on listings")

        with pytest.raises(TransactionConflict) as exc_info:
            await _settle(store, buyer, pricing)

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 409
        assert store.state["orders"] == {}
        assert store.stock(two_sellers[0]) == 5


class TestPoints:
    """A single net delta, applied only if the balance still covers it."""

    async def test_net_delta(self, store, buyer) -> None:
        listing_id = store.add_listing(seller_id="s1", price=500, quantity=1)
        pricing = await _priced(store, [(listing_id, 1)], points=30, balance=30)
        result = await _settle(store, buyer, pricing)

        # 500 + 40 shipping - 30 points = 510, earns 10
        assert pricing.final_total == Decimal("510")
        assert result.points_delta == 10 - 30
        assert store.state["users"][buyer.user_id]["points_balance"] == 10

    async def test_balance_spent_elsewhere(self, store, buyer) -> None:
        listing_id = store.add_listing(seller_id="s1", price=500, quantity=1)
        pricing = await _priced(store, [(listing_id, 1)], points=30, balance=30)
        store.state["users"][buyer.user_id]["points_balance"] = 10

        with pytest.raises(InsufficientPoints):
            await _settle(store, buyer, pricing)

        assert store.stock(listing_id) == 1
        assert store.state["users"][buyer.user_id]["points_balance"] == 10

    async def test_guest_balance_untouched(self, store) -> None:
        user_id = store.add_user(email="guest@example.com", user_type="guest")
        guest = Guest(user_id=user_id, email="guest@example.com", full_name="Guest")
        listing_id = store.add_listing(seller_id="s1", price=500, quantity=1)
        pricing = await _priced(store, [(listing_id, 1)], authenticated=False)

        result = await _settle(store, guest, pricing)

        assert result.points_delta == 0
        assert store.state["users"][user_id]["points_balance"] == 0
        assert store.state["orders"][result.orders[0].order_id]["is_guest_order"] is True


class TestCartCleanup:
    """Purchased lines leave the cart; an emptied cart is deactivated."""

    async def test_partial_checkout_keeps_cart(self, store, buyer, two_sellers) -> None:
        a, b = two_sellers
        cart_id, (item_a, item_b) = store.add_cart(buyer.user_id, [(a, 1), (b, 1)])
        pricing = await _priced(store, [(a, 1)])

        await _settle(store, buyer, pricing, cart_id=cart_id, cart_item_ids=[item_a])

        assert list(store.state["cart_items"]) == [item_b]
        assert store.state["carts"][cart_id]["is_active"] is True

    async def test_full_checkout_deactivates_cart(self, store, buyer, two_sellers) -> None:
        a, b = two_sellers
        cart_id, item_ids = store.add_cart(buyer.user_id, [(a, 1), (b, 1)])
        pricing = await _priced(store, [(a, 1), (b, 1)])

        await _settle(store, buyer, pricing, cart_id=cart_id, cart_item_ids=item_ids)

        assert store.state["cart_items"] == {}
        assert store.state["carts"][cart_id]["is_active"] is False

    async def test_cleanup_by_listing(self, store, buyer, two_sellers) -> None:
        a, b = two_sellers
        cart_id, _ = store.add_cart(buyer.user_id, [(a, 1), (b, 1)])
        pricing = await _priced(store, [(b, 2)])

        await _settle(store, buyer, pricing, cart_id=cart_id, listing_ids=[b])

        assert [i["listing_id"] for i in store.state["cart_items"].values()] == [a]

    async def test_cleanup_rolled_back_with_settlement(self, store, buyer, two_sellers) -> None:
        a, _ = two_sellers
        cart_id, item_ids = store.add_cart(buyer.user_id, [(a, 9)])
        pricing = await _priced(store, [(a, 1)])
        store.fail_on["apply_points_delta"] = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await _settle(store, buyer, pricing, cart_id=cart_id, cart_item_ids=item_ids)

        assert list(store.state["cart_items"]) == item_ids
        assert store.state["carts"][cart_id]["is_active"] is True
