"""
Shared pytest fixtures.

Provides an in-memory store that honours the store-handle contract used by
the checkout core (overlapping transactions with per-document write
conflicts, conditional stock and points updates), plus payment fixtures
that sign assertions the way the gateway does.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import hmac
import itertools
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from models.listing import ListingSnapshot
from models.order import PaymentDetails
from utils.errors import TransactionConflict
from utils.payments import PaymentVerifier
from utils.razorpay import amount_to_paise

TEST_KEY_SECRET = "rzp_test_secret"


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class FakeTransaction:
    """
    One open transaction over the shared state.

    Writes go straight to the state, and the first write to a document
    records its prior value and claims it. A second transaction writing
    a claimed document gets TransactionConflict, the way MongoStore
    surfaces a WriteConflict. Rollback restores only this transaction's
    own documents. Writes issued after the transaction closed land
    directly, as they would on an unguarded session.
    """

    def __init__(self, store: "FakeStore") -> None:
        self.store = store
        self.active = True
        self._undo: list[tuple[str, object, bool, object]] = []
        self._owned: set[tuple[str, object]] = set()

    @property
    def state(self) -> dict:
        return self.store.state

    def _touch(self, collection: str, key) -> None:
        if not self.active:
            return

        slot = (collection, key)
        if slot in self._owned:
            return

        owner = self.store.owners.get(slot)
        if owner is not None and owner is not self:
            raise TransactionConflict(f"Write conflict on {collection}/{key}")

        self.store.owners[slot] = self
        self._owned.add(slot)
        existed = key in self.state[collection]
        self._undo.append((collection, key, existed, copy.deepcopy(self.state[collection].get(key))))

    def rollback(self) -> None:
        for collection, key, existed, prev in reversed(self._undo):
            if existed:
                self.state[collection][key] = prev
            else:
                self.state[collection].pop(key, None)
        self._undo.clear()

    def before(self, collection: str, key):
        for entry_collection, entry_key, existed, prev in self._undo:
            if (entry_collection, entry_key) == (collection, key):
                return prev if existed else None
        return self.state[collection].get(key)

    def close(self) -> None:
        for slot in self._owned:
            if self.store.owners.get(slot) is self:
                del self.store.owners[slot]
        self._owned.clear()
        self.active = False

    async def _insert(self, collection: str, doc: dict, hook: str) -> str:
        await self.store.hook(hook)
        new_id = self.store.next_id(collection[:3])
        self._touch(collection, new_id)
        self.state[collection][new_id] = {**copy.deepcopy(doc), "id": new_id}
        return new_id

    async def create_shipping_record(self, doc: dict) -> str:
        return await self._insert("shipping_records", doc, "create_shipping_record")

    async def create_payment_record(self, doc: dict) -> str:
        return await self._insert("payment_records", doc, "create_payment_record")

    async def create_order(self, doc: dict) -> str:
        return await self._insert("orders", doc, "create_order")

    async def create_order_items(self, docs: list[dict]) -> int:
        await self.store.hook("create_order_items")
        for doc in docs:
            new_id = self.store.next_id("oit")
            self._touch("order_items", new_id)
            self.state["order_items"][new_id] = {**copy.deepcopy(doc), "id": new_id}
        return len(docs)

    async def get_listing(self, listing_id):
        await self.store.hook("get_listing")
        doc = self.state["listings"].get(str(listing_id))
        return ListingSnapshot(**doc) if doc else None

    async def decrement_listing_stock(self, listing_id, quantity: int) -> bool:
        await self.store.hook("decrement_listing_stock", str(listing_id))
        doc = self.state["listings"].get(str(listing_id))
        if not doc:
            return False
        self._touch("listings", str(listing_id))
        if doc["status"] != "active" or doc["quantity_available"] < quantity:
            return False
        doc["quantity_available"] -= quantity
        return True

    async def increment_listing_stock(self, listing_id, quantity: int) -> bool:
        await self.store.hook("increment_listing_stock")
        doc = self.state["listings"].get(str(listing_id))
        if not doc:
            return False
        self._touch("listings", str(listing_id))
        doc["quantity_available"] += quantity
        return True

    async def apply_points_delta(self, user_id, delta: int, *, points_used: int) -> bool:
        await self.store.hook("apply_points_delta", str(user_id))
        user = self.state["users"].get(str(user_id))
        if not user:
            return False
        self._touch("users", str(user_id))
        if user["points_balance"] < points_used:
            return False
        user["points_balance"] += delta
        return True

    async def delete_cart_items(self, cart_id, item_ids: list) -> int:
        items = self.state["cart_items"]
        doomed = [i for i, doc in items.items() if doc["cart_id"] == cart_id and i in set(item_ids)]
        for item_id in doomed:
            self._touch("cart_items", item_id)
            del items[item_id]
        return len(doomed)

    async def delete_cart_items_for_listings(self, cart_id, listing_ids: list) -> int:
        items = self.state["cart_items"]
        doomed = [
            i for i, doc in items.items()
            if doc["cart_id"] == cart_id and doc["listing_id"] in set(listing_ids)
        ]
        for item_id in doomed:
            self._touch("cart_items", item_id)
            del items[item_id]
        return len(doomed)

    async def count_cart_items(self, cart_id) -> int:
        return sum(1 for doc in self.state["cart_items"].values() if doc["cart_id"] == cart_id)

    async def deactivate_cart(self, cart_id) -> None:
        self._touch("carts", cart_id)
        self.state["carts"][cart_id]["is_active"] = False

    async def increment_seller_metrics(self, seller_id, *, sales, orders, now) -> None:
        await self.store.hook("increment_seller_metrics", seller_id)
        self._touch("seller_metrics", seller_id)
        row = self.state["seller_metrics"].setdefault(
            seller_id, {"total_sales": Decimal("0"), "total_orders": 0}
        )
        row["total_sales"] += sales
        row["total_orders"] += orders
        row["last_calculated_at"] = now

    async def increment_sales_history(self, seller_id, *, day, sales, orders, new_customers) -> None:
        self._touch("seller_sales_history", (seller_id, day))
        row = self.state["seller_sales_history"].setdefault(
            (seller_id, day),
            {"daily_sales": Decimal("0"), "order_count": 0, "new_customers": 0, "cancellations": 0},
        )
        row["daily_sales"] += sales
        row["order_count"] += orders
        row["new_customers"] += new_customers

    async def transition_payment_status(self, record_id, *, to_status, from_statuses) -> bool:
        record = self.state["payment_records"].get(record_id)
        if not record:
            return False
        self._touch("payment_records", record_id)
        if record["status"] not in from_statuses:
            return False
        record["status"] = to_status
        return True

    async def set_order_status_for_payment(self, payment_record_id, status):
        for order in self.state["orders"].values():
            if order["payment_record_id"] == payment_record_id:
                self._touch("orders", order["id"])
                order["status"] = status
                return {"id": order["id"], "status": status, "user_id": order["user_id"]}
        return None

    async def get_order_items(self, order_id) -> list[dict]:
        return [
            {"listing_id": doc["listing_id"], "quantity": doc["quantity"]}
            for doc in self.state["order_items"].values()
            if doc["order_id"] == order_id
        ]


class FakeStore:
    COLLECTIONS = (
        "users",
        "listings",
        "carts",
        "cart_items",
        "shipping_records",
        "payment_records",
        "orders",
        "order_items",
        "seller_metrics",
        "seller_sales_history",
        "reviews",
    )

    def __init__(self) -> None:
        self.state: dict = {name: {} for name in self.COLLECTIONS}
        self.fail_on: dict = {}
        self.delay: dict = {}
        self._ids = itertools.count(1)
        self.owners: dict = {}

    def next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    async def hook(self, name: str, key=None) -> None:
        await asyncio.sleep(self.delay.get((name, key), self.delay.get(name, 0)))
        exc = self.fail_on.get((name, key)) or self.fail_on.get(name)
        if exc is not None:
            raise exc

    # seeding -----------------------------------------------------------------

    def add_user(self, *, email: str, points_balance: int = 0, user_type: str = "customer") -> str:
        user_id = self.next_id("usr")
        self.state["users"][user_id] = {
            "id": user_id,
            "email": email,
            "full_name": email.split("@")[0],
            "user_type": user_type,
            "points_balance": points_balance,
        }
        return user_id

    def add_listing(self, *, seller_id, price, quantity: int, status: str = "active", name: str | None = None) -> str:
        listing_id = self.next_id("lst")
        self.state["listings"][listing_id] = {
            "id": listing_id,
            "seller_id": seller_id,
            "name": name or f"Listing {listing_id}",
            "price": Decimal(str(price)),
            "quantity_available": quantity,
            "status": status,
        }
        return listing_id

    def add_cart(self, user_id: str, items: list[tuple[str, int]]) -> tuple[str, list[str]]:
        cart_id = self.next_id("crt")
        self.state["carts"][cart_id] = {"id": cart_id, "user_id": user_id, "is_active": True}
        item_ids = []
        for listing_id, quantity in items:
            item_id = self.next_id("cit")
            self.state["cart_items"][item_id] = {
                "id": item_id,
                "cart_id": cart_id,
                "listing_id": listing_id,
                "quantity": quantity,
            }
            item_ids.append(item_id)
        return cart_id, item_ids

    def add_review(self, seller_id: str, rating: int) -> None:
        self.state["reviews"][self.next_id("rev")] = {"seller_id": seller_id, "rating": rating}

    def stock(self, listing_id: str) -> int:
        return self.state["listings"][listing_id]["quantity_available"]

    # store contract -----------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, *, max_wait: float):
        tx = FakeTransaction(self)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        finally:
            tx.close()

    def committed(self, collection: str, key):
        """A document as readers outside its writing transaction see it."""
        owner = self.owners.get((collection, key))
        if owner is None:
            return self.state[collection].get(key)
        return owner.before(collection, key)

    async def get_user(self, user_id):
        await asyncio.sleep(0)
        user = self.committed("users", str(user_id))
        return dict(user) if user else None

    async def find_user_by_email(self, email: str):
        await asyncio.sleep(0)
        for user in self.state["users"].values():
            if user["email"] == email:
                return dict(user)
        return None

    async def create_guest_user(self, *, email: str, full_name: str, phone_number):
        user_id = self.add_user(email=email, user_type="guest")
        self.state["users"][user_id].update({"full_name": full_name, "password_hash": "GUEST_USER"})
        return dict(self.state["users"][user_id])

    async def get_listings(self, listing_ids):
        await asyncio.sleep(0)
        found = {}
        for listing_id in listing_ids:
            doc = self.committed("listings", str(listing_id))
            if doc is not None:
                found[str(listing_id)] = ListingSnapshot(**doc)
        return found

    async def get_active_cart(self, user_id, cart_id=None):
        await asyncio.sleep(0)
        for cart in self.state["carts"].values():
            if cart["user_id"] != user_id or not cart["is_active"]:
                continue
            if cart_id is not None and cart["id"] != cart_id:
                continue
            items = [dict(i) for i in self.state["cart_items"].values() if i["cart_id"] == cart["id"]]
            return {"id": cart["id"], "user_id": user_id, "items": items}
        return None

    async def get_or_create_active_cart(self, user_id):
        cart = await self.get_active_cart(user_id)
        if cart:
            return cart
        cart_id, _ = self.add_cart(user_id, [])
        return await self.get_active_cart(user_id, cart_id)

    async def add_cart_item(self, cart_id, listing_id, quantity: int):
        for item in self.state["cart_items"].values():
            if item["cart_id"] == cart_id and item["listing_id"] == listing_id:
                item["quantity"] += quantity
                return dict(item)
        item_id = self.next_id("cit")
        self.state["cart_items"][item_id] = {
            "id": item_id,
            "cart_id": cart_id,
            "listing_id": listing_id,
            "quantity": quantity,
        }
        return dict(self.state["cart_items"][item_id])

    async def update_cart_item(self, cart_id, item_id, quantity: int):
        item = self.state["cart_items"].get(item_id)
        if not item or item["cart_id"] != cart_id:
            return None
        item["quantity"] = quantity
        return dict(item)

    async def remove_cart_item(self, cart_id, item_id) -> bool:
        item = self.state["cart_items"].get(item_id)
        if not item or item["cart_id"] != cart_id:
            return False
        del self.state["cart_items"][item_id]
        return True

    async def has_prior_seller_order(self, user_id, seller_id, *, exclude_order_ids, statuses) -> bool:
        await self.hook("has_prior_seller_order", seller_id)
        return any(
            o["user_id"] == user_id
            and o["seller_id"] == seller_id
            and o["status"] in statuses
            and o["id"] not in set(exclude_order_ids)
            for o in self.state["orders"].values()
        )

    async def refresh_listing_aggregates(self, seller_id, *, now) -> dict:
        listings = [l for l in self.state["listings"].values() if l["seller_id"] == seller_id]
        ratings = [r["rating"] for r in self.state["reviews"].values() if r["seller_id"] == seller_id]
        aggregates = {
            "total_listings": sum(1 for l in listings if l["status"] != "deleted"),
            "active_listings": sum(1 for l in listings if l["status"] == "active"),
            "avg_rating": round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
        }
        self.state["seller_metrics"].setdefault(seller_id, {}).update(aggregates, last_calculated_at=now)
        return aggregates

    async def find_payment_records(self, gateway_order_id: str) -> list[dict]:
        return [
            {"id": r["id"], "status": r["status"]}
            for r in self.state["payment_records"].values()
            if r["metadata"]["gateway_order_id"] == gateway_order_id
        ]


# ---------------------------------------------------------------------------
# Payment helpers
# ---------------------------------------------------------------------------


def sign(gateway_order_id: str, gateway_payment_id: str, secret: str = TEST_KEY_SECRET) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_details(gateway_order_id: str = "order_T1", gateway_payment_id: str = "pay_T1") -> PaymentDetails:
    return PaymentDetails(
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
        signature=sign(gateway_order_id, gateway_payment_id),
    )


def gateway_paid(amount):
    """Gateway fetcher reporting a fixed paid amount for any order id."""

    def _fetch(gateway_order_id: str) -> dict:
        return {"amount_paise": amount_to_paise(Decimal(str(amount))), "currency": "INR"}

    return _fetch


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_verifier():
    def _make(paid_amount) -> PaymentVerifier:
        return PaymentVerifier(key_secret=TEST_KEY_SECRET, fetch_order=gateway_paid(paid_amount))

    return _make


class Spawned:
    """Captures post-commit tasks instead of detaching them."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, object]] = []

    def __call__(self, coro, *, name: str):
        self.jobs.append((name, coro))

    async def run_all(self) -> list:
        results = await asyncio.gather(*(coro for _, coro in self.jobs), return_exceptions=True)
        self.jobs.clear()
        return results

    def close_all(self) -> None:
        for _, coro in self.jobs:
            coro.close()
        self.jobs.clear()


@pytest.fixture
def spawned():
    capture = Spawned()
    yield capture
    capture.close_all()
