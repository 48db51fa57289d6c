import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

from bson import ObjectId
from bson.decimal128 import Decimal128
from pydantic import ValidationError as ModelValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from config.constants import GUEST_PASSWORD_MARKER, LISTING_ACTIVE
from models.listing import ListingSnapshot
from models.user import UserInDB, UserType
from utils.errors import TransactionConflict, ValidationError
from utils.guards import parse_object_id, try_object_id

# ============================================================
# STORE HANDLE (MongoDB via Motor)
# ============================================================
# The checkout core never touches collections directly. It gets a
# MongoStore passed in and opens transactions through it. Ids leave
# this module as strings, money leaves it as Decimal.
# ============================================================


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def encode_money(value):
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: encode_money(v) for k, v in value.items()}
    if isinstance(value, list):
        return [encode_money(v) for v in value]
    return value


def _id(value):
    return str(value) if value is not None else None


def _user(doc: dict | None) -> dict | None:
    if not doc:
        return None
    return {
        "id": str(doc["_id"]),
        "email": doc.get("email"),
        "full_name": doc.get("full_name"),
        "user_type": doc.get("user_type"),
        "points_balance": int(doc.get("points_balance") or 0),
    }


def _listing(doc: dict) -> ListingSnapshot:
    return ListingSnapshot(
        id=str(doc["_id"]),
        seller_id=_id(doc.get("seller_id")),
        name=doc.get("name") or "",
        price=to_decimal(doc.get("price")),
        quantity_available=int(doc.get("quantity_available") or 0),
        status=doc.get("status", LISTING_ACTIVE),
    )


def _cart_item(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "cart_id": str(doc["cart_id"]),
        "listing_id": str(doc["listing_id"]),
        "quantity": int(doc["quantity"]),
    }




class MongoTransaction:
    """Operations bound to one client session with an open transaction."""

    def __init__(self, db, session):
        self._db = db
        self._session = session
        # A client session must not run two operations at once.
        self._lock = asyncio.Lock()

    async def _run(self, method, *args, **kwargs):
        async with self._lock:
            if not self._session.in_transaction:
                raise TransactionConflict("Transaction is no longer active")

            future = asyncio.ensure_future(method(*args, session=self._session, **kwargs))
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                # The driver call keeps running after cancellation; hold the
                # session until it settles so nothing lands after abort.
                await asyncio.gather(future, return_exceptions=True)
                raise

    @staticmethod
    def _find_all(collection, query: dict, *, session):
        return collection.find(query, session=session).to_list(None)

    async def _insert(self, collection, doc: dict) -> str:
        result = await self._run(collection.insert_one, encode_money(doc))
        return str(result.inserted_id)

    async def create_shipping_record(self, doc: dict) -> str:
        return await self._insert(self._db.shipping_records, doc)

    async def create_payment_record(self, doc: dict) -> str:
        return await self._insert(self._db.payment_records, doc)

    async def create_order(self, doc: dict) -> str:
        doc = dict(doc)
        doc["user_id"] = try_object_id(doc["user_id"])
        doc["seller_id"] = try_object_id(doc["seller_id"])
        doc["shipping_record_id"] = ObjectId(doc["shipping_record_id"])
        doc["payment_record_id"] = ObjectId(doc["payment_record_id"])
        return await self._insert(self._db.orders, doc)

    async def create_order_items(self, docs: list[dict]) -> int:
        rows = []
        for doc in docs:
            row = dict(doc)
            row["order_id"] = ObjectId(row["order_id"])
            row["listing_id"] = try_object_id(row["listing_id"])
            row["seller_id"] = try_object_id(row["seller_id"])
            rows.append(encode_money(row))
        result = await self._run(self._db.order_items.insert_many, rows)
        return len(result.inserted_ids)

    async def get_listing(self, listing_id) -> ListingSnapshot | None:
        doc = await self._run(self._db.listings.find_one, {"_id": try_object_id(listing_id)})
        return _listing(doc) if doc else None

    async def decrement_listing_stock(self, listing_id, quantity: int) -> bool:
        result = await self._run(
            self._db.listings.update_one,
            {
                "_id": try_object_id(listing_id),
                "status": LISTING_ACTIVE,
                "quantity_available": {"$gte": quantity},
            },
            {
                "$inc": {"quantity_available": -quantity},
                "$set": {"updated_at": datetime.utcnow()},
            },
        )
        return result.modified_count == 1

    async def increment_listing_stock(self, listing_id, quantity: int) -> bool:
        result = await self._run(
            self._db.listings.update_one,
            {"_id": try_object_id(listing_id)},
            {
                "$inc": {"quantity_available": quantity},
                "$set": {"updated_at": datetime.utcnow()},
            },
        )
        return result.modified_count == 1

    async def apply_points_delta(self, user_id, delta: int, *, points_used: int) -> bool:
        result = await self._run(
            self._db.users.update_one,
            {"_id": try_object_id(user_id), "points_balance": {"$gte": points_used}},
            {"$inc": {"points_balance": delta}},
        )
        return result.modified_count == 1

    async def delete_cart_items(self, cart_id, item_ids: list) -> int:
        result = await self._run(
            self._db.cart_items.delete_many,
            {
                "cart_id": try_object_id(cart_id),
                "_id": {"$in": [try_object_id(i) for i in item_ids]},
            },
        )
        return result.deleted_count

    async def delete_cart_items_for_listings(self, cart_id, listing_ids: list) -> int:
        result = await self._run(
            self._db.cart_items.delete_many,
            {
                "cart_id": try_object_id(cart_id),
                "listing_id": {"$in": [try_object_id(i) for i in listing_ids]},
            },
        )
        return result.deleted_count

    async def count_cart_items(self, cart_id) -> int:
        return await self._run(self._db.cart_items.count_documents, {"cart_id": try_object_id(cart_id)})

    async def deactivate_cart(self, cart_id) -> None:
        await self._run(
            self._db.carts.update_one,
            {"_id": try_object_id(cart_id)},
            {"$set": {"is_active": False, "updated_at": datetime.utcnow()}},
        )

    async def increment_seller_metrics(self, seller_id, *, sales: Decimal, orders: int, now: datetime) -> None:
        await self._run(
            self._db.seller_metrics.update_one,
            {"seller_id": try_object_id(seller_id)},
            {
                "$inc": {"total_sales": Decimal128(sales), "total_orders": orders},
                "$set": {"last_calculated_at": now},
            },
            upsert=True,
        )

    async def increment_sales_history(
        self,
        seller_id,
        *,
        day: str,
        sales: Decimal,
        orders: int,
        new_customers: int,
    ) -> None:
        await self._run(
            self._db.seller_sales_history.update_one,
            {"seller_id": try_object_id(seller_id), "day": day},
            {
                "$inc": {
                    "daily_sales": Decimal128(sales),
                    "order_count": orders,
                    "new_customers": new_customers,
                },
                "$setOnInsert": {"cancellations": 0},
            },
            upsert=True,
        )

    async def transition_payment_status(self, record_id, *, to_status: str, from_statuses: set) -> bool:
        result = await self._run(
            self._db.payment_records.update_one,
            {"_id": try_object_id(record_id), "status": {"$in": sorted(from_statuses)}},
            {"$set": {"status": to_status, "updated_at": datetime.utcnow()}},
        )
        return result.modified_count == 1

    async def set_order_status_for_payment(self, payment_record_id, status: str) -> dict | None:
        doc = await self._run(
            self._db.orders.find_one_and_update,
            {"payment_record_id": try_object_id(payment_record_id)},
            {"$set": {"status": status, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return {"id": str(doc["_id"]), "status": doc["status"], "user_id": _id(doc.get("user_id"))}

    async def get_order_items(self, order_id) -> list[dict]:
        docs = await self._run(self._find_all, self._db.order_items, {"order_id": try_object_id(order_id)})
        return [
            {"listing_id": str(d["listing_id"]), "quantity": int(d["quantity"])}
            for d in docs
        ]


class MongoStore:
    def __init__(self, client, db):
        self._client = client
        self._db = db

    @asynccontextmanager
    async def transaction(self, *, max_wait: float):
        """
        Open a session transaction and yield its operations.

        max_wait bounds the commit (maxCommitTimeMS). The body itself is
        bounded by the caller's wall-clock timeout. Transient driver
        failures (write conflicts, primary step-down) surface as the
        retryable TransactionConflict.
        """
        async with await self._client.start_session() as session:
            try:
                async with session.start_transaction(max_commit_time_ms=int(max_wait * 1000)):
                    yield MongoTransaction(self._db, session)
            except PyMongoError as exc:
                if exc.has_error_label("TransientTransactionError"):
                    raise TransactionConflict("Checkout conflicted with a concurrent update") from exc
                raise

    # -----------------------------
    # USERS
    # -----------------------------

    async def get_user(self, user_id) -> dict | None:
        return _user(await self._db.users.find_one({"_id": try_object_id(user_id)}))

    async def find_user_by_email(self, email: str) -> dict | None:
        return _user(await self._db.users.find_one({"email": email}))

    async def create_guest_user(self, *, email: str, full_name: str, phone_number: str | None) -> dict:
        now = datetime.utcnow()
        try:
            user = UserInDB(
                email=email,
                full_name=full_name,
                phone_number=phone_number,
                password_hash=GUEST_PASSWORD_MARKER,
                user_type=UserType.GUEST,
                created_at=now,
            )
        except ModelValidationError:
            raise ValidationError("Invalid email format")
        doc = user.model_dump(mode="json")
        doc["created_at"] = now

        try:
            result = await self._db.users.insert_one(doc)
        except DuplicateKeyError:
            # Concurrent guest checkout with the same email won the race.
            return await self.find_user_by_email(email)

        doc["_id"] = result.inserted_id
        return _user(doc)

    # -----------------------------
    # LISTINGS
    # -----------------------------

    async def get_listings(self, listing_ids) -> dict[str, ListingSnapshot]:
        ids = [try_object_id(i) for i in listing_ids]
        cursor = self._db.listings.find({"_id": {"$in": ids}})
        return {str(doc["_id"]): _listing(doc) async for doc in cursor}

    # -----------------------------
    # CARTS
    # -----------------------------

    async def get_active_cart(self, user_id, cart_id=None) -> dict | None:
        query = {"user_id": try_object_id(user_id), "is_active": True}
        if cart_id is not None:
            query["_id"] = try_object_id(cart_id)

        cart = await self._db.carts.find_one(query)
        if not cart:
            return None

        items = await self._db.cart_items.find({"cart_id": cart["_id"]}).to_list(None)
        return {
            "id": str(cart["_id"]),
            "user_id": str(cart["user_id"]),
            "items": [_cart_item(i) for i in items],
        }

    async def get_or_create_active_cart(self, user_id) -> dict:
        cart = await self.get_active_cart(user_id)
        if cart:
            return cart

        now = datetime.utcnow()
        try:
            await self._db.carts.insert_one({
                "user_id": try_object_id(user_id),
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError:
            # one_active_cart_per_user index: another request created it first
            pass

        return await self.get_active_cart(user_id)

    async def add_cart_item(self, cart_id, listing_id, quantity: int) -> dict:
        now = datetime.utcnow()
        doc = await self._db.cart_items.find_one_and_update(
            {"cart_id": try_object_id(cart_id), "listing_id": try_object_id(listing_id)},
            {
                "$inc": {"quantity": quantity},
                "$set": {"updated_at": now},
                "$setOnInsert": {"added_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _cart_item(doc)

    async def update_cart_item(self, cart_id, item_id, quantity: int) -> dict | None:
        doc = await self._db.cart_items.find_one_and_update(
            {"_id": parse_object_id(item_id, "cart_item_id"), "cart_id": try_object_id(cart_id)},
            {"$set": {"quantity": quantity, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _cart_item(doc) if doc else None

    async def remove_cart_item(self, cart_id, item_id) -> bool:
        result = await self._db.cart_items.delete_one(
            {"_id": parse_object_id(item_id, "cart_item_id"), "cart_id": try_object_id(cart_id)},
        )
        return result.deleted_count == 1

    # -----------------------------
    # SELLER METRICS
    # -----------------------------

    async def has_prior_seller_order(self, user_id, seller_id, *, exclude_order_ids, statuses) -> bool:
        doc = await self._db.orders.find_one({
            "user_id": try_object_id(user_id),
            "seller_id": try_object_id(seller_id),
            "status": {"$in": sorted(statuses)},
            "_id": {"$nin": [try_object_id(i) for i in exclude_order_ids]},
        })
        return doc is not None

    async def refresh_listing_aggregates(self, seller_id, *, now: datetime) -> dict:
        seller_oid = try_object_id(seller_id)

        total_listings = await self._db.listings.count_documents(
            {"seller_id": seller_oid, "status": {"$ne": "deleted"}}
        )
        active_listings = await self._db.listings.count_documents(
            {"seller_id": seller_oid, "status": LISTING_ACTIVE}
        )

        pipeline = [
            {"$match": {"seller_id": seller_oid}},
            {"$group": {"_id": None, "avg_rating": {"$avg": "$rating"}}},
        ]
        rows = await self._db.reviews.aggregate(pipeline).to_list(1)
        avg_rating = round(float(rows[0]["avg_rating"] or 0), 2) if rows else 0.0

        aggregates = {
            "total_listings": total_listings,
            "active_listings": active_listings,
            "avg_rating": avg_rating,
        }
        await self._db.seller_metrics.update_one(
            {"seller_id": seller_oid},
            {"$set": {**aggregates, "last_calculated_at": now}},
            upsert=True,
        )
        return aggregates

    # -----------------------------
    # PAYMENTS
    # -----------------------------

    async def find_payment_records(self, gateway_order_id: str) -> list[dict]:
        cursor = self._db.payment_records.find({"metadata.gateway_order_id": gateway_order_id})
        return [
            {"id": str(doc["_id"]), "status": doc.get("status")}
            async for doc in cursor
        ]
