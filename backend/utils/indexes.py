from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure


def _normalize_key_pairs(keys):
    return [(k, v) for k, v in keys]


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create index safely.
    If Mongo reports IndexOptionsConflict/IndexKeySpecsConflict for same key pattern,
    drop the conflicting index and recreate with desired options.
    """
    desired_key = _normalize_key_pairs(keys)
    desired_name = kwargs.get("name")
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in {85, 86}:
            raise

        conflicting_names = []
        async for idx in collection.list_indexes():
            idx_key = _normalize_key_pairs(list(idx.get("key", {}).items()))
            if idx_key == desired_key:
                idx_name = idx.get("name")
                if idx_name and idx_name != desired_name:
                    conflicting_names.append(idx_name)

        for idx_name in conflicting_names:
            await collection.drop_index(idx_name)

        await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    # Users
    await _create_index_safe(
        db.users,
        [("email", ASCENDING)],
        name="users_email_unique_idx",
        unique=True,
    )

    # Listings
    await _create_index_safe(
        db.listings,
        [("seller_id", ASCENDING), ("status", ASCENDING)],
        name="listings_seller_status_idx",
    )

    # Carts: at most one active cart per user
    await _create_index_safe(
        db.carts,
        [("user_id", ASCENDING)],
        name="carts_one_active_per_user_idx",
        unique=True,
        partialFilterExpression={"is_active": True},
    )
    await _create_index_safe(
        db.cart_items,
        [("cart_id", ASCENDING), ("listing_id", ASCENDING)],
        name="cart_items_cart_listing_unique_idx",
        unique=True,
    )

    # Orders
    await _create_index_safe(
        db.orders,
        [("user_id", ASCENDING), ("seller_id", ASCENDING), ("status", ASCENDING)],
        name="orders_user_seller_status_idx",
    )
    await _create_index_safe(
        db.orders,
        [("payment_record_id", ASCENDING)],
        name="orders_payment_record_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.orders,
        [("seller_id", ASCENDING), ("created_at", DESCENDING)],
        name="orders_seller_created_at_idx",
    )
    await _create_index_safe(
        db.order_items,
        [("order_id", ASCENDING)],
        name="order_items_order_idx",
    )

    # Payment records
    await _create_index_safe(
        db.payment_records,
        [("metadata.gateway_order_id", ASCENDING)],
        name="payment_records_gateway_order_idx",
    )

    # Seller analytics
    await _create_index_safe(
        db.seller_metrics,
        [("seller_id", ASCENDING)],
        name="seller_metrics_seller_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.seller_sales_history,
        [("seller_id", ASCENDING), ("day", ASCENDING)],
        name="seller_sales_history_seller_day_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.reviews,
        [("seller_id", ASCENDING)],
        name="reviews_seller_idx",
    )
