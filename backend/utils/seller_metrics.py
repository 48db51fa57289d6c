import asyncio
import logging
from datetime import datetime
from decimal import Decimal

from config.constants import CUSTOMER_ORDER_STATUSES, PLATFORM_SELLER_ID
from config.env import METRICS_TX_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


async def _update_one_seller(store, *, seller_id: str, user_id: str, orders: list, timeout: float) -> None:
    now = datetime.utcnow()

    returning = await store.has_prior_seller_order(
        user_id,
        seller_id,
        exclude_order_ids=[o.order_id for o in orders],
        statuses=CUSTOMER_ORDER_STATUSES,
    )
    sales = sum((o.total_amount for o in orders), Decimal("0"))

    async def _increment():
        async with store.transaction(max_wait=timeout) as tx:
            await tx.increment_seller_metrics(seller_id, sales=sales, orders=len(orders), now=now)
            await tx.increment_sales_history(
                seller_id,
                day=now.date().isoformat(),
                sales=sales,
                orders=len(orders),
                new_customers=0 if returning else 1,
            )

    await asyncio.wait_for(_increment(), timeout=timeout)

    # Counts and rating are recomputed, not incremented
    await store.refresh_listing_aggregates(seller_id, now=now)


async def update_seller_metrics(
    store,
    *,
    user_id: str,
    orders: list,
    timeout: float = METRICS_TX_TIMEOUT_SECONDS,
) -> dict[str, bool]:
    """
    Post-commit, best-effort seller analytics.

    Each seller gets its own short transaction; one seller failing is
    logged and never affects another. Nothing here is retried.
    """
    by_seller: dict[str, list] = {}
    for order in orders:
        if order.seller_id == PLATFORM_SELLER_ID:
            continue
        by_seller.setdefault(order.seller_id, []).append(order)

    seller_ids = list(by_seller)
    results = await asyncio.gather(
        *(
            _update_one_seller(
                store,
                seller_id=seller_id,
                user_id=user_id,
                orders=by_seller[seller_id],
                timeout=timeout,
            )
            for seller_id in seller_ids
        ),
        return_exceptions=True,
    )

    outcome = {}
    for seller_id, result in zip(seller_ids, results):
        if isinstance(result, BaseException):
            logger.error("SELLER_METRICS_ERROR seller=%s", seller_id, exc_info=result)
            outcome[seller_id] = False
        else:
            outcome[seller_id] = True
    return outcome
