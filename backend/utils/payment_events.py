import logging

from config.constants import ORDER_PAYMENT_FAILED, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING
from config.env import PLACE_ORDER_TX_MAX_WAIT_SECONDS
from utils.inventory import release_stock

logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"
EVENT_ORDER_PAID = "order.paid"


async def handle_payment_failed(store, gateway_order_id: str, *, max_wait: float = PLACE_ORDER_TX_MAX_WAIT_SECONDS) -> int:
    """
    Compensate every order paid through a failed gateway order: payment
    record -> failed, order -> payment_failed, stock restored.

    The status transition is conditional, so a redelivered event finds
    nothing left to do and restores nothing twice.
    """
    compensated = 0

    for record in await store.find_payment_records(gateway_order_id):
        if record["status"] == PAYMENT_FAILED:
            continue

        async with store.transaction(max_wait=max_wait) as tx:
            transitioned = await tx.transition_payment_status(
                record["id"],
                to_status=PAYMENT_FAILED,
                from_statuses={PAYMENT_PENDING, PAYMENT_COMPLETED},
            )
            if transitioned:
                order = await tx.set_order_status_for_payment(record["id"], ORDER_PAYMENT_FAILED)
                if order:
                    for item in await tx.get_order_items(order["id"]):
                        await release_stock(tx, item["listing_id"], item["quantity"])

        if transitioned:
            compensated += 1
            logger.info(
                "PAYMENT_FAILED_COMPENSATED gateway_order=%s payment_record=%s",
                gateway_order_id,
                record["id"],
            )

    return compensated


async def handle_payment_captured(store, gateway_order_id: str, *, max_wait: float = PLACE_ORDER_TX_MAX_WAIT_SECONDS) -> int:
    updated = 0

    for record in await store.find_payment_records(gateway_order_id):
        if record["status"] != PAYMENT_PENDING:
            continue

        async with store.transaction(max_wait=max_wait) as tx:
            if await tx.transition_payment_status(
                record["id"],
                to_status=PAYMENT_COMPLETED,
                from_statuses={PAYMENT_PENDING},
            ):
                updated += 1

    return updated
