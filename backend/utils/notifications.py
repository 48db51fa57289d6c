import asyncio
import logging

from config.constants import PLATFORM_SELLER_ID

logger = logging.getLogger(__name__)

ROLE_SELLER = "seller"
ROLE_CUSTOMER = "customer"


class LoggingNotificationSender:
    """
    Default sender. Mail delivery and invoice rendering live outside this
    service; deployments swap in a real sender via get_notification_sender.
    """

    async def send(self, recipient: str, payload: dict, role: str) -> None:
        logger.info(
            "ORDER_NOTIFICATION role=%s to=%s orders=%s",
            role,
            recipient,
            ",".join(o["orderId"] for o in payload.get("orders", [])),
        )


def get_notification_sender():
    return LoggingNotificationSender()


async def _notify_seller(store, sender, seller_id: str, payload: dict) -> None:
    seller = await store.get_user(seller_id)
    if not seller or not seller.get("email"):
        return

    await sender.send(seller["email"], payload, ROLE_SELLER)


async def notify_order_placed(store, sender, *, customer_email: str | None, payload: dict) -> None:
    """
    Fan out one customer and one per-seller notification.

    Each seller's lookup runs inside its own job, so a failed lookup or
    send only loses that one notice. Failures are logged, never raised.
    """
    jobs = []
    labels = []

    if customer_email:
        jobs.append(sender.send(customer_email, payload, ROLE_CUSTOMER))
        labels.append(customer_email)

    for order in payload.get("orders", []):
        seller_id = (order.get("seller") or {}).get("id")
        if not seller_id or seller_id == PLATFORM_SELLER_ID:
            continue

        jobs.append(_notify_seller(store, sender, seller_id, {**payload, "orders": [order]}))
        labels.append(f"seller:{seller_id}")

    results = await asyncio.gather(*jobs, return_exceptions=True)
    for label, result in zip(labels, results):
        if isinstance(result, BaseException):
            logger.error("ORDER_NOTIFICATION_ERROR to=%s", label, exc_info=result)
