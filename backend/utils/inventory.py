import logging

from config.constants import LISTING_ACTIVE
from utils.errors import InsufficientStock, ItemUnavailable, ListingNotFound

logger = logging.getLogger(__name__)


async def reserve_stock(tx, listing_id, quantity: int) -> None:
    """
    Decrement a listing's stock inside the caller's transaction.

    The decrement is conditional (active and enough stock), so two
    checkouts racing for the last units can never both succeed. The
    listing is only re-read to explain a refusal.
    """
    if await tx.decrement_listing_stock(listing_id, quantity):
        return

    listing = await tx.get_listing(listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)

    if listing.status != LISTING_ACTIVE:
        raise ItemUnavailable(listing_id, listing.name)

    raise InsufficientStock(
        listing_id,
        available=listing.quantity_available,
        requested=quantity,
        name=listing.name,
    )


async def release_stock(tx, listing_id, quantity: int) -> bool:
    restored = await tx.increment_listing_stock(listing_id, quantity)
    if not restored:
        logger.warning("STOCK_RELEASE_SKIPPED listing=%s quantity=%s", listing_id, quantity)
    return restored
