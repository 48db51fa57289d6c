import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from config.constants import LISTING_ACTIVE
from database import get_store
from utils.errors import InsufficientStock, ItemUnavailable, ListingNotFound, NotFound
from utils.security import require_user_id

router = APIRouter(prefix="/cart", tags=["Cart"])


class CartAddItem(BaseModel):
    listing_id: str = Field(..., alias="listingId")
    quantity: int = Field(..., gt=0)


class CartUpdateItem(BaseModel):
    quantity: int = Field(..., gt=0)


async def _require_purchasable(store, listing_id: str, quantity: int):
    listing = (await store.get_listings([listing_id])).get(listing_id)
    if not listing:
        raise ListingNotFound(listing_id)

    if listing.status != LISTING_ACTIVE:
        raise ItemUnavailable(listing_id, listing.name)

    if quantity > listing.quantity_available:
        raise InsufficientStock(
            listing_id,
            available=listing.quantity_available,
            requested=quantity,
            name=listing.name,
        )
    return listing


@router.get("")
async def get_cart(
    user_id=Depends(require_user_id),
    store=Depends(get_store),
):
    cart = await store.get_active_cart(user_id)
    if not cart:
        return {"success": True, "data": {"cartId": None, "count": 0, "items": [], "subtotal": 0}}

    listings = await store.get_listings([i["listing_id"] for i in cart["items"]])
    items = []
    subtotal = 0

    for item in cart["items"]:
        listing = listings.get(item["listing_id"])
        if not listing:
            continue

        line_total = listing.price * item["quantity"]
        subtotal += line_total

        items.append({
            "id": item["id"],
            "listingId": listing.id,
            "name": listing.name,
            "quantity": item["quantity"],
            "unitPrice": listing.price,
            "lineTotal": line_total,
            "stock": listing.quantity_available,
            "sellerId": listing.seller_id,
        })

    return {
        "success": True,
        "data": {
            "cartId": cart["id"],
            "count": len(items),
            "items": items,
            "subtotal": subtotal,
        },
    }


@router.post("/add")
async def add_to_cart(
    data: CartAddItem,
    user_id=Depends(require_user_id),
    store=Depends(get_store),
):
    await _require_purchasable(store, data.listing_id, data.quantity)

    cart = await store.get_or_create_active_cart(user_id)
    item = await store.add_cart_item(cart["id"], data.listing_id, data.quantity)

    return {
        "success": True,
        "message": "Item added to cart successfully",
        "data": {"cartId": cart["id"], "item": item},
    }


@router.patch("/item/{cart_item_id}")
async def update_cart_item(
    cart_item_id: str,
    data: CartUpdateItem,
    user_id=Depends(require_user_id),
    store=Depends(get_store),
):
    cart = await store.get_active_cart(user_id)
    current = next((i for i in (cart or {}).get("items", []) if i["id"] == cart_item_id), None)
    if not current:
        raise NotFound("Item not found in cart")

    await _require_purchasable(store, current["listing_id"], data.quantity)

    item = await store.update_cart_item(cart["id"], cart_item_id, data.quantity)
    if not item:
        raise NotFound("Item not found in cart")

    return {"success": True, "message": "Cart item updated", "data": item}


@router.delete("/item/{cart_item_id}")
async def remove_cart_item(
    cart_item_id: str,
    user_id=Depends(require_user_id),
    store=Depends(get_store),
):
    cart = await store.get_active_cart(user_id)
    if not cart or not await store.remove_cart_item(cart["id"], cart_item_id):
        raise NotFound("Item not found in cart")

    return {"success": True, "message": "Item removed"}


@router.post("/guest/add")
async def add_to_cart_guest(
    data: CartAddItem,
    store=Depends(get_store),
):
    """
    Guest carts are kept client-side. The line is checked against the
    listing and echoed back as a preview; nothing is stored.
    """
    try:
        listing = await _require_purchasable(store, data.listing_id, data.quantity)
    except ListingNotFound:
        raise NotFound("Listing not found")

    return {
        "success": True,
        "message": "Item added to cart successfully",
        "data": {
            "id": str(uuid.uuid4()),
            "listingId": listing.id,
            "quantity": data.quantity,
            "listing": {
                "id": listing.id,
                "name": listing.name,
                "price": listing.price,
                "stock": listing.quantity_available,
                "sellerId": listing.seller_id,
            },
        },
    }
