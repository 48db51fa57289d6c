from fastapi import APIRouter, Depends
import asyncio

from config.env import RAZORPAY_CURRENCY, RAZORPAY_KEY_ID
from database import get_store
from models.order import CartCheckoutRequest, PaymentIntentRequest, PlaceOrderRequest
from utils.background import get_task_spawner
from utils.checkout import run_checkout
from utils.notifications import get_notification_sender
from utils.payments import get_payment_verifier
from utils.razorpay import amount_to_paise, create_razorpay_order, paise_to_amount
from utils.security import get_optional_user_id
from utils.serializers import serialize_place_order


router = APIRouter(
    prefix="/order",
    tags=["Orders"]
)


# ======================================================
# PAYMENT INTENT
# ======================================================

@router.post("/create-payment-intent")
async def create_payment_intent(data: PaymentIntentRequest):
    currency = (data.currency or RAZORPAY_CURRENCY).upper()
    amount_paise = amount_to_paise(data.amount)

    gateway_order = await asyncio.to_thread(
        create_razorpay_order,
        amount_paise=amount_paise,
        receipt=data.receipt,
        currency=currency,
    )

    return {
        "success": True,
        "data": {
            "gatewayOrderId": gateway_order.get("id"),
            "amount": paise_to_amount(gateway_order.get("amount", amount_paise)),
            "currency": gateway_order.get("currency", currency),
            "receipt": gateway_order.get("receipt", data.receipt),
            "keyId": RAZORPAY_KEY_ID,
        },
    }


# ======================================================
# PLACE ORDER (EXPLICIT ITEMS, GUEST OR BUYER)
# ======================================================

@router.post("/place-order", status_code=201)
async def place_order(
    data: PlaceOrderRequest,
    user_id=Depends(get_optional_user_id),
    store=Depends(get_store),
    verifier=Depends(get_payment_verifier),
    notifier=Depends(get_notification_sender),
    spawn=Depends(get_task_spawner),
):
    checkout = await run_checkout(
        store,
        verifier,
        data,
        user_id=user_id,
        notifier=notifier,
        spawn=spawn,
    )
    return {
        "success": True,
        "message": "Order placed successfully",
        "data": serialize_place_order(checkout),
    }


# ======================================================
# CART CHECKOUT (ONE ORDER PER SELLER)
# ======================================================

@router.post("/cart-checkout", status_code=201)
async def cart_checkout(
    data: CartCheckoutRequest,
    user_id=Depends(get_optional_user_id),
    store=Depends(get_store),
    verifier=Depends(get_payment_verifier),
    notifier=Depends(get_notification_sender),
    spawn=Depends(get_task_spawner),
):
    checkout = await run_checkout(
        store,
        verifier,
        data,
        user_id=user_id,
        notifier=notifier,
        spawn=spawn,
    )
    return {
        "success": True,
        "message": "Cart checkout completed successfully",
        "data": checkout,
    }
