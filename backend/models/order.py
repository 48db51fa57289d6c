from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GuestInfo(CamelModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone_number: Optional[str] = None


class ShippingDetails(CamelModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    carrier: Optional[str] = None
    shipping_method: Optional[str] = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    estimated_delivery: Optional[str] = None
    shipping_notes: dict = Field(default_factory=dict)


class PaymentDetails(CamelModel):
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    signature: Optional[str] = None


class OrderItemIn(CamelModel):
    listing_id: Optional[str] = None
    quantity: Optional[int] = None


class CartItemIn(CamelModel):
    id: Optional[str] = None
    listing_id: Optional[str] = None
    quantity: Optional[int] = None


class SelectedItem(CamelModel):
    cart_item_id: str
    quantity: Optional[int] = None


class CheckoutCommon(CamelModel):
    guest_info: Optional[GuestInfo] = None
    shipping_details: Optional[ShippingDetails] = None
    payment_details: Optional[PaymentDetails] = None
    coupon_code: Optional[str] = None
    points_to_use: int = Field(default=0, ge=0)
    order_notes: Optional[str] = None


class PlaceOrderRequest(CheckoutCommon):
    order_items: List[OrderItemIn] = Field(default_factory=list)


class CartCheckoutRequest(CheckoutCommon):
    cart_id: Optional[str] = None
    cart_items: List[CartItemIn] = Field(default_factory=list)
    selected_items: List[SelectedItem] = Field(default_factory=list)


class PaymentIntentRequest(CamelModel):
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None
    receipt: str = Field(..., min_length=1, max_length=40)
