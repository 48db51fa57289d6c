from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class LineItem:
    """One listing priced for a checkout, snapshotted before settlement."""

    listing_id: str
    seller_id: str
    name: str
    quantity: int
    unit_price: Decimal
    listing_status: str
    quantity_available: int
    cart_item_id: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class SellerBucket:
    seller_id: str
    items: list[LineItem] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))


@dataclass
class SellerAllocation:
    seller_id: str
    items: list[LineItem]
    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    points_used: int
    final_amount: Decimal
    points_earned: int


@dataclass
class CheckoutPricing:
    allocations: list[SellerAllocation]
    subtotal: Decimal
    shipping_cost: Decimal
    coupon_discount: Decimal
    points_used: int
    total_discount: Decimal
    final_total: Decimal

    @property
    def points_earned(self) -> int:
        return sum(a.points_earned for a in self.allocations)

    @property
    def item_count(self) -> int:
        return sum(len(a.items) for a in self.allocations)


@dataclass
class SettledOrder:
    order_id: str
    seller_id: str
    status: str
    total_amount: Decimal
    points_earned: int
    item_count: int
    shipping_record_id: str
    payment_record_id: str
    estimated_delivery: str | None = None


@dataclass
class SettlementResult:
    orders: list[SettledOrder]
    points_delta: int
