from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class ListingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SOLD_OUT = "sold_out"
    DELETED = "deleted"


class ListingSnapshot(BaseModel):
    id: str
    seller_id: str | None = None
    name: str = ""

    price: Decimal
    quantity_available: int

    status: ListingStatus = ListingStatus.ACTIVE
