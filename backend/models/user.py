from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime
from enum import Enum


class UserType(str, Enum):
    CUSTOMER = "customer"
    GUEST = "guest"
    SELLER = "seller"


class UserInDB(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    password_hash: Optional[str] = None
    user_type: UserType = UserType.CUSTOMER

    # loyalty ledger
    points_balance: int = 0

    email_verified: bool = False
    phone_verified: bool = False

    created_at: datetime
