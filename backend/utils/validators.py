import re

from utils.errors import ValidationError

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_SHIPPING_FIELDS = ("address", "city", "state", "zip")


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()

    if not EMAIL_REGEX.match(email):
        raise ValidationError("Invalid email format")

    return email


def require_shipping_fields(shipping) -> None:
    if shipping is None:
        raise ValidationError("Shipping details are required")

    for name in REQUIRED_SHIPPING_FIELDS:
        value = getattr(shipping, name, None)
        if not value or not str(value).strip():
            raise ValidationError(f"Shipping {name} is required")


def require_guest_info(guest_info) -> str:
    if not guest_info or not guest_info.email or not guest_info.full_name:
        raise ValidationError("Guest information (email, fullName) is required for guest orders")
    return normalize_email(guest_info.email)


def require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer")
    return quantity
