# backend/config/constants.py

from decimal import Decimal

# -----------------------------
# MONEY
# -----------------------------

CENT = Decimal("0.01")
PAYMENT_AMOUNT_TOLERANCE = Decimal("0.01")   # gateway paid vs computed total

# -----------------------------
# LOYALTY POINTS
# -----------------------------

POINTS_EARN_RATE = Decimal("0.02")          # 2% of the order total
POINT_VALUE = Decimal("1")                  # 1 point = 1 currency unit

# -----------------------------
# IDENTITY
# -----------------------------

GUEST_PASSWORD_MARKER = "GUEST_USER"

# Line items whose listing has no owner are grouped under this seller.
PLATFORM_SELLER_ID = "platform"

# -----------------------------
# STATUSES
# -----------------------------

LISTING_ACTIVE = "active"

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"

ORDER_PAYMENT_FAILED = "payment_failed"

# Orders in these states count as a past purchase from a seller.
CUSTOMER_ORDER_STATUSES = {"pending", "confirmed", "processing", "shipped", "delivered"}

DEFAULT_SHIPPING_METHOD = "standard"
PAYMENT_METHOD_RAZORPAY = "razorpay"
