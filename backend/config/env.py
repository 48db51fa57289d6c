import os
from dotenv import load_dotenv

load_dotenv()

# =====================================================
# ENV
# =====================================================
ENV = os.getenv("ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =====================================================
# DATABASE
# =====================================================
MONGODB_URI = os.getenv("MONGODB_URI") or os.getenv("MONGO_URI")

# =====================================================
# JWT
# =====================================================
JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# =====================================================
# PAYMENT GATEWAY
# =====================================================
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
RAZORPAY_CURRENCY = os.getenv("RAZORPAY_CURRENCY", "INR")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 15))

# =====================================================
# CHECKOUT TRANSACTIONS
# =====================================================
CART_CHECKOUT_TX_TIMEOUT_SECONDS = float(os.getenv("CART_CHECKOUT_TX_TIMEOUT_SECONDS", 15))
CART_CHECKOUT_TX_MAX_WAIT_SECONDS = float(os.getenv("CART_CHECKOUT_TX_MAX_WAIT_SECONDS", 5))
PLACE_ORDER_TX_TIMEOUT_SECONDS = float(os.getenv("PLACE_ORDER_TX_TIMEOUT_SECONDS", 5))
PLACE_ORDER_TX_MAX_WAIT_SECONDS = float(os.getenv("PLACE_ORDER_TX_MAX_WAIT_SECONDS", 2))
METRICS_TX_TIMEOUT_SECONDS = float(os.getenv("METRICS_TX_TIMEOUT_SECONDS", 5))
# Whole-transaction attempts when a checkout loses a write conflict.
SETTLEMENT_MAX_ATTEMPTS = int(os.getenv("SETTLEMENT_MAX_ATTEMPTS", 3))

# Status stamped on orders created by a verified checkout.
NEW_ORDER_STATUS = os.getenv("NEW_ORDER_STATUS", "pending")

# =====================================================
# CORS
# =====================================================
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")


def validate_production_env() -> None:
    if (ENV or "").lower() != "production":
        return

    required = {
        "JWT_SECRET": JWT_SECRET,
        "RAZORPAY_KEY_ID": RAZORPAY_KEY_ID,
        "RAZORPAY_KEY_SECRET": RAZORPAY_KEY_SECRET,
        "RAZORPAY_WEBHOOK_SECRET": RAZORPAY_WEBHOOK_SECRET,
        "MONGODB_URI": MONGODB_URI,
    }

    invalid = []
    for key, value in required.items():
        val = (value or "").strip()
        if not val or val.startswith("CHANGE_THIS"):
            invalid.append(key)

    if invalid:
        raise RuntimeError(f"Production env misconfigured. Invalid keys: {', '.join(sorted(invalid))}")
