from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    LISTING_NOT_FOUND = "listing_not_found"
    CART_NOT_FOUND = "cart_not_found"
    EMPTY_CART = "empty_cart"
    ITEM_UNAVAILABLE = "item_unavailable"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INSUFFICIENT_POINTS = "insufficient_points"
    PAYMENT_VERIFICATION_FAILED = "payment_verification_failed"
    INVALID_PAYMENT_REFERENCE = "invalid_payment_reference"
    PAYMENT_AMOUNT_MISMATCH = "payment_amount_mismatch"
    GATEWAY_ERROR = "gateway_error"
    TRANSACTION_TIMEOUT = "transaction_timeout"
    TRANSACTION_CONFLICT = "transaction_conflict"
    INTERNAL = "internal"


# Single place where error tags become HTTP statuses.
_HTTP_STATUS = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.LISTING_NOT_FOUND: 400,
    ErrorCode.CART_NOT_FOUND: 400,
    ErrorCode.EMPTY_CART: 400,
    ErrorCode.ITEM_UNAVAILABLE: 400,
    ErrorCode.INSUFFICIENT_STOCK: 400,
    ErrorCode.INSUFFICIENT_POINTS: 400,
    ErrorCode.PAYMENT_VERIFICATION_FAILED: 400,
    ErrorCode.INVALID_PAYMENT_REFERENCE: 400,
    ErrorCode.PAYMENT_AMOUNT_MISMATCH: 400,
    ErrorCode.GATEWAY_ERROR: 502,
    ErrorCode.TRANSACTION_TIMEOUT: 500,
    ErrorCode.TRANSACTION_CONFLICT: 409,
    ErrorCode.INTERNAL: 500,
}


def http_status_for(code: ErrorCode) -> int:
    return _HTTP_STATUS.get(code, 500)


class CheckoutError(Exception):
    """Base class for domain failures raised by the checkout core."""

    code = ErrorCode.INTERNAL
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return http_status_for(self.code)


class ValidationError(CheckoutError):
    """Raised when a request field is missing or malformed."""
    code = ErrorCode.VALIDATION


class NotFound(CheckoutError):
    code = ErrorCode.NOT_FOUND


class ListingNotFound(NotFound):
    code = ErrorCode.LISTING_NOT_FOUND

    def __init__(self, listing_id):
        self.listing_id = listing_id
        super().__init__(f"Listing with ID {listing_id} not found")


class CartNotFound(NotFound):
    code = ErrorCode.CART_NOT_FOUND


class EmptyCart(CheckoutError):
    code = ErrorCode.EMPTY_CART


class ItemUnavailable(CheckoutError):
    """Raised when a listing is not active."""
    code = ErrorCode.ITEM_UNAVAILABLE

    def __init__(self, listing_id, name: str | None = None):
        self.listing_id = listing_id
        super().__init__(f'Listing "{name or listing_id}" is not available for purchase')


class InsufficientStock(CheckoutError):
    """Raised when a listing cannot cover the requested quantity."""
    code = ErrorCode.INSUFFICIENT_STOCK

    def __init__(self, listing_id, available: int, requested: int, name: str | None = None):
        self.listing_id = listing_id
        self.available = available
        self.requested = requested
        super().__init__(
            f'Not enough stock for "{name or listing_id}". '
            f"Only {available} units available, {requested} requested."
        )


class InsufficientPoints(CheckoutError):
    code = ErrorCode.INSUFFICIENT_POINTS


class PaymentVerificationFailed(CheckoutError):
    code = ErrorCode.PAYMENT_VERIFICATION_FAILED


class InvalidPaymentReference(CheckoutError):
    code = ErrorCode.INVALID_PAYMENT_REFERENCE


class PaymentAmountMismatch(CheckoutError):
    code = ErrorCode.PAYMENT_AMOUNT_MISMATCH

    def __init__(self, paid, expected):
        self.paid = paid
        self.expected = expected
        super().__init__(f"Paid amount {paid} does not match order total {expected}")


class GatewayError(CheckoutError):
    code = ErrorCode.GATEWAY_ERROR


class TransactionTimeout(CheckoutError):
    code = ErrorCode.TRANSACTION_TIMEOUT
    retryable = True


class Internal(CheckoutError):
    code = ErrorCode.INTERNAL


class TransactionConflict(CheckoutError):
    """Raised when a transaction lost a write conflict or is no longer open."""
    code = ErrorCode.TRANSACTION_CONFLICT
    retryable = True
