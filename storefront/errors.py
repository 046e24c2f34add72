"""
Error taxonomy for the fulfillment pipeline.

Centralized error messages avoid string duplication; exception classes carry the
HTTP status the routers translate them into.

    ValidationError          400  malformed/missing input, rejected before side effects
    NotFound                 404  unknown product/coupon/order/plan/server
    Conflict                 409  stock exhausted, coupon limits, provisioning guard
    ExternalServiceFailure   502  VPN panel (OCR and bot failures are absorbed)
    StorageFailure           500  quarantine I/O
"""

# Order errors
ERROR_ORDER_NOT_FOUND = "Order not found"
ERROR_VPN_ORDER_NOT_FOUND = "VPN order not found"
ERROR_INVALID_TRANSITION = "Invalid order status transition"
ERROR_STATUS_CHANGED = "Order status changed concurrently, reload and retry"
ERROR_REJECT_REASON_REQUIRED = "Reject reason is required when rejecting an order"
ERROR_BULK_INVALID_ACTION = "Invalid bulk action"
ERROR_BULK_EMPTY = "No orders selected"
ERROR_BULK_TOO_MANY = "Maximum 50 orders per bulk action"
ERROR_BULK_REJECT_REASON_REQUIRED = "Reject reason is required for bulk rejection"

# Checkout errors
ERROR_PRODUCT_NOT_FOUND = "Product not found"
ERROR_INSUFFICIENT_STOCK = "Not enough stock to fulfill this order"
ERROR_INVALID_PAYMENT_METHOD = "Invalid payment method"
ERROR_INVALID_QUANTITY = "Invalid quantity"
ERROR_SCREENSHOT_REQUIRED = "Payment screenshot is required"
ERROR_EMPTY_CART = "Cart is empty"
ERROR_CART_TOO_LARGE = "Cart cannot have more than 20 items"

# VPN errors
ERROR_VPN_PLAN_NOT_FOUND = "Invalid VPN plan"
ERROR_VPN_SERVER_NOT_FOUND = "Invalid or unavailable VPN server"
ERROR_VPN_PROTOCOL_UNSUPPORTED = "Protocol not available on this server"
ERROR_VPN_ALREADY_PROVISIONED = "Order already provisioned"
ERROR_VPN_PROVISION_IN_PROGRESS = "Provisioning already in progress for this order"
ERROR_VPN_PROVISION_FAILED = "VPN key provisioning failed. Check server connectivity."
ERROR_VPN_NO_ACTIVE_KEY = "No active VPN key to revoke"
ERROR_VPN_REVOKE_FAILED = "Failed to revoke key from panel"

# Coupon errors
ERROR_COUPON_NOT_FOUND = "Invalid coupon code"
ERROR_COUPON_NOT_YET_VALID = "This coupon is not yet active"
ERROR_COUPON_EXPIRED = "This coupon has expired"
ERROR_COUPON_CATEGORY = "This coupon does not apply to this product category"
ERROR_COUPON_USAGE_LIMIT = "This coupon has reached its usage limit"
ERROR_COUPON_PER_USER_LIMIT = "You have already used this coupon"
ERROR_COUPON_RECORD_FAILED = "Coupon usage could not be recorded, please try again"
ERROR_COUPON_PREVIEW_INPUT = "Coupon code and order amount are required"

# Storage errors
ERROR_QUARANTINE_WRITE = "Failed to store payment screenshot"


class StorefrontError(Exception):
    """Base class for every error the pipeline raises on purpose."""

    status_code = 500
    code = "error"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class ValidationError(StorefrontError):
    status_code = 400
    code = "validation_error"


class NotFound(StorefrontError):
    status_code = 404
    code = "not_found"


class Conflict(StorefrontError):
    status_code = 409
    code = "conflict"


class ExternalServiceFailure(StorefrontError):
    """An external collaborator (VPN panel, OCR, bot) failed or timed out."""

    status_code = 502
    code = "external_service_failure"

    def __init__(self, message: str | None = None, service: str = "external"):
        self.service = service
        super().__init__(message)


class StorageFailure(StorefrontError):
    status_code = 500
    code = "storage_failure"


class InsufficientStock(Conflict):
    code = "insufficient_stock"

    def __init__(self, message: str | None = None, available: int | None = None):
        self.available = available
        super().__init__(message or ERROR_INSUFFICIENT_STOCK)


# ==================== COUPONS ====================

class CouponNotFound(NotFound):
    code = "coupon_not_found"


class CouponNotYetValid(ValidationError):
    code = "coupon_not_yet_valid"


class CouponExpired(ValidationError):
    code = "coupon_expired"


class CouponCategoryMismatch(ValidationError):
    code = "coupon_category_mismatch"


class CouponBelowMinimum(ValidationError):
    code = "coupon_below_minimum"


class CouponUsageLimitReached(Conflict):
    code = "coupon_usage_limit_reached"


class CouponPerUserLimitReached(Conflict):
    code = "coupon_per_user_limit_reached"


COUPON_ERRORS = (
    CouponNotFound,
    CouponNotYetValid,
    CouponExpired,
    CouponCategoryMismatch,
    CouponBelowMinimum,
    CouponUsageLimitReached,
    CouponPerUserLimitReached,
)
