"""Domain services built on the repositories."""
from .coupons import CouponLedger, CouponQuote, compute_discount
from .fraud import FRAUD_CHECK_ERROR_REASON, FraudDetectionEngine, FraudResult
from .inventory import InventoryAllocator

__all__ = [
    "CouponLedger",
    "CouponQuote",
    "FRAUD_CHECK_ERROR_REASON",
    "FraudDetectionEngine",
    "FraudResult",
    "InventoryAllocator",
    "compute_discount",
]
