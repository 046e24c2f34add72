"""Pipeline configuration.

Every pipeline call receives an explicit PipelineSettings. Defaults come from the
environment (STOREFRONT_* variables); the operator-editable `site_settings` row
overrides the subset exposed in the admin panel (see SettingsRepository.load).
"""
import os
from decimal import Decimal

from pydantic import BaseModel, Field

from storefront.services.money import to_decimal


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


PAYMENT_WINDOW_MIN_MINUTES = 5
PAYMENT_WINDOW_MAX_MINUTES = 120


def clamp_payment_window(minutes: int) -> int:
    return min(PAYMENT_WINDOW_MAX_MINUTES, max(PAYMENT_WINDOW_MIN_MINUTES, minutes))


class PipelineSettings(BaseModel):
    """Decision thresholds and timeouts for the fulfillment pipeline."""

    # OCR gate
    ocr_enabled: bool = True
    auto_complete_min_confidence: float = 80
    ocr_verified_min_confidence: float = 60
    amount_tolerance_ratio: Decimal = Decimal("0.02")

    # Payment window / expiry sweep
    payment_window_minutes: int = Field(default=30, ge=PAYMENT_WINDOW_MIN_MINUTES, le=PAYMENT_WINDOW_MAX_MINUTES)
    auto_expire_enabled: bool = True

    # Fraud heuristics
    high_amount_threshold: Decimal = Decimal("50000")
    duplicate_txid_lookback_days: int = 30
    amount_time_window_minutes: int = 5

    # External call budgets (seconds)
    ocr_timeout_seconds: float = 30.0
    notify_timeout_seconds: float = 10.0
    vpn_timeout_seconds: float = 60.0
    provision_claim_ttl_seconds: int = 120

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from STOREFRONT_* environment variables."""
        return cls(
            ocr_enabled=_env_bool("STOREFRONT_OCR_ENABLED", True),
            payment_window_minutes=clamp_payment_window(_env_int("STOREFRONT_PAYMENT_WINDOW_MINUTES", 30)),
            high_amount_threshold=to_decimal(os.environ.get("STOREFRONT_HIGH_AMOUNT_THRESHOLD", "50000")),
            auto_expire_enabled=_env_bool("STOREFRONT_AUTO_EXPIRE_ENABLED", True),
            duplicate_txid_lookback_days=_env_int("STOREFRONT_TXID_LOOKBACK_DAYS", 30),
            ocr_timeout_seconds=float(_env_int("STOREFRONT_OCR_TIMEOUT_SECONDS", 30)),
            vpn_timeout_seconds=float(_env_int("STOREFRONT_VPN_TIMEOUT_SECONDS", 60)),
        )

    def with_site_overrides(self, row: dict | None) -> "PipelineSettings":
        """Overlay the admin-editable site_settings row (camelCase columns)."""
        if not row:
            return self
        overrides = {}
        if row.get("ocrEnabled") is not None:
            overrides["ocr_enabled"] = bool(row["ocrEnabled"])
        if row.get("paymentWindowMinutes"):
            overrides["payment_window_minutes"] = clamp_payment_window(int(row["paymentWindowMinutes"]))
        if row.get("highAmountThreshold"):
            overrides["high_amount_threshold"] = to_decimal(row["highAmountThreshold"])
        if row.get("autoExpireEnabled") is not None:
            overrides["auto_expire_enabled"] = bool(row["autoExpireEnabled"])
        if not overrides:
            return self
        return self.model_copy(update=overrides)


# Filesystem roots for the quarantine store
QUARANTINE_ROOT = os.environ.get("QUARANTINE_ROOT", os.path.join(os.getcwd(), "quarantine"))
PUBLIC_ROOT = os.environ.get("PUBLIC_ROOT", os.path.join(os.getcwd(), "public"))
