"""Fraud Detection Engine - duplicate payment and suspicious pattern heuristics.

Read-only: the engine queries past orders and never writes.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal

from storefront.config import PipelineSettings
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.models import STRICT_FRAUD_FLAGS, FraudFlag
from storefront.services.money import format_kyat, to_float
from storefront.services.repositories import OrderRepository

logger = get_logger(__name__)

FRAUD_CHECK_ERROR_REASON = "Fraud check error - manual review required"


@dataclass
class FraudResult:
    flags: list[str] = field(default_factory=list)
    requires_manual_review: bool = False
    review_reason: str | None = None

    @property
    def has_strict_flag(self) -> bool:
        return any(flag in STRICT_FRAUD_FLAGS for flag in self.flags)


class FraudDetectionEngine:
    """Scores a checkout against the order history."""

    def __init__(self, orders: OrderRepository):
        self.orders = orders

    async def _duplicate_txid(self, transaction_id: str | None, payment_method: str, settings: PipelineSettings) -> bool:
        if not transaction_id or not transaction_id.strip():
            return False
        rows = await self.orders.find_by_transaction_id(
            transaction_id.strip(), payment_method, settings.duplicate_txid_lookback_days
        )
        return bool(rows)

    async def _duplicate_screenshot(self, screenshot_hash: str | None) -> bool:
        if not screenshot_hash:
            return False
        return bool(await self.orders.find_by_screenshot_hash(screenshot_hash))

    async def _amount_time_suspicious(self, user_id: str, amount: Decimal, settings: PipelineSettings) -> bool:
        rows = await self.orders.find_recent_same_amount(
            user_id, to_float(amount), settings.amount_time_window_minutes
        )
        return bool(rows)

    async def _first_time_user(self, user_id: str) -> bool:
        return await self.orders.count_non_rejected_by_user(user_id) == 0

    async def detect(
        self,
        user_id: str,
        transaction_id: str | None,
        screenshot_hash: str | None,
        amount: Decimal,
        payment_method: str,
        settings: PipelineSettings,
    ) -> FraudResult:
        """
        Run every check and collect flags.

        Any flag forces manual review. A failed lookup yields no flags but
        still forces manual review.
        """
        try:
            dup_txid, dup_screenshot, suspicious_amount, first_time = await asyncio.gather(
                self._duplicate_txid(transaction_id, payment_method, settings),
                self._duplicate_screenshot(screenshot_hash),
                self._amount_time_suspicious(user_id, amount, settings),
                self._first_time_user(user_id),
            )
        except Exception as e:
            logger.error(f"Fraud detection error for user {sanitize_id_for_logging(user_id)}: {e}")
            return FraudResult(
                flags=[],
                requires_manual_review=True,
                review_reason=FRAUD_CHECK_ERROR_REASON,
            )

        flags: list[str] = []
        reasons: list[str] = []

        if dup_txid:
            flags.append(FraudFlag.DUPLICATE_TXID.value)
            reasons.append("Duplicate transaction ID detected")
        if dup_screenshot:
            flags.append(FraudFlag.DUPLICATE_SCREENSHOT.value)
            reasons.append("Duplicate screenshot detected")
        if suspicious_amount:
            flags.append(FraudFlag.AMOUNT_TIME_SUSPICIOUS.value)
            reasons.append("Same amount in short time window")
        if first_time:
            flags.append(FraudFlag.FIRST_TIME_USER.value)
            reasons.append("First-time user")
        if amount > settings.high_amount_threshold:
            flags.append(FraudFlag.HIGH_AMOUNT.value)
            reasons.append(f"High amount order (> {format_kyat(settings.high_amount_threshold)})")

        if flags:
            logger.info(f"Fraud flags for user {sanitize_id_for_logging(user_id)}: {', '.join(flags)}")

        return FraudResult(
            flags=flags,
            requires_manual_review=bool(flags),
            review_reason="; ".join(reasons) if reasons else None,
        )
