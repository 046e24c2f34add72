"""Coupon Ledger - coupon validation, pricing and usage recording."""

from dataclasses import dataclass
from decimal import Decimal

from storefront.errors import (
    ERROR_COUPON_CATEGORY,
    ERROR_COUPON_EXPIRED,
    ERROR_COUPON_NOT_FOUND,
    ERROR_COUPON_NOT_YET_VALID,
    ERROR_COUPON_PER_USER_LIMIT,
    ERROR_COUPON_USAGE_LIMIT,
    CouponBelowMinimum,
    CouponCategoryMismatch,
    CouponExpired,
    CouponNotFound,
    CouponNotYetValid,
    CouponPerUserLimitReached,
    CouponUsageLimitReached,
)
from storefront.logging import get_logger, sanitize_id_for_logging, sanitize_string_for_logging
from storefront.services.models import Coupon
from storefront.services.money import format_kyat, percent_of, to_decimal
from storefront.services.repositories import CouponRepository
from storefront.services.repositories.base import iso, utc_now

logger = get_logger(__name__)


@dataclass
class CouponQuote:
    coupon: Coupon
    discount_amount: Decimal


def compute_discount(coupon: Coupon, amount: Decimal) -> Decimal:
    """Discount for `amount`, clamped to [0, amount]."""
    if coupon.discount_type == "percentage":
        discount = percent_of(amount, coupon.discount_value)
        if coupon.max_discount_amount and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = to_decimal(coupon.discount_value)
    return max(Decimal("0"), min(discount, amount))


def _check_limits(coupon: Coupon, user_id: str) -> None:
    if coupon.usage_limit > 0 and coupon.used_count >= coupon.usage_limit:
        raise CouponUsageLimitReached(ERROR_COUPON_USAGE_LIMIT)
    if coupon.per_user_limit > 0 and coupon.uses_by(user_id) >= coupon.per_user_limit:
        raise CouponPerUserLimitReached(ERROR_COUPON_PER_USER_LIMIT)


class CouponLedger:
    """Coupon operations. Usage is only ever written through record_usage."""

    def __init__(self, repo: CouponRepository):
        self.repo = repo

    async def validate(
        self,
        code: str,
        user_id: str,
        amount: Decimal,
        category: str | None = None,
    ) -> CouponQuote:
        """
        Check a code against dates, limits, minimum amount and category.

        Raises:
            CouponNotFound, CouponNotYetValid, CouponExpired, CouponUsageLimitReached,
            CouponPerUserLimitReached, CouponBelowMinimum, CouponCategoryMismatch
        """
        coupon = await self.repo.get_by_code(code)
        if not coupon:
            raise CouponNotFound(ERROR_COUPON_NOT_FOUND)

        now = utc_now()
        if now < coupon.valid_from:
            raise CouponNotYetValid(ERROR_COUPON_NOT_YET_VALID)
        if now > coupon.valid_until:
            raise CouponExpired(ERROR_COUPON_EXPIRED)

        _check_limits(coupon, user_id)

        if amount < coupon.min_order_amount:
            raise CouponBelowMinimum(f"Minimum order amount is {format_kyat(coupon.min_order_amount)}")

        if coupon.categories and category and category not in coupon.categories:
            raise CouponCategoryMismatch(ERROR_COUPON_CATEGORY)

        return CouponQuote(coupon=coupon, discount_amount=compute_discount(coupon, amount))

    async def record_usage(self, coupon_id: str, user_id: str, order_id: str) -> Coupon:
        """
        Increment usedCount and append the redemption in one conditional write.

        Limits are re-checked against the row being swapped, so concurrent
        redemptions of the last use cannot both land. Recording the same
        order twice is a no-op.

        A lost swap means another redemption landed, so the loop always makes
        progress; it only ends in an error once a limit is actually reached.

        Raises:
            CouponNotFound, CouponUsageLimitReached, CouponPerUserLimitReached
        """
        lost_rounds = 0
        while True:
            coupon = await self.repo.get_by_id(coupon_id)
            if not coupon:
                raise CouponNotFound(ERROR_COUPON_NOT_FOUND)

            if any(usage.order_id == order_id for usage in coupon.used_by):
                return coupon

            _check_limits(coupon, user_id)

            usage = {"userId": user_id, "orderId": order_id, "usedAt": iso()}
            if await self.repo.cas_record_usage(coupon, usage):
                logger.info(
                    f"Coupon {sanitize_string_for_logging(coupon.code, 20)} used "
                    f"({coupon.used_count + 1}/{coupon.usage_limit or 'unlimited'}) "
                    f"by order {sanitize_id_for_logging(order_id)}"
                    + (f" after {lost_rounds} lost rounds" if lost_rounds else "")
                )
                return coupon
            lost_rounds += 1
