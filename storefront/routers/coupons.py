"""Coupon preview for the checkout form. Usage is only recorded at checkout."""
from fastapi import APIRouter, Depends

from storefront.auth import SessionUser, verify_user
from storefront.routers.deps import get_pipeline
from storefront.services.money import to_float

from .models import CouponPreviewRequest

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


@router.post("/validate")
async def validate_coupon(
    request: CouponPreviewRequest,
    user: SessionUser = Depends(verify_user),
):
    quote = await get_pipeline().preview_coupon(request.code, user.user_id, request.amount, request.category)
    coupon = quote.coupon
    return {
        "success": True,
        "data": {
            "code": coupon.code,
            "discountType": coupon.discount_type,
            "discountValue": to_float(coupon.discount_value),
            "discountAmount": to_float(quote.discount_amount),
            "finalAmount": to_float(max(request.amount - quote.discount_amount, 0)),
        },
    }
