"""
API Pydantic Models

Request bodies for the admin and coupon endpoints. Checkout endpoints take multipart
forms because the screenshot travels with them.
"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== ADMIN MODELS ====================

class VerificationChecklistRequest(_CamelRequest):
    amount_verified: bool = False
    time_verified: bool = False
    account_verified: bool = False
    txid_verified: bool = False
    payer_verified: bool = False


class UpdateOrderStatusRequest(_CamelRequest):
    order_id: str
    status: str
    admin_note: Optional[str] = None
    reject_reason: Optional[str] = None
    verification_checklist: Optional[VerificationChecklistRequest] = None


class VpnActionRequest(_CamelRequest):
    order_id: str
    action: str


class BulkOrderActionRequest(_CamelRequest):
    action: str
    order_ids: list[str]
    reject_reason: Optional[str] = None
    verification_checklist: Optional[VerificationChecklistRequest] = None


# ==================== COUPON MODELS ====================

class CouponPreviewRequest(_CamelRequest):
    code: str
    amount: Decimal
    category: Optional[str] = None


# ==================== CART MODELS ====================

class CartLineRequest(_CamelRequest):
    product_id: str
    quantity: int = 1
