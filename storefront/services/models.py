"""Database Models - Pydantic models for all persisted records.

Column names are camelCase (shared with the admin and customer surfaces);
Python attributes are snake_case via the alias generator.
"""
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from storefront.services.money import to_decimal as _to_decimal


class RecordModel(BaseModel):
    """Base for rows read from Supabase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ==================== ENUMS ====================

class OrderStatus(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REFUNDED = "refunded"


OPEN_STATUSES = (OrderStatus.PENDING.value, OrderStatus.VERIFYING.value)
# Orders in these states no longer count as evidence of a live payment
VOID_STATUSES = ["rejected", "refunded"]


class OrderType(str, Enum):
    PRODUCT = "product"
    VPN = "vpn"


class FraudFlag(str, Enum):
    DUPLICATE_TXID = "duplicate_txid"
    DUPLICATE_SCREENSHOT = "duplicate_screenshot"
    AMOUNT_TIME_SUSPICIOUS = "amount_time_suspicious"
    FIRST_TIME_USER = "first_time_user"
    HIGH_AMOUNT = "high_amount"


STRICT_FRAUD_FLAGS = frozenset({FraudFlag.DUPLICATE_TXID.value, FraudFlag.DUPLICATE_SCREENSHOT.value})


class VpnProvisionStatus(str, Enum):
    PENDING = "pending"
    PROVISIONED = "provisioned"
    FAILED = "failed"
    REVOKED = "revoked"


class PaymentMethod(str, Enum):
    KPAY = "kpay"
    WAVEMONEY = "wavemoney"
    UABPAY = "uabpay"
    AYAPAY = "ayapay"
    CBPAY = "cbpay"


class VpnAction(str, Enum):
    RETRY_PROVISION = "retry_provision"
    REVOKE_KEY = "revoke_key"


class BulkAction(str, Enum):
    BULK_APPROVE = "bulk_approve"
    BULK_REJECT = "bulk_reject"


# ==================== ORDER ====================

class OcrExtractedData(RecordModel):
    amount: Optional[str] = None
    transaction_id: Optional[str] = None
    confidence: float = 0


class DeliveredKey(RecordModel):
    serial_key: Optional[str] = None
    login_email: Optional[str] = None
    login_password: Optional[str] = None
    additional_info: Optional[str] = None


class VpnPlanData(RecordModel):
    server_id: str
    plan_id: str
    devices: int
    months: int
    protocol: str = "trojan"


class VpnKey(RecordModel):
    client_email: str
    client_uuid: str = Field(alias="clientUUID")
    sub_id: str
    sub_link: str
    config_link: str
    protocol: str
    expiry_time: int  # unix ms
    provisioned_at: Optional[datetime] = None


class VerificationChecklist(RecordModel):
    amount_verified: bool = False
    time_verified: bool = False
    account_verified: bool = False
    txid_verified: bool = False
    payer_verified: bool = False
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None


class Order(RecordModel):
    """Order model - one purchase attempt for a single product or VPN plan."""

    id: str
    order_number: Optional[str] = None
    user: str
    order_type: OrderType = OrderType.PRODUCT
    product: Optional[str] = None
    vpn_plan: Optional[VpnPlanData] = None
    quantity: int = 1
    total_amount: Decimal
    payment_method: str
    coupon_code: Optional[str] = None
    discount_amount: Decimal = Decimal("0")
    payment_screenshot: str
    screenshot_hash: Optional[str] = None
    transaction_id: Optional[str] = None
    ocr_extracted_data: Optional[OcrExtractedData] = None
    ocr_verified: bool = False
    fraud_flags: list[str] = []
    requires_manual_review: bool = False
    review_reason: Optional[str] = None
    verification_checklist: Optional[VerificationChecklist] = None
    delivered_keys: list[DeliveredKey] = []
    vpn_key: Optional[VpnKey] = None
    vpn_provision_status: Optional[VpnProvisionStatus] = None
    vpn_provision_claimed_at: Optional[datetime] = None
    status: OrderStatus = OrderStatus.PENDING
    payment_expires_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    admin_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("total_amount", "discount_amount", mode="before")
    @classmethod
    def convert_amount_to_decimal(cls, v):
        return _to_decimal(v)

    @field_validator("fraud_flags", "delivered_keys", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []

    @property
    def is_vpn(self) -> bool:
        return self.order_type == OrderType.VPN

    @property
    def screenshot_relative_path(self) -> str:
        return self.payment_screenshot.lstrip("/")


# ==================== CATALOG ====================

class ProductDetail(RecordModel):
    """Stock key record. `sold` is flipped only by the inventory allocator."""

    id: str
    product_id: str
    serial_key: Optional[str] = None
    login_email: Optional[str] = None
    login_password: Optional[str] = None
    additional_info: Optional[str] = None
    sold: bool = False
    sold_to: Optional[str] = None
    sold_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_delivered_key(self) -> DeliveredKey:
        return DeliveredKey(
            serial_key=self.serial_key,
            login_email=self.login_email,
            login_password=self.login_password,
            additional_info=self.additional_info,
        )


class Product(RecordModel):
    """Product model. `stock` is derived from unsold details."""

    id: str
    name: str
    category: str
    price: Decimal
    stock: int = 0
    active: bool = True

    @field_validator("price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v)


# ==================== COUPONS ====================

class CouponUsage(RecordModel):
    user_id: str
    order_id: Optional[str] = None
    used_at: Optional[datetime] = None


class Coupon(RecordModel):
    """Coupon model. `usedCount` doubles as the compare-and-swap version."""

    id: str
    code: str
    discount_type: str  # percentage | fixed
    discount_value: Decimal
    min_order_amount: Decimal = Decimal("0")
    max_discount_amount: Optional[Decimal] = None
    usage_limit: int = 0
    used_count: int = 0
    per_user_limit: int = 1
    used_by: list[CouponUsage] = []
    valid_from: datetime
    valid_until: datetime
    categories: list[str] = []
    active: bool = True

    @field_validator("discount_value", "min_order_amount", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return _to_decimal(v)

    @field_validator("max_discount_amount", mode="before")
    @classmethod
    def convert_optional_to_decimal(cls, v):
        return _to_decimal(v) if v is not None else None

    @field_validator("used_by", "categories", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []

    @field_validator("valid_from", "valid_until")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are stored as UTC
        return v if v.tzinfo else v.replace(tzinfo=UTC)

    def uses_by(self, user_id: str) -> int:
        return sum(1 for usage in self.used_by if usage.user_id == user_id)


# ==================== USERS & VPN ====================

class User(RecordModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Name, else the local part of the email."""
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return ""


class VpnServer(RecordModel):
    id: str
    name: str
    flag: str = ""
    url: str
    panel_path: str = ""
    domain: str
    sub_port: int = 2096
    trojan_port: Optional[int] = None
    protocol: str = "trojan"
    enabled_protocols: list[str] = ["trojan"]
    online: bool = True
    enabled: bool = True

    @property
    def panel_base_url(self) -> str:
        return f"{self.url.rstrip('/')}{self.panel_path}"


class VpnPlan(BaseModel):
    id: str
    name: str
    devices: int
    months: int
    expiry_days: int
    data_limit_gb: int = 0  # 0 = unlimited
    price: Decimal
