"""Order response shapes for the customer and admin surfaces."""

import time
from typing import Any

from storefront.orders.vpn import is_provisioned
from storefront.services.models import Order, VpnProvisionStatus
from storefront.services.money import to_float

# Trust signals never leave the admin surface
CUSTOMER_HIDDEN_FIELDS = {
    "screenshotHash",
    "ocrExtractedData",
    "ocrVerified",
    "fraudFlags",
    "requiresManualReview",
    "reviewReason",
    "verificationChecklist",
    "adminNote",
    "vpnProvisionClaimedAt",
}


def _dump(order: Order) -> dict[str, Any]:
    data = order.model_dump(by_alias=True, mode="json")
    data["totalAmount"] = to_float(order.total_amount)
    data["discountAmount"] = to_float(order.discount_amount)
    return data


def serialize_order_for_customer(order: Order) -> dict[str, Any]:
    data = _dump(order)
    for field in CUSTOMER_HIDDEN_FIELDS:
        data.pop(field, None)
    if order.status.value != "completed":
        # Keys are only shown once delivered
        data["deliveredKeys"] = []
        data.pop("vpnKey", None)
    return data


def serialize_order_for_admin(order: Order) -> dict[str, Any]:
    return _dump(order)


def serialize_vpn_status(order: Order, now_ms: int | None = None) -> dict[str, Any]:
    """Provisioning state of a customer's VPN order; key details once delivered."""
    data: dict[str, Any] = {
        "orderId": order.id,
        "status": order.status.value,
        "vpnProvisionStatus": (order.vpn_provision_status or VpnProvisionStatus.PENDING).value,
        "vpnPlan": order.vpn_plan.model_dump(by_alias=True, mode="json") if order.vpn_plan else None,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
    }
    if order.status.value == "completed" and is_provisioned(order):
        key = order.vpn_key
        data["vpnKey"] = {
            "subLink": key.sub_link,
            "configLink": key.config_link,
            "protocol": key.protocol,
            "expiryTime": key.expiry_time,
            "provisionedAt": key.provisioned_at.isoformat() if key.provisioned_at else None,
        }
        if key.expiry_time:
            now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
            remaining = key.expiry_time - now_ms
            data["remainingMs"] = max(0, remaining)
            data["expired"] = remaining <= 0
    return data
