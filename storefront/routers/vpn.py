"""VPN checkout router."""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from storefront.auth import SessionUser, verify_user
from storefront.orders.pipeline import VpnSelection
from storefront.orders.serializer import serialize_order_for_customer, serialize_vpn_status
from storefront.orders.vpn import DEFAULT_PROTOCOL
from storefront.routers.deps import get_pipeline
from storefront.services.vpn_plans import VPN_PLANS

from .orders import read_screenshot

router = APIRouter(prefix="/api/vpn", tags=["vpn"])


@router.get("/plans")
async def list_plans():
    return {
        "plans": [
            {
                "id": plan.id,
                "name": plan.name,
                "devices": plan.devices,
                "months": plan.months,
                "price": float(plan.price),
            }
            for plan in VPN_PLANS.values()
        ]
    }


@router.post("/orders")
async def create_vpn_order(
    server_id: str = Form(..., alias="serverId"),
    plan_id: str = Form(..., alias="planId"),
    payment_method: str = Form(..., alias="paymentMethod"),
    protocol: str = Form(DEFAULT_PROTOCOL),
    coupon_code: Optional[str] = Form(None, alias="couponCode"),
    transaction_id: Optional[str] = Form(None, alias="transactionId"),
    screenshot: Optional[UploadFile] = File(None),
    user: SessionUser = Depends(verify_user),
):
    """VPN plan checkout. Keys are issued when an operator approves."""
    pipeline = get_pipeline()
    order = await pipeline.create_order(
        user_id=user.user_id,
        selection=VpnSelection(server_id=server_id, plan_id=plan_id, protocol=protocol),
        payment_method=payment_method,
        screenshot=await read_screenshot(screenshot),
        coupon_code=coupon_code,
        transaction_id=transaction_id,
    )
    return {"success": True, "order": serialize_order_for_customer(order)}


@router.get("/status/{order_id}")
async def vpn_status(
    order_id: str,
    user: SessionUser = Depends(verify_user),
):
    """Provisioning state of one of the caller's VPN orders."""
    order = await get_pipeline().get_vpn_order(order_id, user.user_id)
    return {"success": True, "data": serialize_vpn_status(order)}
