"""
Admin Orders Router

Order review endpoints for the operator panel. Listing runs the expiry
sweep first so stale orders never show up as actionable.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from storefront.auth import SessionUser, verify_admin
from storefront.orders.serializer import serialize_order_for_admin
from storefront.routers.deps import get_pipeline
from storefront.services.models import VerificationChecklist

from ..models import BulkOrderActionRequest, UpdateOrderStatusRequest, VpnActionRequest

router = APIRouter(tags=["admin-orders"])


@router.get("/orders")
async def admin_get_orders(
    status: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    admin: SessionUser = Depends(verify_admin),
):
    """List orders, newest first, after expiring overdue ones."""
    pipeline = get_pipeline()
    expired = await pipeline.sweep_expired()

    orders = await pipeline.db.orders.list_orders(
        status=status,
        order_type=type,
        limit=max(1, min(limit, 200)),
        offset=max(0, offset),
    )
    return {
        "orders": [serialize_order_for_admin(order) for order in orders],
        "expired": expired,
    }


@router.patch("/orders")
async def admin_update_order_status(
    request: UpdateOrderStatusRequest,
    admin: SessionUser = Depends(verify_admin),
):
    """Move an order to a new status (complete / reject / refund)."""
    checklist = None
    if request.verification_checklist is not None:
        checklist = VerificationChecklist(**request.verification_checklist.model_dump())

    pipeline = get_pipeline()
    result = await pipeline.admin_transition(
        request.order_id,
        request.status,
        admin.user_id,
        admin_note=request.admin_note,
        reject_reason=request.reject_reason,
        checklist=checklist,
    )
    return {
        "success": True,
        "message": result.message,
        "order": serialize_order_for_admin(result.order),
    }


@router.put("/orders")
async def admin_vpn_action(
    request: VpnActionRequest,
    admin: SessionUser = Depends(verify_admin),
):
    """VPN key actions: retry_provision or revoke_key."""
    pipeline = get_pipeline()
    result = await pipeline.admin_vpn_action(request.order_id, request.action, admin.user_id)
    return {
        "success": True,
        "message": result.message,
        "order": serialize_order_for_admin(result.order),
    }


@router.post("/orders/bulk")
async def admin_bulk_order_action(
    request: BulkOrderActionRequest,
    admin: SessionUser = Depends(verify_admin),
):
    """bulk_approve or bulk_reject up to 50 open orders; results are per order."""
    checklist = None
    if request.verification_checklist is not None:
        checklist = VerificationChecklist(**request.verification_checklist.model_dump())

    pipeline = get_pipeline()
    result = await pipeline.bulk_transition(
        request.order_ids,
        request.action,
        admin.user_id,
        reject_reason=request.reject_reason,
        checklist=checklist,
    )
    return {
        "success": True,
        "data": {
            "action": result.action,
            "successCount": result.success_count,
            "failCount": result.fail_count,
            "totalOrders": result.total_orders,
            "results": [
                {
                    "orderId": item.order_id,
                    "success": item.success,
                    "orderNumber": item.order_number,
                    **({"error": item.error} if item.error else {}),
                }
                for item in result.results
            ],
        },
        "message": f"{result.success_count}/{result.total_orders} orders processed successfully",
    }
