"""
Cron job endpoints for scheduled tasks.

Called by the platform scheduler with CRON_SECRET authentication.
"""
from fastapi import APIRouter, Depends

from storefront.auth import verify_cron_secret
from storefront.routers.deps import get_pipeline

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/expire-orders")
async def cron_expire_orders(_: bool = Depends(verify_cron_secret)):
    """Reject pending/verifying orders past their payment window."""
    expired = await get_pipeline().sweep_expired()
    return {"expired": expired}
