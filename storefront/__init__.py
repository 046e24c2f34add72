"""
Storefront Core Package

Order fulfillment and trust pipeline for a screenshot-paid digital goods store:
- services: persistence (Supabase repositories), fraud engine, coupon ledger,
  inventory allocation, quarantine storage and external adapters
- orders: order pipeline, admin transitions, VPN provisioning, expiry sweep
- routers: FastAPI endpoints (checkout, admin, cron, Telegram webhook)
- bot: Telegram operator-channel callbacks

Note: Imports are lazy to keep module loading cheap in serverless environments.
"""

__all__ = [
    "get_database",
    "get_pipeline",
]


def __getattr__(name):
    """Lazy attribute access for clean serverless loading."""
    if name == "get_database":
        from storefront.services.database import get_database
        return get_database
    elif name == "get_pipeline":
        from storefront.routers.deps import get_pipeline
        return get_pipeline
    raise AttributeError(f"module 'storefront' has no attribute '{name}'")
