"""
FastAPI routers: checkout, VPN checkout, coupons, admin, cron, Telegram webhook.
"""
from .admin import router as admin_router
from .coupons import router as coupons_router
from .cron import router as cron_router
from .orders import router as orders_router
from .telegram import router as telegram_router
from .vpn import router as vpn_router

__all__ = [
    "admin_router",
    "coupons_router",
    "cron_router",
    "orders_router",
    "telegram_router",
    "vpn_router",
]
