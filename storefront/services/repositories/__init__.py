"""
Repository Pattern for Database Operations

- OrderRepository: orders, fraud lookups, status and provisioning CAS
- ProductRepository: product catalog, derived stock counter
- StockRepository: product key records (sold flag CAS)
- CouponRepository: coupon lookup, usage CAS
- UserRepository: user lookups
- VpnServerRepository: 3x-UI panel records
- SettingsRepository: site_settings overrides
"""
from .coupon_repo import CouponRepository
from .order_repo import OrderRepository, format_order_number
from .product_repo import ProductRepository
from .settings_repo import SettingsRepository
from .stock_repo import StockRepository
from .user_repo import UserRepository
from .vpn_server_repo import VpnServerRepository

__all__ = [
    "CouponRepository",
    "OrderRepository",
    "ProductRepository",
    "SettingsRepository",
    "StockRepository",
    "UserRepository",
    "VpnServerRepository",
    "format_order_number",
]
