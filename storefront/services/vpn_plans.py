"""VPN plan catalogue: 1-5 devices x 1/3/5/7/9/12 months, unlimited data."""
from decimal import Decimal

from storefront.services.models import VpnPlan

PLAN_MONTHS = (1, 3, 5, 7, 9, 12)
EXPIRY_DAYS = {1: 30, 3: 90, 5: 150, 7: 210, 9: 270, 12: 365}

# devices -> prices (MMK) in PLAN_MONTHS order
PLAN_PRICES: dict[int, tuple[int, ...]] = {
    1: (3000, 8000, 13000, 18000, 23000, 30000),
    2: (4000, 10000, 17000, 24000, 30000, 40000),
    3: (5000, 13000, 21000, 29000, 37000, 50000),
    4: (6000, 16000, 25000, 35000, 45000, 60000),
    5: (7000, 18000, 30000, 40000, 52000, 70000),
}


def build_plan_id(devices: int, months: int) -> str:
    return f"{devices}dev_{months}month"


def _plan_name(devices: int, months: int) -> str:
    device_label = "Device" if devices == 1 else "Devices"
    month_label = "Month" if months == 1 else "Months"
    return f"{devices} {device_label} - {months} {month_label}"


def _build_catalogue() -> dict[str, VpnPlan]:
    plans = {}
    for devices, prices in PLAN_PRICES.items():
        for months, price in zip(PLAN_MONTHS, prices):
            plan_id = build_plan_id(devices, months)
            plans[plan_id] = VpnPlan(
                id=plan_id,
                name=_plan_name(devices, months),
                devices=devices,
                months=months,
                expiry_days=EXPIRY_DAYS[months],
                data_limit_gb=0,
                price=Decimal(price),
            )
    return plans


VPN_PLANS: dict[str, VpnPlan] = _build_catalogue()


def get_plan(plan_id: str) -> VpnPlan | None:
    return VPN_PLANS.get(plan_id)
