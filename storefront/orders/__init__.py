"""
Order lifecycle: checkout pipeline, admin transitions, VPN provisioning.
"""

from .pipeline import OrderPipeline, ProductSelection, Screenshot, VpnSelection
from .status_service import ALLOWED_TRANSITIONS, OrderStatusService, TransitionResult, can_transition
from .vpn import ProvisionOutcome, VpnProvisioner, is_provisioned

__all__ = [
    "ALLOWED_TRANSITIONS",
    "OrderPipeline",
    "OrderStatusService",
    "ProductSelection",
    "ProvisionOutcome",
    "Screenshot",
    "TransitionResult",
    "VpnProvisioner",
    "VpnSelection",
    "can_transition",
    "is_provisioned",
]
