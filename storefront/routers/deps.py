"""
Shared Dependencies for Routers

Lazy-loaded singletons to optimize cold start.
Import heavy modules only when needed.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from storefront.orders.pipeline import OrderPipeline
    from storefront.services.integrations.xui import XuiPanelClient


# ==================== LAZY SINGLETONS ====================

_pipeline: Optional["OrderPipeline"] = None
_panel: Optional["XuiPanelClient"] = None


def get_pipeline() -> "OrderPipeline":
    """Get or create the OrderPipeline singleton (lazy loaded)"""
    global _pipeline, _panel
    if _pipeline is None:
        from storefront.bot import get_bot
        from storefront.config import PipelineSettings
        from storefront.orders.pipeline import OrderPipeline
        from storefront.orders.vpn import VpnProvisioner
        from storefront.services.database import get_database
        from storefront.services.integrations.ocr import TesseractOcrAdapter
        from storefront.services.integrations.telegram import NotificationDispatcher
        from storefront.services.integrations.xui import XuiPanelClient
        from storefront.services.quarantine import QuarantineStore

        db = get_database()
        _panel = XuiPanelClient(db.vpn_servers)
        _pipeline = OrderPipeline(
            db=db,
            quarantine=QuarantineStore(),
            ocr=TesseractOcrAdapter(),
            notifier=NotificationDispatcher(get_bot()),
            provisioner=VpnProvisioner(db, _panel),
            base_settings=PipelineSettings.from_env(),
        )
    return _pipeline


def set_pipeline(pipeline: Optional["OrderPipeline"]) -> None:
    """Replace the singleton (tests, alternative wiring)."""
    global _pipeline
    _pipeline = pipeline


# ==================== SHUTDOWN HELPERS ====================

async def shutdown_services():
    """Flush pending notifications and close panel http clients."""
    global _pipeline, _panel
    if _pipeline is not None:
        await _pipeline.drain()
    if _panel is not None:
        await _panel.close()
    _pipeline = None
    _panel = None
