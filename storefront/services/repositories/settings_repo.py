"""Settings Repository - the single admin-editable `site_settings` row."""
from storefront.config import PipelineSettings
from storefront.logging import get_logger

from .base import BaseRepository

logger = get_logger(__name__)


class SettingsRepository(BaseRepository):
    table = "site_settings"

    async def load(self, base: PipelineSettings | None = None) -> PipelineSettings:
        """Environment defaults overlaid with the site_settings row.

        A missing or unreadable row falls back to the defaults.
        """
        base = base or PipelineSettings.from_env()
        try:
            result = await self.query().select("*").limit(1).execute()
        except Exception as e:
            logger.warning(f"Failed to load site settings, using defaults: {e}")
            return base
        row = result.data[0] if result.data else None
        return base.with_site_overrides(row)
