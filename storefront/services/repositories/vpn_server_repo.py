"""VPN Server Repository - 3x-UI panel records."""
from storefront.services.models import VpnServer

from .base import BaseRepository


class VpnServerRepository(BaseRepository):
    """VPN server database operations."""

    table = "vpn_servers"

    async def get_by_id(self, server_id: str) -> VpnServer | None:
        result = await self.query().select("*").eq("id", server_id).execute()
        return VpnServer(**result.data[0]) if result.data else None

    async def get_available(self, server_id: str) -> VpnServer | None:
        """Server that is enabled and online, else None."""
        result = (
            await self.query()
            .select("*")
            .eq("id", server_id)
            .eq("enabled", True)
            .eq("online", True)
            .execute()
        )
        return VpnServer(**result.data[0]) if result.data else None
