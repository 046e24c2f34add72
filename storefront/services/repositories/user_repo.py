"""User Repository - read-only user lookups for captions and provisioning."""
from storefront.services.models import User

from .base import BaseRepository


class UserRepository(BaseRepository):
    """User database operations."""

    table = "users"

    async def get_by_id(self, user_id: str) -> User | None:
        result = await self.query().select("id, name, email").eq("id", user_id).execute()
        return User(**result.data[0]) if result.data else None
