"""Base repository with shared Supabase client."""

from datetime import UTC, datetime

from supabase._async.client import AsyncClient


def utc_now() -> datetime:
    return datetime.now(UTC)


def iso(value: datetime | None = None) -> str:
    """Timestamp as stored in every *At column (UTC ISO-8601)."""
    return (value or utc_now()).isoformat()


class BaseRepository:
    """Base class for all repositories.

    All methods should use await with the client.
    """

    table: str = ""

    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    def query(self):
        return self.client.table(self.table)
