"""
Authentication dependencies for the HTTP surface.

Bearer web sessions (in-memory) for customers and operators, and the
CRON_SECRET check for scheduled jobs. Session issuance lives with the
login flow; only creation and verification are kept here.
"""

import os
import secrets
from datetime import UTC, datetime, timedelta

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

SESSION_TTL = timedelta(days=7)

_web_sessions: dict[str, dict] = {}


class SessionUser(BaseModel):
    user_id: str
    name: str = ""
    is_admin: bool = False


def create_web_session(user_id: str, name: str = "", is_admin: bool = False) -> str:
    """Create a new web session and return the token."""
    session_token = secrets.token_urlsafe(32)
    now = datetime.now(UTC)
    _web_sessions[session_token] = {
        "user_id": str(user_id),
        "name": name,
        "is_admin": is_admin,
        "created_at": now.isoformat(),
        "expires_at": (now + SESSION_TTL).isoformat(),
    }
    return session_token


def verify_web_session_token(token: str) -> dict | None:
    """Verify a web session token and return session data."""
    session = _web_sessions.get(token)
    if not session:
        return None

    expires_at = datetime.fromisoformat(session["expires_at"])
    if datetime.now(UTC) > expires_at:
        del _web_sessions[token]
        return None

    return session


async def verify_user(
    authorization: str = Header(None, alias="Authorization"),
) -> SessionUser:
    """Authorization: Bearer <session_token>"""
    if not authorization:
        raise HTTPException(status_code=401, detail="No authorization header")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    session = verify_web_session_token(parts[1])
    if not session:
        raise HTTPException(status_code=401, detail="Session expired or invalid")

    return SessionUser(
        user_id=session["user_id"],
        name=session.get("name", ""),
        is_admin=session.get("is_admin", False),
    )


async def verify_admin(user: SessionUser = Depends(verify_user)) -> SessionUser:
    """Session must belong to an operator."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def verify_cron_secret(
    authorization: str = Header(None, alias="Authorization"),
):
    """
    Verify CRON_SECRET for scheduled jobs.
    """
    cron_secret = os.environ.get("CRON_SECRET", "")

    if not cron_secret:
        raise HTTPException(status_code=500, detail="CRON_SECRET not configured")

    if authorization != f"Bearer {cron_secret}":
        raise HTTPException(status_code=401, detail="Invalid CRON_SECRET")

    return True
