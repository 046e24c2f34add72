"""
Admin Screenshot Preview

Quarantined payment screenshots are only reachable through this route.
Once released they live under the public root and are served from there.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse, RedirectResponse

from storefront.auth import SessionUser, verify_admin
from storefront.errors import StorageFailure, ValidationError
from storefront.routers.deps import get_pipeline
from storefront.services.quarantine import screenshot_content_type

router = APIRouter(tags=["admin-screenshots"])

PREVIEW_HEADERS = {
    "Content-Disposition": "inline",
    "Cache-Control": "private, no-store, no-cache",
    "X-Content-Type-Options": "nosniff",
}


@router.get("/screenshot")
async def admin_screenshot_preview(
    path: str = Query(""),
    admin: SessionUser = Depends(verify_admin),
):
    """Serve a quarantined screenshot, or redirect to its public URL once released."""
    relative_path = path.strip().lstrip("/")
    if not relative_path:
        raise ValidationError("Path parameter required")

    quarantine = get_pipeline().quarantine
    try:
        full_path = quarantine.full_path(relative_path)
        quarantined = quarantine.is_quarantined(relative_path)
    except StorageFailure:
        raise ValidationError("Invalid path")

    if not quarantined:
        return RedirectResponse(f"/{relative_path}", status_code=307)

    return FileResponse(
        full_path,
        media_type=screenshot_content_type(relative_path),
        headers=PREVIEW_HEADERS,
    )
