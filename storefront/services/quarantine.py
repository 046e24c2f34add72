"""
Quarantine Asset Store - payment screenshots held outside the public root.

Flow: upload -> quarantine dir -> admin verify -> move to public (or delete).
Release and delete are idempotent: a missing source is logged and reported
as False, which is what followers see when orders share one screenshot.
"""

import asyncio
import hashlib
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

from storefront.config import PUBLIC_ROOT, QUARANTINE_ROOT
from storefront.errors import ERROR_QUARANTINE_WRITE, StorageFailure
from storefront.logging import get_logger, sanitize_string_for_logging

logger = get_logger(__name__)

PAYMENT_UPLOAD_DIR = "uploads/payments"
ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "webp")
CONTENT_TYPES = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp"}


def compute_screenshot_hash(content: bytes) -> str:
    """SHA-256 of the raw upload, used for duplicate screenshot detection."""
    return hashlib.sha256(content).hexdigest()


def screenshot_content_type(relative_path: str) -> str:
    ext = relative_path.rsplit(".", 1)[-1].lower() if "." in relative_path else ""
    return CONTENT_TYPES.get(ext, "application/octet-stream")


def new_screenshot_path(filename: str | None) -> str:
    """Quarantine-relative path for a fresh upload: uploads/payments/pay-<uuid>.<ext>."""
    ext = "jpg"
    if filename and "." in filename:
        candidate = filename.rsplit(".", 1)[-1].lower()
        if candidate in ALLOWED_EXTENSIONS:
            ext = candidate
    return f"{PAYMENT_UPLOAD_DIR}/pay-{uuid.uuid4()}.{ext}"


@dataclass
class QuarantinedFile:
    relative_path: str
    public_path: str  # URL the file will have once released
    full_path: str


class QuarantineStore:
    """Filesystem-backed store; paths are always relative to the two roots."""

    def __init__(self, quarantine_root: str | os.PathLike = QUARANTINE_ROOT,
                 public_root: str | os.PathLike = PUBLIC_ROOT):
        self.quarantine_root = Path(quarantine_root)
        self.public_root = Path(public_root)

    def _resolve(self, root: Path, relative_path: str) -> Path:
        target = (root / relative_path.lstrip("/")).resolve()
        if not target.is_relative_to(root.resolve()):
            raise StorageFailure(f"Path escapes storage root: {relative_path}")
        return target

    def full_path(self, relative_path: str) -> str:
        """Absolute quarantine path (admin preview, OCR)."""
        return str(self._resolve(self.quarantine_root, relative_path))

    async def save(self, content: bytes, relative_path: str) -> QuarantinedFile:
        """
        Write an upload into quarantine.

        Raises:
            StorageFailure: the file could not be written
        """
        target = self._resolve(self.quarantine_root, relative_path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error(f"Failed to quarantine {sanitize_string_for_logging(relative_path, 100)}: {e}")
            raise StorageFailure(ERROR_QUARANTINE_WRITE) from e

        logger.info(f"File quarantined: {relative_path} ({len(content)} bytes)")
        return QuarantinedFile(
            relative_path=relative_path,
            public_path=f"/{relative_path.lstrip('/')}",
            full_path=str(target),
        )

    async def release(self, relative_path: str) -> bool:
        """Move a quarantined file into the public root. False if it is not in quarantine."""
        source = self._resolve(self.quarantine_root, relative_path)
        dest = self._resolve(self.public_root, relative_path)

        def _move() -> None:
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, dest)

        try:
            await asyncio.to_thread(_move)
        except FileNotFoundError:
            logger.warning(f"Quarantine file not found (may already be released): {relative_path}")
            return False
        except OSError as e:
            logger.error(f"Failed to release {relative_path} from quarantine: {e}")
            return False

        logger.info(f"File released from quarantine: {relative_path}")
        return True

    async def delete(self, relative_path: str) -> bool:
        """Irrecoverably remove a quarantined file. False if it is already gone."""
        source = self._resolve(self.quarantine_root, relative_path)
        try:
            await asyncio.to_thread(source.unlink)
        except FileNotFoundError:
            logger.warning(f"Quarantine file not found for deletion: {relative_path}")
            return False
        except OSError as e:
            logger.error(f"Failed to delete quarantined {relative_path}: {e}")
            return False

        logger.info(f"Quarantine file deleted: {relative_path}")
        return True

    def is_quarantined(self, relative_path: str) -> bool:
        return self._resolve(self.quarantine_root, relative_path).exists()

    def is_public(self, relative_path: str) -> bool:
        return self._resolve(self.public_root, relative_path).exists()
