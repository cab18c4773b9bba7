"""
Report file storage.

Uploaded weekly report documents are validated (size, extension) and
written under a deterministic, sanitized name:

    {registration_id}_week{n}_{YYYYmmddHHMMSS}_{sanitized original name}

The store returns the public URL that is recorded on the report.
"""
import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from internhub.config import settings
from internhub.errors import ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BlobStore(ABC):
    """Where report documents live. Returns a URL for each stored blob."""

    @abstractmethod
    async def put(self, name: str, data: bytes) -> str:
        ...


class LocalBlobStore(BlobStore):
    def __init__(self, root: str = settings.REPORT_STORAGE_DIR, base_url: str = settings.REPORT_BASE_URL):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _write(self, name: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.root / name, "wb") as f:
            f.write(data)

    async def put(self, name: str, data: bytes) -> str:
        await asyncio.to_thread(self._write, name, data)
        return f"{self.base_url}/{name}"


def sanitize_filename(filename: str) -> str:
    """Strip directories and anything outside [A-Za-z0-9._-]."""
    base = os.path.basename((filename or "").replace("\\", "/"))
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "report"


def validate_report_file(filename: str, size: int) -> str:
    """Returns the lower-cased extension, or raises ValidationError."""
    if size == 0:
        raise ValidationError("File cannot be empty", field="file")
    if size > settings.MAX_REPORT_FILE_BYTES:
        raise ValidationError(
            f"File exceeds {settings.MAX_REPORT_FILE_BYTES // (1024 * 1024)}MB limit",
            field="file",
            details={"size": size, "max_size": settings.MAX_REPORT_FILE_BYTES}
        )
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in settings.ALLOWED_REPORT_EXTENSIONS:
        raise ValidationError(
            f"Only {', '.join(settings.ALLOWED_REPORT_EXTENSIONS)} files are allowed",
            field="file",
            details={"extension": extension}
        )
    return extension


def report_blob_name(registration_id: int, week_number: int, filename: str, now: datetime) -> str:
    return f"{registration_id}_week{week_number}_{now.strftime('%Y%m%d%H%M%S')}_{sanitize_filename(filename)}"


async def store_report_file(
    blob_store: BlobStore,
    registration_id: int,
    week_number: int,
    filename: str,
    data: bytes,
    now: datetime
) -> str:
    validate_report_file(filename, len(data))
    name = report_blob_name(registration_id, week_number, filename, now)
    url = await blob_store.put(name, data)
    logger.info(f"Stored report file {name} ({len(data)} bytes)")
    return url


_default_store = None


def get_blob_store() -> BlobStore:
    """FastAPI dependency; tests override it."""
    global _default_store
    if _default_store is None:
        _default_store = LocalBlobStore()
    return _default_store
