import logging
import os
import uuid
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "/app/data/uploads"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8001").rstrip("/")
STATIC_PREFIX = "/static"
_DOWNLOAD_TIMEOUT_SEC = 60

SUPPORTED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "application/pdf": "pdf",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "text/csv": "csv",
}


class StorageError(Exception):
    pass


def ensure_upload_dir() -> Path:
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    return UPLOAD_DIR


def is_supported_image_type(mime_type: str) -> bool:
    return (mime_type or "").lower() in SUPPORTED_IMAGE_TYPES


def is_pdf(mime_type: str) -> bool:
    return (mime_type or "").lower() == "application/pdf"


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get((mime_type or "").lower(), "bin")


def _safe_name(filename: str | None, mime_type: str) -> str:
    name = Path(filename or "").name.replace(" ", "_")
    return name or f"attachment.{extension_for(mime_type)}"


def save_attachment(filename: str | None, content: bytes, mime_type: str, folder: str = "proposals") -> str:
    """
    Store attachment bytes under UPLOAD_DIR/<folder>/<uuid>-<filename>.
    Returns the public URL (served by the /static mount).
    """
    unique_name = f"{uuid.uuid4()}-{_safe_name(filename, mime_type)}"
    target_dir = ensure_upload_dir() / folder
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with open(target_dir / unique_name, "wb") as f:
            f.write(content)
    except OSError as e:
        logger.error("Attachment upload failed for %s: %s", filename, e)
        raise StorageError(f"Failed to upload {filename}: {e}") from e
    url = f"{PUBLIC_BASE_URL}{STATIC_PREFIX}/{folder}/{unique_name}"
    logger.info("Attachment stored: %s -> %s", filename, url)
    return url


def _local_path(url: str) -> Path | None:
    """Map one of our own /static URLs back to the file under UPLOAD_DIR."""
    prefix = f"{PUBLIC_BASE_URL}{STATIC_PREFIX}/"
    if not url.startswith(prefix):
        return None
    relative = url[len(prefix):]
    path = (UPLOAD_DIR / relative).resolve()
    if UPLOAD_DIR.resolve() not in path.parents:
        return None
    return path


def fetch_attachment(url: str) -> bytes:
    """Read attachment bytes: local files directly, anything else over HTTP."""
    local = _local_path(url)
    if local is not None:
        try:
            return local.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to fetch attachment: {e}") from e
    try:
        response = httpx.get(url, timeout=_DOWNLOAD_TIMEOUT_SEC, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to fetch attachment: {e}") from e
    return response.content


def delete_attachment(url: str) -> None:
    local = _local_path(url)
    if local is None:
        return
    try:
        local.unlink(missing_ok=True)
        logger.info("Attachment deleted: %s", url)
    except OSError as e:
        raise StorageError(f"Failed to delete attachment: {e}") from e
