"""
Logo file storage under the configured uploads directory.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from src.config import get_config, UploadsConfig

logger = logging.getLogger(__name__)


class UploadError(Exception):
    """Base exception for upload handling."""
    pass


class InvalidUploadError(UploadError):
    """Uploaded file is not an image."""
    pass


class UploadTooLargeError(UploadError):
    """Uploaded file exceeds the size ceiling."""
    pass


def validate_logo(content_type: Optional[str], size: int, config: Optional[UploadsConfig] = None) -> None:
    """
    Edge checks for a logo upload.

    Raises:
        InvalidUploadError: If the MIME type is not image/*
        UploadTooLargeError: If size exceeds max_logo_bytes
    """
    config = config or get_config().uploads
    if not content_type or not content_type.startswith("image/"):
        raise InvalidUploadError("Logo must be an image")
    if size > config.max_logo_bytes:
        raise UploadTooLargeError(
            f"Logo must be at most {config.max_logo_bytes} bytes (got {size})"
        )


def save_logo(data: bytes, filename: Optional[str], config: Optional[UploadsConfig] = None) -> str:
    """
    Write a logo to the uploads directory.

    Returns the public reference, e.g. '/uploads/logo-1700000000000.png'.
    """
    config = config or get_config().uploads
    suffix = Path(filename or "").suffix.lower()
    stamp = int(time.time() * 1000)

    directory = config.path
    directory.mkdir(parents=True, exist_ok=True)
    while (directory / f"logo-{stamp}{suffix}").exists():
        stamp += 1
    name = f"logo-{stamp}{suffix}"
    (directory / name).write_bytes(data)

    logger.info(f"Stored logo {name} ({len(data)} bytes)")
    return f"{config.url_prefix.rstrip('/')}/{name}"


def resolve_upload(filename: str, config: Optional[UploadsConfig] = None) -> Optional[Path]:
    """Map a bare filename to a path inside the uploads directory, or None."""
    config = config or get_config().uploads
    if not filename or filename == ".." or Path(filename).name != filename:
        return None
    return config.path / filename


def remove_logo(logo_url: Optional[str], config: Optional[UploadsConfig] = None) -> None:
    """
    Best-effort removal of a previously stored logo.

    Never raises; references outside the uploads directory are ignored.
    """
    if not logo_url:
        return
    config = config or get_config().uploads

    prefix = config.url_prefix.rstrip("/") + "/"
    if not logo_url.startswith(prefix):
        logger.debug(f"Not removing external logo reference {logo_url}")
        return

    path = resolve_upload(logo_url[len(prefix):], config)
    if path is None:
        logger.warning(f"Refusing to remove suspicious logo reference {logo_url}")
        return

    try:
        path.unlink()
        logger.info(f"Removed old logo {path.name}")
    except FileNotFoundError:
        logger.warning(f"Old logo {path.name} already gone")
    except OSError as e:
        logger.warning(f"Failed to remove old logo {path.name}: {e}")
