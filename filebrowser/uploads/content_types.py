from __future__ import annotations

import logging
from pathlib import Path

from filebrowser.security.errors import FileOpsError

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
PDF_MIME = "application/pdf"
_PDF_MAGIC = b"%PDF-"


def _sniff_image(path: Path) -> str | None:
    try:
        from PIL import Image, UnidentifiedImageError
    except ModuleNotFoundError as exc:
        raise FileOpsError(
            "PILLOW_NOT_INSTALLED",
            "Pillow is required for image upload checks (pip install pillow).",
            http_status=503,
        ) from exc

    try:
        with Image.open(path) as im:
            fmt = im.format
            im.verify()
    except UnidentifiedImageError:
        return None
    except Exception as exc:
        logger.debug("image probe failed for %s: %s", path, exc)
        return None

    if fmt is None:
        return None
    return Image.MIME.get(fmt.upper())


def sniff_content_type(path: str | Path) -> str:
    """Detect the media type of a file from its content, not its name."""

    path = Path(path)
    with path.open("rb") as f:
        head = f.read(len(_PDF_MAGIC))
    if head == _PDF_MAGIC:
        return PDF_MIME
    if not head:
        return OCTET_STREAM

    return _sniff_image(path) or OCTET_STREAM


def normalize_content_type(value: str | None) -> str:
    if not value:
        return ""
    return value.split(";", 1)[0].strip().lower()
