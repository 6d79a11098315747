from __future__ import annotations

import io
from pathlib import Path
from typing import Optional

from PIL import Image

from rebg.config import settings

_SUFFIX_FORMATS = {
    ".png": "PNG",
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
}


def load_image_rgba(path: str) -> Image.Image:
    with Image.open(path) as img:
        # Convert to RGBA for consistent alpha work
        return img.convert("RGBA")


def export_format(transparent: bool) -> str:
    # Lossless with alpha when the background is see-through
    return "PNG" if transparent else "JPEG"


def format_for_path(path: str) -> Optional[str]:
    return _SUFFIX_FORMATS.get(Path(path).suffix.lower())


def _prepare(img: Image.Image, fmt: str) -> Image.Image:
    if fmt == "JPEG":
        # JPEG has no alpha: flatten onto white
        flat = Image.new("RGB", img.size, (255, 255, 255))
        rgba = img.convert("RGBA")
        flat.paste(rgba, mask=rgba.getchannel("A"))
        return flat
    return img.convert("RGBA")


def encode_export(
    img: Image.Image,
    transparent: bool,
    fmt: Optional[str] = None,
    jpeg_quality: Optional[int] = None,
) -> bytes:
    fmt = fmt or export_format(transparent)
    buf = io.BytesIO()
    out = _prepare(img, fmt)
    if fmt == "JPEG":
        out.save(buf, format=fmt, quality=jpeg_quality or settings.jpeg_quality)
    else:
        out.save(buf, format=fmt)
    return buf.getvalue()


def save_export(
    path: str,
    img: Image.Image,
    transparent: bool,
    fmt: Optional[str] = None,
    jpeg_quality: Optional[int] = None,
) -> str:
    """Write the composite; the format follows the path suffix, else transparency. Returns it."""
    fmt = fmt or format_for_path(path) or export_format(transparent)
    Path(path).write_bytes(encode_export(img, transparent, fmt=fmt, jpeg_quality=jpeg_quality))
    return fmt
