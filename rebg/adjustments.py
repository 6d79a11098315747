from __future__ import annotations

import numpy as np
from PIL import Image, ImageFilter

from rebg.state import Adjustments


def apply_adjustments_rgba(
    rgba: np.ndarray,
    brightness: float = 1.0,
    contrast: float = 1.0,
    saturation: float = 1.0,
) -> np.ndarray:
    if rgba.dtype != np.uint8 or rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError("rgba must be HxWx4 uint8")

    out = rgba.astype(np.float32)
    rgb = out[..., :3]

    # Brightness
    rgb *= float(max(0.1, brightness))

    # Contrast around mid-gray
    c = float(max(0.1, contrast))
    rgb = (rgb - 127.5) * c + 127.5

    # Saturation
    s = float(max(0.0, saturation))
    if abs(s - 1.0) > 1e-6:
        luma = rgb[..., 0] * 0.299 + rgb[..., 1] * 0.587 + rgb[..., 2] * 0.114
        rgb = luma[..., None] + (rgb - luma[..., None]) * s

    out[..., :3] = np.clip(np.round(rgb), 0.0, 255.0)
    return out.astype(np.uint8)


def apply_adjustments(img: Image.Image, adjustments: Adjustments) -> Image.Image:
    """Brightness, contrast, saturation, then blur. Returns a new RGBA image."""
    img = img.convert("RGBA")
    if adjustments.is_neutral:
        return img

    if (adjustments.brightness, adjustments.contrast, adjustments.saturation) != (1.0, 1.0, 1.0):
        arr = apply_adjustments_rgba(
            np.array(img, dtype=np.uint8),
            brightness=adjustments.brightness,
            contrast=adjustments.contrast,
            saturation=adjustments.saturation,
        )
        img = Image.fromarray(arr)

    if adjustments.blur > 0.0:
        img = img.filter(ImageFilter.GaussianBlur(radius=float(adjustments.blur)))
    return img
