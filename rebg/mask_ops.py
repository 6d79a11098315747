from __future__ import annotations

import numpy as np
from PIL import Image, ImageFilter


def _morph_mask(mask: np.ndarray, steps: int) -> np.ndarray:
    """Grow (steps > 0) or shrink (steps < 0) a boolean mask by 3x3 steps."""
    if steps == 0:
        return mask

    img = Image.fromarray(mask.astype(np.uint8) * 255)
    count = abs(int(steps))
    size_filter = ImageFilter.MaxFilter(3) if steps > 0 else ImageFilter.MinFilter(3)
    for _ in range(count):
        img = img.filter(size_filter)
    return np.array(img, dtype=np.uint8) > 127


def feather_alpha(alpha: np.ndarray, radius: float) -> np.ndarray:
    if radius <= 0:
        return alpha
    img = Image.fromarray(alpha).filter(ImageFilter.GaussianBlur(radius=float(radius)))
    return np.array(img, dtype=np.uint8)


def refine_alpha_mask(
    alpha: np.ndarray,
    remove_mask: np.ndarray,
    grow_shrink: int = 0,
    feather_radius: int = 0,
) -> np.ndarray:
    """Clear alpha under remove_mask (optionally grown/shrunk), then feather the cut edge."""
    if alpha.dtype != np.uint8 or alpha.ndim != 2:
        raise ValueError("alpha must be HxW uint8")
    if remove_mask.ndim != 2 or remove_mask.shape != alpha.shape:
        raise ValueError("remove_mask must match alpha shape")

    rm = _morph_mask(remove_mask.astype(bool), int(grow_shrink))

    out = alpha.copy()
    out[rm] = 0
    if np.any(rm):
        out = feather_alpha(out, feather_radius)
    return out
