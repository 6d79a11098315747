"""
Built-in filter and effect library.

Every transform takes an image and returns a new RGBA image of the same size,
leaving alpha untouched unless noted. `apply_filter` / `apply_effect` return
None when the input cannot be processed; the compositor treats that as a
no-op.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

import numpy as np
from PIL import Image, ImageFilter, ImageOps

from rebg.state import EffectType, FilterType


Transform = Callable[[Image.Image], Image.Image]


def _split(img: Image.Image) -> Tuple[np.ndarray, np.ndarray]:
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    return arr[..., :3].astype(np.float32), arr[..., 3].copy()


def _merge(rgb: np.ndarray, alpha: np.ndarray) -> Image.Image:
    out = np.empty(alpha.shape + (4,), dtype=np.uint8)
    out[..., :3] = np.clip(rgb, 0.0, 255.0).astype(np.uint8)
    out[..., 3] = alpha
    return Image.fromarray(out)


def _luma(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.299 + rgb[..., 1] * 0.587 + rgb[..., 2] * 0.114


def _saturate(rgb: np.ndarray, amount: float) -> np.ndarray:
    y = _luma(rgb)[..., None]
    return y + (rgb - y) * amount


def _contrast(rgb: np.ndarray, amount: float) -> np.ndarray:
    return (rgb - 127.5) * amount + 127.5


def _gray(rgb: np.ndarray) -> np.ndarray:
    return np.repeat(_luma(rgb)[..., None], 3, axis=2)


def _tint(rgb: np.ndarray, r: float, g: float, b: float) -> np.ndarray:
    return rgb * np.array([r, g, b], dtype=np.float32)


def _rgb_filter(fn: Callable[[np.ndarray], np.ndarray]) -> Transform:
    def run(img: Image.Image) -> Image.Image:
        rgb, alpha = _split(img)
        return _merge(fn(rgb), alpha)

    run.__name__ = fn.__name__
    return run


# ---- Filters ----

def _mono(rgb: np.ndarray) -> np.ndarray:
    return _gray(rgb)


def _tonal(rgb: np.ndarray) -> np.ndarray:
    g = _gray(rgb)
    lo, hi = float(g.min()), float(g.max())
    if hi - lo < 1e-3:
        return g
    return (g - lo) * (255.0 / (hi - lo))


def _noir(rgb: np.ndarray) -> np.ndarray:
    return _contrast(_gray(rgb) * 0.95, 1.6)


def _fade(rgb: np.ndarray) -> np.ndarray:
    return _saturate(rgb, 0.7) * 0.85 + 30.0


def _chrome(rgb: np.ndarray) -> np.ndarray:
    return _contrast(_saturate(rgb, 1.35), 1.15)


def _process(rgb: np.ndarray) -> np.ndarray:
    return _contrast(_tint(rgb, 0.9, 1.0, 1.12), 1.1)


def _transfer(rgb: np.ndarray) -> np.ndarray:
    return _tint(rgb, 1.1, 1.02, 0.85)


def _instant(rgb: np.ndarray) -> np.ndarray:
    return _fade(_tint(rgb, 1.08, 1.0, 0.9))


def _sepia(rgb: np.ndarray) -> np.ndarray:
    m = np.array(
        [
            [0.393, 0.769, 0.189],
            [0.349, 0.686, 0.168],
            [0.272, 0.534, 0.131],
        ],
        dtype=np.float32,
    )
    return rgb @ m.T


FILTERS: Dict[FilterType, Transform] = {
    FilterType.MONO: _rgb_filter(_mono),
    FilterType.TONAL: _rgb_filter(_tonal),
    FilterType.NOIR: _rgb_filter(_noir),
    FilterType.FADE: _rgb_filter(_fade),
    FilterType.CHROME: _rgb_filter(_chrome),
    FilterType.PROCESS: _rgb_filter(_process),
    FilterType.TRANSFER: _rgb_filter(_transfer),
    FilterType.INSTANT: _rgb_filter(_instant),
    FilterType.SEPIA: _rgb_filter(_sepia),
}


# ---- Effects ----

def _vignette(img: Image.Image) -> Image.Image:
    rgb, alpha = _split(img)
    h, w = alpha.shape
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float32)
    nx = (xx - (w - 1) * 0.5) / max(w * 0.5, 1.0)
    ny = (yy - (h - 1) * 0.5) / max(h * 0.5, 1.0)
    d = np.sqrt(nx * nx + ny * ny) / np.sqrt(2.0)
    falloff = np.clip((d - 0.45) / 0.55, 0.0, 1.0)
    return _merge(rgb * (1.0 - 0.75 * falloff)[..., None], alpha)


def _bloom(img: Image.Image) -> Image.Image:
    rgb, alpha = _split(img)
    radius = max(2.0, max(img.size) * 0.02)
    glow, _ = _split(img.convert("RGBA").filter(ImageFilter.GaussianBlur(radius=radius)))
    base = rgb / 255.0
    glow = glow / 255.0
    screen = 1.0 - (1.0 - base) * (1.0 - glow * 0.6)
    return _merge(screen * 255.0, alpha)


def _noir_effect(img: Image.Image) -> Image.Image:
    rgb, alpha = _split(img)
    return _merge(_contrast(_gray(rgb), 1.5), alpha)


def _crystal(img: Image.Image) -> Image.Image:
    img = img.convert("RGBA")
    w, h = img.size
    block = max(2, min(w, h) // 40)
    small = img.resize((max(1, w // block), max(1, h // block)), resample=Image.Resampling.BOX)
    return small.resize((w, h), resample=Image.Resampling.NEAREST)


def _blur(img: Image.Image) -> Image.Image:
    radius = max(2.0, max(img.size) * 0.01)
    return img.convert("RGBA").filter(ImageFilter.GaussianBlur(radius=radius))


def _edges(img: Image.Image) -> Image.Image:
    img = img.convert("RGBA")
    edges = img.convert("RGB").filter(ImageFilter.FIND_EDGES).convert("RGBA")
    edges.putalpha(img.getchannel("A"))
    return edges


def _posterize(img: Image.Image) -> Image.Image:
    img = img.convert("RGBA")
    out = ImageOps.posterize(img.convert("RGB"), 3).convert("RGBA")
    out.putalpha(img.getchannel("A"))
    return out


def _grain(img: Image.Image) -> Image.Image:
    rgb, alpha = _split(img)
    # Fixed seed: composites must be reproducible from parameters.
    rng = np.random.default_rng(0x5EED)
    noise = rng.normal(0.0, 18.0, size=alpha.shape).astype(np.float32)
    return _merge(rgb + noise[..., None], alpha)


EFFECTS: Dict[EffectType, Transform] = {
    EffectType.VIGNETTE: _vignette,
    EffectType.BLOOM: _bloom,
    EffectType.NOIR: _noir_effect,
    EffectType.CRYSTAL: _crystal,
    EffectType.BLUR: _blur,
    EffectType.EDGES: _edges,
    EffectType.POSTERIZE: _posterize,
    EffectType.GRAIN: _grain,
}


def _usable(img: Optional[Image.Image]) -> bool:
    return img is not None and img.width > 0 and img.height > 0


def apply_filter(kind: FilterType, img: Image.Image) -> Optional[Image.Image]:
    if kind is FilterType.NONE:
        return img
    if not _usable(img):
        return None
    return FILTERS[kind](img)


def apply_effect(kind: EffectType, img: Image.Image) -> Optional[Image.Image]:
    if kind is EffectType.NONE:
        return img
    if not _usable(img):
        return None
    return EFFECTS[kind](img)
