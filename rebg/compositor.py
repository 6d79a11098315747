from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image, ImageOps

from rebg.adjustments import apply_adjustments
from rebg.filters import apply_effect, apply_filter
from rebg.geometry import TargetFrame
from rebg.state import (
    Background,
    EditParameters,
    EffectType,
    FilterType,
    GradientBackground,
    ImageBackground,
    NoBackground,
    SolidBackground,
)

logger = logging.getLogger(__name__)

FilterFn = Callable[[FilterType, Image.Image], Optional[Image.Image]]
EffectFn = Callable[[EffectType, Image.Image], Optional[Image.Image]]

# Clockwise rotation as a lossless transpose.
_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def pil_to_np_rgba(img: Image.Image) -> np.ndarray:
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError("Expected RGBA image")
    return arr


def np_rgba_to_pil(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(arr)


def _blend_over(base: np.ndarray, top: np.ndarray) -> np.ndarray:
    base_rgb = base[..., :3].astype(np.float32) / 255.0
    top_rgb = top[..., :3].astype(np.float32) / 255.0
    base_a = base[..., 3:4].astype(np.float32) / 255.0
    top_a = top[..., 3:4].astype(np.float32) / 255.0

    out_a = top_a + base_a * (1.0 - top_a)
    out_premul = top_rgb * top_a + base_rgb * base_a * (1.0 - top_a)
    out_rgb = np.where(out_a > 0, out_premul / np.maximum(out_a, 1e-6), 0.0)

    out = np.empty_like(base)
    out[..., :3] = np.clip(np.round(out_rgb * 255.0), 0, 255).astype(np.uint8)
    out[..., 3] = np.clip(np.round(out_a[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return out


def _gradient_rgba(colors: Tuple[Tuple[int, int, int, int], ...], size: Tuple[int, int]) -> np.ndarray:
    w, h = size
    stops = np.array(colors, dtype=np.float32)
    if len(stops) == 1:
        column = np.repeat(stops, h, axis=0)
    else:
        t = np.linspace(0.0, 1.0, h, dtype=np.float32)
        positions = np.linspace(0.0, 1.0, len(stops), dtype=np.float32)
        column = np.stack([np.interp(t, positions, stops[:, c]) for c in range(4)], axis=1)
    arr = np.repeat(column[:, None, :], w, axis=1)
    return np.clip(np.round(arr), 0, 255).astype(np.uint8)


def render_background(background: Background, size: Tuple[int, int]) -> np.ndarray:
    """Background variant as an HxWx4 canvas."""
    w, h = size
    if isinstance(background, SolidBackground):
        base = np.empty((h, w, 4), dtype=np.uint8)
        base[...] = np.array(background.color, dtype=np.uint8)
        return base
    if isinstance(background, GradientBackground):
        return _gradient_rgba(background.colors, size)
    if isinstance(background, ImageBackground):
        # aspect-fill, centered
        filled = ImageOps.fit(background.image.convert("RGBA"), (w, h), method=Image.Resampling.LANCZOS)
        return pil_to_np_rgba(filled)
    if isinstance(background, NoBackground):
        return np.zeros((h, w, 4), dtype=np.uint8)
    raise TypeError(f"Unknown background variant: {background!r}")


def _run_stage(name: str, fn: Callable[[Image.Image], Optional[Image.Image]], img: Image.Image) -> Image.Image:
    try:
        out = fn(img)
    except Exception:
        logger.warning("%s stage failed, keeping its input", name, exc_info=True)
        return img
    if out is None:
        logger.warning("%s stage returned no image, keeping its input", name)
        return img
    return out


def transform_foreground(
    foreground: Image.Image,
    params: EditParameters,
    frame: TargetFrame,
    apply_filter: FilterFn = apply_filter,
    apply_effect: EffectFn = apply_effect,
) -> Image.Image:
    """Filter -> effect -> adjustments, then crop, rotate and scale to the content box."""
    img = foreground.convert("RGBA")
    img = _run_stage("filter", lambda im: apply_filter(params.filter, im), img)
    img = _run_stage("effect", lambda im: apply_effect(params.effect, im), img)
    img = _run_stage("adjustments", lambda im: apply_adjustments(im, params.adjustments), img)

    img = img.convert("RGBA")
    if img.size != frame.source_size:
        # The working layer may differ in size from the one the frame was resolved on.
        img = img.resize(frame.source_size, resample=Image.Resampling.LANCZOS)
    if frame.crop_box != (0, 0, img.width, img.height):
        img = img.crop(frame.crop_box)

    transpose = _TRANSPOSE.get(frame.rotation)
    if transpose is not None:
        img = img.transpose(transpose)

    _, _, cw, ch = frame.content_box
    if img.size != (cw, ch):
        img = img.resize((cw, ch), resample=Image.Resampling.LANCZOS)
    return img


def compose(
    foreground: Image.Image,
    background: Background,
    params: EditParameters,
    frame: TargetFrame,
    apply_filter: FilterFn = apply_filter,
    apply_effect: EffectFn = apply_effect,
) -> Image.Image:
    """Flatten the transformed foreground over the background on the target canvas."""
    out_w, out_h = frame.canvas_size

    layer_img = transform_foreground(
        foreground, params, frame, apply_filter=apply_filter, apply_effect=apply_effect
    )

    try:
        base = render_background(background, (out_w, out_h))
    except Exception:
        logger.warning("Background render failed, using a transparent canvas", exc_info=True)
        base = np.zeros((out_h, out_w, 4), dtype=np.uint8)

    x, y, _, _ = frame.content_box
    tile = np.zeros_like(base)
    arr = pil_to_np_rgba(layer_img)
    x0 = max(0, x)
    y0 = max(0, y)
    x1 = min(out_w, x + layer_img.width)
    y1 = min(out_h, y + layer_img.height)
    if x1 > x0 and y1 > y0:
        sx0 = x0 - x
        sy0 = y0 - y
        tile[y0:y1, x0:x1] = arr[sy0:sy0 + (y1 - y0), sx0:sx0 + (x1 - x0)]
    base = _blend_over(base, tile)

    return np_rgba_to_pil(base)
