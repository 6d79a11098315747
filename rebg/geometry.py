"""
Geometry for the edit pipeline.

Crop rectangles are stored normalized to the original image ([0,1] on both
axes). Rotation is kept separately as a clockwise multiple of 90 degrees and
is only applied at render time, after the crop.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from rebg.errors import InvalidCropError

DEFAULT_DEVICE_RATIO = 9.0 / 19.5

# Float slack allowed on relative rects coming from gesture math.
_TOL = 1e-6


@dataclass(frozen=True)
class Rect:
    """Normalized rectangle (origin top-left)."""
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def is_close(self, other: "Rect", tol: float = 1e-9) -> bool:
        return (
            abs(self.x - other.x) <= tol
            and abs(self.y - other.y) <= tol
            and abs(self.width - other.width) <= tol
            and abs(self.height - other.height) <= tol
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)


UNIT_RECT = Rect(0.0, 0.0, 1.0, 1.0)


class AspectRatio(Enum):
    FREE = "free"
    ORIGINAL = "original"
    SQUARE = "1:1"
    PORTRAIT = "4:5"
    FOUR_THREE = "4:3"
    WIDESCREEN = "16:9"
    DEVICE = "device"
    CUSTOM = "custom"

    def ratio(
        self,
        custom_size: Optional[Tuple[float, float]] = None,
        device_ratio: float = DEFAULT_DEVICE_RATIO,
    ) -> Optional[float]:
        """Explicit width/height ratio, or None when it follows the source."""
        if self is AspectRatio.SQUARE:
            return 1.0
        if self is AspectRatio.PORTRAIT:
            return 4.0 / 5.0
        if self is AspectRatio.FOUR_THREE:
            return 4.0 / 3.0
        if self is AspectRatio.WIDESCREEN:
            return 16.0 / 9.0
        if self is AspectRatio.DEVICE:
            return float(device_ratio)
        if self is AspectRatio.CUSTOM and custom_size is not None:
            w, h = validate_size(custom_size)
            return w / h
        return None


class Corner(Enum):
    TOP_LEFT = "top_left"
    TOP_RIGHT = "top_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"


def validate_size(size: Tuple[float, float]) -> Tuple[float, float]:
    w, h = float(size[0]), float(size[1])
    if not (math.isfinite(w) and math.isfinite(h)) or w <= 0 or h <= 0:
        raise ValueError(f"size must be positive, got {size!r}")
    return w, h


def normalize_rotation(degrees: float) -> int:
    """Map a signed multiple of 90 into {0, 90, 180, 270}."""
    d = float(degrees)
    if not math.isfinite(d) or d % 90.0 != 0.0:
        raise ValueError(f"rotation must be a multiple of 90 degrees, got {degrees!r}")
    return int(d) % 360


def effective_aspect_ratio(size: Tuple[float, float], rotation: int = 0) -> float:
    w, h = validate_size(size)
    if normalize_rotation(rotation) in (90, 270):
        w, h = h, w
    return w / h


def target_ratio(
    source_size: Tuple[float, float],
    rotation: int = 0,
    aspect_ratio: Optional[AspectRatio] = None,
    custom_size: Optional[Tuple[float, float]] = None,
    device_ratio: float = DEFAULT_DEVICE_RATIO,
) -> float:
    if aspect_ratio is not None:
        explicit = aspect_ratio.ratio(custom_size, device_ratio)
        if explicit is not None:
            return explicit
    return effective_aspect_ratio(source_size, rotation)


def fit_to_bounds(ratio: float, container: Tuple[float, float]) -> Tuple[float, float]:
    """Largest size of the given ratio inside container (display sizing only)."""
    cw, ch = validate_size(container)
    if not math.isfinite(ratio) or ratio <= 0:
        raise ValueError(f"ratio must be positive, got {ratio!r}")
    if ratio > cw / ch:
        # width is the limiting dimension
        return cw, cw / ratio
    return ch * ratio, ch


def _check_relative(rect: Rect) -> None:
    values = rect.as_tuple()
    if not all(math.isfinite(v) for v in values):
        raise InvalidCropError(f"crop rect has non-finite values: {values}")
    if rect.width <= 0 or rect.height <= 0:
        raise InvalidCropError(f"crop rect must have positive size: {values}")
    if rect.x < -_TOL or rect.y < -_TOL or rect.max_x > 1.0 + _TOL or rect.max_y > 1.0 + _TOL:
        raise InvalidCropError(f"crop rect must lie inside the unit square: {values}")


def _clamp_axis(origin: float, size: float, min_size: float) -> Tuple[float, float]:
    if size < min_size:
        origin -= (min_size - size) * 0.5
        size = min_size
    size = min(size, 1.0)
    origin = min(max(origin, 0.0), 1.0 - size)
    return origin, size


def clamp_crop_rect(rect: Rect, min_size: float = 0.1) -> Rect:
    """Grow rect about its center to min_size, then shift it into [0,1]."""
    m = min(max(float(min_size), 0.0), 1.0)
    x, w = _clamp_axis(rect.x, rect.width, m)
    y, h = _clamp_axis(rect.y, rect.height, m)
    return Rect(x, y, w, h)


def validate_crop_rect(rect: Rect, min_size: float = 0.1) -> Rect:
    """Reject empty or non-finite crops, clamp the rest into [0,1] at min_size or more."""
    values = rect.as_tuple()
    if not all(math.isfinite(v) for v in values):
        raise InvalidCropError(f"crop rect has non-finite values: {values}")
    if rect.width <= 0 or rect.height <= 0:
        raise InvalidCropError(f"crop rect must have positive size: {values}")
    return clamp_crop_rect(rect, min_size)


def compose_crop(current: Optional[Rect], relative: Rect, min_size: float = 0.1) -> Rect:
    """
    Re-express a crop drawn on the currently displayed (already cropped) image
    in original-image coordinates.

    The minimum size is enforced after composition.
    """
    _check_relative(relative)
    base = current or UNIT_RECT
    composed = Rect(
        x=base.x + relative.x * base.width,
        y=base.y + relative.y * base.height,
        width=relative.width * base.width,
        height=relative.height * base.height,
    )
    return clamp_crop_rect(composed, min_size)


def unrotate_rect(rect: Rect, rotation: int) -> Rect:
    """Map a rect on the displayed (clockwise rotated) frame back to the unrotated frame."""
    rot = normalize_rotation(rotation)
    if rot == 90:
        return Rect(rect.y, 1.0 - rect.max_x, rect.height, rect.width)
    if rot == 180:
        return Rect(1.0 - rect.max_x, 1.0 - rect.max_y, rect.width, rect.height)
    if rot == 270:
        return Rect(1.0 - rect.max_y, rect.x, rect.height, rect.width)
    return rect


def drag_crop_corner(
    start: Rect,
    corner: Corner,
    dx: float,
    dy: float,
    min_size: float = 0.1,
) -> Rect:
    """
    Move one crop handle by (dx, dy) in normalized units.

    Only the dragged edges move. They stop at the unit square and at min_size
    from the opposite edge, so the rect never flips.
    """
    left, top, right, bottom = start.x, start.y, start.max_x, start.max_y

    if corner in (Corner.TOP_LEFT, Corner.BOTTOM_LEFT):
        left = min(max(left + dx, 0.0), right - min_size)
    else:
        right = max(min(right + dx, 1.0), left + min_size)

    if corner in (Corner.TOP_LEFT, Corner.TOP_RIGHT):
        top = min(max(top + dy, 0.0), bottom - min_size)
    else:
        bottom = max(min(bottom + dy, 1.0), top + min_size)

    return Rect(left, top, right - left, bottom - top)


def crop_box(rect: Optional[Rect], size: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """Normalized rect -> (left, top, right, bottom) pixel box, at least 1px."""
    w, h = int(size[0]), int(size[1])
    if rect is None:
        return (0, 0, w, h)
    left = min(max(int(round(rect.x * w)), 0), w - 1)
    top = min(max(int(round(rect.y * h)), 0), h - 1)
    right = min(max(int(round(rect.max_x * w)), left + 1), w)
    bottom = min(max(int(round(rect.max_y * h)), top + 1), h)
    return (left, top, right, bottom)


def containing_size(ratio: float, size: Tuple[int, int]) -> Tuple[int, int]:
    """Smallest canvas of the given ratio that contains size."""
    w, h = int(size[0]), int(size[1])
    if ratio >= w / h:
        return (max(w, int(round(h * ratio))), h)
    return (w, max(h, int(round(w / ratio))))


def fit_box(size: Tuple[int, int], canvas: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """Aspect-fit size into canvas, centered. Returns (x, y, w, h)."""
    w, h = int(size[0]), int(size[1])
    cw, ch = int(canvas[0]), int(canvas[1])
    scale = min(cw / w, ch / h)
    fw = min(cw, max(1, int(round(w * scale))))
    fh = min(ch, max(1, int(round(h * scale))))
    return ((cw - fw) // 2, (ch - fh) // 2, fw, fh)


@dataclass(frozen=True)
class TargetFrame:
    source_size: Tuple[int, int]
    rotation: int
    crop_box: Tuple[int, int, int, int]
    working_size: Tuple[int, int]
    effective_ratio: float
    target_ratio: float
    canvas_size: Tuple[int, int]
    content_box: Tuple[int, int, int, int]

    def display_size(self, container: Tuple[float, float]) -> Tuple[float, float]:
        return fit_to_bounds(self.target_ratio, container)


def resolve_geometry(
    source_size: Tuple[int, int],
    rotation: int = 0,
    aspect_ratio: Optional[AspectRatio] = None,
    custom_size: Optional[Tuple[float, float]] = None,
    crop_rect: Optional[Rect] = None,
    device_ratio: float = DEFAULT_DEVICE_RATIO,
) -> TargetFrame:
    sw, sh = int(source_size[0]), int(source_size[1])
    if sw <= 0 or sh <= 0:
        raise ValueError(f"source size must be positive, got {source_size!r}")
    rot = normalize_rotation(rotation)

    box = crop_box(crop_rect, (sw, sh))
    cw, ch = box[2] - box[0], box[3] - box[1]
    working = (ch, cw) if rot in (90, 270) else (cw, ch)
    eff = working[0] / working[1]

    ratio = target_ratio((cw, ch), rot, aspect_ratio, custom_size, device_ratio)
    if aspect_ratio is AspectRatio.CUSTOM and custom_size is not None:
        w, h = validate_size(custom_size)
        canvas = (max(1, int(round(w))), max(1, int(round(h))))
    else:
        canvas = containing_size(ratio, working)

    return TargetFrame(
        source_size=(sw, sh),
        rotation=rot,
        crop_box=box,
        working_size=working,
        effective_ratio=eff,
        target_ratio=ratio,
        canvas_size=canvas,
        content_box=fit_box(working, canvas),
    )
