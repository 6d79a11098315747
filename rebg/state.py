from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Sequence, Tuple, Union

from PIL import Image, ImageColor

from rebg.config import settings
from rebg.geometry import AspectRatio, Rect, normalize_rotation, validate_crop_rect, validate_size

RGBA = Tuple[int, int, int, int]


class FilterType(Enum):
    NONE = "Original"
    MONO = "Mono"
    TONAL = "Tonal"
    NOIR = "Noir"
    FADE = "Fade"
    CHROME = "Chrome"
    PROCESS = "Process"
    TRANSFER = "Transfer"
    INSTANT = "Instant"
    SEPIA = "Sepia"


class EffectType(Enum):
    NONE = "Original"
    VIGNETTE = "Vignette"
    BLOOM = "Bloom"
    NOIR = "Noir"
    CRYSTAL = "Crystal"
    BLUR = "Blur"
    EDGES = "Edges"
    POSTERIZE = "Posterize"
    GRAIN = "Grain"


def parse_color(value: Union[str, Sequence[int]]) -> RGBA:
    """'#3B82F6', 'red', (r, g, b) or (r, g, b, a) -> RGBA tuple."""
    if isinstance(value, str):
        rgb = ImageColor.getrgb(value)
    else:
        rgb = tuple(int(v) for v in value)
    if len(rgb) == 3:
        rgb = (*rgb, 255)
    if len(rgb) != 4:
        raise ValueError(f"expected an RGB or RGBA color, got {value!r}")
    return tuple(max(0, min(255, int(v))) for v in rgb)  # type: ignore[return-value]


@dataclass(frozen=True)
class Adjustments:
    brightness: float = 1.0
    contrast: float = 1.0
    saturation: float = 1.0
    blur: float = 0.0

    BRIGHTNESS_RANGE = (0.1, 2.0)
    CONTRAST_RANGE = (0.1, 2.0)
    SATURATION_RANGE = (0.0, 2.0)
    BLUR_RANGE = (0.0, 20.0)

    @classmethod
    def clamped(
        cls,
        brightness: float = 1.0,
        contrast: float = 1.0,
        saturation: float = 1.0,
        blur: float = 0.0,
    ) -> "Adjustments":
        def clip(v: float, bounds: Tuple[float, float]) -> float:
            return float(max(bounds[0], min(bounds[1], float(v))))

        return cls(
            brightness=clip(brightness, cls.BRIGHTNESS_RANGE),
            contrast=clip(contrast, cls.CONTRAST_RANGE),
            saturation=clip(saturation, cls.SATURATION_RANGE),
            blur=clip(blur, cls.BLUR_RANGE),
        )

    @property
    def is_neutral(self) -> bool:
        return self == NEUTRAL_ADJUSTMENTS


NEUTRAL_ADJUSTMENTS = Adjustments()


# ---- Background variants ----

@dataclass(frozen=True)
class NoBackground:
    pass


@dataclass(frozen=True)
class SolidBackground:
    color: RGBA


@dataclass(frozen=True)
class GradientBackground:
    # Top to bottom, evenly spaced
    colors: Tuple[RGBA, ...]

    def __post_init__(self) -> None:
        if not self.colors:
            raise ValueError("gradient needs at least one color")


@dataclass(frozen=True, eq=False)
class ImageBackground:
    image: Image.Image

    # Externally supplied images compare by identity.
    def __eq__(self, other: object) -> bool:
        return isinstance(other, ImageBackground) and other.image is self.image

    def __hash__(self) -> int:
        return id(self.image)


Background = Union[NoBackground, SolidBackground, GradientBackground, ImageBackground]


@dataclass(frozen=True)
class EditParameters:
    filter: FilterType = FilterType.NONE
    effect: EffectType = EffectType.NONE
    adjustments: Adjustments = field(default_factory=Adjustments)
    rotation: int = 0
    aspect_ratio: Optional[AspectRatio] = None
    custom_size: Optional[Tuple[float, float]] = None
    crop_rect: Optional[Rect] = None
    background: Background = field(default_factory=NoBackground)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rotation", normalize_rotation(self.rotation))
        if self.custom_size is not None:
            object.__setattr__(self, "custom_size", validate_size(self.custom_size))
        if self.crop_rect is not None:
            rect = validate_crop_rect(self.crop_rect, settings.min_crop_fraction)
            object.__setattr__(self, "crop_rect", rect)

    def evolve(self, **changes) -> "EditParameters":
        return replace(self, **changes)

    # ---- Status indicators ----
    @property
    def is_canvas_active(self) -> bool:
        return (
            self.aspect_ratio not in (None, AspectRatio.ORIGINAL, AspectRatio.FREE)
            or self.rotation != 0
            or self.custom_size is not None
            or self.crop_rect is not None
        )

    @property
    def is_filter_active(self) -> bool:
        return self.filter is not FilterType.NONE

    @property
    def is_effect_active(self) -> bool:
        return self.effect is not EffectType.NONE

    @property
    def is_adjust_active(self) -> bool:
        return not self.adjustments.is_neutral

    @property
    def is_color_active(self) -> bool:
        return isinstance(self.background, (SolidBackground, GradientBackground))

    @property
    def is_background_transparent(self) -> bool:
        return isinstance(self.background, NoBackground)
