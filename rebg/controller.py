from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from PIL import Image
from PySide6.QtCore import QCoreApplication, QObject, Signal, Slot

from rebg import io as rebg_io
from rebg.compositor import EffectFn, FilterFn, compose
from rebg.config import settings
from rebg.errors import NoImageError
from rebg.filters import apply_effect, apply_filter
from rebg.geometry import (
    UNIT_RECT,
    AspectRatio,
    Rect,
    TargetFrame,
    compose_crop,
    resolve_geometry,
    unrotate_rect,
    validate_size,
)
from rebg.history import EditHistory
from rebg.scheduler import RecomputeScheduler
from rebg.segmentation import BackgroundRemover, Segmenter, segment
from rebg.state import (
    NEUTRAL_ADJUSTMENTS,
    Adjustments,
    EditParameters,
    EffectType,
    FilterType,
    GradientBackground,
    ImageBackground,
    NoBackground,
    SolidBackground,
    parse_color,
)

logger = logging.getLogger(__name__)

ColorLike = Union[str, Sequence[int]]


@dataclass(frozen=True)
class CompositeJob:
    layer: Image.Image
    params: EditParameters
    frame: TargetFrame


class EditorController(QObject):
    """
    Owns the edit parameters, their history and the image layers.

    All mutation happens on the thread that owns the controller. Observers
    follow the signals; nothing else writes to the controller's state.
    """

    parametersChanged = Signal(object)
    historyChanged = Signal(bool, bool)  # can_undo, can_redo
    compositeChanged = Signal(object)
    backgroundRemovalChanged = Signal(bool)
    croppingChanged = Signal(bool)

    def __init__(
        self,
        segmenter: Segmenter = segment,
        apply_filter: FilterFn = apply_filter,
        apply_effect: EffectFn = apply_effect,
        history_limit: Optional[int] = None,
        min_crop_fraction: Optional[float] = None,
        compose_workers: Optional[int] = None,
        device_ratio: Optional[float] = None,
        auto_segment: bool = True,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._apply_filter = apply_filter
        self._apply_effect = apply_effect
        self._min_crop = settings.min_crop_fraction if min_crop_fraction is None else float(min_crop_fraction)
        self._device_ratio = settings.device_aspect_ratio if device_ratio is None else float(device_ratio)
        self._auto_segment = auto_segment

        self._params = EditParameters()
        self._history = EditHistory(self._params, limit=history_limit or settings.history_limit)
        self._applying_state = False
        self._is_cropping = False

        self._original: Optional[Image.Image] = None
        self._foreground: Optional[Image.Image] = None
        self._composited: Optional[Image.Image] = None

        self._scheduler = RecomputeScheduler(self._render, max_workers=compose_workers, parent=self)
        self._scheduler.resultReady.connect(self._on_composite_ready)
        self._remover = BackgroundRemover(segmenter, parent=self)
        self._remover.finished.connect(self._on_foreground_ready)
        self._remover.busyChanged.connect(self._on_removal_busy)

    # ---- Queries ----
    @property
    def parameters(self) -> EditParameters:
        return self._params

    @property
    def history(self) -> EditHistory:
        return self._history

    @property
    def scheduler(self) -> RecomputeScheduler:
        return self._scheduler

    @property
    def original(self) -> Optional[Image.Image]:
        return self._original

    @property
    def foreground(self) -> Optional[Image.Image]:
        return self._foreground

    @property
    def working_layer(self) -> Optional[Image.Image]:
        return self._foreground if self._foreground is not None else self._original

    @property
    def composited(self) -> Optional[Image.Image]:
        return self._composited

    @property
    def is_background_transparent(self) -> bool:
        return self._params.is_background_transparent

    @property
    def export_format(self) -> str:
        return rebg_io.export_format(self.is_background_transparent)

    @property
    def is_removing_background(self) -> bool:
        return self._remover.is_busy

    @property
    def is_cropping(self) -> bool:
        return self._is_cropping

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    def target_frame(self) -> TargetFrame:
        layer = self.working_layer
        if layer is None:
            raise NoImageError("resolve geometry")
        p = self._params
        return resolve_geometry(
            layer.size,
            rotation=p.rotation,
            aspect_ratio=p.aspect_ratio,
            custom_size=p.custom_size,
            crop_rect=p.crop_rect,
            device_ratio=self._device_ratio,
        )

    def display_size(self, container: Tuple[float, float]) -> Tuple[float, float]:
        return self.target_frame().display_size(container)

    # ---- Session ----
    def set_image(self, image: Image.Image) -> None:
        """Start a new editing session on image."""
        if image is None or image.width <= 0 or image.height <= 0:
            raise NoImageError("start a session")

        self._remover.cancel()
        self._scheduler.invalidate()

        self._original = image.convert("RGBA")
        self._foreground = None
        self._composited = None
        self._set_cropping(False)
        self._params = EditParameters()
        self._history.reset(self._params)
        logger.info("New session: %dx%d image", image.width, image.height)

        self.parametersChanged.emit(self._params)
        self._emit_history()
        self.compositeChanged.emit(None)

        if self._auto_segment:
            self.remove_background()
        self.request_recompute()

    def remove_background(self) -> int:
        if self._original is None:
            raise NoImageError("remove the background")
        had_foreground = self._foreground is not None
        self._foreground = None
        gen = self._remover.start(self._original)
        if had_foreground:
            self.request_recompute()
        return gen

    # ---- History ----
    def commit(self) -> bool:
        """Snapshot the current parameters. No-op while applying undo/redo."""
        if self._applying_state:
            return False
        pushed = self._history.commit(self._params)
        if pushed:
            self._emit_history()
        return pushed

    def undo(self) -> bool:
        params = self._history.undo()
        if params is None:
            return False
        self._restore(params)
        return True

    def redo(self) -> bool:
        params = self._history.redo()
        if params is None:
            return False
        self._restore(params)
        return True

    def _restore(self, params: EditParameters) -> None:
        self._applying_state = True
        try:
            self._params = params
            self.parametersChanged.emit(params)
        finally:
            self._applying_state = False
        self._emit_history()
        self.request_recompute()

    # ---- Edit commands ----
    def set_filter(self, kind: FilterType) -> None:
        self._edit("apply a filter", filter=FilterType(kind))

    def set_effect(self, kind: EffectType) -> None:
        self._edit("apply an effect", effect=EffectType(kind))

    def set_adjustments(
        self,
        brightness: Optional[float] = None,
        contrast: Optional[float] = None,
        saturation: Optional[float] = None,
        blur: Optional[float] = None,
    ) -> None:
        """Live slider update. Call finish_adjustment() at gesture end to snapshot."""
        cur = self._params.adjustments
        adj = Adjustments.clamped(
            brightness=cur.brightness if brightness is None else brightness,
            contrast=cur.contrast if contrast is None else contrast,
            saturation=cur.saturation if saturation is None else saturation,
            blur=cur.blur if blur is None else blur,
        )
        self._edit("adjust", commit=False, adjustments=adj)

    def finish_adjustment(self) -> bool:
        return self.commit()

    def reset_adjustments(self) -> None:
        self._edit("reset adjustments", adjustments=NEUTRAL_ADJUSTMENTS, background=NoBackground())

    def rotate_left(self) -> None:
        self._edit("rotate", rotation=(self._params.rotation - 90) % 360)

    def rotate_right(self) -> None:
        self._edit("rotate", rotation=(self._params.rotation + 90) % 360)

    def set_aspect_ratio(
        self,
        ratio: Optional[AspectRatio],
        custom_size: Optional[Tuple[float, float]] = None,
    ) -> None:
        if ratio is not AspectRatio.CUSTOM:
            custom_size = None
        elif custom_size is not None:
            custom_size = validate_size(custom_size)
        self._edit("change the canvas", aspect_ratio=ratio, custom_size=custom_size)

    def set_custom_size(self, width: float, height: float) -> None:
        self.set_aspect_ratio(AspectRatio.CUSTOM, (width, height))

    def set_background_color(self, color: ColorLike) -> None:
        self._edit("set a background color", background=SolidBackground(parse_color(color)))

    def set_background_gradient(self, colors: Sequence[ColorLike]) -> None:
        gradient = GradientBackground(tuple(parse_color(c) for c in colors))
        self._edit("set a background gradient", background=gradient)

    def set_background_image(self, image: Image.Image) -> None:
        self._edit("set a background image", background=ImageBackground(image))

    def clear_background(self) -> None:
        self._edit("clear the background", background=NoBackground())

    def start_cropping(self) -> None:
        self._require_image("crop")
        self._set_cropping(True)

    def cancel_cropping(self) -> None:
        self._set_cropping(False)

    def apply_crop(self, rect: Rect) -> Optional[Rect]:
        """
        Crop by rect, given relative to the image as currently displayed
        (after earlier crops and rotation). Returns the new cumulative crop.
        """
        self._require_image("crop")
        relative = unrotate_rect(rect, self._params.rotation)
        cumulative: Optional[Rect] = compose_crop(self._params.crop_rect, relative, self._min_crop)
        if cumulative.is_close(UNIT_RECT):
            cumulative = None
        self._set_cropping(False)
        self._edit("crop", crop_rect=cumulative)
        return self._params.crop_rect

    def reset_crop(self) -> None:
        self._edit("reset the crop", crop_rect=None)

    # ---- Recompute ----
    def request_recompute(self) -> Optional[int]:
        layer = self.working_layer
        if layer is None:
            return None
        job = CompositeJob(layer=layer, params=self._params, frame=self.target_frame())
        return self._scheduler.request(job)

    def process_pending(self, timeout: float = 10.0) -> bool:
        """Pump Qt events until background removal and recomputes have settled."""
        if QCoreApplication.instance() is None:
            raise RuntimeError("process_pending needs a QCoreApplication")
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            if not self._remover.wait_for_idle(remaining):
                return False
            if not self._scheduler.wait_for_idle(max(0.0, deadline - time.monotonic())):
                return False
            QCoreApplication.processEvents()
            if self._remover.is_idle and self._scheduler.is_idle:
                return True

    def save_export(self, path: str, fmt: Optional[str] = None) -> str:
        if self._composited is None:
            raise NoImageError("export")
        return rebg_io.save_export(path, self._composited, self.is_background_transparent, fmt=fmt)

    def shutdown(self) -> None:
        self._remover.shutdown()
        self._scheduler.shutdown()

    # ---- Internals ----
    def _require_image(self, action: str) -> None:
        if self._original is None:
            raise NoImageError(action)

    def _edit(self, action: str, commit: bool = True, **changes) -> None:
        self._require_image(action)
        params = self._params.evolve(**changes)
        changed = params != self._params
        self._params = params
        if changed:
            self.parametersChanged.emit(params)
        if commit:
            self.commit()
        if changed:
            self.request_recompute()

    def _set_cropping(self, on: bool) -> None:
        if on != self._is_cropping:
            self._is_cropping = on
            self.croppingChanged.emit(on)

    def _emit_history(self) -> None:
        self.historyChanged.emit(self._history.can_undo, self._history.can_redo)

    def _render(self, job: CompositeJob) -> Image.Image:
        # Worker thread: only touches the job snapshot.
        return compose(
            job.layer,
            job.params.background,
            job.params,
            job.frame,
            apply_filter=self._apply_filter,
            apply_effect=self._apply_effect,
        )

    @Slot(int, object)
    def _on_composite_ready(self, seq: int, image: object) -> None:
        self._composited = image
        self.compositeChanged.emit(image)

    @Slot(int, object)
    def _on_foreground_ready(self, gen: int, image: object) -> None:
        if image is None:
            logger.info("No foreground found, keeping the original as working layer")
            return
        self._foreground = image.convert("RGBA")
        self.request_recompute()

    @Slot(bool)
    def _on_removal_busy(self, busy: bool) -> None:
        self.backgroundRemovalChanged.emit(busy)
