"""
Background removal.

`segment` is the default service: it treats the dominant border color as the
backdrop and keys it out. Any callable with the same shape
(image -> image or None) can be plugged into `BackgroundRemover`.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image
from PySide6.QtCore import QObject, Signal, Slot

from rebg.config import settings
from rebg.mask_ops import refine_alpha_mask

logger = logging.getLogger(__name__)

Segmenter = Callable[[Image.Image], Optional[Image.Image]]


def border_pixels(rgb: np.ndarray) -> np.ndarray:
    """Outermost ring of pixels as an Nx3 array."""
    h, w = rgb.shape[:2]
    if h < 3 or w < 3:
        return rgb.reshape(-1, rgb.shape[2])
    return np.concatenate(
        [rgb[0, :], rgb[-1, :], rgb[1:-1, 0], rgb[1:-1, -1]],
        axis=0,
    )


def color_key_mask(rgb: np.ndarray, color: Tuple[int, int, int], tolerance: int) -> np.ndarray:
    """True where the RGB euclidean distance to color is within tolerance."""
    if tolerance <= 0:
        return np.zeros(rgb.shape[:2], dtype=bool)
    arr = rgb.astype(np.int32)
    dr = arr[..., 0] - int(color[0])
    dg = arr[..., 1] - int(color[1])
    db = arr[..., 2] - int(color[2])
    return (dr * dr + dg * dg + db * db) <= int(tolerance) * int(tolerance)


def dominant_border_color(
    rgb: np.ndarray,
    tolerance: int,
    min_coverage: float,
) -> Optional[Tuple[int, int, int]]:
    ring = border_pixels(rgb).astype(np.int32)
    if ring.size == 0:
        return None

    # Coarse 16-level buckets, then the mean of the most common bucket.
    q = ring // 16
    keys = q[:, 0] * 256 + q[:, 1] * 16 + q[:, 2]
    best = int(np.argmax(np.bincount(keys)))
    candidate = ring[keys == best].mean(axis=0)
    color = (int(round(candidate[0])), int(round(candidate[1])), int(round(candidate[2])))

    coverage = float(np.mean(color_key_mask(ring[None, :, :], color, tolerance)))
    if coverage < min_coverage:
        logger.debug("Border color %s covers only %.0f%% of the border", color, coverage * 100.0)
        return None
    return color


def segment(
    image: Image.Image,
    tolerance: Optional[int] = None,
    min_coverage: Optional[float] = None,
    grow_shrink: Optional[int] = None,
    feather_radius: Optional[int] = None,
) -> Optional[Image.Image]:
    """Foreground with the backdrop made transparent, or None when there is no clear backdrop."""
    tol = settings.segment_tolerance if tolerance is None else int(tolerance)
    cov = settings.segment_border_coverage if min_coverage is None else float(min_coverage)
    grow = settings.segment_grow_shrink if grow_shrink is None else int(grow_shrink)
    feather = settings.segment_feather_radius if feather_radius is None else int(feather_radius)

    rgba = np.array(image.convert("RGBA"), dtype=np.uint8)
    color = dominant_border_color(rgba[..., :3], tol, cov)
    if color is None:
        return None

    remove = color_key_mask(rgba[..., :3], color, tol)
    if remove.all():
        # Flat image: nothing would remain.
        return None

    rgba[..., 3] = refine_alpha_mask(rgba[..., 3], remove, grow_shrink=grow, feather_radius=feather)
    return Image.fromarray(rgba)


class BackgroundRemover(QObject):
    """
    Runs a segmenter off the interactive thread, one job per session.

    Each start() gets a new generation; results from older generations,
    failures and cancelled jobs never reach `finished`.
    """

    finished = Signal(int, object)
    busyChanged = Signal(bool)
    _jobDone = Signal(int, object)

    def __init__(self, segmenter: Segmenter = segment, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._segmenter = segmenter
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rebg-segment")
        self._generation = 0
        self._future: Optional[Future] = None
        self._busy = False
        self._inflight = 0
        self._idle = threading.Condition()
        self._jobDone.connect(self._on_job_done)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_idle(self) -> bool:
        with self._idle:
            return self._inflight == 0

    def start(self, image: Image.Image) -> int:
        self.cancel()
        gen = self._generation
        with self._idle:
            self._inflight += 1
        try:
            fut = self._executor.submit(self._segmenter, image)
        except RuntimeError:
            logger.warning("Segmentation executor is shut down, skipping background removal")
            self._job_settled()
            return gen
        self._future = fut
        self._set_busy(True)
        fut.add_done_callback(partial(self._on_future_done, gen))
        logger.info("Background removal started (generation %d)", gen)
        return gen

    def cancel(self) -> None:
        self._generation += 1
        if self._future is not None:
            self._future.cancel()
            self._future = None
        self._set_busy(False)

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._inflight == 0, timeout)

    def shutdown(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _set_busy(self, busy: bool) -> None:
        if busy != self._busy:
            self._busy = busy
            self.busyChanged.emit(busy)

    def _job_settled(self) -> None:
        with self._idle:
            self._inflight -= 1
            self._idle.notify_all()

    def _on_future_done(self, gen: int, fut: Future) -> None:
        # Runs on the worker thread (or the caller of cancel()).
        try:
            if fut.cancelled():
                return
            try:
                result = fut.result()
            except Exception:
                logger.exception("Background removal failed (generation %d)", gen)
                result = None
            # Qt queues this to the thread that owns self.
            self._jobDone.emit(gen, result)
        finally:
            self._job_settled()

    @Slot(int, object)
    def _on_job_done(self, gen: int, result: object) -> None:
        if gen != self._generation:
            logger.debug("Dropping background removal result from generation %d", gen)
            return
        self._future = None
        self._set_busy(False)
        logger.info("Background removal finished (generation %d, found=%s)", gen, result is not None)
        self.finished.emit(gen, result)
