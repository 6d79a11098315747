from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Optional

from PIL import Image
from PySide6.QtCore import QObject, Signal, Slot

from rebg.config import settings

logger = logging.getLogger(__name__)


class SequenceGate:
    """
    Sequence numbers for recompute requests.

    A completed result is accepted only if its number is higher than every
    number accepted before it, so a slow superseded job can never overwrite a
    fresher result.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._issued = 0
        self._highest_seen = 0

    @property
    def issued(self) -> int:
        return self._issued

    @property
    def highest_seen(self) -> int:
        return self._highest_seen

    def issue(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def accept(self, seq: int) -> bool:
        with self._lock:
            if seq <= self._highest_seen:
                return False
            self._highest_seen = seq
            return True

    def invalidate(self) -> None:
        """Reject everything issued so far."""
        with self._lock:
            self._highest_seen = max(self._highest_seen, self._issued)


class RecomputeScheduler(QObject):
    """
    Runs compose jobs on a worker pool and publishes the newest result.

    `request` never blocks. Results come back to the thread that owns the
    scheduler through a queued signal; `resultReady` fires only for results
    the gate accepts.
    """

    resultReady = Signal(int, object)
    _jobDone = Signal(int, object)

    def __init__(
        self,
        compose_fn: Callable[[Any], Image.Image],
        max_workers: Optional[int] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._compose_fn = compose_fn
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.compose_workers,
            thread_name_prefix="rebg-compose",
        )
        self._gate = SequenceGate()
        self._latest: Optional[Image.Image] = None
        self._latest_seq = 0
        self._inflight = 0
        self._idle = threading.Condition()
        self._jobDone.connect(self._on_job_done)

    @property
    def gate(self) -> SequenceGate:
        return self._gate

    @property
    def latest(self) -> Optional[Image.Image]:
        return self._latest

    @property
    def latest_seq(self) -> int:
        return self._latest_seq

    @property
    def is_idle(self) -> bool:
        with self._idle:
            return self._inflight == 0

    def request(self, job: Any) -> int:
        seq = self._gate.issue()
        with self._idle:
            self._inflight += 1
        try:
            fut = self._executor.submit(self._compose_fn, job)
        except RuntimeError:
            logger.warning("Compose executor is shut down, dropping request %d", seq)
            self._job_settled()
            return seq
        fut.add_done_callback(partial(self._on_future_done, seq))
        logger.debug("Recompute %d requested", seq)
        return seq

    def invalidate(self) -> None:
        """Drop every outstanding result and forget the published one."""
        self._gate.invalidate()
        self._latest = None
        self._latest_seq = 0

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._inflight == 0, timeout)

    def shutdown(self, wait: bool = False) -> None:
        self._gate.invalidate()
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def _job_settled(self) -> None:
        with self._idle:
            self._inflight -= 1
            self._idle.notify_all()

    def _on_future_done(self, seq: int, fut: Future) -> None:
        try:
            if fut.cancelled():
                return
            try:
                image = fut.result()
            except Exception:
                logger.exception("Recompute %d failed", seq)
                image = None
            self._jobDone.emit(seq, image)
        finally:
            self._job_settled()

    @Slot(int, object)
    def _on_job_done(self, seq: int, image: object) -> None:
        # A failed job still supersedes every older request.
        if not self._gate.accept(seq):
            logger.debug("Dropping superseded recompute result %d", seq)
            return
        if image is None:
            return
        self._latest = image
        self._latest_seq = seq
        self.resultReady.emit(seq, image)
