from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

from overlay_kit.errors import PreconditionError
from overlay_kit.runtime import DetectionPipeline, DetectionState, FrameResult
from overlay_kit.types import Frame

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def frame_at(self, timestamp_us: int) -> Optional[Frame]:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class EventLoop(Protocol):
    """The subset of `asyncio.AbstractEventLoop` the scheduler relies on."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        ...

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> Any:
        ...


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class IdleReason(str, Enum):
    STOPPED = "stopped"
    PAUSED = "paused"
    MAX_FRAMES = "max_frames"
    END_OF_STREAM = "end_of_stream"
    ERROR = "error"


@dataclass(frozen=True)
class CadenceConfig:
    frame_interval_ms: int = 100
    max_frames: int = 200

    def __post_init__(self) -> None:
        if self.frame_interval_ms <= 0:
            raise ValueError("frame_interval_ms must be > 0")
        if self.max_frames < 0:
            raise ValueError("max_frames must be >= 0")

    @property
    def interval_s(self) -> float:
        return self.frame_interval_ms / 1000.0


class FrameScheduler:
    """
    Pulls frame `index * interval` from the source on a fixed cadence and
    feeds it through the pipeline, one frame at a time.

    All state lives on the loop's thread. The next tick is scheduled only once
    the current frame has been rendered, so slow inference stretches the
    interval instead of queueing frames. With an `executor`, analysis runs off
    the loop thread and the result is handed back through
    `call_soon_threadsafe` for rendering; still at most one frame in flight.
    """

    def __init__(
        self,
        loop: EventLoop,
        frame_source: Optional[FrameSource],
        pipeline: DetectionPipeline,
        detection_state: DetectionState,
        cfg: CadenceConfig = CadenceConfig(),
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        self._loop = loop
        self.frame_source = frame_source
        self._pipeline = pipeline
        self._detection_state = detection_state
        self.cfg = cfg
        self._executor = executor

        self.state = SchedulerState.IDLE
        self.index = 0
        self.error: Optional[BaseException] = None
        self.idle_reason: Optional[IdleReason] = None

        self._handle: Optional[TimerHandle] = None
        # Bumped on every start/resume so stale ticks and completions can tell
        # they belong to an earlier run.
        self._run_id = 0
        self._in_flight = False
        self._resume_pending = False
        self._idle_callbacks: List[Callable[[IdleReason], None]] = []
        self._result_callbacks: List[Callable[[FrameResult], None]] = []
        self._settled_callbacks: List[Callable[[], None]] = []

    @property
    def running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def add_idle_callback(self, cb: Callable[[IdleReason], None]) -> None:
        self._idle_callbacks.append(cb)

    def add_result_callback(self, cb: Callable[[FrameResult], None]) -> None:
        self._result_callbacks.append(cb)

    @property
    def in_flight(self) -> bool:
        """True while a frame handed to the executor has not been delivered yet."""
        return self._in_flight

    def add_settled_callback(self, cb: Callable[[], None]) -> None:
        """`cb()` runs on the loop each time an executor frame finishes delivery."""
        self._settled_callbacks.append(cb)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def start(self) -> bool:
        if self.running:
            logger.debug("Scheduler already running, ignoring start()")
            return False
        if self.frame_source is None:
            logger.debug("No frame source attached, ignoring start()")
            return False

        self.index = 0
        self.error = None
        self._resume_pending = False
        self._enter_running()
        logger.info(
            "Frame processing started (interval=%dms, max_frames=%d)", self.cfg.frame_interval_ms, self.cfg.max_frames
        )
        return True

    def stop(self) -> None:
        self._cancel_pending()
        if self.running:
            self._go_idle(IdleReason.STOPPED)

    def pause(self) -> None:
        """Stop ticking but remember whether to pick up again on resume()."""
        self._resume_pending = self.running
        self._cancel_pending()
        if self.running:
            self._go_idle(IdleReason.PAUSED)

    def resume(self) -> bool:
        """Continue from the current frame index if pause() interrupted a run."""
        if not self._resume_pending or self.running or self.frame_source is None:
            return False
        self._resume_pending = False
        logger.info("Frame processing resumed at frame %d", self.index)
        self._enter_running()
        return True

    # ------------------------------------------------------------------ #
    # Ticks
    # ------------------------------------------------------------------ #
    def _enter_running(self) -> None:
        self._run_id += 1
        self.idle_reason = None
        self.state = SchedulerState.RUNNING
        self._schedule(0.0)

    def _schedule(self, delay: float) -> None:
        self._handle = self._loop.call_later(delay, self._tick, self._run_id)

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _go_idle(self, reason: IdleReason) -> None:
        self.state = SchedulerState.IDLE
        self.idle_reason = reason
        logger.debug("Scheduler idle (%s) at frame %d", reason.value, self.index)
        for cb in list(self._idle_callbacks):
            cb(reason)

    def _fail(self, exc: BaseException) -> None:
        # Per-frame errors are absorbed by the pipeline; anything reaching here ends the session.
        logger.error("Frame processing aborted: %s", exc, exc_info=not isinstance(exc, PreconditionError))
        self.error = exc
        self._resume_pending = False
        self._cancel_pending()
        if self.running:
            self._go_idle(IdleReason.ERROR)

    def _tick(self, run_id: int) -> None:
        self._handle = None
        if run_id != self._run_id or not self.running:
            return

        if self.index >= self.cfg.max_frames:
            logger.info("Reached max frames (%d)", self.cfg.max_frames)
            self._go_idle(IdleReason.MAX_FRAMES)
            return

        if self._in_flight:
            # A frame from an earlier run is still being analyzed.
            self._schedule(self.cfg.interval_s)
            return

        timestamp_us = self.index * self.cfg.frame_interval_ms * 1000
        try:
            frame = self.frame_source.frame_at(timestamp_us)
        except Exception as exc:
            logger.exception("Frame source failed at %dus", timestamp_us)
            self._fail(exc)
            return

        if frame is None:
            logger.info("No more frames")
            self._go_idle(IdleReason.END_OF_STREAM)
            return

        self.index += 1
        if self._executor is not None:
            self._in_flight = True
            future = self._executor.submit(self._pipeline.analyze, frame)
            future.add_done_callback(lambda f: self._hand_back(run_id, f))
            return

        try:
            result = self._pipeline.process_frame(frame, self._detection_state)
        except Exception as exc:
            self._fail(exc)
            return
        self._after_frame(run_id, result)

    def _hand_back(self, run_id: int, future: "Future[FrameResult]") -> None:
        try:
            self._loop.call_soon_threadsafe(self._on_analyzed, run_id, future)
        except RuntimeError:
            logger.warning("Event loop closed before frame %d was delivered", self.index)

    def _on_analyzed(self, run_id: int, future: "Future[FrameResult]") -> None:
        # Delivered even after stop(): stopping cancels scheduling, not the frame in flight.
        self._in_flight = False
        try:
            exc = future.exception()
            if exc is not None:
                self._fail(exc)
                return
            try:
                result = self._pipeline.deliver(future.result(), self._detection_state)
            except Exception as exc:
                self._fail(exc)
                return
            self._after_frame(run_id, result)
        finally:
            for cb in list(self._settled_callbacks):
                cb()

    def _after_frame(self, run_id: int, result: FrameResult) -> None:
        for cb in list(self._result_callbacks):
            cb(result)
        if run_id == self._run_id and self.running and self._handle is None:
            self._schedule(self.cfg.interval_s)
