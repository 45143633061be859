from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional

from overlay_kit.runtime import DetectionPipeline, DetectionState, FrameResult

from .config import OverlayConfig
from .scheduler import CadenceConfig, FrameScheduler, FrameSource, IdleReason

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    frames_processed: int = 0
    frames_with_detections: int = 0
    failed_frames: int = 0
    first_detection_frame: Optional[int] = None
    reason: Optional[IdleReason] = None


class PlaybackSession:
    """
    One playback session: fresh detection state, a frame scheduler on its own
    asyncio loop, and a summary of what happened.

    `run()` blocks until the scheduler goes idle for any reason other than a
    pause. `pause`/`resume`/`stop` may be called from other threads while
    `run()` is active.
    """

    def __init__(
        self,
        pipeline: DetectionPipeline,
        frame_source: Optional[FrameSource],
        cfg: OverlayConfig = OverlayConfig(),
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        self.pipeline = pipeline
        self.frame_source = frame_source
        self.cfg = cfg
        self.executor = executor
        self.state = DetectionState()
        self.summary = SessionSummary()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._scheduler: Optional[FrameScheduler] = None

    @property
    def has_detected_once(self) -> bool:
        return self.state.has_detected_once

    def run(self) -> SessionSummary:
        loop = asyncio.new_event_loop()
        scheduler = FrameScheduler(
            loop,
            self.frame_source,
            self.pipeline,
            self.state,
            CadenceConfig(frame_interval_ms=self.cfg.frame_interval_ms, max_frames=self.cfg.max_frames),
            executor=self.executor,
        )
        done: "asyncio.Future[IdleReason]" = loop.create_future()

        def _on_idle(reason: IdleReason) -> None:
            if reason is not IdleReason.PAUSED and not done.done():
                done.set_result(reason)

        scheduler.add_idle_callback(_on_idle)
        scheduler.add_result_callback(self._record)
        self._loop, self._scheduler = loop, scheduler
        try:
            if not scheduler.start():
                logger.warning("Nothing to process: no frame source")
                return self.summary
            self.summary.reason = loop.run_until_complete(done)
            self._drain(loop, scheduler)
        finally:
            scheduler.stop()
            self._loop, self._scheduler = None, None
            loop.close()

        if scheduler.error is not None:
            raise scheduler.error
        logger.info(
            "Session finished (%s): %d frames, %d with detections, %d failed",
            self.summary.reason.value,
            self.summary.frames_processed,
            self.summary.frames_with_detections,
            self.summary.failed_frames,
        )
        return self.summary

    @staticmethod
    def _drain(loop: asyncio.AbstractEventLoop, scheduler: FrameScheduler) -> None:
        # A frame still on the executor gets rendered before the loop closes.
        if not scheduler.in_flight:
            return
        settled: "asyncio.Future[None]" = loop.create_future()

        def _on_settled() -> None:
            if not settled.done():
                settled.set_result(None)

        scheduler.add_settled_callback(_on_settled)
        logger.debug("Waiting for the frame in flight before closing the loop")
        loop.run_until_complete(settled)

    def pause(self) -> None:
        self._call_on_loop("pause")
        gate_pause = getattr(self.pipeline.gate, "pause", None)
        if gate_pause is not None:
            gate_pause()

    def resume(self) -> None:
        self._call_on_loop("resume")
        gate_resume = getattr(self.pipeline.gate, "resume", None)
        if gate_resume is not None and self.state.has_detected_once:
            gate_resume()

    def stop(self) -> None:
        self._call_on_loop("stop")

    def _call_on_loop(self, method: str) -> None:
        loop, scheduler = self._loop, self._scheduler
        if loop is None or scheduler is None:
            return
        loop.call_soon_threadsafe(getattr(scheduler, method))

    def _record(self, result: FrameResult) -> None:
        s = self.summary
        s.frames_processed += 1
        if result.failed:
            s.failed_frames += 1
        elif result.detections:
            s.frames_with_detections += 1
            if s.first_detection_frame is None:
                s.first_detection_frame = result.frame.index
