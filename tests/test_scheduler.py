import unittest

from overlay_kit.errors import PreconditionError
from overlay_kit.letterbox import compute_letterbox_params
from overlay_kit.runtime import DetectionPipeline, DetectionState, FrameResult

from Overlay_Playback.scheduler import CadenceConfig, FrameScheduler, IdleReason, SchedulerState
from overlay_fakes import (
    CountingGate,
    FakeLoop,
    ImmediateExecutor,
    ListFrameSource,
    RecordingRenderer,
    StubEngine,
    flat_output,
)

BOX = [320, 320, 100, 100, 0.9, 0]


class RecordingPipeline:
    """Stands in for DetectionPipeline; records frame indices."""

    def __init__(self, fail_on=None) -> None:
        self.processed = []
        self.analyzed = []
        self.delivered = []
        self.fail_on = fail_on

    def _result(self, frame) -> FrameResult:
        if self.fail_on is not None and frame.index == self.fail_on:
            raise PreconditionError("bad frame")
        return FrameResult(frame=frame, params=compute_letterbox_params(frame.width, frame.height, 640))

    def process_frame(self, frame, state) -> FrameResult:
        self.processed.append(frame.index)
        return self._result(frame)

    def analyze(self, frame) -> FrameResult:
        self.analyzed.append(frame.index)
        return self._result(frame)

    def deliver(self, result, state) -> FrameResult:
        self.delivered.append(result.frame.index)
        return result


def _scheduler(source=None, pipeline=None, cfg=CadenceConfig(), executor=None):
    loop = FakeLoop()
    source = ListFrameSource(count=None) if source is None else source
    pipeline = RecordingPipeline() if pipeline is None else pipeline
    sched = FrameScheduler(loop, source, pipeline, DetectionState(), cfg, executor=executor)
    return sched, loop, source, pipeline


class TestFrameScheduler(unittest.TestCase):
    def test_stop_before_first_tick_dispatches_nothing(self) -> None:
        sched, loop, source, pipeline = _scheduler()
        self.assertTrue(sched.start())
        sched.stop()
        loop.run_all()
        self.assertEqual(pipeline.processed, [])
        self.assertEqual(source.requested, [])
        self.assertIs(sched.state, SchedulerState.IDLE)
        self.assertIs(sched.idle_reason, IdleReason.STOPPED)

    def test_stop_between_ticks(self) -> None:
        sched, loop, _, pipeline = _scheduler()
        sched.start()
        loop.run_next()
        loop.run_next()
        sched.stop()
        self.assertEqual(loop.run_all(), 0)
        self.assertEqual(pipeline.processed, [1, 2])

    def test_double_start_is_noop(self) -> None:
        sched, loop, _, _ = _scheduler()
        self.assertTrue(sched.start())
        loop.run_next()
        self.assertEqual(sched.index, 1)
        self.assertFalse(sched.start())
        self.assertEqual(sched.index, 1)
        self.assertEqual(loop.pending(), 1)

    def test_start_without_source_is_noop(self) -> None:
        loop = FakeLoop()
        sched = FrameScheduler(loop, None, RecordingPipeline(), DetectionState())
        self.assertFalse(sched.start())
        self.assertIs(sched.state, SchedulerState.IDLE)
        self.assertEqual(loop.pending(), 0)

    def test_fetches_on_fixed_cadence_until_cap(self) -> None:
        sched, loop, source, pipeline = _scheduler(cfg=CadenceConfig(frame_interval_ms=100, max_frames=4))
        reasons = []
        sched.add_idle_callback(reasons.append)
        sched.start()
        loop.run_all()
        self.assertEqual(pipeline.processed, [1, 2, 3, 4])
        self.assertEqual(source.requested, [0, 100_000, 200_000, 300_000])
        self.assertAlmostEqual(loop.now, 0.4)
        self.assertEqual(reasons, [IdleReason.MAX_FRAMES])

    def test_end_of_stream_goes_idle(self) -> None:
        sched, loop, source, pipeline = _scheduler(source=ListFrameSource(count=2))
        sched.start()
        loop.run_all()
        self.assertEqual(pipeline.processed, [1, 2])
        self.assertEqual(len(source.requested), 3)
        self.assertIs(sched.idle_reason, IdleReason.END_OF_STREAM)
        self.assertIsNone(sched.error)

    def test_restart_resets_index(self) -> None:
        sched, loop, source, _ = _scheduler(cfg=CadenceConfig(max_frames=2))
        sched.start()
        loop.run_all()
        self.assertTrue(sched.start())
        loop.run_all()
        self.assertEqual(source.requested, [0, 100_000, 0, 100_000])

    def test_pause_and_resume_continue_from_index(self) -> None:
        sched, loop, source, pipeline = _scheduler(cfg=CadenceConfig(max_frames=4))
        sched.start()
        loop.run_next()
        loop.run_next()
        sched.pause()
        self.assertIs(sched.idle_reason, IdleReason.PAUSED)
        self.assertEqual(loop.run_all(), 0)

        self.assertTrue(sched.resume())
        loop.run_all()
        self.assertEqual(pipeline.processed, [1, 2, 3, 4])
        self.assertEqual(source.requested, [0, 100_000, 200_000, 300_000])

    def test_resume_requires_prior_running_pause(self) -> None:
        sched, loop, _, _ = _scheduler()
        self.assertFalse(sched.resume())
        sched.pause()
        self.assertFalse(sched.resume())
        sched.start()
        sched.stop()
        self.assertFalse(sched.resume())
        self.assertEqual(loop.pending(), 0)

    def test_precondition_error_stops_and_is_kept(self) -> None:
        sched, loop, _, pipeline = _scheduler(pipeline=RecordingPipeline(fail_on=2))
        sched.start()
        loop.run_all()
        self.assertEqual(pipeline.processed, [1, 2])
        self.assertIsInstance(sched.error, PreconditionError)
        self.assertIs(sched.idle_reason, IdleReason.ERROR)
        self.assertIs(sched.state, SchedulerState.IDLE)

    def test_render_failure_ends_run(self) -> None:
        class BrokenDelivery(RecordingPipeline):
            def process_frame(self, frame, state) -> FrameResult:
                raise RuntimeError("display closed")

        sched, loop, _, _ = _scheduler(pipeline=BrokenDelivery())
        sched.start()
        with self.assertLogs("Overlay_Playback.scheduler", level="ERROR"):
            loop.run_all()
        self.assertIsInstance(sched.error, RuntimeError)
        self.assertIs(sched.idle_reason, IdleReason.ERROR)
        self.assertEqual(loop.pending(), 0)

    def test_executor_delivers_on_loop_one_at_a_time(self) -> None:
        executor = ImmediateExecutor()
        sched, loop, _, pipeline = _scheduler(cfg=CadenceConfig(max_frames=3), executor=executor)
        sched.start()
        loop.run_next()  # tick: frame 1 analyzed, delivery queued on the loop
        self.assertEqual(pipeline.analyzed, [1])
        self.assertEqual(pipeline.delivered, [])
        loop.run_all()
        self.assertEqual(pipeline.analyzed, [1, 2, 3])
        self.assertEqual(pipeline.delivered, [1, 2, 3])
        self.assertEqual(pipeline.processed, [])
        self.assertEqual(executor.submitted, 3)

    def test_stop_keeps_frame_in_flight(self) -> None:
        sched, loop, _, pipeline = _scheduler(executor=ImmediateExecutor())
        settled = []
        sched.add_settled_callback(lambda: settled.append(sched.in_flight))
        sched.start()
        loop.run_next()
        self.assertTrue(sched.in_flight)

        sched.stop()
        loop.run_all()

        self.assertEqual(pipeline.delivered, [1])
        self.assertEqual(settled, [False])
        self.assertIs(sched.idle_reason, IdleReason.STOPPED)
        self.assertEqual(loop.pending(), 0)

    def test_executor_precondition_error(self) -> None:
        sched, loop, _, _ = _scheduler(pipeline=RecordingPipeline(fail_on=1), executor=ImmediateExecutor())
        sched.start()
        loop.run_all()
        self.assertIsInstance(sched.error, PreconditionError)


class TestEndToEnd(unittest.TestCase):
    def test_first_detection_on_frame_two(self) -> None:
        engine = StubEngine([flat_output([]), flat_output([BOX])])
        renderer = RecordingRenderer()
        gate = CountingGate()
        state = DetectionState()
        pipeline = DetectionPipeline(engine, renderer, gate)
        loop = FakeLoop()
        sched = FrameScheduler(loop, ListFrameSource(count=5), pipeline, state)

        opened_at = []
        sched.add_result_callback(lambda r: opened_at.append(r.frame.index) if gate.calls and not opened_at else None)
        sched.start()
        loop.run_all()

        self.assertEqual(gate.calls, 1)
        self.assertEqual(opened_at, [2])
        self.assertTrue(state.has_detected_once)
        self.assertEqual([c[0] for c in renderer.calls], [1, 2, 3, 4, 5])
        self.assertEqual(renderer.calls[0][1], [])
        for _, dets, notice in renderer.calls[1:]:
            self.assertEqual(len(dets), 1)
            self.assertIsNone(notice)
        self.assertIs(sched.idle_reason, IdleReason.END_OF_STREAM)


if __name__ == "__main__":
    unittest.main()
