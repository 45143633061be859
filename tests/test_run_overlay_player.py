import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from overlay_kit.runtime import DetectionPipeline

from Scripts import run_overlay_player
from overlay_fakes import ListFrameSource, StubEngine, flat_output

BOX = [320, 320, 100, 100, 0.9, 0]


class ReleasableSource(ListFrameSource):
    def __init__(self, count=None) -> None:
        super().__init__(count)
        self.released = False

    def release(self) -> None:
        self.released = True


class TestRunOverlayPlayer(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.video = Path(tmpdir.name) / "clip.mp4"
        self.video.write_bytes(b"")
        self.source = ReleasableSource()
        self.frames_at_playback = []

    def _fake_load_pipeline(self, model_path, renderer, gate, *, cfg, onnx_providers=None):
        engine = StubEngine([flat_output([]), flat_output([BOX])])
        return DetectionPipeline(engine, renderer, gate, cfg)

    def _fake_play_video(self, path) -> None:
        self.frames_at_playback.append(len(self.source.requested))

    def _run(self, *extra):
        argv = ["--video", str(self.video), "--model", "m.onnx", "--interval-ms", "1", "--max-frames", "20", *extra]
        with patch.object(run_overlay_player, "setup_logging"), patch.object(
            run_overlay_player.VideoFrameSource, "open", return_value=self.source
        ), patch.object(run_overlay_player, "load_pipeline", side_effect=self._fake_load_pipeline), patch.object(
            run_overlay_player, "play_video", side_effect=self._fake_play_video
        ) as play:
            code = run_overlay_player.main(argv)
        return code, play

    def test_playback_starts_at_first_detection(self) -> None:
        code, play = self._run("--play")
        self.assertEqual(code, 0)
        play.assert_called_once_with(self.video)
        # Sampling stopped on frame 2, the first frame with a detection.
        self.assertEqual(self.frames_at_playback, [2])
        self.assertTrue(self.source.released)

    def test_without_play_samples_every_frame(self) -> None:
        code, play = self._run()
        self.assertEqual(code, 0)
        play.assert_not_called()
        self.assertEqual(len(self.source.requested), 20)


if __name__ == "__main__":
    unittest.main()
