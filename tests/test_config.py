import json
import tempfile
import unittest
from pathlib import Path

from Overlay_Playback.config import OverlayConfig, load_overlay_config
from Overlay_Playback.run_config import apply_cli_overrides, collect_cli_dests
from Scripts.run_overlay_player import build_parser


class TestOverlayConfig(unittest.TestCase):
    def _write_config(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "overlay.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_defaults(self) -> None:
        cfg = OverlayConfig()
        self.assertEqual(cfg.input_size, 640)
        self.assertEqual(cfg.conf_threshold, 0.5)
        self.assertEqual(cfg.iou_threshold, 0.45)
        self.assertEqual(cfg.frame_interval_ms, 100)
        self.assertEqual(cfg.max_frames, 200)
        self.assertEqual(cfg.frame_interval_us, 100_000)

    def test_load_ok(self) -> None:
        path = self._write_config(
            {
                "input_size": 320,
                "conf_threshold": 0.6,
                "frame_interval_ms": 50,
                "pad_color": [114, 114, 114],
                "best_box_only": True,
                "log_level": "debug",
            }
        )
        cfg = load_overlay_config(path)
        self.assertEqual(cfg.input_size, 320)
        self.assertEqual(cfg.conf_threshold, 0.6)
        self.assertEqual(cfg.frame_interval_ms, 50)
        self.assertEqual(cfg.pad_color, (114, 114, 114))
        self.assertEqual(cfg.log_level, "DEBUG")

        pipe_cfg = cfg.pipeline_config()
        self.assertEqual(pipe_cfg.input_size, 320)
        self.assertTrue(pipe_cfg.best_box_only)
        self.assertEqual(pipe_cfg.iou_threshold, 0.45)

    def test_unknown_keys_rejected(self) -> None:
        path = self._write_config({"input_size": 640, "extra": 1})
        with self.assertRaises(ValueError):
            load_overlay_config(path)

    def test_invalid_values_rejected(self) -> None:
        for payload in (
            {"conf_threshold": 1.5},
            {"frame_interval_ms": 0},
            {"max_frames": 2.5},
            {"input_size": True},
            {"layout": "nchw"},
            {"pad_color": [0, 0]},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    load_overlay_config(self._write_config(payload))

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_overlay_config(Path("does/not/exist.json"))


class TestCliOverrides(unittest.TestCase):
    def test_only_typed_flags_override(self) -> None:
        parser = build_parser()
        argv = ["--video", "v.mp4", "--model", "m.onnx", "--conf", "0.7", "--max-frames=10"]
        args = parser.parse_args(argv)
        base = OverlayConfig(conf_threshold=0.3, iou_threshold=0.6, max_frames=50)

        cfg = apply_cli_overrides(base, args, collect_cli_dests(parser, argv))

        self.assertEqual(cfg.conf_threshold, 0.7)
        self.assertEqual(cfg.max_frames, 10)
        # --iou default does not clobber the file value.
        self.assertEqual(cfg.iou_threshold, 0.6)


if __name__ == "__main__":
    unittest.main()
