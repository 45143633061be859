from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence

from Overlay_Playback.config import OverlayConfig, load_overlay_config
from Overlay_Playback.gate import EventPlaybackGate
from Overlay_Playback.ingest import VideoFrameSource
from Overlay_Playback.logging_utils import setup_logging
from Overlay_Playback.render import MultiRenderer, VideoFileRenderer, WindowRenderer, play_video
from Overlay_Playback.run_config import apply_cli_overrides, collect_cli_dests
from Overlay_Playback.session import PlaybackSession
from overlay_kit.errors import PreconditionError
from overlay_kit.runtime import load_pipeline

logger = logging.getLogger("run_overlay_player")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Overlay detections on sampled video frames; start full playback on the first detection."
    )
    parser.add_argument("--video", required=True, help="Path to the input video file.")
    parser.add_argument("--model", required=True, help="Path to an ONNX detection model.")
    parser.add_argument("--config", default=None, help="Optional JSON overlay config; CLI flags take precedence.")
    parser.add_argument("--imgsz", type=int, default=640, help="Square model input size.")
    parser.add_argument("--conf", type=float, default=0.5, help="Confidence threshold (inclusive).")
    parser.add_argument("--iou", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--interval-ms", type=int, default=100, help="Spacing between sampled frames.")
    parser.add_argument("--max-frames", type=int, default=200, help="Stop after N sampled frames.")
    parser.add_argument("--layout", choices=("auto", "flat", "anchors"), default="auto", help="Force output layout.")
    parser.add_argument("--best-box-only", action="store_true", help="Keep only the top box per frame after NMS.")
    parser.add_argument("--max-det", type=int, default=None, help="Cap on boxes kept by NMS.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--show", action="store_true", help="Show a window with the overlay frames.")
    parser.add_argument("--out", default=None, help="Optional output video path for the overlay frames.")
    parser.add_argument("--play", action="store_true", help="Stop sampling at the first detection and play the full video.")
    parser.add_argument(
        "--async-inference", action="store_true", help="Run inference on a worker thread (one frame in flight)."
    )
    parser.add_argument("--log-level", default="INFO", help="DEBUG / INFO / WARNING / ERROR.")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)

    cfg = load_overlay_config(Path(args.config)) if args.config else OverlayConfig()
    cfg = apply_cli_overrides(cfg, args, collect_cli_dests(parser, argv))
    setup_logging(cfg.log_level, args.log_file)

    onnx_providers: Optional[List[str]] = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    video = Path(args.video)
    if not video.exists():
        raise FileNotFoundError(f"Video not found: {video}")

    source = VideoFrameSource.open(video)
    renderer = MultiRenderer()
    session: Optional[PlaybackSession] = None

    def _quit() -> None:
        if session is not None:
            session.stop()

    def _start_playback() -> None:
        # Sampling ends at the first detection; full playback takes over once run() returns.
        _quit()

    gate = EventPlaybackGate(on_start=_start_playback if args.play else None)

    if args.show:
        renderer.renderers.append(WindowRenderer(on_quit=_quit))
    if args.out:
        renderer.renderers.append(VideoFileRenderer(args.out, fps=1000.0 / cfg.frame_interval_ms))

    executor = ThreadPoolExecutor(max_workers=1) if args.async_inference else None
    try:
        pipeline = load_pipeline(
            args.model,
            renderer,
            gate,
            cfg=cfg.pipeline_config(),
            onnx_providers=onnx_providers,
        )
        session = PlaybackSession(pipeline, source, cfg, executor=executor)
        summary = session.run()
    except PreconditionError as exc:
        logger.error("Cannot process %s: %s", video, exc)
        return 2
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
        renderer.close()
        source.release()

    print(f"Frames processed: {summary.frames_processed}")
    print(f"Frames with detections: {summary.frames_with_detections}")
    if summary.failed_frames:
        print(f"Failed frames: {summary.failed_frames}")
    if summary.first_detection_frame is None:
        print("No detection; playback not started.")
        return 0

    print(f"First detection at frame {summary.first_detection_frame}")
    if args.play and gate.playing:
        play_video(video)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
