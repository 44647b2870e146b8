from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Dict, Optional

import cv2

from live_detect import (
    AnalyzerConfig,
    AnalyzerMode,
    DetectorResult,
    Frame,
    FrameAnalyzer,
    ModelLoadError,
    draw_detections,
    load_analyzer_config,
)
from live_detect.metrics import format_metrics

logger = logging.getLogger("run_live_detect")


def setup_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def open_capture(*, video: Optional[str] = None, webcam: Optional[int] = None) -> cv2.VideoCapture:
    if (video is None) == (webcam is None):
        raise ValueError("Exactly one of --video/--webcam must be provided.")
    cap = cv2.VideoCapture(video) if video is not None else cv2.VideoCapture(int(webcam))
    if not cap.isOpened():
        raise RuntimeError("Failed to open video source.")
    return cap


def load_labels(path: Optional[str]) -> Dict[int, str]:
    """One class name per line; line number is the class index."""
    if path is None:
        return {}
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return {i: line.strip() for i, line in enumerate(lines) if line.strip()}


class LatestResult:
    """Holds whatever the analyzer published last, for the display loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._result: Optional[DetectorResult] = None

    def set(self, result: Optional[DetectorResult]) -> None:
        with self._lock:
            self._result = result

    def get(self) -> Optional[DetectorResult]:
        with self._lock:
            return self._result


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live YOLO detection on a camera or video stream.")
    parser.add_argument("--model", required=True, help="Fast (realtime) ONNX model.")
    parser.add_argument("--precise-model", default=None, help="Slower ONNX model for precise capture.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--webcam", type=int, default=None, help="Webcam index.")
    src.add_argument("--video", default=None, help="Video file or stream URL.")
    parser.add_argument("--config", default=None, help="Analyzer config JSON.")
    parser.add_argument("--labels", default=None, help="Text file with one class name per line.")
    parser.add_argument("--frames-to-skip", type=int, default=None, help="Override frames_to_skip.")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level)

    config = load_analyzer_config(Path(args.config)) if args.config else AnalyzerConfig()
    class_names = load_labels(args.labels)

    latest = LatestResult()

    def on_result(result: DetectorResult) -> None:
        latest.set(result)
        if result.metrics:
            logger.info("%d detections | %s", len(result.detections), format_metrics(result.metrics))

    def on_error(error: Exception) -> None:
        logger.error("Detection error: %s", error)

    analyzer = FrameAnalyzer(
        config,
        on_result=on_result,
        on_error=on_error,
        on_background_cleared=lambda: latest.set(None),
    )
    if args.frames_to_skip is not None:
        analyzer.set_frames_to_skip(args.frames_to_skip)

    fast_model = Path(args.model).read_bytes()
    precise_model = Path(args.precise_model).read_bytes() if args.precise_model else None
    try:
        analyzer.start(fast_model, precise_model)
    except ModelLoadError as e:
        logger.error("Could not load model: %s", e)
        return 2

    cap = open_capture(video=args.video, webcam=args.webcam)
    try:
        while True:
            ok, frame_bgr = cap.read()
            if not ok or frame_bgr is None:
                break

            # The pipeline expects RGB; OpenCV delivers BGR.
            analyzer.submit(Frame(cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)))

            result = latest.get()
            if analyzer.mode is AnalyzerMode.PAUSED and analyzer.retained_image is not None:
                background = cv2.cvtColor(analyzer.retained_image, cv2.COLOR_RGB2BGR)
            else:
                background = frame_bgr
            vis = draw_detections(background, result, class_names=class_names) if result else background

            cv2.imshow("live_detect", vis)
            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            if key == ord("p"):
                analyzer.switch_to_precise()
            elif key == ord("r"):
                analyzer.resume()
    finally:
        cap.release()
        analyzer.stop()
        cv2.destroyAllWindows()

    s = analyzer.stats
    logger.info(
        "Frames seen=%d processed=%d skipped=%d dropped=%d failed=%d",
        s.frames_seen,
        s.frames_processed,
        s.frames_skipped,
        s.frames_dropped,
        s.frames_failed,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
