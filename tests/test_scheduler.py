import threading
import unittest
from typing import List, Optional

import numpy as np

from live_detect.config import AnalyzerConfig, DetectorConfig
from live_detect.errors import InvalidInputError, ModelLoadError
from live_detect.runtime import LetterboxConfig, YoloPipeline
from live_detect.scheduler import AnalyzerMode, FrameAnalyzer
from live_detect.types import DetectorResult, Frame, LetterboxInfo


class FakeDetector:
    """Stands in for a YoloPipeline: copies and closes the frame, returns an empty result."""

    def __init__(self, cfg: DetectorConfig, model_bytes: bytes):
        self.cfg = cfg
        self.model_bytes = model_bytes
        self.calls = 0
        self.close_calls = 0
        self.errors: List[Exception] = []
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    def detect(self, frame: Frame, *, store_image: bool = False, scratch=None) -> DetectorResult:
        self.calls += 1
        try:
            image = frame.copy_pixels()
        finally:
            frame.close()
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.errors:
            raise self.errors.pop(0)
        return DetectorResult(
            detections=(),
            letterbox_info=LetterboxInfo(scale=1.0, pad_x=0, pad_y=0),
            image=image if store_image else None,
        )

    def close(self) -> None:
        self.close_calls += 1


class FakeLoader:
    def __init__(self):
        self.loaded: List[FakeDetector] = []
        self.fail_on: Optional[int] = None

    def __call__(self, model_bytes, cfg, level):
        if self.fail_on is not None and len(self.loaded) == self.fail_on:
            self.loaded.append(None)
            raise ModelLoadError("cannot load")
        det = FakeDetector(cfg, model_bytes)
        self.loaded.append(det)
        return det


def _frame(h: int = 48, w: int = 64, rotation: int = 0) -> Frame:
    return Frame(np.zeros((h, w, 3), dtype=np.uint8), rotation_degrees=rotation)


PRECISE = AnalyzerConfig(frames_to_skip=0, precise=DetectorConfig(input_size=1280))


class TestFrameAnalyzer(unittest.TestCase):
    def _analyzer(self, config: AnalyzerConfig = AnalyzerConfig(frames_to_skip=0), on_result=None, **kwargs) -> FrameAnalyzer:
        self.loader = FakeLoader()
        self.results: List[DetectorResult] = []
        self.errors: List[Exception] = []
        analyzer = FrameAnalyzer(
            config,
            on_result=on_result or self.results.append,
            on_error=self.errors.append,
            loader=self.loader,
            **kwargs,
        )
        self.addCleanup(analyzer.stop)
        return analyzer

    def test_skip_five_processes_every_sixth_frame(self) -> None:
        analyzer = self._analyzer(AnalyzerConfig(frames_to_skip=5))
        analyzer.start(b"fast")
        processed = [analyzer.analyze(_frame()) is not None for _ in range(12)]
        self.assertEqual([i for i, p in enumerate(processed) if p], [5, 11])
        self.assertEqual(analyzer.stats.frames_skipped, 10)
        self.assertEqual(analyzer.stats.frames_processed, 2)

    def test_skip_zero_processes_every_frame(self) -> None:
        analyzer = self._analyzer()
        analyzer.start(b"fast")
        frames = [_frame() for _ in range(5)]
        for f in frames:
            self.assertIsNotNone(analyzer.analyze(f))
        self.assertTrue(all(f.closed for f in frames))

    def test_set_frames_to_skip(self) -> None:
        analyzer = self._analyzer()
        with self.assertRaises(ValueError):
            analyzer.set_frames_to_skip(-1)
        analyzer.set_frames_to_skip(1)
        self.assertEqual(analyzer.frames_to_skip, 1)
        analyzer.start(b"fast")
        # the counter picks up the new value after the next processed frame
        processed = [analyzer.analyze(_frame()) is not None for _ in range(5)]
        self.assertEqual(processed, [True, False, True, False, True])

    def test_single_detector_when_configs_match(self) -> None:
        analyzer = self._analyzer()
        analyzer.start(b"fast")
        self.assertEqual(len(self.loader.loaded), 1)
        analyzer.stop()
        self.assertEqual(self.loader.loaded[0].close_calls, 1)

    def test_precise_capture_pauses_and_resume_clears(self) -> None:
        cleared = []
        analyzer = self._analyzer(PRECISE, on_background_cleared=lambda: cleared.append(True))
        analyzer.start(b"fast", b"precise")
        fast, precise = self.loader.loaded
        self.assertEqual(precise.model_bytes, b"precise")
        self.assertEqual(precise.cfg.input_size, 1280)

        analyzer.analyze(_frame())
        self.assertEqual((fast.calls, precise.calls), (1, 0))
        self.assertIsNone(self.results[-1].image)

        self.assertTrue(analyzer.switch_to_precise())
        self.assertFalse(analyzer.switch_to_precise())
        result = analyzer.analyze(_frame())
        self.assertEqual(precise.calls, 1)
        self.assertIsNotNone(result.image)
        self.assertIs(analyzer.mode, AnalyzerMode.PAUSED)
        self.assertIs(analyzer.retained_image, result.image)

        paused_frame = _frame()
        self.assertIsNone(analyzer.analyze(paused_frame))
        self.assertTrue(paused_frame.closed)
        self.assertFalse(analyzer.switch_to_precise())

        self.assertTrue(analyzer.resume())
        self.assertEqual(cleared, [True])
        self.assertIsNone(analyzer.retained_image)
        self.assertIs(analyzer.mode, AnalyzerMode.REALTIME)
        self.assertFalse(analyzer.resume())

        analyzer.analyze(_frame())
        self.assertEqual((fast.calls, precise.calls), (2, 1))

    def test_precise_without_model_reuses_fast_bytes(self) -> None:
        analyzer = self._analyzer(PRECISE)
        analyzer.start(b"fast")
        fast, precise = self.loader.loaded
        self.assertIsNot(fast, precise)
        self.assertEqual(precise.model_bytes, b"fast")

    def test_worker_drops_frames_while_busy(self) -> None:
        done = threading.Event()
        analyzer = self._analyzer(on_result=lambda r: done.set())
        analyzer.start(b"fast")
        detector = self.loader.loaded[0]
        detector.gate = threading.Event()

        first = _frame()
        self.assertTrue(analyzer.submit(first))
        self.assertTrue(detector.entered.wait(5.0))

        late = _frame()
        self.assertFalse(analyzer.submit(late))
        self.assertTrue(late.closed)
        self.assertEqual(analyzer.stats.frames_dropped, 1)

        detector.gate.set()
        self.assertTrue(done.wait(5.0))
        self.assertTrue(first.closed)
        self.assertEqual(detector.calls, 1)

    def test_submit_before_start_closes_frame(self) -> None:
        analyzer = self._analyzer()
        frame = _frame()
        self.assertFalse(analyzer.submit(frame))
        self.assertTrue(frame.closed)
        self.assertFalse(analyzer.running)

    def test_invalid_frame_is_reported_and_dropped(self) -> None:
        analyzer = self._analyzer()
        analyzer.start(b"fast")
        detector = self.loader.loaded[0]
        detector.errors.append(InvalidInputError("bad frame"))

        self.assertIsNone(analyzer.analyze(_frame()))
        self.assertIsInstance(self.errors[0], InvalidInputError)
        self.assertIsNotNone(analyzer.analyze(_frame()))
        self.assertEqual(analyzer.stats.frames_failed, 1)

    def test_inference_failure_stops_detection_until_reload(self) -> None:
        analyzer = self._analyzer()
        analyzer.start(b"fast")
        detector = self.loader.loaded[0]
        detector.errors.append(RuntimeError("engine crashed"))

        with self.assertLogs("live_detect.scheduler", level="ERROR"):
            self.assertIsNone(analyzer.analyze(_frame()))
        self.assertIsInstance(self.errors[0], RuntimeError)

        frame = _frame()
        self.assertIsNone(analyzer.analyze(frame))
        self.assertTrue(frame.closed)
        self.assertEqual(detector.calls, 1)

        analyzer.load_models(b"fast-again")
        self.assertEqual(detector.close_calls, 1)
        self.assertIsNotNone(analyzer.analyze(_frame()))
        self.assertEqual(self.loader.loaded[-1].calls, 1)

    def test_start_failure_closes_loaded_detector(self) -> None:
        analyzer = self._analyzer(PRECISE)
        self.loader.fail_on = 1
        with self.assertRaises(ModelLoadError):
            analyzer.start(b"fast", b"precise")
        self.assertEqual(self.loader.loaded[0].close_calls, 1)
        self.assertFalse(analyzer.running)

    def test_bad_pixel_dtype_drops_only_that_frame(self) -> None:
        def pipeline_loader(model_bytes, cfg, level):
            return YoloPipeline(
                lambda blob: np.zeros((1, 6, 1), dtype=np.float32),
                letterbox_cfg=LetterboxConfig(target_size=64),
            )

        errors: List[Exception] = []
        analyzer = FrameAnalyzer(
            AnalyzerConfig(frames_to_skip=0),
            on_result=lambda r: None,
            on_error=errors.append,
            loader=pipeline_loader,
        )
        self.addCleanup(analyzer.stop)
        analyzer.start(b"fast")

        bad = Frame(np.zeros((48, 100, 3), dtype=np.int64))
        self.assertIsNone(analyzer.analyze(bad))
        self.assertTrue(bad.closed)
        self.assertIsInstance(errors[0], InvalidInputError)

        result = analyzer.analyze(Frame(np.zeros((48, 100, 3), dtype=np.uint8)))
        self.assertIsNotNone(result)
        self.assertEqual(analyzer.stats.frames_processed, 1)
        self.assertEqual(analyzer.stats.frames_failed, 1)

    def test_restart_begins_realtime_with_full_skip_counter(self) -> None:
        analyzer = self._analyzer()
        analyzer.start(b"fast")
        analyzer.switch_to_precise()
        self.assertIsNotNone(analyzer.analyze(_frame()))
        self.assertIs(analyzer.mode, AnalyzerMode.PAUSED)
        # counter was reset to 0 by the precise pass; the new value applies from the next start
        analyzer.set_frames_to_skip(1)
        analyzer.stop()

        analyzer.start(b"fast")
        self.assertIs(analyzer.mode, AnalyzerMode.REALTIME)
        self.assertIsNone(analyzer.analyze(_frame()))
        self.assertIsNotNone(analyzer.analyze(_frame()))
        self.assertEqual(analyzer.stats.frames_skipped, 1)

    def test_start_twice_rejected(self) -> None:
        analyzer = self._analyzer()
        analyzer.start(b"fast")
        with self.assertRaises(RuntimeError):
            analyzer.start(b"fast")

    def test_stop_releases_everything(self) -> None:
        analyzer = self._analyzer(PRECISE)
        analyzer.start(b"fast", b"precise")
        self.assertTrue(analyzer.running)
        analyzer.stop()
        self.assertFalse(analyzer.running)
        self.assertEqual([d.close_calls for d in self.loader.loaded], [1, 1])

        frame = _frame()
        self.assertFalse(analyzer.submit(frame))
        self.assertTrue(frame.closed)

    def test_resolution_callback(self) -> None:
        sizes = []
        analyzer = self._analyzer(on_resolution=lambda w, h: sizes.append((w, h)))
        analyzer.start(b"fast")
        analyzer.analyze(_frame())
        analyzer.analyze(_frame())
        analyzer.analyze(_frame(rotation=90))
        self.assertEqual(sizes, [(64, 48), (48, 64)])

    def test_listener_errors_are_logged(self) -> None:
        analyzer = self._analyzer(on_result=lambda r: 1 / 0)
        analyzer.start(b"fast")
        with self.assertLogs("live_detect.scheduler", level="ERROR"):
            self.assertIsNotNone(analyzer.analyze(_frame()))


if __name__ == "__main__":
    unittest.main()
