"""
Frame scheduling around the detection pipeline.

The camera side calls `FrameAnalyzer.submit(frame)` for every frame and never
waits. A single worker thread runs at most one detection at a time; frames that
arrive while it is busy are closed immediately (keep only latest). On top of
that a skip counter limits the inference rate, and a small state machine
switches between the fast realtime detector and a one-shot precise capture:

    REALTIME --switch_to_precise()--> PRECISE_CAPTURE --(one processed frame)--> PAUSED
    PAUSED --resume()--> REALTIME
"""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np

from .config import AnalyzerConfig, DetectorConfig
from .errors import InvalidInputError, ResourceReleaseError, UnsupportedShapeError
from .metrics import MetricsLevel, format_metrics
from .runtime import YoloPipeline, load_pipeline
from .scratch import ScratchBuffers
from .types import DetectorResult, Frame

logger = logging.getLogger(__name__)

DetectorLoader = Callable[[bytes, DetectorConfig, MetricsLevel], YoloPipeline]

_STOP = object()


class AnalyzerMode(Enum):
    REALTIME = "realtime"
    PRECISE_CAPTURE = "precise_capture"
    PAUSED = "paused"


@dataclass
class AnalyzerStats:
    frames_seen: int = 0
    frames_skipped: int = 0
    # closed without running: worker busy, paused, stopped or no usable model
    frames_dropped: int = 0
    frames_processed: int = 0
    frames_failed: int = 0


def _default_loader(model_bytes: bytes, cfg: DetectorConfig, level: MetricsLevel) -> YoloPipeline:
    return load_pipeline(model_bytes, detector_cfg=cfg, metrics_level=level)


class FrameAnalyzer:
    """
    Decides which camera frames get analysed, and with which detector.

    Results and failures leave through callbacks, which run on the worker thread
    and should only hand the value over to the UI loop:

    - on_result(DetectorResult): every processed frame
    - on_error(Exception): per-frame failures and inference failures
    - on_background_cleared(): `resume()` dropped the frame retained by a precise capture
    - on_resolution(width, height): first processed frame, and whenever the
      upright frame size changes (display transforms must be recomputed)
    """

    def __init__(
        self,
        config: AnalyzerConfig = AnalyzerConfig(),
        *,
        on_result: Callable[[DetectorResult], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        on_background_cleared: Optional[Callable[[], None]] = None,
        on_resolution: Optional[Callable[[int, int], None]] = None,
        loader: Optional[DetectorLoader] = None,
    ):
        self.config = config
        self._on_result = on_result
        self._on_error = on_error
        self._on_background_cleared = on_background_cleared
        self._on_resolution = on_resolution
        self._loader = loader or _default_loader

        self._frames_to_skip = config.frames_to_skip
        self._skip_counter = config.frames_to_skip

        self._mode = AnalyzerMode.REALTIME
        self._mode_lock = threading.Lock()
        # Held for the whole life of one pipeline run, from hand-off to publish.
        self._busy = threading.Lock()
        # Orders frame hand-off against stop(), so no frame lands behind the stop marker.
        self._handoff = threading.Lock()
        self._stats_lock = threading.Lock()

        self._fast: Optional[YoloPipeline] = None
        self._precise: Optional[YoloPipeline] = None
        self._inert = True
        self._accepting = False

        self._scratch = ScratchBuffers()
        self._slot: "queue.Queue[object]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._resolution: Optional[Tuple[int, int]] = None

        self.retained_image: Optional[np.ndarray] = None
        self.stats = AnalyzerStats()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def start(self, fast_model: bytes, precise_model: Optional[bytes] = None) -> None:
        """
        Load the detectors and start the worker thread.

        Raises ModelLoadError (or whatever the loader raises) without leaving
        anything running or loaded.
        Every start begins in REALTIME with a full skip counter.
        """

        if self._worker is not None:
            raise RuntimeError("FrameAnalyzer is already running.")

        self.load_models(fast_model, precise_model)

        with self._mode_lock:
            self._mode = AnalyzerMode.REALTIME
        self._skip_counter = self._frames_to_skip
        self._slot = queue.Queue()
        self._accepting = True
        self._worker = threading.Thread(target=self._worker_loop, name="FrameAnalyzer", daemon=True)
        self._worker.start()
        logger.info(
            "Frame analyzer started | frames_to_skip=%d | realtime=%dpx | precise=%dpx",
            self._frames_to_skip,
            self.config.realtime.input_size,
            self.config.precise.input_size,
        )

    def load_models(self, fast_model: bytes, precise_model: Optional[bytes] = None) -> None:
        """
        (Re)load both detectors. Waits for an in-flight run before swapping.

        Without `precise_model` the fast model bytes are reused; if both detector
        configs are equal the same instance serves both modes.
        """

        level = MetricsLevel.from_flags(self.config.show_performance, self.config.verbose_performance)
        fast = self._loader(fast_model, self.config.realtime, level)
        if precise_model is None and self.config.precise == self.config.realtime:
            precise = fast
        else:
            try:
                precise = self._loader(
                    precise_model if precise_model is not None else fast_model,
                    self.config.precise,
                    level,
                )
            except Exception:
                self._close_detectors(fast, None)
                raise

        with self._busy:
            old_fast, old_precise = self._fast, self._precise
            self._fast, self._precise = fast, precise
            self._inert = False
        self._close_detectors(old_fast, old_precise)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop accepting frames and release the detectors.

        A run in flight is allowed to finish; resources are released once it
        has. A frame waiting for the worker is closed without being analysed.
        """

        with self._handoff:
            self._accepting = False
            worker, self._worker = self._worker, None
            if worker is not None:
                self._slot.put(_STOP)
        if worker is not None:
            worker.join(timeout)
            if worker.is_alive():
                logger.warning("Frame analyzer worker still busy after %.1fs; it releases resources on exit", timeout)
            return

        with self._busy:
            self._release_resources()

    @property
    def running(self) -> bool:
        return self._worker is not None and self._accepting

    # ------------------------------------------------------------------ #
    # Commands from the UI side
    # ------------------------------------------------------------------ #
    @property
    def mode(self) -> AnalyzerMode:
        with self._mode_lock:
            return self._mode

    def switch_to_precise(self) -> bool:
        with self._mode_lock:
            if self._mode is not AnalyzerMode.REALTIME:
                logger.debug("Ignoring precise request in mode %s", self._mode.value)
                return False
            self._mode = AnalyzerMode.PRECISE_CAPTURE
        logger.info("Precise capture requested")
        return True

    def resume(self) -> bool:
        with self._mode_lock:
            if self._mode is AnalyzerMode.REALTIME:
                return False
            self._mode = AnalyzerMode.REALTIME
            self.retained_image = None
        logger.info("Resumed realtime detection")
        if self._on_background_cleared is not None:
            self._call_listener(self._on_background_cleared)
        return True

    def set_frames_to_skip(self, frames_to_skip: int) -> None:
        """Takes effect the next time the skip counter resets."""
        if frames_to_skip < 0:
            raise ValueError("frames_to_skip must be >= 0")
        self._frames_to_skip = int(frames_to_skip)

    @property
    def frames_to_skip(self) -> int:
        return self._frames_to_skip

    # ------------------------------------------------------------------ #
    # Frame entry points
    # ------------------------------------------------------------------ #
    def submit(self, frame: Frame) -> bool:
        """
        Hand a frame to the worker without blocking.

        Returns True if the frame was queued for analysis. Every other frame is
        closed before this returns.
        """

        if not self._busy.acquire(blocking=False):
            self._drop(frame)
            return False
        try:
            with self._handoff:
                admitted = self._admit(frame) and self._worker is not None
                if admitted:
                    # The worker releases `_busy` once it is done with this frame.
                    self._slot.put_nowait(frame)
        except BaseException:
            self._busy.release()
            raise
        if not admitted:
            frame.close()
            self._busy.release()
        return admitted

    def analyze(self, frame: Frame) -> Optional[DetectorResult]:
        """
        Same policy as `submit`, but runs the pipeline on the caller's thread.

        For callers that already run frame analysis on their own executor.
        Returns the published result, or None when the frame was not analysed.
        """

        if not self._busy.acquire(blocking=False):
            self._drop(frame)
            return None
        try:
            if not self._admit(frame):
                frame.close()
                return None
            return self._process(frame)
        finally:
            self._busy.release()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _admit(self, frame: Frame) -> bool:
        """Gate a frame. Only called while holding `_busy`."""

        self._count("frames_seen")
        if not self._accepting or self._inert:
            self._count("frames_dropped")
            return False
        if self.mode is AnalyzerMode.PAUSED:
            self._count("frames_dropped")
            return False
        if self._skip_counter > 0:
            self._skip_counter -= 1
            self._count("frames_skipped")
            return False
        self._skip_counter = self._frames_to_skip
        return True

    def _drop(self, frame: Frame) -> None:
        self._count("frames_seen")
        self._count("frames_dropped")
        frame.close()

    def _count(self, name: str) -> None:
        with self._stats_lock:
            setattr(self.stats, name, getattr(self.stats, name) + 1)

    def _worker_loop(self) -> None:
        try:
            while True:
                item = self._slot.get()
                if item is _STOP:
                    break
                try:
                    self._process(item)  # type: ignore[arg-type]
                finally:
                    self._busy.release()
        finally:
            with self._busy:
                self._release_resources()

    def _process(self, frame: Frame) -> Optional[DetectorResult]:
        if not self._accepting or self._inert:
            self._count("frames_dropped")
            frame.close()
            return None

        mode = self.mode
        if mode is AnalyzerMode.PAUSED:
            self._count("frames_dropped")
            frame.close()
            return None

        precise = mode is AnalyzerMode.PRECISE_CAPTURE
        detector = self._precise if precise else self._fast
        self._note_resolution(frame)

        try:
            result = detector.detect(frame, store_image=precise, scratch=self._scratch)
        except (InvalidInputError, UnsupportedShapeError) as e:
            frame.close()
            self._count("frames_failed")
            logger.warning("Dropped frame: %s", e)
            self._report(e)
            return None
        except Exception as e:
            frame.close()
            self._count("frames_failed")
            self._inert = True
            logger.error("Inference failed; detection stays off until a model is reloaded", exc_info=True)
            self._report(e)
            return None

        self._count("frames_processed")
        if precise:
            with self._mode_lock:
                captured = self._mode is AnalyzerMode.PRECISE_CAPTURE
                if captured:
                    self._mode = AnalyzerMode.PAUSED
                    self.retained_image = result.image
            if not captured:
                # resume() arrived while the precise pass was running
                result = dataclasses.replace(result, image=None)
            else:
                logger.info("Precise capture done: %d detections, analysis paused", len(result.detections))

        if result.metrics:
            logger.debug("Detection timings: %s", format_metrics(result.metrics))
        self._call_listener(self._on_result, result)
        return result

    def _note_resolution(self, frame: Frame) -> None:
        size = frame.upright_size
        if size == self._resolution:
            return
        if self._resolution is not None:
            logger.info("Camera resolution changed %s -> %s", self._resolution, size)
        self._resolution = size
        if self._on_resolution is not None:
            self._call_listener(self._on_resolution, size[0], size[1])

    def _report(self, error: Exception) -> None:
        if self._on_error is not None:
            self._call_listener(self._on_error, error)

    def _call_listener(self, callback: Callable, *args) -> None:
        # A faulty listener must not take the worker down with it.
        try:
            callback(*args)
        except Exception:
            logger.exception("Listener %r raised", callback)

    def _release_resources(self) -> None:
        fast, precise = self._fast, self._precise
        self._fast = self._precise = None
        self._inert = True
        self._close_detectors(fast, precise)
        self._scratch.release()
        self.retained_image = None

    def _close_detectors(self, fast: Optional[YoloPipeline], precise: Optional[YoloPipeline]) -> None:
        for detector in {id(d): d for d in (fast, precise) if d is not None}.values():
            try:
                detector.close()
            except Exception as e:
                err = ResourceReleaseError(f"Failed to close detector: {e}")
                logger.error("%s", err, exc_info=e)
