from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from .config import DetectorConfig
from .errors import ResourceReleaseError
from .letterbox import letterbox, rotate_image
from .metrics import MetricsLevel, StageClock
from .postprocess import YoloPostConfig, YoloPostprocessor
from .scratch import ScratchBuffers
from .tensor import pack
from .types import DetectorResult, Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LetterboxConfig:
    target_size: int = 640
    color: Tuple[int, int, int] = (114, 114, 114)


class YoloPipeline:
    """
    One detection pass: letterbox -> pack -> inference -> decode -> NMS.

    The pipeline expects RGB (or RGBA) images as `np.ndarray` and returns a
    `DetectorResult` whose boxes are in model-input coordinates, together with
    the `LetterboxInfo` needed to map them back.

    Not thread-safe: a pipeline and the scratch arena it writes into belong to
    one worker at a time.
    """

    def __init__(
        self,
        infer_fn: Callable[[np.ndarray], np.ndarray],
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        letterbox_cfg: LetterboxConfig = LetterboxConfig(),
        post_cfg: YoloPostConfig = YoloPostConfig(),
        metrics_level: MetricsLevel = MetricsLevel.NONE,
    ):
        self._infer_fn = infer_fn
        self.backend = backend
        self.backend_name = backend_name
        self.letterbox_cfg = letterbox_cfg
        self.post = YoloPostprocessor(post_cfg)
        self.metrics_level = metrics_level
        self._scratch = ScratchBuffers()

    def __call__(self, image_rgb: np.ndarray) -> DetectorResult:
        return self._run(image_rgb, StageClock(self.metrics_level), self._scratch, store_image=False)

    def detect(
        self,
        frame: Frame,
        *,
        store_image: bool = False,
        scratch: Optional[ScratchBuffers] = None,
    ) -> DetectorResult:
        """
        Run a full pass on a camera frame.

        Pixels are copied out and the frame is closed before any heavy work so the
        camera can reuse its buffer. With `store_image` the copied (upright) frame
        is attached to the result.
        """

        clock = StageClock(self.metrics_level)
        with clock.stage("Copy"):
            try:
                image = frame.copy_pixels()
            finally:
                frame.close()
            image = rotate_image(image, frame.rotation_degrees)
        return self._run(image, clock, scratch if scratch is not None else self._scratch, store_image=store_image)

    def _run(
        self,
        image_rgb: np.ndarray,
        clock: StageClock,
        scratch: ScratchBuffers,
        *,
        store_image: bool,
    ) -> DetectorResult:
        size = self.letterbox_cfg.target_size

        with clock.stage("Letterbox"):
            padded, info = letterbox(image_rgb, size, self.letterbox_cfg.color, scratch)

        with clock.stage("Tensor"):
            blob = pack(padded, size, scratch)

        with clock.stage("Inference"):
            preds = self._infer_fn(blob)

        with clock.stage("Decode"):
            detections = self.post.decode(preds)

        with clock.stage("NMS"):
            detections = self.post.suppress(detections)

        return DetectorResult(
            detections=tuple(detections),
            letterbox_info=info,
            metrics=clock.finish(),
            image=image_rgb if store_image else None,
        )

    def close(self) -> None:
        """Release the inference backend and scratch buffers. Failures are logged, not raised."""

        backend, self.backend = self.backend, None
        close = getattr(backend, "close", None)
        if close is not None:
            try:
                close()
            except Exception as e:
                err = ResourceReleaseError(f"Failed to release {self.backend_name or 'backend'}: {e}")
                logger.error("%s", err, exc_info=e)
        self._scratch.release()


def load_pipeline(
    model_bytes: bytes,
    *,
    detector_cfg: DetectorConfig = DetectorConfig(),
    backend: str = "onnxruntime",
    metrics_level: MetricsLevel = MetricsLevel.NONE,
    onnx_threads: Optional[int] = None,
) -> YoloPipeline:
    """
    Create a detection pipeline for an in-memory model.

    Raises ModelLoadError when the engine cannot load the model on either the
    preferred or the fallback execution path.
    """

    letterbox_cfg = LetterboxConfig(target_size=detector_cfg.input_size, color=detector_cfg.pad_color)
    post_cfg = YoloPostConfig(
        conf_threshold=detector_cfg.conf_threshold,
        iou_threshold=detector_cfg.iou_threshold,
    )

    chosen = backend.lower()
    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        ort_backend = OnnxRuntimeBackend(
            model_bytes,
            OnnxRuntimeBackendConfig(
                providers=detector_cfg.providers,
                intra_op_num_threads=onnx_threads,
            ),
        )
        return YoloPipeline(
            ort_backend.infer,
            backend=ort_backend,
            backend_name="onnxruntime",
            letterbox_cfg=letterbox_cfg,
            post_cfg=post_cfg,
            metrics_level=metrics_level,
        )

    raise ValueError(f"Unsupported backend: {backend!r}")
