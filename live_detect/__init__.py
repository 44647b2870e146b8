"""
Real-time YOLO detection on a live camera stream.

Per frame: letterbox -> planar float tensor -> inference engine -> decode -> per-class NMS,
scheduled by `FrameAnalyzer` (frame skipping, realtime vs. precise capture, keep-only-latest).
NumPy and OpenCV for image work, ONNX Runtime as the inference engine.
"""

from .types import Detection, DetectorResult, Frame, LetterboxInfo, Rect, StageTiming
from .errors import (
    InvalidInputError,
    LiveDetectError,
    ModelLoadError,
    ResourceReleaseError,
    UnsupportedShapeError,
)
from .letterbox import letterbox, rotate_image
from .tensor import pack
from .nms import NMSConfig, iou, nms, suppress
from .postprocess import YoloPostConfig, YoloPostprocessor, decode
from .mapping import DisplayTransform, hit_test, to_display_rect, unletterbox
from .metrics import MetricsLevel, StageClock
from .scratch import ScratchBuffers
from .config import AnalyzerConfig, DetectorConfig, load_analyzer_config
from .runtime import LetterboxConfig, YoloPipeline, load_pipeline
from .scheduler import AnalyzerMode, AnalyzerStats, FrameAnalyzer
from .visualize import draw_detections

__all__ = [
    "Detection",
    "DetectorResult",
    "Frame",
    "LetterboxInfo",
    "Rect",
    "StageTiming",
    "InvalidInputError",
    "LiveDetectError",
    "ModelLoadError",
    "ResourceReleaseError",
    "UnsupportedShapeError",
    "letterbox",
    "rotate_image",
    "pack",
    "NMSConfig",
    "iou",
    "nms",
    "suppress",
    "YoloPostConfig",
    "YoloPostprocessor",
    "decode",
    "DisplayTransform",
    "hit_test",
    "to_display_rect",
    "unletterbox",
    "MetricsLevel",
    "StageClock",
    "ScratchBuffers",
    "AnalyzerConfig",
    "DetectorConfig",
    "load_analyzer_config",
    "LetterboxConfig",
    "YoloPipeline",
    "load_pipeline",
    "AnalyzerMode",
    "AnalyzerStats",
    "FrameAnalyzer",
    "draw_detections",
]
