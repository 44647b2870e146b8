"""
Inference engines behind `live_detect.runtime.load_pipeline`.

Imported on demand, so letterboxing, decoding and scheduling work without an
inference runtime present.
"""

from .onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

__all__ = ["OnnxRuntimeBackend", "OnnxRuntimeBackendConfig"]
