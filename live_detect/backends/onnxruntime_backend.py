from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import ModelLoadError

logger = logging.getLogger(__name__)


def _import_ort():
    try:
        import onnxruntime as ort  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError(
            "ONNX Runtime is not installed. Run `pip install onnxruntime` "
            "(or a platform build such as `onnxruntime-gpu`)."
        ) from e
    return ort


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    How to open an ONNX model with ONNX Runtime.

    - providers: execution providers to try first, usually an accelerator such as
      ["NnapiExecutionProvider", "CPUExecutionProvider"]. None means ORT's own default.
    - fallback_providers: the plain path used when the preferred one cannot load the model
    - intra_op_num_threads: thread cap for small devices
    """

    providers: Optional[Sequence[str]] = None
    fallback_providers: Sequence[str] = ("CPUExecutionProvider",)
    intra_op_num_threads: Optional[int] = None


class OnnxRuntimeBackend:
    """
    Runs a YOLO model held in memory as ONNX bytes.

    `infer()` takes the (1, 3, H, W) float32 blob from the tensor packer and
    returns the raw (1, 4 + C, A) output. Tensor names are looked up once here.
    """

    def __init__(self, model_bytes: bytes, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        self._ort = _import_ort()
        if not model_bytes:
            raise ModelLoadError("Model byte blob is empty.")

        self.cfg = cfg
        self.session = self._open(bytes(model_bytes))

        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name
        self._output_names: List[str] = [self.output_name]

    def _new_options(self):
        opts = self._ort.SessionOptions()
        if self.cfg.intra_op_num_threads is not None:
            opts.intra_op_num_threads = int(self.cfg.intra_op_num_threads)
        return opts

    def _open(self, model_bytes: bytes):
        preferred = list(self.cfg.providers) if self.cfg.providers is not None else None
        fallback = list(self.cfg.fallback_providers)
        try:
            session = self._ort.InferenceSession(model_bytes, sess_options=self._new_options(), providers=preferred)
        except Exception as first:
            logger.warning("ONNX model failed to load on %s, retrying on %s", preferred, fallback, exc_info=True)
            try:
                session = self._ort.InferenceSession(model_bytes, sess_options=self._new_options(), providers=fallback)
            except Exception as second:
                raise ModelLoadError(
                    f"Could not load ONNX model on any execution path: {first}; fallback: {second}"
                ) from second
        logger.info("ONNX model loaded | providers=%s", session.get_providers())
        return session

    @property
    def providers_in_use(self) -> Tuple[str, ...]:
        """Providers of the open session, highest priority first. Empty once closed."""
        return tuple(self.session.get_providers()) if self.session is not None else ()

    def infer(self, blob: np.ndarray) -> np.ndarray:
        if self.session is None:
            raise RuntimeError("ONNX Runtime session has been closed.")
        (output,) = self.session.run(self._output_names, {self.input_name: blob})
        return output

    def close(self) -> None:
        # Native memory goes with the last session reference.
        self.session = None
