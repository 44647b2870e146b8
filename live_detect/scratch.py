from __future__ import annotations

from typing import Dict, Tuple

import numpy as np


class ScratchBuffers:
    """
    Named buffers reused across frames to keep per-frame allocation low.

    Owned by a single pipeline worker. `buffer()` hands back the same array for
    the same (name, shape, dtype); callers overwrite it fully before reading.
    Nothing returned from here may end up inside a published result.
    """

    def __init__(self) -> None:
        self._buffers: Dict[str, np.ndarray] = {}

    def buffer(self, name: str, shape: Tuple[int, ...], dtype=np.uint8) -> np.ndarray:
        shape = tuple(int(s) for s in shape)
        dtype = np.dtype(dtype)
        buf = self._buffers.get(name)
        if buf is None or buf.shape != shape or buf.dtype != dtype:
            buf = np.empty(shape, dtype=dtype)
            self._buffers[name] = buf
        return buf

    def __contains__(self, name: str) -> bool:
        return name in self._buffers

    def release(self) -> None:
        self._buffers.clear()
