from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import InvalidInputError
from .scratch import ScratchBuffers


def pack(image: np.ndarray, target_size: int, scratch: Optional[ScratchBuffers] = None) -> np.ndarray:
    """
    Turn a letterboxed HWC RGB/RGBA uint8 image into the NCHW float32 blob the
    network expects: alpha dropped, values scaled to [0, 1], channels planar
    (all R, then all G, then all B). Channel order is kept as-is.

    Returns an array of shape (1, 3, target_size, target_size).
    """

    if image is None or not hasattr(image, "shape"):
        raise InvalidInputError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InvalidInputError(f"Expected image shape (H, W, 3|4), got {image.shape}")
    if image.dtype != np.uint8:
        raise InvalidInputError(f"Expected uint8 pixels, got {image.dtype}")
    size = int(target_size)
    if image.shape[0] != size or image.shape[1] != size:
        raise InvalidInputError(
            f"Image is {image.shape[1]}x{image.shape[0]}, expected {size}x{size} for packing."
        )

    shape = (1, 3, size, size)
    blob = scratch.buffer("tensor", shape, np.float32) if scratch is not None else np.empty(shape, dtype=np.float32)

    # HWC -> CHW, drop alpha
    np.copyto(blob[0], np.transpose(image[:, :, :3], (2, 0, 1)))
    blob /= 255.0
    return blob
