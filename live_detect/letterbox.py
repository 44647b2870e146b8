from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .errors import InvalidInputError
from .scratch import ScratchBuffers
from .types import LetterboxInfo


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e
    return cv2


def _check_image(image: np.ndarray) -> Tuple[int, int, int]:
    if image is None or not hasattr(image, "shape"):
        raise InvalidInputError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InvalidInputError(f"Expected image shape (H, W, 3|4), got {image.shape}")
    if image.dtype != np.uint8:
        raise InvalidInputError(f"Expected uint8 pixels, got {image.dtype}")
    h, w, c = image.shape
    if h <= 0 or w <= 0:
        raise InvalidInputError(f"Image must not be empty, got {w}x{h}")
    return h, w, c


def letterbox(
    image: np.ndarray,
    target_size: int = 640,
    color: Tuple[int, int, int] = (114, 114, 114),
    scratch: Optional[ScratchBuffers] = None,
) -> Tuple[np.ndarray, LetterboxInfo]:
    """
    Scale an image so its longer side equals `target_size` and pad the shorter
    side to a `target_size` square, keeping the resized image centered.

    Odd padding goes to the right/bottom edge. When `scratch` is given the
    resized and padded images are written into its buffers, so the returned
    array is only valid until the next call with the same arena.

    Returns:
        padded: (target_size, target_size, C) uint8 image
        info: LetterboxInfo(scale, pad_x, pad_y) to undo the transform
    """

    cv2 = _cv2()

    h, w, c = _check_image(image)
    if int(target_size) <= 0:
        raise InvalidInputError(f"target_size must be positive, got {target_size}")
    size = int(target_size)

    scale = size / max(w, h)
    resized_w = max(1, int(round(w * scale)))
    resized_h = max(1, int(round(h * scale)))

    pad_x = (size - resized_w) // 2
    pad_y = (size - resized_h) // 2
    pad_right = size - resized_w - pad_x
    pad_bottom = size - resized_h - pad_y

    src = np.ascontiguousarray(image)
    if (w, h) != (resized_w, resized_h):
        resized_dst = scratch.buffer("resized", (resized_h, resized_w, c), src.dtype) if scratch is not None else None
        resized = cv2.resize(src, (resized_w, resized_h), dst=resized_dst, interpolation=cv2.INTER_LINEAR)
    else:
        resized = src

    # Alpha (if any) is opaque in the border; the packer drops it anyway.
    value = tuple(int(v) for v in color) + (255,) * (c - len(color))
    padded_dst = scratch.buffer("padded", (size, size, c), src.dtype) if scratch is not None else None
    padded = cv2.copyMakeBorder(
        resized,
        pad_y,
        pad_bottom,
        pad_x,
        pad_right,
        cv2.BORDER_CONSTANT,
        dst=padded_dst,
        value=value,
    )

    return padded, LetterboxInfo(scale=float(scale), pad_x=int(pad_x), pad_y=int(pad_y))


_ROTATIONS = {90: "ROTATE_90_CLOCKWISE", 180: "ROTATE_180", 270: "ROTATE_90_COUNTERCLOCKWISE"}


def rotate_image(image: np.ndarray, degrees: int) -> np.ndarray:
    """Rotate clockwise by a multiple of 90 degrees. 0 returns the input unchanged."""

    degrees = int(degrees) % 360
    if degrees == 0:
        return image
    if degrees not in _ROTATIONS:
        raise InvalidInputError(f"Rotation must be a multiple of 90 degrees, got {degrees}")
    _check_image(image)
    cv2 = _cv2()
    return cv2.rotate(np.ascontiguousarray(image), getattr(cv2, _ROTATIONS[degrees]))
