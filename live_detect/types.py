from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import numpy as np

from .errors import InvalidInputError


@dataclass(frozen=True)
class Detection:
    """
    One detected object in model-input pixel space (after letterboxing).

    The box is stored in center form, as the network emits it. Use `as_xyxy()`
    for geometric operations.
    """

    center_x: float
    center_y: float
    width: float
    height: float
    class_index: int
    score: float

    def __post_init__(self) -> None:
        if not (self.width > 0 and self.height > 0):
            raise InvalidInputError(f"Detection box must have positive size, got {self.width}x{self.height}")
        if not (0.0 <= self.score <= 1.0):
            raise InvalidInputError(f"Detection score must be in [0, 1], got {self.score}")

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        half_w = self.width / 2.0
        half_h = self.height / 2.0
        return (
            self.center_x - half_w,
            self.center_y - half_h,
            self.center_x + half_w,
            self.center_y + half_h,
        )


@dataclass(frozen=True)
class LetterboxInfo:
    """
    Affine transform applied while letterboxing a frame.

    scale: ratio applied to the original image to fit the square model input
    pad_x / pad_y: left / top padding in model-input pixels
    """

    scale: float
    pad_x: int
    pad_y: int


@dataclass(frozen=True)
class StageTiming:
    name: str
    duration_ns: int

    @property
    def duration_ms(self) -> float:
        return self.duration_ns / 1e6


@dataclass(frozen=True)
class DetectorResult:
    detections: Tuple[Detection, ...]
    letterbox_info: LetterboxInfo
    metrics: Optional[Tuple[StageTiming, ...]] = None
    # Only set by a precise pass that asked for the frame to be retained.
    image: Optional[np.ndarray] = field(default=None, compare=False)


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x <= self.right and self.top <= y <= self.bottom


class Frame:
    """
    A camera frame handed over by the acquisition side.

    `pixels` is an interleaved `(H, W, 3)` RGB or `(H, W, 4)` RGBA uint8 buffer that
    belongs to the camera. `on_close` is invoked exactly once, when the frame is
    closed, so the producer can reuse the buffer.
    """

    def __init__(
        self,
        pixels: np.ndarray,
        *,
        rotation_degrees: int = 0,
        on_close: Optional[Callable[[], None]] = None,
    ):
        if pixels is None or not hasattr(pixels, "shape"):
            raise InvalidInputError("Frame pixels must be a NumPy array.")
        self._pixels: Optional[np.ndarray] = pixels
        self.rotation_degrees = int(rotation_degrees)
        self._on_close = on_close
        self.width = int(pixels.shape[1]) if pixels.ndim >= 2 else 0
        self.height = int(pixels.shape[0]) if pixels.ndim >= 1 else 0

    @property
    def upright_size(self) -> Tuple[int, int]:
        """(width, height) after applying `rotation_degrees`."""
        if self.rotation_degrees % 180 == 90:
            return self.height, self.width
        return self.width, self.height

    @property
    def closed(self) -> bool:
        return self._pixels is None

    def copy_pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise InvalidInputError("Frame has already been closed.")
        return np.array(self._pixels, copy=True, order="C")

    def close(self) -> None:
        if self._pixels is None:
            return
        self._pixels = None
        if self._on_close is not None:
            callback, self._on_close = self._on_close, None
            callback()

    def __enter__(self) -> "Frame":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Frame({self.width}x{self.height}, rotation={self.rotation_degrees}, {state})"
