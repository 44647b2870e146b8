"""
Map detections from model-input space back to camera and display space.

Two steps, each the inverse of something done upstream:
1. undo the letterbox (`LetterboxInfo`) -> camera pixels
2. apply the camera-to-view "fill" transform (`DisplayTransform`) -> view pixels

Both must come from the same camera resolution. A resolution change invalidates
every in-flight `LetterboxInfo` / `DisplayTransform` pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .errors import InvalidInputError
from .types import Detection, LetterboxInfo, Rect


@dataclass(frozen=True)
class DisplayTransform:
    """Center-crop scale from camera pixels to view pixels."""

    scale: float
    crop_x: float
    crop_y: float
    camera_width: int
    camera_height: int

    @classmethod
    def fit(cls, view_width: float, view_height: float, camera_width: int, camera_height: int) -> "DisplayTransform":
        if camera_width <= 0 or camera_height <= 0:
            raise InvalidInputError(f"Camera resolution must be positive, got {camera_width}x{camera_height}")
        if view_width <= 0 or view_height <= 0:
            raise InvalidInputError(f"View size must be positive, got {view_width}x{view_height}")
        scale = max(view_width / camera_width, view_height / camera_height)
        return cls(
            scale=float(scale),
            crop_x=(camera_width * scale - view_width) / 2.0,
            crop_y=(camera_height * scale - view_height) / 2.0,
            camera_width=int(camera_width),
            camera_height=int(camera_height),
        )

    @classmethod
    def identity(cls, camera_width: int, camera_height: int) -> "DisplayTransform":
        return cls.fit(camera_width, camera_height, camera_width, camera_height)

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        return x * self.scale - self.crop_x, y * self.scale - self.crop_y


def unletterbox(detection: Detection, info: LetterboxInfo) -> Tuple[float, float, float, float]:
    """Corner-form box of `detection` in original camera pixels."""

    left, top, right, bottom = detection.as_xyxy()
    return (
        (left - info.pad_x) / info.scale,
        (top - info.pad_y) / info.scale,
        (right - info.pad_x) / info.scale,
        (bottom - info.pad_y) / info.scale,
    )


def to_display_rect(
    detection: Detection,
    info: LetterboxInfo,
    transform: DisplayTransform,
    frame_size: Optional[Tuple[int, int]] = None,
) -> Rect:
    """
    Rectangle in view pixels for `detection`.

    `frame_size` is the (width, height) of the frame the detection came from;
    when given it must match the resolution `transform` was built for.
    """

    if frame_size is not None and tuple(frame_size) != (transform.camera_width, transform.camera_height):
        raise InvalidInputError(
            f"Detection comes from a {frame_size[0]}x{frame_size[1]} frame but the display transform "
            f"was built for {transform.camera_width}x{transform.camera_height}."
        )
    left, top, right, bottom = unletterbox(detection, info)
    l, t = transform.apply(left, top)
    r, b = transform.apply(right, bottom)
    return Rect(left=l, top=t, right=r, bottom=b)


def hit_test(
    detections: Iterable[Detection],
    info: LetterboxInfo,
    transform: DisplayTransform,
    x: float,
    y: float,
) -> Optional[Detection]:
    """First detection whose display rectangle contains the view point (x, y)."""

    for det in detections:
        if to_display_rect(det, info, transform).contains(x, y):
            return det
    return None
