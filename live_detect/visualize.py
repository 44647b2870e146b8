from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from .mapping import DisplayTransform, to_display_rect
from .types import DetectorResult

_PALETTE = (
    (56, 56, 255),
    (151, 157, 255),
    (31, 112, 255),
    (29, 178, 255),
    (49, 210, 207),
    (10, 249, 72),
    (23, 204, 146),
    (134, 219, 61),
    (52, 147, 26),
    (187, 212, 0),
)


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e
    return cv2


def _color_for_class(class_index: int) -> Tuple[int, int, int]:
    """Fixed palette for the first classes, then a color seeded by the index."""

    if 0 <= class_index < len(_PALETTE):
        return _PALETTE[class_index]
    r, g, b = np.random.default_rng(int(class_index)).integers(0, 256, size=3)
    return int(r), int(g), int(b)


def _put_label(cv2, canvas: np.ndarray, text: str, anchor: Tuple[int, int], color, font_scale: float, thickness: int) -> None:
    # Filled tag with white text; sits on top of the box when there is room, else hangs inside it.
    font = cv2.FONT_HERSHEY_SIMPLEX
    (text_w, text_h), baseline = cv2.getTextSize(text, font, font_scale, thickness)
    canvas_h, canvas_w = canvas.shape[:2]
    x, y = anchor
    tag_h = text_h + baseline
    top = y - tag_h if y - tag_h >= 0 else y
    bottom = min(top + tag_h, canvas_h - 1)
    right = min(x + text_w, canvas_w - 1)

    cv2.rectangle(canvas, (x, top), (right, bottom), color, thickness=-1)
    cv2.putText(
        canvas,
        text,
        (x, min(top + text_h, canvas_h - 1)),
        font,
        font_scale,
        (255, 255, 255),
        thickness=thickness,
        lineType=cv2.LINE_AA,
    )


def draw_detections(
    image: np.ndarray,
    result: DetectorResult,
    *,
    class_names: Optional[Dict[int, str]] = None,
    transform: Optional[DisplayTransform] = None,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw a result's boxes + labels on a copy of `image` and return it.

    Boxes are mapped from model-input space through the result's letterbox info
    and `transform`. Without a transform the image is taken to be the camera
    frame itself. Colors are in the channel order of `image`.
    """

    cv2 = _cv2()

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {image.shape}")

    canvas = image.copy()
    height, width = canvas.shape[:2]
    if transform is None:
        transform = DisplayTransform.identity(width, height)
    names = class_names or {}

    for det in result.detections:
        rect = to_display_rect(det, result.letterbox_info, transform)
        left, right = (int(np.clip(round(v), 0, width - 1)) for v in (rect.left, rect.right))
        top, bottom = (int(np.clip(round(v), 0, height - 1)) for v in (rect.top, rect.bottom))
        color = _color_for_class(det.class_index)

        cv2.rectangle(canvas, (left, top), (right, bottom), color, thickness=box_thickness)

        text = names.get(det.class_index, str(det.class_index))
        if show_score:
            text += f" {det.score:.2f}"
        _put_label(cv2, canvas, text, (left, top), color, font_scale, font_thickness)

    return canvas
