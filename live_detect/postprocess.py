from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .errors import UnsupportedShapeError
from .nms import suppress
from .types import Detection


def decode(preds: np.ndarray, conf_threshold: float) -> List[Detection]:
    """
    Decode raw YOLO output of shape (1, 4 + C, A) into detections.

    Rows 0..3 hold cx, cy, w, h in model-input pixels, rows 4.. hold one raw
    score per class (no objectness row). For every anchor the best class wins,
    ties going to the lowest class index, and the anchor is kept only if that
    score reaches `conf_threshold`.
    """

    p = np.asarray(preds)
    if p.ndim != 3:
        raise UnsupportedShapeError(f"Expected output shape (batch, 4 + C, anchors), got {p.shape}.")
    if p.shape[0] != 1:
        raise UnsupportedShapeError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
    if p.shape[1] < 5:
        raise UnsupportedShapeError(f"Expected at least one class score row, got shape {p.shape}.")

    # (4 + C, A) -> (A, 4 + C); a view, no copy
    rows = p[0].T
    if rows.shape[0] == 0:
        return []

    boxes = rows[:, 0:4]
    class_scores = rows[:, 4:]

    # argmax returns the first maximum
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

    keep = (scores >= conf_threshold) & (boxes[:, 2] > 0) & (boxes[:, 3] > 0)
    idx = np.flatnonzero(keep)

    return [
        Detection(
            center_x=float(boxes[i, 0]),
            center_y=float(boxes[i, 1]),
            width=float(boxes[i, 2]),
            height=float(boxes[i, 3]),
            class_index=int(class_ids[i]),
            score=float(scores[i]),
        )
        for i in idx
    ]


@dataclass(frozen=True)
class YoloPostConfig:
    """
    Thresholds for turning raw network output into final detections.
    """
    conf_threshold: float = 0.6
    iou_threshold: float = 0.5
    # Caps boxes kept per class after NMS; None keeps all.
    max_detections: Optional[int] = None
    # If False, skip NMS and return every decoded box above the threshold.
    apply_nms: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in (0, 1]")
        if self.max_detections is not None and self.max_detections <= 0:
            raise ValueError("max_detections must be > 0 when set")


class YoloPostprocessor:
    """
    Decode + per-class NMS for YOLO exports with a (1, 4 + C, A) output.

    Boxes stay in model-input (letterboxed) coordinates; mapping them back to the
    camera or display is left to `live_detect.mapping`.
    """

    def __init__(self, cfg: YoloPostConfig):
        self.cfg = cfg

    def decode(self, preds: np.ndarray) -> List[Detection]:
        return decode(preds, self.cfg.conf_threshold)

    def suppress(self, detections: List[Detection]) -> List[Detection]:
        if not self.cfg.apply_nms:
            return list(detections)
        return suppress(
            detections,
            self.cfg.conf_threshold,
            self.cfg.iou_threshold,
            max_detections=self.cfg.max_detections,
        )

    def process(self, preds: np.ndarray) -> List[Detection]:
        return self.suppress(self.decode(preds))
