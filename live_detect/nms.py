from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .types import Detection


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.5
    max_detections: Optional[int] = None


def iou(a: Tuple[float, float, float, float], b: Tuple[float, float, float, float]) -> float:
    """Intersection over union of two xyxy boxes."""

    ix1, iy1 = max(a[0], b[0]), max(a[1], b[1])
    ix2, iy2 = min(a[2], b[2]), min(a[3], b[3])
    inter = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
    union = (a[2] - a[0]) * (a[3] - a[1]) + (b[2] - b[0]) * (b[3] - b[1]) - inter
    if union <= 0.0:
        return 0.0
    return inter / union


def _iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """IoU of one xyxy box against an (M, 4) array of xyxy boxes."""

    top_left = np.maximum(box[:2], others[:, :2])
    bottom_right = np.minimum(box[2:], others[:, 2:])
    inter = np.prod(np.clip(bottom_right - top_left, 0.0, None), axis=1)
    area = (box[2] - box[0]) * (box[3] - box[1])
    other_areas = (others[:, 2] - others[:, 0]) * (others[:, 3] - others[:, 1])
    return inter / np.maximum(area + other_areas - inter, 1e-12)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).

    A box is dropped when its IoU with an already kept box is >= cfg.iou_threshold.
    Equal scores keep their input order. Returns indices of boxes to keep,
    highest score first.
    """

    keep: List[int] = []
    remaining = np.argsort(-scores, kind="stable")
    limit = cfg.max_detections

    while remaining.size and (limit is None or len(keep) < limit):
        best, rest = remaining[0], remaining[1:]
        keep.append(int(best))
        overlap = _iou_one_to_many(boxes[best], boxes[rest])
        remaining = rest[overlap < cfg.iou_threshold]

    return np.asarray(keep, dtype=np.int32)


def suppress(
    detections: Sequence[Detection],
    conf_threshold: float,
    iou_threshold: float,
    max_detections: Optional[int] = None,
) -> List[Detection]:
    """
    Per-class NMS over decoded detections.

    Boxes under `conf_threshold` are dropped first. Each class is suppressed on
    its own, so a box never suppresses a box of another class. The output order
    carries no meaning. Calling this again on its own output returns the same set.
    `max_detections` caps the boxes kept per class.
    """

    by_class: Dict[int, List[Detection]] = {}
    for det in detections:
        if det.score < conf_threshold:
            continue
        by_class.setdefault(det.class_index, []).append(det)

    if not by_class:
        return []

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_detections)
    kept: List[Detection] = []
    for class_dets in by_class.values():
        if len(class_dets) == 1:
            kept.append(class_dets[0])
            continue
        boxes = np.array([d.as_xyxy() for d in class_dets], dtype=np.float64)
        scores = np.array([d.score for d in class_dets], dtype=np.float64)
        for idx in nms(boxes, scores, cfg):
            kept.append(class_dets[int(idx)])

    return kept
