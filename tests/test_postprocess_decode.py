import unittest

import numpy as np

from live_detect.errors import UnsupportedShapeError
from live_detect.postprocess import YoloPostConfig, YoloPostprocessor, decode


def _raw(boxes, class_scores) -> np.ndarray:
    """Build a (1, 4 + C, A) output from per-anchor rows."""
    rows = [list(b) + list(s) for b, s in zip(boxes, class_scores)]
    return np.array(rows, dtype=np.float32).T[None, ...]


class TestDecode(unittest.TestCase):
    def test_threshold_keeps_best_class(self) -> None:
        p = _raw(
            boxes=[(50, 60, 10, 20), (80, 90, 12, 18)],
            class_scores=[(0.9, 0.1), (0.3, 0.4)],
        )
        dets = decode(p, 0.6)
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].class_index, 0)
        self.assertAlmostEqual(dets[0].score, 0.9, places=5)
        self.assertAlmostEqual(dets[0].center_x, 50.0)
        self.assertAlmostEqual(dets[0].center_y, 60.0)
        self.assertAlmostEqual(dets[0].width, 10.0)
        self.assertAlmostEqual(dets[0].height, 20.0)

    def test_below_threshold_yields_nothing(self) -> None:
        p = _raw(boxes=[(80, 90, 12, 18)], class_scores=[(0.3, 0.4)])
        self.assertEqual(decode(p, 0.6), [])

    def test_score_equal_to_threshold_is_kept(self) -> None:
        p = _raw(boxes=[(10, 10, 4, 4)], class_scores=[(0.5, 0.25)])
        dets = decode(p, 0.5)
        self.assertEqual(len(dets), 1)

    def test_tie_goes_to_lowest_class_index(self) -> None:
        p = _raw(boxes=[(10, 10, 4, 4)], class_scores=[(0.1, 0.75, 0.75)])
        dets = decode(p, 0.5)
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].class_index, 1)

    def test_many_classes(self) -> None:
        scores = np.zeros((3, 80), dtype=np.float32)
        scores[0, 17] = 0.8
        scores[1, 79] = 0.95
        scores[2, 3] = 0.2
        p = _raw(boxes=[(1, 2, 3, 4), (5, 6, 7, 8), (9, 10, 11, 12)], class_scores=scores)
        self.assertEqual(p.shape, (1, 84, 3))
        dets = decode(p, 0.5)
        self.assertEqual([d.class_index for d in dets], [17, 79])

    def test_degenerate_boxes_are_dropped(self) -> None:
        p = _raw(boxes=[(10, 10, 0, 4), (10, 10, 4, -1), (10, 10, 4, 4)], class_scores=[(0.9,), (0.9,), (0.9,)])
        dets = decode(p, 0.5)
        self.assertEqual(len(dets), 1)

    def test_no_anchors(self) -> None:
        p = np.zeros((1, 6, 0), dtype=np.float32)
        self.assertEqual(decode(p, 0.5), [])

    def test_batch_greater_than_one_rejected(self) -> None:
        p = np.zeros((2, 6, 10), dtype=np.float32)
        with self.assertRaises(UnsupportedShapeError):
            decode(p, 0.5)

    def test_wrong_rank_rejected(self) -> None:
        with self.assertRaises(UnsupportedShapeError):
            decode(np.zeros((6, 10), dtype=np.float32), 0.5)

    def test_missing_class_rows_rejected(self) -> None:
        with self.assertRaises(UnsupportedShapeError):
            decode(np.zeros((1, 4, 10), dtype=np.float32), 0.5)


class TestYoloPostprocessor(unittest.TestCase):
    def test_process_runs_nms_per_class(self) -> None:
        p = _raw(
            boxes=[(50, 50, 20, 20), (51, 50, 20, 20), (50, 50, 20, 20)],
            class_scores=[(0.9, 0.0), (0.8, 0.0), (0.0, 0.7)],
        )
        post = YoloPostprocessor(YoloPostConfig(conf_threshold=0.6, iou_threshold=0.5))
        dets = post.process(p)
        self.assertEqual(sorted((d.class_index, round(d.score, 2)) for d in dets), [(0, 0.9), (1, 0.7)])

    def test_process_without_nms(self) -> None:
        p = _raw(
            boxes=[(50, 50, 20, 20), (51, 50, 20, 20)],
            class_scores=[(0.9,), (0.8,)],
        )
        post = YoloPostprocessor(YoloPostConfig(apply_nms=False))
        self.assertEqual(len(post.process(p)), 2)

    def test_config_validation(self) -> None:
        with self.assertRaises(ValueError):
            YoloPostConfig(conf_threshold=1.5)
        with self.assertRaises(ValueError):
            YoloPostConfig(iou_threshold=0.0)
        with self.assertRaises(ValueError):
            YoloPostConfig(max_detections=0)


if __name__ == "__main__":
    unittest.main()
