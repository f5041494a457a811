"""
StressScan — Detection Decoder & Non-Maximum Suppression
=========================================================
Turns the raw YOLO-style output tensor into labeled, confident boxes.

Tensor layout ([1, channels, elements], float32):
  row 0          cx   (normalized center x)
  row 1          cy   (normalized center y)
  row 2          w    (normalized width)
  row 3          h    (normalized height)
  rows 4..C-1    one confidence row per class (label index = row - 4)

Decoding rules:
  - A candidate is accepted when its best class confidence is strictly
    above the threshold AND the class index exists in the label table.
  - Boxes whose corners leave [0, 1] are DROPPED, never clamped.
  - Malformed input (no labels, bad shape, short buffer) returns [] and
    logs a warning.

NMS keeps the most confident box per spatial cluster (IoU >= 0.5).
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from stress_types import BoundingBox
from stress_utils_core import CONFIDENCE_THRESHOLD, IOU_THRESHOLD

_log = logging.getLogger("StressDecoder")

# Rows preceding the class-confidence rows (cx, cy, w, h)
_GEOMETRY_ROWS = 4


def _as_channel_matrix(
    buffer,
    num_channels: Optional[int],
    num_elements: Optional[int],
) -> Optional[np.ndarray]:
    """Coerce the model output into a (channels, elements) float32 matrix.

    Accepts [1, C, E] / [C, E] arrays directly, or a flat buffer together
    with explicit dimensions. Returns None for anything malformed.
    """
    try:
        arr = np.asarray(buffer, dtype=np.float32)
    except (TypeError, ValueError):
        _log.warning("Detection buffer is not numeric")
        return None

    if (num_channels is None) != (num_elements is None):
        _log.warning(
            "Partial tensor dimensions: channels=%s, elements=%s",
            num_channels, num_elements,
        )
        return None

    if num_channels is None:
        if arr.ndim == 3 and arr.shape[0] == 1:
            arr = arr[0]
        if arr.ndim != 2:
            _log.warning("Cannot infer tensor shape from buffer of shape %s", arr.shape)
            return None
        num_channels, num_elements = arr.shape
        flat = arr.reshape(-1)
    else:
        flat = arr.reshape(-1)

    if num_channels <= _GEOMETRY_ROWS or num_elements <= 0:
        _log.warning(
            "Invalid tensor dimensions: channels=%s, elements=%s",
            num_channels, num_elements,
        )
        return None

    expected = num_channels * num_elements
    if flat.size < expected:
        _log.warning(
            "Detection buffer too small: %d values for %dx%d tensor",
            flat.size, num_channels, num_elements,
        )
        return None

    return flat[:expected].reshape(num_channels, num_elements)


def decode_output(
    buffer,
    labels: Sequence[str],
    num_channels: Optional[int] = None,
    num_elements: Optional[int] = None,
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
) -> list[BoundingBox]:
    """Decode a raw detection tensor into boxes above the threshold.

    Args:
        buffer: Model output. Either an array shaped [1, C, E] / [C, E], or
            a flat sequence of C*E floats when num_channels/num_elements
            are given.
        labels: Ordered class labels (index = class row - 4).
        num_channels: C, required only for flat buffers.
        num_elements: E, required only for flat buffers. Give both or
            neither; a partial pair is rejected.
        confidence_threshold: Minimum (exclusive) class confidence.

    Returns:
        Accepted boxes in candidate order. Empty list when nothing clears
        the threshold or the input is malformed. Never raises.
    """
    if not labels:
        _log.warning("No labels loaded; cannot decode detections")
        return []

    matrix = _as_channel_matrix(buffer, num_channels, num_elements)
    if matrix is None:
        return []

    class_scores = matrix[_GEOMETRY_ROWS:]
    # Non-finite scores can never win
    class_scores = np.where(np.isfinite(class_scores), class_scores, -np.inf)

    best_idx = np.argmax(class_scores, axis=0)          # first max on ties
    best_conf = class_scores[best_idx, np.arange(matrix.shape[1])]

    accepted = (best_conf > confidence_threshold) & (best_idx < len(labels))
    if not np.any(accepted):
        _log.debug("No candidate above confidence %.2f", confidence_threshold)
        return []

    cx, cy, w, h = matrix[0], matrix[1], matrix[2], matrix[3]
    x1 = cx - w / 2.0
    y1 = cy - h / 2.0
    x2 = cx + w / 2.0
    y2 = cy + h / 2.0

    # Comparisons with NaN are False, so non-finite geometry drops out here
    in_bounds = (
        (x1 >= 0.0) & (x1 <= 1.0) & (y1 >= 0.0) & (y1 <= 1.0)
        & (x2 >= 0.0) & (x2 <= 1.0) & (y2 >= 0.0) & (y2 <= 1.0)
        & (x1 <= x2) & (y1 <= y2)
    )
    keep = np.flatnonzero(accepted & in_bounds)

    boxes = []
    for c in keep:
        cls = int(best_idx[c])
        boxes.append(BoundingBox(
            x1=float(x1[c]), y1=float(y1[c]), x2=float(x2[c]), y2=float(y2[c]),
            cx=float(cx[c]), cy=float(cy[c]), w=float(w[c]), h=float(h[c]),
            cnf=float(best_conf[c]), cls=cls, cls_name=labels[cls],
        ))

    dropped = int(np.count_nonzero(accepted)) - len(boxes)
    if dropped:
        _log.debug("Dropped %d out-of-bounds box(es)", dropped)
    return boxes


def calculate_iou(box1: BoundingBox, box2: BoundingBox) -> float:
    """Intersection-over-Union of two boxes (areas taken as w*h)."""
    inter_x1 = max(box1.x1, box2.x1)
    inter_y1 = max(box1.y1, box2.y1)
    inter_x2 = min(box1.x2, box2.x2)
    inter_y2 = min(box1.y2, box2.y2)
    inter_area = max(0.0, inter_x2 - inter_x1) * max(0.0, inter_y2 - inter_y1)
    union_area = box1.w * box1.h + box2.w * box2.h - inter_area
    if union_area <= 0.0:
        return 0.0
    return inter_area / union_area


def non_max_suppression(
    boxes: Iterable[BoundingBox],
    iou_threshold: float = IOU_THRESHOLD,
) -> list[BoundingBox]:
    """Greedy NMS: keep the most confident box, drop its duplicates, repeat.

    Returns:
        Surviving boxes, ordered by descending confidence.
    """
    remaining = sorted(boxes, key=lambda b: b.cnf, reverse=True)
    selected: list[BoundingBox] = []

    while remaining:
        first = remaining.pop(0)
        selected.append(first)
        remaining = [
            box for box in remaining
            if calculate_iou(first, box) < iou_threshold
        ]

    return selected


def decode_and_suppress(
    buffer,
    labels: Sequence[str],
    num_channels: Optional[int] = None,
    num_elements: Optional[int] = None,
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
    iou_threshold: float = IOU_THRESHOLD,
) -> list[BoundingBox]:
    """decode_output followed by non_max_suppression."""
    boxes = decode_output(
        buffer, labels,
        num_channels=num_channels,
        num_elements=num_elements,
        confidence_threshold=confidence_threshold,
    )
    if not boxes:
        return []
    return non_max_suppression(boxes, iou_threshold)
