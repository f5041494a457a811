"""
StressScan — Facial Geometry Metric Calculators
================================================
Converts raw per-face measurements from a face detector into the
normalized FaceLandmarks consumed by the stress analyzer.

Input (FaceGeometry, PIXEL coordinates):
  - named landmark points (LEFT_EYE, RIGHT_EYE, NOSE_BASE, MOUTH_LEFT,
    MOUTH_RIGHT, MOUTH_BOTTOM, LEFT_CHEEK, RIGHT_CHEEK)
  - contours (FACE, LEFT_EYEBROW_TOP, RIGHT_EYEBROW_TOP, LEFT_EYE, RIGHT_EYE)
  - eye-open probabilities and head Euler angles (degrees)

Output (FaceLandmarks):
  - points normalized by image size to [0, 1]
  - eleven metrics, each clamped to [0, 1]

Pixel reference constants: 50px brow gap, 15px eye height, 120px jaw,
40px mouth.

Every calculator is total: missing points contribute nothing and any
arithmetic failure yields 0.0 with a logged error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from stress_types import FaceLandmarks
from stress_utils_core import clamp

_log = logging.getLogger("FaceLandmarks")

Point = Tuple[float, float]

# Neutral eye-open probability when the detector cannot classify the eyes
_DEFAULT_EYE_OPEN = 0.5

# Pixel reference scales
_BROW_EYE_REF_PX = 50.0
_EYE_HEIGHT_REF_PX = 15.0
_JAW_WIDTH_REF_PX = 120.0
_JAW_WIDTH_SPAN_PX = 40.0
_MOUTH_WIDTH_REF_PX = 40.0
_BROW_CURVATURE_REF_PX = 20.0
_MOUTH_DEVIATION_REF_PX = 20.0

_POINT_KEYS = (
    "LEFT_EYE", "RIGHT_EYE", "NOSE_BASE",
    "MOUTH_LEFT", "MOUTH_RIGHT", "MOUTH_BOTTOM",
    "LEFT_CHEEK", "RIGHT_CHEEK",
)


@dataclass
class FaceGeometry:
    """Raw measurements for a single face, as reported by a face detector.

    Attributes:
        image_width: Source image width in pixels.
        image_height: Source image height in pixels.
        left_eye_open_probability: [0, 1] or None if not classified.
        right_eye_open_probability: [0, 1] or None if not classified.
        head_euler_x: Pitch in degrees (nodding).
        head_euler_y: Yaw in degrees (turning).
        head_euler_z: Roll in degrees (tilting).
        points: Named landmark positions in pixels.
        contours: Named contour point lists in pixels.
    """
    image_width: int
    image_height: int
    left_eye_open_probability: Optional[float] = None
    right_eye_open_probability: Optional[float] = None
    head_euler_x: float = 0.0
    head_euler_y: float = 0.0
    head_euler_z: float = 0.0
    points: Dict[str, Point] = field(default_factory=dict)
    contours: Dict[str, List[Point]] = field(default_factory=dict)

    def point(self, key: str) -> Optional[Point]:
        return self.points.get(key)

    def contour(self, key: str) -> List[Point]:
        return list(self.contours.get(key) or [])


# ===================================================================
# Eye helpers
# ===================================================================

def _eye_probabilities(geometry: FaceGeometry) -> Tuple[float, float]:
    """Per-eye open probabilities, each defaulting to neutral."""
    left = geometry.left_eye_open_probability
    right = geometry.right_eye_open_probability
    return (
        _DEFAULT_EYE_OPEN if left is None else float(left),
        _DEFAULT_EYE_OPEN if right is None else float(right),
    )


def calculate_eye_openness(geometry: FaceGeometry, left_eye: bool) -> float:
    """Eye-open probability, or neutral 0.5 unless BOTH eyes were classified."""
    left = geometry.left_eye_open_probability
    right = geometry.right_eye_open_probability
    if left is None or right is None:
        return _DEFAULT_EYE_OPEN
    try:
        return clamp(float(left if left_eye else right))
    except (TypeError, ValueError) as e:
        _log.error("Error reading eye-open probability: %s", e)
        return _DEFAULT_EYE_OPEN


def _middle_point(points: Sequence[Point]) -> Optional[Point]:
    if not points:
        return None
    return points[len(points) // 2]


def calculate_eye_height(eye_points: Sequence[Point]) -> float:
    """Vertical extent of an eye contour in pixels (0 for short contours)."""
    if len(eye_points) < 6:
        return 0.0
    ys = np.asarray(eye_points, dtype=np.float64)[:, 1]
    return float(ys.max() - ys.min())


# ===================================================================
# Primary metrics
# ===================================================================

def calculate_eyebrow_tension(geometry: FaceGeometry) -> float:
    """Brow lowering, squint, head pose and eye asymmetry combined."""
    try:
        tension = 0.0

        left_brow = _middle_point(geometry.contour("LEFT_EYEBROW_TOP"))
        right_brow = _middle_point(geometry.contour("RIGHT_EYEBROW_TOP"))
        left_eye = geometry.point("LEFT_EYE")
        right_eye = geometry.point("RIGHT_EYE")
        if left_brow and right_brow and left_eye and right_eye:
            left_gap = abs(left_brow[1] - left_eye[1])
            right_gap = abs(right_brow[1] - right_eye[1])
            avg_gap = (left_gap + right_gap) / 2.0
            # Brows pulled down toward the eyes = more tension
            tension += clamp(1.0 - avg_gap / _BROW_EYE_REF_PX) * 0.6

        left_open, right_open = _eye_probabilities(geometry)
        avg_open = (left_open + right_open) / 2.0
        if avg_open < 0.7:
            tension += (0.7 - avg_open) * 0.4

        if abs(geometry.head_euler_x) > 10.0 or abs(geometry.head_euler_y) > 20.0:
            tension += 0.2

        asymmetry = abs(left_open - right_open)
        if asymmetry > 0.2:
            tension += asymmetry * 0.3

        return clamp(tension)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating eyebrow tension: %s", e)
        return 0.0


def estimate_eye_bags(geometry: FaceGeometry) -> float:
    """Fatigue proxy from eye openness, asymmetry, posture and eye height."""
    try:
        left_open, right_open = _eye_probabilities(geometry)
        avg_open = (left_open + right_open) / 2.0
        score = 0.0

        if avg_open < 0.6:
            score += (0.6 - avg_open) * 2.0

        asymmetry = abs(left_open - right_open)
        if asymmetry > 0.15:
            score += asymmetry * 1.5

        if abs(geometry.head_euler_y) > 15.0 or abs(geometry.head_euler_z) > 10.0:
            score += 0.2

        left_contour = geometry.contour("LEFT_EYE")
        right_contour = geometry.contour("RIGHT_EYE")
        if left_contour and right_contour:
            avg_height = (
                calculate_eye_height(left_contour) + calculate_eye_height(right_contour)
            ) / 2.0
            # Flattened eye opening suggests puffiness
            if avg_height < _EYE_HEIGHT_REF_PX:
                score += (_EYE_HEIGHT_REF_PX - avg_height) / _EYE_HEIGHT_REF_PX * 0.3

        return clamp(score)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error estimating eye bags: %s", e)
        return 0.0


def calculate_mouth_tension(geometry: FaceGeometry) -> float:
    """Pressed lips: mouth width/height ratio above 2 maps onto [0, 1]."""
    try:
        left = geometry.point("MOUTH_LEFT")
        right = geometry.point("MOUTH_RIGHT")
        bottom = geometry.point("MOUTH_BOTTOM")
        if not (left and right and bottom):
            return 0.0

        width = abs(right[0] - left[0])
        center_y = (left[1] + right[1]) / 2.0
        height = abs(bottom[1] - center_y)
        if height <= 0.0:
            return 0.0
        return clamp((width / height - 2.0) / 4.0)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating mouth tension: %s", e)
        return 0.0


def calculate_overall_tension(geometry: FaceGeometry) -> float:
    try:
        left_open, right_open = _eye_probabilities(geometry)
        avg_open = (left_open + right_open) / 2.0

        eye_tension = max(0.0, (0.6 - avg_open) * 1.5)
        head_tension = (abs(geometry.head_euler_y) + abs(geometry.head_euler_z)) / 90.0

        return clamp(eye_tension * 0.7 + head_tension * 0.3)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating overall tension: %s", e)
        return 0.0


# ===================================================================
# Secondary metrics
# ===================================================================

def calculate_eyebrow_curvature(brow_points: Sequence[Point]) -> float:
    """Deviation of the brow midpoint from the start-end chord, normalized."""
    if len(brow_points) < 3:
        return 0.0
    start, end = brow_points[0], brow_points[-1]
    middle = brow_points[len(brow_points) // 2]
    chord_y = start[1] + (end[1] - start[1]) * 0.5
    return min(1.0, abs(middle[1] - chord_y) / _BROW_CURVATURE_REF_PX)


def calculate_forehead_wrinkles(geometry: FaceGeometry) -> float:
    try:
        score = 0.0
        left_brow = geometry.contour("LEFT_EYEBROW_TOP")
        right_brow = geometry.contour("RIGHT_EYEBROW_TOP")
        if len(left_brow) >= 3 and len(right_brow) >= 3:
            avg_curvature = (
                calculate_eyebrow_curvature(left_brow)
                + calculate_eyebrow_curvature(right_brow)
            ) / 2.0
            score += avg_curvature * 0.6

        pitch = abs(geometry.head_euler_x)
        if pitch > 5.0:
            score += (pitch / 30.0) * 0.4

        return clamp(score)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating forehead wrinkles: %s", e)
        return 0.0


def calculate_jaw_width(lower_face_points: Sequence[Point]) -> float:
    if len(lower_face_points) < 4:
        return 0.0
    xs = np.asarray(lower_face_points, dtype=np.float64)[:, 0]
    return float(xs.max() - xs.min())


def calculate_jaw_tension(geometry: FaceGeometry) -> float:
    """Jaw clenching proxy: wide lower face, head roll, narrow mouth."""
    try:
        tension = 0.0

        face_contour = geometry.contour("FACE")
        if len(face_contour) >= 8:
            lower_third = face_contour[-(len(face_contour) // 3):]
            jaw_width = calculate_jaw_width(lower_third)
            if jaw_width > _JAW_WIDTH_REF_PX:
                tension += ((jaw_width - _JAW_WIDTH_REF_PX) / _JAW_WIDTH_SPAN_PX) * 0.5

        roll = abs(geometry.head_euler_z)
        if roll > 8.0:
            tension += (roll / 30.0) * 0.3

        left = geometry.point("MOUTH_LEFT")
        right = geometry.point("MOUTH_RIGHT")
        if left and right:
            mouth_width = abs(right[0] - left[0])
            if mouth_width < _MOUTH_WIDTH_REF_PX:
                tension += (_MOUTH_WIDTH_REF_PX - mouth_width) / _MOUTH_WIDTH_REF_PX * 0.2

        return clamp(tension)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating jaw tension: %s", e)
        return 0.0


def estimate_dark_circles(geometry: FaceGeometry) -> float:
    try:
        score = estimate_eye_bags(geometry) * 0.5

        left_open, right_open = _eye_probabilities(geometry)
        avg_open = (left_open + right_open) / 2.0
        if avg_open < 0.4:
            score += (0.4 - avg_open) * 1.5

        asymmetry = abs(left_open - right_open)
        if asymmetry > 0.2:
            score += asymmetry * 0.8

        return clamp(score)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error estimating dark circles: %s", e)
        return 0.0


def calculate_skin_stress(geometry: FaceGeometry) -> float:
    try:
        left_open, right_open = _eye_probabilities(geometry)
        avg_open = (left_open + right_open) / 2.0
        score = 0.0

        if avg_open < 0.5:
            score += (0.5 - avg_open) * 0.6

        yaw = abs(geometry.head_euler_y)
        pitch = abs(geometry.head_euler_x)
        if yaw > 15.0 or pitch > 10.0:
            score += ((yaw + pitch) / 50.0) * 0.4

        return clamp(score)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating skin stress: %s", e)
        return 0.0


def calculate_facial_asymmetry(geometry: FaceGeometry) -> float:
    """Left/right imbalance of eye openness, eye placement and mouth."""
    try:
        left_open, right_open = _eye_probabilities(geometry)
        score = abs(left_open - right_open) * 0.4

        left_eye = geometry.point("LEFT_EYE")
        right_eye = geometry.point("RIGHT_EYE")
        nose = geometry.point("NOSE_BASE")
        if left_eye and right_eye and nose:
            left_dist = abs(left_eye[0] - nose[0])
            right_dist = abs(right_eye[0] - nose[0])
            widest = max(left_dist, right_dist)
            if widest > 0.0:
                score += abs(left_dist - right_dist) / widest * 0.3

        mouth_left = geometry.point("MOUTH_LEFT")
        mouth_right = geometry.point("MOUTH_RIGHT")
        mouth_bottom = geometry.point("MOUTH_BOTTOM")
        if mouth_left and mouth_right and mouth_bottom:
            mouth_center = (mouth_left[0] + mouth_right[0]) / 2.0
            deviation = abs(mouth_bottom[0] - mouth_center)
            score += (deviation / _MOUTH_DEVIATION_REF_PX) * 0.3

        return clamp(score)
    except (IndexError, TypeError, ValueError) as e:
        _log.error("Error calculating facial asymmetry: %s", e)
        return 0.0


# ===================================================================
# Extraction
# ===================================================================

def _put_normalized(out: Dict[str, Point], key: str, pt, width: float, height: float):
    try:
        out[key] = (float(pt[0]) / width, float(pt[1]) / height)
    except (IndexError, TypeError, ValueError) as e:
        _log.warning("Skipping malformed landmark %s: %s", key, e)


def normalize_points(geometry: FaceGeometry) -> Dict[str, Tuple[float, float]]:
    """Named points divided by image size; eyebrows use the contour midpoint."""
    width = float(geometry.image_width or 0) or 1.0
    height = float(geometry.image_height or 0) or 1.0
    normalized: Dict[str, Tuple[float, float]] = {}

    for key in _POINT_KEYS:
        pt = geometry.point(key)
        if pt is not None:
            _put_normalized(normalized, key, pt, width, height)

    for key, contour_key in (
        ("LEFT_EYEBROW", "LEFT_EYEBROW_TOP"),
        ("RIGHT_EYEBROW", "RIGHT_EYEBROW_TOP"),
    ):
        mid = _middle_point(geometry.contour(contour_key))
        if mid is not None:
            _put_normalized(normalized, key, mid, width, height)

    return normalized


def extract_landmarks(geometry: FaceGeometry) -> FaceLandmarks:
    """Compute all stress-related metrics for one face.

    Args:
        geometry: Raw detector measurements in pixel coordinates.

    Returns:
        Immutable FaceLandmarks with normalized points and [0, 1] metrics.
    """
    return FaceLandmarks(
        left_eye_openness=calculate_eye_openness(geometry, left_eye=True),
        right_eye_openness=calculate_eye_openness(geometry, left_eye=False),
        eyebrow_tension=calculate_eyebrow_tension(geometry),
        eye_bag_severity=estimate_eye_bags(geometry),
        mouth_tension=calculate_mouth_tension(geometry),
        overall_facial_tension=calculate_overall_tension(geometry),
        landmark_points=normalize_points(geometry),
        forehead_wrinkles=calculate_forehead_wrinkles(geometry),
        jaw_tension=calculate_jaw_tension(geometry),
        dark_circles=estimate_dark_circles(geometry),
        skin_stress=calculate_skin_stress(geometry),
        facial_asymmetry=calculate_facial_asymmetry(geometry),
    )
