"""
StressScan — Stress Report
===========================
Human-readable explanations of a StressAnalysisResult: per-level
explanation text, a list of contributing indicators with the points each
one adds, and a multi-section detailed analysis of an analyzer session.

Indicator points mirror the landmark formula of StressAnalyzer, so the
report always explains the numbers the scorer actually produced.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, asdict
from typing import List, Mapping, Optional, Tuple

from stress_analyzer import (
    EYE_ASYMMETRY_POINTS,
    EYE_BAG_WEIGHT,
    EYE_STRAIN_POINTS,
    LANDMARK_WEIGHTS,
    SEVERE_SQUINT_POINTS,
    WIDE_EYES_POINTS,
    StressAnalyzer,
)
from stress_types import EmotionObservation, FaceLandmarks, StressAnalysisResult
from stress_utils_core import EMOTION_STRESS_WEIGHTS

LEVEL_DESCRIPTIONS = {
    1: "Low Stress (Relaxed)",
    2: "Moderate Stress (Some Tension)",
    3: "High Stress (Significant Indicators)",
}

LEVEL_NAMES = {1: "LOW STRESS", 2: "MODERATE STRESS", 3: "HIGH STRESS"}

RECOMMENDATIONS = {
    1: [
        "You appear to be in a relaxed state",
        "Continue current activities",
        "Maintain good posture and lighting",
    ],
    2: [
        "Moderate stress detected",
        "Take 5-10 deep breaths",
        "Consider a short break",
        "Check your posture and environment",
    ],
    3: [
        "High stress levels detected",
        "Take immediate stress relief measures",
        "Practice deep breathing or meditation",
        "Consider stepping away from stressful tasks",
        "Seek support if stress persists",
    ],
}

# (metric, display threshold, [(severity threshold, label), ...], fallback label)
_GRADED_INDICATORS = [
    ("eyebrow_tension", 0.3,
     [(0.7, "High Eyebrow Tension"), (0.5, "Moderate Eyebrow Tension")],
     "Mild Eyebrow Tension"),
    ("mouth_tension", 0.4, [(0.7, "Tight Lips")], "Mouth Tension"),
    ("forehead_wrinkles", 0.3,
     [(0.7, "Deep Wrinkles"), (0.5, "Moderate Wrinkles")],
     "Mild Forehead Tension"),
    ("jaw_tension", 0.4,
     [(0.7, "Severe Jaw Clenching"), (0.5, "Moderate Jaw Tension")],
     "Mild Jaw Stress"),
    ("dark_circles", 0.4,
     [(0.7, "Severe Dark Circles"), (0.5, "Moderate Dark Circles")],
     "Mild Eye Fatigue"),
    ("facial_asymmetry", 0.3,
     [(0.6, "High Facial Asymmetry"), (0.4, "Moderate Facial Asymmetry")],
     "Mild Facial Asymmetry"),
]


@dataclass(frozen=True)
class StressIndicator:
    """One visible stress cue and the points it contributes."""
    name: str
    region: str          # eyes | eyebrows | mouth | forehead | jaw | face | emotion
    value: float
    points: float
    anchor: Optional[Tuple[float, float]] = None   # normalized landmark point

    def to_dict(self) -> dict:
        return asdict(self)


def level_description(level: int) -> str:
    return LEVEL_DESCRIPTIONS.get(level, "Unknown")


def level_name(level: int) -> str:
    return LEVEL_NAMES.get(level, "ANALYZING")


def emotion_analysis(observation: EmotionObservation) -> str:
    if observation is None or observation.is_empty():
        return "No emotion data"
    return (
        f"Primarily showing {observation.dominant()} "
        f"({int(observation.dominant_confidence() * 100)}% confidence)"
    )


def facial_tension_analysis(landmarks: Optional[FaceLandmarks]) -> str:
    if landmarks is None:
        return "No facial data available"
    if landmarks.overall_facial_tension > 0.7:
        return "High tension in multiple facial areas"
    if landmarks.overall_facial_tension > 0.4:
        return "Moderate tension detected"
    return "Minimal facial tension"


def eye_fatigue_analysis(landmarks: Optional[FaceLandmarks]) -> str:
    if landmarks is None:
        return "No eye data available"
    avg = landmarks.average_eye_openness
    if avg < 0.4:
        return "Significant eye fatigue or squinting"
    if avg < 0.6:
        return "Moderate eye strain detected"
    return "Eyes appear alert and open"


def stress_explanation(result: StressAnalysisResult) -> str:
    """Level-specific explanation of why the result was reached."""
    lines: List[str] = []

    if result.level == 1:
        lines.append("LOW STRESS (0-30 points) detected because:")
        lines.append("")
        if result.dominant_emotion == "Happy":
            lines.append("Happy emotions reduce stress significantly")
        lines += [
            "- Facial muscles appear relaxed",
            "- Eyes show normal openness and alertness",
            "- Minimal tension in eyebrows and mouth area",
            "- Stable emotional state detected",
            "",
            "Keep doing what you're doing!",
        ]
    elif result.level == 2:
        lines.append("MODERATE STRESS (31-70 points) detected because:")
        lines.append("")
        if result.emotion_score > 25:
            lines.append(f"Stress emotions detected: {result.dominant_emotion}")
        if result.facial_tension_score > 10:
            lines.append("Facial tension observed in multiple areas")
        if result.behavioral_score > 8:
            lines.append("Stress expressions persist across recent frames")
        lines += [
            "- Some muscle tension in face detected",
            "- Emotional state indicates worry/anxiety",
            "",
            "Take a short break and practice deep breathing",
        ]
    elif result.level == 3:
        lines.append("HIGH STRESS (71+ points) detected because:")
        lines.append("")
        if result.emotion_score > 35:
            lines.append(f"Strong stress emotions: {result.dominant_emotion}")
        if result.facial_tension_score > 15:
            lines.append("Significant facial tension across multiple regions")
        if result.behavioral_score > 10:
            lines.append("Sustained or rapidly shifting stress expressions")
        lines += [
            "- Multiple stress indicators are active at once",
            "",
            "Step away and use a stress relief technique now",
        ]
    else:
        lines.append("Analyzing: not enough data for an assessment yet")

    return "\n".join(lines)


def _graded_label(value: float, grades, fallback: str) -> str:
    for threshold, label in grades:
        if value > threshold:
            return label
    return fallback


def _anchor(landmarks: FaceLandmarks, *keys: str) -> Optional[Tuple[float, float]]:
    """Midpoint of the named landmark points that are present."""
    pts = [landmarks.landmark_points[k] for k in keys if k in landmarks.landmark_points]
    if not pts:
        return None
    return (sum(p[0] for p in pts) / len(pts), sum(p[1] for p in pts) / len(pts))


# metric -> (region, anchor landmark keys)
_INDICATOR_REGIONS = {
    "eyebrow_tension": ("eyebrows", ("LEFT_EYEBROW", "RIGHT_EYEBROW")),
    "mouth_tension": ("mouth", ("MOUTH_LEFT", "MOUTH_RIGHT")),
    "forehead_wrinkles": ("forehead", ("LEFT_EYEBROW", "RIGHT_EYEBROW")),
    "jaw_tension": ("jaw", ("LEFT_CHEEK", "RIGHT_CHEEK")),
    "dark_circles": ("eyes", ("LEFT_EYE", "RIGHT_EYE")),
    "facial_asymmetry": ("face", ("NOSE_BASE",)),
}


def stress_indicators(
    result: StressAnalysisResult,
    landmarks: Optional[FaceLandmarks],
    emotion_weights: Optional[Mapping[str, float]] = None,
) -> List[StressIndicator]:
    """Visible cues behind a result, in eye/face/emotion order.

    ``emotion_weights`` should be the scoring analyzer's table so the
    emotion indicator shows the weight that was actually applied.
    """
    indicators: List[StressIndicator] = []

    if landmarks is not None:
        left_eye = _anchor(landmarks, "LEFT_EYE")
        right_eye = _anchor(landmarks, "RIGHT_EYE")
        avg = landmarks.average_eye_openness
        if avg < 0.3:
            indicators.append(StressIndicator("Severe Squinting", "eyes", avg, SEVERE_SQUINT_POINTS, left_eye))
        elif avg < 0.5:
            indicators.append(StressIndicator("Eye Strain", "eyes", avg, EYE_STRAIN_POINTS, left_eye))
        elif avg > 0.9:
            indicators.append(StressIndicator("Wide Eyes", "eyes", avg, WIDE_EYES_POINTS, right_eye))

        asym = landmarks.eye_asymmetry
        if asym > 0.2:
            indicators.append(StressIndicator(
                "Eye Asymmetry", "eyes", asym, EYE_ASYMMETRY_POINTS,
                _anchor(landmarks, "LEFT_EYE", "RIGHT_EYE"),
            ))

        bags = landmarks.eye_bag_severity
        if bags > 0.4:
            indicators.append(StressIndicator("Eye Fatigue", "eyes", bags, bags * EYE_BAG_WEIGHT, right_eye))

        for attr, shown_above, grades, fallback in _GRADED_INDICATORS:
            value = getattr(landmarks, attr)
            if value > shown_above:
                region, keys = _INDICATOR_REGIONS[attr]
                indicators.append(StressIndicator(
                    _graded_label(value, grades, fallback),
                    region,
                    value,
                    value * LANDMARK_WEIGHTS[attr],
                    _anchor(landmarks, *keys),
                ))

    if result.dominant_emotion != "Unknown":
        if emotion_weights is None:
            emotion_weights = EMOTION_STRESS_WEIGHTS
        weight = float(emotion_weights.get(result.dominant_emotion, 0.0))
        indicators.append(StressIndicator(result.dominant_emotion, "emotion", weight, weight))

    return indicators


def detailed_analysis(analyzer: StressAnalyzer, now: Optional[float] = None) -> str:
    """Multi-section text report of the analyzer's current session.

    Args:
        analyzer: Session to report on.
        now: Epoch seconds for the timestamp line. Defaults to time.time().
    """
    result = analyzer.calculate_stress_level()
    landmarks = analyzer.current_landmarks
    stamp = time.strftime("%H:%M:%S", time.localtime(now if now is not None else time.time()))

    lines = [
        "=== COMPREHENSIVE STRESS ANALYSIS ===",
        f"Timestamp: {stamp}",
        f"Analysis Reliability: {analyzer.reliability_score()}%",
        "",
        "STRESS ASSESSMENT:",
        f"- Overall Level: {level_description(result.level)}",
        f"- Stress Score: {result.score}/100",
        f"- Primary Emotion: {result.dominant_emotion}",
        "",
        "DETAILED BREAKDOWN:",
        f"- Emotional Impact: {result.emotion_score}/{int(analyzer.emotion_budget)}",
        f"  > {emotion_analysis(analyzer.current_emotions)}",
        f"- Facial Tension: {result.facial_tension_score}/{int(analyzer.landmark_budget)}",
        f"  > {facial_tension_analysis(landmarks)}",
        f"  > {eye_fatigue_analysis(landmarks)}",
        f"- Behavioral Pattern: {result.behavioral_score}/{int(analyzer.behavioral_budget)}",
        "",
    ]

    if landmarks is not None:
        lines += [
            "FACIAL METRICS:",
            f"- Left Eye Openness: {int(landmarks.left_eye_openness * 100)}%",
            f"- Right Eye Openness: {int(landmarks.right_eye_openness * 100)}%",
            f"- Eyebrow Tension: {int(landmarks.eyebrow_tension * 100)}%",
            f"- Mouth Tension: {int(landmarks.mouth_tension * 100)}%",
            f"- Eye Bag Severity: {int(landmarks.eye_bag_severity * 100)}%",
            f"- Overall Facial Tension: {int(landmarks.overall_facial_tension * 100)}%",
            "",
        ]

    lines += [
        "TREND ANALYSIS:",
        f"- Emotion Samples: {len(analyzer.emotion_history)}",
        f"- Landmark Samples: {len(analyzer.landmark_history)}",
        f"- Analysis Stability: {analyzer.stability_score()}%",
        "",
        "RECOMMENDATIONS:",
    ]
    for i, rec in enumerate(RECOMMENDATIONS.get(result.level, [])):
        lines.append(rec if i == 0 else f"- {rec}")

    return "\n".join(lines)
