"""
StressScan — Stress Scoring Engine
===================================
Fuses detected emotions and facial-geometry metrics over a sliding
window into a bounded, three-tier stress assessment.

Composite score (each part clamped to its budget before summing):

  Sub-score    | Budget | Inputs
  -------------|--------|-----------------------------------------------
  emotion      | 0-60   | confidence-weighted stress weights, x1.3 when
               |        | two or more stress emotions are confident
  landmark     | 0-25   | eye-region composite + 8 weighted indicators
  behavioral   | 0-15   | label flicker, stress persistence, intensity

Classification (on the unclamped total):
  <= 30  -> level 1 (low)
  <= 70  -> level 2 (moderate)
  else   -> level 3 (high)

Reliability (0-100) averages sample count, observation time and the
temporal stability of the detected emotions.

History is owned by the instance: every analyzer is an independent
session. No internal locking; callers serialize access.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from typing import Callable, Iterable, Mapping, Optional, Tuple, Union

from stress_types import EmotionLabel, EmotionObservation, FaceLandmarks, StressAnalysisResult
from stress_utils_core import CONFIG, clamp, merge_config

_log = logging.getLogger("StressAnalyzer")

EmotionInput = Union[EmotionObservation, Iterable[Tuple[str, float]]]

# Landmark indicator weights (points per unit of metric)
LANDMARK_WEIGHTS = {
    "eyebrow_tension": 8.0,
    "mouth_tension": 5.0,
    "overall_facial_tension": 7.0,
    "forehead_wrinkles": 6.0,
    "jaw_tension": 5.0,
    "dark_circles": 4.0,
    "skin_stress": 3.0,
    "facial_asymmetry": 3.0,
}

# Eye-region composite points
SEVERE_SQUINT_POINTS = 4.0     # avg openness < 0.3
EYE_STRAIN_POINTS = 2.0        # avg openness < 0.5
WIDE_EYES_POINTS = 3.0         # avg openness > 0.9
EYE_ASYMMETRY_POINTS = 2.0     # |left - right| > 0.2
EYE_BAG_WEIGHT = 4.0
EYE_STRAIN_BLEND_WEIGHT = 3.0

# Behavioral windows and per-component points
CHANGE_RATE_WINDOW = 3
PERSISTENCE_WINDOW = 5
BEHAVIOR_COMPONENT_POINTS = 5.0


class StressAnalyzer:
    """Temporal stress scorer over bounded emotion and landmark history.

    Usage:
        analyzer = StressAnalyzer()
        analyzer.update_emotions([("Anxious", 0.8)])
        analyzer.update_landmarks(landmarks)
        result = analyzer.calculate_stress_level()
    """

    def __init__(
        self,
        history_size: Optional[int] = None,
        emotion_weights: Optional[Mapping[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        scoring: Optional[Mapping] = None,
        reliability: Optional[Mapping] = None,
    ):
        """Initialize an empty scoring session.

        Args:
            history_size: Capacity of each FIFO history (oldest evicted).
                Defaults to ``scoring["history_size"]``.
            emotion_weights: Label -> stress weight. Defaults to
                ``scoring["emotion_weights"]``; an empty mapping makes
                every label neutral.
            clock: Monotonic seconds source, used only for reliability.
            scoring: Overrides for the ``scoring`` config section.
            reliability: Overrides for the ``reliability`` config section.
        """
        scoring = merge_config(CONFIG["scoring"], dict(scoring or {}))
        self.reliability = merge_config(CONFIG["reliability"], dict(reliability or {}))

        if history_size is None:
            history_size = int(scoring["history_size"])
        if history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")
        if emotion_weights is None:
            emotion_weights = scoring["emotion_weights"]

        self.history_size = history_size
        self.emotion_weights = {str(k): float(v) for k, v in emotion_weights.items()}
        self.low_threshold = float(scoring["low_threshold"])
        self.moderate_threshold = float(scoring["moderate_threshold"])
        self.emotion_budget = float(scoring["emotion_budget"])
        self.landmark_budget = float(scoring["landmark_budget"])
        self.behavioral_budget = float(scoring["behavioral_budget"])
        self.multi_emotion_multiplier = float(scoring["multi_emotion_multiplier"])
        self.multi_emotion_min_confidence = float(scoring["multi_emotion_min_confidence"])
        self.high_stress_weight = float(scoring["high_stress_weight"])
        self._clock = clock

        self.current_emotions = EmotionObservation()
        self.current_landmarks: Optional[FaceLandmarks] = None
        self.emotion_history: deque = deque(maxlen=history_size)
        self.landmark_history: deque = deque(maxlen=history_size)
        self._start_time = self._clock()

    # ── Inputs ────────────────────────────────────────────────

    def update_emotions(self, emotions: EmotionInput) -> None:
        """Record one frame's emotion detections."""
        if not isinstance(emotions, EmotionObservation):
            emotions = EmotionObservation.from_pairs(emotions)
        self.current_emotions = emotions
        self.emotion_history.append(emotions)

    def update_landmarks(self, landmarks: FaceLandmarks) -> None:
        """Record one frame's facial geometry metrics."""
        self.current_landmarks = landmarks
        self.landmark_history.append(landmarks)

    def reset(self) -> None:
        """Clear all history and restart the observation clock."""
        self.current_emotions = EmotionObservation()
        self.current_landmarks = None
        self.emotion_history.clear()
        self.landmark_history.clear()
        self._start_time = self._clock()
        _log.debug("Analyzer reset")

    # ── Scoring ───────────────────────────────────────────────

    def weight_for(self, label: str) -> float:
        """Stress weight for a label; unknown labels are neutral."""
        parsed = EmotionLabel.parse(label)
        key = parsed.value if parsed is not None else label
        return float(self.emotion_weights.get(key, 0.0))

    def calculate_emotion_points(self) -> float:
        """Confidence-weighted emotion stress, clamped to [0, 60]."""
        emotions = self.current_emotions
        if emotions.is_empty():
            return 0.0

        weighted = 0.0
        total_conf = 0.0
        for label, conf in emotions:
            weighted += self.weight_for(label) * conf
            total_conf += conf
        if total_conf <= 0.0:
            return 0.0
        score = weighted / total_conf

        min_conf = self.multi_emotion_min_confidence
        stress_labels = {
            label for label, conf in emotions
            if conf > min_conf and self.weight_for(label) > 0.0
        }
        if len(stress_labels) >= 2:
            # Co-occurring stress emotions compound
            score *= self.multi_emotion_multiplier

        return clamp(score, 0.0, self.emotion_budget)

    def calculate_landmark_points(self) -> float:
        """Facial tension points, clamped to [0, 25]. Zero without landmarks."""
        lm = self.current_landmarks
        if lm is None:
            return 0.0

        points = self.calculate_eye_region_points(lm)
        for attr, weight in LANDMARK_WEIGHTS.items():
            points += clamp(getattr(lm, attr)) * weight

        return clamp(points, 0.0, self.landmark_budget)

    @staticmethod
    def calculate_eye_region_points(lm: FaceLandmarks) -> float:
        """Eye openness extremes, asymmetry, eye bags and strain blend."""
        avg_open = clamp(lm.average_eye_openness)
        eye_bags = clamp(lm.eye_bag_severity)
        points = 0.0

        if avg_open < 0.3:
            points += SEVERE_SQUINT_POINTS
        elif avg_open < 0.5:
            points += EYE_STRAIN_POINTS
        elif avg_open > 0.9:
            points += WIDE_EYES_POINTS

        if lm.eye_asymmetry > 0.2:
            points += EYE_ASYMMETRY_POINTS

        points += eye_bags * EYE_BAG_WEIGHT

        strain = (1.0 - avg_open) * 0.6 + eye_bags * 0.4
        points += strain * EYE_STRAIN_BLEND_WEIGHT
        return points

    def calculate_behavioral_points(self) -> float:
        """Temporal behaviour points, clamped to [0, 15]."""
        dominants = [
            obs.dominant() for obs in self.emotion_history if not obs.is_empty()
        ]
        if not dominants:
            return 0.0

        recent = dominants[-CHANGE_RATE_WINDOW:]
        if len(recent) >= 2:
            changes = sum(1 for a, b in zip(recent, recent[1:]) if a != b)
            change_rate = changes / (len(recent) - 1)
        else:
            change_rate = 0.0

        window = dominants[-PERSISTENCE_WINDOW:]
        high_weight = self.high_stress_weight
        persistence = sum(
            1 for label in window if self.weight_for(label) > high_weight
        ) / len(window)

        intensity = clamp(self.current_emotions.max_confidence())

        points = (change_rate + persistence + intensity) * BEHAVIOR_COMPONENT_POINTS
        return clamp(points, 0.0, self.behavioral_budget)

    def classify(self, total: float) -> int:
        """Map an unclamped total onto stress level 1-3."""
        if total <= self.low_threshold:
            return 1
        if total <= self.moderate_threshold:
            return 2
        return 3

    def calculate_stress_level(self) -> StressAnalysisResult:
        """Compute the current stress assessment. Pure over current state."""
        emotion_points = self.calculate_emotion_points()
        landmark_points = self.calculate_landmark_points()
        behavioral_points = self.calculate_behavioral_points()

        total = emotion_points + landmark_points + behavioral_points
        score = clamp(total, 0.0, 100.0)

        return StressAnalysisResult(
            level=self.classify(total),
            score=int(score),
            emotion_score=int(emotion_points),
            facial_tension_score=int(landmark_points),
            behavioral_score=int(behavioral_points),
            dominant_emotion=self.current_emotions.dominant() or "Unknown",
        )

    # ── Reliability ───────────────────────────────────────────

    def elapsed_seconds(self) -> float:
        return max(0.0, self._clock() - self._start_time)

    def emotion_variance(self) -> float:
        """1 - (mode label share) over the labels of the recent window."""
        window = int(self.reliability["stability_window"])
        recent = list(self.emotion_history)[-window:]
        counts = Counter(label for obs in recent for label in obs.labels())
        total = sum(counts.values())
        if total == 0:
            return 1.0
        return 1.0 - max(counts.values()) / total

    def stability_score(self) -> int:
        """0-100: how consistent the recent emotion labels are."""
        if len(self.emotion_history) < int(self.reliability["min_stability_samples"]):
            return 0
        return max(0, int(100.0 - self.emotion_variance() * 100.0))

    def reliability_score(self) -> int:
        """0-100 confidence in the current assessment."""
        samples = len(self.emotion_history) + len(self.landmark_history)
        samples_score = min(100, int(samples * float(self.reliability["sample_weight"])))
        time_score = min(100, int(self.elapsed_seconds() * float(self.reliability["seconds_weight"])))
        stability = self.stability_score()
        return int((samples_score + time_score + stability) / 3.0)

    def get_summary(self) -> dict:
        """Return current analyzer summary."""
        return {
            "result": self.calculate_stress_level().to_dict(),
            "reliability": self.reliability_score(),
            "stability": self.stability_score(),
            "emotion_samples": len(self.emotion_history),
            "landmark_samples": len(self.landmark_history),
            "elapsed_s": round(self.elapsed_seconds(), 2),
            "history_size": self.history_size,
        }
