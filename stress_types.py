from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple


class EmotionLabel(str, Enum):
    """Closed vocabulary of emotions the detection model is trained on."""
    HAPPY = "Happy"
    NORMAL = "Normal"
    SAD = "Sad"
    OVERWHELMED = "Overwhelmed"
    ANXIOUS = "Anxious"
    IRRITATED = "Irritated"
    WORRIED = "Worried"
    FEAR = "Fear"
    ANGRY = "Angry"

    @classmethod
    def parse(cls, label: str) -> Optional["EmotionLabel"]:
        """Return the matching label, or None for out-of-vocabulary text."""
        try:
            return cls(label)
        except ValueError:
            return None


@dataclass(frozen=True)
class BoundingBox:
    """One decoded detection in normalized [0, 1] image coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float
    cx: float
    cy: float
    w: float
    h: float
    cnf: float
    cls: int
    cls_name: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FaceLandmarks:
    """Per-frame facial geometry: named points plus tension/fatigue metrics.

    All metrics are normalized to [0, 1]. The five secondary indicators
    default to 0.0 so a producer that only emits the primary six metrics
    is still valid input for the scorer.
    """
    left_eye_openness: float
    right_eye_openness: float
    eyebrow_tension: float
    eye_bag_severity: float
    mouth_tension: float
    overall_facial_tension: float
    landmark_points: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    forehead_wrinkles: float = 0.0
    jaw_tension: float = 0.0
    dark_circles: float = 0.0
    skin_stress: float = 0.0
    facial_asymmetry: float = 0.0

    @property
    def average_eye_openness(self) -> float:
        return (self.left_eye_openness + self.right_eye_openness) / 2.0

    @property
    def eye_asymmetry(self) -> float:
        return abs(self.left_eye_openness - self.right_eye_openness)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EmotionObservation:
    """Ordered (label, confidence) pairs detected in one frame."""
    entries: Tuple[Tuple[str, float], ...] = ()

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, float]]) -> "EmotionObservation":
        return cls(tuple((str(label), float(conf)) for label, conf in pairs))

    @classmethod
    def from_boxes(cls, boxes: Iterable[BoundingBox]) -> "EmotionObservation":
        return cls(tuple((box.cls_name, float(box.cnf)) for box in boxes))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def is_empty(self) -> bool:
        return not self.entries

    def dominant(self) -> Optional[str]:
        """Label with the highest confidence (first one wins on ties)."""
        if not self.entries:
            return None
        return max(self.entries, key=lambda e: e[1])[0]

    def dominant_confidence(self) -> float:
        if not self.entries:
            return 0.0
        return max(conf for _, conf in self.entries)

    def max_confidence(self) -> float:
        return self.dominant_confidence()

    def labels(self) -> Tuple[str, ...]:
        return tuple(label for label, _ in self.entries)


@dataclass(frozen=True)
class StressAnalysisResult:
    """Stress assessment computed from the analyzer's current state."""
    level: int                    # 1 low, 2 moderate, 3 high
    score: int                    # 0-100
    emotion_score: int            # 0-60
    facial_tension_score: int     # 0-25
    behavioral_score: int         # 0-15
    dominant_emotion: str

    @property
    def level_name(self) -> str:
        return {1: "low", 2: "moderate", 3: "high"}.get(self.level, "unknown")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["level_name"] = self.level_name
        return data
