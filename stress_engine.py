"""
StressScan — Frame Engine
==========================
Synchronous orchestrator: one detector, one analyzer, one audit log.

Per frame:
  1. Emotion detection (StressDetector -> decode + NMS)
  2. Emotions fed to the analyzer only when boxes were found
  3. Facial geometry (optional) -> FaceLandmarks -> analyzer
  4. Stress result + reliability, audited as one JSONL record

Back-pressure: a frame submitted while another is still being processed
is dropped immediately (FrameResult.dropped = True) rather than queued,
so results never lag behind the camera.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from stress_analyzer import StressAnalyzer
from stress_detector import DetectionResult, DetectionStatus, StressDetector
from stress_landmarks import FaceGeometry, extract_landmarks
from stress_logger import StressAuditLogger, get_logger
from stress_report import StressIndicator, detailed_analysis, stress_explanation, stress_indicators
from stress_types import EmotionObservation, FaceLandmarks, StressAnalysisResult
from stress_utils_core import CONFIG, merge_config, setup_logger

_log = logging.getLogger("StressEngine")


@dataclass
class FrameResult:
    """Full frame analysis outcome."""
    timestamp: float
    dropped: bool = False
    detection: Optional[DetectionResult] = None
    stress: Optional[StressAnalysisResult] = None
    landmarks: Optional[FaceLandmarks] = None
    reliability: int = 0
    timing_breakdown: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "dropped": self.dropped,
            "detection": self.detection.to_dict() if self.detection else None,
            "stress": self.stress.to_dict() if self.stress else None,
            "reliability": self.reliability,
            "timing_breakdown": self.timing_breakdown,
        }


@dataclass
class CaptureResult:
    """Snapshot of the session taken when the user captures a frame."""
    timestamp: float
    stress: StressAnalysisResult
    reliability: int
    explanation: str
    analysis: str
    indicators: List[StressIndicator]
    landmarks: Optional[FaceLandmarks] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "stress": self.stress.to_dict(),
            "reliability": self.reliability,
            "explanation": self.explanation,
            "analysis": self.analysis,
            "indicators": [i.to_dict() for i in self.indicators],
            "landmarks": self.landmarks.to_dict() if self.landmarks else None,
        }


class StressEngine:
    """
    Frame-by-frame stress assessment pipeline.
    Orchestrates Detector -> Analyzer -> Audit log.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        detector: Optional[StressDetector] = None,
        analyzer: Optional[StressAnalyzer] = None,
        logger: Optional[StressAuditLogger] = None,
    ):
        self.config = merge_config(CONFIG, config) if config is not None else CONFIG
        setup_logger("StressEngine", getattr(logging, self.config["logging"]["level"], logging.INFO))

        self.logger = logger or get_logger(self.config["logging"]["log_dir"])

        det_cfg = self.config["detection"]
        self.detector = detector or StressDetector(
            model_path=det_cfg["model_path"],
            labels_path=det_cfg["labels_path"],
            confidence_threshold=float(det_cfg["confidence_threshold"]),
            iou_threshold=float(det_cfg["iou_threshold"]),
            num_threads=int(det_cfg["num_threads"]),
        )

        scoring = self.config["scoring"]
        self.analyzer = analyzer or StressAnalyzer(
            scoring=scoring,
            reliability=self.config["reliability"],
        )

        self._busy = threading.Lock()
        self._frames_processed = 0
        self._frames_dropped = 0

        self.logger.log({"event": "engine_init", "labels": len(self.detector.labels)})

    @property
    def stats(self) -> dict:
        return {
            "frames_processed": self._frames_processed,
            "frames_dropped": self._frames_dropped,
        }

    def process_frame(
        self,
        frame: np.ndarray,
        geometry: Optional[FaceGeometry] = None,
    ) -> FrameResult:
        """Analyze one BGR frame. Never raises on frame errors."""
        ts = time.time()
        if not self._busy.acquire(blocking=False):
            self._frames_dropped += 1
            _log.debug("Frame dropped: previous frame still in flight")
            return FrameResult(timestamp=ts, dropped=True)

        try:
            return self._process_frame(frame, geometry, ts)
        finally:
            self._busy.release()

    def _process_frame(self, frame, geometry, ts) -> FrameResult:
        t_start = time.monotonic()
        timing = {}

        # STAGE 1: Emotion detection
        t0 = time.monotonic()
        detection = self.detector.detect(frame)
        timing["detect_ms"] = (time.monotonic() - t0) * 1000

        if detection.status == DetectionStatus.OK:
            self.analyzer.update_emotions(EmotionObservation.from_boxes(detection.boxes))
        elif detection.status != DetectionStatus.EMPTY:
            self.logger.warn(
                "Detection failed",
                {"status": detection.status.value},
            )

        # STAGE 2: Facial geometry
        landmarks = None
        if geometry is not None:
            t0 = time.monotonic()
            landmarks = extract_landmarks(geometry)
            self.analyzer.update_landmarks(landmarks)
            timing["landmarks_ms"] = (time.monotonic() - t0) * 1000

        # STAGE 3: Scoring
        t0 = time.monotonic()
        stress = self.analyzer.calculate_stress_level()
        reliability = self.analyzer.reliability_score()
        timing["score_ms"] = (time.monotonic() - t0) * 1000
        timing["total_ms"] = (time.monotonic() - t_start) * 1000

        self._frames_processed += 1
        result = FrameResult(
            timestamp=ts,
            detection=detection,
            stress=stress,
            landmarks=landmarks,
            reliability=reliability,
            timing_breakdown=timing,
        )
        self.logger.log_frame(result.to_dict())
        return result

    def capture(self) -> CaptureResult:
        """Freeze the current assessment with its explanation and indicators."""
        now = time.time()
        stress = self.analyzer.calculate_stress_level()
        landmarks = self.analyzer.current_landmarks
        capture = CaptureResult(
            timestamp=now,
            stress=stress,
            reliability=self.analyzer.reliability_score(),
            explanation=stress_explanation(stress),
            analysis=detailed_analysis(self.analyzer, now=now),
            indicators=stress_indicators(stress, landmarks, self.analyzer.emotion_weights),
            landmarks=landmarks,
        )
        self.logger.log(
            {"stress": stress.to_dict(), "reliability": capture.reliability},
            event="capture",
        )
        return capture

    def reset(self):
        """Start a new scoring session."""
        self.analyzer.reset()
        self.logger.log({"event": "session_reset", **self.stats})

    def close(self):
        """Release the detector and flush the audit log."""
        self.logger.log({"event": "engine_close", **self.stats}, level="SYSTEM")
        self.detector.close()
        self.logger.close()
