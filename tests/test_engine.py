"""
StressScan — Engine Integration Tests
======================================
Validates the StressEngine orchestration:
- detections feed the analyzer only when boxes exist
- optional facial geometry feeds landmarks
- re-entrant frames are dropped
- capture snapshot, reset and audit logging
"""

import json
import os
import sys
import tempfile
import threading
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

# Add project root
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stress_analyzer import StressAnalyzer
from stress_detector import DetectionResult, DetectionStatus
from stress_engine import CaptureResult, FrameResult, StressEngine
from stress_landmarks import FaceGeometry
from stress_logger import StressAuditLogger
from stress_types import BoundingBox


def _box(label, cnf, cls=0):
    return BoundingBox(
        x1=0.4, y1=0.35, x2=0.6, y2=0.65,
        cx=0.5, cy=0.5, w=0.2, h=0.3,
        cnf=cnf, cls=cls, cls_name=label,
    )


class TestStressEngine(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.logger = StressAuditLogger(log_dir=self.tmp.name)
        self.detector = MagicMock()
        self.detector.labels = ["Happy", "Angry"]
        self.detector.detect.return_value = DetectionResult(DetectionStatus.EMPTY)
        self.analyzer = StressAnalyzer(clock=lambda: 0.0)
        self.engine = StressEngine(
            detector=self.detector, analyzer=self.analyzer, logger=self.logger,
        )
        self.frame = np.zeros((48, 64, 3), dtype=np.uint8)

    def tearDown(self):
        self.logger.close()
        self.tmp.cleanup()

    def _audit_entries(self):
        with open(self.logger.log_path, encoding="utf-8") as f:
            return [json.loads(line) for line in f]

    def test_process_frame_returns_frame_result(self):
        self.detector.detect.return_value = DetectionResult(
            DetectionStatus.OK, [_box("Angry", 0.8, cls=1)], 3.0,
        )
        result = self.engine.process_frame(self.frame)

        self.assertIsInstance(result, FrameResult)
        self.assertFalse(result.dropped)
        self.assertEqual(result.stress.dominant_emotion, "Angry")
        self.assertEqual(result.stress.emotion_score, 50)
        self.assertIn("detect_ms", result.timing_breakdown)
        self.assertIn("total_ms", result.timing_breakdown)
        self.assertEqual(len(self.analyzer.emotion_history), 1)

    def test_empty_detection_does_not_feed_emotions(self):
        result = self.engine.process_frame(self.frame)
        self.assertEqual(len(self.analyzer.emotion_history), 0)
        self.assertEqual(result.stress.dominant_emotion, "Unknown")
        self.assertEqual(result.stress.level, 1)

    def test_geometry_feeds_landmarks(self):
        geometry = FaceGeometry(
            image_width=640, image_height=480,
            left_eye_open_probability=0.2, right_eye_open_probability=0.2,
        )
        result = self.engine.process_frame(self.frame, geometry)
        self.assertIsNotNone(result.landmarks)
        self.assertEqual(len(self.analyzer.landmark_history), 1)
        self.assertGreater(result.stress.facial_tension_score, 0)
        self.assertIn("landmarks_ms", result.timing_breakdown)

    def test_malformed_geometry_does_not_raise(self):
        geometry = FaceGeometry(
            image_width=640, image_height=480,
            head_euler_y=None,
            points={"MOUTH_LEFT": (280.0, 310.0), "MOUTH_RIGHT": (360.0, 310.0),
                    "MOUTH_BOTTOM": (130.0, None)},
        )
        result = self.engine.process_frame(geometry=geometry, frame=self.frame)
        self.assertFalse(result.dropped)
        self.assertEqual(result.landmarks.mouth_tension, 0.0)
        self.assertEqual(result.landmarks.overall_facial_tension, 0.0)
        self.assertEqual(len(self.analyzer.landmark_history), 1)

    def test_detection_failure_is_logged_as_warning(self):
        self.detector.detect.return_value = DetectionResult(DetectionStatus.INFERENCE_ERROR)
        result = self.engine.process_frame(self.frame)
        self.assertEqual(result.detection.status, DetectionStatus.INFERENCE_ERROR)
        levels = [e["level"] for e in self._audit_entries()]
        self.assertIn("WARN", levels)

    def test_reentrant_frame_is_dropped(self):
        entered = threading.Event()
        release = threading.Event()

        def slow_detect(frame):
            entered.set()
            release.wait(timeout=5)
            return DetectionResult(DetectionStatus.EMPTY)

        self.detector.detect.side_effect = slow_detect
        worker = threading.Thread(target=self.engine.process_frame, args=(self.frame,))
        worker.start()
        self.assertTrue(entered.wait(timeout=5))

        dropped = self.engine.process_frame(self.frame)
        release.set()
        worker.join(timeout=5)

        self.assertTrue(dropped.dropped)
        self.assertIsNone(dropped.stress)
        self.assertEqual(self.engine.stats, {"frames_processed": 1, "frames_dropped": 1})

    def test_logging_produces_valid_jsonl(self):
        with patch.object(self.engine.logger, "log_frame") as mock_log:
            self.engine.process_frame(self.frame)
            mock_log.assert_called_once()
            payload = mock_log.call_args[0][0]
            json.dumps(payload)
            self.assertIn("stress", payload)

    def test_capture_snapshot(self):
        self.detector.detect.return_value = DetectionResult(
            DetectionStatus.OK, [_box("Happy", 0.9)], 1.0,
        )
        self.engine.process_frame(self.frame)

        capture = self.engine.capture()

        self.assertIsInstance(capture, CaptureResult)
        self.assertEqual(capture.stress.level, 1)
        self.assertIn("LOW STRESS", capture.explanation)
        self.assertIn("COMPREHENSIVE STRESS ANALYSIS", capture.analysis)
        self.assertEqual(capture.indicators[-1].name, "Happy")
        json.dumps(capture.to_dict())
        events = [e["event"] for e in self._audit_entries()]
        self.assertIn("capture", events)

    def test_reset_clears_analyzer(self):
        self.detector.detect.return_value = DetectionResult(
            DetectionStatus.OK, [_box("Angry", 0.9, cls=1)], 1.0,
        )
        self.engine.process_frame(self.frame)
        self.engine.reset()
        self.assertEqual(len(self.analyzer.emotion_history), 0)

    def test_config_scoring_section_reaches_analyzer(self):
        config = {"scoring": {
            "low_threshold": 1.0,
            "moderate_threshold": 2.0,
            "emotion_weights": {"Sad": 25.0},
        }}
        engine = StressEngine(config=config, detector=self.detector, logger=self.logger)
        self.assertEqual(engine.analyzer.low_threshold, 1.0)
        self.assertEqual(engine.analyzer.moderate_threshold, 2.0)
        self.assertEqual(engine.config["logging"]["level"], "INFO")

        self.detector.detect.return_value = DetectionResult(
            DetectionStatus.OK, [_box("Sad", 0.9)], 1.0,
        )
        result = engine.process_frame(self.frame)

        self.assertEqual(result.stress.score, 34)
        self.assertEqual(result.stress.level, 3)

    def test_capture_indicator_uses_analyzer_weights(self):
        analyzer = StressAnalyzer(clock=lambda: 0.0, emotion_weights={"Angry": 12.0})
        engine = StressEngine(detector=self.detector, analyzer=analyzer, logger=self.logger)
        self.detector.detect.return_value = DetectionResult(
            DetectionStatus.OK, [_box("Angry", 0.9, cls=1)], 1.0,
        )
        engine.process_frame(self.frame)

        capture = engine.capture()

        self.assertEqual(capture.stress.emotion_score, 12)
        self.assertEqual(capture.indicators[-1].points, 12.0)

    def test_close_releases_detector_and_logger(self):
        self.engine.close()
        self.detector.close.assert_called_once()
        self.assertTrue(self.logger.closed)


if __name__ == "__main__":
    unittest.main()
