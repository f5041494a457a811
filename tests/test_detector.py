"""
StressScan — Emotion Detector Test Suite
=========================================
Validates StressDetector against a mocked inference session:
- label loading
- NCHW / NHWC input handling
- status mapping for every failure mode
- decode + NMS on the session output
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

# Add project root
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stress_detector import DetectionStatus, StressDetector, load_labels


LABELS = ["Happy", "Normal", "Sad", "Angry"]


def _mock_session(in_shape=(1, 3, 64, 64), out_shape=(1, 8, 3), output=None):
    session = MagicMock()
    model_input = MagicMock()
    model_input.name = "images"
    model_input.shape = list(in_shape)
    model_output = MagicMock()
    model_output.shape = list(out_shape)
    session.get_inputs.return_value = [model_input]
    session.get_outputs.return_value = [model_output]
    if output is None:
        output = np.zeros(out_shape, dtype=np.float32)
    session.run.return_value = [output]
    return session


def _output_with(candidates, elements=3):
    """[1, 8, elements] tensor; candidates: list of (cx, cy, w, h, cls, score)."""
    out = np.zeros((1, 8, elements), dtype=np.float32)
    for e, (cx, cy, w, h, cls, score) in enumerate(candidates):
        out[0, 0:4, e] = (cx, cy, w, h)
        out[0, 4 + cls, e] = score
    return out


class TestLoadLabels(unittest.TestCase):

    def test_skips_blank_lines_and_strips(self):
        import tempfile
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "labels.txt")
            with open(path, "w", encoding="utf-8") as f:
                f.write("Happy\n\n  Sad  \n\t\nAngry\n")
            self.assertEqual(load_labels(path), ["Happy", "Sad", "Angry"])

    def test_missing_file_returns_empty(self):
        self.assertEqual(load_labels("/nonexistent/labels.txt"), [])


class TestStressDetector(unittest.TestCase):

    def setUp(self):
        self.frame = np.full((120, 160, 3), 255, dtype=np.uint8)

    def test_missing_model_raises(self):
        with self.assertRaises(FileNotFoundError):
            StressDetector(model_path="/nonexistent/model.onnx", labels=LABELS)

    def test_reads_nchw_shapes(self):
        det = StressDetector(session=_mock_session(), labels=LABELS)
        self.assertTrue(det.channels_first)
        self.assertEqual((det.tensor_width, det.tensor_height), (64, 64))
        self.assertEqual((det.num_channels, det.num_elements), (8, 3))

        tensor = det.preprocess(self.frame)
        self.assertEqual(tensor.shape, (1, 3, 64, 64))
        self.assertEqual(tensor.dtype, np.float32)
        self.assertAlmostEqual(float(tensor.max()), 1.0)

    def test_reads_nhwc_shapes(self):
        det = StressDetector(session=_mock_session(in_shape=(1, 48, 32, 3)), labels=LABELS)
        self.assertFalse(det.channels_first)
        self.assertEqual(det.preprocess(self.frame).shape, (1, 48, 32, 3))

    def test_preprocess_converts_bgr_to_rgb(self):
        det = StressDetector(session=_mock_session(), labels=LABELS)
        frame = np.zeros((64, 64, 3), dtype=np.uint8)
        frame[..., 0] = 255  # pure blue in BGR
        tensor = det.preprocess(frame)
        self.assertAlmostEqual(float(tensor[0, 2].mean()), 1.0)   # B is last in RGB
        self.assertAlmostEqual(float(tensor[0, 0].mean()), 0.0)

    def test_detect_ok(self):
        output = _output_with([
            (0.5, 0.5, 0.2, 0.3, 3, 0.9),
            (0.51, 0.5, 0.2, 0.3, 3, 0.6),   # duplicate, suppressed
            (0.2, 0.2, 0.1, 0.1, 0, 0.7),
        ])
        session = _mock_session(output=output)
        det = StressDetector(session=session, labels=LABELS)

        result = det.detect(self.frame)

        self.assertEqual(result.status, DetectionStatus.OK)
        self.assertTrue(result.ok)
        self.assertEqual([b.cls_name for b in result.boxes], ["Angry", "Happy"])
        self.assertGreaterEqual(result.inference_ms, 0.0)
        feed = session.run.call_args[0][1]
        self.assertEqual(feed["images"].shape, (1, 3, 64, 64))

    def test_detect_empty(self):
        det = StressDetector(session=_mock_session(), labels=LABELS)
        result = det.detect(self.frame)
        self.assertEqual(result.status, DetectionStatus.EMPTY)
        self.assertEqual(result.boxes, [])

    def test_detect_without_labels(self):
        det = StressDetector(session=_mock_session(), labels=[])
        self.assertEqual(det.detect(self.frame).status, DetectionStatus.NO_LABELS)

    def test_detect_invalid_shape(self):
        det = StressDetector(session=_mock_session(out_shape=(1, 8)), labels=LABELS)
        self.assertEqual(det.detect(self.frame).status, DetectionStatus.INVALID_SHAPE)

    def test_symbolic_dims_are_invalid(self):
        det = StressDetector(session=_mock_session(in_shape=(1, 3, "height", "width")), labels=LABELS)
        self.assertEqual(det.detect(self.frame).status, DetectionStatus.INVALID_SHAPE)

    def test_inference_error_is_contained(self):
        session = _mock_session()
        session.run.side_effect = RuntimeError("device lost")
        det = StressDetector(session=session, labels=LABELS)
        result = det.detect(self.frame)
        self.assertEqual(result.status, DetectionStatus.INFERENCE_ERROR)
        self.assertEqual(result.boxes, [])

    def test_close_releases_session(self):
        det = StressDetector(session=_mock_session(), labels=LABELS)
        det.close()
        self.assertIsNone(det.session)
        self.assertEqual(det.detect(self.frame).status, DetectionStatus.INVALID_SHAPE)

    def test_session_created_with_provider_fallback(self):
        import tempfile
        with tempfile.TemporaryDirectory() as tmp:
            model_path = os.path.join(tmp, "model.onnx")
            open(model_path, "wb").close()
            with patch("onnxruntime.InferenceSession") as mock_cls, \
                 patch("onnxruntime.get_available_providers",
                       return_value=["CUDAExecutionProvider", "CPUExecutionProvider"]):
                mock_cls.return_value = _mock_session()
                det = StressDetector(model_path=model_path, labels=LABELS)

            providers = mock_cls.call_args.kwargs["providers"]
            self.assertEqual(providers, ["CUDAExecutionProvider", "CPUExecutionProvider"])
            self.assertTrue(det.shape_valid)


if __name__ == "__main__":
    unittest.main()
