"""
StressScan — Emotion Detector (ONNX Runtime)
=============================================
Wraps the YOLO-style emotion model: preprocesses a BGR frame, runs one
inference and decodes the output into labeled boxes via stress_decoder.

Model:   input  [1, 3, H, W] (NCHW) or [1, H, W, 3] (NHWC), float32 [0, 1]
         output [1, channels, elements]
Labels:  one per non-blank line of a text file; index = class row - 4.

Provider priority: VitisAI -> CUDA -> DirectML -> CPU (first available).
Frame processing never raises; every failure maps to a DetectionStatus.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import cv2
import numpy as np

from stress_decoder import decode_output, non_max_suppression
from stress_types import BoundingBox
from stress_utils_core import CONFIG, CONFIDENCE_THRESHOLD, IOU_THRESHOLD

_log = logging.getLogger("StressDetector")

PREFERRED_PROVIDERS = [
    "VitisAIExecutionProvider",
    "CUDAExecutionProvider",
    "DmlExecutionProvider",
    "CPUExecutionProvider",
]


class DetectionStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    NO_LABELS = "no_labels"
    INVALID_SHAPE = "invalid_shape"
    INFERENCE_ERROR = "inference_error"


@dataclass
class DetectionResult:
    """Outcome of one detect() call."""
    status: DetectionStatus
    boxes: List[BoundingBox] = field(default_factory=list)
    inference_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == DetectionStatus.OK

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "boxes": [b.to_dict() for b in self.boxes],
            "inference_ms": round(self.inference_ms, 2),
        }


def load_labels(path: str) -> List[str]:
    """Read one label per non-blank line. Unreadable file -> []."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            labels = [line.strip() for line in f if line.strip()]
    except OSError as e:
        _log.error("Error loading labels from %s: %s", path, e)
        return []
    _log.debug("Labels loaded: %d", len(labels))
    return labels


def _dim(value) -> int:
    """Concrete tensor dimension, 0 for symbolic/unknown ones."""
    return value if isinstance(value, int) and value > 0 else 0


class StressDetector:
    """Emotion detection over an ONNX Runtime session.

    Usage:
        detector = StressDetector("models/stress_emotions.onnx", "models/labels.txt")
        result = detector.detect(frame_bgr)
        if result.ok:
            for box in result.boxes: ...
    """

    def __init__(
        self,
        model_path: Optional[str] = None,
        labels_path: Optional[str] = None,
        session=None,
        labels: Optional[List[str]] = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        iou_threshold: float = IOU_THRESHOLD,
        num_threads: Optional[int] = None,
    ):
        """Load the model and its labels.

        Args:
            model_path: ONNX model path. Ignored when ``session`` is given.
            labels_path: Label file path. Ignored when ``labels`` is given.
            session: Pre-built session exposing get_inputs/get_outputs/run.
            labels: Explicit label list.
            confidence_threshold: Minimum (exclusive) class confidence.
            iou_threshold: NMS overlap threshold.
            num_threads: Intra-op threads for the CPU provider.

        Raises:
            FileNotFoundError: model_path does not exist and no session given.
        """
        det_cfg = CONFIG["detection"]
        self.model_path = model_path or det_cfg["model_path"]
        self.labels_path = labels_path or det_cfg["labels_path"]
        self.confidence_threshold = confidence_threshold
        self.iou_threshold = iou_threshold
        self.num_threads = num_threads or int(det_cfg["num_threads"])

        if session is None:
            if not os.path.exists(self.model_path):
                raise FileNotFoundError(f"Emotion model missing: {self.model_path}")
            session = self._create_session()
        self.session = session

        self.labels = list(labels) if labels is not None else load_labels(self.labels_path)
        self._read_shapes()

    def _create_session(self):
        import onnxruntime as ort

        opts = ort.SessionOptions()
        opts.intra_op_num_threads = self.num_threads
        opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

        available = ort.get_available_providers()
        providers = [p for p in PREFERRED_PROVIDERS if p in available] or ["CPUExecutionProvider"]
        try:
            session = ort.InferenceSession(self.model_path, sess_options=opts, providers=providers)
        except Exception as e:
            _log.warning("Accelerated init failed (%s); falling back to CPU", e)
            session = ort.InferenceSession(
                self.model_path, sess_options=opts, providers=["CPUExecutionProvider"]
            )
        _log.info("Model loaded: %s (providers=%s)", self.model_path, session.get_providers())
        return session

    def _read_shapes(self):
        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        in_shape = list(model_input.shape)
        out_shape = list(self.session.get_outputs()[0].shape)

        self.channels_first = True
        self.tensor_height = self.tensor_width = 0
        if len(in_shape) == 4:
            if in_shape[1] == 3:
                self.tensor_height, self.tensor_width = _dim(in_shape[2]), _dim(in_shape[3])
            else:
                self.channels_first = False
                self.tensor_height, self.tensor_width = _dim(in_shape[1]), _dim(in_shape[2])

        self.num_channels = self.num_elements = 0
        if len(out_shape) >= 3:
            self.num_channels, self.num_elements = _dim(out_shape[1]), _dim(out_shape[2])

        _log.debug(
            "Tensor %dx%d (%s), output channels=%d elements=%d",
            self.tensor_width, self.tensor_height,
            "NCHW" if self.channels_first else "NHWC",
            self.num_channels, self.num_elements,
        )

    @property
    def shape_valid(self) -> bool:
        return min(self.tensor_width, self.tensor_height,
                   self.num_channels, self.num_elements) > 0

    def preprocess(self, frame_bgr: np.ndarray) -> np.ndarray:
        """BGR uint8 frame -> batched float32 tensor in the model's layout."""
        resized = cv2.resize(
            frame_bgr, (self.tensor_width, self.tensor_height),
            interpolation=cv2.INTER_LINEAR,
        )
        rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        tensor = rgb.astype(np.float32) / 255.0
        if self.channels_first:
            tensor = np.transpose(tensor, (2, 0, 1))
        return np.expand_dims(tensor, axis=0)

    def detect(self, frame_bgr: np.ndarray) -> DetectionResult:
        """Run detection on one frame. Never raises."""
        if not self.shape_valid:
            _log.error(
                "Invalid tensor dimensions: %dx%d, channels=%d, elements=%d",
                self.tensor_width, self.tensor_height,
                self.num_channels, self.num_elements,
            )
            return DetectionResult(DetectionStatus.INVALID_SHAPE)
        if not self.labels:
            _log.warning("No labels loaded; detection skipped")
            return DetectionResult(DetectionStatus.NO_LABELS)

        t0 = time.monotonic()
        try:
            tensor = self.preprocess(frame_bgr)
            outputs = self.session.run(None, {self.input_name: tensor})
        except Exception as e:
            _log.error("Inference error: %s", e)
            return DetectionResult(DetectionStatus.INFERENCE_ERROR)

        boxes = decode_output(
            outputs[0], self.labels,
            num_channels=self.num_channels,
            num_elements=self.num_elements,
            confidence_threshold=self.confidence_threshold,
        )
        boxes = non_max_suppression(boxes, self.iou_threshold) if boxes else []
        elapsed_ms = (time.monotonic() - t0) * 1000.0

        if not boxes:
            _log.debug("No detections found")
            return DetectionResult(DetectionStatus.EMPTY, inference_ms=elapsed_ms)

        _log.debug("Found %d detection(s): %s", len(boxes),
                   ", ".join(f"{b.cls_name}({b.cnf:.2f})" for b in boxes))
        return DetectionResult(DetectionStatus.OK, boxes, elapsed_ms)

    def close(self):
        """Release the inference session."""
        self.session = None
        self.num_channels = self.num_elements = 0
