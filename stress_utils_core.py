"""
StressScan — Shared Utility Module
===================================
Centralized configuration and logging for all StressScan modules.

Contains:
  A) config.yaml loading merged over DEFAULT_CONFIG
  B) Named constants derived from the active config
  C) Logger factory with the project-wide formatter
  D) Small numeric helpers shared by the scorers

Every threshold the decoder and the analyzer use is read from here, so a
deployment can retune them in config.yaml without touching code. A missing
or partial config.yaml still yields a complete configuration.
"""

from __future__ import annotations

import copy
import logging
import math
import os
from typing import Optional

import yaml


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for StressScan modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-14s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


_log = setup_logger('StressUtils')


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')

DEFAULT_CONFIG: dict = {
    "detection": {
        "model_path": "models/stress_emotions.onnx",
        "labels_path": "models/labels.txt",
        "confidence_threshold": 0.30,
        "iou_threshold": 0.50,
        "num_threads": 4,
    },
    "scoring": {
        "history_size": 15,
        "low_threshold": 30.0,
        "moderate_threshold": 70.0,
        "emotion_budget": 60.0,
        "landmark_budget": 25.0,
        "behavioral_budget": 15.0,
        "multi_emotion_multiplier": 1.3,
        "multi_emotion_min_confidence": 0.3,
        "high_stress_weight": 20.0,
        "emotion_weights": {
            "Happy": -15.0,
            "Normal": 0.0,
            "Sad": 25.0,
            "Irritated": 30.0,
            "Worried": 35.0,
            "Anxious": 40.0,
            "Overwhelmed": 45.0,
            "Fear": 45.0,
            "Angry": 50.0,
        },
    },
    "reliability": {
        "sample_weight": 4.0,
        "seconds_weight": 8.0,
        "stability_window": 5,
        "min_stability_samples": 3,
    },
    "logging": {
        "log_dir": "logs",
        "audit_file": "stress_audit.jsonl",
        "level": "INFO",
    },
}


def merge_config(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml, merged over DEFAULT_CONFIG.

    Args:
        path: Optional YAML path. Defaults to config.yaml next to this module.

    Returns:
        Complete configuration dictionary. Falls back to the defaults when
        the file is missing or cannot be parsed.
    """
    target = path or _config_path
    if not os.path.exists(target):
        _log.debug("No config at %s; using defaults", target)
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(target, 'r', encoding='utf-8') as f:
            user_cfg = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        _log.warning("Failed to read config %s (%s); using defaults", target, e)
        return copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(user_cfg, dict):
        _log.warning("Config %s is not a mapping; using defaults", target)
        return copy.deepcopy(DEFAULT_CONFIG)
    return merge_config(DEFAULT_CONFIG, user_cfg)


CONFIG = load_config()


# ===================================================================
# Constants (loaded from config.yaml, overridable at runtime)
# ===================================================================

CONFIDENCE_THRESHOLD = float(CONFIG['detection']['confidence_threshold'])
IOU_THRESHOLD        = float(CONFIG['detection']['iou_threshold'])

HISTORY_SIZE = int(CONFIG['scoring']['history_size'])

EMOTION_STRESS_WEIGHTS = {
    str(label): float(weight)
    for label, weight in CONFIG['scoring']['emotion_weights'].items()
}


# ===================================================================
# Numeric helpers
# ===================================================================

def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` into [low, high]. NaN maps to ``low``."""
    if value is None or math.isnan(value):
        return low
    return max(low, min(high, value))
