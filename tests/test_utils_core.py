"""
StressScan — Shared Utility Test Suite
=======================================
Covers: config loading and merging, derived constants, logger setup,
clamping helper.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# Project root
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from stress_utils_core import (
    CONFIG,
    DEFAULT_CONFIG,
    EMOTION_STRESS_WEIGHTS,
    HISTORY_SIZE,
    clamp,
    load_config,
    setup_logger,
)


# ═══════════════════════════════════════════════════════════════
# TEST 1: Shipped config matches the documented defaults
# ═══════════════════════════════════════════════════════════════

def test_shipped_config_is_complete():
    for section in ("detection", "scoring", "reliability", "logging"):
        assert section in CONFIG
    assert HISTORY_SIZE == 15
    assert EMOTION_STRESS_WEIGHTS["Happy"] == -15.0
    assert EMOTION_STRESS_WEIGHTS["Angry"] == 50.0
    assert set(EMOTION_STRESS_WEIGHTS) == set(DEFAULT_CONFIG["scoring"]["emotion_weights"])


# ═══════════════════════════════════════════════════════════════
# TEST 2: Partial config deep-merges over defaults
# ═══════════════════════════════════════════════════════════════

def test_partial_config_is_merged(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "scoring:\n"
        "  history_size: 20\n"
        "  emotion_weights:\n"
        "    Sad: 30.0\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))

    assert cfg["scoring"]["history_size"] == 20
    assert cfg["scoring"]["emotion_weights"]["Sad"] == 30.0
    assert cfg["scoring"]["emotion_weights"]["Angry"] == 50.0
    assert cfg["detection"] == DEFAULT_CONFIG["detection"]
    # Defaults are never mutated by a merge
    assert DEFAULT_CONFIG["scoring"]["history_size"] == 15


# ═══════════════════════════════════════════════════════════════
# TEST 3: Missing, broken or non-mapping config falls back
# ═══════════════════════════════════════════════════════════════

def test_missing_config_uses_defaults(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml")) == DEFAULT_CONFIG


def test_invalid_yaml_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("scoring: [unclosed\n", encoding="utf-8")
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_non_mapping_yaml_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_config(str(path)) == DEFAULT_CONFIG


# ═══════════════════════════════════════════════════════════════
# TEST 4: Logger and clamp helpers
# ═══════════════════════════════════════════════════════════════

def test_setup_logger_is_idempotent():
    first = setup_logger("StressTestLogger", logging.DEBUG)
    second = setup_logger("StressTestLogger", logging.DEBUG)
    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.DEBUG


@pytest.mark.parametrize("value,expected", [
    (-0.5, 0.0), (0.25, 0.25), (1.5, 1.0), (float("nan"), 0.0), (None, 0.0),
])
def test_clamp_unit_range(value, expected):
    assert clamp(value) == expected


def test_clamp_custom_bounds():
    assert clamp(75.0, 0.0, 60.0) == 60.0
    assert clamp(-3.0, 0.0, 60.0) == 0.0
