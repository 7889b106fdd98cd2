"""Tests for alert threshold and resolution limit validation."""

from __future__ import annotations

import pytest

from backend.domain.constraints import (
    AlertThresholds,
    ResolutionConfig,
    validate_alert_thresholds,
    validate_resolution_config,
)


def valid_thresholds(**overrides) -> AlertThresholds:
    """Return the default thresholds, optionally overriding fields."""
    defaults = {
        "critical_above": 100.0,
        "near_capacity_from": 85.0,
        "underutilized_below": 70.0,
    }
    defaults.update(overrides)
    return AlertThresholds(**defaults)


# --- Baseline pass ---

def test_default_thresholds_pass() -> None:
    validate_alert_thresholds(valid_thresholds())


def test_equal_band_edges_pass() -> None:
    validate_alert_thresholds(
        valid_thresholds(critical_above=90.0, near_capacity_from=90.0, underutilized_below=90.0)
    )


# --- underutilized_below ---

def test_underutilized_threshold_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_alert_thresholds(valid_thresholds(underutilized_below=0.0))


# --- band ordering ---

def test_near_capacity_below_underutilized_raises() -> None:
    with pytest.raises(ValueError):
        validate_alert_thresholds(valid_thresholds(near_capacity_from=60.0))


def test_critical_below_near_capacity_raises() -> None:
    with pytest.raises(ValueError):
        validate_alert_thresholds(valid_thresholds(critical_above=80.0))


# --- resolution limits ---

def test_resolution_config_default_passes() -> None:
    validate_resolution_config(ResolutionConfig())


def test_resolution_config_zero_suggestions_raises() -> None:
    with pytest.raises(ValueError):
        validate_resolution_config(ResolutionConfig(max_suggestions=0))
