"""Domain-level validation rules for alert thresholds and resolution limits."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AlertThresholds:
    critical_above: float = 100.0
    near_capacity_from: float = 85.0
    underutilized_below: float = 70.0


@dataclass(frozen=True)
class ResolutionConfig:
    max_suggestions: int = 3


def validate_alert_thresholds(thresholds: AlertThresholds) -> None:
    if thresholds.underutilized_below <= 0.0:
        raise ValueError("underutilized_below must be > 0")
    if thresholds.near_capacity_from < thresholds.underutilized_below:
        raise ValueError("near_capacity_from must be >= underutilized_below")
    if thresholds.critical_above < thresholds.near_capacity_from:
        raise ValueError("critical_above must be >= near_capacity_from")


def validate_resolution_config(config: ResolutionConfig) -> None:
    if config.max_suggestions <= 0:
        raise ValueError("max_suggestions must be > 0")
