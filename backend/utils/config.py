"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str = "Capacity Analysis & Alert Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    database_path: Path = field(default=PROJECT_ROOT / "data" / "capacity.db")

    default_weekly_capacity: float = 40.0
    default_non_project_hours_per_week: float = 0.0

    alert_critical_threshold: float = 100.0
    alert_near_capacity_threshold: float = 85.0
    alert_underutilized_threshold: float = 70.0

    resolution_max_suggestions: int = 3

    synthetic_random_seed: int = 42
    synthetic_weeks_before: int = 4
    synthetic_weeks_after: int = 8


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; call ``cache_clear`` to reload."""
    defaults = Settings()
    return Settings(
        app_name=_env_str("APP_NAME", defaults.app_name),
        app_version=_env_str("APP_VERSION", defaults.app_version),
        log_level=_env_str("LOG_LEVEL", defaults.log_level),
        database_path=Path(_env_str("DATABASE_PATH", str(defaults.database_path))),
        default_weekly_capacity=_env_float(
            "DEFAULT_WEEKLY_CAPACITY", defaults.default_weekly_capacity
        ),
        default_non_project_hours_per_week=_env_float(
            "DEFAULT_NON_PROJECT_HOURS_PER_WEEK",
            defaults.default_non_project_hours_per_week,
        ),
        alert_critical_threshold=_env_float(
            "ALERT_CRITICAL_THRESHOLD", defaults.alert_critical_threshold
        ),
        alert_near_capacity_threshold=_env_float(
            "ALERT_NEAR_CAPACITY_THRESHOLD", defaults.alert_near_capacity_threshold
        ),
        alert_underutilized_threshold=_env_float(
            "ALERT_UNDERUTILIZED_THRESHOLD", defaults.alert_underutilized_threshold
        ),
        resolution_max_suggestions=_env_int(
            "RESOLUTION_MAX_SUGGESTIONS", defaults.resolution_max_suggestions
        ),
        synthetic_random_seed=_env_int(
            "SYNTHETIC_RANDOM_SEED", defaults.synthetic_random_seed
        ),
        synthetic_weeks_before=_env_int(
            "SYNTHETIC_WEEKS_BEFORE", defaults.synthetic_weeks_before
        ),
        synthetic_weeks_after=_env_int(
            "SYNTHETIC_WEEKS_AFTER", defaults.synthetic_weeks_after
        ),
    )
