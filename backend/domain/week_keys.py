"""Canonical ISO week keys and normalization of raw week-indexed hours.

Producers of weekly allocation data have used several key conventions over
time: year-qualified keys (``2025-W29``), compact keys (``2025W29``), Monday
dates (``2025-07-14``) and bare week numbers (``W29`` or ``29``). Everything is
normalized into :class:`WeekKey` at the data-access boundary so the
aggregation code only ever sees ``(iso_year, iso_week)`` pairs.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Mapping, Optional


_QUALIFIED_PATTERN = re.compile(r"^(?P<year>\d{4})-?[Ww](?P<week>\d{1,2})$")
_BARE_PATTERN = re.compile(r"^[Ww]?(?P<week>\d{1,2})$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class WeekKeyError(ValueError):
    """Raised when a raw week key cannot be turned into a canonical key."""


@dataclass(frozen=True, order=True)
class WeekKey:
    iso_year: int
    iso_week: int

    def __post_init__(self) -> None:
        if not 1 <= self.iso_week <= weeks_in_iso_year(self.iso_year):
            raise WeekKeyError(
                f"ISO year {self.iso_year} has no week {self.iso_week}"
            )

    @classmethod
    def from_date(cls, value: date) -> "WeekKey":
        iso = value.isocalendar()
        return cls(iso_year=iso[0], iso_week=iso[1])

    @classmethod
    def parse(cls, raw: str) -> "WeekKey":
        """Parse a year-qualified key or an ISO date; bare numbers are rejected."""
        text = raw.strip()
        match = _QUALIFIED_PATTERN.match(text)
        if match is not None:
            return cls(iso_year=int(match["year"]), iso_week=int(match["week"]))
        if _DATE_PATTERN.match(text):
            try:
                return cls.from_date(date.fromisoformat(text))
            except ValueError as exc:
                raise WeekKeyError(f"invalid date week key {raw!r}") from exc
        raise WeekKeyError(f"unrecognized week key {raw!r}")

    @property
    def monday(self) -> date:
        return date.fromisocalendar(self.iso_year, self.iso_week, 1)

    @property
    def sunday(self) -> date:
        # The final ISO week of year 9999 is cut short at date.max.
        return self.monday + timedelta(days=min(6, (date.max - self.monday).days))

    def next(self) -> "WeekKey":
        try:
            return WeekKey.from_date(self.monday + timedelta(days=7))
        except OverflowError as exc:
            raise WeekKeyError(f"no ISO week follows {self}") from exc

    def overlaps(self, start: date, end: date) -> bool:
        return self.monday <= end and self.sunday >= start

    def __str__(self) -> str:
        return f"{self.iso_year}-W{self.iso_week:02d}"


def weeks_in_iso_year(iso_year: int) -> int:
    # December 28th always falls in the last ISO week of its year.
    return date(iso_year, 12, 28).isocalendar()[1]


def week_keys_between(start: date, end: date) -> list[WeekKey]:
    """Every week whose Monday-Sunday span touches ``[start, end]``."""
    if end < start:
        return []
    keys: list[WeekKey] = []
    current = WeekKey.from_date(start)
    last = WeekKey.from_date(end)
    while True:
        keys.append(current)
        if current >= last:
            break
        current = current.next()
    return keys


def resolve_bare_week(week: int, span_start: date, span_end: date) -> WeekKey:
    """Attach an ISO year to a bare week number using the owning date span.

    The week must land inside the span in exactly one ISO year. When it lands
    in none, the ISO year of ``span_start`` is used. When it lands in several
    (spans longer than a year) the key is ambiguous and rejected.
    """

    first_year = span_start.isocalendar()[0]
    last_year = max(first_year, span_end.isocalendar()[0])
    candidates: list[WeekKey] = []
    for iso_year in range(first_year, last_year + 1):
        if week > weeks_in_iso_year(iso_year):
            continue
        key = WeekKey(iso_year=iso_year, iso_week=week)
        if key.overlaps(span_start, span_end):
            candidates.append(key)

    if len(candidates) == 1:
        return candidates[0]
    if len(candidates) > 1:
        raise WeekKeyError(
            f"bare week {week} is ambiguous across ISO years "
            f"{', '.join(str(key.iso_year) for key in candidates)}"
        )
    try:
        return WeekKey(iso_year=first_year, iso_week=week)
    except WeekKeyError as exc:
        raise WeekKeyError(f"bare week {week} does not exist in {first_year}") from exc


def normalize_week_key(raw: Any, span_start: date, span_end: date) -> WeekKey:
    if isinstance(raw, WeekKey):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return resolve_bare_week(raw, span_start, span_end)
    if not isinstance(raw, str):
        raise WeekKeyError(f"unsupported week key type {type(raw).__name__}")

    bare = _BARE_PATTERN.match(raw.strip())
    if bare is not None:
        return resolve_bare_week(int(bare["week"]), span_start, span_end)
    return WeekKey.parse(raw)


def _coerce_hours(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(hours) or math.isinf(hours) or hours < 0:
        return None
    return hours


@dataclass(frozen=True)
class NormalizedWeeks:
    hours: dict[WeekKey, float]
    unrecognized: tuple[str, ...]


def normalize_weekly_allocations(
    raw: Optional[Mapping[Any, Any]],
    span_start: date,
    span_end: date,
) -> NormalizedWeeks:
    """Convert a producer's week map into an ordered canonical map.

    Keys that resolve to the same week are summed. Keys or values that cannot
    be interpreted are returned in ``unrecognized`` so callers can flag them.
    """

    if not raw:
        return NormalizedWeeks(hours={}, unrecognized=())

    merged: dict[WeekKey, float] = {}
    unrecognized: list[str] = []
    for raw_key, raw_hours in raw.items():
        hours = _coerce_hours(raw_hours)
        if hours is None:
            unrecognized.append(str(raw_key))
            continue
        try:
            key = normalize_week_key(raw_key, span_start, span_end)
        except WeekKeyError:
            unrecognized.append(str(raw_key))
            continue
        merged[key] = merged.get(key, 0.0) + hours

    return NormalizedWeeks(
        hours={key: merged[key] for key in sorted(merged)},
        unrecognized=tuple(unrecognized),
    )
