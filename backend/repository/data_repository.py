"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import random
import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from backend.domain.models import (
    Allocation,
    AllocationStatus,
    NonProjectActivity,
    Project,
    ProjectPriority,
    Resource,
    Snapshot,
    TimeOff,
)
from backend.domain.week_keys import WeekKey, normalize_weekly_allocations
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

_GROUP_EXPRESSION = "COALESCE(NULLIF(TRIM(department), ''), NULLIF(TRIM(role), ''), 'General')"


def _parse_date(value: Any) -> date:
    return date.fromisoformat(str(value)[:10])


def _parse_optional_date(value: Any) -> Optional[date]:
    if value is None or not str(value).strip():
        return None
    return _parse_date(value)


def _parse_project_date(raw: Any, project_id: int, field_name: str) -> Optional[date]:
    try:
        return _parse_optional_date(raw)
    except ValueError:
        logger.warning(
            "Unreadable project date; treating as open-ended | project_id=%s | field=%s | value=%s",
            project_id,
            field_name,
            raw,
        )
        return None


def _parse_capacity(raw: Any, resource_id: int) -> Optional[float]:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning(
            "Unreadable weekly capacity; using standard capacity | resource_id=%s | capacity=%s",
            resource_id,
            raw,
        )
        return None


def _parse_priority(raw: Any, project_id: int) -> ProjectPriority:
    if raw is None:
        return ProjectPriority.MEDIUM
    try:
        return ProjectPriority.parse(raw)
    except (KeyError, ValueError):
        logger.warning(
            "Unknown project priority; using medium | project_id=%s | priority=%s",
            project_id,
            raw,
        )
        return ProjectPriority.MEDIUM


def _parse_status(raw: Any, allocation_id: int) -> AllocationStatus:
    try:
        return AllocationStatus(str(raw).strip().lower())
    except ValueError:
        logger.warning(
            "Unknown allocation status; treating as planned | allocation_id=%s | status=%s",
            allocation_id,
            raw,
        )
        return AllocationStatus.PLANNED


def _load_weekly_json(raw: Optional[str], allocation_id: int) -> tuple[dict[Any, Any], tuple[str, ...]]:
    if raw is None or not str(raw).strip():
        return {}, ()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(
            "Weekly allocations are not valid JSON | allocation_id=%s",
            allocation_id,
        )
        return {}, (str(raw),)
    if not isinstance(payload, dict):
        logger.warning(
            "Weekly allocations must be an object | allocation_id=%s | type=%s",
            allocation_id,
            type(payload).__name__,
        )
        return {}, (str(raw),)
    return payload, ()


def _dump_weekly(weekly_allocations: Optional[Mapping[Any, float]]) -> Optional[str]:
    if not weekly_allocations:
        return None
    return json.dumps({str(key): hours for key, hours in weekly_allocations.items()})


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Resources (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        weekly_capacity REAL,
                        department TEXT,
                        role TEXT,
                        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0,1))
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Projects (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        priority TEXT NOT NULL DEFAULT 'medium',
                        status TEXT NOT NULL DEFAULT 'active',
                        start_date TEXT,
                        end_date TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Allocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        project_id INTEGER NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        allocated_hours REAL NOT NULL DEFAULT 0,
                        weekly_allocations TEXT,
                        status TEXT NOT NULL DEFAULT 'active',
                        FOREIGN KEY (resource_id) REFERENCES Resources(id),
                        FOREIGN KEY (project_id) REFERENCES Projects(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TimeOff (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        hours REAL NOT NULL CHECK (hours >= 0),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS NonProjectActivities (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        activity_type TEXT NOT NULL,
                        hours_per_week REAL NOT NULL DEFAULT 0,
                        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0,1)),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_resource_dates
                    ON Allocations(resource_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_time_off_resource_dates
                    ON TimeOff(resource_id, start_date, end_date);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self, today: Optional[date] = None) -> None:
        """Seed a deterministic demo team only when tables are empty.

        Allocations span ``synthetic_weeks_before`` weeks before and
        ``synthetic_weeks_after`` weeks after the current week, so the default
        month view always has data. Half of the weekly maps use bare ``W<n>``
        keys to exercise normalization.
        """
        random.seed(self._settings.synthetic_random_seed)
        anchor = today or datetime.now(timezone.utc).date()
        first_week = WeekKey.from_date(anchor - timedelta(weeks=self._settings.synthetic_weeks_before))
        week_count = self._settings.synthetic_weeks_before + self._settings.synthetic_weeks_after + 1
        weeks = [first_week]
        for _ in range(week_count - 1):
            weeks.append(weeks[-1].next())
        span_start = weeks[0].monday
        span_end = weeks[-1].sunday

        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Resources;")
                resource_count = int(cursor.fetchone()["count"])
                if resource_count > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                resources = [
                    ("Alice Chen", 40.0, "Engineering", "Backend Developer", 1),
                    ("Bruno Silva", 40.0, "Engineering", "Backend Developer", 1),
                    ("Chloe Martin", 40.0, "Engineering", "Frontend Developer", 1),
                    ("Dev Patel", 20.0, "Engineering", "Frontend Developer", 1),
                    ("Emma Novak", 40.0, "Design", "Product Designer", 1),
                    ("Farid Haddad", None, "Design", "Product Designer", 1),
                    ("Grace Okafor", 40.0, "QA", "Test Engineer", 1),
                    ("Hiro Tanaka", 40.0, None, "Backend Developer", 1),
                    ("Ines Duarte", 40.0, "QA", "Test Engineer", 0),
                ]
                cursor.executemany(
                    """
                    INSERT INTO Resources (name, weekly_capacity, department, role, active)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    resources,
                )

                projects = [
                    ("Billing Platform", "critical", "active"),
                    ("Customer Portal", "high", "active"),
                    ("Internal Tools", "low", "active"),
                    ("Data Migration", "medium", "active"),
                    ("Mobile Redesign", "medium", "draft"),
                ]
                cursor.executemany(
                    """
                    INSERT INTO Projects (name, priority, status, start_date, end_date)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    [
                        (name, priority, status, span_start.isoformat(), span_end.isoformat())
                        for name, priority, status in projects
                    ],
                )

                cursor.execute("SELECT id, name FROM Resources ORDER BY id ASC;")
                resource_ids = {str(row["name"]): int(row["id"]) for row in cursor.fetchall()}
                cursor.execute("SELECT id, name FROM Projects ORDER BY id ASC;")
                project_ids = {str(row["name"]): int(row["id"]) for row in cursor.fetchall()}

                weekly_plan = [
                    ("Alice Chen", "Billing Platform", 30.0),
                    ("Alice Chen", "Internal Tools", 18.0),
                    ("Bruno Silva", "Customer Portal", 36.0),
                    ("Chloe Martin", "Customer Portal", 24.0),
                    ("Chloe Martin", "Internal Tools", 6.0),
                    ("Emma Novak", "Customer Portal", 12.0),
                    ("Farid Haddad", "Data Migration", 30.0),
                    ("Hiro Tanaka", "Billing Platform", 20.0),
                ]
                allocation_rows = []
                for index, (resource_name, project_name, base_hours) in enumerate(weekly_plan):
                    bare_keys = index % 2 == 1
                    weekly: dict[str, float] = {}
                    for week in weeks:
                        hours = round(base_hours + random.uniform(-2.0, 2.0), 1)
                        key = f"W{week.iso_week}" if bare_keys else str(week)
                        weekly[key] = max(0.0, hours)
                    allocation_rows.append(
                        (
                            resource_ids[resource_name],
                            project_ids[project_name],
                            span_start.isoformat(),
                            span_end.isoformat(),
                            round(sum(weekly.values()), 1),
                            json.dumps(weekly),
                            AllocationStatus.ACTIVE.value,
                        )
                    )

                # Prorated allocations without a weekly breakdown.
                allocation_rows.extend(
                    [
                        (
                            resource_ids["Dev Patel"],
                            project_ids["Data Migration"],
                            span_start.isoformat(),
                            span_end.isoformat(),
                            18.0 * week_count,
                            None,
                            AllocationStatus.ACTIVE.value,
                        ),
                        (
                            resource_ids["Grace Okafor"],
                            project_ids["Mobile Redesign"],
                            span_start.isoformat(),
                            span_end.isoformat(),
                            20.0 * week_count,
                            None,
                            AllocationStatus.PLANNED.value,
                        ),
                    ]
                )
                cursor.executemany(
                    """
                    INSERT INTO Allocations (
                        resource_id,
                        project_id,
                        start_date,
                        end_date,
                        allocated_hours,
                        weekly_allocations,
                        status
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    allocation_rows,
                )

                vacation_start = weeks[self._settings.synthetic_weeks_before].monday
                cursor.execute(
                    """
                    INSERT INTO TimeOff (resource_id, start_date, end_date, hours)
                    VALUES (?, ?, ?, ?);
                    """,
                    (
                        resource_ids["Emma Novak"],
                        vacation_start.isoformat(),
                        (vacation_start + timedelta(days=4)).isoformat(),
                        40.0,
                    ),
                )
                cursor.executemany(
                    """
                    INSERT INTO NonProjectActivities (resource_id, activity_type, hours_per_week, active)
                    VALUES (?, ?, ?, ?);
                    """,
                    [
                        (resource_ids["Bruno Silva"], "Mentoring", 2.0, 1),
                        (resource_ids["Grace Okafor"], "Support Rotation", 4.0, 1),
                    ],
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed | resources=%s | allocations=%s | span=%s..%s",
                len(resources),
                len(allocation_rows),
                span_start.isoformat(),
                span_end.isoformat(),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def list_resources(self, department: Optional[str] = None) -> list[Resource]:
        """Return resources, optionally restricted to one department group."""
        query = """
            SELECT id, name, weekly_capacity, department, role, active
            FROM Resources
        """
        params: tuple[Any, ...] = ()
        if department is not None:
            query += f" WHERE {_GROUP_EXPRESSION} = ?"
            params = (department,)
        query += " ORDER BY id ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [
                Resource(
                    resource_id=int(row["id"]),
                    name=str(row["name"]),
                    weekly_capacity=_parse_capacity(row["weekly_capacity"], int(row["id"])),
                    department=row["department"],
                    role=row["role"],
                    active=bool(row["active"]),
                )
                for row in cursor.fetchall()
            ]

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        for resource in self.list_resources():
            if resource.resource_id == resource_id:
                return resource
        return None

    def list_departments(self) -> list[str]:
        """Department groups in use: department, else role, else General."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT DISTINCT {_GROUP_EXPRESSION} AS grp
                FROM Resources
                ORDER BY grp ASC;
                """
            )
            return [str(row["grp"]) for row in cursor.fetchall()]

    def list_projects(self) -> list[Project]:
        """Return projects; unreadable date bounds are logged and left open."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, name, priority, status, start_date, end_date
                FROM Projects
                ORDER BY id ASC;
                """
            )
            return [
                Project(
                    project_id=int(row["id"]),
                    name=str(row["name"]),
                    priority=_parse_priority(row["priority"], int(row["id"])),
                    status=str(row["status"]).strip().lower(),
                    start_date=_parse_project_date(row["start_date"], int(row["id"]), "start_date"),
                    end_date=_parse_project_date(row["end_date"], int(row["id"]), "end_date"),
                )
                for row in cursor.fetchall()
            ]

    def list_allocations(self, resource_ids: Optional[Iterable[int]] = None) -> list[Allocation]:
        """Return allocations with week keys normalized to canonical ISO weeks.

        Rows with unreadable dates are logged and skipped; week keys that cannot
        be normalized travel on ``unrecognized_week_keys``.
        """
        wanted = set(resource_ids) if resource_ids is not None else None
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    id,
                    resource_id,
                    project_id,
                    start_date,
                    end_date,
                    allocated_hours,
                    weekly_allocations,
                    status
                FROM Allocations
                ORDER BY id ASC;
                """
            )
            rows = cursor.fetchall()

        allocations: list[Allocation] = []
        for row in rows:
            if wanted is not None and int(row["resource_id"]) not in wanted:
                continue
            allocation = self._to_allocation(row)
            if allocation is not None:
                allocations.append(allocation)
        return allocations

    def _to_allocation(self, row: sqlite3.Row) -> Optional[Allocation]:
        allocation_id = int(row["id"])
        try:
            start_date = _parse_date(row["start_date"])
            end_date = _parse_date(row["end_date"])
        except ValueError:
            logger.warning(
                "Allocation skipped; unreadable dates | allocation_id=%s | start=%s | end=%s",
                allocation_id,
                row["start_date"],
                row["end_date"],
            )
            return None

        raw_weekly, invalid_payload = _load_weekly_json(row["weekly_allocations"], allocation_id)
        span_start, span_end = min(start_date, end_date), max(start_date, end_date)
        normalized = normalize_weekly_allocations(raw_weekly, span_start, span_end)
        return Allocation(
            allocation_id=allocation_id,
            resource_id=int(row["resource_id"]),
            project_id=int(row["project_id"]),
            start_date=start_date,
            end_date=end_date,
            allocated_hours=float(row["allocated_hours"] or 0.0),
            weekly_allocations=normalized.hours,
            status=_parse_status(row["status"], allocation_id),
            unrecognized_week_keys=invalid_payload + normalized.unrecognized,
        )

    def list_time_off(self, resource_ids: Optional[Iterable[int]] = None) -> list[TimeOff]:
        """Return time-off entries; rows with unreadable dates or hours are skipped."""
        wanted = set(resource_ids) if resource_ids is not None else None
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, resource_id, start_date, end_date, hours
                FROM TimeOff
                ORDER BY resource_id ASC, start_date ASC, id ASC;
                """
            )
            rows = cursor.fetchall()

        time_offs: list[TimeOff] = []
        for row in rows:
            if wanted is not None and int(row["resource_id"]) not in wanted:
                continue
            try:
                time_offs.append(
                    TimeOff(
                        resource_id=int(row["resource_id"]),
                        start_date=_parse_date(row["start_date"]),
                        end_date=_parse_date(row["end_date"]),
                        hours=float(row["hours"]),
                    )
                )
            except (TypeError, ValueError):
                logger.warning(
                    "Time off skipped; unreadable row | time_off_id=%s | start=%s | end=%s | hours=%s",
                    row["id"],
                    row["start_date"],
                    row["end_date"],
                    row["hours"],
                )
        return time_offs

    def list_non_project_activities(
        self,
        resource_ids: Optional[Iterable[int]] = None,
    ) -> list[NonProjectActivity]:
        wanted = set(resource_ids) if resource_ids is not None else None
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, resource_id, activity_type, hours_per_week, active
                FROM NonProjectActivities
                ORDER BY resource_id ASC, id ASC;
                """
            )
            rows = cursor.fetchall()

        activities: list[NonProjectActivity] = []
        for row in rows:
            if wanted is not None and int(row["resource_id"]) not in wanted:
                continue
            try:
                hours_per_week = float(row["hours_per_week"])
            except (TypeError, ValueError):
                logger.warning(
                    "Non-project activity skipped; unreadable hours | activity_id=%s | hours=%s",
                    row["id"],
                    row["hours_per_week"],
                )
                continue
            activities.append(
                NonProjectActivity(
                    resource_id=int(row["resource_id"]),
                    activity_type=str(row["activity_type"]),
                    hours_per_week=hours_per_week,
                    active=bool(row["active"]),
                )
            )
        return activities

    def load_snapshot(self, department: Optional[str] = None) -> Snapshot:
        """Read every record the engine needs for one call in a consistent shape."""
        resources = self.list_resources(department=department)
        resource_ids = [resource.resource_id for resource in resources]
        return Snapshot(
            resources=tuple(resources),
            allocations=tuple(self.list_allocations(resource_ids)),
            time_offs=tuple(self.list_time_off(resource_ids)),
            projects=tuple(self.list_projects()),
            non_project_activities=tuple(self.list_non_project_activities(resource_ids)),
        )

    def create_resource(
        self,
        name: str,
        weekly_capacity: Optional[float],
        department: Optional[str] = None,
        role: Optional[str] = None,
        active: bool = True,
    ) -> int:
        """Insert resource row and return the created id."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Resources (name, weekly_capacity, department, role, active)
                VALUES (?, ?, ?, ?, ?);
                """,
                (name, weekly_capacity, department, role, int(active)),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_project(
        self,
        name: str,
        priority: str = "medium",
        status: str = "active",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Projects (name, priority, status, start_date, end_date)
                VALUES (?, ?, ?, ?, ?);
                """,
                (name, priority, status, start_date, end_date),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_allocation(
        self,
        resource_id: int,
        project_id: int,
        start_date: str,
        end_date: str,
        allocated_hours: float = 0.0,
        weekly_allocations: Optional[Mapping[Any, float]] = None,
        status: str = AllocationStatus.ACTIVE.value,
    ) -> int:
        """Insert allocation row; the weekly map is stored as JSON with raw keys."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Allocations (
                    resource_id,
                    project_id,
                    start_date,
                    end_date,
                    allocated_hours,
                    weekly_allocations,
                    status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    resource_id,
                    project_id,
                    start_date,
                    end_date,
                    allocated_hours,
                    _dump_weekly(weekly_allocations),
                    status,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_time_off(
        self,
        resource_id: int,
        start_date: str,
        end_date: str,
        hours: float,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO TimeOff (resource_id, start_date, end_date, hours)
                VALUES (?, ?, ?, ?);
                """,
                (resource_id, start_date, end_date, hours),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_non_project_activity(
        self,
        resource_id: int,
        activity_type: str,
        hours_per_week: float,
        active: bool = True,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO NonProjectActivities (resource_id, activity_type, hours_per_week, active)
                VALUES (?, ?, ?, ?);
                """,
                (resource_id, activity_type, hours_per_week, int(active)),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def count_resources(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Resources;")
            return int(cursor.fetchone()["count"])

    def count_allocations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Allocations;")
            return int(cursor.fetchone()["count"])
