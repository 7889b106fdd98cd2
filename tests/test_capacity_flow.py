from __future__ import annotations

from dataclasses import replace
from datetime import date

from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.controllers.capacity_controller import router
from backend.repository.data_repository import DataRepository
from backend.services.capacity_service import CapacityAnalysisService
from backend.utils.config import get_settings


WEEK_29 = {"startDate": "2025-07-14", "endDate": "2025-07-20"}
WEEKS_29_TO_31 = {"startDate": "2025-07-14", "endDate": "2025-08-03"}


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename)


def _seed_team(repository: DataRepository) -> dict[str, int]:
    ids = {
        "alice": repository.create_resource("Alice", 40.0, "Engineering", "Backend Developer"),
        "bruno": repository.create_resource("Bruno", 40.0, "Engineering", "Backend Developer"),
        "chloe": repository.create_resource("Chloe", 40.0, "Design", "Product Designer"),
        "dev": repository.create_resource("Dev", 40.0, "QA", "Test Engineer"),
        "emma": repository.create_resource("Emma", 40.0, "Engineering", "Backend Developer"),
        "ines": repository.create_resource("Ines", 40.0, "Engineering", "Backend Developer", active=False),
    }
    billing = repository.create_project("Billing", priority="critical")
    tools = repository.create_project("Tools", priority="low")
    portal = repository.create_project("Portal", priority="medium")
    repository.create_project("Legacy", priority="low", status="closure")

    ids["alice_billing"] = repository.create_allocation(
        ids["alice"], billing, "2025-07-14", "2025-08-03",
        weekly_allocations={"W29": 40, "W30": 16, "W31": 40},
    )
    ids["bruno_tools"] = repository.create_allocation(
        ids["bruno"], tools, "2025-07-14", "2025-07-27",
        weekly_allocations={"2025-W29": 30, "2025-W30": 20},
    )
    ids["bruno_portal"] = repository.create_allocation(
        ids["bruno"], portal, "2025-07-14", "2025-07-20",
        weekly_allocations={"2025-W29": 20},
    )
    ids["chloe_portal"] = repository.create_allocation(
        ids["chloe"], portal, "2025-07-14", "2025-07-20", 12.0,
        weekly_allocations={"someday": 5},
    )
    ids["emma_billing"] = repository.create_allocation(
        ids["emma"], billing, "2025-07-14", "2025-07-20",
        weekly_allocations={"2025-07-14": 20},
    )
    repository.create_allocation(ids["ines"], billing, "2025-07-14", "2025-07-20", 80.0)
    return ids


def _build_test_app(tmp_path, filename: str = "capacity_flow.db") -> tuple[FastAPI, DataRepository, dict[str, int]]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    ids = _seed_team(repository)

    capacity_service = CapacityAnalysisService(
        repository=repository,
        settings=settings,
        clock=lambda: date(2025, 7, 16),
    )

    app = FastAPI()
    app.include_router(router)
    app.state.repository = repository
    app.state.capacity_service = capacity_service
    return app, repository, ids


def _category(payload: dict, category_type: str) -> dict:
    return next(c for c in payload["categories"] if c["type"] == category_type)


def test_alerts_for_single_week(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.get("/alerts", params=WEEK_29)

    assert response.status_code == 200
    payload = response.json()
    assert [c["type"] for c in payload["categories"]] == [
        "critical",
        "near_capacity",
        "underutilized",
        "unassigned",
    ]
    assert payload["summary"] == {
        "totalAlerts": 5,
        "criticalCount": 1,
        "warningCount": 1,
        "infoCount": 2,
        "unassignedCount": 1,
    }

    critical = _category(payload, "critical")
    assert critical["severity"] == "critical"
    assert critical["resources"][0]["resourceId"] == ids["bruno"]
    assert critical["resources"][0]["utilizationPct"] == 125

    near = _category(payload, "near_capacity")
    assert near["resources"][0]["name"] == "Alice"
    assert near["resources"][0]["utilizationPct"] == 100

    under = _category(payload, "underutilized")
    assert [r["name"] for r in under["resources"]] == ["Chloe", "Emma"]

    metadata = payload["metadata"]
    assert metadata["periodStart"] == "2025-07-14"
    assert metadata["periodEnd"] == "2025-07-20"
    assert metadata["department"] == "all"
    assert metadata["evaluatedCount"] == 5
    assert metadata["flaggedWeekKeys"] == [
        {"allocationId": ids["chloe_portal"], "resourceId": ids["chloe"], "rawKey": "someday"}
    ]


def test_three_week_period_reports_healthy_resource(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    payload = client.get("/alerts", params=WEEKS_29_TO_31).json()

    # Alice: (40 + 16 + 40) / 120 = 80 %
    assert payload["metadata"]["healthyCount"] >= 1
    assert ids["alice"] in payload["metadata"]["healthyResourceIds"]
    assert all(
        resource["resourceId"] != ids["alice"]
        for category in payload["categories"]
        for resource in category["resources"]
    )


def test_default_period_is_current_month_and_bad_input_degrades(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    for params in ({}, {"startDate": "garbage"}, {"startDate": "2025-07-31", "endDate": "2025-07-01"}):
        metadata = client.get("/alerts", params=params).json()["metadata"]
        assert metadata["periodStart"] == "2025-07-01"
        assert metadata["periodEnd"] == "2025-07-31"


def test_period_ending_at_last_representable_date(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    for path in ("/alerts", "/kpis", "/utilization"):
        response = client.get(path, params={"startDate": "9999-12-01", "endDate": "9999-12-31"})
        assert response.status_code == 200

    metadata = client.get(
        "/alerts", params={"startDate": "9999-12-01", "endDate": "9999-12-31"}
    ).json()["metadata"]
    assert metadata["periodEnd"] == "9999-12-31"


def test_department_and_severity_filters(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    design = client.get("/alerts", params={**WEEK_29, "department": "design"}).json()
    assert design["metadata"]["department"] == "Design"
    assert design["summary"]["totalAlerts"] == 1
    assert _category(design, "underutilized")["resources"][0]["resourceId"] == ids["chloe"]

    unknown = client.get("/alerts", params={**WEEK_29, "department": "Marketing"}).json()
    assert unknown["metadata"]["department"] == "all"
    assert unknown["summary"]["totalAlerts"] == 5

    critical_only = client.get("/alerts", params={**WEEK_29, "severity": "critical"}).json()
    assert [c["type"] for c in critical_only["categories"]] == ["critical"]
    assert critical_only["summary"]["totalAlerts"] == 5


def test_kpis(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.get("/kpis", params=WEEK_29)

    assert response.status_code == 200
    # (40 + 50 + 12 + 0 + 20) / 200
    assert response.json() == {
        "activeProjects": 3,
        "totalProjects": 4,
        "availableResources": 3,
        "totalResources": 5,
        "conflicts": 1,
        "utilization": 61,
        "previous": {
            "activeProjects": 3,
            "availableResources": 5,
            "conflicts": 0,
            "utilization": 0,
        },
        "previousPeriodStart": "2025-07-07",
        "previousPeriodEnd": "2025-07-13",
    }


def test_active_projects_respect_project_dates(tmp_path):
    app, repository, _ = _build_test_app(tmp_path)
    repository.create_project("Archive", start_date="2024-01-01", end_date="2024-06-30")
    repository.create_project("Migration", start_date="2025-07-18", end_date="2025-09-30")
    client = TestClient(app)

    payload = client.get("/kpis", params=WEEK_29).json()

    assert payload["activeProjects"] == 4
    assert payload["totalProjects"] == 6
    assert payload["previous"]["activeProjects"] == 3


def test_kpis_follow_department_filter(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    payload = client.get("/kpis", params={**WEEK_29, "department": "Design"}).json()

    assert payload["totalResources"] == 1
    assert payload["availableResources"] == 1
    assert payload["conflicts"] == 0
    # Chloe: 12 / 40
    assert payload["utilization"] == 30


def test_utilization_includes_weekly_breakdown(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    payload = client.get("/utilization", params=WEEKS_29_TO_31).json()

    alice = next(r for r in payload["resources"] if r["resourceId"] == ids["alice"])
    assert [week["hours"] for week in alice["weekly"]] == [40.0, 16.0, 40.0]
    assert alice["peakWeek"] == "2025-W29"
    assert alice["utilizationPct"] == 80
    assert alice["category"] == "healthy"


def test_resolutions_for_overallocated_resource(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.get(f"/resources/{ids['bruno']}/resolutions", params=WEEK_29)

    assert response.status_code == 200
    payload = response.json()
    assert payload["deficitHours"] == 10.0
    suggestions = payload["suggestions"]
    assert [s["kind"] for s in suggestions] == ["reduce", "reassign"]
    assert suggestions[0]["allocationId"] == ids["bruno_tools"]
    assert suggestions[0]["deltaHours"] == 10.0
    assert suggestions[0]["coveragePct"] == 100
    assert suggestions[1]["targetResourceId"] == ids["emma"]


def test_resolutions_unknown_resource_returns_404(tmp_path):
    app, _, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.get("/resources/999/resolutions", params=WEEK_29)

    assert response.status_code == 404


def test_resolutions_for_resource_within_capacity_are_empty(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    payload = client.get(f"/resources/{ids['emma']}/resolutions", params=WEEK_29).json()

    assert payload["suggestions"] == []


def test_simulate_does_not_persist(tmp_path):
    app, repository, ids = _build_test_app(tmp_path)
    client = TestClient(app)
    allocations_before = repository.count_allocations()
    alerts_before = client.get("/alerts", params=WEEK_29).json()

    response = client.post(
        "/simulate",
        json={
            **WEEK_29,
            "deltas": [
                {"allocationId": ids["bruno_tools"], "hoursChange": -10, "reassignTo": ids["emma"]},
                {"allocationId": 999, "hoursChange": -1},
            ],
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["appliedCount"] == 1
    assert [r["index"] for r in payload["rejected"]] == [1]
    changes = {change["resourceId"]: change for change in payload["changes"]}
    assert changes[ids["bruno"]]["beforePct"] == 125
    assert changes[ids["bruno"]]["afterPct"] == 100
    assert changes[ids["bruno"]]["afterCategory"] == "near_capacity"
    assert changes[ids["emma"]]["afterPct"] == 75
    assert changes[ids["emma"]]["afterCategory"] == "healthy"

    assert repository.count_allocations() == allocations_before
    alerts_after = client.get("/alerts", params=WEEK_29).json()
    assert alerts_after["summary"] == alerts_before["summary"]


def test_simulate_rejects_malformed_week(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.post(
        "/simulate",
        json={"deltas": [{"allocationId": ids["alice_billing"], "hoursChange": -4, "week": "next"}]},
    )

    assert response.status_code == 422


def test_simulate_rejects_non_finite_hours(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    for literal in ("NaN", "Infinity", "-Infinity"):
        response = client.post(
            "/simulate",
            content=f'{{"deltas": [{{"allocationId": {ids["bruno_tools"]}, "hoursChange": {literal}}}]}}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422


def test_malformed_records_do_not_fail_the_snapshot(tmp_path):
    app, repository, ids = _build_test_app(tmp_path)
    repository.create_resource("Bob", "forty", "QA", "Test Engineer")
    repository.create_time_off(ids["alice"], "not-a-date", "2025-07-20", 8.0)
    client = TestClient(app)

    alerts = client.get("/alerts", params=WEEK_29)
    kpis = client.get("/kpis", params=WEEK_29)

    assert alerts.status_code == 200
    assert kpis.status_code == 200
    payload = alerts.json()
    # Bob falls back to the standard capacity and has no allocations.
    assert payload["summary"]["unassignedCount"] == 2
    assert payload["metadata"]["evaluatedCount"] == 6
    near = _category(payload, "near_capacity")
    assert near["resources"][0]["name"] == "Alice"
    assert near["resources"][0]["utilizationPct"] == 100


def test_simulate_week_delta(tmp_path):
    app, _, ids = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.post(
        "/simulate",
        json={
            **WEEKS_29_TO_31,
            "deltas": [{"allocationId": ids["alice_billing"], "hoursChange": 24, "week": "2025-W30"}],
        },
    )

    assert response.status_code == 200
    [change] = response.json()["changes"]
    # (96 + 24) / 120
    assert change["beforePct"] == 80
    assert change["afterPct"] == 100


def test_application_factory_initializes_and_seeds(tmp_path):
    from app import create_app

    settings = _build_test_settings(tmp_path, "factory.db")
    application = create_app(settings=settings)

    with TestClient(application) as client:
        response = client.get("/kpis")
        assert response.status_code == 200
        assert response.json()["activeProjects"] == 4

    assert application.state.repository.count_resources() == 9
