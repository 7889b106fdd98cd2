"""Streamlit operator dashboard for the Capacity Analysis & Alert Engine."""

from __future__ import annotations

import datetime
import os
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

# ==========================================
# Configuration & Constants
# ==========================================
API_BASE_URL = os.getenv("CAPACITY_API_URL", "http://127.0.0.1:8000")

CATEGORY_ICONS = {
    "critical": "🔴",
    "near_capacity": "🟠",
    "underutilized": "🔵",
    "unassigned": "⚪",
}

st.set_page_config(
    page_title="Capacity Alerts",
    page_icon="📊",
    layout="wide",
)


# ==========================================
# API Helper Functions
# ==========================================
def _period_params(start: datetime.date, end: datetime.date) -> Dict[str, str]:
    return {"startDate": start.isoformat(), "endDate": end.isoformat()}


def fetch_alerts(
    start: datetime.date,
    end: datetime.date,
    department: str,
    severity: str,
) -> Optional[Dict[str, Any]]:
    try:
        response = requests.get(
            f"{API_BASE_URL}/alerts",
            params={**_period_params(start, end), "department": department, "severity": severity},
            timeout=10,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def fetch_kpis(start: datetime.date, end: datetime.date, department: str) -> Optional[Dict[str, Any]]:
    try:
        response = requests.get(
            f"{API_BASE_URL}/kpis",
            params={**_period_params(start, end), "department": department},
            timeout=10,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"KPI request failed: {e}")
        return None


def fetch_utilization(
    start: datetime.date,
    end: datetime.date,
    department: str,
) -> Optional[Dict[str, Any]]:
    try:
        response = requests.get(
            f"{API_BASE_URL}/utilization",
            params={**_period_params(start, end), "department": department},
            timeout=10,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Utilization request failed: {e}")
        return None


def fetch_resolutions(resource_id: int, start: datetime.date, end: datetime.date) -> Optional[Dict[str, Any]]:
    try:
        response = requests.get(
            f"{API_BASE_URL}/resources/{resource_id}/resolutions",
            params=_period_params(start, end),
            timeout=10,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Resolution request failed: {e}")
        return None


def run_simulation(
    deltas: List[Dict[str, Any]],
    start: datetime.date,
    end: datetime.date,
) -> Optional[Dict[str, Any]]:
    try:
        response = requests.post(
            f"{API_BASE_URL}/simulate",
            json={"deltas": deltas, **_period_params(start, end)},
            timeout=10,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Simulation failed: {e}")
        return None


# ==========================================
# UI Page Functions
# ==========================================
def render_alerts_page(start: datetime.date, end: datetime.date, department: str) -> None:
    st.header("Capacity Alerts")

    kpis = fetch_kpis(start, end, department)
    if kpis:
        previous = kpis.get("previous") or {}

        def _delta(key: str) -> Optional[int]:
            if key not in previous:
                return None
            return kpis.get(key, 0) - previous[key]

        col1, col2, col3, col4 = st.columns(4)
        col1.metric(
            f"Active Projects (of {kpis.get('totalProjects', 0)})",
            kpis.get("activeProjects", 0),
            _delta("activeProjects"),
        )
        col2.metric(
            f"Available Resources (of {kpis.get('totalResources', 0)})",
            kpis.get("availableResources", 0),
            _delta("availableResources"),
        )
        col3.metric("Conflicts", kpis.get("conflicts", 0), _delta("conflicts"), delta_color="inverse")
        col4.metric("Utilization", f"{kpis.get('utilization', 0)}%", _delta("utilization"))

    severity = st.selectbox("Severity", ["all", "critical", "warning", "info"])
    result = fetch_alerts(start, end, department, severity)
    if not result:
        return

    summary = result.get("summary", {})
    st.caption(
        f"{summary.get('totalAlerts', 0)} alerts | "
        f"{result.get('metadata', {}).get('healthyCount', 0)} healthy"
    )
    for category in result.get("categories", []):
        icon = CATEGORY_ICONS.get(category["type"], "")
        with st.expander(f"{icon} {category['title']} ({category['count']})", expanded=category["count"] > 0):
            st.caption(category["condition"])
            if category["resources"]:
                df = pd.DataFrame(category["resources"])
                st.dataframe(
                    df[["resourceId", "name", "department", "utilizationPct", "allocatedHours", "effectiveCapacity"]],
                    use_container_width=True,
                )

    flagged = result.get("metadata", {}).get("flaggedWeekKeys", [])
    if flagged:
        st.warning(f"{len(flagged)} week keys could not be interpreted")
        st.dataframe(pd.DataFrame(flagged), use_container_width=True)


def render_utilization_page(start: datetime.date, end: datetime.date, department: str) -> None:
    st.header("Weekly Utilization")
    result = fetch_utilization(start, end, department)
    if not result:
        return

    rows = []
    for resource in result.get("resources", []):
        for load in resource.get("weekly", []):
            rows.append({"resource": resource["name"], "week": load["week"], "hours": load["hours"]})
    if not rows:
        st.info("No allocations in the selected period.")
        return

    pivot = pd.DataFrame(rows).pivot_table(index="resource", columns="week", values="hours", aggfunc="sum")
    st.dataframe(pivot.round(1), use_container_width=True)

    overview = pd.DataFrame(result["resources"])[["name", "utilizationPct", "category", "peakWeek"]]
    st.bar_chart(overview.set_index("name")["utilizationPct"])
    st.dataframe(overview, use_container_width=True)


def render_simulation_page(start: datetime.date, end: datetime.date) -> None:
    st.header("What-If Sandbox")
    st.markdown("Try allocation changes without modifying the live database.")

    resource_id = st.number_input("Overallocated resource id", min_value=1, value=1)
    if st.button("Suggest resolutions"):
        resolution = fetch_resolutions(int(resource_id), start, end)
        if resolution:
            st.session_state["suggestions"] = resolution.get("suggestions", [])
            st.metric("Deficit (h)", round(resolution.get("deficitHours", 0.0), 1))

    suggestions = st.session_state.get("suggestions", [])
    if suggestions:
        st.dataframe(pd.DataFrame(suggestions), use_container_width=True)

    st.write("### Manual change")
    col1, col2, col3 = st.columns(3)
    with col1:
        allocation_id = st.number_input("Allocation id", min_value=1, value=1)
    with col2:
        hours_change = st.number_input("Hours change", value=-8.0, step=1.0)
    with col3:
        reassign_to = st.number_input("Reassign to (0 = none)", min_value=0, value=0)

    if st.button("Run Simulation", type="primary"):
        delta: Dict[str, Any] = {"allocationId": int(allocation_id), "hoursChange": float(hours_change)}
        if reassign_to:
            delta["reassignTo"] = int(reassign_to)
        result = run_simulation([delta], start, end)
        if result:
            if result.get("rejected"):
                st.error("; ".join(item["reason"] for item in result["rejected"]))
            changes = result.get("changes", [])
            if changes:
                st.dataframe(pd.DataFrame(changes), use_container_width=True)


# ==========================================
# Main App Router
# ==========================================
def main() -> None:
    st.sidebar.title("Capacity Engine")
    st.sidebar.markdown("---")

    today = datetime.date.today()
    start = st.sidebar.date_input("Period start", today.replace(day=1))
    end = st.sidebar.date_input("Period end", today)
    department = st.sidebar.text_input("Department", "all")

    page = st.sidebar.radio(
        "Navigation Module",
        ["Alerts", "Utilization", "What-If Simulation"],
    )

    if page == "Alerts":
        render_alerts_page(start, end, department)
    elif page == "Utilization":
        render_utilization_page(start, end, department)
    elif page == "What-If Simulation":
        render_simulation_page(start, end)


if __name__ == "__main__":
    main()
