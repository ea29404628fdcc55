"""Tests for dashboard context enrichment."""

import json
from typing import Any, Dict, List

import httpx
import pytest

from dashchat.enrichment import (
    FIELDS_LIMIT,
    SERIES_LIMIT,
    VALUES_LIMIT,
    DashboardClient,
    EnrichmentError,
    InvalidIdentifier,
    build_system_message,
    enrich,
    panel_summaries,
    validate_dashboard_id,
)
from dashchat.models import PanelSummary

DASHBOARD = {
    "dashboard": {
        "uid": "ops-main",
        "panels": [
            {"id": 1, "title": "Chat", "type": "chatbot-panel"},
            {
                "id": 2,
                "title": "<b>CPU</b> usage",
                "description": "<script>alert(1)</script>Per host CPU",
                "type": "timeseries",
            },
            {"id": 3, "title": "Errors " + "x" * 200, "type": "stat"},
        ],
    }
}


class FakeDashboards:
    """In-memory host platform that records each fetch."""

    def __init__(self, document: Dict[str, Any]) -> None:
        self.document = document
        self.fetched: List[str] = []

    async def fetch_dashboard(self, dashboard_id: str) -> Dict[str, Any]:
        self.fetched.append(dashboard_id)
        return self.document


def _series(panel_id: Any, fields: Any = None) -> Dict[str, Any]:
    if fields is None:
        fields = [{"name": "time", "type": "time", "values": [1, 2, 3]}]
    return {"meta": {"custom": {"panelId": panel_id}}, "fields": fields}


@pytest.mark.parametrize("dashboard_id", ["ops-main", "abc_123", "A-b_C"])
def test_valid_dashboard_ids(dashboard_id: str) -> None:
    validate_dashboard_id(dashboard_id)


@pytest.mark.parametrize(
    "dashboard_id", ["", "invalid@id!", "../admin", "a b", "id?x=1", "ops/main"]
)
def test_invalid_dashboard_ids(dashboard_id: str) -> None:
    with pytest.raises(InvalidIdentifier, match="Invalid dashboard identifier"):
        validate_dashboard_id(dashboard_id)


@pytest.mark.asyncio
async def test_invalid_identifier_aborts_before_fetch() -> None:
    source = FakeDashboards(DASHBOARD)
    with pytest.raises(InvalidIdentifier):
        await enrich(source, "invalid@id!", 1, [_series(2)])  # type: ignore[arg-type]
    assert source.fetched == []


def test_panel_summaries_exclude_chat_panel() -> None:
    summaries = panel_summaries(DASHBOARD, current_panel_id=1)
    assert sorted(summaries) == [2, 3]
    assert len(summaries[3].title) == 100


def test_panel_summaries_tolerate_missing_panels() -> None:
    assert panel_summaries({}, 1) == {}
    assert panel_summaries({"dashboard": {"panels": "nope"}}, 1) == {}
    assert panel_summaries({"dashboard": {"panels": [None, {"id": "x"}]}}, 1) == {}


@pytest.mark.asyncio
async def test_enrich_correlates_and_sanitizes() -> None:
    source = FakeDashboards(DASHBOARD)
    result = await enrich(source, "ops-main", 1, [_series(2)])  # type: ignore[arg-type]

    assert source.fetched == ["ops-main"]
    assert len(result) == 1
    summary = result[0]
    assert summary.id == 2
    assert summary.title == "CPU usage"
    assert summary.description == "Per host CPU"
    assert summary.type == "timeseries"
    assert summary.fields[0].name == "time"
    assert summary.fields[0].values == [1, 2, 3]


@pytest.mark.asyncio
async def test_uncorrelated_series_get_unknown_placeholder() -> None:
    source = FakeDashboards(DASHBOARD)
    series = [_series(99), {"fields": [{"name": "v", "values": [1]}]}]
    result = await enrich(source, "ops-main", 1, series)  # type: ignore[arg-type]

    assert [s.title for s in result] == ["Unknown", "Unknown"]
    assert all(s.id == 0 and s.type == "unknown" for s in result)


@pytest.mark.asyncio
async def test_series_own_panel_is_not_a_correlation_target() -> None:
    source = FakeDashboards(DASHBOARD)
    result = await enrich(source, "ops-main", 1, [_series(1)])  # type: ignore[arg-type]
    assert result[0].title == "Unknown"


@pytest.mark.asyncio
async def test_bounds_are_applied() -> None:
    fields = [
        {"name": "f{}".format(i), "type": "number", "values": list(range(500))}
        for i in range(50)
    ]
    series = [_series(2, fields) for _ in range(25)]
    source = FakeDashboards(DASHBOARD)
    result = await enrich(source, "ops-main", 1, series)  # type: ignore[arg-type]

    assert len(result) == SERIES_LIMIT
    assert all(len(s.fields) == FIELDS_LIMIT for s in result)
    assert all(len(f.values) == VALUES_LIMIT for s in result for f in s.fields)


@pytest.mark.asyncio
async def test_series_without_fields_skipped() -> None:
    source = FakeDashboards(DASHBOARD)
    series = [{"meta": {}}, _series(2, fields="bad"), _series(3)]
    result = await enrich(source, "ops-main", 1, series)  # type: ignore[arg-type]
    assert [s.id for s in result] == [3]


@pytest.mark.asyncio
async def test_field_strings_stripped() -> None:
    fields = [
        {
            "name": "<img src=x onerror=alert(1)>host",
            "type": "string",
            "values": ["<script>x</script>web-1", 4],
        }
    ]
    source = FakeDashboards(DASHBOARD)
    result = await enrich(
        source, "ops-main", 1, [_series(2, fields)]  # type: ignore[arg-type]
    )
    assert result[0].fields[0].name == "host"
    assert result[0].fields[0].values == ["web-1", 4]


def test_build_system_message() -> None:
    summaries = [PanelSummary(id=2, title="CPU", type="timeseries")]
    message = build_system_message(summaries, "You are helpful.")

    assert message.role == "system"
    assert message.content.startswith(
        "You are helpful. This is the data on the dashboard: "
    )
    assert message.content.endswith(".")
    prefix = "You are helpful. This is the data on the dashboard: "
    payload = message.content[len(prefix) : -1]
    assert json.loads(payload)[0]["title"] == "CPU"


def test_build_system_message_without_prompt() -> None:
    message = build_system_message([])
    assert message.content == "This is the data on the dashboard: []."


class TestDashboardClient:
    @pytest.mark.asyncio
    async def test_fetches_by_uid(self) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=DASHBOARD)

        client = DashboardClient(
            "https://grafana.example.com/",
            headers={"Authorization": "Bearer host-token"},
            transport=httpx.MockTransport(handler),
        )
        data = await client.fetch_dashboard("ops-main")

        assert data == DASHBOARD
        assert str(seen[0].url) == (
            "https://grafana.example.com/api/dashboards/uid/ops-main"
        )
        assert seen[0].headers["authorization"] == "Bearer host-token"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(404, json={"message": "Dashboard not found"}),
            httpx.Response(200, content=b"<html>login</html>"),
            httpx.Response(200, json=["not", "an", "object"]),
        ],
    )
    async def test_failures_become_enrichment_errors(
        self, response: httpx.Response
    ) -> None:
        client = DashboardClient(
            "https://grafana.example.com",
            transport=httpx.MockTransport(lambda request: response),
        )
        with pytest.raises(EnrichmentError, match="Failed to extract dashboard data"):
            await client.fetch_dashboard("ops-main")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        client = DashboardClient(
            "https://grafana.example.com", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(EnrichmentError):
            await client.fetch_dashboard("ops-main")
