"""Dashboard context enrichment for the first turn of a conversation.

Fetches the hosting dashboard's metadata, strips markup from every string in
it, correlates the panel's data series with the panels that produced them,
and bounds everything so the resulting system message stays small.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from dashchat.models import ChatMessage, FieldSummary, PanelSummary
from dashchat.sanitizer import strip_markup, strip_tree

DASHBOARD_ID_RE = re.compile(r"[A-Za-z0-9_-]+")

TITLE_LENGTH = 100
DESCRIPTION_LENGTH = 500
TYPE_LENGTH = 50
SERIES_LIMIT = 10
FIELDS_LIMIT = 20
VALUES_LIMIT = 100

UNKNOWN_PANEL = PanelSummary(id=0, title="Unknown", description="", type="unknown")


class EnrichmentError(Exception):
    """Raised when dashboard context cannot be gathered."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class InvalidIdentifier(EnrichmentError):
    """Raised when a dashboard identifier fails the identifier check."""


class DashboardClient:
    """Reads dashboard metadata from the host platform's HTTP API.

    Args:
        base_url: Root URL of the host platform.
        headers: Extra headers (e.g. the host session) sent with each fetch.
        timeout: Timeout in seconds for a single fetch.
        transport: Optional httpx transport, used in tests.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self._transport = transport

    async def fetch_dashboard(self, dashboard_id: str) -> Dict[str, Any]:
        """Fetch the metadata document of one dashboard.

        Raises:
            EnrichmentError: If the fetch fails or the body is not an object.
        """
        url = "{}/api/dashboards/uid/{}".format(self.base_url, dashboard_id)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self.headers, transport=self._transport
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EnrichmentError("Failed to extract dashboard data") from exc

        if not isinstance(data, dict):
            raise EnrichmentError("Failed to extract dashboard data")
        return data


def validate_dashboard_id(dashboard_id: str) -> None:
    if not dashboard_id or not DASHBOARD_ID_RE.fullmatch(dashboard_id):
        raise InvalidIdentifier("Invalid dashboard identifier")


def _text(value: Any, limit: int) -> str:
    return value[:limit] if isinstance(value, str) else ""


def _panel_id(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def panel_summaries(
    dashboard: Mapping[str, Any], current_panel_id: int
) -> Dict[int, PanelSummary]:
    """Map panel id to summary for every panel except the chat's own."""
    inner = dashboard.get("dashboard")
    panels = inner.get("panels") if isinstance(inner, dict) else None
    if not isinstance(panels, list):
        return {}

    summaries: Dict[int, PanelSummary] = {}
    for panel in panels:
        if not isinstance(panel, dict):
            continue
        panel_id = _panel_id(panel.get("id"))
        if panel_id is None or panel_id == current_panel_id:
            continue
        summaries[panel_id] = PanelSummary(
            id=panel_id,
            title=_text(panel.get("title"), TITLE_LENGTH),
            description=_text(panel.get("description"), DESCRIPTION_LENGTH),
            type=_text(panel.get("type"), TYPE_LENGTH),
        )
    return summaries


def _owning_panel_id(series: Mapping[str, Any]) -> Optional[int]:
    meta = series.get("meta")
    custom = meta.get("custom") if isinstance(meta, dict) else None
    if not isinstance(custom, dict):
        return None
    return _panel_id(custom.get("panelId"))


def summarize_series(
    series: Mapping[str, Any], panels: Mapping[int, PanelSummary]
) -> Optional[PanelSummary]:
    """Attach a bounded view of one series to the panel that owns it.

    Returns None for series without a field list.
    """
    fields = series.get("fields")
    if not isinstance(fields, list):
        return None

    owner = panels.get(_owning_panel_id(series), UNKNOWN_PANEL)

    bounded: List[FieldSummary] = []
    for field in fields[:FIELDS_LIMIT]:
        if not isinstance(field, dict):
            continue
        values = field.get("values")
        bounded.append(
            FieldSummary(
                name=strip_markup(_text(field.get("name"), TITLE_LENGTH)),
                type=strip_markup(_text(field.get("type"), TYPE_LENGTH)),
                values=strip_tree(values[:VALUES_LIMIT])
                if isinstance(values, list)
                else [],
            )
        )

    return owner.model_copy(update={"fields": bounded})


async def enrich(
    source: DashboardClient,
    dashboard_id: str,
    current_panel_id: int,
    series_data: Iterable[Mapping[str, Any]],
) -> List[PanelSummary]:
    """Build the bounded, sanitized context for a conversation.

    Args:
        source: Where dashboard metadata is fetched from.
        dashboard_id: Identifier of the hosting dashboard.
        current_panel_id: Id of the chat panel itself, excluded from context.
        series_data: Data series currently rendered by the panel.

    Returns:
        One summary per usable series, at most ``SERIES_LIMIT``.

    Raises:
        InvalidIdentifier: If ``dashboard_id`` is malformed; nothing is fetched.
        EnrichmentError: If the metadata cannot be fetched.
    """
    validate_dashboard_id(dashboard_id)

    dashboard = strip_tree(await source.fetch_dashboard(dashboard_id))
    panels = panel_summaries(dashboard, current_panel_id)

    summaries: List[PanelSummary] = []
    for series in list(series_data)[:SERIES_LIMIT]:
        if not isinstance(series, Mapping):
            continue
        summary = summarize_series(series, panels)
        if summary is not None:
            summaries.append(summary)
    return summaries


def build_system_message(
    summaries: Iterable[PanelSummary], initial_prompt: str = ""
) -> ChatMessage:
    """Serialize panel summaries into the leading system message."""
    context = json.dumps(
        [summary.model_dump() for summary in summaries], indent=2, default=str
    )
    parts = [
        initial_prompt.strip(),
        "This is the data on the dashboard: {}.".format(context),
    ]
    return ChatMessage(role="system", content=" ".join(p for p in parts if p))
