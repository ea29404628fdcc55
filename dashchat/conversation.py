"""Chat session state for an embedded dashboard panel.

A ``ChatSession`` owns the message history of one conversation. The first
turn is preceded by a system message carrying the dashboard context; later
turns resend the history unchanged. ``submit`` never raises for expected
failures: it returns either a ``ConversationUpdate`` or a
``DisplayableError`` and the caller renders whichever it gets.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from dashchat.client import GatewayClient, GatewayError
from dashchat.config import PanelOptions
from dashchat.enrichment import (
    DashboardClient,
    EnrichmentError,
    build_system_message,
    enrich,
)
from dashchat.models import ChatMessage, ConversationRequest, ReplyMalformed
from dashchat.sanitizer import MESSAGE_LIMIT, render_safe
from dashchat.telemetry import logger

FAILED_TO_PROCESS = "Failed to process your question. Please try again."
GATEWAY_FAILURE = (
    "Sorry, I encountered an error processing your request. Please ensure the "
    "upstream API key is configured on the server."
)
RATE_LIMITED = "Too many requests. Please wait a moment and try again."
REQUEST_CANCELLED = "Request was cancelled"
REQUEST_IN_FLIGHT = "Please wait for the current answer before asking again."
MESSAGE_TOO_LONG = (
    "Your message is too long. Please keep it under {} characters.".format(
        MESSAGE_LIMIT
    )
)


@dataclass(frozen=True)
class ConversationUpdate:
    """A completed turn: the assistant reply and the full new history."""

    reply: ChatMessage
    messages: Tuple[ChatMessage, ...]


@dataclass(frozen=True)
class DisplayableError:
    """A failed turn, described for the person using the panel."""

    text: str

    def as_message(self) -> ChatMessage:
        return ChatMessage(role="assistant", content=self.text)


SubmitResult = Union[ConversationUpdate, DisplayableError]


def prepare_outbound(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Cap every message at the gateway's content limit before sending."""
    return [
        ChatMessage(role=m.role, content=m.content[:MESSAGE_LIMIT]) for m in messages
    ]


class ChatSession:
    """One conversation between a dashboard panel and the model.

    Args:
        gateway: Client for the proxy gateway.
        dashboards: Source of dashboard metadata for the first turn.
        dashboard_id: Identifier of the dashboard hosting the panel.
        panel_id: Id of the chat panel itself.
        options: Model name and the prompt that opens every conversation.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        dashboards: DashboardClient,
        dashboard_id: str,
        panel_id: int,
        options: Optional[PanelOptions] = None,
    ) -> None:
        self.gateway = gateway
        self.dashboards = dashboards
        self.dashboard_id = dashboard_id
        self.panel_id = panel_id
        self.options = options or PanelOptions()
        self._messages: List[ChatMessage] = []
        self._pending: Optional["asyncio.Future[SubmitResult]"] = None
        self._abandoned: Optional["asyncio.Future[SubmitResult]"] = None

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def busy(self) -> bool:
        return self._pending is not None

    async def submit(
        self, text: str, series_data: Iterable[Mapping[str, Any]] = ()
    ) -> Optional[SubmitResult]:
        """Send one user message and wait for the answer.

        Args:
            text: What the user typed.
            series_data: Data series shown by the panel; only read on the
                first turn.

        Returns:
            None for blank input, otherwise the turn's result. A failed turn
            leaves the history as it was, so the user can simply retry.
        """
        text = text.strip()
        if not text:
            return None
        if len(text) > MESSAGE_LIMIT:
            return DisplayableError(MESSAGE_TOO_LONG)
        if self._pending is not None:
            return DisplayableError(REQUEST_IN_FLIGHT)

        pending = asyncio.ensure_future(self._run_turn(text, list(series_data)))
        self._pending = pending
        try:
            return await pending
        except asyncio.CancelledError:
            if pending is self._abandoned:
                return DisplayableError(REQUEST_CANCELLED)
            raise
        finally:
            if self._pending is pending:
                self._pending = None

    async def _run_turn(
        self, text: str, series_data: List[Mapping[str, Any]]
    ) -> SubmitResult:
        history = list(self._messages)

        if not history:
            try:
                summaries = await enrich(
                    self.dashboards, self.dashboard_id, self.panel_id, series_data
                )
            except EnrichmentError as exc:
                logger.warning("Dashboard enrichment failed: %s", exc.detail)
                return DisplayableError(FAILED_TO_PROCESS)
            history.append(
                build_system_message(summaries, self.options.initial_chat_message)
            )

        history.append(ChatMessage(role="user", content=text))
        request = ConversationRequest(
            model=self.options.model, messages=prepare_outbound(history)
        )

        try:
            parsed = await self.gateway.complete(request)
        except GatewayError as exc:
            logger.warning("Gateway call failed: %s", exc.detail)
            if exc.status_code == 429:
                return DisplayableError(RATE_LIMITED)
            return DisplayableError(GATEWAY_FAILURE)

        if isinstance(parsed, ReplyMalformed):
            logger.warning("Gateway reply rejected: %s", parsed.reason)
            return DisplayableError(GATEWAY_FAILURE)

        history.append(parsed.message)
        self._messages = history
        return ConversationUpdate(reply=parsed.message, messages=tuple(history))

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._abandoned = self._pending
            self._pending.cancel()
            self._pending = None

    def reset(self) -> None:
        """Start a new conversation, cancelling any answer still in flight."""
        self._cancel_pending()
        self._messages = []

    async def aclose(self) -> None:
        """Tear the session down."""
        self.reset()

    def display_messages(self) -> List[ChatMessage]:
        """History as shown to the user: no system turn, markup made safe."""
        return [
            ChatMessage(role=m.role, content=render_safe(m.content))
            for m in self._messages
            if m.role != "system"
        ]
