"""Request, response and context models for the dashchat gateway."""

import json
from dataclasses import dataclass
from typing import Any, List, Literal, Union

from pydantic import BaseModel, Field, ValidationError

ROLES = ("user", "assistant", "system")

Role = Literal["user", "assistant", "system"]


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    role: Role
    content: str


class ConversationRequest(BaseModel):
    """A validated chat-completion request, as forwarded upstream."""

    model: str
    messages: List[ChatMessage] = Field(default_factory=list)


class FieldSummary(BaseModel):
    """One field of a data series, with a bounded list of values."""

    name: str = ""
    type: str = ""
    values: List[Any] = Field(default_factory=list)


class PanelSummary(BaseModel):
    """Read-only snapshot of a dashboard panel and the data it shows."""

    id: int = 0
    title: str = ""
    description: str = ""
    type: str = ""
    fields: List[FieldSummary] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Structured error detail."""

    type: str
    message: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail


# --- Upstream reply parsing ---


class _ReplyChoice(BaseModel):
    message: ChatMessage


class _ReplyBody(BaseModel):
    choices: List[_ReplyChoice] = Field(..., min_length=1)


@dataclass(frozen=True)
class ReplyOk:
    """The upstream body carried a usable assistant message."""

    message: ChatMessage


@dataclass(frozen=True)
class ReplyMalformed:
    """The upstream body did not have the expected shape."""

    reason: str


ParsedReply = Union[ReplyOk, ReplyMalformed]


def parse_reply(body: Union[str, bytes]) -> ParsedReply:
    """Parse a chat-completion body into ``ReplyOk`` or ``ReplyMalformed``.

    Only ``choices[0].message`` is inspected; everything else in the body is
    ignored.
    """
    try:
        raw = json.loads(body)
    except (TypeError, ValueError):
        return ReplyMalformed("Response is not valid JSON")

    try:
        parsed = _ReplyBody.model_validate(raw)
    except ValidationError:
        return ReplyMalformed("Invalid API response format")

    return ReplyOk(parsed.choices[0].message)
