"""Input contract for the proxy endpoint.

Every check is a pure function of the request's method, declared content
type and raw body. The checks run in a fixed order and the first failure is
reported as a ``RequestRejected`` carrying the HTTP status and a reason that
names the violated constraint without echoing the offending input.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from dashchat.config import MAX_BODY_BYTES
from dashchat.models import ROLES, ChatMessage, ConversationRequest

ACCEPTED_METHOD = "POST"
ACCEPTED_MEDIA_TYPE = "application/json"

MAX_MESSAGES = 100
MAX_MODEL_LENGTH = 50
MAX_CONTENT_LENGTH = 10000

MODEL_NAME_RE = re.compile(r"[A-Za-z0-9.\-]+")


class RequestRejected(Exception):
    """Raised when an inbound request fails validation."""

    def __init__(self, status_code: int, reason: str) -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(reason)


class _WireMessage(BaseModel):
    role: str = ""
    content: str = ""


class _WireRequest(BaseModel):
    model: str = ""
    messages: List[_WireMessage] = []


def validate_method(method: str) -> None:
    if method != ACCEPTED_METHOD:
        raise RequestRejected(405, "Method not allowed")


def validate_content_type(content_type: Optional[str]) -> None:
    """Accept ``application/json``, with or without parameters."""
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type != ACCEPTED_MEDIA_TYPE:
        raise RequestRejected(400, "Invalid Content-Type")


def validate_body_size(size: int, limit: int = MAX_BODY_BYTES) -> None:
    if size > limit:
        raise RequestRejected(400, "Invalid request body")


def validate_model_name(model: str) -> None:
    if (
        not model
        or len(model) > MAX_MODEL_LENGTH
        or not MODEL_NAME_RE.fullmatch(model)
    ):
        raise RequestRejected(400, "Invalid model name")


def validate_message(role: str, content: str) -> None:
    if len(content) > MAX_CONTENT_LENGTH:
        raise RequestRejected(400, "Message content too long")
    if role not in ROLES:
        raise RequestRejected(400, "Invalid message role")


def decode_request(body: bytes) -> ConversationRequest:
    """Decode a raw JSON body and apply the field-level checks.

    Args:
        body: The raw request body.

    Returns:
        The normalized ConversationRequest.

    Raises:
        RequestRejected: On malformed JSON or a violated field constraint.
    """
    try:
        wire = _WireRequest.model_validate_json(body, strict=True)
    except ValidationError:
        raise RequestRejected(400, "Invalid request body") from None

    if len(wire.messages) > MAX_MESSAGES:
        raise RequestRejected(400, "Too many messages in conversation")

    validate_model_name(wire.model)

    for message in wire.messages:
        validate_message(message.role, message.content)

    return ConversationRequest(
        model=wire.model,
        messages=[ChatMessage(role=m.role, content=m.content) for m in wire.messages],
    )


def validate_request(
    method: str,
    content_type: Optional[str],
    body: bytes,
    max_body_bytes: int = MAX_BODY_BYTES,
) -> ConversationRequest:
    """Run every check, in order, over a fully buffered request."""
    validate_method(method)
    validate_content_type(content_type)
    validate_body_size(len(body), max_body_bytes)
    return decode_request(body)
