"""Proxy gateway: the request path between the chat panel and the provider.

Each inbound request is rate limited, validated, given the server-held
credential and forwarded upstream. Every failure is turned into a JSON error
envelope whose message names the violated constraint (client errors) or is
generic (server and upstream errors); details stay in the server log.
"""

import asyncio
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.requests import ClientDisconnect

from dashchat.config import GatewayConfig
from dashchat.limiter import RateLimitExceeded, RateLimiter
from dashchat.models import ConversationRequest, ErrorDetail, ErrorResponse
from dashchat.provider import UpstreamClient, UpstreamError, UpstreamReply
from dashchat.telemetry import log_request, logger
from dashchat.validator import (
    ACCEPTED_METHOD,
    RequestRejected,
    decode_request,
    validate_body_size,
    validate_content_type,
    validate_method,
)

# Status logged when the caller goes away before a response is produced.
CLIENT_CLOSED_REQUEST = 499


class ConfigurationError(Exception):
    """Raised when the gateway is missing required server-side configuration."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ClientDisconnected(Exception):
    """Raised when the inbound caller disconnects mid-request."""


def client_key_for(request: Request) -> str:
    """Derive the rate-limit identity of a request.

    The first address in ``X-Forwarded-For`` wins; otherwise the peer
    address of the connection is used.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _error_response(
    status: int,
    error_type: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(error=ErrorDetail(type=error_type, message=message))
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


async def _wait_for_disconnect(request: Any, interval: float = 0.1) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(interval)


class ProxyGateway:
    """Validates, rate limits and forwards chat-completion requests.

    Args:
        config: Gateway configuration.
        limiter: Shared limiter instance; one per process.
        upstream: Adapter used for the outbound call.
    """

    def __init__(
        self,
        config: GatewayConfig,
        limiter: RateLimiter,
        upstream: UpstreamClient,
    ) -> None:
        self.config = config
        self.limiter = limiter
        self.upstream = upstream

    async def handle(self, request: Request) -> Response:
        """Handle one proxied chat-completion request.

        Request flow:
        1. Derive the client key and enforce the rate limit
        2. Validate method, content type, body size and body contents
        3. Resolve the upstream credential
        4. Forward upstream and relay the body, or map the failure
        """
        request_id = "gw-{}".format(uuid.uuid4().hex[:12])
        client_key = client_key_for(request)

        # --- Rate limiting ---
        try:
            self.limiter.check(client_key)
        except RateLimitExceeded as exc:
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="rate_limited",
                status=429,
                error=exc.detail,
            )
            return _error_response(429, "rate_limit_exceeded", "Too many requests")

        # --- Validation ---
        try:
            conversation = await self._read_conversation(request)
        except RequestRejected as exc:
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="rejected",
                status=exc.status_code,
                error=exc.reason,
            )
            if exc.status_code == 405:
                return _error_response(
                    405,
                    "method_not_allowed",
                    exc.reason,
                    headers={"Allow": ACCEPTED_METHOD},
                )
            return _error_response(exc.status_code, "invalid_request", exc.reason)

        model = conversation.model
        message_count = len(conversation.messages)

        # --- Credential ---
        try:
            api_key = self._credential()
        except ConfigurationError as exc:
            logger.error("Upstream credential unavailable: %s", exc.detail)
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="configuration_error",
                status=500,
                model=model,
                message_count=message_count,
                error="missing_credential",
            )
            return _error_response(
                500, "configuration_error", "Service configuration error"
            )

        # --- Upstream call ---
        try:
            reply = await self._forward(request, conversation, api_key)
        except UpstreamError as exc:
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="upstream_error",
                status=502,
                model=model,
                message_count=message_count,
                error=exc.detail,
            )
            if exc.status_code is None:
                message = "Failed to call external API"
            else:
                message = "External API error occurred"
            return _error_response(502, "upstream_error", message)
        except ClientDisconnected:
            log_request(
                request_id=request_id,
                client_key=client_key,
                outcome="client_disconnected",
                status=CLIENT_CLOSED_REQUEST,
                model=model,
                message_count=message_count,
            )
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        log_request(
            request_id=request_id,
            client_key=client_key,
            outcome="success",
            status=200,
            model=model,
            message_count=message_count,
        )
        return Response(
            content=reply.body, status_code=200, media_type=reply.content_type
        )

    async def _read_conversation(self, request: Request) -> ConversationRequest:
        """Apply the validator checks, reading at most ``max_body_bytes``."""
        validate_method(request.method)
        validate_content_type(request.headers.get("content-type"))

        limit = self.config.max_body_bytes
        declared = request.headers.get("content-length", "")
        if declared.isascii() and declared.isdigit():
            validate_body_size(int(declared), limit)

        body = bytearray()
        try:
            async for chunk in request.stream():
                body.extend(chunk)
                validate_body_size(len(body), limit)
        except ClientDisconnect:
            raise RequestRejected(400, "Invalid request body") from None

        return decode_request(bytes(body))

    def _credential(self) -> str:
        api_key = self.config.upstream.api_key
        if not api_key:
            raise ConfigurationError(
                "environment variable {} is not set".format(
                    self.config.upstream.api_key_env
                )
            )
        return api_key

    async def _forward(
        self, request: Any, conversation: ConversationRequest, api_key: str
    ) -> UpstreamReply:
        """Run the upstream call, cancelling it if the caller disconnects."""
        call = asyncio.ensure_future(self.upstream.complete(conversation, api_key))
        watcher = asyncio.ensure_future(_wait_for_disconnect(request))
        try:
            done, _ = await asyncio.wait(
                {call, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            watcher.cancel()
            if not call.done():
                call.cancel()

        if call in done:
            return call.result()

        # Let the cancelled call unwind so no request is left in flight.
        await asyncio.wait({call})
        # A failed disconnect probe surfaces here instead of being dropped.
        watcher.result()
        raise ClientDisconnected()
