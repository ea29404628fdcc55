"""Adapter for the upstream OpenAI-compatible chat-completion API.

Issues exactly one POST per call, bounded by the configured timeout, and
never retries. Failures are reported as ``UpstreamError`` whose detail is
meant for the server log only.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from dashchat.config import UpstreamConfig
from dashchat.models import ConversationRequest


class UpstreamError(Exception):
    """Raised when the upstream call fails or returns a non-success status."""

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


@dataclass
class UpstreamReply:
    """Successful upstream response, relayed to the caller as-is."""

    body: bytes
    content_type: str


class UpstreamClient:
    """Calls the upstream provider on behalf of the gateway.

    Args:
        config: Upstream URL, credential variable and timeout.
        transport: Optional httpx transport, used to substitute the network
            in tests.
    """

    def __init__(
        self,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport

    async def complete(
        self, conversation: ConversationRequest, api_key: str
    ) -> UpstreamReply:
        """Forward a validated conversation upstream.

        Args:
            conversation: The validated request to serialize.
            api_key: The server-held credential.

        Returns:
            The upstream body and content type.

        Raises:
            UpstreamError: On transport failure, timeout or a non-2xx status.
        """
        headers = {
            "Authorization": "Bearer {}".format(api_key),
            "Content-Type": "application/json",
        }
        payload = conversation.model_dump(mode="json")

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(
                    self.config.completions_url, json=payload, headers=headers
                )
        except httpx.TimeoutException as exc:
            raise UpstreamError("Upstream call timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(
                "Upstream transport failure: {}".format(type(exc).__name__)
            ) from exc

        if not resp.is_success:
            raise UpstreamError(
                "Upstream returned HTTP {}".format(resp.status_code),
                status_code=resp.status_code,
            )

        return UpstreamReply(
            body=resp.content,
            content_type=resp.headers.get("content-type", "application/json"),
        )
