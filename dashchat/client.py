"""HTTP client for the gateway's /v1/chat endpoint."""

from typing import Dict, Optional

import httpx

from dashchat.models import ConversationRequest, ParsedReply, parse_reply


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or answers with an error."""

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class GatewayClient:
    """Posts conversations to a dashchat gateway.

    Args:
        base_url: Root URL the gateway is mounted at.
        headers: Extra headers sent with each call.
        timeout: Seconds to wait; slightly above the gateway's own upstream
            timeout so the gateway's answer arrives first.
        transport: Optional httpx transport (an ASGI app in tests).
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 35.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self._transport = transport

    async def complete(self, request: ConversationRequest) -> ParsedReply:
        """Send one conversation and parse the reply.

        Raises:
            GatewayError: On transport failure or any non-200 status.
        """
        url = "{}/v1/chat".format(self.base_url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self.headers, transport=self._transport
            ) as client:
                resp = await client.post(url, json=request.model_dump(mode="json"))
        except httpx.HTTPError as exc:
            raise GatewayError(
                "Gateway unreachable: {}".format(type(exc).__name__)
            ) from exc

        if resp.status_code != 200:
            raise GatewayError(
                "Gateway returned HTTP {}".format(resp.status_code),
                status_code=resp.status_code,
            )

        return parse_reply(resp.content)
