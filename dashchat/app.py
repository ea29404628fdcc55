"""FastAPI application for the dashchat gateway.

Provides a single /v1/chat resource. Every HTTP verb is routed to the
handler so that the gateway, not the framework, decides how a wrong method
is answered and accounted for.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response

from dashchat.config import GatewayConfig, load_config
from dashchat.gateway import ProxyGateway
from dashchat.limiter import RateLimiter
from dashchat.provider import UpstreamClient
from dashchat.telemetry import setup_logging

CONFIG_PATH = os.getenv("DASHCHAT_CONFIG", "config/dashchat.json")

CHAT_PATH = "/v1/chat"
ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_config: Optional[GatewayConfig] = None
_limiter: Optional[RateLimiter] = None
_upstream: Optional[UpstreamClient] = None
_gateway: Optional[ProxyGateway] = None


def get_config() -> GatewayConfig:
    """Return the loaded gateway configuration (lazy-init)."""
    global _config
    if _config is None:
        _config = load_config(CONFIG_PATH)
    return _config


def get_limiter() -> RateLimiter:
    """Return the process-wide rate limiter (lazy-init from config)."""
    global _limiter
    if _limiter is None:
        cfg = get_config()
        _limiter = RateLimiter(
            max_requests=cfg.rate_limit.max_requests,
            window_seconds=cfg.rate_limit.window_seconds,
        )
    return _limiter


def get_upstream() -> UpstreamClient:
    """Return the upstream adapter (lazy-init from config)."""
    global _upstream
    if _upstream is None:
        _upstream = UpstreamClient(get_config().upstream)
    return _upstream


def get_gateway() -> ProxyGateway:
    """Return the proxy gateway wired to the shared limiter and adapter."""
    global _gateway
    if _gateway is None:
        _gateway = ProxyGateway(get_config(), get_limiter(), get_upstream())
    return _gateway


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Initialize config, logging and the gateway on startup."""
    cfg = get_config()
    setup_logging(cfg.log_file)
    get_gateway()
    yield


app = FastAPI(title="Dashchat Gateway", version="0.1.0", lifespan=lifespan)


@app.api_route(CHAT_PATH, methods=ROUTED_METHODS, response_model=None)
async def chat(request: Request) -> Response:
    """Proxy a chat-completion request to the upstream provider."""
    return await get_gateway().handle(request)
