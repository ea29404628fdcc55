"""Shared test fixtures for the dashchat tests."""

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from dashchat import app as app_module
from dashchat.config import GatewayConfig, load_config
from dashchat.provider import UpstreamClient

UPSTREAM_REPLY = {
    "choices": [{"message": {"role": "assistant", "content": "hi"}}],
}


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal test config and return its path."""
    config = {
        "upstream": {
            "base_url": "https://llm.example.com/openai/v1",
            "api_key_env": "TEST_LLM_API_KEY",
            "timeout_seconds": 5,
        },
        "rate_limit": {
            "max_requests": 10,
            "window_seconds": 60,
        },
        "panel": {
            "initial_chat_message": "You are a dashboard assistant.",
        },
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(test_config_path: str) -> GatewayConfig:
    """Return a loaded test GatewayConfig."""
    return load_config(test_config_path)


class UpstreamStub:
    """Records upstream requests and answers them with a canned response."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.body: bytes = json.dumps(UPSTREAM_REPLY).encode()
        self.error: Optional[Exception] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.status_code,
            content=self.body,
            headers={"content-type": "application/json"},
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture()
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture()
def app_state(
    test_config_path: str,
    upstream: UpstreamStub,
    monkeypatch: pytest.MonkeyPatch,
) -> UpstreamStub:
    """Point the app at the test config and the stubbed upstream."""
    monkeypatch.setenv("TEST_LLM_API_KEY", "sk-test-12345")
    monkeypatch.setattr(app_module, "CONFIG_PATH", test_config_path)
    monkeypatch.setattr(app_module, "_config", None)
    monkeypatch.setattr(app_module, "_limiter", None)
    monkeypatch.setattr(app_module, "_gateway", None)
    monkeypatch.setattr(
        app_module,
        "_upstream",
        UpstreamClient(load_config(test_config_path).upstream, upstream.transport),
    )
    return upstream


@pytest.fixture()
def make_client() -> Callable[[], httpx.AsyncClient]:
    """Build an httpx client bound to the FastAPI app."""

    def _make() -> httpx.AsyncClient:
        transport = httpx.ASGITransport(app=app_module.app)
        return httpx.AsyncClient(transport=transport, base_url="http://test")

    return _make
