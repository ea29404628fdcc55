"""Configuration loader for the dashchat gateway.

Reads an optional JSON config file with the upstream provider definition,
rate-limit parameters and panel options. The upstream credential is never
stored in the file; only the name of the environment variable holding it.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

DEFAULT_MODEL = "llama-3.3-70b-versatile"
MAX_BODY_BYTES = 1 << 20


@dataclass
class UpstreamConfig:
    """Configuration for the upstream chat-completion provider."""

    base_url: str = "https://api.groq.com/openai/v1"
    api_key_env: str = "GROQ_API_KEY"
    timeout_seconds: float = 30.0

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the credential from the environment at call time."""
        return os.getenv(self.api_key_env) or None

    @property
    def completions_url(self) -> str:
        return "{}/chat/completions".format(self.base_url.rstrip("/"))


@dataclass
class RateLimitConfig:
    """Sliding-window parameters (per client key)."""

    max_requests: int = 10
    window_seconds: float = 60.0


@dataclass
class PanelOptions:
    """Options the chat panel applies to every conversation."""

    initial_chat_message: str = ""
    model: str = DEFAULT_MODEL


@dataclass
class GatewayConfig:
    """Top-level configuration."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    panel: PanelOptions = field(default_factory=PanelOptions)
    max_body_bytes: int = MAX_BODY_BYTES
    log_file: Optional[str] = None


def load_config(path: Union[str, Path, None] = None) -> GatewayConfig:
    """Load gateway configuration from a JSON file.

    A ``None`` path, or a path that does not exist, yields the defaults.

    Args:
        path: Path to the JSON config file.

    Returns:
        A fully resolved GatewayConfig instance.

    Raises:
        ValueError: If the config file contains invalid data.
    """
    if path is None:
        return GatewayConfig()

    path = Path(path)
    if not path.exists():
        return GatewayConfig()

    with open(path) as f:
        try:
            raw: Dict[str, Any] = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid config file {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    defaults = GatewayConfig()

    upstream_raw = raw.get("upstream", {})
    upstream = UpstreamConfig(
        base_url=upstream_raw.get("base_url", defaults.upstream.base_url),
        api_key_env=upstream_raw.get("api_key_env", defaults.upstream.api_key_env),
        timeout_seconds=float(
            upstream_raw.get("timeout_seconds", defaults.upstream.timeout_seconds)
        ),
    )

    rate_limit_raw = raw.get("rate_limit", {})
    rate_limit = RateLimitConfig(
        max_requests=int(
            rate_limit_raw.get("max_requests", defaults.rate_limit.max_requests)
        ),
        window_seconds=float(
            rate_limit_raw.get("window_seconds", defaults.rate_limit.window_seconds)
        ),
    )
    if rate_limit.max_requests < 1 or rate_limit.window_seconds <= 0:
        raise ValueError("rate_limit values must be positive")

    panel_raw = raw.get("panel", {})
    panel = PanelOptions(
        initial_chat_message=panel_raw.get("initial_chat_message", ""),
        model=panel_raw.get("model", DEFAULT_MODEL),
    )

    return GatewayConfig(
        upstream=upstream,
        rate_limit=rate_limit,
        panel=panel,
        max_body_bytes=int(raw.get("max_body_bytes", MAX_BODY_BYTES)),
        log_file=raw.get("log_file"),
    )
