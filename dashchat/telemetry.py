"""Logging and telemetry for the dashchat gateway.

Emits one structured JSON line per proxied request to stdout and, when a log
file is configured, appends it there as well. Only request metadata is
recorded; message content never reaches the log.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("dashchat")


def setup_logging(log_file: Optional[str] = None) -> None:
    """Configure the dashchat logger with stdout and optional file handlers.

    Args:
        log_file: Path to an append-only log file, or None for stdout only.
    """
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        stdout_handler = logging.StreamHandler()
        stdout_handler.setLevel(logging.INFO)
        stdout_fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        stdout_handler.setFormatter(stdout_fmt)
        logger.addHandler(stdout_handler)

        if log_file:
            log_path = Path(log_file)
            os.makedirs(log_path.parent, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a")
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(stdout_fmt)
            logger.addHandler(file_handler)


def log_request(
    *,
    request_id: str,
    client_key: str,
    outcome: str,
    status: int,
    model: Optional[str] = None,
    message_count: Optional[int] = None,
    error: Optional[str] = None
) -> None:
    """Log a single proxied request.

    Args:
        request_id: Gateway-assigned request ID.
        client_key: The rate-limit identity of the caller.
        outcome: Short outcome label (e.g. "success", "rate_limited").
        status: HTTP status returned to the caller.
        model: Requested model name, once the body has been validated.
        message_count: Number of messages in the validated conversation.
        error: Short error label if the request failed.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "client_key": client_key,
        "outcome": outcome,
        "status": status,
    }

    if model is not None:
        record["model"] = model

    if message_count is not None:
        record["message_count"] = message_count

    if error:
        record["error"] = error

    if status >= 500:
        logger.error(json.dumps(record))
    elif status >= 400:
        logger.warning(json.dumps(record))
    else:
        logger.info(json.dumps(record))
