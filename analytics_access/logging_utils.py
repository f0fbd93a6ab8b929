"""
Structured logging helpers and credential scrubbing.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from typing import Any

REDACTED = "***"

_AUTH_TOKEN_PATTERN = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9\-._~+/=]+", re.IGNORECASE)


def scrub_secrets(message: str, secrets: Iterable[str] = ()) -> str:
    """
    Remove credential material from a message before it is logged or stored.
    """

    scrubbed = message
    for secret in sorted({item for item in secrets if item}, key=len, reverse=True):
        scrubbed = scrubbed.replace(secret, REDACTED)
    return _AUTH_TOKEN_PATTERN.sub(lambda match: f"{match.group(1)} {REDACTED}", scrubbed)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))
