"""
analytics_access/host/bridge.py

Boundary to the Host Environment.

The host exposes two calls: a context probe and token issuance. Both are
remote, fallible and bounded by a caller-supplied timeout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from analytics_access.domain.models import HostContext, UserDescriptor
from analytics_access.logging_utils import log_event, scrub_secrets

logger = logging.getLogger(__name__)


class HostBridgeError(RuntimeError):
    """
    Raised when a host call fails or returns an unusable payload.
    """


@dataclass(frozen=True)
class HostToken:
    """
    Bearer token issued by the host for a single request.
    """

    token: str = field(repr=False)
    expires_at: datetime | None = None


class HostBridge(Protocol):
    """
    Calls the core is allowed to make into the Host Environment.
    """

    def get_context(self, *, timeout_seconds: float) -> HostContext:
        """Return the host context or raise ``HostBridgeError``."""

    def get_access_token(self, *, timeout_seconds: float) -> HostToken:
        """Return a fresh bearer token or raise ``HostBridgeError``."""

    def close(self) -> None:
        """Release any connections held to the host."""


class HttpHostBridge:
    """
    Host bridge backed by the local host-bridge sidecar.

    The sidecar relays the sandboxed iframe's SDK calls over HTTP:
    ``GET {base}/context`` and ``GET {base}/token``.
    """

    def __init__(self, *, base_url: str, session: requests.Session | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def get_context(self, *, timeout_seconds: float) -> HostContext:
        payload = self._get_json("context", timeout_seconds=timeout_seconds)
        user_payload = payload.get("user")
        if not isinstance(user_payload, dict):
            raise HostBridgeError("Host context did not include a user.")

        display_name = str(user_payload.get("displayName") or user_payload.get("name") or "").strip()
        if not display_name:
            raise HostBridgeError("Host context user has no display name.")

        return HostContext(
            host_name=str(payload.get("hostName") or "host").strip() or "host",
            user=UserDescriptor(
                display_name=display_name,
                user_id=_optional_str(user_payload.get("id")),
                unique_name=_optional_str(user_payload.get("name")),
            ),
            analytics_base_url=_optional_str(payload.get("analyticsBaseUrl")),
        )

    def get_access_token(self, *, timeout_seconds: float) -> HostToken:
        payload = self._get_json("token", timeout_seconds=timeout_seconds)
        token = _optional_str(payload.get("token"))
        if token is None:
            raise HostBridgeError("Host did not issue a token.")
        return HostToken(token=token, expires_at=_parse_expiry(payload.get("expiresAt")))

    def close(self) -> None:
        self._session.close()

    def _get_json(self, path: str, *, timeout_seconds: float) -> dict[str, Any]:
        url = f"{self._base_url}/{path}"
        try:
            response = self._session.get(url, timeout=timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            message = scrub_secrets(str(exc))
            log_event(logger, logging.WARNING, "host_bridge_call_failed", path=path, error=message)
            raise HostBridgeError(f"Host call '{path}' failed: {message}") from None
        except ValueError as exc:
            raise HostBridgeError(f"Host call '{path}' returned invalid JSON.") from exc

        if not isinstance(payload, dict):
            raise HostBridgeError(f"Host call '{path}' returned a non-object payload.")
        return payload


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _parse_expiry(value: object) -> datetime | None:
    raw = _optional_str(value)
    if raw is None:
        return None
    normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
