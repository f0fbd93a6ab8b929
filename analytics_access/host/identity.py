"""
analytics_access/host/identity.py

Identity providers.

Two variants share one capability interface. The variant is chosen once
from the memoized host mode by ``select_identity_provider``; nothing else
switches on the concrete type.
"""

from __future__ import annotations

import base64
import logging
import threading
from typing import Protocol

from analytics_access.config import IdentitySettings
from analytics_access.domain.models import Credential, HostContext, HostMode, UserDescriptor
from analytics_access.errors import AuthUnavailable
from analytics_access.host.bridge import HostBridge, HostBridgeError
from analytics_access.logging_utils import log_event

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """
    Issues credentials and describes the current user.
    """

    def issue_credential(self) -> Credential:
        """Return a credential or raise ``AuthUnavailable``."""

    def describe_current_user(self) -> UserDescriptor:
        """Return the user requests are issued for."""


class HostDelegatedIdentityProvider:
    """
    Asks the host for a token on every call.

    Host tokens are short-lived and rotated by the host, so nothing is
    cached beyond a single request.
    """

    def __init__(
        self,
        *,
        bridge: HostBridge,
        context: HostContext | None = None,
        token_timeout_seconds: float = 5.0,
    ) -> None:
        self._bridge = bridge
        self._context = context
        self._token_timeout_seconds = token_timeout_seconds

    def issue_credential(self) -> Credential:
        try:
            host_token = self._bridge.get_access_token(timeout_seconds=self._token_timeout_seconds)
        except HostBridgeError as exc:
            log_event(logger, logging.WARNING, "host_token_unavailable", error=str(exc))
            raise AuthUnavailable("Host did not issue an access token.") from exc
        return Credential(scheme="Bearer", value=host_token.token, expires_at=host_token.expires_at)

    def describe_current_user(self) -> UserDescriptor:
        if self._context is None:
            try:
                self._context = self._bridge.get_context(timeout_seconds=self._token_timeout_seconds)
            except HostBridgeError as exc:
                raise AuthUnavailable("Host context is unavailable.") from exc
        return self._context.user


class PersonalAccessTokenIdentityProvider:
    """
    Converts a configured personal access token into a Basic credential.

    The secret cannot change without a restart, so the derived credential is
    computed once and reused for the process lifetime.
    """

    def __init__(self, *, settings: IdentitySettings) -> None:
        self._settings = settings
        self._lock = threading.Lock()
        self._credential: Credential | None = None

    def issue_credential(self) -> Credential:
        with self._lock:
            if self._credential is None:
                secret = self._settings.personal_access_token
                if not secret:
                    raise AuthUnavailable("ANALYTICS_PAT is not configured.")
                encoded = base64.b64encode(f":{secret}".encode("utf-8")).decode("ascii")
                self._credential = Credential(scheme="Basic", value=encoded)
            return self._credential

    def describe_current_user(self) -> UserDescriptor:
        return UserDescriptor(display_name=self._settings.user_name)


def select_identity_provider(
    mode: HostMode,
    *,
    bridge: HostBridge | None,
    settings: IdentitySettings,
    context: HostContext | None = None,
    token_timeout_seconds: float = 5.0,
) -> IdentityProvider:
    """
    Instantiate the identity provider variant for ``mode``.
    """

    if mode is HostMode.EMBEDDED:
        if bridge is None:
            raise AuthUnavailable("Embedded mode requires a host bridge.")
        return HostDelegatedIdentityProvider(
            bridge=bridge,
            context=context,
            token_timeout_seconds=token_timeout_seconds,
        )
    return PersonalAccessTokenIdentityProvider(settings=settings)
