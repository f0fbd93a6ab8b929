"""
Host Environment integration: bridge, mode detection and identity.
"""

from analytics_access.host.bridge import HostBridge, HostBridgeError, HostToken, HttpHostBridge
from analytics_access.host.identity import (
    HostDelegatedIdentityProvider,
    IdentityProvider,
    PersonalAccessTokenIdentityProvider,
    select_identity_provider,
)
from analytics_access.host.mode import ModeDetection, ModeDetector, get_mode_detector

__all__ = [
    "HostBridge",
    "HostBridgeError",
    "HostDelegatedIdentityProvider",
    "HostToken",
    "HttpHostBridge",
    "IdentityProvider",
    "ModeDetection",
    "ModeDetector",
    "PersonalAccessTokenIdentityProvider",
    "get_mode_detector",
    "select_identity_provider",
]
