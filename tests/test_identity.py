from __future__ import annotations

import base64
import unittest

from analytics_access.config import IdentitySettings
from analytics_access.domain.models import HostMode
from analytics_access.errors import AuthUnavailable
from analytics_access.host.bridge import HostBridgeError
from analytics_access.host.identity import (
    HostDelegatedIdentityProvider,
    PersonalAccessTokenIdentityProvider,
    select_identity_provider,
)

from conftest import FakeBridge


class TestPersonalAccessTokenIdentityProvider(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = IdentitySettings(personal_access_token="pat-secret", user_name="Build Bot")
        self.provider = PersonalAccessTokenIdentityProvider(settings=self.settings)

    def test_issues_basic_credential_with_empty_user(self) -> None:
        credential = self.provider.issue_credential()

        self.assertEqual(credential.scheme, "Basic")
        self.assertEqual(base64.b64decode(credential.value).decode("utf-8"), ":pat-secret")
        self.assertEqual(credential.authorization_header(), f"Basic {credential.value}")

    def test_credential_is_cached(self) -> None:
        self.assertIs(self.provider.issue_credential(), self.provider.issue_credential())

    def test_missing_token_is_auth_unavailable(self) -> None:
        provider = PersonalAccessTokenIdentityProvider(settings=IdentitySettings(personal_access_token=None))
        with self.assertRaises(AuthUnavailable):
            provider.issue_credential()

    def test_describes_configured_user(self) -> None:
        self.assertEqual(self.provider.describe_current_user().display_name, "Build Bot")

    def test_settings_repr_hides_token(self) -> None:
        self.assertNotIn("pat-secret", repr(self.settings))


class TestHostDelegatedIdentityProvider(unittest.TestCase):
    def test_asks_the_host_on_every_call(self) -> None:
        bridge = FakeBridge()
        provider = HostDelegatedIdentityProvider(bridge=bridge)

        first = provider.issue_credential()
        second = provider.issue_credential()

        self.assertEqual(first.scheme, "Bearer")
        self.assertEqual(first.value, "host-token-1")
        self.assertEqual(second.value, "host-token-2")
        self.assertEqual(bridge.token_calls, 2)

    def test_refused_token_is_auth_unavailable(self) -> None:
        provider = HostDelegatedIdentityProvider(bridge=FakeBridge(token=None))
        with self.assertRaises(AuthUnavailable):
            provider.issue_credential()

    def test_user_comes_from_probe_context(self) -> None:
        bridge = FakeBridge()
        provider = HostDelegatedIdentityProvider(bridge=bridge, context=bridge.context)

        self.assertEqual(provider.describe_current_user().display_name, "Dana Reviewer")
        self.assertEqual(bridge.context_calls, 0)

    def test_user_lookup_failure_is_auth_unavailable(self) -> None:
        provider = HostDelegatedIdentityProvider(bridge=FakeBridge(context_error=HostBridgeError("gone")))
        with self.assertRaises(AuthUnavailable):
            provider.describe_current_user()


class TestSelectIdentityProvider(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = IdentitySettings(personal_access_token="pat-secret")

    def test_embedded_uses_host_tokens(self) -> None:
        provider = select_identity_provider(HostMode.EMBEDDED, bridge=FakeBridge(), settings=self.settings)
        self.assertIsInstance(provider, HostDelegatedIdentityProvider)

    def test_standalone_uses_personal_access_token(self) -> None:
        provider = select_identity_provider(HostMode.STANDALONE, bridge=FakeBridge(), settings=self.settings)
        self.assertIsInstance(provider, PersonalAccessTokenIdentityProvider)

    def test_embedded_without_bridge_is_auth_unavailable(self) -> None:
        with self.assertRaises(AuthUnavailable):
            select_identity_provider(HostMode.EMBEDDED, bridge=None, settings=self.settings)


if __name__ == "__main__":
    unittest.main()
