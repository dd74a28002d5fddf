# ==============================================================================
# Tests for Client Context and Identity Resolution
# ==============================================================================
"""
Unit tests for request-derived inputs of the session lifecycle.

Tests cover:
- User agent parsing (browser, OS, mobile flag)
- Client IP selection from proxy headers
- JWT identity resolution (valid, expired, wrong secret, missing)
"""

from datetime import UTC, datetime, timedelta

import pytest

from engagement.base.identity import IdentityStatus, NoIdentityResolver
from engagement.core.client_context import build_client_context, client_ip, parse_device_info
from engagement.infrastructure.identity import JwtIdentityResolver, extract_bearer_token
from engagement.utils.config import AuthSettings

from conftest import TOKEN_SECRET, make_token

ANDROID_CHROME = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Mobile Safari/537.36"
)
IPHONE_SAFARI = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)
WINDOWS_EDGE = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0"
)
LINUX_FIREFOX = "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0"
MAC_SAFARI = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
)


# ==============================================================================
# Device info
# ==============================================================================


class TestParseDeviceInfo:
    """Tests for parse_device_info()."""

    @pytest.mark.parametrize(
        "user_agent,browser,os,is_mobile",
        [
            (ANDROID_CHROME, "Chrome", "Android", True),
            (IPHONE_SAFARI, "Safari", "iOS", True),
            (WINDOWS_EDGE, "Edge", "Windows", False),
            (LINUX_FIREFOX, "Firefox", "Linux", False),
            (MAC_SAFARI, "Safari", "macOS", False),
        ],
    )
    def test_known_agents(self, user_agent, browser, os, is_mobile):
        info = parse_device_info(user_agent)
        assert info.browser == browser
        assert info.os == os
        assert info.is_mobile is is_mobile
        assert info.user_agent == user_agent

    def test_missing_agent_is_unknown(self):
        info = parse_device_info(None)
        assert (info.browser, info.os, info.is_mobile) == ("Unknown", "Unknown", False)

    def test_unrecognized_agent(self):
        info = parse_device_info("curl/8.5.0")
        assert info.browser == "Unknown"
        assert info.os == "Unknown"


# ==============================================================================
# Client IP and context
# ==============================================================================


class TestClientIp:
    """Tests for client_ip() and build_client_context()."""

    def test_first_forwarded_hop_wins(self):
        headers = {"X-Forwarded-For": "203.0.113.5, 10.0.0.1", "X-Real-IP": "10.0.0.2"}
        assert client_ip(headers, "127.0.0.1") == "203.0.113.5"

    def test_real_ip_header(self):
        assert client_ip({"x-real-ip": " 198.51.100.7 "}, "127.0.0.1") == "198.51.100.7"

    def test_falls_back_to_peer_address(self):
        assert client_ip({}, "192.0.2.10") == "192.0.2.10"

    def test_build_context_from_headers(self):
        context = build_client_context({"User-Agent": ANDROID_CHROME, "X-Forwarded-For": "203.0.113.5"})
        assert context.ip_address == "203.0.113.5"
        assert context.user_agent == ANDROID_CHROME
        assert context.device_info.os == "Android"


# ==============================================================================
# Identity
# ==============================================================================


class TestJwtIdentityResolver:
    """Tests for JwtIdentityResolver.resolve()."""

    @pytest.fixture()
    def resolver(self):
        return JwtIdentityResolver(AuthSettings(access_token_secret=TOKEN_SECRET))

    def test_valid_bearer_token(self, resolver):
        identity = resolver.resolve(f"Bearer {make_token('42')}")
        assert identity.status is IdentityStatus.AUTHENTICATED
        assert identity.user_id == "42"

    def test_sub_claim_fallback(self, resolver):
        import jwt

        token = jwt.encode({"sub": "alice"}, TOKEN_SECRET, algorithm="HS256")
        assert resolver.resolve(token).user_id == "alice"

    def test_no_credentials_is_absent(self, resolver):
        assert resolver.resolve(None).status is IdentityStatus.ABSENT
        assert resolver.resolve("Bearer ").status is IdentityStatus.ABSENT

    def test_expired_token_is_invalid(self, resolver):
        expired = datetime.now(UTC) - timedelta(minutes=5)
        identity = resolver.resolve(make_token("42", exp=expired))
        assert identity.status is IdentityStatus.INVALID
        assert "expired" in identity.reason

    def test_wrong_secret_is_invalid(self, resolver):
        token = make_token("42", secret="another-secret-key-with-at-least-32-bytes")
        assert resolver.resolve(token).status is IdentityStatus.INVALID

    def test_garbage_is_invalid(self, resolver):
        assert resolver.resolve("Bearer not-a-jwt").status is IdentityStatus.INVALID

    def test_unconfigured_secret_is_invalid(self):
        resolver = JwtIdentityResolver(AuthSettings(access_token_secret=None))
        assert resolver.resolve(make_token("42")).status is IdentityStatus.INVALID

    def test_extract_bearer_token(self):
        assert extract_bearer_token("bearer abc") == "abc"
        assert extract_bearer_token("  Bearer   abc  ") == "abc"
        assert extract_bearer_token("abc") == "abc"
        assert extract_bearer_token("") is None

    @pytest.mark.parametrize("header", ["Bearer", "Bearer ", "BEARER\t", "   "])
    def test_scheme_without_token_is_absent(self, resolver, header):
        assert extract_bearer_token(header) is None
        assert resolver.resolve(header).status is IdentityStatus.ABSENT

    def test_token_with_extra_parts_is_invalid(self, resolver):
        assert resolver.resolve("Bearer abc def").status is IdentityStatus.INVALID

    def test_no_identity_resolver(self):
        assert NoIdentityResolver().resolve("Bearer x").status is IdentityStatus.ABSENT
