# conftest.py
"""
Shared fixtures. No test reaches the network: outbound HTTP goes through
httpx.MockTransport and DNS resolution is off unless a test patches getaddrinfo.
"""

import os

# Neutralise any developer .env before linkguard.main builds its module-level app
for _name in (
    "VIRUSTOTAL_API_KEY", "URLSCAN_API_KEY", "SAFE_BROWSING_API_KEY",
    "OPENAI_API_KEY", "RECAPTCHA_SECRET_KEY", "ADMIN_PASSWORD",
    "FETCH_ALLOWED_HOSTS", "FILTER_RULES_PATH",
):
    os.environ[_name] = ""
os.environ["FETCH_GUARD_MODE"] = "deny"
os.environ["FETCH_RESOLVE_DNS"] = "false"
os.environ["FILTER_WHITELIST_MODE"] = "false"

import httpx
import pytest

from linkguard.config import Settings
from linkguard.services.hostname_guard import HostnameGuard
from linkguard.services.url_fetcher import SafeFetcher


class FakeClock:
    """Manually advanced clock for time-dependent services"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def guard():
    return HostnameGuard()


@pytest.fixture
def make_fetcher(guard):
    """Build a SafeFetcher whose requests are answered by handler(request)"""
    def _make(handler, **kwargs):
        kwargs.setdefault("resolve_dns", False)
        kwargs.setdefault("guard", guard)
        return SafeFetcher(transport=httpx.MockTransport(handler), **kwargs)
    return _make


@pytest.fixture
def settings():
    return Settings(fetch_resolve_dns=False)
