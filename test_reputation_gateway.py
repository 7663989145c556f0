# test_reputation_gateway.py
"""
ReputationGateway: Safe Browsing + generative classifier, both fail open.
"""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from linkguard.config import Settings
from linkguard.services.reputation_gateway import ReputationGateway, extract_json_object


class FakeCompletions:
    def __init__(self, content=None, error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_ai(content=None, error=None, delay=0.0):
    completions = FakeCompletions(content, error, delay)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def safe_browsing_handler(matches=None, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "safebrowsing.googleapis.com"
        assert request.headers["x-goog-api-key"] == "sb-key"
        body = {"matches": matches} if matches else {}
        return httpx.Response(status_code, json=body)
    return handler


class TestBlocklist:

    def test_disabled_defaults_safe(self, make_fetcher):
        def handler(request):
            raise AssertionError("no request expected")

        gateway = ReputationGateway(Settings(), make_fetcher(handler))
        assert asyncio.run(gateway.check_blocklist("https://example.com/")) == {"safe": True}

    def test_match_reports_threat(self, make_fetcher):
        settings = Settings(safe_browsing_api_key="sb-key")
        fetcher = make_fetcher(safe_browsing_handler([{"threatType": "MALWARE"}]))
        gateway = ReputationGateway(settings, fetcher)

        result = asyncio.run(gateway.check_blocklist("https://bad.example/"))
        assert result == {"safe": False, "threat": "MALWARE"}

    def test_clean_url(self, make_fetcher):
        settings = Settings(safe_browsing_api_key="sb-key")
        gateway = ReputationGateway(settings, make_fetcher(safe_browsing_handler()))
        assert asyncio.run(gateway.check_blocklist("https://example.com/"))["safe"]

    @pytest.mark.parametrize("status_code", [400, 500, 503])
    def test_http_failure_fails_open(self, make_fetcher, status_code):
        settings = Settings(safe_browsing_api_key="sb-key")
        gateway = ReputationGateway(settings, make_fetcher(safe_browsing_handler(status_code=status_code)))
        assert asyncio.run(gateway.check_blocklist("https://example.com/")) == {"safe": True}

    def test_transport_failure_fails_open(self, make_fetcher):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        settings = Settings(safe_browsing_api_key="sb-key")
        gateway = ReputationGateway(settings, make_fetcher(handler))
        assert asyncio.run(gateway.check_blocklist("https://example.com/")) == {"safe": True}

    def test_garbage_body_fails_open(self, make_fetcher):
        settings = Settings(safe_browsing_api_key="sb-key")
        gateway = ReputationGateway(
            settings, make_fetcher(lambda request: httpx.Response(200, content=b"<html>"))
        )
        assert asyncio.run(gateway.check_blocklist("https://example.com/")) == {"safe": True}


class TestGenerativeClassifier:

    def test_disabled_without_client(self, make_fetcher):
        gateway = ReputationGateway(Settings(), make_fetcher(lambda r: httpx.Response(200)))
        assert asyncio.run(gateway.check_with_generative_classifier("https://example.com/"))["safe"]

    def test_unsafe_verdict(self, make_fetcher):
        ai = fake_ai('Sure! {"safe": false, "reason": "gambling site"} Hope that helps.')
        gateway = ReputationGateway(Settings(), make_fetcher(lambda r: httpx.Response(200)), ai_client=ai)

        result = asyncio.run(gateway.check_with_generative_classifier("https://example.com/"))
        assert result == {"safe": False, "reason": "gambling site"}
        assert "https://example.com/" in ai.chat.completions.calls[0]["messages"][0]["content"]

    def test_only_explicit_false_is_unsafe(self, make_fetcher):
        ai = fake_ai('{"reason": "looks fine"}')
        gateway = ReputationGateway(Settings(), make_fetcher(lambda r: httpx.Response(200)), ai_client=ai)
        assert asyncio.run(gateway.check_with_generative_classifier("https://example.com/"))["safe"]

    @pytest.mark.parametrize("content", ["I cannot answer that.", "", None, "{not json}"])
    def test_unparseable_output_fails_open(self, make_fetcher, content):
        gateway = ReputationGateway(
            Settings(), make_fetcher(lambda r: httpx.Response(200)), ai_client=fake_ai(content)
        )
        result = asyncio.run(gateway.check_with_generative_classifier("https://example.com/"))
        assert result == {"safe": True, "reason": "AI unavailable"}

    def test_client_error_fails_open(self, make_fetcher):
        ai = fake_ai(error=RuntimeError("quota exceeded"))
        gateway = ReputationGateway(Settings(), make_fetcher(lambda r: httpx.Response(200)), ai_client=ai)
        result = asyncio.run(gateway.check_with_generative_classifier("https://example.com/"))
        assert result["safe"]

    def test_timeout_fails_open(self, make_fetcher):
        ai = fake_ai('{"safe": false}', delay=1.0)
        gateway = ReputationGateway(
            Settings(), make_fetcher(lambda r: httpx.Response(200)), ai_client=ai, timeout=0.05
        )
        result = asyncio.run(gateway.check_with_generative_classifier("https://example.com/"))
        assert result == {"safe": True, "reason": "AI unavailable"}


class TestReview:

    def test_blocklist_short_circuits(self, make_fetcher):
        ai = fake_ai('{"safe": true}')
        settings = Settings(safe_browsing_api_key="sb-key")
        fetcher = make_fetcher(safe_browsing_handler([{"threatType": "SOCIAL_ENGINEERING"}]))
        gateway = ReputationGateway(settings, fetcher, ai_client=ai)

        verdict = asyncio.run(gateway.review("https://phish.example/"))
        assert not verdict.safe
        assert verdict.reason == "Blocked by Safe Browsing: SOCIAL_ENGINEERING"
        assert verdict.source == "blocklist"
        assert ai.chat.completions.calls == []

    def test_ai_decides_after_clean_blocklist(self, make_fetcher):
        ai = fake_ai(json.dumps({"safe": False, "reason": "adult content"}))
        settings = Settings(safe_browsing_api_key="sb-key")
        gateway = ReputationGateway(settings, make_fetcher(safe_browsing_handler()), ai_client=ai)

        verdict = asyncio.run(gateway.review("https://example.com/"))
        assert not verdict.safe
        assert verdict.source == "ai-classifier"
        assert verdict.reason == "adult content"

    def test_nothing_configured_is_safe(self, make_fetcher):
        gateway = ReputationGateway(Settings(), make_fetcher(lambda r: httpx.Response(500)))
        verdict = asyncio.run(gateway.review("https://example.com/"))
        assert verdict.safe
        assert verdict.source == "heuristic"


class TestExtractJson:

    def test_fenced_block(self):
        assert extract_json_object('```json\n{"safe": true}\n```') == {"safe": True}

    def test_non_object(self):
        assert extract_json_object("[1, 2]") is None
