# test_captcha_verifier.py
"""
CaptchaVerifier: reCAPTCHA v3 siteverify with dev-mode passes and fail-open.
"""

import asyncio

import httpx
import pytest

from linkguard.services.captcha_verifier import CaptchaVerifier


def siteverify(body, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "www.google.com"
        assert b"secret=rc-secret" in request.content
        return httpx.Response(status_code, json=body)
    return handler


class TestCaptchaVerifier:

    def test_no_token_passes(self, make_fetcher):
        verifier = CaptchaVerifier("rc-secret", make_fetcher(siteverify({"success": False})))
        result = asyncio.run(verifier.verify(None))
        assert result.success
        assert result.warning

    def test_no_secret_passes(self, make_fetcher):
        def handler(request):
            raise AssertionError("no request expected")

        verifier = CaptchaVerifier("", make_fetcher(handler))
        assert asyncio.run(verifier.verify("token")).success

    def test_good_score(self, make_fetcher):
        verifier = CaptchaVerifier("rc-secret", make_fetcher(siteverify({"success": True, "score": 0.9})))
        result = asyncio.run(verifier.verify("token"))
        assert result.success
        assert result.score == 0.9

    def test_low_score_rejected(self, make_fetcher):
        verifier = CaptchaVerifier(
            "rc-secret", make_fetcher(siteverify({"success": True, "score": 0.3})), min_score=0.5
        )
        result = asyncio.run(verifier.verify("token"))
        assert not result.success
        assert result.status_code == 403

    @pytest.mark.parametrize("code", ["invalid-input-response", "browser-error", "hostname-mismatch"])
    def test_dev_errors_pass(self, make_fetcher, code):
        verifier = CaptchaVerifier(
            "rc-secret", make_fetcher(siteverify({"success": False, "error-codes": [code]}))
        )
        result = asyncio.run(verifier.verify("token"))
        assert result.success
        assert result.score == 0.8

    def test_real_failure_rejected(self, make_fetcher):
        verifier = CaptchaVerifier(
            "rc-secret", make_fetcher(siteverify({"success": False, "error-codes": ["timeout-or-duplicate"]}))
        )
        result = asyncio.run(verifier.verify("token"))
        assert not result.success
        assert result.status_code == 400
        assert result.to_dict()["errorCodes"] == ["timeout-or-duplicate"]

    def test_service_down_fails_open(self, make_fetcher):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        verifier = CaptchaVerifier("rc-secret", make_fetcher(handler))
        result = asyncio.run(verifier.verify("token"))
        assert result.success
        assert "unavailable" in result.warning

    @pytest.mark.parametrize("body", [[1, 2], "ok", 42, True])
    def test_non_object_payload_fails_open(self, make_fetcher, body):
        verifier = CaptchaVerifier("rc-secret", make_fetcher(siteverify(body)))
        result = asyncio.run(verifier.verify("token"))
        assert result.success
        assert result.status_code == 200
        assert "unavailable" in result.warning
