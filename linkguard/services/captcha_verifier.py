# linkguard/services/captcha_verifier.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import CheckMode
from .url_fetcher import SafeFetcher

logger = logging.getLogger(__name__)

SITEVERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"

# Error codes produced by localhost or misconfigured dev setups; these never block
DEV_ERROR_CODES = ('missing-input-secret', 'invalid-input-response', 'hostname', 'browser-error')


@dataclass
class CaptchaResult:
    success: bool
    score: float = 0.0
    status_code: int = 200
    error: Optional[str] = None
    warning: Optional[str] = None
    error_codes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "score": self.score}
        if self.error:
            data["error"] = self.error
        if self.warning:
            data["warning"] = self.warning
        if self.error_codes:
            data["errorCodes"] = self.error_codes
        return data


class CaptchaVerifier:
    """
    reCAPTCHA v3 token check for public submissions.

    Fails open when the verification service is unreachable; rejects only
    on a real verification failure or a score below the configured minimum.
    """

    def __init__(self, secret_key: Optional[str], fetcher: SafeFetcher, min_score: float = 0.5):
        self.secret_key = secret_key or ''
        self.fetcher = fetcher
        self.min_score = min_score
        self.mode = CheckMode.from_credential(secret_key)

        if self.mode is CheckMode.DISABLED:
            logger.warning("⚠️ RECAPTCHA_SECRET_KEY not set - running without CAPTCHA protection")

    async def verify(self, token: Optional[str]) -> CaptchaResult:
        if not token:
            logger.warning("⚠️ No reCAPTCHA token provided")
            return CaptchaResult(success=True, score=1.0, warning="No CAPTCHA token (dev mode)")

        if self.mode is CheckMode.DISABLED:
            return CaptchaResult(success=True, score=1.0, warning="CAPTCHA disabled (dev mode)")

        try:
            response = await self.fetcher.request(
                'POST', SITEVERIFY_URL, data={'secret': self.secret_key, 'response': token}
            )
            data = response.json()
        except Exception as e:
            logger.warning(f"reCAPTCHA verification unavailable, allowing: {type(e).__name__}: {e}")
            return CaptchaResult(success=True, score=1.0, warning="Verification service unavailable (allowed)")

        if not isinstance(data, dict):
            logger.warning(f"reCAPTCHA verification returned unexpected payload, allowing: {type(data).__name__}")
            return CaptchaResult(success=True, score=1.0, warning="Verification service unavailable (allowed)")

        if not data.get('success'):
            error_codes = [str(code) for code in data.get('error-codes') or []]
            logger.warning(f"reCAPTCHA verification failed: {error_codes}")

            if any(dev in code for code in error_codes for dev in DEV_ERROR_CODES):
                return CaptchaResult(
                    success=True,
                    score=0.8,
                    warning="CAPTCHA verification skipped (localhost/dev mode)",
                )

            return CaptchaResult(
                success=False,
                status_code=400,
                error="reCAPTCHA verification failed",
                error_codes=error_codes,
            )

        try:
            score = float(data.get('score') or 0)
        except (TypeError, ValueError):
            score = 0.0

        if score < self.min_score:
            logger.info(f"reCAPTCHA score {score} below minimum {self.min_score}")
            return CaptchaResult(
                success=False,
                score=score,
                status_code=403,
                error="reCAPTCHA score too low (possible bot)",
            )

        return CaptchaResult(success=True, score=score)
