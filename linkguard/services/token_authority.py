# linkguard/services/token_authority.py
import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Callable, Optional

from ..config import CheckMode

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
MAX_CLOCK_SKEW_MS = 60 * 1000


class TokenAuthority:
    """
    Issues and verifies self-contained admin session tokens.

    token = base64("<issued-at millis>:<hex HMAC-SHA256(secret, issued-at)>")

    There is no server-side session store. A token is valid while its
    timestamp is younger than the TTL and its signature recomputes exactly;
    rotating the secret invalidates every outstanding token.
    """

    def __init__(
        self,
        secret: Optional[str],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = (secret or '').encode('utf-8')
        self.ttl_ms = int(ttl_seconds * 1000)
        self.clock = clock
        self.mode = CheckMode.from_credential(secret)

        if self.mode is CheckMode.DISABLED:
            logger.warning("ADMIN_PASSWORD is not set; admin authentication is disabled")

    @property
    def enabled(self) -> bool:
        return self.mode is CheckMode.ENABLED

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _sign(self, timestamp: str) -> str:
        return hmac.new(self._secret, timestamp.encode('ascii'), hashlib.sha256).hexdigest()

    def issue(self) -> str:
        if not self.enabled:
            raise RuntimeError("admin authentication is disabled")
        timestamp = str(self._now_ms())
        payload = f"{timestamp}:{self._sign(timestamp)}"
        return base64.b64encode(payload.encode('ascii')).decode('ascii')

    def verify(self, token: Optional[str]) -> bool:
        if not self.enabled or not token:
            return False

        try:
            raw = base64.b64decode(token.encode('ascii'), validate=True)
            payload = raw.decode('ascii')
        except (binascii.Error, UnicodeError, ValueError):
            return False

        # Padding bits are ignored by the decoder; only the canonical form is accepted
        if base64.b64encode(raw).decode('ascii') != token:
            return False

        timestamp, sep, signature = payload.partition(':')
        if not sep or not timestamp or not signature or not timestamp.isdigit():
            return False

        age_ms = self._now_ms() - int(timestamp)
        if age_ms > self.ttl_ms or age_ms < -MAX_CLOCK_SKEW_MS:
            return False

        return hmac.compare_digest(signature.encode('ascii'), self._sign(timestamp).encode('ascii'))

    def authenticate(self, password: Optional[str]) -> Optional[str]:
        """Exchange the admin password for a token, or None on any mismatch"""
        if not self.enabled or not password:
            return None

        if not hmac.compare_digest(password.encode('utf-8'), self._secret):
            logger.info("Admin authentication failed")
            return None

        logger.info("Admin token issued")
        return self.issue()
