# linkguard/services/rate_limiter.py
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from ..models import RateLimitDecision

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when the rate limit has been hit."""

    def __init__(self, retry_after: int, scope: str = "", limit: int = 0):
        super().__init__(f"Rate limit exceeded for scope '{scope}', retry after {retry_after}s")
        self.retry_after = retry_after
        self.scope = scope
        self.limit = limit


@dataclass(frozen=True)
class LimiterScope:
    interval_seconds: float
    max_tracked: int = 500


@dataclass
class RateWindow:
    count: int
    window_end: float


DEFAULT_SCOPES: Dict[str, LimiterScope] = {
    "submit": LimiterScope(interval_seconds=10 * 60, max_tracked=500),
    "report": LimiterScope(interval_seconds=5 * 60, max_tracked=500),
    "admin": LimiterScope(interval_seconds=60, max_tracked=100),
}


class RateLimiter:
    """
    Fixed-window request counter per (scope, identity).

    The first request for an identity opens a window ending interval
    seconds later; requests are allowed while the window's count is below
    the limit and the counter resets entirely once the window ends.

    - Scopes have independent tables, intervals and size bounds
    - Each check is one atomic read-modify-write under a lock
    - Expired windows are purged on access; tables keep windows in opening
      order so the purge stops at the first live one
    - Beyond max_tracked identities the oldest window is evicted
    """

    def __init__(
        self,
        scopes: Optional[Mapping[str, LimiterScope]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scopes = dict(scopes or DEFAULT_SCOPES)
        self.clock = clock
        self._tables: Dict[str, "OrderedDict[str, RateWindow]"] = {name: OrderedDict() for name in self.scopes}
        self._lock = threading.Lock()

    def check(self, identity: str, limit: int, scope: str) -> RateLimitDecision:
        if scope not in self.scopes:
            raise KeyError(f"Unknown rate limit scope: {scope}")

        config = self.scopes[scope]
        with self._lock:
            now = self.clock()
            table = self._tables[scope]
            self._purge_expired(table, now)

            window = table.get(identity)
            if window is None:
                table[identity] = RateWindow(count=1, window_end=now + config.interval_seconds)
                while len(table) > config.max_tracked:
                    evicted, _ = table.popitem(last=False)
                    logger.debug(f"Rate limiter evicted oldest identity {evicted} from scope {scope}")
                return RateLimitDecision(allowed=True, limit=limit, remaining=max(0, limit - 1))

            if window.count < limit:
                window.count += 1
                return RateLimitDecision(allowed=True, limit=limit, remaining=limit - window.count)

            retry_after = max(1, math.ceil(window.window_end - now))

        logger.info(f"Rate limit exceeded for {identity} in scope {scope}, retry after {retry_after}s")
        return RateLimitDecision(allowed=False, retry_after=retry_after, limit=limit, remaining=0)

    def hit(self, identity: str, limit: int, scope: str) -> RateLimitDecision:
        decision = self.check(identity, limit, scope)
        if not decision.allowed:
            raise RateLimitExceeded(decision.retry_after, scope=scope, limit=limit)
        return decision

    def tracked(self, scope: str) -> int:
        with self._lock:
            table = self._tables[scope]
            self._purge_expired(table, self.clock())
            return len(table)

    @staticmethod
    def _purge_expired(table: "OrderedDict[str, RateWindow]", now: float) -> None:
        while table:
            identity, window = next(iter(table.items()))
            if window.window_end > now:
                break
            del table[identity]


def client_identity(request) -> str:
    """Best-effort client address for rate limiting, proxy headers first"""
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first

    for header in ('x-real-ip', 'cf-connecting-ip'):
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client and request.client.host:
        return request.client.host
    return 'localhost'
