# linkguard/services/security_scanner.py
import asyncio
import base64
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Sequence

from ..config import CheckMode, Settings
from ..models import ScanResult, SecurityStatus
from .url_fetcher import SafeFetcher

logger = logging.getLogger(__name__)

VIRUSTOTAL_API = "https://www.virustotal.com/api/v3"
URLSCAN_API = "https://urlscan.io/api/v1"

PENDING_STATES = frozenset({'pending', 'submitted', 'queued'})
ERROR_STATES = frozenset({'error', 'rate_limited', 'expired', 'timeout'})

MALICIOUS_DETECTIONS = 3
SUSPICIOUS_MALICIOUS_DETECTIONS = 1
SUSPICIOUS_DETECTIONS = 2
SUSPICIOUS_RISK_SCORE = 50

Sleep = Callable[[float], Awaitable[Any]]


def virustotal_url_id(url: str) -> str:
    """VirusTotal URL identifier: url-safe base64 of the URL, no padding"""
    return base64.urlsafe_b64encode(url.encode('utf-8')).decode('ascii').rstrip('=')


def _count(value: Any) -> int:
    # bool is an int subclass; a verdict flag is not a detection count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def determine_security_status(results: Mapping[str, Mapping[str, Any]]) -> SecurityStatus:
    """
    Reconcile per-source scan results into one status, most severe first:

    malicious   >=3 malicious detections, or an explicit malicious flag
    suspicious  >=1 malicious, >=2 suspicious, or risk score >=50
    pending     any source still pending or errored (never "safe")
    safe        otherwise
    """
    sources = [r for r in results.values() if isinstance(r, Mapping)]

    for result in sources:
        if result.get('malicious') is True or _count(result.get('malicious')) >= MALICIOUS_DETECTIONS:
            return "malicious"

    for result in sources:
        if (
            _count(result.get('malicious')) >= SUSPICIOUS_MALICIOUS_DETECTIONS
            or _count(result.get('suspicious')) >= SUSPICIOUS_DETECTIONS
            or _count(result.get('score')) >= SUSPICIOUS_RISK_SCORE
        ):
            return "suspicious"

    for result in sources:
        if result.get('status') in PENDING_STATES or result.get('status') in ERROR_STATES:
            return "pending"

    return "safe"


def link_visibility(status: str) -> str:
    """Visibility a link record should take after a scan"""
    return "pending_review" if status in ("malicious", "suspicious") else "approved"


class VirusTotalScanner:
    """Look up the URL's last analysis; unknown URLs are submitted and reported pending"""

    name = "virustotal"

    def __init__(self, api_key: str, fetcher: SafeFetcher):
        self.api_key = api_key
        self.fetcher = fetcher
        self.mode = CheckMode.from_credential(api_key)

    async def scan(self, url: str) -> Dict[str, Any]:
        if self.mode is CheckMode.DISABLED:
            return {"status": "skipped", "error": "API key not configured"}

        headers = {'x-apikey': self.api_key, 'Accept': 'application/json'}
        try:
            response = await self.fetcher.request(
                'GET', f"{VIRUSTOTAL_API}/urls/{virustotal_url_id(url)}", headers=headers
            )

            if response.is_success:
                attributes = (response.json().get('data') or {}).get('attributes') or {}
                stats = attributes.get('last_analysis_stats') or {}
                last_scan = attributes.get('last_analysis_date')
                return {
                    "status": "completed",
                    "malicious": stats.get('malicious', 0),
                    "suspicious": stats.get('suspicious', 0),
                    "harmless": stats.get('harmless', 0),
                    "undetected": stats.get('undetected', 0),
                    "last_scan": (
                        datetime.fromtimestamp(last_scan, tz=timezone.utc).isoformat()
                        if isinstance(last_scan, (int, float)) else None
                    ),
                }

            if response.status_code == 404:
                submitted = await self.fetcher.request(
                    'POST', f"{VIRUSTOTAL_API}/urls", headers=headers, data={'url': url}
                )
                if submitted.is_success:
                    return {
                        "status": "pending",
                        "analysis_id": (submitted.json().get('data') or {}).get('id'),
                        "message": "URL submitted for scanning",
                    }
                if submitted.status_code == 429:
                    return {"status": "rate_limited", "error": "Rate limit exceeded"}

            if response.status_code == 429:
                return {"status": "rate_limited", "error": "Rate limit exceeded"}

            return {"status": "error", "error": f"Failed to scan URL (HTTP {response.status_code})"}

        except Exception as e:
            logger.error(f"VirusTotal scan error: {type(e).__name__}: {e}")
            return {"status": "error", "error": str(e) or type(e).__name__}


class URLScanScanner:
    """Submit the URL to urlscan.io, then poll for the verdict a bounded number of times"""

    name = "urlscan"

    def __init__(
        self,
        api_key: str,
        fetcher: SafeFetcher,
        poll_attempts: int = 2,
        poll_interval: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.api_key = api_key
        self.fetcher = fetcher
        self.poll_attempts = max(0, poll_attempts)
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.mode = CheckMode.from_credential(api_key)

    async def submit(self, url: str) -> Dict[str, Any]:
        response = await self.fetcher.request(
            'POST',
            f"{URLSCAN_API}/scan/",
            headers={'API-Key': self.api_key},
            json={'url': url, 'visibility': 'unlisted', 'tags': ['linkguard', 'auto-scan']},
        )

        if response.is_success:
            data = response.json()
            return {
                "status": "submitted",
                "uuid": data.get('uuid'),
                "result_url": data.get('result'),
            }

        if response.status_code == 429:
            return {"status": "rate_limited", "error": "Rate limit exceeded"}

        try:
            message = response.json().get('message')
        except ValueError:
            message = None
        return {"status": "error", "error": message or "Failed to submit scan"}

    async def get_result(self, uuid: str) -> Dict[str, Any]:
        response = await self.fetcher.request('GET', f"{URLSCAN_API}/result/{uuid}/")

        if response.is_success:
            data = response.json()
            verdict = (data.get('verdicts') or {}).get('overall') or {}
            return {
                "status": "completed",
                "uuid": uuid,
                "malicious": verdict.get('malicious') is True,
                "score": verdict.get('score') or 0,
                "categories": verdict.get('categories') or [],
                "brands": verdict.get('brands') or [],
                "screenshot": (data.get('task') or {}).get('screenshotURL'),
            }

        if response.status_code == 404:
            return {"status": "pending", "uuid": uuid, "message": "Scan still in progress"}

        if response.status_code == 410:
            return {"status": "expired", "uuid": uuid, "message": "Scan result no longer available"}

        return {"status": "error", "uuid": uuid, "error": f"Failed to get result (HTTP {response.status_code})"}

    async def scan(self, url: str) -> Dict[str, Any]:
        if self.mode is CheckMode.DISABLED:
            return {"status": "skipped", "error": "API key not configured"}

        try:
            result = await self.submit(url)
            uuid = result.get('uuid')
            if result["status"] != "submitted" or not uuid:
                return result

            for attempt in range(self.poll_attempts):
                await self.sleep(self.poll_interval)
                polled = await self.get_result(uuid)
                logger.info(f"URLScan poll {attempt + 1}/{self.poll_attempts} for {uuid}: {polled['status']}")
                if polled["status"] != "pending":
                    return polled
                result = polled

            return result

        except Exception as e:
            logger.error(f"URLScan scan error: {type(e).__name__}: {e}")
            return {"status": "error", "error": str(e) or type(e).__name__}


class SecurityScanner:
    """
    Runs every configured scanner concurrently against one URL.

    Each scanner is bounded by its own timeout; a scanner that times out or
    raises is recorded as an error for that source only, and the others
    still complete.
    """

    def __init__(self, scanners: Sequence[Any], timeout: float = 30.0):
        self.scanners = list(scanners)
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: SafeFetcher, sleep: Sleep = asyncio.sleep) -> "SecurityScanner":
        return cls(
            scanners=[
                VirusTotalScanner(settings.virustotal_api_key, fetcher),
                URLScanScanner(
                    settings.urlscan_api_key,
                    fetcher,
                    poll_attempts=settings.urlscan_poll_attempts,
                    poll_interval=settings.urlscan_poll_interval,
                    sleep=sleep,
                ),
            ],
            timeout=settings.scanner_timeout,
        )

    async def _run(self, scanner: Any, url: str) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(scanner.scan(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{scanner.name} scan timed out after {self.timeout}s")
            return {"status": "timeout", "error": f"Timed out after {self.timeout}s"}
        except Exception as e:
            logger.error(f"{scanner.name} scan failed: {type(e).__name__}: {e}")
            return {"status": "error", "error": str(e) or type(e).__name__}

    async def scan(self, url: str) -> ScanResult:
        start_time = time.time()

        results = await asyncio.gather(*(self._run(scanner, url) for scanner in self.scanners))
        per_source = {scanner.name: result for scanner, result in zip(self.scanners, results)}

        status = determine_security_status(per_source)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Security scan for {url}: {status} ({duration_ms}ms)")

        return ScanResult(status=status, per_source_results=per_source, duration_ms=duration_ms)
