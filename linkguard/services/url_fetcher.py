# linkguard/services/url_fetcher.py
import asyncio
import logging
import re
import socket
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from ..models import PreviewMetadata
from .hostname_guard import HostnameGuard, normalize_hostname, parse_ip

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_URL = "https://github.com/linkguard/linkguard"

X_HOSTS = frozenset({
    'x.com', 'www.x.com', 'mobile.x.com',
    'twitter.com', 'www.twitter.com', 'mobile.twitter.com',
})
X_LOGO_URL = 'https://abs.twimg.com/icons/apple-touch-icon-192x192.png'
X_RESERVED_PATHS = frozenset({'i', 'home', 'search', 'explore', 'hashtag', 'intent', 'share'})

REDIRECT_CODES = (301, 302, 303, 307, 308)
HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')


@dataclass
class FetchResult:
    """Result of URL fetch operation"""
    success: bool
    final_url: str
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    html: Optional[str] = None
    error_reason: Optional[str] = None
    fetch_time_ms: int = 0
    redirect_count: int = 0
    was_blocked: bool = False
    fetch_attempted: bool = False


class BlockedURLError(Exception):
    """Raised when an outbound request targets a guarded destination"""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason


@dataclass
class _Progress:
    current_url: str
    redirect_count: int = 0
    attempted: bool = False


class SafeFetcher:
    """
    Guarded outbound HTTP client.

    - http/https only, every hop (including redirects) checked by HostnameGuard
    - hostnames resolved and every address checked before connecting
    - hard total timeout on top of httpx's staged timeouts
    - at most max_redirects redirects and max_body_bytes of body
    - fixed, honest user-agent
    """

    def __init__(
        self,
        guard: HostnameGuard,
        timeout: float = 10.0,
        max_body_bytes: int = 200 * 1024,
        max_redirects: int = 3,
        resolve_dns: bool = True,
        contact_url: str = DEFAULT_CONTACT_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.guard = guard
        self.timeout = timeout
        self.connect_timeout = min(5.0, timeout)
        self.max_body_bytes = max_body_bytes
        self.max_redirects = max_redirects
        self.resolve_dns = resolve_dns
        self.transport = transport
        self.user_agent = f"Mozilla/5.0 (compatible; LinkGuard/1.0; +{contact_url})"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            follow_redirects=False,  # redirects are re-checked by the guard
            transport=self.transport,
            headers={
                'User-Agent': self.user_agent,
                'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
                'Accept-Language': 'en-US,en;q=0.5',
            },
        )

    async def _resolves_to_blocked_address(self, hostname: str, port: Optional[int]) -> bool:
        """Resolve hostname and check every address it maps to"""
        host = normalize_hostname(hostname)
        if not self.resolve_dns or host is None or parse_ip(host) is not None:
            return False

        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        for info in infos:
            address = info[4][0]
            if self.guard.is_blocked_address(address):
                logger.info(f"Blocked fetch: {host} resolves to internal address {address}")
                return True
        return False

    async def check_target(self, url: str) -> Optional[str]:
        """Return a rejection reason for url, or None if it may be fetched"""
        try:
            parsed = urlparse(url)
            port = parsed.port
        except ValueError:
            return "invalid_url"

        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            return "invalid_url"

        if self.guard.is_blocked(parsed.hostname, port):
            logger.info(f"Blocked fetch by hostname guard: {parsed.hostname}")
            return "blocked_by_ssrf"

        try:
            if await self._resolves_to_blocked_address(parsed.hostname, port):
                return "blocked_by_ssrf"
        except (socket.gaierror, UnicodeError) as e:
            logger.info(f"DNS resolution failed for {parsed.hostname}: {e}")
            return "dns_failure"

        return None

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Issue one guarded request and return the response.

        Guard violations raise BlockedURLError; transport errors and timeouts
        propagate so the caller can apply its own failure policy.
        """
        reason = await self.check_target(url)
        if reason:
            raise BlockedURLError(url, reason)

        async with self._client() as client:
            return await asyncio.wait_for(client.request(method, url, **kwargs), timeout=self.timeout)

    async def fetch_url(self, url: str) -> FetchResult:
        """
        Fetch URL with redirect following and security checks.
        Returns FetchResult with success/failure info and the HTML body.
        """
        start_time = time.time()
        progress = _Progress(current_url=url)

        def failure(reason: str, **extra: Any) -> FetchResult:
            return FetchResult(
                success=False,
                final_url=progress.current_url,
                error_reason=reason,
                fetch_time_ms=int((time.time() - start_time) * 1000),
                redirect_count=progress.redirect_count,
                fetch_attempted=progress.attempted,
                **extra,
            )

        try:
            return await asyncio.wait_for(
                self._fetch_with_redirects(progress, start_time, failure),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return failure("fetch_timeout")
        except httpx.HTTPError as e:
            return failure(f"fetch_error_{type(e).__name__}")
        except Exception as e:
            logger.error(f"Unexpected error fetching URL {url}: {e}")
            return failure(f"unexpected_error_{type(e).__name__}")

    async def _fetch_with_redirects(self, progress: _Progress, start_time: float, failure) -> FetchResult:
        async with self._client() as client:
            while True:
                reason = await self.check_target(progress.current_url)
                if reason:
                    return failure(reason, was_blocked=reason == "blocked_by_ssrf")

                logger.info(f"Fetching URL (redirect {progress.redirect_count}): {progress.current_url}")
                progress.attempted = True

                async with client.stream('GET', progress.current_url) as response:
                    if response.status_code in REDIRECT_CODES:
                        location = response.headers.get('Location')
                        if not location:
                            return failure("redirect_without_location", status_code=response.status_code)

                        progress.current_url = urljoin(progress.current_url, location)
                        progress.redirect_count += 1
                        if progress.redirect_count > self.max_redirects:
                            return failure("too_many_redirects", status_code=response.status_code)
                        continue

                    if not 200 <= response.status_code < 300:
                        return failure(f"http_error_{response.status_code}", status_code=response.status_code)

                    content_type = response.headers.get('content-type', '').lower()
                    if content_type and not any(ct in content_type for ct in HTML_CONTENT_TYPES):
                        return failure("not_html", status_code=response.status_code, content_type=content_type)

                    html = await self._read_limited(response)
                    return FetchResult(
                        success=True,
                        final_url=progress.current_url,
                        status_code=response.status_code,
                        content_type=content_type,
                        html=html,
                        fetch_time_ms=int((time.time() - start_time) * 1000),
                        redirect_count=progress.redirect_count,
                        fetch_attempted=True,
                    )

    async def _read_limited(self, response: httpx.Response) -> str:
        content_bytes = b""
        async for chunk in response.aiter_bytes():
            content_bytes += chunk
            if len(content_bytes) >= self.max_body_bytes:
                content_bytes = content_bytes[:self.max_body_bytes]
                break

        encoding = response.charset_encoding or 'utf-8'
        try:
            return content_bytes.decode(encoding, errors='ignore')
        except LookupError:
            return content_bytes.decode('utf-8', errors='ignore')

    async def fetch_metadata(self, url: str) -> PreviewMetadata:
        """
        Build a link preview for url. Never raises: any failure yields the
        "preview unavailable" sentinel.
        """
        if not url or not isinstance(url, str):
            return PreviewMetadata.unavailable()

        try:
            parsed = urlparse(url)
            port = parsed.port
        except (ValueError, TypeError):
            return PreviewMetadata.unavailable()

        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            return PreviewMetadata.unavailable()

        if self.guard.is_blocked(parsed.hostname, port):
            logger.info(f"Preview refused for guarded host {parsed.hostname}")
            return PreviewMetadata.unavailable()

        if normalize_hostname(parsed.hostname) in X_HOSTS:
            return synthesize_x_preview(parsed.path)

        result = await self.fetch_url(url)
        if not result.success:
            logger.info(f"Preview unavailable for {url}: {result.error_reason}")
            return PreviewMetadata.unavailable(fetch_attempted=result.fetch_attempted)

        try:
            return parse_metadata(result.html or "", result.final_url)
        except Exception as e:
            logger.warning(f"Failed to parse preview metadata for {url}: {e}")
            return PreviewMetadata.unavailable(fetch_attempted=True)


def _meta_content(soup: BeautifulSoup, key: str) -> Optional[str]:
    for attr in ('property', 'name'):
        tag = soup.find('meta', attrs={attr: key})
        if tag and tag.get('content'):
            content = re.sub(r'\s+', ' ', tag['content']).strip()
            if content:
                return content
    return None


def parse_metadata(html: str, base_url: str) -> PreviewMetadata:
    """Extract Open Graph title/image/description, with plain HTML fallbacks"""
    soup = BeautifulSoup(html, 'html.parser')

    title = _meta_content(soup, 'og:title')
    if not title and soup.title:
        title = re.sub(r'\s+', ' ', soup.title.get_text()).strip()
    title = (title or 'No Title')[:200]

    image = _meta_content(soup, 'og:image')
    if image:
        image = urljoin(base_url, image)
        if urlparse(image).scheme not in ('http', 'https'):
            image = None

    description = _meta_content(soup, 'og:description') or _meta_content(soup, 'description') or ''

    return PreviewMetadata(
        title=title,
        image=image,
        description=description[:500],
        fetch_attempted=True,
        available=True,
    )


def synthesize_x_preview(path: str) -> PreviewMetadata:
    """
    X/Twitter blocks generic scraping, so the preview is derived from the
    URL path alone: /<handle>/status/<id>.
    """
    parts = [p for p in (path or '').split('/') if p]
    title = '𝕏 Post'
    description = 'View post on X (formerly Twitter)'

    if parts and parts[0].lower() not in X_RESERVED_PATHS:
        title = f'Post by @{parts[0]}'
        if len(parts) >= 3 and parts[1] == 'status':
            description = 'View this post on X'

    return PreviewMetadata(
        title=title,
        image=X_LOGO_URL,
        description=description,
        fetch_attempted=False,
        available=True,
    )
