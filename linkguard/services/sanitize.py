# linkguard/services/sanitize.py
import html
import re
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

MAX_INPUT_LENGTH = 1000

DANGEROUS_SCHEMES = ('javascript:', 'data:', 'vbscript:', 'file:', 'about:')

_SCRIPT_BLOCK = re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE)


def escape_html(value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        return ''
    return html.escape(value, quote=True).replace('&#x27;', '&#039;')


def strip_tags(value: str) -> str:
    without_scripts = _SCRIPT_BLOCK.sub('', value)
    return BeautifulSoup(without_scripts, 'html.parser').get_text()


def sanitize_input(value: Optional[str], max_length: int = MAX_INPUT_LENGTH) -> str:
    """Strip markup, escape what is left and cap the length"""
    if not value or not isinstance(value, str):
        return ''
    return escape_html(strip_tags(value))[:max_length]


def sanitize_url(url: Optional[str]) -> Optional[str]:
    """Return the trimmed URL if it is a well-formed http(s) URL, else None"""
    if not url or not isinstance(url, str):
        return None

    url = url.strip()
    lowered = url.lower()
    if lowered.startswith(DANGEROUS_SCHEMES):
        return None
    if not lowered.startswith(('http://', 'https://')):
        return None

    try:
        parsed = urlparse(url)
        if parsed.port == 0:
            return None
    except ValueError:
        return None

    if parsed.scheme.lower() not in ('http', 'https') or not parsed.hostname:
        return None
    return url
