# linkguard/services/reputation_gateway.py
import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from ..config import CheckMode, Settings
from ..models import ClassificationVerdict
from .url_fetcher import SafeFetcher

logger = logging.getLogger(__name__)

SAFE_BROWSING_ENDPOINT = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
SAFE_BROWSING_THREAT_TYPES = ["MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE"]

JSON_OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')

CLASSIFIER_PROMPT = (
    "Analyze URL: {url}. Is it safe (YouTube, Google, news) or unsafe "
    "(porn, gambling, scam)? JSON only: {{\"safe\":true/false,\"reason\":\"\"}}"
)


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull the first {...} block out of free-form model output"""
    if not text:
        return None
    match = JSON_OBJECT_PATTERN.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class ReputationGateway:
    """
    Second-opinion checks run after the heuristic classifier accepts a link.

    Both checks fail open: a vendor outage, timeout, non-2xx answer or
    unparseable body yields "safe" so legitimate submissions are never
    blocked by a third party being down.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: SafeFetcher,
        ai_client: Optional[Any] = None,
        timeout: float = 10.0,
    ):
        self.fetcher = fetcher
        self.timeout = timeout
        self.safe_browsing_key = settings.safe_browsing_api_key
        self.blocklist_mode = settings.safe_browsing
        self.model = settings.openai_model

        if ai_client is None and settings.ai_classifier is CheckMode.ENABLED:
            ai_client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.ai_client = ai_client
        self.ai_mode = CheckMode.ENABLED if ai_client is not None else CheckMode.DISABLED

    async def check_blocklist(self, url: str) -> Dict[str, Any]:
        if self.blocklist_mode is CheckMode.DISABLED:
            return {"safe": True}

        payload = {
            "client": {"clientId": "linkguard", "clientVersion": "1.0.0"},
            "threatInfo": {
                "threatTypes": SAFE_BROWSING_THREAT_TYPES,
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }

        try:
            response = await self.fetcher.request(
                'POST',
                SAFE_BROWSING_ENDPOINT,
                json=payload,
                headers={'X-Goog-Api-Key': self.safe_browsing_key},
            )
            if not response.is_success:
                logger.warning(f"Safe Browsing returned HTTP {response.status_code}, failing open")
                return {"safe": True}

            data = response.json()
            matches = data.get('matches') or [] if isinstance(data, dict) else []
            if matches:
                threat = matches[0].get('threatType', 'UNKNOWN')
                logger.info(f"Safe Browsing match for {url}: {threat}")
                return {"safe": False, "threat": threat}

            return {"safe": True}

        except Exception as e:
            logger.warning(f"Safe Browsing check failed, failing open: {type(e).__name__}: {e}")
            return {"safe": True}

    async def check_with_generative_classifier(self, url: str) -> Dict[str, Any]:
        if self.ai_mode is CheckMode.DISABLED:
            return {"safe": True, "reason": ""}

        try:
            response = await asyncio.wait_for(
                self.ai_client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": CLASSIFIER_PROMPT.format(url=url)}],
                    max_tokens=200,
                    temperature=0.1,
                ),
                timeout=self.timeout,
            )

            text = response.choices[0].message.content
            result = extract_json_object(text)
            if result is None:
                raise ValueError("no JSON object in classifier output")

            return {
                "safe": result.get('safe') is not False,
                "reason": str(result.get('reason') or ''),
            }

        except Exception as e:
            logger.warning(f"Generative classifier failed, failing open: {type(e).__name__}: {e}")
            return {"safe": True, "reason": "AI unavailable"}

    async def review(self, url: str) -> ClassificationVerdict:
        """Run the enabled checks in order; the first unsafe verdict wins"""
        if self.blocklist_mode is CheckMode.ENABLED:
            blocklist = await self.check_blocklist(url)
            if not blocklist["safe"]:
                return ClassificationVerdict.reject(
                    f"Blocked by Safe Browsing: {blocklist.get('threat', 'UNKNOWN')}",
                    source="blocklist",
                )

        if self.ai_mode is CheckMode.DISABLED:
            source = "blocklist" if self.blocklist_mode is CheckMode.ENABLED else "heuristic"
            return ClassificationVerdict.accept(source=source)

        ai_result = await self.check_with_generative_classifier(url)
        return ClassificationVerdict(
            safe=ai_result["safe"],
            reason=ai_result["reason"] or None,
            source="ai-classifier",
        )
