# linkguard/services/heuristic_classifier.py
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Pattern, Tuple, Union
from urllib.parse import urlparse

from ..config import DEFAULT_RULES_PATH
from ..models import ClassificationVerdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterRules:
    """
    Keyword lists and spam shapes used by the classifier.

    This is tuning data, kept in a JSON file so it can be replaced without
    touching the classification logic.
    """
    whitelist: Tuple[str, ...]
    spam_patterns: Tuple[Pattern[str], ...]
    spam_threshold: int
    adult_tlds: Tuple[str, ...]
    gambling_tlds: Tuple[str, ...]
    gambling_domain_patterns: Tuple[Pattern[str], ...]
    adult_keywords: Tuple[str, ...]
    gambling_keywords: Tuple[str, ...]
    scam_keywords: Tuple[str, ...]
    version: str = "unknown"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterRules":
        spam = data.get('spam', {})
        tlds = data.get('blocked_tlds', {})
        keywords = data.get('keywords', {})

        def lowered(values) -> Tuple[str, ...]:
            return tuple(str(v).lower() for v in values)

        return cls(
            whitelist=lowered(data.get('whitelist', [])),
            spam_patterns=tuple(re.compile(p) for p in spam.get('patterns', [])),
            spam_threshold=int(spam.get('threshold', 2)),
            adult_tlds=lowered(tlds.get('adult', [])),
            gambling_tlds=lowered(tlds.get('gambling', [])),
            gambling_domain_patterns=tuple(re.compile(p) for p in data.get('gambling_domain_patterns', [])),
            adult_keywords=lowered(keywords.get('adult', [])),
            gambling_keywords=lowered(keywords.get('gambling', [])),
            scam_keywords=lowered(keywords.get('scam', [])),
            version=str(data.get('version', 'unknown')),
        )

    @classmethod
    def load(cls, path: Union[str, Path, None] = None) -> "FilterRules":
        """Load rule data from a JSON file (the packaged defaults if no path)"""
        file_path = Path(path) if path else DEFAULT_RULES_PATH
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                rules = cls.from_dict(json.load(f))
        except (OSError, ValueError, re.error) as e:
            logger.error(f"Failed to load filter rules from {file_path}: {e}")
            raise

        logger.info(
            f"Loaded filter rules v{rules.version} from {file_path}: "
            f"{len(rules.adult_keywords)} adult, {len(rules.gambling_keywords)} gambling, "
            f"{len(rules.scam_keywords)} scam keywords"
        )
        return rules


@dataclass(frozen=True)
class Submission:
    """Lowercased views of one (url, message) pair"""
    url: str
    message: str
    hostname: str

    @property
    def combined(self) -> str:
        return f"{self.url} {self.message}"


@dataclass(frozen=True)
class Rule:
    name: str
    check: Callable[[Submission], Optional[str]]


class HeuristicClassifier:
    """
    Local, synchronous accept/reject classifier for submitted links.

    Rules run in a fixed order and the first one that returns a reason
    rejects the submission. The order is part of the contract: it decides
    which reason string a caller sees when several rules would match.

    1. whitelist        (only in whitelist mode)
    2. spam_score       cumulative regex matches >= threshold
    3. blocked_tld      adult / gambling TLDs
    4. gambling_domain  brand+digits hostnames (slot88.)
    5. adult_keyword
    6. gambling_keyword
    7. scam_keyword
    """

    def __init__(self, rules: FilterRules, whitelist_mode: bool = False):
        self.filter_rules = rules
        self.whitelist_mode = whitelist_mode

        ordered = []
        if whitelist_mode:
            ordered.append(Rule('whitelist', self._check_whitelist))
        ordered.extend([
            Rule('spam_score', self._check_spam_score),
            Rule('blocked_tld', self._check_tld),
            Rule('gambling_domain', self._check_gambling_domain),
            Rule('adult_keyword', self._keyword_check(rules.adult_keywords, 'Adult content')),
            Rule('gambling_keyword', self._keyword_check(rules.gambling_keywords, 'Gambling')),
            Rule('scam_keyword', self._keyword_check(rules.scam_keywords, 'Scam')),
        ])
        self.rules: Tuple[Rule, ...] = tuple(ordered)

    @property
    def rule_names(self) -> Tuple[str, ...]:
        return tuple(rule.name for rule in self.rules)

    def classify(self, url: str, message: Optional[str] = "") -> ClassificationVerdict:
        submission = self._prepare(url, message or "")

        for rule in self.rules:
            reason = rule.check(submission)
            if reason:
                logger.info(f"🚫 Blocked by {rule.name}: {reason}")
                return ClassificationVerdict.reject(reason, source="heuristic")

        return ClassificationVerdict.accept(source="heuristic")

    def spam_score(self, url: str, message: Optional[str] = "") -> int:
        return self._spam_score(self._prepare(url, message or ""))

    @staticmethod
    def _prepare(url: str, message: str) -> Submission:
        try:
            hostname = urlparse(url).hostname or ''
        except ValueError:
            hostname = ''
        return Submission(url=url.lower(), message=message.lower(), hostname=hostname.lower())

    def _spam_score(self, submission: Submission) -> int:
        text = submission.combined
        return sum(len(pattern.findall(text)) for pattern in self.filter_rules.spam_patterns)

    # Rule checks: each returns a rejection reason or None

    def _check_whitelist(self, submission: Submission) -> Optional[str]:
        for domain in self.filter_rules.whitelist:
            if domain in submission.url or domain in submission.message:
                return None
        return "Not in whitelist"

    def _check_spam_score(self, submission: Submission) -> Optional[str]:
        if self._spam_score(submission) >= self.filter_rules.spam_threshold:
            return "Spam pattern detected"
        return None

    def _check_tld(self, submission: Submission) -> Optional[str]:
        target = submission.hostname or submission.url
        for tld in self.filter_rules.adult_tlds:
            if target.endswith(tld):
                return f"Adult TLD ({tld})"
        for tld in self.filter_rules.gambling_tlds:
            if target.endswith(tld):
                return f"Gambling TLD ({tld})"
        return None

    def _check_gambling_domain(self, submission: Submission) -> Optional[str]:
        # Trailing dot so a pattern like "slot\d{2,}\." also matches the final label
        hostname = f"{submission.hostname}." if submission.hostname else ""
        for pattern in self.filter_rules.gambling_domain_patterns:
            if pattern.search(hostname):
                return "Gambling domain pattern"
        return None

    @staticmethod
    def _keyword_check(keywords: Tuple[str, ...], label: str) -> Callable[[Submission], Optional[str]]:
        def check(submission: Submission) -> Optional[str]:
            text = submission.combined
            for keyword in keywords:
                if keyword in text:
                    return f"{label} ({keyword})"
            return None
        return check
