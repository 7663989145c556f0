# linkguard/config.py
import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_RULES_PATH = _PACKAGE_DIR / "data" / "filter_rules.json"


class CheckMode(str, Enum):
    """Whether an optional external check runs at all"""
    DISABLED = "disabled"
    ENABLED = "enabled"

    @classmethod
    def from_credential(cls, credential: Optional[str]) -> "CheckMode":
        return cls.ENABLED if credential else cls.DISABLED


class GuardMode(str, Enum):
    """Outbound fetch policy. Exactly one is active per deployment."""
    DENY_LIST = "deny"
    ALLOW_LIST = "allow"


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env_str(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


def _env_list(name: str) -> Tuple[str, ...]:
    raw = _env_str(name)
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration, resolved once at startup.

    Optional third-party checks are turned into explicit CheckMode values
    here; request handlers never look at raw credentials to decide whether
    a check runs.
    """
    virustotal_api_key: str = ""
    urlscan_api_key: str = ""
    safe_browsing_api_key: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    recaptcha_secret_key: str = ""
    recaptcha_min_score: float = 0.5
    admin_password: str = ""

    whitelist_mode: bool = False
    filter_rules_path: Path = DEFAULT_RULES_PATH

    guard_mode: GuardMode = GuardMode.DENY_LIST
    allowed_hosts: Tuple[str, ...] = field(default_factory=tuple)

    fetch_timeout: float = 10.0
    fetch_resolve_dns: bool = True
    fetch_contact_url: str = "https://github.com/linkguard/linkguard"

    scanner_timeout: float = 30.0
    urlscan_poll_attempts: int = 2
    urlscan_poll_interval: float = 10.0

    submit_rate_limit: int = 10
    report_rate_limit: int = 5
    admin_rate_limit: int = 20

    log_level: str = "INFO"
    debug: bool = False

    @property
    def virustotal(self) -> CheckMode:
        return CheckMode.from_credential(self.virustotal_api_key)

    @property
    def urlscan(self) -> CheckMode:
        return CheckMode.from_credential(self.urlscan_api_key)

    @property
    def safe_browsing(self) -> CheckMode:
        return CheckMode.from_credential(self.safe_browsing_api_key)

    @property
    def ai_classifier(self) -> CheckMode:
        return CheckMode.from_credential(self.openai_api_key)

    @property
    def captcha(self) -> CheckMode:
        return CheckMode.from_credential(self.recaptcha_secret_key)

    @property
    def admin(self) -> CheckMode:
        return CheckMode.from_credential(self.admin_password)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the environment (and a .env file if present)"""
        load_dotenv(env_file)

        raw_mode = _env_str("FETCH_GUARD_MODE", GuardMode.DENY_LIST.value).lower()
        try:
            guard_mode = GuardMode(raw_mode)
        except ValueError:
            logger.warning(f"Unknown FETCH_GUARD_MODE={raw_mode!r}, using deny-list mode")
            guard_mode = GuardMode.DENY_LIST

        rules_path = _env_str("FILTER_RULES_PATH")

        return cls(
            virustotal_api_key=_env_str("VIRUSTOTAL_API_KEY"),
            urlscan_api_key=_env_str("URLSCAN_API_KEY"),
            safe_browsing_api_key=_env_str("SAFE_BROWSING_API_KEY"),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4o-mini"),
            recaptcha_secret_key=_env_str("RECAPTCHA_SECRET_KEY"),
            recaptcha_min_score=_env_float("RECAPTCHA_MIN_SCORE", 0.5),
            admin_password=_env_str("ADMIN_PASSWORD"),
            whitelist_mode=_env_bool("FILTER_WHITELIST_MODE"),
            filter_rules_path=Path(rules_path) if rules_path else DEFAULT_RULES_PATH,
            guard_mode=guard_mode,
            allowed_hosts=_env_list("FETCH_ALLOWED_HOSTS"),
            fetch_timeout=_env_float("FETCH_TIMEOUT", 10.0),
            fetch_resolve_dns=_env_bool("FETCH_RESOLVE_DNS", True),
            fetch_contact_url=_env_str("FETCH_CONTACT_URL", "https://github.com/linkguard/linkguard"),
            scanner_timeout=_env_float("SCANNER_TIMEOUT", 30.0),
            urlscan_poll_attempts=_env_int("URLSCAN_POLL_ATTEMPTS", 2),
            urlscan_poll_interval=_env_float("URLSCAN_POLL_INTERVAL", 10.0),
            submit_rate_limit=_env_int("SUBMIT_RATE_LIMIT", 10),
            report_rate_limit=_env_int("REPORT_RATE_LIMIT", 5),
            admin_rate_limit=_env_int("ADMIN_RATE_LIMIT", 20),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            debug=_env_bool("DEBUG"),
        )

    def describe(self) -> dict:
        """Non-secret summary of which checks are active"""
        return {
            "virustotal": self.virustotal.value,
            "urlscan": self.urlscan.value,
            "safe_browsing": self.safe_browsing.value,
            "ai_classifier": self.ai_classifier.value,
            "captcha": self.captcha.value,
            "admin": self.admin.value,
            "whitelist_mode": self.whitelist_mode,
            "guard_mode": self.guard_mode.value,
        }
