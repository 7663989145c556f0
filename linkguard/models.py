# linkguard/models.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

VerdictSource = Literal["heuristic", "blocklist", "ai-classifier"]
SecurityStatus = Literal["safe", "suspicious", "malicious", "pending", "error"]

PREVIEW_UNAVAILABLE_TITLE = "Link Preview Unavailable"
PREVIEW_UNAVAILABLE_DESCRIPTION = "Unable to fetch preview. Click to view the link."


@dataclass(frozen=True)
class ClassificationVerdict:
    """Accept/reject decision for a submitted URL"""
    safe: bool
    reason: Optional[str] = None
    source: VerdictSource = "heuristic"

    @classmethod
    def accept(cls, source: VerdictSource = "heuristic", reason: Optional[str] = None) -> "ClassificationVerdict":
        return cls(safe=True, reason=reason, source=source)

    @classmethod
    def reject(cls, reason: str, source: VerdictSource = "heuristic") -> "ClassificationVerdict":
        return cls(safe=False, reason=reason, source=source)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"safe": self.safe, "source": self.source}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class ScanResult:
    """Outcome of one security scan invocation"""
    status: SecurityStatus
    per_source_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0

    @classmethod
    def failed(cls, error: str, duration_ms: int = 0) -> "ScanResult":
        """Result recorded when the scan itself could not run"""
        return cls(
            status="error",
            per_source_results={"error": {"status": "error", "error": error}},
            duration_ms=duration_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "per_source_results": self.per_source_results,
            "scanned_at": self.scanned_at.isoformat(),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class PreviewMetadata:
    """
    Link preview payload.

    fetch_attempted is True only when an outbound request was actually
    issued for the target URL; available is False for the sentinel preview.
    """
    title: str
    image: Optional[str] = None
    description: str = ""
    fetch_attempted: bool = False
    available: bool = True

    @classmethod
    def unavailable(cls, fetch_attempted: bool = False) -> "PreviewMetadata":
        return cls(
            title=PREVIEW_UNAVAILABLE_TITLE,
            image=None,
            description=PREVIEW_UNAVAILABLE_DESCRIPTION,
            fetch_attempted=fetch_attempted,
            available=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "image": self.image,
            "description": self.description,
            "fetch_attempted": self.fetch_attempted,
            "available": self.available,
        }


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0
    limit: int = 0
    remaining: int = 0
