"""Data models for listing publish moderation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ModerationDecision(Enum):
    """Normalized outcome of a moderation run."""

    CLEAN = "clean"
    FLAGGED = "flagged"
    REVIEW_NEEDED = "review_required"


class ModerationSeverity(Enum):
    """Policy severity of a moderation run or a single violation."""

    CLEAN = "clean"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ModerationSource(Enum):
    """Why a given decision was produced."""

    AI = "ai"
    CACHE = "cache"
    FALLBACK_ERROR = "fallback_error"
    IMAGE_COVERAGE_GATE = "image_coverage_gate"


class ListingStatus(Enum):
    """Visibility lifecycle of a listing."""

    DRAFT = "draft"
    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"


class ListingModerationStatus(Enum):
    """Moderation lifecycle stamped on listing rows."""

    NOT_REVIEWED = "not_reviewed"
    CLEAN = "clean"
    PENDING_REVIEW = "pending_review"
    FLAGGED = "flagged"
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"


# Summaries shown to sellers. Kept neutral so they do not help tune evasion.
UNAVAILABLE_SUMMARY = "Moderation service is unavailable. Listing sent for manual review."
COVERAGE_SUMMARY = (
    "We couldn't analyze enough listing images automatically. Listing sent for manual review."
)
DELAYED_SUMMARY = "Publishing is taking longer than usual. Listing sent for manual review."


@dataclass
class ModerationInput:
    """Content submitted for moderation. Transient, never persisted."""

    title: str
    description: str
    image_urls: list[str] = field(default_factory=list)


@dataclass
class ModerationViolation:
    """A single policy hit."""

    code: str
    category: str
    severity: ModerationSeverity
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "category": self.category,
            "severity": self.severity.value,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ModerationViolation:
        return cls(
            code=d.get("code", ""),
            category=d.get("category", ""),
            severity=ModerationSeverity(d.get("severity", "medium")),
            reason=d.get("reason", ""),
        )


@dataclass
class ModerationResult:
    """Normalized moderation output.

    ``raw_response`` is kept for audit only and is never cached.
    """

    decision: ModerationDecision
    severity: ModerationSeverity
    flag_profile: bool = False
    violations: list[ModerationViolation] = field(default_factory=list)
    summary: str = ""
    source: ModerationSource = ModerationSource.AI
    model: str = ""
    raw_response: str = ""

    def is_blocking(self) -> bool:
        """Return *True* if publication must be held back."""
        return self.decision in (ModerationDecision.FLAGGED, ModerationDecision.REVIEW_NEEDED)

    def to_dict(self, include_raw: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "decision": self.decision.value,
            "severity": self.severity.value,
            "flag_profile": self.flag_profile,
            "violations": [v.to_dict() for v in self.violations],
            "summary": self.summary,
            "source": self.source.value,
            "model": self.model,
        }
        if include_raw:
            data["raw_response"] = self.raw_response
        return data

    @classmethod
    def from_dict(cls, d: dict) -> ModerationResult:
        return cls(
            decision=ModerationDecision(d["decision"]),
            severity=ModerationSeverity(d["severity"]),
            flag_profile=bool(d.get("flag_profile", False)),
            violations=[ModerationViolation.from_dict(v) for v in d.get("violations", [])],
            summary=d.get("summary", ""),
            source=ModerationSource(d.get("source", "ai")),
            model=d.get("model", ""),
            raw_response=d.get("raw_response", ""),
        )


def fallback_result(summary: str) -> ModerationResult:
    """Fail-closed result used whenever the classifier cannot be trusted."""
    return ModerationResult(
        decision=ModerationDecision.REVIEW_NEEDED,
        severity=ModerationSeverity.HIGH,
        flag_profile=False,
        violations=[],
        summary=summary,
        source=ModerationSource.FALLBACK_ERROR,
    )


@dataclass
class Listing:
    """The subset of a marketplace listing this pipeline reads and stamps."""

    id: int
    title: str
    description: str = ""
    user_id: str = ""
    image_refs: list[str] = field(default_factory=list)
    status: ListingStatus = ListingStatus.DRAFT
    moderation_status: ListingModerationStatus = ListingModerationStatus.NOT_REVIEWED
    moderation_severity: Optional[ModerationSeverity] = None
    moderation_summary: str = ""
    moderation_flag_profile: bool = False
    moderation_fingerprint: str = ""
    moderation_checked_at: Optional[datetime] = None
    moderated_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "user_id": self.user_id,
            "image_refs": list(self.image_refs),
            "status": self.status.value,
            "moderation_status": self.moderation_status.value,
            "moderation_severity": (
                self.moderation_severity.value if self.moderation_severity else None
            ),
            "moderation_summary": self.moderation_summary,
            "moderation_flag_profile": self.moderation_flag_profile,
            "moderation_fingerprint": self.moderation_fingerprint,
            "moderation_checked_at": (
                self.moderation_checked_at.isoformat() if self.moderation_checked_at else None
            ),
            "moderated_by": self.moderated_by,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Listing:
        severity = d.get("moderation_severity")
        checked_at = d.get("moderation_checked_at")
        return cls(
            id=int(d["id"]),
            title=d.get("title", ""),
            description=d.get("description", ""),
            user_id=d.get("user_id", ""),
            image_refs=list(d.get("image_refs", [])),
            status=ListingStatus(d.get("status", "draft")),
            moderation_status=ListingModerationStatus(
                d.get("moderation_status", "not_reviewed")
            ),
            moderation_severity=ModerationSeverity(severity) if severity else None,
            moderation_summary=d.get("moderation_summary", ""),
            moderation_flag_profile=bool(d.get("moderation_flag_profile", False)),
            moderation_fingerprint=d.get("moderation_fingerprint", ""),
            moderation_checked_at=datetime.fromisoformat(checked_at) if checked_at else None,
            moderated_by=d.get("moderated_by", ""),
        )


@dataclass
class ViolationEvent:
    """One deduplicated (user, fingerprint) flagged occurrence."""

    id: str
    user_id: str
    content_fingerprint: str
    decision: ModerationDecision
    severity: ModerationSeverity
    listing_id: Optional[int] = None
    violations: list[ModerationViolation] = field(default_factory=list)
    summary: str = ""
    created_at: str = ""


@dataclass
class ModerationAuditRecord:
    """Persisted evidence of a single evaluation."""

    id: str
    content_fingerprint: str
    result: ModerationResult
    listing_id: Optional[int] = None
    user_id: Optional[str] = None
    created_at: str = ""


@dataclass
class ModerationExecution:
    """A moderation run together with the side effects it caused."""

    result: ModerationResult
    fingerprint: str
    from_cache: bool = False
    violation_incremented: bool = False
    violation_count: int = 0
    user_flagged: bool = False
