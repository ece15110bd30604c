"""Collaborator contracts consumed by the moderation pipeline.

The file-backed stores in this package implement these; a database-backed
implementation only has to honour the same signatures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol

if TYPE_CHECKING:
    from listing_guard.moderation.models import (
        ListingModerationStatus,
        ListingStatus,
        ModerationResult,
    )


@dataclass
class IdempotencyRecord:
    """A stored publish response, replayed for retries with the same key."""

    request_fingerprint: str
    response_status: int
    response_body: Any
    expires_at: datetime


@dataclass
class ViolationOutcome:
    """Result of a deduplicated violation insert."""

    inserted: bool
    count: int
    threshold_reached: bool


class DecisionCache(Protocol):
    def get_cached_decision(self, fingerprint: str, now: datetime) -> Optional[ModerationResult]: ...

    def upsert_cached_decision(self, fingerprint: str, result: ModerationResult, ttl: float) -> None: ...


class IdempotencyRepository(Protocol):
    def get_idempotency_record(self, user_id: str, key: str, now: datetime) -> Optional[IdempotencyRecord]: ...

    def save_idempotency_record(
        self,
        user_id: str,
        key: str,
        request_fingerprint: str,
        response_status: int,
        response_body: Any,
        ttl: float,
    ) -> None: ...


class AuditRepository(Protocol):
    def insert_audit(
        self,
        listing_id: Optional[int],
        user_id: Optional[str],
        fingerprint: str,
        result: ModerationResult,
    ) -> None: ...


class ViolationRepository(Protocol):
    def record_violation_if_new(
        self,
        user_id: str,
        listing_id: Optional[int],
        fingerprint: str,
        result: ModerationResult,
        threshold: int,
    ) -> ViolationOutcome: ...


class UserRepository(Protocol):
    def set_flag_status(self, user_id: str, flagged: bool) -> None: ...


class ListingRepository(Protocol):
    def update_moderation_outcome(
        self,
        listing_id: int,
        status: ListingStatus,
        moderation_status: ListingModerationStatus,
        result: ModerationResult,
        fingerprint: str,
        checked_at: datetime,
    ) -> None: ...


class EmailSender(Protocol):
    def send_moderation_blocked_email(self, to_email: str, title: str, summary: str, severity: str) -> None: ...


class Notifier(Protocol):
    def notify(self, user_id: str, payload: dict[str, Any], broadcast: bool = False) -> Any: ...
