"""Listing moderation orchestration.

Coordinates the decision cache, the AI moderation client, audit,
the listing state machine, violation escalation and seller notifications.
All collaborators are injected; there is no module-level state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from listing_guard.moderation.client import ModerationClient
from listing_guard.moderation.fingerprint import build_content_fingerprint
from listing_guard.moderation.models import (
    DELAYED_SUMMARY,
    Listing,
    ListingModerationStatus,
    ListingStatus,
    ModerationDecision,
    ModerationExecution,
    ModerationInput,
    ModerationResult,
    ModerationSeverity,
    ModerationSource,
    fallback_result,
)
from listing_guard.stores.base import (
    AuditRepository,
    DecisionCache,
    EmailSender,
    ListingRepository,
    Notifier,
    UserRepository,
    ViolationRepository,
)

log = logging.getLogger("listing_guard.moderation.orchestrator")

DEFAULT_CACHE_TTL = 2 * 60 * 60
DEFAULT_AUTO_FLAG_THRESHOLD = 3

PENDING_REVIEW_TITLE = "Listing pending review"
PENDING_REVIEW_BODY = "Publishing is taking longer than usual. Our team is reviewing your listing."


class ListingModerationService:
    """Evaluates listing content and applies the outcome to the listing.

    Parameters
    ----------
    moderation_client : ModerationClient | None
        AI client. When *None* every cache miss becomes a fallback review.
    cache, audit, violations :
        Usually the same :class:`~listing_guard.stores.ModerationStore`.
    listings : ListingRepository
        Receives the single-row moderation outcome update.
    users, email, notifier :
        Optional; escalation and notifications are skipped when absent.
    """

    def __init__(
        self,
        moderation_client: Optional[ModerationClient],
        cache: DecisionCache,
        audit: AuditRepository,
        violations: ViolationRepository,
        listings: ListingRepository,
        users: Optional[UserRepository] = None,
        email: Optional[EmailSender] = None,
        notifier: Optional[Notifier] = None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        auto_flag_threshold: int = DEFAULT_AUTO_FLAG_THRESHOLD,
    ) -> None:
        self._client = moderation_client
        self._cache = cache
        self._audit = audit
        self._violations = violations
        self._listings = listings
        self._users = users
        self._email = email
        self._notifier = notifier
        self.cache_ttl = cache_ttl if cache_ttl > 0 else DEFAULT_CACHE_TTL
        self.auto_flag_threshold = auto_flag_threshold if auto_flag_threshold > 0 else DEFAULT_AUTO_FLAG_THRESHOLD

    # -- evaluation ----------------------------------------------------------

    async def evaluate(
        self, title: str, description: str, image_refs: Sequence[str], fingerprint: str
    ) -> tuple[ModerationResult, bool]:
        """Return ``(result, from_cache)`` for the given content.

        Only ``source=ai`` results are cached; fallback and gate results
        describe infrastructure, not content.
        """
        cached = self._cache.get_cached_decision(fingerprint, datetime.now(timezone.utc))
        if cached is not None:
            cached.source = ModerationSource.CACHE
            return cached, True

        if self._client is None:
            return fallback_result(DELAYED_SUMMARY), False

        result, err = await self._client.moderate(
            ModerationInput(title=title, description=description, image_urls=list(image_refs))
        )
        if err is not None:
            log.warning("AI moderation degraded to %s: %s", result.source.value, err)

        if result.source == ModerationSource.AI:
            self._cache.upsert_cached_decision(fingerprint, result, self.cache_ttl)
        return result, False

    async def evaluate_and_apply(
        self,
        listing: Listing,
        user_id: str = "",
        user_email: str = "",
        image_refs: Optional[Sequence[str]] = None,
    ) -> ModerationExecution:
        """Moderate *listing* and persist the outcome.

        Persistence errors propagate; notification failures do not.
        """
        refs = list(listing.image_refs if image_refs is None else image_refs)
        fingerprint = build_content_fingerprint(listing.title, listing.description, refs)

        result, from_cache = await self.evaluate(listing.title, listing.description, refs, fingerprint)
        execution = ModerationExecution(result=result, fingerprint=fingerprint, from_cache=from_cache)

        user_id = user_id.strip()
        self._audit.insert_audit(listing.id, user_id or None, fingerprint, result)

        checked_at = datetime.now(timezone.utc)
        if result.decision == ModerationDecision.CLEAN:
            status, moderation_status = ListingStatus.ACTIVE, ListingModerationStatus.CLEAN
        elif result.decision == ModerationDecision.FLAGGED:
            status, moderation_status = ListingStatus.PENDING_REVIEW, ListingModerationStatus.FLAGGED
        else:
            status, moderation_status = ListingStatus.PENDING_REVIEW, ListingModerationStatus.ERROR

        self._listings.update_moderation_outcome(
            listing.id, status, moderation_status, result, fingerprint, checked_at
        )
        listing.status = status
        listing.moderation_status = moderation_status

        if result.decision == ModerationDecision.FLAGGED and user_id:
            self._escalate(execution, listing, user_id)
            await self._send_flag_notifications(user_id, user_email, listing, result)

        listing.moderation_severity = result.severity
        listing.moderation_summary = result.summary
        listing.moderation_flag_profile = result.flag_profile
        listing.moderation_fingerprint = fingerprint
        listing.moderation_checked_at = checked_at
        return execution

    # -- escalation ----------------------------------------------------------

    def _escalate(self, execution: ModerationExecution, listing: Listing, user_id: str) -> None:
        result = execution.result
        outcome = self._violations.record_violation_if_new(
            user_id, listing.id, execution.fingerprint, result, self.auto_flag_threshold
        )
        execution.violation_incremented = outcome.inserted
        execution.violation_count = outcome.count
        execution.user_flagged = outcome.threshold_reached

        # Severity trumps the count threshold.
        if result.severity == ModerationSeverity.CRITICAL or result.flag_profile:
            execution.user_flagged = True
            if self._users is not None:
                self._users.set_flag_status(user_id, True)

        if execution.user_flagged:
            log.warning("User %s flagged (violations=%d)", user_id, execution.violation_count)

    # -- notifications -------------------------------------------------------

    async def _send_flag_notifications(
        self, user_id: str, user_email: str, listing: Listing, result: ModerationResult
    ) -> None:
        if user_email.strip() and self._email is not None:
            try:
                # SMTP is blocking; keep it off the event loop.
                await asyncio.to_thread(
                    self._email.send_moderation_blocked_email,
                    user_email,
                    listing.title,
                    result.summary,
                    result.severity.value,
                )
            except Exception as exc:
                log.warning("Moderation email failed for listing %s: %s", listing.id, exc)

        if self._notifier is None:
            return
        payload = {
            "type": "system",
            "title": PENDING_REVIEW_TITLE,
            "body": PENDING_REVIEW_BODY,
            "listing_id": listing.id,
            "metadata": {
                "moderationStatus": ListingModerationStatus.PENDING_REVIEW.value,
                "severity": result.severity.value,
                "summary": result.summary,
                "violations": [v.to_dict() for v in result.violations],
            },
        }
        try:
            self._notifier.notify(user_id, payload, True)
        except Exception as exc:
            log.warning("Pending-review notification failed for listing %s: %s", listing.id, exc)
