"""Replay protection for the publish endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from listing_guard.stores.base import IdempotencyRepository

DEFAULT_IDEMPOTENCY_TTL = 24 * 60 * 60


class IdempotencyConflictError(ValueError):
    """The idempotency key was already used with a different payload."""


@dataclass
class IdempotencyCheck:
    response_body: Any = None
    response_status: int = 0
    should_replay: bool = False


class IdempotencyGuard:
    """Stores publish responses per (user, key) and replays them on retry."""

    def __init__(self, store: IdempotencyRepository, ttl: float = DEFAULT_IDEMPOTENCY_TTL) -> None:
        self._store = store
        self.ttl = ttl if ttl > 0 else DEFAULT_IDEMPOTENCY_TTL

    def check(
        self,
        user_id: str,
        key: str,
        request_fingerprint: str,
        now: Optional[datetime] = None,
    ) -> IdempotencyCheck:
        """Return the stored response if this is a replay of the same content.

        Raises :class:`IdempotencyConflictError` if the key was used for
        different content. A blank user or key disables replay.
        """
        if not user_id.strip() or not key.strip():
            return IdempotencyCheck()

        record = self._store.get_idempotency_record(user_id, key, now or datetime.now(timezone.utc))
        if record is None:
            return IdempotencyCheck()

        if record.request_fingerprint.strip() != request_fingerprint.strip():
            raise IdempotencyConflictError("idempotency key already used with different payload")

        return IdempotencyCheck(
            response_body=record.response_body,
            response_status=record.response_status,
            should_replay=True,
        )

    def store(self, user_id: str, key: str, request_fingerprint: str, status: int, body: Any) -> None:
        """Persist the response returned for this publish attempt."""
        if not user_id.strip() or not key.strip():
            return
        self._store.save_idempotency_record(user_id, key, request_fingerprint, status, body, self.ttl)
