"""File-based moderation persistence.

Holds the decision cache, publish idempotency records, the append-only
audit trail and deduplicated violation events under
``~/.listing_guard/moderation/``. Expired cache and idempotency rows are
ignored on read and removed by :meth:`ModerationStore.purge_expired_entries`.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from listing_guard.moderation.models import (
    ModerationAuditRecord,
    ModerationDecision,
    ModerationResult,
    ModerationSeverity,
    ModerationViolation,
    ViolationEvent,
)
from listing_guard.stores.base import IdempotencyRecord, ViolationOutcome
from listing_guard.stores.files import write_json_atomic
from listing_guard.stores.user_store import UserStore

DEFAULT_AUTO_FLAG_THRESHOLD = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _idempotency_id(user_id: str, key: str) -> str:
    return json.dumps([user_id, key])


@dataclass
class PurgeSummary:
    cache_entries: int = 0
    idempotency_records: int = 0


class ModerationStore:
    """File-backed implementation of the cache, idempotency, audit and violation contracts.

    Storage path: ``~/.listing_guard/moderation/`` with:
    - ``decision_cache.json`` -- fingerprint -> cached result + expiry
    - ``idempotency.json`` -- (user, key) -> stored publish response + expiry
    - ``audit.jsonl`` -- one line per evaluation
    - ``violations.json`` -- list of deduplicated violation events

    Violation counts live on the :class:`UserStore`.
    """

    def __init__(self, base_dir: str | Path | None = None, users: Optional[UserStore] = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".listing_guard" / "moderation"
        self._base.mkdir(parents=True, exist_ok=True)
        self._cache_path = self._base / "decision_cache.json"
        self._idempotency_path = self._base / "idempotency.json"
        self._audit_path = self._base / "audit.jsonl"
        self._violations_path = self._base / "violations.json"
        self._users = users or UserStore(self._base.parent / "users")
        self._lock = threading.RLock()

    # -- persistence ---------------------------------------------------------

    @staticmethod
    def _read_json(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        return json.loads(path.read_text())

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        write_json_atomic(path, data)

    # -- decision cache ------------------------------------------------------

    def get_cached_decision(self, fingerprint: str, now: Optional[datetime] = None) -> Optional[ModerationResult]:
        """Return the cached result for *fingerprint*, or *None* on miss or expiry."""
        if not fingerprint:
            return None
        now = now or _utcnow()
        entry = self._read_json(self._cache_path, {}).get(fingerprint)
        if not entry or datetime.fromisoformat(entry["expires_at"]) <= now:
            return None
        return ModerationResult.from_dict(entry["result"])

    def upsert_cached_decision(self, fingerprint: str, result: ModerationResult, ttl: float) -> None:
        """Keyed overwrite; the raw classifier text is not cached."""
        if not fingerprint or ttl <= 0:
            return
        now = _utcnow()
        with self._lock:
            data = self._read_json(self._cache_path, {})
            data[fingerprint] = {
                "result": result.to_dict(),
                "created_at": now.isoformat(),
                "expires_at": (now + timedelta(seconds=ttl)).isoformat(),
            }
            self._write_json(self._cache_path, data)

    # -- idempotency ---------------------------------------------------------

    def get_idempotency_record(
        self, user_id: str, key: str, now: Optional[datetime] = None
    ) -> Optional[IdempotencyRecord]:
        if not user_id or not key:
            return None
        now = now or _utcnow()
        entry = self._read_json(self._idempotency_path, {}).get(_idempotency_id(user_id, key))
        if not entry:
            return None
        expires_at = datetime.fromisoformat(entry["expires_at"])
        if expires_at <= now:
            return None
        return IdempotencyRecord(
            request_fingerprint=entry["request_fingerprint"],
            response_status=int(entry["response_status"]),
            response_body=entry["response_body"],
            expires_at=expires_at,
        )

    def save_idempotency_record(
        self,
        user_id: str,
        key: str,
        request_fingerprint: str,
        response_status: int,
        response_body: Any,
        ttl: float,
    ) -> None:
        """Store a publish response; a live record for the same key is never replaced."""
        if not user_id or not key or not request_fingerprint or ttl <= 0:
            return
        now = _utcnow()
        record_id = _idempotency_id(user_id, key)
        with self._lock:
            data = self._read_json(self._idempotency_path, {})
            existing = data.get(record_id)
            if existing and datetime.fromisoformat(existing["expires_at"]) > now:
                return
            data[record_id] = {
                "user_id": user_id,
                "idempotency_key": key,
                "request_fingerprint": request_fingerprint,
                "response_status": response_status,
                "response_body": response_body,
                "expires_at": (now + timedelta(seconds=ttl)).isoformat(),
            }
            self._write_json(self._idempotency_path, data)

    # -- audit ---------------------------------------------------------------

    def insert_audit(
        self,
        listing_id: Optional[int],
        user_id: Optional[str],
        fingerprint: str,
        result: ModerationResult,
    ) -> ModerationAuditRecord:
        """Append an audit row. I/O errors propagate to the caller."""
        record = ModerationAuditRecord(
            id=uuid.uuid4().hex[:16],
            content_fingerprint=fingerprint,
            result=result,
            listing_id=listing_id,
            user_id=user_id,
            created_at=_utcnow().isoformat(),
        )
        line = {
            "id": record.id,
            "listing_id": listing_id,
            "user_id": user_id,
            "content_fingerprint": fingerprint,
            "result": result.to_dict(include_raw=True),
            "created_at": record.created_at,
        }
        with self._lock, self._audit_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(line) + "\n")
        return record

    def get_audits(
        self,
        *,
        fingerprint: Optional[str] = None,
        listing_id: Optional[int] = None,
        limit: int = 200,
    ) -> list[ModerationAuditRecord]:
        """Return audit rows, newest first."""
        if not self._audit_path.exists():
            return []
        records: list[ModerationAuditRecord] = []
        for line in self._audit_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            d = json.loads(line)
            if fingerprint and d["content_fingerprint"] != fingerprint:
                continue
            if listing_id is not None and d.get("listing_id") != listing_id:
                continue
            records.append(
                ModerationAuditRecord(
                    id=d["id"],
                    content_fingerprint=d["content_fingerprint"],
                    result=ModerationResult.from_dict(d["result"]),
                    listing_id=d.get("listing_id"),
                    user_id=d.get("user_id"),
                    created_at=d["created_at"],
                )
            )
        records.reverse()
        return records[:limit]

    # -- violations ----------------------------------------------------------

    def record_violation_if_new(
        self,
        user_id: str,
        listing_id: Optional[int],
        fingerprint: str,
        result: ModerationResult,
        threshold: int = DEFAULT_AUTO_FLAG_THRESHOLD,
    ) -> ViolationOutcome:
        """Insert a violation once per (user, fingerprint) and bump the user's count.

        A duplicate insert changes nothing and reports the current count.
        """
        if not user_id or not fingerprint:
            return ViolationOutcome(inserted=False, count=0, threshold_reached=False)
        if threshold <= 0:
            threshold = DEFAULT_AUTO_FLAG_THRESHOLD

        with self._lock:
            events = self._read_json(self._violations_path, [])
            duplicate = any(
                e["user_id"] == user_id and e["content_fingerprint"] == fingerprint for e in events
            )
            if duplicate:
                count, _ = self._users.violation_state(user_id)
                return ViolationOutcome(inserted=False, count=count, threshold_reached=count >= threshold)

            events.append(
                {
                    "id": uuid.uuid4().hex[:16],
                    "user_id": user_id,
                    "listing_id": listing_id,
                    "content_fingerprint": fingerprint,
                    "decision": result.decision.value,
                    "severity": result.severity.value,
                    "violations": [v.to_dict() for v in result.violations],
                    "summary": result.summary,
                    "created_at": _utcnow().isoformat(),
                }
            )
            self._write_json(self._violations_path, events)
            count, _ = self._users.increment_violation_count(user_id, threshold)
            return ViolationOutcome(inserted=True, count=count, threshold_reached=count >= threshold)

    def get_violation_history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[ViolationEvent]:
        """Return a user's violation events, newest first."""
        if limit <= 0:
            limit = 50
        offset = max(offset, 0)
        events = [
            ViolationEvent(
                id=e["id"],
                user_id=e["user_id"],
                listing_id=e.get("listing_id"),
                content_fingerprint=e["content_fingerprint"],
                decision=ModerationDecision(e["decision"]),
                severity=ModerationSeverity(e["severity"]),
                violations=[ModerationViolation.from_dict(v) for v in e.get("violations", [])],
                summary=e.get("summary", ""),
                created_at=e["created_at"],
            )
            for e in self._read_json(self._violations_path, [])
            if e["user_id"] == user_id
        ]
        events.reverse()
        return events[offset : offset + limit]

    # -- housekeeping --------------------------------------------------------

    def purge_expired_entries(self, now: Optional[datetime] = None) -> PurgeSummary:
        """Delete expired cache and idempotency rows."""
        now = now or _utcnow()
        summary = PurgeSummary()
        with self._lock:
            for path, attr in (
                (self._cache_path, "cache_entries"),
                (self._idempotency_path, "idempotency_records"),
            ):
                data = self._read_json(path, {})
                live = {k: v for k, v in data.items() if datetime.fromisoformat(v["expires_at"]) > now}
                setattr(summary, attr, len(data) - len(live))
                if len(live) != len(data):
                    self._write_json(path, live)
        return summary
