"""File-based JSON storage for listing moderation state.

Storage path: ``~/.listing_guard/listings/listings.json``.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from listing_guard.moderation.models import (
    Listing,
    ListingModerationStatus,
    ListingStatus,
    ModerationResult,
)
from listing_guard.stores.files import write_json_atomic

DEFAULT_QUEUE_STATUSES = (
    ListingModerationStatus.PENDING_REVIEW,
    ListingModerationStatus.FLAGGED,
    ListingModerationStatus.ERROR,
)


class ListingStore:
    """File-backed listing rows keyed by listing id."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".listing_guard" / "listings"
        self._base.mkdir(parents=True, exist_ok=True)
        self._listings_path = self._base / "listings.json"
        self._lock = threading.RLock()

    # -- helpers -------------------------------------------------------------

    def _read_all(self) -> dict[str, dict]:
        if not self._listings_path.exists():
            return {}
        data = json.loads(self._listings_path.read_text())
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, dict]) -> None:
        write_json_atomic(self._listings_path, data)

    # -- CRUD ----------------------------------------------------------------

    def save(self, listing: Listing) -> Listing:
        with self._lock:
            data = self._read_all()
            data[str(listing.id)] = listing.to_dict()
            self._write_all(data)
        return listing

    def get(self, listing_id: int) -> Optional[Listing]:
        entry = self._read_all().get(str(listing_id))
        return Listing.from_dict(entry) if entry else None

    # -- moderation ----------------------------------------------------------

    def update_moderation_outcome(
        self,
        listing_id: int,
        status: ListingStatus,
        moderation_status: ListingModerationStatus,
        result: ModerationResult,
        fingerprint: str,
        checked_at: Optional[datetime] = None,
    ) -> None:
        """Write status and moderation stamps for one listing in a single write."""
        with self._lock:
            data = self._read_all()
            entry = data.get(str(listing_id))
            if entry is None:
                raise ValueError(f"Listing {listing_id} not found")
            entry.update(
                {
                    "status": status.value,
                    "moderation_status": moderation_status.value,
                    "moderation_severity": result.severity.value,
                    "moderation_summary": result.summary,
                    "moderation_flag_profile": result.flag_profile,
                    "moderation_fingerprint": fingerprint,
                    "moderation_checked_at": (checked_at or datetime.now(timezone.utc)).isoformat(),
                }
            )
            self._write_all(data)

    def get_moderation_queue(
        self,
        statuses: Iterable[ListingModerationStatus] = DEFAULT_QUEUE_STATUSES,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Listing]:
        """Return listings awaiting a human, oldest check first."""
        wanted = {s.value for s in statuses}
        listings = [
            Listing.from_dict(d) for d in self._read_all().values() if d.get("moderation_status") in wanted
        ]
        never = datetime.max.replace(tzinfo=timezone.utc)
        listings.sort(key=lambda l: (l.moderation_checked_at or never, l.id))
        return listings[max(offset, 0) : max(offset, 0) + (limit if limit > 0 else 50)]

    def apply_moderation_override(
        self,
        listing_id: int,
        approve: bool,
        admin_user_id: str,
        summary: str = "",
    ) -> Listing:
        """Record a reviewer decision. This is the only way a listing is rejected."""
        with self._lock:
            data = self._read_all()
            entry = data.get(str(listing_id))
            if entry is None:
                raise ValueError(f"Listing {listing_id} not found")
            if approve:
                entry["status"] = ListingStatus.ACTIVE.value
                entry["moderation_status"] = ListingModerationStatus.APPROVED.value
            else:
                entry["status"] = ListingStatus.REJECTED.value
                entry["moderation_status"] = ListingModerationStatus.REJECTED.value
            if summary.strip():
                entry["moderation_summary"] = summary.strip()
            entry["moderated_by"] = admin_user_id
            entry["moderation_checked_at"] = datetime.now(timezone.utc).isoformat()
            data[str(listing_id)] = entry
            self._write_all(data)
            return Listing.from_dict(entry)
