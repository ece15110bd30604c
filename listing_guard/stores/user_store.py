"""File-based JSON storage for seller risk state.

Provides a DB-ready interface backed by a JSON file under
``~/.listing_guard/users/``.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from listing_guard.stores.files import write_json_atomic


@dataclass
class UserRecord:
    """Moderation-relevant state for one seller."""

    id: str
    email: str = ""
    name: str = ""
    violation_count: int = 0
    is_flagged: bool = False
    updated_at: str = ""


class UserStore:
    """File-based storage for users.

    Storage path: ``~/.listing_guard/users/`` with:
    - ``users.json`` -- mapping of user id to user dict
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".listing_guard" / "users"
        self._base.mkdir(parents=True, exist_ok=True)
        self._users_path = self._base / "users.json"
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_all(self) -> dict[str, dict]:
        if not self._users_path.exists():
            return {}
        data = json.loads(self._users_path.read_text())
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, dict]) -> None:
        write_json_atomic(self._users_path, data)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[UserRecord]:
        entry = self._read_all().get(user_id)
        return UserRecord(**entry) if entry else None

    def upsert(self, user: UserRecord) -> UserRecord:
        with self._lock:
            data = self._read_all()
            user.updated_at = self._now()
            data[user.id] = asdict(user)
            self._write_all(data)
        return user

    def set_flag_status(self, user_id: str, flagged: bool) -> None:
        """Mark or clear the high-risk flag. Idempotent."""
        with self._lock:
            data = self._read_all()
            entry = data.get(user_id) or asdict(UserRecord(id=user_id))
            entry["is_flagged"] = flagged
            entry["updated_at"] = self._now()
            data[user_id] = entry
            self._write_all(data)

    def increment_violation_count(self, user_id: str, threshold: int) -> tuple[int, bool]:
        """Add one violation; flag the user once the count reaches *threshold*.

        Returns the new count and the resulting flag state.
        """
        with self._lock:
            data = self._read_all()
            entry = data.get(user_id) or asdict(UserRecord(id=user_id))
            entry["violation_count"] = int(entry.get("violation_count", 0)) + 1
            if entry["violation_count"] >= threshold:
                entry["is_flagged"] = True
            entry["updated_at"] = self._now()
            data[user_id] = entry
            self._write_all(data)
            return entry["violation_count"], bool(entry.get("is_flagged", False))

    def violation_state(self, user_id: str) -> tuple[int, bool]:
        user = self.get(user_id)
        if user is None:
            return 0, False
        return user.violation_count, user.is_flagged
