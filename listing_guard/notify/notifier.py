"""In-app notifications for sellers.

Notifications are appended to ``~/.listing_guard/notifications/<user>.jsonl``.
When ``broadcast`` is requested the optional publisher (for example a
WebSocket hub) is called with the stored notification.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional


@dataclass
class Notification:
    """A single in-app notification."""

    id: str
    user_id: str
    type: str
    title: str
    body: str
    listing_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    read: bool = False
    created_at: str = ""


def _safe_filename(name: str) -> str:
    return re.sub(r"[^\w\-.]", "_", name)


class NotificationStore:
    """JSONL-backed notifier with an optional live publisher."""

    def __init__(
        self,
        base_dir: str | Path | None = None,
        publisher: Optional[Callable[[Notification], None]] = None,
    ) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".listing_guard" / "notifications"
        self._base.mkdir(parents=True, exist_ok=True)
        self._publisher = publisher

    def _file_for(self, user_id: str) -> Path:
        return self._base / f"{_safe_filename(user_id)}.jsonl"

    def notify(self, user_id: str, payload: dict[str, Any], broadcast: bool = False) -> Notification:
        """Store a notification and optionally push it live."""
        notification = Notification(
            id=uuid.uuid4().hex[:16],
            user_id=user_id,
            type=payload.get("type", "system"),
            title=payload.get("title", ""),
            body=payload.get("body", ""),
            listing_id=payload.get("listing_id"),
            metadata=dict(payload.get("metadata", {})),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._file_for(user_id).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(notification), default=str) + "\n")
        if broadcast and self._publisher is not None:
            self._publisher(notification)
        return notification

    def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        """Return a user's notifications, newest first."""
        path = self._file_for(user_id)
        if not path.exists():
            return []
        records = [
            Notification(**json.loads(line))
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        records.reverse()
        return records[:limit]
