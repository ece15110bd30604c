"""Fixed-window publish rate limits per seller and per client IP."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

log = logging.getLogger("listing_guard.moderation.publish_guard")

DEFAULT_USER_LIMIT = 10
DEFAULT_IP_LIMIT = 30
DEFAULT_WINDOW = 60.0


class PublishRateLimitError(RuntimeError):
    """Too many publish attempts from this seller or IP in the current window."""


@dataclass
class _Counter:
    window_start: float
    count: int


def _normalize_key(key: str) -> str:
    return (key or "").strip().lower()


class PublishGuard:
    """Counts publish attempts per user and per IP in fixed windows.

    Both counters advance on every attempt, so a request refused by one
    limit still spends a slot on the other. A blank user or IP is not
    limited. Counters idle for three windows are dropped.
    """

    def __init__(
        self,
        user_limit: int = DEFAULT_USER_LIMIT,
        ip_limit: int = DEFAULT_IP_LIMIT,
        window: float = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.user_limit = user_limit if user_limit > 0 else DEFAULT_USER_LIMIT
        self.ip_limit = ip_limit if ip_limit > 0 else DEFAULT_IP_LIMIT
        self.window = window if window > 0 else DEFAULT_WINDOW
        self._clock = clock
        self._users: dict[str, _Counter] = {}
        self._ips: dict[str, _Counter] = {}
        self._lock = threading.Lock()

    def allow(self, user_id: str, ip: str = "") -> bool:
        """Record one attempt and return whether both limits still permit it."""
        with self._lock:
            now = self._clock()
            user_ok = self._hit(self._users, _normalize_key(user_id), self.user_limit, now)
            ip_ok = self._hit(self._ips, _normalize_key(ip), self.ip_limit, now)
            self._cleanup(now)
        return user_ok and ip_ok

    def _hit(self, counters: dict[str, _Counter], key: str, limit: int, now: float) -> bool:
        if not key:
            return True
        counter = counters.get(key)
        if counter is None or now - counter.window_start >= self.window:
            counters[key] = _Counter(window_start=now, count=1)
            return True
        if counter.count >= limit:
            return False
        counter.count += 1
        return True

    def _cleanup(self, now: float) -> None:
        max_age = self.window * 3
        for counters in (self._users, self._ips):
            stale = [k for k, c in counters.items() if now - c.window_start > max_age]
            for key in stale:
                del counters[key]

    def tracked(self) -> tuple[int, int]:
        """Number of live (user, ip) counters."""
        with self._lock:
            return len(self._users), len(self._ips)
