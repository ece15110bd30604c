"""Persistence contracts and file-backed reference stores."""

from listing_guard.stores.base import IdempotencyRecord, ViolationOutcome
from listing_guard.stores.listing_store import ListingStore
from listing_guard.stores.moderation_store import ModerationStore
from listing_guard.stores.user_store import UserRecord, UserStore

__all__ = [
    "IdempotencyRecord",
    "ListingStore",
    "ModerationStore",
    "UserRecord",
    "UserStore",
    "ViolationOutcome",
]
