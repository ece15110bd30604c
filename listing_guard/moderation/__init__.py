"""Listing publish moderation: fingerprinting, AI client, orchestration, idempotency."""

from listing_guard.moderation.client import ImageCoverage, ModerationClient
from listing_guard.moderation.fingerprint import build_content_fingerprint
from listing_guard.moderation.idempotency import (
    IdempotencyCheck,
    IdempotencyConflictError,
    IdempotencyGuard,
)
from listing_guard.moderation.models import (
    Listing,
    ListingModerationStatus,
    ListingStatus,
    ModerationDecision,
    ModerationExecution,
    ModerationInput,
    ModerationResult,
    ModerationSeverity,
    ModerationSource,
    ModerationViolation,
)
from listing_guard.moderation.orchestrator import ListingModerationService
from listing_guard.moderation.parsing import ModerationParseError, parse_moderation_response
from listing_guard.moderation.publish_guard import PublishGuard, PublishRateLimitError

__all__ = [
    "IdempotencyCheck",
    "IdempotencyConflictError",
    "IdempotencyGuard",
    "ImageCoverage",
    "Listing",
    "ListingModerationService",
    "ListingModerationStatus",
    "ListingStatus",
    "ModerationClient",
    "ModerationDecision",
    "ModerationExecution",
    "ModerationInput",
    "ModerationParseError",
    "ModerationResult",
    "ModerationSeverity",
    "ModerationSource",
    "ModerationViolation",
    "PublishGuard",
    "PublishRateLimitError",
    "build_content_fingerprint",
    "parse_moderation_response",
]
