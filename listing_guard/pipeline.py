"""Wiring for the publish moderation pipeline.

:func:`build_pipeline` assembles every collaborator from a
:class:`~listing_guard.config.ModerationConfig`; the publish-handling layer
holds the returned :class:`ModerationPipeline` and calls :meth:`publish`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx

from listing_guard.config import ModerationConfig
from listing_guard.images.fetcher import ImageFetcher
from listing_guard.llm.client import LLMClient
from listing_guard.moderation.client import ModerationClient
from listing_guard.moderation.fingerprint import build_content_fingerprint
from listing_guard.moderation.idempotency import IdempotencyGuard
from listing_guard.moderation.models import Listing, ModerationExecution
from listing_guard.moderation.orchestrator import ListingModerationService
from listing_guard.moderation.publish_guard import PublishGuard, PublishRateLimitError
from listing_guard.notify.email import EmailService
from listing_guard.notify.notifier import NotificationStore
from listing_guard.stores.listing_store import ListingStore
from listing_guard.stores.moderation_store import ModerationStore
from listing_guard.stores.user_store import UserStore

log = logging.getLogger("listing_guard.pipeline")

PUBLISH_CREATED = 201


@dataclass
class PublishOutcome:
    """Response for one publish attempt, fresh or replayed."""

    status: int
    body: Any
    replayed: bool = False
    execution: Optional[ModerationExecution] = None


@dataclass
class ModerationPipeline:
    service: ListingModerationService
    guard: IdempotencyGuard
    moderation_store: ModerationStore
    listings: ListingStore
    users: UserStore
    notifications: NotificationStore
    moderation_client: ModerationClient
    publish_guard: PublishGuard = field(default_factory=PublishGuard)

    async def publish(
        self,
        listing: Listing,
        user_id: str = "",
        user_email: str = "",
        idempotency_key: str = "",
        image_refs: Optional[Sequence[str]] = None,
        client_ip: str = "",
    ) -> PublishOutcome:
        """Moderate and publish *listing*, replaying the stored response on retry.

        Raises :class:`~listing_guard.moderation.idempotency.IdempotencyConflictError`
        when *idempotency_key* was already used for different content.
        Raises :class:`~listing_guard.moderation.publish_guard.PublishRateLimitError`
        when the seller or *client_ip* is over its publish limit; the attempt
        is refused before replay lookup and moderation.
        """
        if not self.publish_guard.allow(user_id, client_ip):
            log.warning("Publish rate limit hit for user=%r ip=%r", user_id, client_ip)
            raise PublishRateLimitError("too many publish attempts, try again shortly")

        refs = list(listing.image_refs if image_refs is None else image_refs)
        request_fingerprint = build_content_fingerprint(listing.title, listing.description, refs)

        replay = self.guard.check(user_id, idempotency_key, request_fingerprint)
        if replay.should_replay:
            return PublishOutcome(status=replay.response_status, body=replay.response_body, replayed=True)

        execution = await self.service.evaluate_and_apply(listing, user_id, user_email, refs)
        body = listing.to_dict()
        self.guard.store(user_id, idempotency_key, request_fingerprint, PUBLISH_CREATED, body)
        return PublishOutcome(status=PUBLISH_CREATED, body=body, execution=execution)


def build_moderation_client(
    config: ModerationConfig,
    llm: Optional[LLMClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ModerationClient:
    llm = llm or LLMClient(model=config.model, api_key=config.api_key, timeout=config.classifier_timeout)
    fetcher = ImageFetcher(
        client=http_client,
        concurrency=config.image_fetch_concurrency,
        attempt_timeout=config.image_fetch_timeout,
        attempts=config.image_fetch_attempts,
        max_bytes=config.max_image_mb * 1024 * 1024,
    )
    return ModerationClient(llm, fetcher, max_images=config.max_images)


def build_pipeline(
    config: ModerationConfig,
    llm: Optional[LLMClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ModerationPipeline:
    """Construct stores, clients and services rooted at ``config.data_dir``."""
    root = Path(config.data_dir)
    users = UserStore(root / "users")
    moderation_store = ModerationStore(root / "moderation", users=users)
    listings = ListingStore(root / "listings")
    notifications = NotificationStore(root / "notifications")
    client = build_moderation_client(config, llm=llm, http_client=http_client)

    service = ListingModerationService(
        moderation_client=client,
        cache=moderation_store,
        audit=moderation_store,
        violations=moderation_store,
        listings=listings,
        users=users,
        email=EmailService.from_config(config),
        notifier=notifications,
        cache_ttl=config.cache_ttl,
        auto_flag_threshold=config.auto_flag_threshold,
    )
    return ModerationPipeline(
        service=service,
        guard=IdempotencyGuard(moderation_store, ttl=config.idempotency_ttl),
        moderation_store=moderation_store,
        listings=listings,
        users=users,
        notifications=notifications,
        moderation_client=client,
        publish_guard=PublishGuard(
            user_limit=config.publish_user_limit,
            ip_limit=config.publish_ip_limit,
            window=config.publish_window,
        ),
    )
