"""AI moderation client.

Fetches listing images, applies the image coverage quorum gate, asks the
classifier for a decision and normalizes the answer. Every failure path
returns a fail-closed review-needed result alongside the error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from listing_guard.images.fetcher import ImageFetcher, normalize_image_urls
from listing_guard.llm.client import ClassifierError, ImagePart, LLMClient
from listing_guard.llm.prompts import build_moderation_prompt
from listing_guard.moderation.models import (
    COVERAGE_SUMMARY,
    DELAYED_SUMMARY,
    UNAVAILABLE_SUMMARY,
    ModerationInput,
    ModerationResult,
    ModerationSource,
    fallback_result,
)
from listing_guard.moderation.parsing import ModerationParseError, parse_moderation_response

log = logging.getLogger("listing_guard.moderation.client")

DEFAULT_MAX_IMAGES = 5


@dataclass
class ImageCoverage:
    """How many of the referenced images were actually fetched."""

    considered: int = 0
    successful: int = 0

    def has_majority(self) -> bool:
        """A strict majority must be fetched; no images trivially passes."""
        if self.considered == 0:
            return True
        return self.successful * 2 > self.considered


@dataclass
class ClassifierRequest:
    """One multimodal request: the prompt followed by images in input order."""

    prompt: str
    images: list[ImagePart]
    coverage: ImageCoverage


class ModerationClient:
    """Runs one listing through image fetch, quorum gate and the classifier."""

    def __init__(
        self,
        llm: LLMClient,
        fetcher: Optional[ImageFetcher] = None,
        max_images: int = DEFAULT_MAX_IMAGES,
    ) -> None:
        self._llm = llm
        self._fetcher = fetcher or ImageFetcher()
        self.max_images = max_images if max_images > 0 else DEFAULT_MAX_IMAGES

    @property
    def configured(self) -> bool:
        return self._llm.configured

    @property
    def model(self) -> str:
        return self._llm.model

    async def build_request(self, moderation_input: ModerationInput) -> ClassifierRequest:
        """Fetch images and assemble the prompt without calling the classifier."""
        urls = normalize_image_urls(moderation_input.image_urls, self.max_images)
        fetched = await self._fetcher.fetch_all(urls)

        images = [ImagePart(data=img.data, mime_type=img.mime_type) for img in fetched if img is not None]
        return ClassifierRequest(
            prompt=build_moderation_prompt(moderation_input.title, moderation_input.description),
            images=images,
            coverage=ImageCoverage(considered=len(urls), successful=len(images)),
        )

    async def moderate(
        self, moderation_input: ModerationInput
    ) -> tuple[ModerationResult, Optional[Exception]]:
        """Moderate a listing.

        Returns ``(result, error)``. ``result`` always carries a decision;
        ``error`` is diagnostic only and is set when the result is a fallback
        caused by a classifier or parse failure.
        """
        if not self._llm.configured:
            return fallback_result(UNAVAILABLE_SUMMARY), None

        request = await self.build_request(moderation_input)
        coverage = request.coverage
        if coverage.considered > 0:
            log.info("Image coverage %d/%d", coverage.successful, coverage.considered)
            if not coverage.has_majority():
                log.warning(
                    "Forcing manual review due to insufficient image coverage (%d/%d)",
                    coverage.successful,
                    coverage.considered,
                )
                result = fallback_result(COVERAGE_SUMMARY)
                result.source = ModerationSource.IMAGE_COVERAGE_GATE
                return result, None

        try:
            response = await self._llm.complete(request.prompt, request.images)
        except ClassifierError as exc:
            log.warning("Classifier call failed, falling back to manual review: %s", exc)
            return fallback_result(DELAYED_SUMMARY), exc

        log.debug(
            "Classifier usage: model=%s input_tokens=%d output_tokens=%d latency_ms=%d cost_usd=%.6f",
            response.model,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
            response.cost_estimate,
        )

        if not response.content:
            exc = ModerationParseError("empty moderation response")
            log.warning("Classifier returned no text, falling back to manual review")
            return fallback_result(DELAYED_SUMMARY), exc

        try:
            result = parse_moderation_response(response.content)
        except ModerationParseError as exc:
            log.warning("Unparseable classifier output, falling back to manual review")
            fallback = fallback_result(DELAYED_SUMMARY)
            fallback.model = self._llm.model
            fallback.raw_response = response.content
            return fallback, exc

        result.source = ModerationSource.AI
        result.model = self._llm.model
        result.raw_response = response.content
        return result, None
