"""Bounded-concurrency image acquisition with classified retry.

Images are untrusted, flaky inputs: one bad image is dropped rather than
failing the whole moderation run. Results stay positionally aligned with
the requested URLs regardless of completion order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

log = logging.getLogger("listing_guard.images.fetcher")

DEFAULT_CONCURRENCY = 3
DEFAULT_ATTEMPT_TIMEOUT = 5.0
DEFAULT_ATTEMPTS = 2
DEFAULT_MAX_BYTES = 8 * 1024 * 1024


@dataclass
class FetchedImage:
    """Raw image bytes plus the MIME type reported by the origin."""

    data: bytes
    mime_type: str


class ImageFetchError(Exception):
    """A single fetch attempt failed."""

    def __init__(self, message: str, *, transient: bool, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


def is_transient_fetch_error(exc: BaseException) -> bool:
    """Return *True* if another attempt could plausibly succeed.

    Timeouts, transport errors, HTTP 429 and 5xx are transient. Other HTTP
    statuses, bad content types and oversize bodies are permanent.
    Cancellation is never retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, ImageFetchError):
        return exc.transient
    return False


def normalize_image_urls(urls: Sequence[str], max_images: int) -> list[str]:
    """Trim, drop blanks and cap the list at *max_images*."""
    if max_images <= 0:
        return []
    normalized: list[str] = []
    for url in urls:
        trimmed = (url or "").strip()
        if not trimmed:
            continue
        normalized.append(trimmed)
        if len(normalized) >= max_images:
            break
    return normalized


class ImageFetcher:
    """Fetch images concurrently through a shared :class:`httpx.AsyncClient`."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        attempts: int = DEFAULT_ATTEMPTS,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self._client = client
        self.concurrency = concurrency if concurrency > 0 else DEFAULT_CONCURRENCY
        self.attempt_timeout = attempt_timeout if attempt_timeout > 0 else DEFAULT_ATTEMPT_TIMEOUT
        self.attempts = attempts if attempts > 0 else DEFAULT_ATTEMPTS
        self.max_bytes = max_bytes if max_bytes > 0 else DEFAULT_MAX_BYTES

    async def fetch_all(self, urls: Sequence[str]) -> list[Optional[FetchedImage]]:
        """Fetch every URL; a ``None`` slot means that image was dropped."""
        results: list[Optional[FetchedImage]] = [None] * len(urls)
        if not urls:
            return results

        semaphore = asyncio.Semaphore(min(self.concurrency, len(urls)))

        async def _run(client: httpx.AsyncClient, index: int, url: str) -> None:
            async with semaphore:
                try:
                    results[index] = await self.fetch_with_retry(client, url)
                except Exception as exc:
                    log.info("Dropping image %d after fetch failure: %s", index, exc)

        if self._client is not None:
            await asyncio.gather(*(_run(self._client, i, u) for i, u in enumerate(urls)))
        else:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                await asyncio.gather(*(_run(client, i, u) for i, u in enumerate(urls)))
        return results

    async def fetch_with_retry(self, client: httpx.AsyncClient, url: str) -> FetchedImage:
        """Fetch one image, retrying transient failures up to ``attempts`` times."""
        for attempt in range(1, self.attempts + 1):
            try:
                return await asyncio.wait_for(self._fetch_once(client, url), self.attempt_timeout)
            except Exception as exc:
                if not is_transient_fetch_error(exc) or attempt == self.attempts:
                    raise
                log.debug("Transient image fetch failure (attempt %d/%d): %s", attempt, self.attempts, exc)
        raise ImageFetchError("no fetch attempts configured", transient=False)

    async def _fetch_once(self, client: httpx.AsyncClient, url: str) -> FetchedImage:
        async with client.stream("GET", url) as resp:
            if resp.status_code != 200:
                status = resp.status_code
                raise ImageFetchError(
                    f"image download failed: HTTP {status}",
                    transient=status == 429 or status >= 500,
                    status_code=status,
                )

            content_type = resp.headers.get("content-type", "").strip()
            if not content_type.lower().startswith("image/"):
                raise ImageFetchError(
                    f"unsupported content type: {content_type or 'missing'}", transient=False
                )

            body = bytearray()
            async for chunk in resp.aiter_bytes():
                body.extend(chunk)
                if len(body) > self.max_bytes:
                    raise ImageFetchError("image exceeds max size", transient=False)

        mime_type = content_type.split(";", 1)[0].strip().lower()
        return FetchedImage(data=bytes(body), mime_type=mime_type)
