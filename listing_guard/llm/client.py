"""LLM client wrapper for listing moderation.

Provides a multimodal interface to the Anthropic API with cost estimates
and graceful degradation when no API key is configured.
"""

from __future__ import annotations

import base64
import os
import time
from dataclasses import dataclass
from typing import Any, Sequence

import anthropic


# ---------------------------------------------------------------------------
# Pricing table (USD per 1 M tokens)
# ---------------------------------------------------------------------------

MODEL_PRICING: dict[str, dict[str, float]] = {
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
    "claude-haiku-3-5-20241022": {"input": 0.80, "output": 4.0},
    "claude-opus-4-20250514": {"input": 15.0, "output": 75.0},
}

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


class ClassifierError(RuntimeError):
    """The classifier could not be reached or answered with an error."""


# ---------------------------------------------------------------------------
# Request / response dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ImagePart:
    """An inline image attached to a prompt."""

    data: bytes
    mime_type: str

    def to_block(self) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            },
        }


@dataclass
class LLMResponse:
    """Structured response from an LLM call."""

    content: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    cost_estimate: float = 0.0


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Thin async wrapper around the Anthropic Python SDK.

    Parameters
    ----------
    model : str
        Model identifier to use for completions.
    api_key : str | None
        Anthropic API key.  Falls back to the ``ANTHROPIC_API_KEY``
        environment variable when *None*.
    timeout : float
        Overall timeout for one classifier call, in seconds.
    client : object | None
        Pre-built client exposing ``messages.create``; mostly for tests.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        timeout: float = 20.0,
        client: Any = None,
    ) -> None:
        self.model = model or DEFAULT_MODEL
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")

        if client is not None:
            self._client = client
        elif self.api_key:
            # Retries belong to image fetch only; a slow classifier falls back instead.
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key, timeout=timeout, max_retries=0
            )
        else:
            self._client = None

    # -- properties ----------------------------------------------------------

    @property
    def configured(self) -> bool:
        """Return *True* if the client can reach a model."""
        return self._client is not None

    # -- cost helpers --------------------------------------------------------

    def _estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = MODEL_PRICING.get(self.model, MODEL_PRICING[DEFAULT_MODEL])
        input_cost = (input_tokens / 1_000_000) * pricing["input"]
        output_cost = (output_tokens / 1_000_000) * pricing["output"]
        return round(input_cost + output_cost, 6)

    # -- multimodal completion -----------------------------------------------

    async def complete(
        self,
        prompt: str,
        images: Sequence[ImagePart] = (),
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> LLMResponse:
        """Send one prompt followed by *images* (in order) and return the text.

        Raises :class:`ClassifierError` on transport failure or a non-success
        response.
        """
        if self._client is None:
            raise ClassifierError("LLM not configured. Set ANTHROPIC_API_KEY.")

        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend(image.to_block() for image in images)

        kwargs: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }

        start = time.monotonic()
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise ClassifierError(f"moderation API error: {exc.status_code}") from exc
        except anthropic.APIError as exc:
            raise ClassifierError(f"moderation API unreachable: {exc}") from exc
        latency_ms = int((time.monotonic() - start) * 1000)

        texts = [
            block.text
            for block in response.content or []
            if getattr(block, "type", "") == "text" and block.text.strip()
        ]
        input_tokens = getattr(response.usage, "input_tokens", 0)
        output_tokens = getattr(response.usage, "output_tokens", 0)

        return LLMResponse(
            content="\n".join(texts).strip(),
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
            cost_estimate=self._estimate_cost(input_tokens, output_tokens),
        )
