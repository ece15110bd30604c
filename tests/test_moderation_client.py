"""Tests for the AI moderation client: quorum gate, ordering and fallbacks."""

import asyncio
import logging

import anthropic
import httpx
import pytest

from conftest import FakeAnthropic, FakeMessages, flagged_json
from listing_guard.llm.client import LLMClient
from listing_guard.moderation.client import ImageCoverage, ModerationClient
from listing_guard.moderation.models import (
    COVERAGE_SUMMARY,
    DELAYED_SUMMARY,
    UNAVAILABLE_SUMMARY,
    ModerationDecision,
    ModerationInput,
    ModerationSeverity,
    ModerationSource,
)
from listing_guard.moderation.parsing import ModerationParseError


def _input(*names: str) -> ModerationInput:
    return ModerationInput(
        title="Vintage camera",
        description="Works fine",
        image_urls=[f"https://cdn.test/{n}" for n in names],
    )


def test_coverage_majority():
    assert ImageCoverage(0, 0).has_majority()
    assert ImageCoverage(3, 2).has_majority()
    assert ImageCoverage(1, 1).has_majority()
    assert not ImageCoverage(3, 1).has_majority()
    assert not ImageCoverage(2, 1).has_majority()
    assert not ImageCoverage(4, 2).has_majority()


def test_gate_blocks_without_calling_classifier(make_client, fake_messages):
    client = make_client(routes={"a": (200, 0)})
    result, err = asyncio.run(client.moderate(_input("a", "b", "c")))

    assert err is None
    assert fake_messages.calls == []
    assert result.decision == ModerationDecision.REVIEW_NEEDED
    assert result.severity == ModerationSeverity.HIGH
    assert result.source == ModerationSource.IMAGE_COVERAGE_GATE
    assert result.summary == COVERAGE_SUMMARY


def test_majority_coverage_reaches_classifier(make_client, fake_messages):
    client = make_client(routes={"a": (200, 0), "b": (200, 0)})
    result, err = asyncio.run(client.moderate(_input("a", "b", "c")))

    assert err is None
    assert len(fake_messages.calls) == 1
    assert fake_messages.image_payloads() == [b"img-a", b"img-b"]
    assert result.decision == ModerationDecision.CLEAN
    assert result.source == ModerationSource.AI
    assert result.model == "test-model"


def test_images_reach_classifier_in_input_order(make_client, fake_messages):
    routes = {"slow": (200, 0.15), "fast": (200, 0.0), "medium": (200, 0.05)}
    client = make_client(routes=routes)
    asyncio.run(client.moderate(_input("slow", "fast", "medium")))

    assert fake_messages.image_payloads() == [b"img-slow", b"img-fast", b"img-medium"]
    content = fake_messages.calls[0]["messages"][0]["content"]
    assert content[0]["type"] == "text"
    assert "Vintage camera" in content[0]["text"]


def test_text_only_listing_skips_gate(make_client, fake_messages):
    client = make_client()
    result, err = asyncio.run(client.moderate(_input()))
    assert err is None
    assert result.source == ModerationSource.AI
    assert fake_messages.image_payloads() == []


def test_image_cap_applied_before_fetch(make_client):
    counts = {}
    routes = {str(i): (200, 0) for i in range(8)}
    client = make_client(routes=routes, counts=counts)
    client.max_images = 5
    asyncio.run(client.moderate(_input(*routes)))
    assert sorted(counts) == ["0", "1", "2", "3", "4"]


def test_flagged_answer_is_normalized(make_client):
    messages = FakeMessages(reply=flagged_json("critical"))
    client = make_client(messages=messages)
    result, err = asyncio.run(client.moderate(_input()))
    assert err is None
    assert result.decision == ModerationDecision.FLAGGED
    assert result.flag_profile is True
    assert result.raw_response == messages.reply


def test_classifier_failure_returns_fallback_and_error(make_client):
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.test/v1/messages"))
    client = make_client(messages=FakeMessages(error=error))
    result, err = asyncio.run(client.moderate(_input()))

    assert err is not None
    assert result.decision == ModerationDecision.REVIEW_NEEDED
    assert result.source == ModerationSource.FALLBACK_ERROR
    assert result.summary == DELAYED_SUMMARY


def test_unparseable_answer_keeps_raw_text(make_client):
    client = make_client(messages=FakeMessages(reply="I cannot decide."))
    result, err = asyncio.run(client.moderate(_input()))

    assert isinstance(err, ModerationParseError)
    assert result.source == ModerationSource.FALLBACK_ERROR
    assert result.raw_response == "I cannot decide."
    assert result.model == "test-model"


def test_empty_answer_falls_back(make_client):
    client = make_client(messages=FakeMessages(reply="   "))
    result, err = asyncio.run(client.moderate(_input()))
    assert isinstance(err, ModerationParseError)
    assert result.decision == ModerationDecision.REVIEW_NEEDED


def test_unconfigured_classifier(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    client = ModerationClient(LLMClient(model="test-model"))
    assert not client.configured

    result, err = asyncio.run(client.moderate(_input("a")))
    assert err is None
    assert result.summary == UNAVAILABLE_SUMMARY
    assert result.source == ModerationSource.FALLBACK_ERROR


def test_classifier_usage_is_reported(fake_messages):
    llm = LLMClient(model="claude-haiku-3-5-20241022", client=FakeAnthropic(fake_messages))
    response = asyncio.run(llm.complete("prompt"))
    assert response.input_tokens == 120
    assert response.output_tokens == 40
    assert response.cost_estimate == pytest.approx(120 / 1e6 * 0.80 + 40 / 1e6 * 4.0)


def test_usage_logged_at_debug(make_client, caplog):
    caplog.set_level(logging.DEBUG, logger="listing_guard.moderation.client")
    asyncio.run(make_client().moderate(_input()))
    [line] = [r.getMessage() for r in caplog.records if "Classifier usage" in r.getMessage()]
    assert "input_tokens=120" in line
    assert "output_tokens=40" in line
    assert "model=test-model" in line
