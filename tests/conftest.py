"""Shared fakes for the moderation tests."""

import asyncio
import base64
import json
from types import SimpleNamespace

import httpx
import pytest

from listing_guard.images.fetcher import ImageFetcher
from listing_guard.llm.client import LLMClient
from listing_guard.moderation.client import ModerationClient
from listing_guard.moderation.orchestrator import ListingModerationService
from listing_guard.notify.notifier import NotificationStore
from listing_guard.stores.listing_store import ListingStore
from listing_guard.stores.moderation_store import ModerationStore
from listing_guard.stores.user_store import UserStore

CLEAN_JSON = json.dumps(
    {"decision": "clean", "severity": "clean", "flag_profile": False, "violations": [], "summary": "Looks fine."}
)


def flagged_json(severity: str = "medium", flag_profile: bool = False) -> str:
    return json.dumps(
        {
            "decision": "flagged",
            "severity": severity,
            "flag_profile": flag_profile,
            "violations": [
                {"code": "counterfeit", "category": "fraud", "severity": severity, "reason": "Replica goods"}
            ],
            "summary": "Suspected counterfeit.",
        }
    )


class FakeMessages:
    """Stands in for ``AsyncAnthropic().messages``."""

    def __init__(self, reply: str = CLEAN_JSON, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.reply)],
            usage=SimpleNamespace(input_tokens=120, output_tokens=40),
        )

    def image_payloads(self, call: int = 0) -> list[bytes]:
        content = self.calls[call]["messages"][0]["content"]
        return [base64.b64decode(b["source"]["data"]) for b in content if b["type"] == "image"]


class FakeAnthropic:
    def __init__(self, messages: FakeMessages) -> None:
        self.messages = messages


def image_transport(routes: dict[str, tuple[int, float]], counts: dict[str, int] | None = None):
    """Mock transport serving ``/<name>`` as ``(status, delay_seconds)``.

    Successful responses are ``image/jpeg`` with body ``img-<name>``.
    """
    counts = counts if counts is not None else {}

    async def handler(request: httpx.Request) -> httpx.Response:
        name = request.url.path.lstrip("/")
        counts[name] = counts.get(name, 0) + 1
        status, delay = routes.get(name, (404, 0.0))
        if delay:
            await asyncio.sleep(delay)
        if status != 200:
            return httpx.Response(status, text="nope")
        return httpx.Response(200, headers={"content-type": "image/jpeg"}, content=f"img-{name}".encode())

    return httpx.MockTransport(handler)


@pytest.fixture
def fake_messages():
    return FakeMessages()


@pytest.fixture
def make_client(fake_messages):
    """Build a ModerationClient over a mock image origin and the fake classifier."""

    def _make(routes=None, counts=None, messages=None, **fetcher_kwargs):
        http = httpx.AsyncClient(transport=image_transport(routes or {}, counts), base_url="https://cdn.test")
        fetcher = ImageFetcher(client=http, **fetcher_kwargs)
        llm = LLMClient(model="test-model", client=FakeAnthropic(messages or fake_messages))
        return ModerationClient(llm, fetcher)

    return _make


@pytest.fixture
def stores(tmp_path):
    users = UserStore(tmp_path / "users")
    return SimpleNamespace(
        users=users,
        moderation=ModerationStore(tmp_path / "moderation", users=users),
        listings=ListingStore(tmp_path / "listings"),
        notifications=NotificationStore(tmp_path / "notifications"),
    )


@pytest.fixture
def make_service(stores, make_client):
    def _make(client="default", email=None, notifier="default", **kwargs):
        if client == "default":
            client = make_client()
        return ListingModerationService(
            moderation_client=client,
            cache=stores.moderation,
            audit=stores.moderation,
            violations=stores.moderation,
            listings=stores.listings,
            users=stores.users,
            email=email,
            notifier=stores.notifications if notifier == "default" else notifier,
            **kwargs,
        )

    return _make
