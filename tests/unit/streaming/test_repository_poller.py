"""Tests for the polling fallback against the in-memory repository API."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from atsync.config.settings import StreamSettings
from atsync.discovery import DiscoveryEngine
from atsync.exceptions import AuthenticationError, HandleResolutionError, XrpcError
from atsync.streaming import RepositoryPoller, StreamState
from atsync.streaming.polling import FALLBACK_COLLECTIONS
from tests.helpers.fakes import DID, HANDLE
from tests.helpers.stream import wait_until

POST = "app.bsky.feed.post"
GALLERY = "social.grain.gallery"


class GatedSleep:
    """Returns at once for the first ``free`` calls, then blocks until cancelled."""

    def __init__(self, free: int = 0) -> None:
        self.free = free
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if len(self.calls) > self.free:
            await asyncio.Event().wait()


def push(api, collection: str, rkey: str, text: str) -> None:
    """Add a record as the newest of its collection, as listRecords orders them."""
    api.add_record(collection, rkey, {"$type": collection, "text": text})
    items = api.collections[collection]
    items.insert(0, items.pop())


@pytest.fixture
def repo_api(fake_api):
    push(fake_api, POST, "p1", "first")
    push(fake_api, POST, "p2", "second")
    push(fake_api, GALLERY, "g1", "trip")
    return fake_api


@pytest.fixture
def received():
    return []


def make_poller(api, settings, received, *, repository: str = DID, sleep=None) -> RepositoryPoller:
    return RepositoryPoller(
        api,
        DiscoveryEngine(api, settings.discovery),
        repository,
        StreamSettings(poll_interval=2.0, poll_limit=10),
        on_record=received.append,
        sleep=sleep or GatedSleep(),
    )


@pytest.mark.asyncio
async def test_start_discovers_collections(repo_api, settings, received):
    poller = make_poller(repo_api, settings, received)
    discovered, connected, disconnected = [], [], []
    poller.on_collection_discovered = discovered.append
    poller.on_connect = lambda: connected.append(True)
    poller.on_disconnect = lambda: disconnected.append(True)

    await poller.start()

    assert poller.is_streaming
    assert poller.collections == [POST, GALLERY]
    assert discovered == [POST, GALLERY]
    assert connected == [True]

    await poller.stop()

    assert poller.state is StreamState.STOPPED
    assert disconnected == [True]


@pytest.mark.asyncio
async def test_first_poll_reports_newest_records_oldest_first(repo_api, settings, received):
    poller = make_poller(repo_api, settings, received)
    await poller.start()

    found = await poller.poll_once()

    assert [r.value["text"] for r in found] == ["first", "second", "trip"]
    assert received == found
    assert all(call[2] == 10 for call in repo_api.calls[-2:])
    await poller.stop()


@pytest.mark.asyncio
async def test_later_polls_report_only_new_records(repo_api, settings, received):
    poller = make_poller(repo_api, settings, received)
    await poller.start()
    await poller.poll_once()

    push(repo_api, POST, "p3", "third")
    push(repo_api, POST, "p4", "fourth")
    fresh = await poller.poll_once()

    assert [r.uri for r in fresh] == [f"at://{DID}/{POST}/p3", f"at://{DID}/{POST}/p4"]
    assert await poller.poll_once() == []
    assert len(received) == 5
    await poller.stop()


@pytest.mark.asyncio
async def test_handle_is_resolved_on_start(repo_api, settings, received):
    poller = make_poller(repo_api, settings, received, repository=HANDLE)
    assert poller.did is None

    await poller.start()

    assert poller.did == DID
    await poller.stop()


@pytest.mark.asyncio
async def test_unresolvable_handle_raises_and_stays_stopped(repo_api, settings, received):
    poller = make_poller(repo_api, settings, received, repository="nobody.test")

    with pytest.raises(HandleResolutionError):
        await poller.start()

    assert poller.state is StreamState.STOPPED


@pytest.mark.asyncio
async def test_discovery_failure_falls_back_to_posts_and_profile(repo_api, settings, received):
    repo_api.fail["describe_repo"] = httpx.ConnectError("connection refused")
    repo_api.fail["list_records"] = XrpcError("com.atproto.repo.listRecords", 502)
    poller = make_poller(repo_api, settings, received)

    await poller.start()

    assert poller.collections == list(FALLBACK_COLLECTIONS)
    await poller.stop()


@pytest.mark.asyncio
async def test_failing_collection_is_reported_and_skipped(repo_api, settings, received):
    poller = make_poller(repo_api, settings, received)
    errors = []
    poller.on_error = errors.append
    await poller.start()
    repo_api.fail[f"list_records:{GALLERY}"] = XrpcError("com.atproto.repo.listRecords", 502)

    found = await poller.poll_once()

    assert [r.collection for r in found] == [POST, POST]
    assert len(errors) == 1
    assert isinstance(errors[0], XrpcError)
    await poller.stop()


@pytest.mark.asyncio
async def test_malformed_uris_are_skipped(repo_api, settings, received):
    repo_api.collections[POST].insert(0, {"uri": "not-a-uri", "cid": "cid-bad", "value": {"text": "?"}})
    poller = make_poller(repo_api, settings, received)
    await poller.start()

    found = await poller.poll_once()

    assert "?" not in [r.value["text"] for r in found]
    assert len(found) == 3
    await poller.stop()


@pytest.mark.asyncio
async def test_background_task_polls_every_interval(repo_api, settings, received):
    sleep = GatedSleep(free=2)
    poller = make_poller(repo_api, settings, received, sleep=sleep)
    await poller.start()
    before = repo_api.count("list_records")

    await wait_until(lambda: len(sleep.calls) == 3)

    assert sleep.calls == [2.0, 2.0, 2.0]
    assert repo_api.count("list_records") - before == 4
    assert len(received) == 3
    await poller.stop()


@pytest.mark.asyncio
async def test_authentication_error_stops_polling(repo_api, settings, received):
    sleep = GatedSleep(free=1)
    poller = make_poller(repo_api, settings, received, sleep=sleep)
    errors, disconnected = [], []
    poller.on_error = errors.append
    poller.on_disconnect = lambda: disconnected.append(True)
    await poller.start()
    repo_api.fail["list_records"] = AuthenticationError("session expired")

    await wait_until(lambda: poller.state is StreamState.STOPPED)

    assert isinstance(errors[0], AuthenticationError)
    assert disconnected == [True]
    assert received == []
    await poller.stop()
    assert disconnected == [True]
