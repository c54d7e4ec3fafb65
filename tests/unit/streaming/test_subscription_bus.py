from __future__ import annotations

import asyncio

import pytest

from atsync.streaming import SubscriptionBus, decode_commit, matches_filter
from atsync.streaming.bus import GALLERY_FILTER, POST_FILTER, STATUS_UPDATE_FILTER
from tests.helpers.stream import commit


def _event(operation="create", collection="app.bsky.feed.post", **record):
    return decode_commit(commit(operation, collection, **record))


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("$type:app.bsky.feed.post", True),
        ("app.bsky.feed.post", True),
        ("$type:app.bsky.feed.like", False),
        ("collection:app.bsky.feed.post", True),
        ("collection:app.bsky.feed", False),
        ("operation:create", True),
        ("operation:delete", False),
    ],
)
def test_matches_filter_for_create(key, expected):
    assert matches_filter(_event(), key) is expected


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("$type:app.bsky.feed.post", False),
        ("app.bsky.feed.post", False),
        ("collection:app.bsky.feed.post", True),
        ("operation:delete", True),
    ],
)
def test_delete_events_only_match_collection_and_operation(key, expected):
    assert matches_filter(_event("delete"), key) is expected


def test_subscribe_and_unsubscribe():
    bus = SubscriptionBus()
    received = []
    unsubscribe = bus.subscribe(POST_FILTER, received.append)
    bus.subscribe(POST_FILTER, received.append)

    assert bus.subscriber_count(POST_FILTER) == 1
    assert bus.dispatch(_event()) == 1
    assert len(received) == 1

    unsubscribe()
    unsubscribe()
    assert bus.filter_keys() == []
    assert bus.dispatch(_event()) == 0


def test_removing_one_callback_keeps_the_key():
    bus = SubscriptionBus()
    first, second = [], []
    remove_first = bus.subscribe("operation:create", first.append)
    bus.subscribe("operation:create", second.append)

    remove_first()
    bus.dispatch(_event())

    assert (len(first), len(second)) == (0, 1)
    assert len(bus) == 1


def test_convenience_subscriptions():
    bus = SubscriptionBus()
    bus.subscribe_to_posts(lambda event: None)
    bus.subscribe_to_status_updates(lambda event: None)
    bus.subscribe_to_gallery_updates(lambda event: None)

    assert sorted(bus.filter_keys()) == sorted([POST_FILTER, STATUS_UPDATE_FILTER, GALLERY_FILTER])
    assert bus.subscriber_count() == 3
    assert bus.dispatch(_event("create", "social.grain.gallery", title="Trip")) == 1


def test_failing_callback_does_not_stop_delivery(caplog):
    bus = SubscriptionBus()
    received = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe("operation:create", broken)
    bus.subscribe(POST_FILTER, received.append)

    assert bus.dispatch(_event()) == 2
    assert len(received) == 1
    assert "subscriber bug" in caplog.text


def test_clear():
    bus = SubscriptionBus()
    bus.subscribe_to_posts(lambda event: None)
    bus.clear()
    assert len(bus) == 0


@pytest.mark.asyncio
async def test_async_callbacks_are_scheduled():
    bus = SubscriptionBus()
    received = []

    async def handler(event):
        await asyncio.sleep(0)
        received.append(event.record_key)

    bus.subscribe_to_posts(handler)
    bus.dispatch(_event())
    assert received == []

    await bus.drain()
    assert received == ["3kabc"]
