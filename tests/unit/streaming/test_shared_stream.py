from __future__ import annotations

import pytest

from atsync.config.settings import StreamSettings
from atsync.streaming import SharedStream, StreamState
from atsync.streaming.bus import POST_FILTER
from tests.helpers.stream import FakeConnector, commit, wait_until


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def shared(connector) -> SharedStream:
    return SharedStream.build(StreamSettings(endpoint="wss://jetstream.test/subscribe"), connector=connector)


@pytest.mark.asyncio
async def test_connection_is_reference_counted(shared, connector):
    await shared.start_shared_stream()
    await shared.start_shared_stream()

    assert shared.connection_count == 2
    assert len(connector.transports) == 1

    await shared.stop_shared_stream()
    assert shared.client.is_streaming
    assert not connector.current.closed

    await shared.stop_shared_stream()
    assert shared.connection_count == 0
    assert shared.client.state is StreamState.STOPPED
    assert connector.current.closed


@pytest.mark.asyncio
async def test_extra_stop_is_a_no_op(shared, connector):
    await shared.stop_shared_stream()

    assert shared.connection_count == 0
    assert connector.urls == []


@pytest.mark.asyncio
async def test_consumer_context(shared):
    async with shared.consumer():
        assert shared.client.is_streaming
        assert shared.connection_count == 1
    assert shared.connection_count == 0
    assert not shared.client.is_streaming


@pytest.mark.asyncio
async def test_events_reach_subscribers(shared, connector):
    received = []
    shared.subscribe(POST_FILTER, received.append)

    async with shared.consumer():
        connector.current.push(commit("create", text="hi"))
        connector.current.push(commit("create", "app.bsky.feed.like"))
        await wait_until(lambda: shared.client.cursor is not None)
        await wait_until(lambda: len(received) == 1)

    assert received[0].record_value["text"] == "hi"


@pytest.mark.asyncio
async def test_dropped_connection_is_reopened_without_changing_count(shared, connector):
    await shared.start_shared_stream()
    connector.current.end()
    await wait_until(lambda: shared.client.state is StreamState.STOPPED)

    await shared.start_shared_stream()

    assert len(connector.transports) == 2
    assert shared.connection_count == 2
    assert shared.client.is_streaming
    await shared.aclose()


@pytest.mark.asyncio
async def test_aclose(shared, connector):
    await shared.start_shared_stream()
    await shared.start_shared_stream()

    await shared.aclose()

    assert shared.connection_count == 0
    assert connector.current.closed
