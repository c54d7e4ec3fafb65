"""Tests for the runtime composition root."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
import respx

from atsync.config.settings import AtsyncSettings
from atsync.runtime import AtsyncRuntime
from atsync.streaming import StreamState, decode_commit
from atsync.sync import DataSource, NetworkSynchronizer, SnapshotSynchronizer
from tests.helpers.fakes import DID, HANDLE, iso
from tests.helpers.stream import FakeConnector, commit

POST = "app.bsky.feed.post"


def _runtime(settings: AtsyncSettings, **kwargs) -> AtsyncRuntime:
    return AtsyncRuntime.create(settings, connector=FakeConnector(), load_plugins=False, **kwargs)


def _with_snapshot(directory) -> AtsyncSettings:
    return AtsyncSettings(repository={"handle": HANDLE}, snapshot={"directory": directory})


def _snapshot_dir(tmp_path):
    (tmp_path / "profile.json").write_text(json.dumps({"did": DID, "handle": HANDLE}), encoding="utf-8")
    (tmp_path / "metadata.json").write_text(json.dumps({"lastUpdated": iso(datetime.now(UTC))}), encoding="utf-8")
    return tmp_path


@pytest.mark.asyncio
async def test_repository_defaults(settings):
    async with _runtime(settings) as runtime:
        assert runtime.repository() == HANDLE
        assert runtime.repository(DID) == DID

    async with _runtime(AtsyncSettings()) as runtime:
        with pytest.raises(ValueError, match="no repository given"):
            runtime.repository()


def test_offline_requires_snapshot_directory(settings):
    with pytest.raises(ValueError, match="snapshot.directory"):
        _runtime(settings, offline=True)


@pytest.mark.asyncio
async def test_synchronizer_selection(settings, tmp_path):
    online = _runtime(settings)
    offline = _runtime(_with_snapshot(tmp_path), offline=True)

    assert isinstance(online.synchronizer, NetworkSynchronizer)
    assert isinstance(offline.synchronizer, SnapshotSynchronizer)
    await online.aclose()
    await offline.aclose()


@pytest.mark.asyncio
async def test_poller_shares_client_and_stream_settings():
    settings = AtsyncSettings(repository={"handle": HANDLE}, stream={"poll_interval": 30.0})
    async with _runtime(settings) as runtime:
        poller = runtime.poller(on_record=print)

        assert poller.client is runtime.client
        assert poller.discovery is runtime.discovery
        assert poller.repository_id == HANDLE
        assert poller.settings.poll_interval == 30.0
        assert poller.state is StreamState.STOPPED


@pytest.mark.asyncio
async def test_repository_did_joins_stream_filter():
    settings = AtsyncSettings(repository={"did": DID}, stream={"wanted_dids": ["did:plc:bob"]})

    async with _runtime(settings) as runtime:
        assert runtime.stream.client.wanted_dids == ["did:plc:bob", DID]


@pytest.mark.asyncio
async def test_stream_commits_invalidate_cache(settings):
    async with _runtime(settings) as runtime:
        runtime.cache.set(f"records:{DID}:{POST}:10", ())
        runtime.cache.set(f"records:{DID}:app.bsky.feed.like:10", ())
        unsubscribe = runtime.invalidate_on_events()

        runtime.stream.bus.dispatch(decode_commit(commit("create", POST, did=DID)))

        assert f"records:{DID}:{POST}:10" not in runtime.cache
        assert f"records:{DID}:app.bsky.feed.like:10" in runtime.cache

        unsubscribe()
        assert runtime.stream.bus.subscriber_count() == 0


@pytest.mark.asyncio
async def test_discover_seeds_registry(settings):
    with respx.mock(base_url=settings.repository.service_url, assert_all_called=False) as router:
        router.get("/xrpc/com.atproto.identity.resolveHandle").respond(json={"did": DID})
        router.get("/xrpc/com.atproto.repo.describeRepo").respond(json={"collections": ["com.example.note"]})
        router.get("/xrpc/com.atproto.repo.listRecords").respond(
            json={"records": [{"uri": f"at://{DID}/com.example.note/1", "value": {"$type": "com.example.note"}}]}
        )

        async with _runtime(settings) as runtime:
            analysis = await runtime.discover()

            assert analysis.did == DID
            assert "com.example.note" in runtime.registry


@pytest.mark.asyncio
async def test_activity_data_prefers_fresh_snapshot(tmp_path):
    configured = _with_snapshot(_snapshot_dir(tmp_path))

    with respx.mock(assert_all_called=False) as router:
        async with _runtime(configured) as runtime:
            data = await runtime.get_activity_data()

        assert data.source is DataSource.CACHE
        assert not router.calls
