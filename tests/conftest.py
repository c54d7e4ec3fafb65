"""Shared fixtures: settings tuned for tests, an in-memory repository API, record factories."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import pytest

from atsync.config.settings import AtsyncSettings
from atsync.data_primitives.records import RecordEnvelope
from tests.helpers.fakes import DID, HANDLE, NOW, FakeRepositoryApi, iso


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def settings() -> AtsyncSettings:
    """Settings with retries, delays and throttling turned off."""
    return AtsyncSettings(
        repository={"handle": HANDLE},
        http={"retry_attempts": 1, "retry_min_wait": 0, "retry_max_wait": 0},
        discovery={"batch_delay": 0},
        sync={"request_delay": 0},
    )


@pytest.fixture
def fake_api() -> FakeRepositoryApi:
    return FakeRepositoryApi()


@pytest.fixture
def make_record() -> Callable[..., RecordEnvelope]:
    """Build a :class:`RecordEnvelope` for ``collection`` created ``age`` before ``NOW``."""

    def factory(
        collection: str = "app.bsky.feed.post",
        rkey: str = "3k1",
        *,
        age: timedelta | None = timedelta(hours=1),
        repo: str = DID,
        **value: Any,
    ) -> RecordEnvelope:
        body: dict[str, Any] = {"$type": collection, **value}
        if age is not None:
            body.setdefault("createdAt", iso(NOW - age))
        item = {"uri": f"at://{repo}/{collection}/{rkey}", "cid": f"cid-{rkey}", "value": body}
        return RecordEnvelope.from_xrpc(item)

    return factory
