from datetime import timedelta

import pytest

from atsync.config.settings import TimestampGuardSettings
from atsync.sync import TimestampGuard
from tests.helpers.fakes import NOW


@pytest.fixture
def guard(clock) -> TimestampGuard:
    return TimestampGuard(clock=clock)


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(seconds=1), True),
        (timedelta(days=364), True),
        (timedelta(days=365), False),
        (timedelta(days=400), False),
        (timedelta(0), False),
        (timedelta(microseconds=500), False),
        (-timedelta(seconds=1), False),
    ],
)
def test_accepts(guard, offset, expected):
    assert guard.accepts(NOW - offset) is expected


def test_missing_timestamp_is_rejected(guard):
    assert guard.accepts(None) is False


def test_naive_timestamps_are_treated_as_utc(guard):
    assert guard.accepts((NOW - timedelta(hours=1)).replace(tzinfo=None)) is True


def test_sentinel_check_can_be_disabled(clock):
    guard = TimestampGuard(TimestampGuardSettings(reject_now_sentinel=False), clock=clock)
    assert guard.accepts(NOW) is True


def test_future_check_can_be_disabled(clock):
    guard = TimestampGuard(TimestampGuardSettings(reject_future=False), clock=clock)
    assert guard.accepts(NOW + timedelta(days=1)) is True


def test_filter_uses_indexed_at(guard, make_record):
    kept = make_record(rkey="kept", age=timedelta(hours=2))
    undated = make_record(rkey="undated", age=None)
    old = make_record(rkey="old", age=timedelta(days=500))

    assert guard.filter([kept, undated, old]) == [kept]
