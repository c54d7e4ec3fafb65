"""Plausibility checks for record timestamps."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from atsync.config.settings import TimestampGuardSettings
from atsync.data_primitives.records import RecordEnvelope
from atsync.utils.datetime_utils import normalize_timezone, utcnow

# Timestamps are compared at millisecond precision, as they are serialized upstream.
NOW_TOLERANCE = timedelta(milliseconds=1)


class TimestampGuard:
    """Rejects missing, "now"-sentinel, too old and future timestamps.

    A record whose timestamp equals the current instant almost always had
    its timestamp filled in at read time rather than at creation, so it is
    treated as unset unless ``reject_now_sentinel`` is turned off.
    """

    def __init__(
        self,
        settings: TimestampGuardSettings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or TimestampGuardSettings()
        self._clock = clock

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.settings.max_age_days)

    def now(self) -> datetime:
        return normalize_timezone(self._clock())

    def accepts(self, timestamp: datetime | None, *, now: datetime | None = None) -> bool:
        if timestamp is None:
            return False
        current = now or self.now()
        ts = normalize_timezone(timestamp)
        if self.settings.reject_now_sentinel and abs(ts - current) < NOW_TOLERANCE:
            return False
        if ts <= current - self.max_age:
            return False
        return not (self.settings.reject_future and ts > current)

    def filter(self, records: Iterable[RecordEnvelope], *, now: datetime | None = None) -> list[RecordEnvelope]:
        """Keep records whose ``indexed_at`` passes :meth:`accepts`."""
        current = now or self.now()
        return [record for record in records if self.accepts(record.indexed_at, now=current)]


__all__ = ["TimestampGuard"]
