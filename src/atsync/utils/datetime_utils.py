"""Date and time utilities for record timestamps."""

from __future__ import annotations

from datetime import UTC, date, datetime, tzinfo
from typing import TYPE_CHECKING, Any

from dateutil import parser as dateutil_parser

from atsync.utils.exceptions import DateTimeParsingError, InvalidDateTimeInputError

if TYPE_CHECKING:
    from collections.abc import Mapping


def parse_datetime_flexible(
    value: datetime | date | str | Any | None,
    *,
    default_timezone: tzinfo = UTC,
    parser_kwargs: Mapping[str, Any] | None = None,
) -> datetime:
    """Parse a datetime value using a flexible approach.

    Args:
        value: Datetime-like input (datetime/date/str/epoch number). ``None`` or
            empty strings raise an exception.
        default_timezone: Timezone assigned to naive datetimes and used for
            normalization when a timezone is present.
        parser_kwargs: Additional keyword arguments forwarded to ``dateutil.parser``.

    Returns:
        A timezone-normalized ``datetime``.

    Raises:
        InvalidDateTimeInputError: if the input is None or an empty string.
        DateTimeParsingError: if parsing fails.

    """
    dt = _to_datetime(value, parser_kwargs=parser_kwargs)
    return normalize_timezone(dt, default_timezone=default_timezone)


def _to_datetime(value: Any, *, parser_kwargs: Mapping[str, Any] | None = None) -> datetime:
    """Convert a value to a datetime object without timezone normalization."""
    if value is None:
        raise InvalidDateTimeInputError("None", "Input value cannot be None")

    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise DateTimeParsingError(str(value), e) from e

    raw = str(value).strip()
    if not raw:
        raise InvalidDateTimeInputError(str(value), "Input value cannot be an empty or whitespace-only string")

    try:
        return dateutil_parser.isoparse(raw)
    except (TypeError, ValueError, OverflowError):
        pass

    try:
        return dateutil_parser.parse(raw, **(parser_kwargs or {}))
    except (TypeError, ValueError, OverflowError) as e:
        raise DateTimeParsingError(raw, e) from e


def normalize_timezone(dt: datetime, *, default_timezone: tzinfo = UTC) -> datetime:
    """Normalize a datetime to a specific timezone.

    Naive datetimes are made aware in ``default_timezone``; aware datetimes are
    converted to it.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=default_timezone)
    return dt.astimezone(default_timezone)


def coerce_timestamp(value: Any) -> datetime | None:
    """Return an aware UTC datetime for ``value`` or ``None`` when unparseable."""
    if value is None or value == "":
        return None
    try:
        return parse_datetime_flexible(value, default_timezone=UTC)
    except (DateTimeParsingError, InvalidDateTimeInputError):
        return None


def to_iso(dt: datetime | None) -> str | None:
    """Format an aware datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
    if dt is None:
        return None
    return normalize_timezone(dt).isoformat().replace("+00:00", "Z")


def utcnow() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "coerce_timestamp",
    "normalize_timezone",
    "parse_datetime_flexible",
    "to_iso",
    "utcnow",
]
