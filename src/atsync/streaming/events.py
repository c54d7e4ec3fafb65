"""Jetstream wire format: subscribe requests out, commit events in."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlencode

from atsync.data_primitives.records import Operation, StreamEvent
from atsync.exceptions import StreamError

COMMIT_KIND = "commit"


def subscribe_url(endpoint: str, cursor: int | None = None) -> str:
    """Jetstream URL, replaying from ``cursor`` (a ``time_us`` value) when given."""
    if cursor is None:
        return endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode({'cursor': cursor})}"


def options_update(wanted_collections: Iterable[str], wanted_dids: Iterable[str]) -> str:
    """The ``options_update`` message sent once after connecting."""
    return json.dumps(
        {
            "type": "options_update",
            "payload": {
                "wantedCollections": list(wanted_collections),
                "wantedDids": list(wanted_dids),
            },
        }
    )


def decode_commit(payload: Mapping[str, Any]) -> StreamEvent | None:
    """Turn one decoded Jetstream message into a :class:`StreamEvent`.

    Identity and account messages return ``None``. Delete commits carry no
    record value and no shape.

    Raises:
        StreamError: If a commit message is missing required fields.

    """
    if payload.get("kind") != COMMIT_KIND:
        return None
    commit = payload.get("commit")
    if not isinstance(commit, Mapping):
        msg = "commit message without a commit body"
        raise StreamError(msg)

    did = payload.get("did")
    collection = commit.get("collection")
    rkey = commit.get("rkey")
    if not (isinstance(did, str) and isinstance(collection, str) and isinstance(rkey, str)):
        msg = f"commit message missing did/collection/rkey: {dict(commit)!r}"
        raise StreamError(msg)
    try:
        operation = Operation(commit.get("operation"))
    except ValueError as e:
        msg = f"unknown commit operation {commit.get('operation')!r}"
        raise StreamError(msg) from e

    record = commit.get("record") if operation is not Operation.DELETE else None
    if record is not None and not isinstance(record, Mapping):
        msg = f"commit record is not an object: {record!r}"
        raise StreamError(msg)
    shape_id = record.get("$type") if record else None
    time_us = payload.get("time_us")

    return StreamEvent(
        repository_id=did,
        collection=collection,
        shape_id=shape_id if isinstance(shape_id, str) else None,
        operation=operation,
        record_key=rkey,
        record_value=record,
        cid=commit.get("cid"),
        rev=commit.get("rev"),
        received_at_micros=time_us if isinstance(time_us, int) else 0,
    )


def parse_message(raw: str | bytes) -> StreamEvent | None:
    """Decode a raw transport frame.

    Raises:
        StreamError: If the frame is not a JSON object or is a malformed commit.

    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"invalid JSON frame: {e}"
        raise StreamError(msg) from e
    if not isinstance(payload, Mapping):
        msg = f"expected a JSON object, got {type(payload).__name__}"
        raise StreamError(msg)
    return decode_commit(payload)


__all__ = ["COMMIT_KIND", "decode_commit", "options_update", "parse_message", "subscribe_url"]
