"""Live updates: Jetstream client, polling fallback, subscription bus and the shared connection."""

from atsync.streaming.bus import (
    GALLERY_FILTER,
    POST_FILTER,
    STATUS_UPDATE_FILTER,
    SubscriptionBus,
    matches_filter,
)
from atsync.streaming.client import JetstreamClient, StreamState
from atsync.streaming.events import decode_commit, options_update, parse_message, subscribe_url
from atsync.streaming.polling import RepositoryPoller
from atsync.streaming.shared import SharedStream
from atsync.streaming.transport import Connector, StreamTransport, websocket_connector

__all__ = [
    "GALLERY_FILTER",
    "POST_FILTER",
    "STATUS_UPDATE_FILTER",
    "Connector",
    "JetstreamClient",
    "RepositoryPoller",
    "SharedStream",
    "StreamState",
    "StreamTransport",
    "SubscriptionBus",
    "decode_commit",
    "matches_filter",
    "options_update",
    "parse_message",
    "subscribe_url",
    "websocket_connector",
]
