"""Centralized configuration for atsync.

Settings are plain Pydantic sections under one ``AtsyncSettings`` root.

Configuration priority (highest to lowest):
1. Explicit overrides passed to :func:`load_settings`
2. Environment variables (``ATSYNC_SECTION__KEY``)
3. TOML file (optional)
4. Defaults
"""

from __future__ import annotations

import logging
import os
import tomllib
from copy import deepcopy
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from atsync.config.exceptions import ConfigNotFoundError, ConfigValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "ATSYNC_"

DEFAULT_SERVICE_URL = "https://bsky.social"
DEFAULT_JETSTREAM_ENDPOINT = "wss://jetstream2.us-east.bsky.network/subscribe"
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_TOTAL_RECORDS = 10_000

DEFAULT_ACTIVITY_COLLECTIONS = (
    "app.bsky.feed.post",
    "app.bsky.feed.like",
    "app.bsky.feed.repost",
    "app.bsky.graph.follow",
    "com.whtwnd.blog.entry",
)

DEFAULT_STREAM_COLLECTIONS = (
    "app.bsky.feed.post",
    "a.status.update",
    "social.grain.gallery",
    "social.grain.gallery.item",
    "social.grain.photo",
    "com.whtwnd.blog.entry",
)

DiscoveryMode = Literal["auto", "repository", "probe"]


class RepositorySettings(BaseModel):
    """Which repository to read and how to authenticate against its service."""

    service_url: str = Field(
        default=DEFAULT_SERVICE_URL,
        description="Base URL of the PDS/AppView serving XRPC requests",
    )
    handle: str | None = Field(
        default=None,
        description="Default repository handle (e.g. 'alice.bsky.social')",
    )
    did: str | None = Field(
        default=None,
        description="Default repository DID; skips handle resolution when set",
    )
    identifier: str | None = Field(
        default=None,
        description="Login identifier for createSession",
    )
    password: SecretStr | None = Field(
        default=None,
        description="App password for createSession",
    )
    require_session: bool = Field(
        default=False,
        description="Fail fast with MissingSessionError when no credentials are configured",
    )

    @field_validator("service_url")
    @classmethod
    def validate_service_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = f"service_url must be an http(s) URL, got {v!r}"
            raise ValueError(msg)
        return v.rstrip("/")

    @property
    def default_repository(self) -> str | None:
        return self.did or self.handle


class HttpSettings(BaseModel):
    """Upstream request behaviour: timeouts, retries and throttling."""

    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per XRPC call")
    retry_min_wait: float = Field(default=0.5, ge=0, description="Minimum backoff in seconds")
    retry_max_wait: float = Field(default=8.0, ge=0, description="Maximum backoff in seconds")
    max_concurrency: int = Field(default=10, ge=1, description="Maximum in-flight XRPC requests")
    requests_per_second: float | None = Field(
        default=None,
        gt=0,
        description="Optional request spacing; None disables spacing",
    )
    user_agent: str = Field(default="atsync", description="User-Agent header value")


class CacheSettings(BaseModel):
    """In-memory TTL cache configuration."""

    ttl_seconds: float = Field(
        default=DEFAULT_CACHE_TTL_SECONDS,
        gt=0,
        description="Entry lifetime; entries past it are stale but never evicted",
    )


class DiscoverySettings(BaseModel):
    """Collection and record-shape discovery."""

    mode: DiscoveryMode = Field(
        default="auto",
        description="'repository' uses describeRepo, 'probe' tests candidates, 'auto' prefers describeRepo",
    )
    batch_size: int = Field(default=10, ge=1, description="Concurrent probes per batch")
    batch_delay: float = Field(default=0.1, ge=0, description="Pause between probe batches in seconds")
    sample_size: int = Field(default=10, ge=1, le=100, description="Records sampled per collection")
    max_depth: int = Field(default=3, ge=1, description="Depth cap for property sketches")
    extra_candidates: list[str] = Field(
        default_factory=list,
        description="Additional collections to probe after the built-in catalog",
    )


class TimestampGuardSettings(BaseModel):
    """Rules for rejecting implausible record timestamps."""

    reject_now_sentinel: bool = Field(
        default=True,
        description="Treat a timestamp equal to the current instant as unset",
    )
    max_age_days: float = Field(default=365.0, gt=0, description="Oldest accepted record age")
    reject_future: bool = Field(default=True, description="Reject timestamps after the current instant")


class SyncSettings(BaseModel):
    """Synchronizer fetch behaviour."""

    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=100, description="listRecords page size")
    max_total: int = Field(
        default=DEFAULT_MAX_TOTAL_RECORDS,
        ge=1,
        description="Safety cap for get_all_records",
    )
    request_delay: float = Field(default=0.1, ge=0, description="Pause before an activity burst")
    activity_collections: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ACTIVITY_COLLECTIONS),
        description="Collections fanned out by get_recent_activity",
    )
    activity_per_collection: int = Field(default=5, ge=1, le=100, description="Records per activity collection")
    resolve_subjects: int = Field(
        default=5,
        ge=0,
        description="Likes/reposts whose subject post and author are resolved",
    )
    timestamps: TimestampGuardSettings = Field(default_factory=TimestampGuardSettings)


class StreamSettings(BaseModel):
    """Live update settings: the Jetstream connection and the polling fallback."""

    endpoint: str = Field(default=DEFAULT_JETSTREAM_ENDPOINT, description="Jetstream subscribe URL")
    wanted_collections: list[str] = Field(default_factory=lambda: list(DEFAULT_STREAM_COLLECTIONS))
    wanted_dids: list[str] = Field(default_factory=list)
    cursor: int | None = Field(default=None, ge=0, description="Replay from this time_us cursor")
    poll_interval: float = Field(default=5.0, gt=0, description="Seconds between polling passes of RepositoryPoller")
    poll_limit: int = Field(default=50, ge=1, le=100, description="Newest records read per collection on each poll")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith(("ws://", "wss://")):
            msg = f"stream endpoint must be a ws(s) URL, got {v!r}"
            raise ValueError(msg)
        return v


class SnapshotSettings(BaseModel):
    """Build-time snapshot reading for offline mode."""

    directory: Path | None = Field(default=None, description="Directory holding snapshot JSON documents")
    max_age_seconds: float = Field(default=3600.0, gt=0, description="Age after which a snapshot is stale")


class AtsyncSettings(BaseSettings):
    """Root configuration for atsync.

    Supports environment variable overrides with the pattern
    ``ATSYNC_SECTION__KEY`` (e.g. ``ATSYNC_CACHE__TTL_SECONDS=60``).
    """

    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)

    model_config = SettingsConfigDict(
        extra="forbid",
        validate_assignment=True,
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def validate_cross_field(self) -> AtsyncSettings:
        if self.http.retry_max_wait < self.http.retry_min_wait:
            msg = "http.retry_max_wait must be >= http.retry_min_wait"
            raise ValueError(msg)
        if bool(self.repository.identifier) != bool(self.repository.password):
            logger.warning("repository.identifier and repository.password must both be set to open a session")
        return self


def _collect_env_override_paths() -> set[tuple[str, ...]]:
    """Return the set of config paths defined via environment variables."""
    env_paths: set[tuple[str, ...]] = set()
    for key in os.environ:
        if not key.startswith(ENV_PREFIX):
            continue
        parts = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if parts:
            env_paths.add(tuple(parts))
    return env_paths


def _merge_config(
    base: dict[str, Any],
    override: dict[str, Any],
    env_override_paths: set[tuple[str, ...]],
    current_path: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Merge override into base, skipping keys provided via env vars."""
    merged = deepcopy(base)
    for key, value in override.items():
        path = (*current_path, str(key).lower())
        if path in env_override_paths:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_config(merged[key], value, env_override_paths, path)
        else:
            merged[key] = value
    return merged


def load_settings(path: Path | str | None = None, **overrides: Any) -> AtsyncSettings:
    """Load settings from defaults, an optional TOML file, env vars and overrides.

    Args:
        path: Optional TOML file. A missing explicit path is an error.
        **overrides: Section dictionaries (e.g. ``cache={"ttl_seconds": 10}``)
            applied last.

    Raises:
        ConfigNotFoundError: If ``path`` is given but does not exist.
        ConfigValidationError: If the merged configuration is invalid.

    """
    file_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigNotFoundError(config_path)
        logger.info("Loading config from %s", config_path)
        try:
            file_data = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigValidationError([{"loc": (str(config_path),), "msg": str(e)}]) from e

    try:
        base_dict = AtsyncSettings().model_dump(mode="python")
        merged = _merge_config(base_dict, file_data, _collect_env_override_paths())
        merged = _merge_config(merged, overrides, set())
        return AtsyncSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigValidationError(e.errors()) from e


__all__ = [
    "DEFAULT_ACTIVITY_COLLECTIONS",
    "DEFAULT_JETSTREAM_ENDPOINT",
    "DEFAULT_STREAM_COLLECTIONS",
    "AtsyncSettings",
    "CacheSettings",
    "DiscoveryMode",
    "DiscoverySettings",
    "HttpSettings",
    "RepositorySettings",
    "SnapshotSettings",
    "StreamSettings",
    "SyncSettings",
    "TimestampGuardSettings",
    "load_settings",
]
