"""Asynchronous XRPC client for AT Protocol repositories.

All upstream traffic goes through :class:`XrpcClient`: one ``httpx.AsyncClient``
per instance, tenacity retries for transient failures, and an
:class:`~atsync.utils.rate_limit.AsyncRateLimiter` bounding concurrency.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from atsync.config.settings import AtsyncSettings
from atsync.exceptions import AuthenticationError, HandleResolutionError, MissingSessionError, XrpcError
from atsync.utils.network import get_async_retrying
from atsync.utils.rate_limit import AsyncRateLimiter

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
AUTH_ERROR_NAMES = frozenset({"AuthRequired", "AuthenticationRequired", "ExpiredToken", "InvalidToken"})
MAX_LIST_LIMIT = 100


@dataclass(frozen=True, slots=True)
class RecordPage:
    """One ``listRecords`` page: raw record items plus the continuation cursor."""

    records: list[dict[str, Any]]
    cursor: str | None = None


@dataclass(frozen=True, slots=True)
class Session:
    access_jwt: str
    refresh_jwt: str | None
    did: str
    handle: str


class RepositoryApi(Protocol):
    """The subset of XRPC the discovery engine and synchronizer depend on."""

    async def resolve_handle(self, handle: str) -> str: ...

    async def list_records(
        self, repo: str, collection: str, *, limit: int = 50, cursor: str | None = None
    ) -> RecordPage: ...

    async def get_record(self, repo: str, collection: str, rkey: str) -> dict[str, Any]: ...

    async def describe_repo(self, repo: str) -> dict[str, Any]: ...

    async def get_profile(self, actor: str) -> dict[str, Any]: ...

    async def ensure_session(self) -> Session | None: ...


class XrpcClient:
    """Thin XRPC client over ``httpx.AsyncClient``.

    Args:
        settings: Repository and HTTP settings. Defaults to ``AtsyncSettings()``.
        http_client: Optional pre-built client (tests pass one bound to a mock
            transport). When omitted, one is created and owned by this instance.
        limiter: Optional shared limiter; defaults to one built from settings.

    """

    def __init__(
        self,
        settings: AtsyncSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        limiter: AsyncRateLimiter | None = None,
    ) -> None:
        self.settings = settings or AtsyncSettings()
        http = self.settings.http
        self.base_url = self.settings.repository.service_url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=http.timeout,
            headers={"User-Agent": http.user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )
        self.limiter = limiter or AsyncRateLimiter(http.requests_per_second, http.max_concurrency)
        self._session: Session | None = None
        self._session_lock = asyncio.Lock()

    async def __aenter__(self) -> XrpcClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def has_credentials(self) -> bool:
        repo = self.settings.repository
        return bool(repo.identifier and repo.password)

    async def ensure_session(self) -> Session | None:
        """Open a session when credentials are configured.

        Returns ``None`` for anonymous access. Raises :class:`MissingSessionError`
        when ``repository.require_session`` is set without credentials.
        """
        if self._session is not None:
            return self._session
        repo = self.settings.repository
        if not self.has_credentials:
            if repo.require_session:
                raise MissingSessionError(repo.identifier or repo.handle)
            return None
        async with self._session_lock:
            if self._session is None:
                self._session = await self._create_session()
        return self._session

    async def _create_session(self) -> Session:
        repo = self.settings.repository
        password = repo.password.get_secret_value() if repo.password else ""
        logger.info("Opening AT Protocol session for %s", repo.identifier)
        try:
            data = await self._call(
                "POST",
                "com.atproto.server.createSession",
                json={"identifier": repo.identifier, "password": password},
                authenticated=False,
            )
        except XrpcError as e:
            if e.status in {400, HTTP_UNAUTHORIZED}:
                msg = f"createSession rejected for '{repo.identifier}': {e.message or e.error}"
                raise AuthenticationError(msg) from e
            raise
        return Session(
            access_jwt=str(data["accessJwt"]),
            refresh_jwt=data.get("refreshJwt"),
            did=str(data.get("did", "")),
            handle=str(data.get("handle", repo.identifier or "")),
        )

    def reset_session(self) -> None:
        self._session = None

    # ------------------------------------------------------------------
    # Raw calls
    # ------------------------------------------------------------------
    async def query(self, method: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Issue an XRPC query (HTTP GET)."""
        return await self._authenticated_call("GET", method, params=params)

    async def procedure(self, method: str, body: Mapping[str, Any]) -> dict[str, Any]:
        """Issue an XRPC procedure (HTTP POST)."""
        return await self._authenticated_call("POST", method, json=dict(body))

    async def _authenticated_call(
        self,
        http_method: str,
        method: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        await self.ensure_session()
        try:
            return await self._call(http_method, method, params=params, json=json)
        except AuthenticationError:
            if self._session is None or not self.has_credentials:
                raise
            # Token expired mid-run: reopen once and retry.
            logger.info("Session rejected for %s, re-authenticating", method)
            self.reset_session()
            await self.ensure_session()
            return await self._call(http_method, method, params=params, json=json)

    async def _call(
        self,
        http_method: str,
        method: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        http = self.settings.http
        url = f"{self.base_url}/xrpc/{method}"
        query = {key: value for key, value in (params or {}).items() if value is not None}
        headers = {}
        if authenticated and self._session is not None:
            headers["Authorization"] = f"Bearer {self._session.access_jwt}"

        retrying = get_async_retrying(
            max_attempts=http.retry_attempts,
            min_wait=http.retry_min_wait,
            max_wait=http.retry_max_wait,
        )
        async for attempt in retrying:
            with attempt:
                async with self.limiter.throttle():
                    response = await self._client.request(http_method, url, params=query, json=json, headers=headers)
                return self._decode(method, response)
        msg = "unreachable: tenacity exhausted without raising"
        raise AssertionError(msg)

    @staticmethod
    def _decode(method: str, response: httpx.Response) -> dict[str, Any]:
        if response.is_success:
            if not response.content:
                return {}
            try:
                data = response.json()
            except ValueError as e:
                raise XrpcError(method, response.status_code, "InvalidResponse", str(e)) from e
            return data if isinstance(data, dict) else {"data": data}

        error: str | None = None
        message: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error = body.get("error")
            message = body.get("message")

        if response.status_code == HTTP_UNAUTHORIZED or error in AUTH_ERROR_NAMES:
            detail = f"{error or response.status_code}"
            if message:
                detail += f": {message}"
            msg = f"XRPC {method} requires a valid session ({detail})"
            raise AuthenticationError(msg)
        raise XrpcError(method, response.status_code, error, message)

    # ------------------------------------------------------------------
    # Typed endpoints
    # ------------------------------------------------------------------
    async def resolve_handle(self, handle: str) -> str:
        """Resolve ``handle`` to a DID. DIDs are returned unchanged."""
        if handle.startswith("did:"):
            return handle
        try:
            data = await self.query("com.atproto.identity.resolveHandle", {"handle": handle.lstrip("@")})
        except XrpcError as e:
            raise HandleResolutionError(handle, e) from e
        did = data.get("did")
        if not isinstance(did, str) or not did:
            raise HandleResolutionError(handle, "response carried no DID")
        return did

    async def list_records(
        self, repo: str, collection: str, *, limit: int = 50, cursor: str | None = None
    ) -> RecordPage:
        data = await self.query(
            "com.atproto.repo.listRecords",
            {"repo": repo, "collection": collection, "limit": max(1, min(limit, MAX_LIST_LIMIT)), "cursor": cursor},
        )
        records = [item for item in data.get("records") or [] if isinstance(item, dict)]
        next_cursor = data.get("cursor")
        return RecordPage(records=records, cursor=next_cursor if isinstance(next_cursor, str) and next_cursor else None)

    async def get_record(self, repo: str, collection: str, rkey: str) -> dict[str, Any]:
        return await self.query("com.atproto.repo.getRecord", {"repo": repo, "collection": collection, "rkey": rkey})

    async def describe_repo(self, repo: str) -> dict[str, Any]:
        return await self.query("com.atproto.repo.describeRepo", {"repo": repo})

    async def get_profile(self, actor: str) -> dict[str, Any]:
        return await self.query("app.bsky.actor.getProfile", {"actor": actor})


__all__ = ["RecordPage", "RepositoryApi", "Session", "XrpcClient"]
