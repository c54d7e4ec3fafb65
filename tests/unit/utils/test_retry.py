import httpx
import pytest

from atsync.exceptions import XrpcError
from atsync.utils.network import get_async_retrying, is_retryable_error


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://pds.example/xrpc/x")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (XrpcError("m", 429, "RateLimitExceeded"), True),
        (XrpcError("m", 502), True),
        (XrpcError("m", 400, "InvalidRequest"), False),
        (_status_error(503), True),
        (_status_error(404), False),
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (ValueError("nope"), False),
    ],
)
def test_is_retryable_error(exc, expected):
    assert is_retryable_error(exc) is expected


@pytest.mark.asyncio
async def test_retrying_gives_up_after_max_attempts():
    attempts = 0
    with pytest.raises(XrpcError):
        async for attempt in get_async_retrying(max_attempts=3, min_wait=0, max_wait=0):
            with attempt:
                attempts += 1
                raise XrpcError("m", 503)
    assert attempts == 3


@pytest.mark.asyncio
async def test_retrying_does_not_retry_client_errors():
    attempts = 0
    with pytest.raises(XrpcError):
        async for attempt in get_async_retrying(max_attempts=3, min_wait=0, max_wait=0):
            with attempt:
                attempts += 1
                raise XrpcError("m", 400)
    assert attempts == 1
