"""Tests for streaming media through the proxy."""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest

from redproxy.exceptions import NotFoundError, RateLimitedError, UpstreamStatusError
from redproxy.media.stream import CHUNK_SIZE, MediaFetcher
from tests.fakes import FakeResponse, FakeSession, FakeSessionManager


def make_fetcher(config, responses, exporter=None):
    session = FakeSession(responses)
    return MediaFetcher(config, FakeSessionManager(session), exporter), session


@pytest.mark.asyncio
async def test_streams_full_body_in_chunks(config):
    body = b"x" * (CHUNK_SIZE * 2 + 10)
    response = FakeResponse(200, body, headers={"Content-Type": "image/jpeg", "Content-Length": str(len(body)),
                                                 "Set-Cookie": "tracking=1"})
    fetcher, session = make_fetcher(config, [response])

    async with fetcher.fetch_media("/img/abc.jpg") as stream:
        chunks = [chunk async for chunk in stream.iter_chunks()]
        assert stream.status == 200
        assert not stream.is_partial
        assert stream.headers == {"Content-Type": "image/jpeg", "Content-Length": str(len(body))}

    assert b"".join(chunks) == body
    assert [len(chunk) for chunk in chunks] == [CHUNK_SIZE, CHUNK_SIZE, 10]
    assert session.requests[0].url == "https://i.redd.it/abc.jpg"
    assert response.released


@pytest.mark.asyncio
async def test_range_is_forwarded(config):
    """A byte-range request comes back as 206 with its Content-Range."""
    response = FakeResponse(206, b"0123", headers={"Content-Range": "bytes 0-3/100", "Accept-Ranges": "bytes"})
    fetcher, session = make_fetcher(config, [response])

    async with fetcher.fetch_media("/vid/xyz/DASH_720.mp4", range="bytes=0-3") as stream:
        assert stream.is_partial
        assert stream.headers["Content-Range"] == "bytes 0-3/100"

    assert session.requests[0].headers["Range"] == "bytes=0-3"


@pytest.mark.asyncio
async def test_invalid_range_not_forwarded(config):
    fetcher, session = make_fetcher(config, [FakeResponse(200, b"")])

    async with fetcher.fetch_media("/img/abc.jpg", range="items=1-2"):
        pass

    assert "Range" not in session.requests[0].headers


@pytest.mark.asyncio
async def test_unknown_path_is_not_found(config):
    fetcher, session = make_fetcher(config, [])
    with pytest.raises(NotFoundError):
        async with fetcher.fetch_media("/r/python/hot"):
            pass
    assert session.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status,error_type", [
    (404, NotFoundError),
    (410, NotFoundError),
    (429, RateLimitedError),
    (500, UpstreamStatusError),
    (403, UpstreamStatusError),
])
async def test_error_statuses(config, status, error_type):
    fetcher, _ = make_fetcher(config, [FakeResponse(status)])
    with pytest.raises(error_type):
        async with fetcher.fetch_media("/img/abc.jpg"):
            pass


@pytest.mark.asyncio
async def test_connection_failure(config):
    fetcher, _ = make_fetcher(config, [aiohttp.ClientConnectionError("reset")])
    with pytest.raises(UpstreamStatusError) as excinfo:
        async with fetcher.fetch_media("/img/abc.jpg"):
            pass
    assert excinfo.value.status is None


@pytest.mark.asyncio
async def test_connection_released_on_cancellation(config):
    """Cancelling a consumer mid-stream still releases the upstream response."""
    response = FakeResponse(200, b"y" * (CHUNK_SIZE * 4))
    fetcher, _ = make_fetcher(config, [response])
    started = asyncio.Event()

    async def consume():
        async with fetcher.fetch_media("/img/abc.jpg") as stream:
            async for _ in stream.iter_chunks():
                started.set()
                await asyncio.sleep(1)

    task = asyncio.ensure_future(consume())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert response.released


@pytest.mark.asyncio
async def test_bytes_recorded(config):
    exporter = MagicMock()
    fetcher, _ = make_fetcher(config, [FakeResponse(200, b"abcd")], exporter)

    async with fetcher.fetch_media("/img/abc.jpg") as stream:
        async for _ in stream.iter_chunks():
            pass

    exporter.record_media_bytes.assert_called_once_with(4)
