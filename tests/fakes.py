"""Fake aiohttp objects and upstream payload builders shared by the tests."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, NamedTuple, Optional
from urllib.parse import urlsplit

from multidict import CIMultiDict

from redproxy.auth.credentials import BearerCredential

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
NOW_TS = NOW.timestamp()


class FakeContent:
    """Stands in for ``aiohttp.StreamReader``."""

    def __init__(self, body: bytes):
        self._body = body

    async def iter_chunked(self, size: int):
        for start in range(0, len(self._body), size):
            yield self._body[start:start + size]


class FakeResponse:
    """Async context manager mimicking ``aiohttp.ClientResponse``."""

    def __init__(self, status: int = 200, body: Any = b"", headers: Optional[Dict[str, str]] = None):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.status = status
        self.headers = CIMultiDict(headers or {})
        self._body = body
        self.content = FakeContent(body)
        self.released = False

    async def read(self) -> bytes:
        return self._body

    async def text(self) -> str:
        return self._body.decode("utf-8")

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.released = True


class FailingRequest:
    """Request context that raises when entered, like a refused connection."""

    def __init__(self, error: BaseException):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


class RecordedRequest(NamedTuple):
    method: str
    url: str
    kwargs: Dict[str, Any]

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def headers(self) -> Dict[str, str]:
        return self.kwargs.get("headers") or {}

    @property
    def params(self) -> Dict[str, Any]:
        return self.kwargs.get("params") or {}


class FakeSession:
    """
    Replays canned responses and records every request.

    Responses are either consumed in order from ``responses`` or looked up by
    URL path in ``routes``. A route value may be a list, consumed in order.
    Exceptions in place of a response are raised when the request is entered.
    """

    def __init__(self, responses: Optional[List[Any]] = None, routes: Optional[Dict[str, Any]] = None):
        self.responses = list(responses or [])
        self.routes = dict(routes or {})
        self.requests: List[RecordedRequest] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any):
        recorded = RecordedRequest(method, url, kwargs)
        self.requests.append(recorded)

        if self.routes:
            if recorded.path not in self.routes:
                raise AssertionError(f"Unexpected request to {recorded.path}")
            response = self.routes[recorded.path]
            if isinstance(response, list):
                response = response.pop(0)
        else:
            if not self.responses:
                raise AssertionError(f"Unexpected request to {url}")
            response = self.responses.pop(0)

        if isinstance(response, BaseException):
            return FailingRequest(response)
        return response

    async def close(self) -> None:
        self.closed = True


class FakeSessionManager:
    """SessionManager double handing out a FakeSession."""

    def __init__(self, session: FakeSession):
        self.session = session

    async def initialize(self) -> FakeSession:
        return self.session

    async def get(self) -> FakeSession:
        return self.session

    async def cleanup(self) -> None:
        await self.session.close()


def make_credential(token: str = "token-1", ttl: float = 3600, issued_at: Optional[datetime] = None,
                    headers: Optional[Dict[str, str]] = None) -> BearerCredential:
    issued_at = issued_at or datetime.now(timezone.utc)
    return BearerCredential(
        access_token=token,
        token_type="bearer",
        expires_at=issued_at + timedelta(seconds=ttl),
        issued_at=issued_at,
        headers=headers or {},
    )


# ---------------------------------------------------------------------------
# Upstream payload builders
# ---------------------------------------------------------------------------

def thing(kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {"kind": kind, "data": data}


def listing(children: List[Dict[str, Any]], after: Optional[str] = None) -> Dict[str, Any]:
    return {"kind": "Listing", "data": {"after": after, "before": None, "children": children}}


def post_data(post_id: str = "abc123", **overrides: Any) -> Dict[str, Any]:
    data = {
        "id": post_id,
        "name": f"t3_{post_id}",
        "title": "A post",
        "author": "poster",
        "subreddit": "python",
        "selftext": "",
        "score": 1500,
        "upvote_ratio": 0.97,
        "num_comments": 42,
        "created_utc": NOW_TS - 7200,
        "edited": False,
        "is_self": True,
        "over_18": False,
        "spoiler": False,
        "stickied": False,
        "locked": False,
        "permalink": f"/r/python/comments/{post_id}/a_post/",
        "url": f"https://www.reddit.com/r/python/comments/{post_id}/a_post/",
        "domain": "self.python",
        "thumbnail": "self",
    }
    data.update(overrides)
    return data


def post_thing(post_id: str = "abc123", **overrides: Any) -> Dict[str, Any]:
    return thing("t3", post_data(post_id, **overrides))


def comment_thing(comment_id: str, replies: Optional[List[Dict[str, Any]]] = None, **overrides: Any) -> Dict[str, Any]:
    data = {
        "id": comment_id,
        "name": f"t1_{comment_id}",
        "parent_id": "t3_abc123",
        "link_id": "t3_abc123",
        "author": "commenter",
        "body": f"comment {comment_id}",
        "score": 10,
        "score_hidden": False,
        "created_utc": NOW_TS - 600,
        "edited": False,
        "depth": 0,
        "collapsed": False,
        "stickied": False,
        "permalink": f"/r/python/comments/abc123/a_post/{comment_id}/",
        # Upstream sends an empty string for a comment without replies
        "replies": listing(replies) if replies else "",
    }
    data.update(overrides)
    return thing("t1", data)


def more_thing(count: int = 5, children: Optional[List[str]] = None) -> Dict[str, Any]:
    return thing("more", {"count": count, "children": children or ["x1", "x2"], "depth": 1})
