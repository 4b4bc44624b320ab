"""
JSON envelope for API consumers.

Every body has the shape ``{"data": ..., "error": ...}`` with exactly one of
the two set.
"""

import logging
from typing import Any, List, NamedTuple, Optional, Union

from pydantic import BaseModel

from redproxy.exceptions import (
    AuthFailure,
    BannedError,
    DecodeError,
    GatedError,
    NotFoundError,
    PrivateError,
    QuarantinedError,
    RateLimitedError,
    UpstreamStatusError,
)
from redproxy.models.entities import Comment, Post, Subreddit, User, WikiPage

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/json"

# Checked in order, so subclasses must precede their bases
ERROR_STATUSES = (
    (NotFoundError, 404),
    (BannedError, 404),
    (QuarantinedError, 403),
    (GatedError, 403),
    (PrivateError, 403),
    (RateLimitedError, 429),
    (UpstreamStatusError, 502),
    (DecodeError, 502),
    (AuthFailure, 503),
)


class JsonResponse(BaseModel):
    data: Optional[Any] = None
    error: Optional[str] = None


class JsonReply(NamedTuple):
    """A rendered envelope ready for the HTTP layer."""

    status: int
    body: str
    content_type: str = CONTENT_TYPE


class SubredditResponse(BaseModel):
    subreddit: Subreddit
    posts: List[Post]
    after: Optional[str] = None


class PostResponse(BaseModel):
    post: Post
    comments: List[Comment]


class UserResponse(BaseModel):
    user: User
    posts: List[Union[Post, Comment]]
    after: Optional[str] = None


class SearchResponse(BaseModel):
    posts: List[Post]
    after: Optional[str] = None


class WikiResponse(BaseModel):
    subreddit: str
    page: str
    content: str


class DuplicatesResponse(BaseModel):
    post: Post
    duplicates: List[Post]
    after: Optional[str] = None


def json_response(data: Any) -> JsonReply:
    """Wrap a payload model in a 200 envelope."""
    envelope = JsonResponse(data=data.model_dump() if isinstance(data, BaseModel) else data)
    return JsonReply(status=200, body=envelope.model_dump_json())


def json_error(message: str, status: int) -> JsonReply:
    """Envelope carrying only an error message."""
    return JsonReply(status=status, body=JsonResponse(error=message).model_dump_json())


def error_status(error: Exception) -> int:
    """HTTP status the surrounding server should answer with for ``error``."""
    for error_type, status in ERROR_STATUSES:
        if isinstance(error, error_type):
            return status
    return 500


def error_reply(error: Exception) -> JsonReply:
    """Envelope for a failed fetch."""
    status = error_status(error)
    if status == 500:
        logger.exception(f"Unexpected error: {error}")
    return json_error(str(error), status)


def subreddit_payload(subreddit: Subreddit, posts: List[Post], after: Optional[str]) -> SubredditResponse:
    return SubredditResponse(subreddit=subreddit, posts=posts, after=after)


def post_payload(post: Post, comments: List[Comment]) -> PostResponse:
    return PostResponse(post=post, comments=comments)


def user_payload(user: User, items: List[Union[Post, Comment]], after: Optional[str]) -> UserResponse:
    return UserResponse(user=user, posts=items, after=after)


def search_payload(posts: List[Post], after: Optional[str]) -> SearchResponse:
    return SearchResponse(posts=posts, after=after)


def wiki_payload(page: WikiPage) -> WikiResponse:
    return WikiResponse(subreddit=page.community, page=page.page, content=page.content)


def duplicates_payload(post: Post, duplicates: List[Post], after: Optional[str]) -> DuplicatesResponse:
    return DuplicatesResponse(post=post, duplicates=duplicates, after=after)
