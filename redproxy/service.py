"""Inbound operations consumed by the HTTP-serving layer."""

import asyncio
import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, List, Optional, Tuple, Union
from urllib.parse import quote

from redproxy.auth.credentials import CredentialAcquirer
from redproxy.auth.token_store import TokenStore
from redproxy.client.dispatcher import RequestDispatcher
from redproxy.client.rate_limiter import RateLimiter
from redproxy.client.session import SessionManager
from redproxy.collections import Collections
from redproxy.config import Config
from redproxy.exceptions import DecodeError, NotFoundError
from redproxy.media.stream import MediaFetcher, MediaStream
from redproxy.models.comments import CommentContext, parse_comment, parse_comments
from redproxy.models.entities import Comment, Post, Subreddit, User, WikiPage
from redproxy.models.transform import (
    extract_cursor,
    listing_children,
    parse_post,
    parse_posts,
    parse_subreddit,
    parse_user,
    parse_wiki,
    placeholder_subreddit,
)
from redproxy.monitoring.metrics import PrometheusExporter

logger = logging.getLogger(__name__)

# Front-page style views with no about document
AGGREGATE_COMMUNITIES = frozenset({"popular", "all"})

USER_LISTINGS = frozenset({"overview", "submitted", "comments"})

# Parent comments shown above a highlighted comment
HIGHLIGHT_CONTEXT = 3

Cursor = Optional[str]


def _segment(value: str) -> str:
    """Quote a caller-supplied value for use as a single path segment."""
    return quote(value, safe="+")


async def _gather_all_or_cancel(*coros: Awaitable[Any]) -> List[Any]:
    """
    Run requests concurrently; the first failure cancels the rest.

    Raises:
        The first exception raised by any of the requests
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException as e:
        for task in tasks:
            task.cancel()
        # Collect every outcome so no sibling failure goes unobserved
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception) and outcome is not e:
                logger.debug(f"Concurrent request also failed: {outcome!r}")
        raise


def _first_post(listing: Any) -> Post:
    for child in listing_children(listing):
        if child.get("kind") == "t3":
            return parse_post(child)
    raise DecodeError("Listing contains no post")


def _comment_document(document: Any) -> Tuple[Any, Any]:
    # /comments/{id} and /duplicates/{id} answer with [post listing, other listing]
    if not isinstance(document, list) or len(document) < 2:
        raise DecodeError("Expected a two-listing document")
    return document[0], document[1]


class UpstreamService:
    """
    Entry point for every upstream fetch.

    Owns the connection pool, the token store and the dispatcher. Call
    ``initialize`` before the first fetch and ``close`` on shutdown.
    """

    def __init__(self, config: Config, prometheus_exporter: Optional[PrometheusExporter] = None):
        """
        Args:
            config: Application configuration
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.config = config
        self.prometheus_exporter = prometheus_exporter

        self.session_manager = SessionManager(config)
        self.acquirer = CredentialAcquirer(config, self.session_manager)
        self.token_store = TokenStore(self.acquirer, config.token, prometheus_exporter)
        self.rate_limiter = RateLimiter(config.rate_limit)
        self.dispatcher = RequestDispatcher(
            config,
            self.token_store,
            self.session_manager,
            rate_limiter=self.rate_limiter,
            prometheus_exporter=prometheus_exporter,
        )
        self.media_fetcher = MediaFetcher(config, self.session_manager, prometheus_exporter)
        self.collections = Collections(config.collections)

    async def initialize(self, scheduled_refresh: bool = True) -> None:
        """
        Open the connection pool and start the background token refresh.

        Args:
            scheduled_refresh: Refresh the token every refresh interval
                regardless of traffic
        """
        await self.session_manager.initialize()
        if scheduled_refresh:
            self.token_store.start_scheduled_refresh()
        logger.info("Upstream service initialized")

    async def close(self) -> None:
        await self.token_store.close()
        await self.session_manager.cleanup()
        logger.info("Upstream service closed")

    async def __aenter__(self) -> "UpstreamService":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch_community(
        self,
        name: str,
        sort: str = "hot",
        after: Cursor = None,
        quarantine_override: bool = False,
        time: Optional[str] = None,
    ) -> Tuple[Subreddit, List[Post], Cursor]:
        """
        Fetch a community's about document and one page of its posts.

        Args:
            name: Community name, ``a+b`` multi, "popular", "all" or a collection alias
            sort: Listing sort ("hot", "new", "top", "rising", "controversial")
            after: Cursor from a previous page
            quarantine_override: Caller opted in to view quarantined communities
            time: Time window for "top" and "controversial"

        Returns:
            Tuple of (community, posts, cursor for the next page)
        """
        target = self.collections.resolve(name) or name
        if target != name:
            logger.debug(f"Collection {name} expands to {target}")

        path = f"/r/{_segment(target)}"
        params = {"after": after, "t": time}
        listing_request = self.dispatcher.fetch_json(f"{path}/{_segment(sort)}", quarantine_override, params)

        if "+" in target or target.lower() in AGGREGATE_COMMUNITIES:
            listing = await listing_request
            subreddit = placeholder_subreddit(name)
        else:
            about, listing = await _gather_all_or_cancel(
                self.dispatcher.fetch_json(f"{path}/about", quarantine_override),
                listing_request,
            )
            subreddit = parse_subreddit(about)

        return subreddit, parse_posts(listing), extract_cursor(listing)

    async def fetch_post_with_comments(
        self,
        post_id: str,
        sort: Optional[str] = None,
        highlight_id: Optional[str] = None,
        context: Optional[CommentContext] = None,
        quarantine_override: bool = False,
    ) -> Tuple[Post, List[Comment]]:
        """
        Fetch a post and its comment tree.

        Args:
            post_id: Post id without the ``t3_`` prefix
            sort: Comment sort ("confidence", "top", "new", ...)
            highlight_id: Comment to highlight and expand the path to;
                defaults to the one set on ``context``
            context: Filters to apply to the tree
            quarantine_override: Caller opted in to view quarantined communities

        Returns:
            Tuple of (post, top-level comments)
        """
        context = context or CommentContext()
        highlight_id = highlight_id or context.highlight_id

        path = f"/comments/{_segment(post_id)}"
        params = {"sort": sort}
        if highlight_id:
            path += f"/_/{_segment(highlight_id)}"
            params["context"] = HIGHLIGHT_CONTEXT

        document = await self.dispatcher.fetch_json(path, quarantine_override, params)
        post_listing, comment_listing = _comment_document(document)
        post = _first_post(post_listing)

        context = dataclasses.replace(
            context,
            highlight_id=highlight_id,
            post_author=post.author.name,
        )
        return post, parse_comments(comment_listing, context)

    async def fetch_user(
        self,
        name: str,
        listing: str = "overview",
        after: Cursor = None,
        sort: Optional[str] = None,
    ) -> Tuple[User, List[Union[Post, Comment]], Cursor]:
        """
        Fetch a user's profile and one page of their activity.

        Args:
            name: Username without the ``u/`` prefix
            listing: "overview", "submitted" or "comments"
            after: Cursor from a previous page
            sort: Listing sort ("new", "hot", "top")

        Returns:
            Tuple of (user, posts and comments in upstream order, cursor)
        """
        if listing not in USER_LISTINGS:
            raise NotFoundError(f"Unknown user listing: {listing}")

        path = f"/user/{_segment(name)}"
        about, document = await _gather_all_or_cancel(
            self.dispatcher.fetch_json(f"{path}/about"),
            self.dispatcher.fetch_json(f"{path}/{listing}", params={"after": after, "sort": sort}),
        )

        items: List[Union[Post, Comment]] = []
        for child in listing_children(document):
            kind = child.get("kind")
            if kind == "t3":
                items.append(parse_post(child))
            elif kind == "t1":
                items.append(parse_comment(child))

        return parse_user(about), items, extract_cursor(document)

    async def fetch_search(
        self,
        query: str,
        sub: Optional[str] = None,
        after: Cursor = None,
        sort: Optional[str] = None,
        time: Optional[str] = None,
    ) -> Tuple[List[Post], Cursor]:
        """
        Search posts site-wide or within one community.

        Args:
            query: Search terms
            sub: Restrict the search to this community
            after: Cursor from a previous page
            sort: "relevance", "hot", "top", "new" or "comments"
            time: Time window ("hour", "day", "week", "month", "year", "all")

        Returns:
            Tuple of (posts, cursor)
        """
        params = {"q": query, "sort": sort, "t": time, "after": after}
        if sub:
            path = f"/r/{_segment(sub)}/search"
            params["restrict_sr"] = "on"
        else:
            path = "/search"

        listing = await self.dispatcher.fetch_json(path, params=params)
        return parse_posts(listing), extract_cursor(listing)

    @asynccontextmanager
    async def fetch_media(self, rewritten_path: str, range: Optional[str] = None) -> AsyncIterator[MediaStream]:
        """Stream the bytes behind a media proxy path. See ``MediaFetcher.fetch_media``."""
        async with self.media_fetcher.fetch_media(rewritten_path, range) as stream:
            yield stream

    async def fetch_wiki(self, sub: str, page: str = "index") -> WikiPage:
        """
        Fetch one page of a community wiki.

        Args:
            sub: Community name
            page: Wiki page path, e.g. "index" or "faq/rules"
        """
        path = f"/r/{_segment(sub)}/wiki/{quote(page, safe='/')}"
        document = await self.dispatcher.fetch_json(path)
        return parse_wiki(document, sub, page)

    async def fetch_duplicates(self, post_id: str, after: Cursor = None) -> Tuple[Post, List[Post], Cursor]:
        """
        Fetch a post and the other submissions of the same link.

        Returns:
            Tuple of (post, duplicates, cursor)
        """
        document = await self.dispatcher.fetch_json(
            f"/duplicates/{_segment(post_id)}",
            params={"after": after},
        )
        post_listing, duplicate_listing = _comment_document(document)
        return _first_post(post_listing), parse_posts(duplicate_listing), extract_cursor(duplicate_listing)
