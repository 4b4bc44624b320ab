"""
Comment tree construction.

Upstream nests replies as ``replies.data.children`` inside each ``t1`` thing
and marks elided subtrees with ``more`` things. The tree is built bottom-up:
a comment is only constructed once all of its replies are, so every node is
immutable from the moment it exists.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Tuple

from redproxy.models.entities import Comment
from redproxy.models.formatting import format_score, format_time
from redproxy.models.transform import (
    as_float,
    as_int,
    as_str,
    listing_children,
    optional_time,
    parse_author,
    thing_data,
)

logger = logging.getLogger(__name__)

CommentFilter = Callable[[Mapping[str, Any]], bool]


@dataclass(frozen=True)
class CommentContext:
    """
    Per-request inputs to the tree builder.

    Attributes:
        highlight_id: Comment to highlight; every ancestor on its path is expanded
        blocked_authors: Authors whose comments are flagged as filtered
        filters: Extra predicates over the raw comment data; any match filters it
        post_author: Author of the post, used to mark submitter replies
        now: Reference time for relative timestamps
    """

    highlight_id: Optional[str] = None
    blocked_authors: FrozenSet[str] = frozenset()
    filters: Tuple[CommentFilter, ...] = ()
    post_author: Optional[str] = None
    now: Optional[datetime] = None

    @property
    def target(self) -> Optional[str]:
        if not self.highlight_id:
            return None
        return self.highlight_id[3:] if self.highlight_id.startswith("t1_") else self.highlight_id

    def is_filtered(self, data: Mapping[str, Any]) -> bool:
        if as_str(data.get("author")) in self.blocked_authors:
            return True
        return any(predicate(data) for predicate in self.filters)


def _replies(data: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    # A leaf has ``"replies": ""`` instead of an empty listing
    replies = data.get("replies")
    if not isinstance(replies, dict):
        return []
    return listing_children(replies)


def _build_level(things: List[Mapping[str, Any]], context: CommentContext) -> Tuple[List[Comment], int, bool]:
    """
    Build one level of siblings.

    Returns:
        Tuple of (comments in upstream order, "more" markers seen, whether the
        highlight target lies beneath this level)
    """
    comments = []
    more_count = 0
    on_path = False

    for thing in things:
        kind = thing.get("kind")
        if kind == "more":
            more_count += 1
            continue
        if kind != "t1":
            logger.debug(f"Skipping unexpected {kind} in comment listing")
            continue

        comment, contains_target = _build_comment(thing_data(thing), context)
        comments.append(comment)
        on_path = on_path or contains_target

    return comments, more_count, on_path


def _build_comment(data: Mapping[str, Any], context: CommentContext) -> Tuple[Comment, bool]:
    children, more_count, child_on_path = _build_level(_replies(data), context)

    comment_id = as_str(data.get("id"))
    is_target = context.target is not None and comment_id == context.target
    on_path = is_target or child_on_path
    author = as_str(data.get("author"))

    comment = Comment(
        id=comment_id,
        parent_id=as_str(data.get("parent_id")),
        link_id=as_str(data.get("link_id")),
        body=as_str(data.get("body")),
        author=parse_author(data),
        score=format_score(as_int(data.get("score")), hidden=bool(data.get("score_hidden"))),
        created=format_time(as_float(data.get("created_utc")), context.now),
        edited=optional_time(data.get("edited"), context.now),
        depth=as_int(data.get("depth")),
        children=tuple(children),
        # The highlighted comment must be reachable, so its path is never collapsed
        collapsed=False if on_path else bool(data.get("collapsed")),
        highlighted=is_target,
        is_filtered=context.is_filtered(data),
        more_count=more_count,
        is_submitter=bool(data.get("is_submitter")) or (bool(author) and author == context.post_author),
        stickied=bool(data.get("stickied")),
        permalink=as_str(data.get("permalink")),
    )
    return comment, on_path


def parse_comment_forest(listing: Any, context: Optional[CommentContext] = None) -> Tuple[List[Comment], int]:
    """
    Build the comment forest of a post.

    Args:
        listing: The second element of a ``/comments/{id}`` response
        context: Highlight target, filters and reference time

    Returns:
        Tuple of (top-level comments, "more" markers at the top level)

    Raises:
        DecodeError: If the listing or a nested replies listing is malformed
    """
    context = context or CommentContext()
    comments, more_count, found = _build_level(listing_children(listing), context)
    if context.target and not found:
        logger.debug(f"Highlight target {context.target} not present in comment listing")
    return comments, more_count


def parse_comments(listing: Any, context: Optional[CommentContext] = None) -> List[Comment]:
    """Top-level comments of a listing, with their reply trees."""
    comments, _ = parse_comment_forest(listing, context)
    return comments


def parse_comment(thing: Any, context: Optional[CommentContext] = None) -> Comment:
    """A single ``t1`` thing, e.g. from a user's overview listing."""
    comment, _ = _build_comment(thing_data(thing), context or CommentContext())
    return comment
