"""Conversion of upstream JSON listings into domain entities."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from redproxy.exceptions import DecodeError
from redproxy.media.proxy import rewrite
from redproxy.models.entities import (
    Author,
    Flair,
    GalleryItem,
    GalleryMedia,
    ImageMedia,
    LinkMedia,
    Media,
    PollMedia,
    PollOption,
    Post,
    Subreddit,
    TextMedia,
    TimePair,
    User,
    VideoMedia,
    WikiPage,
)
from redproxy.models.formatting import format_count, format_score, format_time

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")


# ---------------------------------------------------------------------------
# Loosely-typed field access
# ---------------------------------------------------------------------------

def as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def thing_data(thing: Any) -> Dict[str, Any]:
    """
    Unwrap ``{"kind": ..., "data": {...}}``; a bare data object is returned as is.

    Raises:
        DecodeError: If ``thing`` is not a JSON object
    """
    if not isinstance(thing, dict):
        raise DecodeError(f"Expected a JSON object, got {type(thing).__name__}")
    if "kind" in thing and isinstance(thing.get("data"), dict):
        return thing["data"]
    return thing


def listing_children(listing: Any) -> List[Dict[str, Any]]:
    """
    Children of a Listing.

    Raises:
        DecodeError: If ``listing`` has no ``data.children`` array
    """
    if not isinstance(listing, dict):
        raise DecodeError("Expected a listing object")
    data = listing.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("children"), list):
        raise DecodeError("Listing has no children")
    return [child for child in data["children"] if isinstance(child, dict)]


def extract_cursor(listing: Any) -> Optional[str]:
    """
    The pagination cursor of a listing, passed through untouched.

    Returns:
        ``data.after`` or None when there is no further page
    """
    if not isinstance(listing, dict):
        return None
    after = as_dict(listing.get("data")).get("after")
    return after if isinstance(after, str) and after else None


def optional_time(value: Any, now: Optional[datetime] = None) -> Optional[TimePair]:
    """``edited`` and similar fields are ``false`` or an epoch number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return format_time(value, now)


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

def parse_flair(data: Mapping[str, Any], prefix: str) -> Flair:
    """Flair for ``prefix`` "link" (post flair) or "author" (user flair)."""
    text = as_str(data.get(f"{prefix}_flair_text"))
    richtext = data.get(f"{prefix}_flair_richtext")
    if not text and isinstance(richtext, list):
        text = "".join(as_str(part.get("t")) for part in richtext if isinstance(part, dict))

    return Flair(
        text=text.strip(),
        background_color=as_str(data.get(f"{prefix}_flair_background_color")),
        foreground_color=as_str(data.get(f"{prefix}_flair_text_color")),
    )


def parse_author(data: Mapping[str, Any]) -> Author:
    return Author(
        name=as_str(data.get("author"), "[deleted]"),
        flair=parse_flair(data, "author"),
        distinguished=as_str(data.get("distinguished")),
    )


def _preview_source(data: Mapping[str, Any]) -> Dict[str, Any]:
    images = as_dict(data.get("preview")).get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        return as_dict(images[0].get("source"))
    return {}


# ---------------------------------------------------------------------------
# Media variant selection
# ---------------------------------------------------------------------------

def _gallery_media(data: Mapping[str, Any]) -> Optional[Media]:
    gallery_data = as_dict(data.get("gallery_data"))
    if not (data.get("is_gallery") or gallery_data):
        return None

    metadata = as_dict(data.get("media_metadata"))
    items = []
    for item in gallery_data.get("items") or []:
        if not isinstance(item, dict):
            continue
        meta = as_dict(metadata.get(item.get("media_id")))
        if meta.get("status", "valid") != "valid":
            continue
        source = as_dict(meta.get("s"))
        url = as_str(source.get("u")) or as_str(source.get("gif")) or as_str(source.get("mp4"))
        if not url:
            continue
        items.append(GalleryItem(
            url=rewrite(url),
            width=as_int(source.get("x")),
            height=as_int(source.get("y")),
            caption=as_str(item.get("caption")),
            outbound_url=as_str(item.get("outbound_url")),
        ))

    if not items:
        return None
    return GalleryMedia(items=tuple(items))


def _video_media(data: Mapping[str, Any]) -> Optional[Media]:
    candidates = (
        as_dict(data.get("secure_media")).get("reddit_video"),
        as_dict(data.get("media")).get("reddit_video"),
        as_dict(data.get("preview")).get("reddit_video_preview"),
    )
    for video in candidates:
        if not isinstance(video, dict) or not as_str(video.get("fallback_url")):
            continue
        poster = as_str(_preview_source(data).get("url"))
        return VideoMedia(
            url=rewrite(video["fallback_url"]),
            hls_url=rewrite(as_str(video.get("hls_url"))),
            width=as_int(video.get("width")),
            height=as_int(video.get("height")),
            poster=rewrite(poster),
        )
    return None


def _poll_media(data: Mapping[str, Any]) -> Optional[Media]:
    poll = data.get("poll_data")
    if not isinstance(poll, dict):
        return None

    options = []
    for option in poll.get("options") or []:
        if not isinstance(option, dict):
            continue
        votes = option.get("vote_count")
        options.append(PollOption(
            text=as_str(option.get("text")),
            votes=as_int(votes) if votes is not None else None,
        ))

    # voting_end_timestamp is in milliseconds
    end = as_float(poll.get("voting_end_timestamp"))
    return PollMedia(
        options=tuple(options),
        total_votes=as_int(poll.get("total_vote_count")),
        voting_end=format_time(end / 1000) if end > 0 else None,
    )


def _image_media(data: Mapping[str, Any]) -> Optional[Media]:
    url = as_str(data.get("url"))
    is_image_url = url.lower().split("?")[0].endswith(IMAGE_EXTENSIONS)
    if data.get("post_hint") != "image" and not is_image_url:
        return None

    source = _preview_source(data)
    if as_str(source.get("url")):
        return ImageMedia(
            url=rewrite(source["url"]),
            width=as_int(source.get("width")),
            height=as_int(source.get("height")),
        )
    if url:
        return ImageMedia(url=rewrite(url))
    return None


def _link_media(data: Mapping[str, Any]) -> Optional[Media]:
    url = as_str(data.get("url"))
    if data.get("is_self") or not url:
        return None
    return LinkMedia(url=rewrite(url), domain=as_str(data.get("domain")))


# Upstream sets several of these at once for galleries and crossposts, so
# the first match wins.
MEDIA_PRIORITY: Sequence[Callable[[Mapping[str, Any]], Optional[Media]]] = (
    _gallery_media,
    _video_media,
    _poll_media,
    _image_media,
    _link_media,
)


def parse_media(data: Mapping[str, Any]) -> Media:
    """
    Select the media variant of a post.

    Crossposts carry their media on the original post, which is inspected
    instead when present.
    """
    crossposts = data.get("crosspost_parent_list")
    source = crossposts[0] if isinstance(crossposts, list) and crossposts and isinstance(crossposts[0], dict) else data

    for detect in MEDIA_PRIORITY:
        media = detect(source)
        if media is not None:
            return media
    return TextMedia(body=as_str(data.get("selftext")))


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

def parse_post(thing: Any, now: Optional[datetime] = None) -> Post:
    """
    Convert a ``t3`` thing into a Post.

    Raises:
        DecodeError: If the thing has no id
    """
    data = thing_data(thing)
    post_id = as_str(data.get("id"))
    if not post_id:
        raise DecodeError("Post without id")

    thumbnail = as_str(data.get("thumbnail"))
    return Post(
        id=post_id,
        title=as_str(data.get("title")),
        author=parse_author(data),
        community=as_str(data.get("subreddit")),
        body=as_str(data.get("selftext")),
        score=format_score(as_int(data.get("score")), hidden=bool(data.get("hide_score"))),
        upvote_ratio=as_float(data.get("upvote_ratio")),
        comments=format_count(as_int(data.get("num_comments"))),
        created=format_time(as_float(data.get("created_utc")), now),
        edited=optional_time(data.get("edited"), now),
        flair=parse_flair(data, "link"),
        media=parse_media(data),
        # "self", "default", "nsfw" and "spoiler" are placeholders, not URLs
        thumbnail=rewrite(thumbnail) if thumbnail.startswith("http") else "",
        nsfw=bool(data.get("over_18")),
        spoiler=bool(data.get("spoiler")),
        stickied=bool(data.get("stickied")),
        locked=bool(data.get("locked")),
        permalink=as_str(data.get("permalink")),
        url=rewrite(as_str(data.get("url"))),
        domain=as_str(data.get("domain")),
    )


def parse_posts(listing: Any, now: Optional[datetime] = None) -> List[Post]:
    """All ``t3`` children of a listing, in upstream order."""
    posts = []
    for child in listing_children(listing):
        if child.get("kind") != "t3":
            continue
        posts.append(parse_post(child, now))
    return posts


def parse_subreddit(about: Any) -> Subreddit:
    """Convert a ``t5`` about document into a Subreddit."""
    data = thing_data(about)
    name = as_str(data.get("display_name"))
    if not name:
        raise DecodeError("Community without display_name")

    icon = as_str(data.get("community_icon")) or as_str(data.get("icon_img"))
    active = data.get("accounts_active")
    if active is None:
        active = data.get("active_user_count")

    return Subreddit(
        name=name,
        title=as_str(data.get("title")),
        description=as_str(data.get("public_description")),
        info=as_str(data.get("description")),
        icon=rewrite(icon),
        members=format_count(as_int(data.get("subscribers"))),
        active=format_count(as_int(active)),
        wiki_enabled=bool(data.get("wiki_enabled")),
        nsfw=bool(data.get("over18")),
    )


def placeholder_subreddit(name: str) -> Subreddit:
    """Stand-in for multi-community views that have no about document."""
    return Subreddit(
        name=name,
        title=name,
        members=format_count(0),
        active=format_count(0),
    )


def parse_user(about: Any, now: Optional[datetime] = None) -> User:
    """Convert a ``t2`` about document into a User."""
    data = thing_data(about)
    name = as_str(data.get("name"))
    if not name:
        raise DecodeError("User without name")

    profile = as_dict(data.get("subreddit"))
    karma = data.get("total_karma")
    if karma is None:
        karma = as_int(data.get("link_karma")) + as_int(data.get("comment_karma"))

    return User(
        name=name,
        title=as_str(profile.get("title")),
        icon=rewrite(as_str(data.get("icon_img"))),
        karma=as_int(karma),
        created=format_time(as_float(data.get("created_utc")), now),
        nsfw=bool(profile.get("over_18")),
        description=as_str(profile.get("public_description")),
    )


def parse_wiki(document: Any, community: str, page: str) -> WikiPage:
    """Convert a ``wikipage`` document into a WikiPage."""
    data = thing_data(document)
    revision_by = thing_data(data.get("revision_by") or {})
    return WikiPage(
        community=community,
        page=page,
        content=as_str(data.get("content_md")),
        revision_author=as_str(revision_by.get("name")),
        revision_date=optional_time(data.get("revision_date")),
    )
