"""
Domain entities produced by the response transformer.

All entities are frozen pydantic models built per request. The media
descriptor is a tagged union discriminated by ``kind``.
"""

from typing import Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated


class FrozenModel(BaseModel):
    """Immutable base for every entity."""

    model_config = ConfigDict(frozen=True)


class ScorePair(FrozenModel):
    """Vote count as shown (``"12.3k"``) and as counted (``"12345"``)."""

    display: str
    raw: str


class TimePair(FrozenModel):
    """Creation or edit time, relative and absolute."""

    relative: str   # "3h ago", or "Jan 02 '24" past 30 days
    full: str       # "Jan 02 2024, 13:45:00 UTC"
    timestamp: float


class Flair(FrozenModel):
    text: str = ""
    background_color: str = ""
    foreground_color: str = ""  # "light" or "dark"


class Author(FrozenModel):
    name: str = "[deleted]"
    flair: Flair = Flair()
    distinguished: str = ""  # "moderator", "admin" or empty


class GalleryItem(FrozenModel):
    url: str
    width: int = 0
    height: int = 0
    caption: str = ""
    outbound_url: str = ""


class GalleryMedia(FrozenModel):
    kind: Literal["gallery"] = "gallery"
    items: Tuple[GalleryItem, ...] = ()


class VideoMedia(FrozenModel):
    kind: Literal["video"] = "video"
    url: str
    hls_url: str = ""
    width: int = 0
    height: int = 0
    poster: str = ""


class PollOption(FrozenModel):
    text: str
    votes: Optional[int] = None  # hidden until voting ends


class PollMedia(FrozenModel):
    kind: Literal["poll"] = "poll"
    options: Tuple[PollOption, ...] = ()
    total_votes: int = 0
    voting_end: Optional[TimePair] = None


class ImageMedia(FrozenModel):
    kind: Literal["image"] = "image"
    url: str
    width: int = 0
    height: int = 0


class LinkMedia(FrozenModel):
    kind: Literal["link"] = "link"
    url: str
    domain: str = ""


class TextMedia(FrozenModel):
    kind: Literal["text"] = "text"
    body: str = ""


Media = Annotated[
    Union[GalleryMedia, VideoMedia, PollMedia, ImageMedia, LinkMedia, TextMedia],
    Field(discriminator="kind"),
]


class Post(FrozenModel):
    id: str
    title: str
    author: Author
    community: str
    body: str = ""
    score: ScorePair
    upvote_ratio: float = 0.0
    comments: ScorePair
    created: TimePair
    edited: Optional[TimePair] = None
    flair: Flair = Flair()
    media: Media
    thumbnail: str = ""
    nsfw: bool = False
    spoiler: bool = False
    stickied: bool = False
    locked: bool = False
    permalink: str = ""
    url: str = ""
    domain: str = ""


class Comment(FrozenModel):
    """
    A comment and the replies it owns.

    ``more_count`` counts the "load more" markers among the replies; they are
    never materialized as nodes.
    """

    id: str
    parent_id: str = ""
    link_id: str = ""
    body: str = ""
    author: Author
    score: ScorePair
    created: TimePair
    edited: Optional[TimePair] = None
    depth: int = 0
    children: Tuple["Comment", ...] = ()
    collapsed: bool = False
    highlighted: bool = False
    is_filtered: bool = False
    more_count: int = 0
    is_submitter: bool = False
    stickied: bool = False
    permalink: str = ""


Comment.model_rebuild()


class User(FrozenModel):
    name: str
    title: str = ""
    icon: str = ""
    karma: int = 0
    created: TimePair
    nsfw: bool = False
    description: str = ""


class Subreddit(FrozenModel):
    name: str
    title: str = ""
    description: str = ""
    info: str = ""
    icon: str = ""
    members: ScorePair
    active: ScorePair
    wiki_enabled: bool = False
    nsfw: bool = False


class WikiPage(FrozenModel):
    community: str
    page: str
    content: str = ""
    revision_author: str = ""
    revision_date: Optional[TimePair] = None
