"""Number and time formatting for entity fields."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from redproxy.models.entities import ScorePair, TimePair

# Shown instead of the number for hidden and negative scores
SCORE_PLACEHOLDER = "•"


def abbreviate(num: int) -> str:
    """
    Abbreviate a count with one decimal place.

    999 -> "999", 1500 -> "1.5k", 2_300_000 -> "2.3m"
    """
    if num >= 1_000_000 or num <= -1_000_000:
        return f"{num / 1_000_000:.1f}m"
    if num >= 1000 or num <= -1000:
        return f"{num / 1000:.1f}k"
    return str(num)


def format_score(num: int, hidden: bool = False) -> ScorePair:
    """Vote score pair; hidden and negative scores show the placeholder."""
    if hidden:
        return ScorePair(display=SCORE_PLACEHOLDER, raw="Hidden")
    if num < 0:
        return ScorePair(display=SCORE_PLACEHOLDER, raw=str(num))
    return ScorePair(display=abbreviate(num), raw=str(num))


def format_count(num: int) -> ScorePair:
    """Pair for counters that cannot be negative (members, comments)."""
    return ScorePair(display=abbreviate(num), raw=str(num))


def format_time(created: float, now: Optional[datetime] = None) -> TimePair:
    """
    Relative and absolute rendering of a UTC epoch timestamp.

    Args:
        created: Seconds since the epoch
        now: Reference time (defaults to the current time)
    """
    created_at = datetime.fromtimestamp(created, tz=timezone.utc)
    now = now or datetime.now(timezone.utc)
    delta = now - created_at

    if delta > timedelta(days=30):
        relative = created_at.strftime("%b %d '%y")
    elif delta.days > 0:
        relative = f"{delta.days}d ago"
    elif delta >= timedelta(hours=1):
        relative = f"{delta.seconds // 3600}h ago"
    elif delta >= timedelta(minutes=1):
        relative = f"{delta.seconds // 60}m ago"
    else:
        # Also covers small clock skew that puts creation in the future
        relative = "just now"

    return TimePair(
        relative=relative,
        full=created_at.strftime("%b %d %Y, %H:%M:%S UTC"),
        timestamp=created,
    )
