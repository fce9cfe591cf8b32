"""TweetPulse: Apify Tweet Item → Normalized Tweet Transformer.

Scraper actors disagree on field names, so every logical field is resolved
from an ordered alias table of dotted paths. The first path that yields a
usable value wins. Pure and network-free.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from tweetpulse.core.errors import MissingContent, MissingIdentifier
from tweetpulse.models.schemas import NormalizationContext, NormalizedTweetPrototype

PLATFORM = "twitter"
PERMALINK_TEMPLATE = "https://twitter.com/{handle}/status/{platform_id}"
TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"

# ── Alias tables (priority order) ──

PLATFORM_ID_ALIASES = ("id", "id_str", "tweetId", "tweet_id")
CONTENT_ALIASES = ("full_text", "fullText", "text")
AUTHOR_HANDLE_ALIASES = (
    "author.username",
    "author.screenName",
    "author.userName",
    "user.username",
    "user.screen_name",
    "user.screenName",
    "authorUsername",
    "authorScreenName",
)
AUTHOR_NAME_ALIASES = ("author.name", "user.name", "user.fullName", "authorName")
URL_ALIASES = ("url", "tweetUrl", "twitterUrl")
LANGUAGE_ALIASES = ("lang", "language")
POSTED_AT_ALIASES = ("createdAt", "created_at", "date")
LIKES_ALIASES = (
    "public_metrics.like_count",
    "metrics.likeCount",
    "favoriteCount",
    "likeCount",
)
RETWEETS_ALIASES = (
    "public_metrics.retweet_count",
    "metrics.retweetCount",
    "retweetCount",
)
MATCHED_KEYWORD_ALIASES = ("matchedKeywords", "matchedQueries", "searchTerms", "searchTerm")


def _lookup(item: Dict[str, Any], path: str) -> Any:
    current: Any = item
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first(
    item: Dict[str, Any],
    aliases: Sequence[str],
    coerce: Callable[[Any], Any],
) -> Any:
    """Return the first alias value that survives coercion, else None."""
    for path in aliases:
        value = coerce(_lookup(item, path))
        if value is not None:
            return value
    return None


# ── Coercers: return None for anything unusable ──


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None


def _as_handle(value: Any) -> Optional[str]:
    text = _as_text(value)
    if text is None:
        return None
    return text.strip().lstrip("@") or None


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601, Twitter's legacy format, or epoch seconds/millis."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.strptime(text, TWITTER_DATE_FORMAT)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ── Field resolvers ──


def extract_platform_id(item: Dict[str, Any]) -> str:
    """Resolve the platform identifier or raise MissingIdentifier."""
    platform_id = _first(item, PLATFORM_ID_ALIASES, _as_text)
    if platform_id is None:
        raise MissingIdentifier("Tweet item is missing a platform identifier.")
    return platform_id.strip()


def resolve_content(item: Dict[str, Any]) -> str:
    content = _first(item, CONTENT_ALIASES, _as_text)
    if content is None:
        raise MissingContent("Tweet item is missing text content.")
    return content


def resolve_url(
    item: Dict[str, Any], platform_id: str, author_handle: Optional[str]
) -> Optional[str]:
    direct = _first(item, URL_ALIASES, _as_text)
    if direct:
        return direct
    if author_handle:
        return PERMALINK_TEMPLATE.format(handle=author_handle, platform_id=platform_id)
    return None


def _normalize_keyword(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip().lower()
    return trimmed or None


def collect_keywords(item: Dict[str, Any], run_keywords: Iterable[str]) -> List[str]:
    """Union of run keywords and item-level matches, lower-cased, first-seen order."""
    seen: Dict[str, None] = {}

    def add(values: Any) -> None:
        if isinstance(values, str):
            values = [values]
        if not isinstance(values, (list, tuple)):
            return
        for value in values:
            keyword = _normalize_keyword(value)
            if keyword:
                seen.setdefault(keyword, None)

    add(list(run_keywords))
    for path in MATCHED_KEYWORD_ALIASES:
        add(_lookup(item, path))
    return list(seen)


def normalize_tweet(
    item: Dict[str, Any], context: NormalizationContext
) -> NormalizedTweetPrototype:
    """Convert one raw scraper item into a revision-1 normalized prototype."""
    platform_id = extract_platform_id(item)
    content = resolve_content(item)
    author_handle = _first(item, AUTHOR_HANDLE_ALIASES, _as_handle)
    posted_at = _first(item, POSTED_AT_ALIASES, parse_timestamp) or context.collected_at

    return NormalizedTweetPrototype(
        raw_tweet_id=context.raw_tweet_id,
        run_id=context.run_id,
        platform=PLATFORM,
        platform_id=platform_id,
        revision=1,
        author_handle=author_handle,
        author_name=_first(item, AUTHOR_NAME_ALIASES, _as_text),
        posted_at=posted_at,
        collected_at=context.collected_at,
        language=_first(item, LANGUAGE_ALIASES, _as_text),
        content=content,
        url=resolve_url(item, platform_id, author_handle),
        engagement_likes=_first(item, LIKES_ALIASES, _as_count),
        engagement_retweets=_first(item, RETWEETS_ALIASES, _as_count),
        keyword_snapshot=collect_keywords(item, context.keywords),
        status="pending_sentiment",
        status_changed_at=context.collected_at,
        model_context={"collector": context.collector},
    )
