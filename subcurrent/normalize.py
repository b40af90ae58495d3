"""Normalization of raw feed entries into persisted entries."""

import hashlib
import html
import logging
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from dateutil import parser as dtparse

from .models import FeedEntry, FeedSource, RawEntry
from .sanitizer import SANITIZED_CLASS, sanitize_html, wrap_sanitized

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 55
MAX_SNIPPET_LENGTH = 2000
MAX_SLUG_LENGTH = 50
ELLIPSIS = "..."
UNTITLED = "Untitled"

_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC timestamp with milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an RFC-2822, ISO-8601 or similar date string.

    Naive values are taken to be UTC.

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed
    """
    if not value or not value.strip():
        return None
    try:
        parsed = dtparse.parse(value.strip())
    except (ValueError, OverflowError) as e:
        logger.debug("Unparsable date %r: %s", value, e)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_date(value: str, now: Optional[datetime] = None) -> str:
    """Normalize a feed date to a non-future ISO-8601 UTC timestamp.

    Missing, unparsable and future dates are replaced by ``now``.

    Args:
        value: Date string as found in the feed
        now: Reference time (defaults to the current time)

    Returns:
        Timestamp formatted as ``YYYY-MM-DDTHH:MM:SS.mmmZ``
    """
    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    parsed = parse_timestamp(value)

    if parsed is None:
        if value:
            logger.warning("Invalid date %r, using current time", value)
        return format_timestamp(now)

    if parsed > now:
        logger.info("Future date %r replaced with current time", value)
        return format_timestamp(now)

    return format_timestamp(parsed)


def html_to_text(markup: str) -> str:
    """Strip tags and entities from markup and collapse whitespace."""
    if not markup:
        return ""
    text = _TAG.sub(" ", markup)
    text = html.unescape(text)
    text = _TAG.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def truncate_text(text: str, limit: int) -> str:
    """Truncate text at a word boundary, appending an ellipsis when cut."""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    space = cut.rfind(" ")
    if space > 0:
        cut = cut[:space]
    return cut.rstrip(" ,.;:-") + ELLIPSIS


def fallback_title(description: str) -> str:
    """Derive a title from an entry's description.

    Returns:
        Short plain-text title, or "Untitled" if the description has no text
    """
    text = html_to_text(description)
    if not text:
        return UNTITLED
    return truncate_text(text, MAX_TITLE_LENGTH)


def truncate_snippet(snippet: str, limit: int = MAX_SNIPPET_LENGTH) -> str:
    """Cap a sanitized snippet's size without cutting through a tag.

    Whole top-level elements are kept while they fit. If not even the first
    one fits, its text is truncated instead.
    """
    if len(snippet) <= limit:
        return snippet

    soup = BeautifulSoup(snippet, "html.parser")
    container = soup.find("div", class_=SANITIZED_CLASS)
    children = container.contents if container is not None else soup.contents

    kept = []
    size = 0
    for child in children:
        piece = _serialize(child)
        if size + len(piece) > limit:
            break
        kept.append(piece)
        size += len(piece)

    if not kept:
        text = (container if container is not None else soup).get_text(" ")
        kept.append(html.escape(truncate_text(_WHITESPACE.sub(" ", text).strip(), limit)))

    body = "".join(kept)
    return wrap_sanitized(body) if container is not None else body


def _serialize(node) -> str:
    # Text nodes come back from the parser decoded and must be re-escaped
    if isinstance(node, Tag):
        return node.decode()
    return html.escape(str(node), quote=False)


def slugify(title: str) -> str:
    slug = _NON_SLUG.sub("-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].strip("-") or "entry"


def entry_key(link: str, title: str) -> str:
    """Derive the stable identity of an entry.

    The key combines a readable slug of the title with a digest of both the
    link and the title, so it is deterministic and distinct for different
    (link, title) pairs.
    """
    digest = hashlib.sha1(f"{link}\n{title}".encode("utf-8")).hexdigest()[:12]
    return f"{slugify(title)}-{digest}"


def normalize_entry(
    raw: RawEntry,
    source: FeedSource,
    fetched_at: Optional[datetime] = None,
) -> Optional[FeedEntry]:
    """Turn a raw entry into a persisted-ready FeedEntry.

    Args:
        raw: Entry as extracted from the feed document
        source: Feed the entry came from
        fetched_at: Time of the fetch (defaults to now)

    Returns:
        FeedEntry, or None if the entry has neither title nor description
    """
    title = raw.title.strip()
    description = raw.description.strip()
    if not title and not description:
        return None

    fetched_at = fetched_at or utc_now()
    link = urljoin(source.url, raw.link.strip()) if raw.link.strip() else source.url
    image_url = urljoin(source.url, raw.image_url.strip()) if raw.image_url.strip() else None

    return FeedEntry(
        title=title or fallback_title(description),
        link=link,
        pub_date=normalize_date(raw.published, now=fetched_at),
        snippet=truncate_snippet(sanitize_html(description)),
        author=source.author_name,
        feed_source=source.url,
        last_fetched=format_timestamp(fetched_at),
        image_url=image_url,
    )
