"""Lenient RSS/Atom entry extraction for Subcurrent.

Feeds in the wild are frequently malformed (unescaped ampersands, truncated
documents, HTML pasted into titles), so entries are extracted with patterns
rather than a validating XML parser. Extraction is "first match wins": for
every field the first recognized tag is used and a missing field is an
empty string. Nothing in this module raises on bad input.
"""

import html
import logging
import re
from typing import Optional

from .models import RawEntry

logger = logging.getLogger(__name__)

RSS = "rss"
ATOM = "atom"

_RSS_MARKER = re.compile(r"<(?:rss|rdf:RDF)[\s>]", re.IGNORECASE)
_ATOM_MARKER = re.compile(r"<feed[\s>]", re.IGNORECASE)

# A block ends at its closing tag, at the next block or at end of document
_BLOCK_PATTERNS = {
    RSS: re.compile(
        r"<item(?:\s[^>]*)?>(.*?)(?:</item>|(?=<item[\s>])|\Z)",
        re.DOTALL | re.IGNORECASE,
    ),
    ATOM: re.compile(
        r"<entry(?:\s[^>]*)?>(.*?)(?:</entry>|(?=<entry[\s>])|\Z)",
        re.DOTALL | re.IGNORECASE,
    ),
}

DATE_TAGS = ("pubDate", "published", "updated", "dc:date", "date")
DESCRIPTION_TAGS = ("description", "content:encoded", "content", "summary", "media:description")

_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_IMG_SRC = re.compile(r"""<img\b[^>]*?\bsrc\s*=\s*(["'])(.*?)\1""", re.IGNORECASE | re.DOTALL)
_NESTED_IMAGE_URL = re.compile(
    r"<image(?:\s[^>]*)?>.*?<url>(.*?)</url>.*?</image>", re.IGNORECASE | re.DOTALL
)


class ParseError(Exception):
    """Raised when a single entry block cannot be extracted."""

    pass


def detect_kind(text: str) -> Optional[str]:
    """Sniff whether a document is RSS or Atom.

    Args:
        text: Raw feed document

    Returns:
        "rss", "atom", or None when neither marker is present
    """
    if not text:
        return None
    if _RSS_MARKER.search(text):
        return RSS
    if _ATOM_MARKER.search(text):
        return ATOM
    return None


def parse_entries(text: str) -> list[RawEntry]:
    """Extract raw entries from an RSS or Atom document.

    Args:
        text: Raw feed document

    Returns:
        List of RawEntry objects in document order; empty for unknown formats
    """
    kind = detect_kind(text)
    if kind is None:
        logger.debug("No RSS or Atom marker found, no entries extracted")
        return []

    entries = []
    for index, match in enumerate(_BLOCK_PATTERNS[kind].finditer(text)):
        try:
            entries.append(parse_block(match.group(1), kind))
        except ParseError as e:
            logger.warning("Skipping malformed %s entry #%d: %s", kind, index, e)
            entries.append(RawEntry())

    return entries


def parse_block(block: str, kind: str) -> RawEntry:
    """Extract the fields of a single item/entry block.

    Args:
        block: Markup between the opening and closing item/entry tags
        kind: "rss" or "atom"

    Returns:
        RawEntry with every field found, missing ones left empty

    Raises:
        ParseError: If extraction fails unexpectedly
    """
    try:
        description = _first_element_markup(block, DESCRIPTION_TAGS)
        return RawEntry(
            title=clean_text(_element_content(block, "title")),
            link=_extract_link(block, kind),
            published=clean_text(_first_element_content(block, DATE_TAGS)),
            description=description,
            image_url=extract_image_url(block, description),
        )
    except (TypeError, ValueError, IndexError, re.error) as e:
        raise ParseError(str(e)) from e


def clean_text(value: str) -> str:
    """Turn element content into plain text.

    CDATA sections are unwrapped, tags are stripped, entities are decoded
    and whitespace is collapsed.
    """
    if not value:
        return ""
    value = _CDATA.sub(r"\1", value)
    value = _TAG.sub("", value)
    value = html.unescape(value)
    return _WHITESPACE.sub(" ", value).strip()


def clean_markup(value: str) -> str:
    """Unwrap CDATA and decode entity-escaped markup, keeping the tags."""
    if not value:
        return ""
    value = _CDATA.sub(r"\1", value)
    return html.unescape(value).strip()


def extract_image_url(block: str, description: str = "") -> str:
    """Find the entry's image URL.

    Structured fields are tried in priority order: media:content,
    media:thumbnail, an image enclosure, a nested <image><url>, and
    itunes:image. A media:content element that declares a non-image type
    is passed over. Only when none of them match is the first <img> inside
    the description used.
    """
    for attrs in _start_tags(block, "media:content"):
        url = _attribute(attrs, "url")
        if url and _may_be_image(attrs):
            return url

    for attrs in _start_tags(block, "media:thumbnail"):
        url = _attribute(attrs, "url")
        if url:
            return url

    for attrs in _start_tags(block, "enclosure"):
        if _attribute(attrs, "type").lower().startswith("image/"):
            url = _attribute(attrs, "url")
            if url:
                return url

    match = _NESTED_IMAGE_URL.search(block)
    if match and clean_text(match.group(1)):
        return clean_text(match.group(1))

    for attrs in _start_tags(block, "itunes:image"):
        url = _attribute(attrs, "href")
        if url:
            return url

    if description:
        match = _IMG_SRC.search(description)
        if match:
            return html.unescape(match.group(2)).strip()

    return ""


def _may_be_image(attrs: str) -> bool:
    """False only when a media element declares a non-image type or medium."""
    mime = _attribute(attrs, "type").lower()
    medium = _attribute(attrs, "medium").lower()
    if mime and not mime.startswith("image/"):
        return False
    if medium and medium != "image":
        return False
    return True


def _extract_link(block: str, kind: str) -> str:
    if kind == RSS:
        link = clean_text(_element_content(block, "link"))
        if link:
            return link
    for attrs in _start_tags(block, "link"):
        href = _attribute(attrs, "href")
        if href:
            return href
    return ""


def _element_content(block: str, tag: str) -> str:
    """Return the raw content of the first <tag>...</tag>, or ""."""
    name = re.escape(tag)
    match = re.search(
        rf"<{name}(?:\s[^>]*)?>(.*?)</{name}\s*>",
        block,
        re.DOTALL | re.IGNORECASE,
    )
    return match.group(1) if match else ""


def _first_element_content(block: str, tags: tuple) -> str:
    for tag in tags:
        content = _element_content(block, tag)
        if content.strip():
            return content
    return ""


def _first_element_markup(block: str, tags: tuple) -> str:
    for tag in tags:
        markup = clean_markup(_element_content(block, tag))
        if markup:
            return markup
    return ""


def _start_tags(block: str, tag: str) -> list[str]:
    """Return the attribute text of every <tag ...> start tag in the block."""
    name = re.escape(tag)
    return re.findall(rf"<{name}(\s[^>]*)?/?>", block, re.IGNORECASE)


def _attribute(attrs: str, name: str) -> str:
    match = re.search(
        rf"""(?:^|\s){re.escape(name)}\s*=\s*(["'])(.*?)\1""",
        attrs or "",
        re.IGNORECASE | re.DOTALL,
    )
    return html.unescape(match.group(2)).strip() if match else ""
