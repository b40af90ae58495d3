"""RSS 2.0 output for the aggregated stream."""

import logging
import xml.etree.ElementTree as ET
from datetime import timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Optional

from .models import FeedEntry
from .normalize import parse_timestamp, utc_now
from .store import EntryStore, sort_newest_first

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATH = Path("dist") / "rss.xml"
DEFAULT_TITLE = "Subcurrent | Astoria Tech Meetup"
DEFAULT_DESCRIPTION = "A content aggregator for the Astoria Tech Meetup community"
DEFAULT_SITE_URL = "https://astoria-tech.github.io/subcurrent-astro/"


def render_feed(
    entries: list[FeedEntry],
    title: str = DEFAULT_TITLE,
    site_url: str = DEFAULT_SITE_URL,
    description: str = DEFAULT_DESCRIPTION,
) -> str:
    """Render entries as an RSS 2.0 document, newest first.

    Args:
        entries: Entries to include
        title: Channel title
        site_url: Channel link
        description: Channel description

    Returns:
        The XML document as a string
    """
    rss = ET.Element("rss", {"version": "2.0"})
    channel = ET.SubElement(rss, "channel")
    ET.SubElement(channel, "title").text = title
    ET.SubElement(channel, "link").text = site_url
    ET.SubElement(channel, "description").text = description
    ET.SubElement(channel, "language").text = "en-us"
    ET.SubElement(channel, "lastBuildDate").text = format_datetime(utc_now(), usegmt=True)

    for entry in sort_newest_first(entries):
        item = ET.SubElement(channel, "item")
        ET.SubElement(item, "title").text = entry.title
        ET.SubElement(item, "link").text = entry.link
        ET.SubElement(item, "guid", {"isPermaLink": "true"}).text = entry.link
        published = parse_timestamp(entry.pub_date)
        if published is not None:
            published = published.astimezone(timezone.utc)
            ET.SubElement(item, "pubDate").text = format_datetime(published, usegmt=True)
        ET.SubElement(item, "description").text = entry.snippet
        ET.SubElement(item, "author").text = entry.author

    body = ET.tostring(rss, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


def write_feed(
    store: EntryStore,
    path: Optional[Path] = None,
    **channel,
) -> Path:
    """Render every stored entry to an RSS file.

    Args:
        store: Collection store to read from
        path: Output file. Defaults to dist/rss.xml
        **channel: title, site_url and description passed to render_feed

    Returns:
        Path of the written file
    """
    path = Path(path) if path is not None else DEFAULT_OUTPUT_PATH
    entries = store.list_all()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_feed(entries, **channel), encoding="utf-8")
    logger.info("Wrote %d entries to %s", len(entries), path)
    return path
