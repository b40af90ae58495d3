"""Feed list configuration for Subcurrent."""

import json
from pathlib import Path

from .models import FeedSource

FEEDS = [
    FeedSource(url="https://www.ashryan.io/rss/", author_name="Ash Ryan Arnwine"),
    FeedSource(url="https://jtbx.substack.com/feed", author_name="Jawaun"),
    FeedSource(
        url="https://nfraprado.net/feeds/all.atom.xml",
        author_name="Nicolas F. R. A. Prado",
    ),
    FeedSource(url="https://theunderlying.substack.com/feed", author_name="The Underlying"),
    FeedSource(
        url="https://www.youtube.com/feeds/videos.xml?channel_id=UCjkzTpA7V8AfJS9UKLKFZxA",
        author_name="meremortaldev",
    ),
    FeedSource(url="https://www.chrisdeluca.me/feed.xml", author_name="Chris DeLuca"),
    FeedSource(url="https://www.dviramontes.com/feed.xml", author_name="David Viramontes"),
]


class ConfigError(Exception):
    """Raised when the feed list cannot be loaded."""

    pass


def load_feeds(path: Path) -> list[FeedSource]:
    """Load a feed list from a JSON file.

    The file holds an array of ``{"url": ..., "authorName": ...}`` objects.

    Args:
        path: Path to the JSON file

    Returns:
        List of FeedSource in file order, duplicates removed

    Raises:
        ConfigError: If the file is unreadable, malformed or empty
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Failed to read feed list {path}: {e}") from e

    if not isinstance(data, list):
        raise ConfigError(f"Feed list {path} must be a JSON array")

    sources = []
    seen = set()
    for index, record in enumerate(data):
        if not isinstance(record, dict):
            raise ConfigError(f"Feed #{index} in {path} is not an object")
        url = str(record.get("url", "")).strip()
        author = str(record.get("authorName", "")).strip()
        if not url or not author:
            raise ConfigError(f"Feed #{index} in {path} needs both url and authorName")
        if url in seen:
            continue
        seen.add(url)
        sources.append(FeedSource(url=url, author_name=author))

    if not sources:
        raise ConfigError(f"Feed list {path} is empty")

    return sources
