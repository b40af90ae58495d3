"""Data models for Subcurrent."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class FeedSource:
    """Represents one configured feed and the author it is attributed to."""

    url: str
    author_name: str


@dataclass
class RawEntry:
    """Represents one item/entry block extracted from a feed document.

    Every field is a string; a field that was not found is empty.
    """

    title: str = ""
    link: str = ""
    published: str = ""
    description: str = ""
    image_url: str = ""


@dataclass
class FeedEntry:
    """Represents a normalized, sanitized entry as persisted in the store."""

    title: str
    link: str
    pub_date: str
    snippet: str
    author: str
    feed_source: str
    last_fetched: str
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize using the key names the site generator expects."""
        data = {
            "title": self.title,
            "link": self.link,
            "pubDate": self.pub_date,
            "snippet": self.snippet,
            "author": self.author,
            "feedSource": self.feed_source,
            "lastFetched": self.last_fetched,
        }
        if self.image_url:
            data["imageUrl"] = self.image_url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FeedEntry":
        """Build an entry from a persisted record.

        Raises:
            KeyError: If a required field is missing
        """
        return cls(
            title=data["title"],
            link=data["link"],
            pub_date=data["pubDate"],
            snippet=data.get("snippet", ""),
            author=data.get("author", ""),
            feed_source=data["feedSource"],
            last_fetched=data["lastFetched"],
            image_url=data.get("imageUrl") or None,
        )


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class Ledger:
    """Record of the entries already pushed to the webhook."""

    sent_links: set[str] = field(default_factory=set)
    latest_timestamp: datetime = EPOCH
