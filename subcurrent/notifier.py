"""Webhook notifications for newly aggregated entries."""

import calendar
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import feedparser
import requests

from .models import EPOCH, Ledger
from .normalize import format_timestamp, html_to_text, parse_timestamp, truncate_text
from .store import write_atomic

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = Path(".discord-sent-posts.json")
MAX_NOTIFICATIONS = 5
MESSAGE_DELAY = 1.0
MAX_DESCRIPTION_LENGTH = 200
EMBED_COLOR = 0x3498DB
DEFAULT_ATTRIBUTION = "Subcurrent"


class NotificationError(Exception):
    """Raised when a message cannot be delivered to the webhook."""

    pass


@dataclass
class FeedItem:
    """An item of the rendered feed, as seen by the notifier."""

    title: str
    link: str
    pub_date: datetime
    description: str = ""
    author: str = ""


def read_feed_items(location: str, timeout: int = 30) -> list[FeedItem]:
    """Read the items of the rendered RSS feed.

    Args:
        location: Path of the RSS file or its URL
        timeout: Request timeout in seconds for URLs

    Returns:
        List of FeedItem; items without a link or a date are skipped

    Raises:
        NotificationError: If the feed cannot be read at all
    """
    if location.startswith(("http://", "https://")):
        try:
            response = requests.get(location, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Failed to fetch feed: {e}") from e
        content = response.content
    else:
        try:
            content = Path(location).read_bytes()
        except OSError as e:
            raise NotificationError(f"Failed to read feed: {e}") from e

    feed = feedparser.parse(content)
    if feed.bozo and not feed.entries:
        raise NotificationError(f"Failed to parse feed: {feed.bozo_exception}")

    items = []
    for entry in feed.entries:
        link = entry.get("link", "").strip()
        pub_date = _entry_date(entry)
        if not link or pub_date is None:
            continue
        items.append(
            FeedItem(
                title=entry.get("title", "").strip(),
                link=link,
                pub_date=pub_date,
                description=entry.get("summary", ""),
                author=entry.get("author", "").strip(),
            )
        )
    return items


def _entry_date(entry) -> Optional[datetime]:
    parsed_time = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed_time:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(parsed_time), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def load_ledger(path: Optional[Path] = None) -> Ledger:
    """Load the ledger, starting fresh if the file is missing or invalid."""
    path = Path(path) if path is not None else DEFAULT_LEDGER_PATH
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return Ledger()
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable ledger %s: %s", path, e)
        return Ledger()

    if not isinstance(data, dict):
        logger.warning("Ignoring malformed ledger %s", path)
        return Ledger()

    sent = data.get("sentPosts")
    latest = parse_timestamp(data.get("latestTimestamp") or "")
    return Ledger(
        sent_links=set(sent) if isinstance(sent, list) else set(),
        latest_timestamp=latest or EPOCH,
    )


def save_ledger(ledger: Ledger, path: Optional[Path] = None) -> None:
    path = Path(path) if path is not None else DEFAULT_LEDGER_PATH
    data = {
        "sentPosts": sorted(ledger.sent_links),
        "latestTimestamp": format_timestamp(ledger.latest_timestamp),
    }
    write_atomic(path, json.dumps(data, indent=2) + "\n")


def select_candidates(
    items: list[FeedItem], ledger: Ledger, limit: int = MAX_NOTIFICATIONS
) -> list[FeedItem]:
    """Pick the newest unsent items published after the ledger's timestamp."""
    fresh = [
        item
        for item in items
        if item.link not in ledger.sent_links
        and item.pub_date > ledger.latest_timestamp
    ]
    fresh.sort(key=lambda item: item.pub_date, reverse=True)
    return fresh[: max(0, limit)]


def build_payload(item: FeedItem) -> dict:
    """Build the webhook message for one item."""
    description = html_to_text(item.description)
    return {
        "embeds": [
            {
                "title": html_to_text(item.title) or item.link,
                "url": item.link,
                "description": truncate_text(description, MAX_DESCRIPTION_LENGTH)
                if description
                else "Read more at the link",
                "color": EMBED_COLOR,
                "timestamp": format_timestamp(item.pub_date),
                "footer": {"text": f"Posted by {item.author or DEFAULT_ATTRIBUTION}"},
            }
        ]
    }


class WebhookNotifier:
    """Posts new feed items to a chat webhook."""

    def __init__(
        self,
        webhook_url: str,
        session: Optional[requests.Session] = None,
        max_per_run: int = MAX_NOTIFICATIONS,
        delay: float = MESSAGE_DELAY,
        timeout: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.webhook_url = webhook_url
        self.session = session or requests.Session()
        self.max_per_run = max_per_run
        self.delay = delay
        self.timeout = timeout
        self.sleep = sleep

    def send(self, item: FeedItem) -> None:
        """Post one item.

        Raises:
            NotificationError: If the webhook rejects or cannot be reached
        """
        try:
            response = self.session.post(
                self.webhook_url, json=build_payload(item), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise NotificationError(f"Webhook request failed: {e}") from e
        if not 200 <= response.status_code < 300:
            raise NotificationError(f"Webhook returned HTTP {response.status_code}")

    def notify_new(self, items: list[FeedItem], ledger: Ledger) -> Ledger:
        """Send the items the ledger has not seen yet.

        At most ``max_per_run`` items are sent, newest first, with a fixed
        delay between messages. A failed message is logged and skipped.

        Args:
            items: Items of the rendered feed
            ledger: Ledger loaded from the previous run

        Returns:
            Updated ledger with the sent links and latest sent timestamp
        """
        candidates = select_candidates(items, ledger, self.max_per_run)
        logger.info("Found %d new items to notify about", len(candidates))

        sent_links = set(ledger.sent_links)
        latest = ledger.latest_timestamp
        sent = 0

        for index, item in enumerate(candidates):
            if index:
                self.sleep(self.delay)
            try:
                self.send(item)
            except NotificationError as e:
                logger.error("Failed to notify %r: %s", item.title, e)
                continue
            sent += 1
            sent_links.add(item.link)
            if item.pub_date > latest:
                latest = item.pub_date

        logger.info("Sent %d of %d notifications", sent, len(candidates))
        return Ledger(sent_links=sent_links, latest_timestamp=latest)
