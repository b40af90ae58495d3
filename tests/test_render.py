"""Tests for the aggregated RSS output."""

import xml.etree.ElementTree as ET

from subcurrent.models import FeedEntry
from subcurrent.render import render_feed, write_feed
from subcurrent.store import EntryStore


def make_entry(title: str, pub_date: str, author: str = "Ann") -> FeedEntry:
    return FeedEntry(
        title=title,
        link=f"https://example.com/{title.lower()}",
        pub_date=pub_date,
        snippet=f'<div class="sanitized-content"><p>{title} body</p></div>',
        author=author,
        feed_source="https://example.com/feed.xml",
        last_fetched="2024-06-01T00:00:00.000Z",
    )


class TestRenderFeed:
    """Tests for the render_feed function."""

    def test_channel(self):
        """Test the channel metadata."""
        document = render_feed([], title="My Feed", site_url="https://example.com/")

        channel = ET.fromstring(document).find("channel")
        assert document.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert channel.findtext("title") == "My Feed"
        assert channel.findtext("link") == "https://example.com/"
        assert channel.findtext("language") == "en-us"
        assert channel.findtext("lastBuildDate")

    def test_items_newest_first(self):
        """Test that items are ordered by pubDate, newest first."""
        entries = [
            make_entry("Old", "2023-01-01T00:00:00.000Z"),
            make_entry("New", "2024-01-01T00:00:00.000Z", author="Bo"),
        ]

        items = ET.fromstring(render_feed(entries)).findall("channel/item")

        assert [item.findtext("title") for item in items] == ["New", "Old"]
        assert items[0].findtext("link") == "https://example.com/new"
        assert items[0].findtext("guid") == "https://example.com/new"
        assert items[0].findtext("pubDate") == "Mon, 01 Jan 2024 00:00:00 GMT"
        assert items[0].findtext("author") == "Bo"

    def test_snippet_is_escaped_description(self):
        """Test that the snippet markup is carried as the item description."""
        document = render_feed([make_entry("Post", "2024-01-01T00:00:00.000Z")])

        item = ET.fromstring(document).find("channel/item")
        assert item.findtext("description") == (
            '<div class="sanitized-content"><p>Post body</p></div>'
        )
        assert "&lt;p&gt;" in document


class TestWriteFeed:
    """Tests for the write_feed function."""

    def test_writes_store_contents(self, tmp_path):
        """Test that every stored entry is written to the output file."""
        store = EntryStore(tmp_path / "feeds")
        store.put(make_entry("One", "2024-01-01T00:00:00.000Z"))
        store.put(make_entry("Two", "2024-01-02T00:00:00.000Z"))
        output = tmp_path / "dist" / "rss.xml"

        path = write_feed(store, output, title="Test")

        assert path == output
        items = ET.fromstring(output.read_text(encoding="utf-8")).findall("channel/item")
        assert [item.findtext("title") for item in items] == ["Two", "One"]
