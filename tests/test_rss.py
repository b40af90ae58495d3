"""Tests for lenient RSS/Atom entry extraction."""

from unittest.mock import patch

from subcurrent.models import RawEntry
from subcurrent.rss import (
    ParseError,
    clean_text,
    detect_kind,
    extract_image_url,
    parse_entries,
)


# Sample RSS feed content for testing
SAMPLE_RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Blog</title>
    <link>https://example.com</link>
    <description>A test blog</description>
    <item>
      <title>First Post</title>
      <link>https://example.com/post1</link>
      <pubDate>Mon, 01 Jan 2024 12:00:00 GMT</pubDate>
      <description>&lt;p&gt;First body&lt;/p&gt;</description>
    </item>
    <item>
      <title>Second Post</title>
      <link>https://example.com/post2</link>
      <pubDate>Tue, 02 Jan 2024 12:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

SAMPLE_ATOM_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Blog</title>
  <link href="https://example.com"/>
  <entry>
    <title type="html">Atom Post</title>
    <link rel="alternate" type="text/html" href="https://example.com/atom-post"/>
    <updated>2024-01-15T10:00:00Z</updated>
    <summary>Short summary</summary>
  </entry>
</feed>
"""

SAMPLE_YOUTUBE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" xmlns:media="http://search.yahoo.com/mrss/" xmlns="http://www.w3.org/2005/Atom">
 <entry>
  <title>Video Title</title>
  <link rel="alternate" href="https://www.youtube.com/watch?v=abc123"/>
  <published>2024-02-01T15:00:00+00:00</published>
  <media:group>
   <media:title>Video Title</media:title>
   <media:content url="https://www.youtube.com/v/abc123?version=3" type="application/x-shockwave-flash" width="640" height="390"/>
   <media:thumbnail url="https://i2.ytimg.com/vi/abc123/hqdefault.jpg" width="480" height="360"/>
   <media:description>What this video is about</media:description>
  </media:group>
 </entry>
</feed>
"""


def _item(body: str) -> str:
    return f'<rss version="2.0"><channel><item>{body}</item></channel></rss>'


class TestDetectKind:
    """Tests for feed format sniffing."""

    def test_rss(self):
        """Test that an <rss> root is detected as RSS."""
        assert detect_kind(SAMPLE_RSS_FEED) == "rss"

    def test_rdf(self):
        """Test that RSS 1.0 (RDF) documents are treated as RSS."""
        assert detect_kind('<rdf:RDF xmlns:rdf="x"><item></item></rdf:RDF>') == "rss"

    def test_atom(self):
        """Test that a <feed> root is detected as Atom."""
        assert detect_kind(SAMPLE_ATOM_FEED) == "atom"

    def test_unknown(self):
        """Test that documents without a marker are not recognized."""
        assert detect_kind("<html><body>Hello</body></html>") is None
        assert detect_kind("") is None


class TestParseEntries:
    """Tests for the parse_entries function."""

    def test_parse_rss_feed(self):
        """Test parsing a valid RSS feed."""
        entries = parse_entries(SAMPLE_RSS_FEED)

        assert len(entries) == 2
        assert entries[0].title == "First Post"
        assert entries[0].link == "https://example.com/post1"
        assert entries[0].published == "Mon, 01 Jan 2024 12:00:00 GMT"
        assert entries[1].title == "Second Post"
        assert entries[1].link == "https://example.com/post2"

    def test_parse_atom_feed(self):
        """Test parsing a valid Atom feed."""
        entries = parse_entries(SAMPLE_ATOM_FEED)

        assert len(entries) == 1
        assert entries[0].title == "Atom Post"
        assert entries[0].link == "https://example.com/atom-post"
        assert entries[0].published == "2024-01-15T10:00:00Z"
        assert entries[0].description == "Short summary"

    def test_unknown_document_yields_nothing(self):
        """Test that non-feed documents give an empty list instead of failing."""
        assert parse_entries("<html><body><item>x</item></body></html>") == []
        assert parse_entries("") == []

    def test_description_markup_is_decoded(self):
        """Test that entity-escaped description markup is decoded, not stripped."""
        entries = parse_entries(SAMPLE_RSS_FEED)

        assert entries[0].description == "<p>First body</p>"
        assert entries[1].description == ""

    def test_cdata_title_is_plain_text(self):
        """Test that CDATA is unwrapped and tags stripped from titles."""
        entries = parse_entries(_item("<title><![CDATA[Hello <b>World</b>]]></title>"))

        assert entries[0].title == "Hello World"

    def test_entities_in_title_are_decoded(self):
        """Test that entities in titles are decoded."""
        entries = parse_entries(_item("<title>Tom &amp; Jerry &#8211; Part 2</title>"))

        assert entries[0].title == "Tom & Jerry – Part 2"

    def test_cdata_description_keeps_markup(self):
        """Test that CDATA descriptions keep their HTML."""
        entries = parse_entries(
            _item("<description><![CDATA[<p>Hello <em>there</em></p>]]></description>")
        )

        assert entries[0].description == "<p>Hello <em>there</em></p>"

    def test_content_encoded_used_without_description(self):
        """Test that content:encoded is used when there is no description."""
        entries = parse_entries(
            _item("<content:encoded><![CDATA[<p>Full text</p>]]></content:encoded>")
        )

        assert entries[0].description == "<p>Full text</p>"

    def test_description_preferred_over_content(self):
        """Test that description wins over content:encoded."""
        entries = parse_entries(
            _item(
                "<content:encoded>Full</content:encoded>"
                "<description>Short</description>"
            )
        )

        assert entries[0].description == "Short"

    def test_pub_date_preferred_over_updated(self):
        """Test that pubDate wins even when another date tag comes first."""
        entries = parse_entries(
            _item(
                "<updated>2024-03-01T00:00:00Z</updated>"
                "<pubDate>Mon, 01 Jan 2024 00:00:00 GMT</pubDate>"
            )
        )

        assert entries[0].published == "Mon, 01 Jan 2024 00:00:00 GMT"

    def test_dc_date_is_recognized(self):
        """Test that a Dublin Core date is used when nothing else is present."""
        entries = parse_entries(_item("<dc:date>2024-05-05T05:05:05Z</dc:date>"))

        assert entries[0].published == "2024-05-05T05:05:05Z"

    def test_missing_fields_are_empty(self):
        """Test that missing fields are empty strings, not None."""
        entries = parse_entries(_item("<title>Only a title</title>"))

        assert entries[0] == RawEntry(title="Only a title")

    def test_truncated_document_still_yields_entries(self):
        """Test that a feed cut off mid-item still yields its entries."""
        feed = (
            '<rss version="2.0"><channel>'
            "<item><title>Complete</title><link>https://example.com/1</link></item>"
            "<item><title>Cut off</title><link>https://example.com/2</link>"
        )

        entries = parse_entries(feed)

        assert [e.title for e in entries] == ["Complete", "Cut off"]
        assert entries[1].link == "https://example.com/2"

    def test_unclosed_item_ends_at_next_item(self):
        """Test that an item missing its closing tag ends at the next item."""
        feed = (
            '<rss version="2.0"><channel>'
            "<item><title>One</title>"
            "<item><title>Two</title></item>"
            "</channel></rss>"
        )

        entries = parse_entries(feed)

        assert [e.title for e in entries] == ["One", "Two"]

    def test_unescaped_ampersand_is_tolerated(self):
        """Test that invalid XML such as a bare ampersand is still parsed."""
        entries = parse_entries(_item("<title>Q&A night</title><link>https://example.com/qa</link>"))

        assert entries[0].title == "Q&A night"
        assert entries[0].link == "https://example.com/qa"

    def test_rss_link_falls_back_to_href(self):
        """Test that an RSS item with a self-closing link uses its href."""
        entries = parse_entries(_item('<title>T</title><link href="https://example.com/href"/>'))

        assert entries[0].link == "https://example.com/href"

    def test_malformed_block_becomes_empty_entry(self):
        """Test that a block failing extraction does not abort the document."""
        with patch(
            "subcurrent.rss.parse_block",
            side_effect=[ParseError("bad block"), RawEntry(title="Second Post")],
        ):
            entries = parse_entries(SAMPLE_RSS_FEED)

        assert entries == [RawEntry(), RawEntry(title="Second Post")]


class TestExtractImageUrl:
    """Tests for image URL extraction priority."""

    def test_media_content_first(self):
        """Test that media:content wins over every other hint."""
        block = (
            '<media:thumbnail url="https://example.com/thumb.jpg"/>'
            '<media:content url="https://example.com/content.jpg" medium="image"/>'
        )

        assert extract_image_url(block) == "https://example.com/content.jpg"

    def test_media_thumbnail_second(self):
        """Test that media:thumbnail wins over an enclosure."""
        block = (
            '<enclosure url="https://example.com/enc.png" type="image/png"/>'
            '<media:thumbnail url="https://example.com/thumb.jpg"/>'
        )

        assert extract_image_url(block) == "https://example.com/thumb.jpg"

    def test_non_image_media_content_is_skipped(self):
        """Test that a video media:content does not hide the thumbnail."""
        entries = parse_entries(SAMPLE_YOUTUBE_FEED)

        assert entries[0].image_url == "https://i2.ytimg.com/vi/abc123/hqdefault.jpg"
        assert entries[0].description == "What this video is about"
        assert entries[0].link == "https://www.youtube.com/watch?v=abc123"

    def test_image_enclosure(self):
        """Test that only image-typed enclosures are used."""
        block = (
            '<enclosure url="https://example.com/episode.mp3" type="audio/mpeg"/>'
            '<enclosure type="image/jpeg" url="https://example.com/cover.jpg"/>'
        )

        assert extract_image_url(block) == "https://example.com/cover.jpg"

    def test_nested_image_url(self):
        """Test the nested <image><url> form."""
        block = "<image><url>https://example.com/nested.png</url><title>x</title></image>"

        assert extract_image_url(block) == "https://example.com/nested.png"

    def test_itunes_image(self):
        """Test the itunes:image href form."""
        block = '<itunes:image href="https://example.com/podcast.jpg"/>'

        assert extract_image_url(block) == "https://example.com/podcast.jpg"

    def test_description_img_is_last_resort(self):
        """Test that an <img> in the description is used only without other hints."""
        description = '<p><img src="https://example.com/inline.gif"> text</p>'

        assert extract_image_url("<title>x</title>", description) == (
            "https://example.com/inline.gif"
        )
        assert extract_image_url(
            '<itunes:image href="https://example.com/podcast.jpg"/>', description
        ) == "https://example.com/podcast.jpg"

    def test_entities_in_url_are_decoded(self):
        """Test that &amp; in attribute URLs is decoded."""
        block = '<media:thumbnail url="https://example.com/i.jpg?w=1&amp;h=2"/>'

        assert extract_image_url(block) == "https://example.com/i.jpg?w=1&h=2"

    def test_no_image(self):
        """Test that an entry without any image hint gives an empty string."""
        assert extract_image_url("<title>x</title>", "<p>No pictures</p>") == ""


class TestCleanText:
    """Tests for plain-text cleanup."""

    def test_collapses_whitespace(self):
        """Test that whitespace runs are collapsed and trimmed."""
        assert clean_text("  Hello \n\t world  ") == "Hello world"

    def test_empty(self):
        """Test that empty input stays empty."""
        assert clean_text("") == ""
