"""HTML sanitization for feed snippets."""

import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Comment
from bs4.element import CData, Declaration, Doctype, ProcessingInstruction

SANITIZED_CLASS = "sanitized-content"

ALLOWED_TAGS = {
    "a",
    "b",
    "blockquote",
    "br",
    "code",
    "div",
    "em",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "hr",
    "i",
    "img",
    "li",
    "ol",
    "p",
    "pre",
    "span",
    "strong",
    "table",
    "tbody",
    "td",
    "th",
    "thead",
    "tr",
    "ul",
}

ALLOWED_ATTRIBUTES = {"href", "src", "alt", "title", "target", "rel"}

# Removed together with everything inside them
FORBIDDEN_TAGS = [
    "script",
    "style",
    "iframe",
    "frame",
    "frameset",
    "object",
    "embed",
    "applet",
    "form",
    "input",
    "button",
    "select",
    "textarea",
    "noscript",
    "template",
    "svg",
    "math",
    "link",
    "meta",
    "base",
]

URL_ATTRIBUTES = ("href", "src")

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "avif")

_START_TAG = re.compile(r"<[a-zA-Z][^>]*>")
_STYLE_ATTR = re.compile(r"""\s+style\s*=\s*(["']).*?\1""", re.IGNORECASE | re.DOTALL)
_CLASS_ATTR = re.compile(r"""\s+class\s*=\s*(["']).*?\1""", re.IGNORECASE | re.DOTALL)
_BACKSLASH_QUOTE = re.compile(r"""\\+(["'])""")
_DOUBLED_QUOTES = re.compile(r'\b(src|href)\s*=\s*""([^"\s>]*)""', re.IGNORECASE)
_URL_ATTR = re.compile(r"""\b(src|href)\s*=\s*(["'])(.*?)\2""", re.IGNORECASE | re.DOTALL)
_QUOTE_ENTITIES = re.compile(r"&(?:quot|#34|#x22|apos|#39|#x27);", re.IGNORECASE)
_TRAILING_IMAGE_SLASH = re.compile(
    r"\.(?:%s)/$" % "|".join(IMAGE_EXTENSIONS), re.IGNORECASE
)
_UNSAFE_SCHEMES = ("javascript", "vbscript", "livescript")


def sanitize_html(html: str) -> str:
    """Sanitize an HTML snippet against the allow-list.

    Args:
        html: Raw HTML taken from a feed entry

    Returns:
        Safe HTML wrapped in a ``sanitized-content`` container, or an empty
        string for empty input
    """
    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(_preclean(html), "html.parser")

    for node in list(soup.descendants):
        if isinstance(node, (Comment, CData, Declaration, Doctype, ProcessingInstruction)):
            node.extract()

    for tag in soup.find_all(FORBIDDEN_TAGS):
        if not tag.decomposed:
            tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue
        _filter_attributes(tag)

    return wrap_sanitized(str(soup).strip())


def wrap_sanitized(html: str) -> str:
    """Wrap already-sanitized markup in the sanitized-content container."""
    return f'<div class="{SANITIZED_CLASS}">{html}</div>'


def _preclean(html: str) -> str:
    """Drop styling attributes and repair mangled URL quoting.

    Only start tags are rewritten; text between tags is left as it is.
    """
    return _START_TAG.sub(lambda m: _preclean_tag(m.group(0)), html)


def _preclean_tag(tag: str) -> str:
    tag = _STYLE_ATTR.sub("", tag)
    tag = _CLASS_ATTR.sub("", tag)
    tag = _BACKSLASH_QUOTE.sub(r"\1", tag)
    tag = _DOUBLED_QUOTES.sub(r'\1="\2"', tag)
    return _URL_ATTR.sub(
        lambda m: f'{m.group(1)}="{clean_url(m.group(3))}"',
        tag,
    )


def _filter_attributes(tag) -> None:
    """Reduce a tag's attributes to the allow-list."""
    attrs = {}
    for name, value in tag.attrs.items():
        name = name.lower()
        if name not in ALLOWED_ATTRIBUTES:
            continue
        if name in URL_ATTRIBUTES:
            value = clean_url(value)
            if not _is_safe_url(value, allow_image_data=tag.name == "img"):
                continue
            if tag.name == "img" and name == "src":
                value = strip_image_slash(value)
        attrs[name] = value

    if tag.name == "a" and "target" in attrs:
        attrs["rel"] = "noopener noreferrer"

    tag.attrs = attrs


def clean_url(value) -> str:
    """Remove quote and backslash debris left around a URL by bad escaping."""
    if isinstance(value, list):
        value = " ".join(value)
    value = _QUOTE_ENTITIES.sub("", value)
    return value.replace("\\", "").replace('"', "").replace("'", "").strip()


def strip_image_slash(url: str) -> str:
    """Strip a spurious trailing slash from an image URL.

    Only a slash directly after an image file name is removed, so
    ``https://example.com/`` and ``https://example.com/images/`` are kept.
    """
    if _TRAILING_IMAGE_SLASH.search(url) and urlparse(url).path.count("/") > 1:
        return url[:-1]
    return url


def _is_safe_url(url: str, allow_image_data: bool = False) -> bool:
    """Reject script URLs and non-image data URLs."""
    compact = re.sub(r"[\s\x00-\x1f]+", "", url).lower()
    scheme = compact.split(":", 1)[0] if ":" in compact else ""
    if scheme in _UNSAFE_SCHEMES:
        return False
    if scheme == "data":
        return allow_image_data and compact.startswith("data:image/")
    return True
