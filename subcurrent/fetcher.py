"""Polite feed fetching for Subcurrent.

Every source is fetched under a SourcePolicy. Most hosts get the default
policy. Hosts known to rate-limit or challenge non-browser clients get the
hardened policy, which sends browser-like headers, spaces its requests
and adds a randomized delay the first time a domain is seen in a run.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "Subcurrent/1.0 (+https://github.com/astoria-tech/subcurrent)"

FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, "
    "application/xml;q=0.9, text/xml;q=0.9, */*;q=0.8"
)

BROWSER_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
)

# Hosts (and their subdomains) that get the hardened policy
HARDENED_DOMAINS = ("substack.com", "medium.com")

MIN_BODY_LENGTH = 100
CHALLENGE_SCAN_LENGTH = 4096
CHALLENGE_MARKERS = (
    "captcha",
    "cf-browser-verification",
    "challenge-platform",
    "cf_chl_",
    "just a moment...",
    "attention required! | cloudflare",
    "checking your browser",
)
FEED_SIGNATURES = ("<?xml", "<rss", "<feed", "<rdf:rdf")

# Longest wait honored from a rate-limit header
MAX_RATE_LIMIT_WAIT = 120.0


class FetchError(Exception):
    """Raised when a feed cannot be fetched or does not look like a feed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings for rate-limited responses."""

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.5

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        return delay + rng.uniform(0, self.jitter)


@dataclass(frozen=True)
class SourcePolicy:
    """How a class of sources is fetched."""

    name: str
    browser_like: bool = False
    min_interval: float = 0.0
    first_visit_delay: tuple[float, float] = (0.0, 0.0)
    retry: RetryPolicy = field(default_factory=RetryPolicy)


DEFAULT_POLICY = SourcePolicy(name="default")

HARDENED_POLICY = SourcePolicy(
    name="hardened",
    browser_like=True,
    min_interval=2.0,
    first_visit_delay=(1.0, 3.0),
    retry=RetryPolicy(max_attempts=3, base_delay=5.0, max_delay=60.0, jitter=1.0),
)


def policy_for(url: str) -> SourcePolicy:
    """Choose the fetch policy for a feed URL by its host."""
    host = (urlparse(url).hostname or "").lower()
    for domain in HARDENED_DOMAINS:
        if host == domain or host.endswith("." + domain):
            return HARDENED_POLICY
    return DEFAULT_POLICY


@dataclass
class FetchContext:
    """State shared by the fetches of a single run.

    Create one per run; nothing here is persisted.
    """

    seen_domains: set[str] = field(default_factory=set)
    last_request_at: dict[str, float] = field(default_factory=dict)


def default_headers() -> dict[str, str]:
    return {
        "User-Agent": USER_AGENT,
        "Accept": FEED_ACCEPT,
        "Accept-Encoding": "gzip, deflate",
    }


def browser_headers(url: str, rng: random.Random) -> dict[str, str]:
    """Build headers resembling a browser navigating to the feed."""
    parsed = urlparse(url)
    return {
        "User-Agent": rng.choice(BROWSER_USER_AGENTS),
        "Accept": FEED_ACCEPT + ", text/html;q=0.7",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Referer": f"{parsed.scheme}://{parsed.netloc}/",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
        "Cache-Control": "no-cache",
    }


class FetchStrategy:
    """Fetches raw feed documents with retries, backoff and politeness delays."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: tuple[float, float] = (10.0, 30.0),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the fetcher.

        Args:
            session: requests session to use (one is created if omitted)
            timeout: (connect, read) timeout in seconds
            sleep: Function used for every delay
            clock: Monotonic clock used for request spacing
            rng: Random generator for jitter and user-agent rotation
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "FetchStrategy":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def fetch(self, url: str, context: Optional[FetchContext] = None) -> str:
        """Fetch a feed document.

        Args:
            url: Feed URL
            context: Per-run state; a throwaway one is used if omitted

        Returns:
            The response body text

        Raises:
            FetchError: On network failure, timeout, non-2xx status,
                exhausted 429 retries or a body that is not a feed
        """
        context = context if context is not None else FetchContext()
        policy = policy_for(url)
        attempts = max(1, policy.retry.max_attempts)

        for attempt in range(attempts):
            self._wait_before_request(url, policy, context)
            response = self._get(url, policy)
            context.last_request_at[policy.name] = self.clock()

            if response.status_code == 429:
                if attempt + 1 >= attempts:
                    break
                delay = policy.retry.delay_for(attempt, self.rng)
                hinted = retry_after_seconds(response.headers)
                if hinted is not None:
                    delay = max(delay, min(hinted, policy.retry.max_delay))
                logger.warning(
                    "Rate limited by %s (attempt %d/%d), retrying in %.1fs",
                    url,
                    attempt + 1,
                    attempts,
                    delay,
                )
                self.sleep(delay)
                continue

            if not 200 <= response.status_code < 300:
                raise FetchError(
                    f"HTTP {response.status_code} fetching {url}",
                    status_code=response.status_code,
                )

            self._respect_rate_limit(url, response.headers)
            body = _response_text(response)
            validate_feed_body(body)
            logger.debug("Fetched %d characters from %s", len(body), url)
            return body

        raise FetchError(
            f"Still rate limited by {url} after {attempts} attempts",
            status_code=429,
        )

    def _get(self, url: str, policy: SourcePolicy) -> requests.Response:
        if policy.browser_like:
            headers = browser_headers(url, self.rng)
        else:
            headers = default_headers()
        try:
            return self.session.get(
                url, headers=headers, timeout=self.timeout, allow_redirects=True
            )
        except requests.Timeout as e:
            raise FetchError(f"Timed out fetching {url}: {e}") from e
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

    def _wait_before_request(
        self, url: str, policy: SourcePolicy, context: FetchContext
    ) -> None:
        """Apply the policy's spacing and first-visit delays."""
        delay = 0.0

        last = context.last_request_at.get(policy.name)
        if policy.min_interval and last is not None:
            delay = max(delay, policy.min_interval - (self.clock() - last))

        domain = (urlparse(url).hostname or "").lower()
        if domain not in context.seen_domains:
            context.seen_domains.add(domain)
            low, high = policy.first_visit_delay
            if high > 0:
                delay += self.rng.uniform(low, high)

        if delay > 0:
            logger.debug("Waiting %.1fs before requesting %s", delay, url)
            self.sleep(delay)

    def _respect_rate_limit(self, url: str, headers) -> None:
        """Sleep when the server says the quota is used up."""
        wait = retry_after_seconds(headers)
        remaining = _header_number(headers, "X-RateLimit-Remaining")
        if remaining is not None and remaining <= 0:
            reset = _reset_seconds(headers)
            if reset is not None:
                wait = max(wait or 0.0, reset)

        if wait:
            wait = min(wait, MAX_RATE_LIMIT_WAIT)
            logger.info("Rate limit hint from %s, waiting %.1fs", url, wait)
            self.sleep(wait)


def validate_feed_body(body: str) -> None:
    """Reject bodies that are too short, challenge pages or not feeds.

    Raises:
        FetchError: If the body fails one of the checks
    """
    if len(body.strip()) < MIN_BODY_LENGTH:
        raise FetchError(f"Response too short ({len(body.strip())} characters)")

    head = body[:CHALLENGE_SCAN_LENGTH].lower()
    for marker in CHALLENGE_MARKERS:
        if marker in head:
            raise FetchError(f"Anti-bot challenge detected ({marker!r})")

    lowered = body.lower()
    if not any(signature in lowered for signature in FEED_SIGNATURES):
        raise FetchError("Response is not an RSS or Atom document")


def retry_after_seconds(headers) -> Optional[float]:
    """Read a Retry-After header given in seconds or as an HTTP date."""
    value = headers.get("Retry-After")
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _reset_seconds(headers) -> Optional[float]:
    """Seconds until X-RateLimit-Reset, given as a delta or epoch time."""
    reset = _header_number(headers, "X-RateLimit-Reset")
    if reset is None:
        return None
    if reset > 1_000_000_000:
        return max(0.0, reset - time.time())
    return max(0.0, reset)


def _header_number(headers, name: str) -> Optional[float]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _response_text(response: requests.Response) -> str:
    # Without a declared charset requests assumes ISO-8859-1 for text/*
    content_type = response.headers.get("Content-Type", "")
    if "charset" not in content_type.lower():
        response.encoding = "utf-8"
    return response.text
