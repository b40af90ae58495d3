"""Feed processing for Subcurrent: fetch, parse, normalize and persist."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .fetcher import FetchContext, FetchError, FetchStrategy
from .models import FeedEntry, FeedSource
from .normalize import normalize_entry, parse_timestamp, utc_now
from .rss import parse_entries
from .store import EntryStore, PersistenceError

logger = logging.getLogger(__name__)


class ProcessStage(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class ProcessResult:
    """Result of processing a single feed source."""

    source: FeedSource
    entries: list[FeedEntry] = field(default_factory=list)
    total_found: int = 0
    pruned: int = 0
    skipped: bool = False
    stage: ProcessStage = ProcessStage.IDLE
    failed_stage: Optional[ProcessStage] = None
    error: Optional[str] = None


def process_feed(
    store: EntryStore,
    source: FeedSource,
    fetcher: FetchStrategy,
    context: Optional[FetchContext] = None,
    refresh_interval: Optional[timedelta] = None,
    prune: bool = True,
    now: Optional[datetime] = None,
) -> ProcessResult:
    """Process one feed source.

    Never raises: fetch and parse failures end processing with no entries,
    a failed write drops only that entry.

    Args:
        store: Collection store to write entries to
        source: Feed source to process
        fetcher: Fetch strategy used for the request
        context: Per-run fetch state
        refresh_interval: Skip the fetch when every stored entry for the
            source is younger than this
        prune: Remove stored entries the feed no longer lists
        now: Reference time (defaults to the current time)

    Returns:
        ProcessResult with the persisted entries
    """
    result = ProcessResult(source=source)
    now = now or utc_now()

    if refresh_interval is not None:
        existing = store.list_for_source(source.url)
        if existing and _all_fresh(existing, now - refresh_interval):
            logger.info(
                "Skipping %s, %d entries fetched within %s",
                source.url,
                len(existing),
                refresh_interval,
            )
            result.entries = existing
            result.total_found = len(existing)
            result.skipped = True
            result.stage = ProcessStage.DONE
            return result

    try:
        result.stage = ProcessStage.FETCHING
        logger.info("Fetching %s (%s)", source.url, source.author_name)
        document = fetcher.fetch(source.url, context)

        result.stage = ProcessStage.PARSING
        raw_entries = parse_entries(document)
        result.total_found = len(raw_entries)
        logger.info("Found %d entries in %s", len(raw_entries), source.url)

        result.stage = ProcessStage.NORMALIZING
        normalized: dict[str, FeedEntry] = {}
        for raw in raw_entries:
            entry = normalize_entry(raw, source, fetched_at=now)
            if entry is None:
                logger.debug("Discarding entry without title or description")
                continue
            normalized[EntryStore.key_for(entry)] = entry

        result.stage = ProcessStage.PERSISTING
        written = []
        for key, entry in normalized.items():
            try:
                store.put(entry)
            except PersistenceError as e:
                logger.error("Dropping entry %r: %s", entry.title, e)
                continue
            written.append(key)
            result.entries.append(entry)

        # Entries still listed upstream are kept even when their write failed
        if prune and written:
            result.pruned = len(store.prune_stale_for_source(source.url, list(normalized)))
    except FetchError as e:
        _fail(result, str(e))
    except Exception as e:
        logger.exception("Unexpected error processing %s", source.url)
        _fail(result, f"Unexpected error: {e}")
    else:
        result.stage = ProcessStage.DONE

    return result


def process_all_feeds(
    store: EntryStore,
    sources: list[FeedSource],
    fetcher: Optional[FetchStrategy] = None,
    refresh_interval: Optional[timedelta] = None,
    prune: bool = True,
) -> list[ProcessResult]:
    """Process every feed source in order.

    Sources are fetched one after another with a single FetchContext, so
    politeness delays apply across the whole run.

    Args:
        store: Collection store to write entries to
        sources: Feed sources in configured order
        fetcher: Fetch strategy (a default one is created if omitted)
        refresh_interval: See process_feed
        prune: See process_feed

    Returns:
        List of ProcessResult, one per source
    """
    context = FetchContext()
    own_fetcher = fetcher is None
    fetcher = fetcher or FetchStrategy()
    results = []

    try:
        for source in sources:
            result = process_feed(
                store,
                source,
                fetcher,
                context,
                refresh_interval=refresh_interval,
                prune=prune,
            )
            results.append(result)
    finally:
        if own_fetcher:
            fetcher.close()

    return results


def _fail(result: ProcessResult, error: str) -> None:
    logger.error(
        "Processing %s failed while %s: %s",
        result.source.url,
        result.stage.value,
        error,
    )
    result.failed_stage = result.stage
    result.stage = ProcessStage.DONE
    result.error = error
    result.entries = []


def _all_fresh(entries: list[FeedEntry], cutoff: datetime) -> bool:
    for entry in entries:
        fetched = parse_timestamp(entry.last_fetched)
        if fetched is None or fetched < cutoff:
            return False
    return True
