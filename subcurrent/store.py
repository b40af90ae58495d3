"""JSON file collection store for Subcurrent entries."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from .models import FeedEntry
from .normalize import entry_key, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path("content") / "feeds"


class PersistenceError(Exception):
    """Raised when an entry cannot be written to or removed from the store."""

    pass


class EntryStore:
    """Directory of JSON records, one file per entry.

    Records are named ``<slug>-<digest>.json`` from the entry's link and
    title, so writing the same entry twice overwrites a single file.
    """

    def __init__(self, root: Optional[Path] = None):
        """Initialize the store.

        Args:
            root: Directory holding the records. Defaults to content/feeds
        """
        self.root = Path(root) if root is not None else DEFAULT_STORE_PATH
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def key_for(entry: FeedEntry) -> str:
        return entry_key(entry.link or entry.feed_source, entry.title)

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def put(self, entry: FeedEntry) -> Path:
        """Insert or overwrite an entry.

        Args:
            entry: Entry to persist

        Returns:
            Path of the written record

        Raises:
            PersistenceError: If the record cannot be written
        """
        path = self.path_for(self.key_for(entry))
        data = json.dumps(entry.to_dict(), indent=2, ensure_ascii=False)
        try:
            write_atomic(path, data)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path.name}: {e}") from e
        return path

    def get(self, key: str) -> Optional[FeedEntry]:
        """Get an entry by key.

        Returns:
            FeedEntry or None if not found or unreadable
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        return self._read(path)

    def keys(self) -> list[str]:
        return sorted(path.stem for path in self._record_paths())

    def list_all(self) -> list[FeedEntry]:
        """List every stored entry, newest pubDate first.

        Order among entries with equal timestamps is unspecified.
        """
        entries = [e for e in (self._read(p) for p in self._record_paths()) if e]
        return sort_newest_first(entries)

    def list_for_source(self, feed_source: str) -> list[FeedEntry]:
        """List stored entries belonging to one feed source."""
        return [e for e in self.list_all() if e.feed_source == feed_source]

    def prune_stale_for_source(
        self, feed_source: str, keep_keys: Iterable[str]
    ) -> list[str]:
        """Remove a source's records that are not in ``keep_keys``.

        Args:
            feed_source: URL of the feed source
            keep_keys: Keys produced by the latest successful run

        Returns:
            Keys of the removed records
        """
        keep = set(keep_keys)
        removed = []
        for path in self._record_paths():
            if path.stem in keep:
                continue
            entry = self._read(path)
            if entry is None or entry.feed_source != feed_source:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error("Could not remove stale entry %s: %s", path.name, e)
                continue
            logger.info("Removed stale entry %s", path.name)
            removed.append(path.stem)
        return removed

    def _record_paths(self) -> list[Path]:
        return [p for p in self.root.glob("*.json") if not p.name.startswith(".")]

    def _read(self, path: Path) -> Optional[FeedEntry]:
        """Read a record, returning None for unreadable or invalid files."""
        try:
            with open(path, encoding="utf-8") as f:
                return FeedEntry.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping unreadable entry file %s: %s", path.name, e)
            return None


def write_atomic(path: Path, text: str) -> None:
    """Replace a file's contents in one step through a temporary sibling.

    Raises:
        OSError: If the file cannot be written; the original is left intact
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=path.suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def sort_newest_first(entries: list[FeedEntry]) -> list[FeedEntry]:
    """Sort entries by pubDate, newest first. Unparsable dates sort last."""

    def sort_key(entry: FeedEntry) -> float:
        parsed = parse_timestamp(entry.pub_date)
        return parsed.timestamp() if parsed else float("-inf")

    return sorted(entries, key=sort_key, reverse=True)
