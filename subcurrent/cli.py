"""CLI commands for Subcurrent."""

from datetime import timedelta
from pathlib import Path
from typing import Optional

import click

from .feeds import FEEDS, ConfigError, load_feeds
from .log import configure_logging
from .models import FeedSource
from .notifier import (
    DEFAULT_LEDGER_PATH,
    MAX_NOTIFICATIONS,
    NotificationError,
    WebhookNotifier,
    load_ledger,
    read_feed_items,
    save_ledger,
)
from .processor import ProcessResult, process_all_feeds
from .render import DEFAULT_OUTPUT_PATH, DEFAULT_SITE_URL, DEFAULT_TITLE, write_feed
from .store import DEFAULT_STORE_PATH, EntryStore

store_option = click.option(
    "--store",
    "store_path",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_STORE_PATH,
    envvar="SUBCURRENT_STORE",
    show_default=True,
    help="Directory holding the entry records",
)

feeds_option = click.option(
    "--feeds",
    "feeds_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="JSON feed list (defaults to the built-in list)",
)


def _error(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"))
    raise SystemExit(1)


def _load_sources(feeds_path: Optional[Path]) -> list[FeedSource]:
    if feeds_path is None:
        sources = list(FEEDS)
    else:
        try:
            sources = load_feeds(feeds_path)
        except ConfigError as e:
            _error(str(e))
    if not sources:
        _error("No feed sources configured")
    return sources


@click.group()
@click.version_option(package_name="subcurrent")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Subcurrent - Aggregate author feeds into one stream."""
    configure_logging(verbose)


@cli.command()
@feeds_option
@store_option
@click.option(
    "--min-interval-hours",
    type=float,
    help="Skip feeds whose stored entries are younger than this",
)
@click.option("--no-prune", is_flag=True, help="Keep entries no longer in their feed")
def fetch(
    feeds_path: Optional[Path],
    store_path: Path,
    min_interval_hours: Optional[float],
    no_prune: bool,
):
    """Fetch every feed and update the entry store."""
    sources = _load_sources(feeds_path)
    store = EntryStore(store_path)
    refresh_interval = (
        timedelta(hours=min_interval_hours) if min_interval_hours is not None else None
    )

    click.echo(click.style(f"Fetching {len(sources)} feed(s)...", fg="cyan"))
    click.echo()

    results = process_all_feeds(
        store, sources, refresh_interval=refresh_interval, prune=not no_prune
    )
    total = 0
    for result in results:
        _print_process_result(result)
        total += len(result.entries)

    click.echo()
    failed = sum(1 for r in results if r.error)
    summary = f"Stored {total} entries from {len(results) - failed}/{len(results)} feed(s)"
    click.echo(click.style(summary, fg="green" if not failed else "yellow", bold=True))

    if results and failed == len(results):
        _error("Every feed failed")


def _print_process_result(result: ProcessResult):
    """Print a single processing result."""
    click.echo(click.style(f"  {result.source.author_name}", fg="white", bold=True))

    if result.error:
        click.echo(click.style(f"    Error: {result.error}", fg="red"))
    elif result.skipped:
        click.echo(
            click.style(f"    Up to date | Stored: {len(result.entries)}", fg="yellow")
        )
    else:
        click.echo(
            f"    Found: {result.total_found} | "
            + click.style(f"Stored: {len(result.entries)}", fg="green")
            + (f" | Pruned: {result.pruned}" if result.pruned else "")
        )


@cli.command()
@store_option
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_OUTPUT_PATH,
    show_default=True,
    help="RSS file to write",
)
@click.option("--site-url", default=DEFAULT_SITE_URL, show_default=True)
@click.option("--title", default=DEFAULT_TITLE, show_default=True)
def render(store_path: Path, output: Path, site_url: str, title: str):
    """Write the aggregated RSS feed."""
    store = EntryStore(store_path)
    path = write_feed(store, output, site_url=site_url, title=title)
    click.echo(click.style(f"Wrote {path}", fg="green"))


@cli.command()
@click.option(
    "--feed",
    "feed_location",
    default=str(DEFAULT_OUTPUT_PATH),
    envvar="RSS_FEED_URL",
    show_default=True,
    help="Rendered RSS feed (path or URL)",
)
@click.option("--webhook-url", envvar="DISCORD_WEBHOOK_URL", help="Chat webhook URL")
@click.option(
    "--ledger",
    "ledger_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_LEDGER_PATH,
    show_default=True,
    help="File recording what was already sent",
)
@click.option("--max", "max_per_run", type=int, default=MAX_NOTIFICATIONS, show_default=True)
def notify(
    feed_location: str,
    webhook_url: Optional[str],
    ledger_path: Path,
    max_per_run: int,
):
    """Post new feed items to the chat webhook."""
    if not webhook_url:
        _error("No webhook URL. Set DISCORD_WEBHOOK_URL or pass --webhook-url")

    try:
        items = read_feed_items(feed_location)
    except NotificationError as e:
        _error(str(e))

    ledger = load_ledger(ledger_path)
    click.echo(f"Last notification: {ledger.latest_timestamp.isoformat()}")

    notifier = WebhookNotifier(webhook_url, max_per_run=max_per_run)
    updated = notifier.notify_new(items, ledger)
    try:
        save_ledger(updated, ledger_path)
    except OSError as e:
        _error(f"Failed to save ledger {ledger_path}: {e}")

    sent = len(updated.sent_links - ledger.sent_links)
    if sent:
        click.echo(click.style(f"Sent {sent} notification(s)", fg="green"))
    else:
        click.echo(click.style("No new items to send.", fg="yellow"))


@cli.command("list-feeds")
@feeds_option
def list_feeds(feeds_path: Optional[Path]):
    """List the configured feeds."""
    sources = _load_sources(feeds_path)
    click.echo(click.style(f"Configured feeds ({len(sources)}):", fg="cyan", bold=True))
    click.echo()
    for source in sources:
        click.echo(click.style(f"  {source.author_name}", fg="white", bold=True))
        click.echo(f"    Feed: {source.url}")


@cli.command()
@store_option
@click.option("--limit", "-n", type=int, default=20, show_default=True)
@click.option("--author", "-a", help="Only show entries by this author")
def entries(store_path: Path, limit: int, author: Optional[str]):
    """List stored entries, newest first."""
    store = EntryStore(store_path)
    entries_list = store.list_all()
    if author:
        entries_list = [e for e in entries_list if e.author == author]

    if not entries_list:
        click.echo("No entries stored yet. Use 'subcurrent fetch' first.")
        return

    shown = entries_list[:limit]
    click.echo(
        click.style(f"Entries ({len(shown)} of {len(entries_list)}):", fg="cyan", bold=True)
    )
    click.echo()
    for entry in shown:
        click.echo(f"  {click.style(entry.pub_date[:10], fg='cyan')} {entry.title}")
        click.echo(f"       Author: {entry.author}")
        click.echo(f"       URL: {entry.link}")
        click.echo()


if __name__ == "__main__":
    cli()
