from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import requests
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from . import tui
from .config import Settings, default_settings, ensure_directories
from .github import GitHubError
from .models import Notification
from .scorer import ScorerError
from .service import NotificationService, SyncError
from .store import Store

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_args(argv: list[str]) -> tuple[Settings, argparse.Namespace]:
    defaults = default_settings()
    parser = argparse.ArgumentParser(
        description="Rank, search and triage GitHub notifications in the terminal."
    )
    parser.add_argument("--base-url", default=defaults.github_base_url)
    parser.add_argument("--db-path", default=defaults.db_path)
    parser.add_argument("--rules", default=str(defaults.rules_path), help="TOML rule file.")
    parser.add_argument("--log-file", default=str(defaults.log_path))
    parser.add_argument("--log-level", default=defaults.log_level)
    parser.add_argument("--timeout", type=float, default=defaults.request_timeout)
    parser.add_argument("--refresh-seconds", type=int, default=defaults.refresh_delay_seconds)
    parser.add_argument("--once", action="store_true", help="Print the ranked list and exit.")
    parser.add_argument("--no-sync", action="store_true", help="With --once, skip the sync.")

    args = parser.parse_args(argv)

    if args.timeout <= 0:
        raise ValueError("--timeout must be > 0")
    if args.refresh_seconds < 60:
        raise ValueError("--refresh-seconds must be >= 60")
    if args.log_level.upper() not in logging.getLevelNamesMapping():
        raise ValueError(f"unknown --log-level {args.log_level!r}")
    if not args.base_url.startswith(("http://", "https://")):
        raise ValueError("--base-url must be an http(s) URL")

    settings = defaults.with_overrides(
        github_base_url=args.base_url,
        db_path=args.db_path,
        rules_path=Path(args.rules),
        log_path=Path(args.log_file),
        log_level=args.log_level.upper(),
        request_timeout=args.timeout,
        refresh_delay_seconds=args.refresh_seconds,
    )
    return settings, args


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        filename=str(settings.log_path),
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def render_table(notifications: Sequence[Notification]) -> Table:
    table = Table(title="GitHub notifications", expand=True)
    table.add_column("Rank", justify="right", width=5)
    table.add_column("", width=2)
    table.add_column("Updated", width=15)
    table.add_column("Author", width=15)
    table.add_column("Repo", width=30)
    table.add_column("Title")

    now = tui.now_utc()
    for notification in notifications:
        table.add_row(
            str(notification.rank),
            tui.ICONS[(notification.kind, notification.state)],
            tui.human_time(notification.updated_at, now),
            tui.ellipsis(notification.author or "", 15).rstrip(),
            tui.ellipsis(notification.repo or "", 30).rstrip(),
            tui.ellipsis(notification.title or "", 80).rstrip(),
            style="bold" if notification.unread else "",
        )
    return table


def run_once(service: NotificationService, store: Store, console: Console, sync: bool) -> int:
    with store.session() as db:
        if sync:
            try:
                written = service.sync(db)
            except (GitHubError, ScorerError, SyncError, requests.RequestException) as exc:
                logger.exception("one-shot sync failed")
                console.print(f"[red]Sync failed:[/red] {exc}")
                return 1
            console.print(f"[dim]synced {written} notifications[/dim]")
        notifications = service.get_notifications(db)
    if not notifications:
        console.print("No notification.")
        return 0
    console.print(render_table(notifications))
    return 0


def run(settings: Settings, args: argparse.Namespace, console: Console) -> int:
    ensure_directories(settings)
    configure_logging(settings)
    logger.info("starting with db %s and rules %s", settings.db_path, settings.rules_path)

    store = Store(settings)
    store.create_all()
    service = NotificationService(settings)
    try:
        if args.once:
            return run_once(service, store, console, sync=not args.no_sync)
        return tui.run(
            service,
            store,
            console,
            refresh_delay_seconds=settings.refresh_delay_seconds,
            redraw_delay_seconds=settings.redraw_delay_seconds,
            channel_capacity=settings.channel_capacity,
        )
    finally:
        store.dispose()


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    console = Console()
    try:
        settings, args = parse_args(argv if argv is not None else sys.argv[1:])
    except Exception as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2

    try:
        return run(settings, args, console)
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/bold]")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
