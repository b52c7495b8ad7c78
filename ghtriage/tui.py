from __future__ import annotations

import enum
import logging
import os
import queue
import select
import subprocess
import sys
import termios
import threading
import time
import tty
import webbrowser
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from rich.align import Align
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from sqlalchemy.exc import SQLAlchemyError

from .github import MissingTokenError, UpdateStatus
from .models import Notification, NotificationKind, NotificationState
from .scorer import InvalidRuleFileError, Rule, UnknownRuleError
from .service import NotificationService
from .store import Store

logger = logging.getLogger(__name__)

PAGE_SIZE = 10
SCORE_STEP = 10
LOADING_SPINNER = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")


class Action(enum.Enum):
    QUIT = "quit"
    SCORE = "score"
    OPEN = "open"
    MARK_DONE = "mark_done"
    MARK_BELOW_DONE = "mark_below_done"
    SYNC = "sync"
    SYNC_BACKGROUND = "sync_background"
    EXPLAIN = "explain"
    HELP = "help"


class UiEvent(enum.Enum):
    MOVE_UP = "move_up"
    MOVE_DOWN = "move_down"
    SELECT = "select"
    REDRAW = "redraw"
    INFO = "info"
    ERROR = "error"
    LOADING = "loading"
    POPUP = "popup"
    SEARCH_START = "search_start"
    SEARCH_INPUT = "search_input"
    SEARCH_BACKSPACE = "search_backspace"
    SEARCH_CANCEL = "search_cancel"
    SEARCH_SUBMIT = "search_submit"
    KEY = "key"
    NOOP = "noop"


@dataclass(frozen=True)
class Message:
    event: Action | UiEvent
    value: Any = None


@dataclass(frozen=True)
class Popup:
    title: str
    content: str


class Outcome(enum.Enum):
    QUIT = "quit"
    DISPATCH = "dispatch"
    REDRAW = "redraw"
    IGNORE = "ignore"


@dataclass
class TuiState:
    headline_kind: str = "info"
    headline: str = ""
    popup: Popup | None = None
    selected_index: int = 0
    offset: int = 0
    search_active: bool = False
    search_query: str = ""
    notifications: list[Notification] = field(default_factory=list)

    def reset_headline(self) -> None:
        self.headline_kind = "info"
        self.headline = ""


KEYMAP: tuple[tuple[str, str], ...] = (
    ("up/down  k/j", "move cursor up or down"),
    ("pgup/pgdn", f"move cursor by {PAGE_SIZE} rows"),
    ("enter", "open in browser and mark as read"),
    ("+ / -", f"increase or decrease score by {SCORE_STEP}"),
    ("r", "mark as done"),
    ("R", "mark selected and every row below as done"),
    ("g", "sync now"),
    ("x", "explain score"),
    ("/", "search (esc clears, enter keeps the filter)"),
    ("?", "this help"),
    ("q", "quit"),
)

NORMAL_KEYS: dict[str, Message] = {
    "UP": Message(UiEvent.MOVE_UP, 1),
    "k": Message(UiEvent.MOVE_UP, 1),
    "DOWN": Message(UiEvent.MOVE_DOWN, 1),
    "j": Message(UiEvent.MOVE_DOWN, 1),
    "PGUP": Message(UiEvent.MOVE_UP, PAGE_SIZE),
    "PGDN": Message(UiEvent.MOVE_DOWN, PAGE_SIZE),
    "q": Message(Action.QUIT),
    "QUIT": Message(Action.QUIT),
    "+": Message(Action.SCORE, SCORE_STEP),
    "-": Message(Action.SCORE, -SCORE_STEP),
    "ENTER": Message(Action.OPEN),
    "r": Message(Action.MARK_DONE),
    "R": Message(Action.MARK_BELOW_DONE),
    "g": Message(Action.SYNC),
    "x": Message(Action.EXPLAIN),
    "?": Message(Action.HELP),
    "/": Message(UiEvent.SEARCH_START),
}

SEARCH_KEYS: dict[str, Message] = {
    "ESC": Message(UiEvent.SEARCH_CANCEL),
    "ENTER": Message(UiEvent.SEARCH_SUBMIT),
    "BACKSPACE": Message(UiEvent.SEARCH_BACKSPACE),
    "QUIT": Message(Action.QUIT),
    "UP": Message(UiEvent.MOVE_UP, 1),
    "DOWN": Message(UiEvent.MOVE_DOWN, 1),
    "PGUP": Message(UiEvent.MOVE_UP, PAGE_SIZE),
    "PGDN": Message(UiEvent.MOVE_DOWN, PAGE_SIZE),
}

LOADING_LABELS: dict[Action, str] = {
    Action.SCORE: "updating score...",
    Action.OPEN: "opening browser...",
    Action.MARK_DONE: "mark as done...",
    Action.MARK_BELOW_DONE: "mark as done...",
    Action.SYNC: "syncing...",
    Action.SYNC_BACKGROUND: "syncing in background...",
    Action.EXPLAIN: "explaining...",
    Action.HELP: "loading help...",
}

GENERIC_ERRORS: dict[Action, str] = {
    Action.SCORE: "cannot update score",
    Action.OPEN: "failed to open browser",
    Action.MARK_DONE: "failed to mark as done",
    Action.MARK_BELOW_DONE: "failed to mark as done",
    Action.SYNC: "cannot sync",
    Action.SYNC_BACKGROUND: "cannot sync",
    Action.EXPLAIN: "explain failed",
    Action.HELP: "cannot show help",
}

ICONS: dict[tuple[NotificationKind, NotificationState], str] = {
    (NotificationKind.PULL_REQUEST, NotificationState.OPEN): "📬",
    (NotificationKind.PULL_REQUEST, NotificationState.DRAFT): "📝",
    (NotificationKind.PULL_REQUEST, NotificationState.RESOLVED): "📪",
    (NotificationKind.PULL_REQUEST, NotificationState.CANCELED): "❌",
    (NotificationKind.ISSUE, NotificationState.OPEN): "🐛",
    (NotificationKind.ISSUE, NotificationState.DRAFT): "🐛",
    (NotificationKind.ISSUE, NotificationState.RESOLVED): "✅",
    (NotificationKind.ISSUE, NotificationState.CANCELED): "🐛",
    (NotificationKind.RELEASE, NotificationState.OPEN): "🚢",
    (NotificationKind.RELEASE, NotificationState.DRAFT): "🚢",
    (NotificationKind.RELEASE, NotificationState.RESOLVED): "🚢",
    (NotificationKind.RELEASE, NotificationState.CANCELED): "🚢",
    (NotificationKind.UNKNOWN, NotificationState.OPEN): "❔",
    (NotificationKind.UNKNOWN, NotificationState.DRAFT): "❔",
    (NotificationKind.UNKNOWN, NotificationState.RESOLVED): "❔",
    (NotificationKind.UNKNOWN, NotificationState.CANCELED): "❔",
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ellipsis(value: str, width: int) -> str:
    if len(value) > width:
        if width <= 1:
            return value[:width]
        return f"{value[: width - 1]}…"
    return value.ljust(width)


def _plural(count: int, unit: str) -> str:
    if count == 1:
        article = "an" if unit == "hour" else "a"
        return f"{article} {unit} ago"
    return f"{count} {unit}s ago"


def human_time(updated_at: datetime, now: datetime | None = None) -> str:
    if now is None:
        now = now_utc()
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    seconds = max(int((now - updated_at).total_seconds()), 0)
    if seconds < 60:
        return "now"
    minutes = seconds // 60
    if minutes < 60:
        return _plural(minutes, "minute")
    hours = minutes // 60
    if hours < 24:
        return _plural(hours, "hour")
    days = hours // 24
    if days < 7:
        return _plural(days, "day")
    if days < 30:
        return _plural(days // 7, "week")
    if days < 365:
        return _plural(days // 30, "month")
    return _plural(days // 365, "year")


def format_row(notification: Notification, now: datetime | None = None) -> str:
    icon = ICONS[(notification.kind, notification.state)]
    return (
        f"{notification.rank:>3} {icon} "
        f"{ellipsis(human_time(notification.updated_at, now), 15)} "
        f"{ellipsis(notification.author or '', 15)} "
        f"{ellipsis(notification.repo or '', 30)} "
        f"{ellipsis(notification.title or '', 80).rstrip()}"
    )


def help_text() -> str:
    width = max(len(keys) for keys, _ in KEYMAP)
    return "\n".join(f"{keys.ljust(width)} | {description}" for keys, description in KEYMAP)


def format_explanation(rules: Sequence[Rule], score_boost: int) -> str:
    if not rules:
        explanation = "This notification doesn't match any rule"
    else:
        explanation = "\n".join(f"rule:{rule.name} score:{rule.score}" for rule in rules)
    if score_boost != 0:
        explanation = f"{explanation}\n\nmanual boost:{score_boost}"
    return explanation


def key_to_message(key: str, search_mode: bool) -> Message:
    if not search_mode:
        return NORMAL_KEYS.get(key, Message(UiEvent.NOOP))
    if key in SEARCH_KEYS:
        return SEARCH_KEYS[key]
    if len(key) == 1 and key.isprintable():
        return Message(UiEvent.SEARCH_INPUT, key)
    return Message(UiEvent.NOOP)


def resolve_key(state: TuiState, message: Message) -> Message:
    # Keys are mapped on the main loop, which is the only owner of the search mode.
    if message.event is UiEvent.KEY:
        return key_to_message(str(message.value), state.search_active)
    return message


def clamp_selection(index: int, items: Sequence[Any]) -> int:
    if not items:
        return 0
    if index < 0:
        return 0
    if index >= len(items):
        return len(items) - 1
    return index


def scroll_window(selected: int, offset: int, visible_rows: int, total: int) -> int:
    visible_rows = max(1, visible_rows)
    if selected < offset:
        offset = selected
    elif selected >= offset + visible_rows:
        offset = selected - visible_rows + 1
    return max(0, min(offset, max(0, total - visible_rows)))


def apply_ui(state: TuiState, message: Message) -> None:
    event = message.event
    if event is UiEvent.MOVE_UP:
        state.selected_index = clamp_selection(state.selected_index - int(message.value), state.notifications)
        state.reset_headline()
    elif event is UiEvent.MOVE_DOWN:
        state.selected_index = clamp_selection(state.selected_index + int(message.value), state.notifications)
        state.reset_headline()
    elif event is UiEvent.SELECT:
        state.selected_index = max(0, int(message.value))
        state.reset_headline()
    elif event is UiEvent.REDRAW:
        state.reset_headline()
    elif event is UiEvent.INFO:
        state.headline_kind, state.headline = "info", str(message.value)
    elif event is UiEvent.ERROR:
        state.headline_kind, state.headline = "error", str(message.value)
    elif event is UiEvent.LOADING:
        state.headline_kind, state.headline = "loading", str(message.value)
    elif event is UiEvent.POPUP:
        state.popup = message.value
        state.reset_headline()
    elif event is UiEvent.SEARCH_START:
        state.search_active = True
    elif event is UiEvent.SEARCH_INPUT:
        state.search_query += str(message.value)
        state.selected_index = 0
    elif event is UiEvent.SEARCH_BACKSPACE:
        state.search_query = state.search_query[:-1]
        state.selected_index = 0
    elif event is UiEvent.SEARCH_CANCEL:
        state.search_active = False
        state.search_query = ""
        state.selected_index = 0
    elif event is UiEvent.SEARCH_SUBMIT:
        state.search_active = False


def process_message(state: TuiState, message: Message) -> Outcome:
    # An open popup swallows the next message whatever it is.
    if state.popup is not None:
        state.popup = None
        state.reset_headline()
        return Outcome.REDRAW
    message = resolve_key(state, message)
    if isinstance(message.event, Action):
        if message.event is Action.QUIT:
            return Outcome.QUIT
        return Outcome.DISPATCH
    if message.event is UiEvent.NOOP:
        return Outcome.IGNORE
    apply_ui(state, message)
    return Outcome.REDRAW


def put_message(channel: queue.Queue[Message], message: Message, stop_event: threading.Event) -> bool:
    while not stop_event.is_set():
        try:
            channel.put(message, timeout=0.5)
            return True
        except queue.Full:
            continue
    logger.debug("dropping %s, coordinator stopped", message)
    return False


def open_link(url: str) -> str:
    clean_url = url.strip()
    if not clean_url:
        return "No URL available for selected notification."
    try:
        if sys.platform == "darwin":
            subprocess.Popen(["open", clean_url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            webbrowser.open(clean_url, new=2)
        return ""
    except Exception as exc:
        logger.error("cannot open %s: %s", clean_url, exc)
        return f"Failed to open browser: {exc}"


@dataclass
class ActionContext:
    service: NotificationService
    store: Store
    channel: queue.Queue[Message]
    stop_event: threading.Event
    opener: Callable[[str], str] = open_link


def selected_notification(notifications: Sequence[Notification], index: int | None) -> Notification | None:
    if index is None or index < 0 or index >= len(notifications):
        return None
    return notifications[index]


def describe_error(action: Action, exc: BaseException) -> str:
    if isinstance(exc, MissingTokenError):
        return "env var GH_TOKEN is missing"
    if isinstance(exc, UnknownRuleError):
        return f'invalid rule "{exc.rule_name}"'
    if isinstance(exc, InvalidRuleFileError):
        return "invalid rule file"
    return GENERIC_ERRORS.get(action, "unexpected error")


def handle_score(
    ctx: ActionContext,
    delta: int,
    notifications: Sequence[Notification],
    index: int | None,
    query: str,
) -> Message:
    notification = selected_notification(notifications, index)
    if notification is None:
        return Message(UiEvent.REDRAW)
    with ctx.store.session() as db:
        ctx.service.update_score(db, notification, delta)
        reordered = ctx.service.get_notifications(db, query)
    for position, row in enumerate(reordered):
        if row.id == notification.id:
            return Message(UiEvent.SELECT, position)
    return Message(UiEvent.REDRAW)


def handle_open(ctx: ActionContext, notification: Notification | None) -> Message:
    if notification is None:
        return Message(UiEvent.REDRAW)
    error = ctx.opener(notification.url or "")
    if error:
        return Message(UiEvent.ERROR, error)
    with ctx.store.session() as db:
        ctx.service.mark_read(db, notification)
    return Message(UiEvent.REDRAW)


def handle_mark_done(ctx: ActionContext, notification: Notification | None) -> Message:
    if notification is None:
        return Message(UiEvent.REDRAW)
    with ctx.store.session() as db:
        ctx.service.mark_done(db, notification)
    return Message(UiEvent.REDRAW)


def handle_mark_below_done(
    ctx: ActionContext,
    notifications: Sequence[Notification],
    index: int | None,
) -> Message:
    if selected_notification(notifications, index) is None:
        return Message(UiEvent.REDRAW)
    below = list(notifications[index:])
    with ctx.store.session() as db:
        ctx.service.mark_done_bulk(db, below)
    return Message(UiEvent.INFO, f"mark as done complete ({len(below)} notifications)")


def handle_sync(ctx: ActionContext, background: bool) -> Message:
    with ctx.store.session() as db:
        written = ctx.service.sync(db)
    if background:
        return Message(UiEvent.REDRAW)
    return Message(UiEvent.INFO, f"sync done, {written} notifications updated")


def handle_explain(ctx: ActionContext, notification: Notification | None) -> Message:
    if notification is None:
        return Message(UiEvent.REDRAW)
    rules = ctx.service.explain(notification)
    return Message(UiEvent.POPUP, Popup("Explain", format_explanation(rules, notification.score_boost or 0)))


def run_action(
    ctx: ActionContext,
    message: Message,
    notifications: Sequence[Notification],
    index: int | None,
    query: str,
) -> Message:
    action = message.event
    notification = selected_notification(notifications, index)
    if action is Action.SCORE:
        return handle_score(ctx, int(message.value), notifications, index, query)
    if action is Action.OPEN:
        return handle_open(ctx, notification)
    if action is Action.MARK_DONE:
        return handle_mark_done(ctx, notification)
    if action is Action.MARK_BELOW_DONE:
        return handle_mark_below_done(ctx, notifications, index)
    if action is Action.SYNC:
        return handle_sync(ctx, background=False)
    if action is Action.SYNC_BACKGROUND:
        return handle_sync(ctx, background=True)
    if action is Action.EXPLAIN:
        return handle_explain(ctx, notification)
    if action is Action.HELP:
        return Message(UiEvent.POPUP, Popup("Help", help_text()))
    return Message(UiEvent.REDRAW)


def handle_action(
    ctx: ActionContext,
    message: Message,
    notifications: Sequence[Notification],
    index: int | None,
    query: str,
) -> None:
    action = message.event
    logger.debug("handle_action %s", message)
    put_message(ctx.channel, Message(UiEvent.LOADING, LOADING_LABELS.get(action, "working...")), ctx.stop_event)
    try:
        outcome = run_action(ctx, message, notifications, index, query)
    except Exception as exc:
        logger.exception("%s failed", action.value)
        outcome = Message(UiEvent.ERROR, describe_error(action, exc))
    put_message(ctx.channel, outcome, ctx.stop_event)


def dispatch_action(ctx: ActionContext, state: TuiState, message: Message) -> threading.Thread:
    worker = threading.Thread(
        target=handle_action,
        args=(ctx, message, list(state.notifications), state.selected_index, state.search_query),
        daemon=True,
    )
    worker.start()
    return worker


def next_sync_plan(probe: Callable[[], UpdateStatus], floor_seconds: int) -> tuple[int, bool]:
    try:
        status = probe()
    except Exception as exc:
        logger.warning("update probe failed: %s", exc)
        return floor_seconds, True
    logger.debug("gh status %s", status)
    return max(floor_seconds, status.poll_interval), status.need_update


def auto_sync_worker(
    service: NotificationService,
    store: Store,
    channel: queue.Queue[Message],
    stop_event: threading.Event,
    floor_seconds: int,
) -> None:
    def probe() -> UpdateStatus:
        with store.session() as db:
            return service.check_update_and_limit(db)

    while not stop_event.is_set():
        delay, need_update = next_sync_plan(probe, floor_seconds)
        logger.info("need_update: %s, sleeping for: %s sec", need_update, delay)
        if need_update:
            put_message(channel, Message(Action.SYNC_BACKGROUND), stop_event)
        if stop_event.wait(delay):
            break


def auto_redraw_worker(
    channel: queue.Queue[Message],
    stop_event: threading.Event,
    delay_seconds: int,
) -> None:
    while not stop_event.wait(delay_seconds):
        try:
            channel.put_nowait(Message(UiEvent.REDRAW))
        except queue.Full:
            logger.debug("redraw dropped, channel full")


def _line_input_worker(
    channel: queue.Queue[Message],
    stop_event: threading.Event,
) -> None:
    while not stop_event.is_set():
        try:
            line = sys.stdin.readline()
        except Exception:
            if stop_event.wait(0.2):
                break
            continue
        if line == "":
            if stop_event.wait(0.2):
                break
            continue
        for key in [*line.rstrip("\n"), "ENTER"]:
            put_message(channel, Message(UiEvent.KEY, key), stop_event)


def read_key(fd: int) -> str:
    data = os.read(fd, 1)
    key = data.decode("utf-8", errors="ignore")
    if key in {"\r", "\n"}:
        return "ENTER"
    if key in {"\x7f", "\b"}:
        return "BACKSPACE"
    if key == "\x03":
        return "QUIT"
    if key != "\x1b":
        return key
    sequence = ""
    while select.select([fd], [], [], 0.001)[0]:
        sequence += os.read(fd, 1).decode("utf-8", errors="ignore")
        if not sequence:
            continue
        if sequence[-1].isalpha() or sequence.endswith("~") or len(sequence) >= 6:
            break
    return {
        "[A": "UP",
        "[B": "DOWN",
        "[5~": "PGUP",
        "[6~": "PGDN",
    }.get(sequence, "ESC")


def input_worker(
    channel: queue.Queue[Message],
    stop_event: threading.Event,
) -> None:
    if not sys.stdin.isatty():
        _line_input_worker(channel, stop_event)
        return

    try:
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
    except Exception:
        _line_input_worker(channel, stop_event)
        return

    try:
        tty.setcbreak(fd)
        while not stop_event.is_set():
            ready, _, _ = select.select([fd], [], [], 0.2)
            if not ready:
                continue
            key = read_key(fd)
            if not key:
                continue
            put_message(channel, Message(UiEvent.KEY, key), stop_event)
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        except Exception:
            pass


def render_headline(state: TuiState) -> Text:
    if state.headline_kind == "error":
        return Text(state.headline, style="bold red")
    if state.headline_kind == "loading":
        spinner = LOADING_SPINNER[int(time.monotonic() * 10) % len(LOADING_SPINNER)]
        return Text(f"{spinner} {state.headline}", style="yellow")
    if state.headline:
        return Text(state.headline)
    return Text(f"ghtriage, {len(state.notifications)} notifs")


def render_rows(state: TuiState, visible_rows: int, now: datetime | None = None) -> Text:
    notifications = state.notifications
    if not notifications:
        message = "No notification matches the search" if state.search_query else "No notification, press g to sync"
        return Text(message, style="dim")
    state.selected_index = clamp_selection(state.selected_index, notifications)
    state.offset = scroll_window(state.selected_index, state.offset, visible_rows, len(notifications))
    lines = Text()
    window = notifications[state.offset : state.offset + visible_rows]
    for position, notification in enumerate(window, start=state.offset):
        style = "bold" if notification.unread else ""
        if position == state.selected_index:
            style = f"{style} reverse".strip()
        if position > state.offset:
            lines.append("\n")
        lines.append(format_row(notification, now), style=style)
    return lines


def render_search_bar(state: TuiState) -> Text | None:
    if state.search_active:
        return Text(f"/{state.search_query}▏  Enter keep filter | Esc clear", style="bold magenta")
    if state.search_query:
        return Text(f"filter: {state.search_query}  (/ to edit)", style="magenta")
    return None


def render_popup(popup: Popup, terminal_height: int) -> RenderableType:
    lines = popup.content.split("\n")
    width = max(len(line) for line in lines) + 4
    panel = Panel(popup.content, title=popup.title, border_style="bright_blue", width=max(width, len(popup.title) + 6))
    return Align.center(panel, vertical="middle", height=max(3, terminal_height - 2))


def render_screen(state: TuiState, terminal_width: int, terminal_height: int) -> RenderableType:
    head = Table.grid(expand=True)
    head.add_column(justify="left", ratio=1)
    head.add_column(justify="right", ratio=1)
    head.add_row(render_headline(state), Text("? for Help", style="dim"))

    if state.popup is not None:
        return Group(head, render_popup(state.popup, terminal_height))

    search_bar = render_search_bar(state)
    visible_rows = max(1, terminal_height - 2 - (1 if search_bar is not None else 0))
    parts: list[RenderableType] = [head, Text(""), render_rows(state, visible_rows)]
    if search_bar is not None:
        parts.append(search_bar)
    return Group(*parts)


def refresh_list(state: TuiState, service: NotificationService, store: Store) -> None:
    try:
        with store.session() as db:
            state.notifications = service.get_notifications(db, state.search_query)
    except SQLAlchemyError:
        logger.exception("cannot read notifications")
        state.headline_kind, state.headline = "error", "cannot read notifications"
    state.selected_index = clamp_selection(state.selected_index, state.notifications)


def run(
    service: NotificationService,
    store: Store,
    console: Console,
    refresh_delay_seconds: int,
    redraw_delay_seconds: int,
    channel_capacity: int,
) -> int:
    state = TuiState()
    channel: queue.Queue[Message] = queue.Queue(maxsize=channel_capacity)
    stop_event = threading.Event()
    ctx = ActionContext(service=service, store=store, channel=channel, stop_event=stop_event)
    refresh_list(state, service, store)

    workers = [
        threading.Thread(
            target=input_worker,
            args=(channel, stop_event),
            daemon=True,
        ),
        threading.Thread(
            target=auto_sync_worker,
            args=(service, store, channel, stop_event, refresh_delay_seconds),
            daemon=True,
        ),
        threading.Thread(
            target=auto_redraw_worker,
            args=(channel, stop_event, redraw_delay_seconds),
            daemon=True,
        ),
    ]
    for worker in workers:
        worker.start()

    with Live(
        render_screen(state, console.size.width, console.size.height),
        console=console,
        auto_refresh=False,
        screen=True,
        vertical_overflow="crop",
    ) as live:
        try:
            while True:
                message = resolve_key(state, channel.get())
                outcome = process_message(state, message)
                if outcome is Outcome.QUIT:
                    logger.info("quit requested")
                    break
                if outcome is Outcome.DISPATCH:
                    dispatch_action(ctx, state, message)
                elif outcome is Outcome.REDRAW:
                    refresh_list(state, service, store)
                    live.update(
                        render_screen(state, console.size.width, console.size.height),
                        refresh=True,
                    )
        finally:
            stop_event.set()
            for worker in workers:
                worker.join(timeout=2)
    return 0
