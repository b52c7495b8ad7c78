from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from dateutil import parser as date_parser

from .config import Settings
from .models import NotificationKind

logger = logging.getLogger(__name__)

LINK_RE = re.compile(r'<([^>]*)>; rel="next", <([^>]*)>; rel="last"')
DEFAULT_POLL_INTERVAL = 60

T = TypeVar("T")
R = TypeVar("R")


class GitHubError(Exception):
    pass


class MissingTokenError(GitHubError):
    def __init__(self) -> None:
        super().__init__("GH_TOKEN env variable is missing")


class LinkHeaderError(GitHubError):
    pass


@dataclass
class RemoteNotification:
    id: str
    title: str
    kind: NotificationKind
    subject_url: str | None
    repo: str
    reason: str
    unread: bool
    updated_at: datetime


@dataclass
class PullRequest:
    url: str
    html_url: str
    state: str
    draft: bool
    merged: bool
    author: str


@dataclass
class Issue:
    url: str
    html_url: str
    state: str
    author: str


@dataclass
class Release:
    url: str
    html_url: str
    author: str


@dataclass
class Details:
    pulls: dict[str, PullRequest] = field(default_factory=dict)
    issues: dict[str, Issue] = field(default_factory=dict)
    releases: dict[str, Release] = field(default_factory=dict)


@dataclass
class UpdateStatus:
    need_update: bool
    poll_interval: int
    ratelimit_remaining: int
    ratelimit_used: int


def parse_timestamp(raw: Any) -> datetime:
    parsed = date_parser.parse(str(raw))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_since(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_http_date(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def url_to_page(url: str) -> int:
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == "page":
            try:
                return int(value)
            except ValueError as exc:
                raise LinkHeaderError(f"invalid page number in {url}") from exc
    raise LinkHeaderError(f"no page in {url}")


def pages_from_link(link: str) -> list[str]:
    match = LINK_RE.search(link)
    if not match:
        raise LinkHeaderError(f"invalid link format: {link}")
    next_url, last_url = match.group(1), match.group(2)
    first_page = url_to_page(next_url)
    last_page = url_to_page(last_url)
    logger.debug("last page %s", last_page)

    parts = urlsplit(next_url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != "page"]
    urls: list[str] = []
    for page in range(first_page, last_page + 1):
        new_query = urlencode(query + [("page", str(page))])
        urls.append(urlunsplit(parts._replace(query=new_query)))
    return urls


def parse_notification(payload: dict[str, Any]) -> RemoteNotification:
    subject = payload.get("subject") or {}
    repository = payload.get("repository") or {}
    return RemoteNotification(
        id=str(payload["id"]),
        title=subject.get("title", ""),
        kind=NotificationKind.from_subject_type(subject.get("type")),
        subject_url=subject.get("url"),
        repo=repository.get("full_name", ""),
        reason=payload.get("reason", ""),
        unread=bool(payload.get("unread", False)),
        updated_at=parse_timestamp(payload["updated_at"]),
    )


def _login(payload: dict[str, Any], key: str) -> str:
    return (payload.get(key) or {}).get("login", "")


def _header_int(headers: Any, name: str, default: int) -> int:
    try:
        return int(headers.get(name, default))
    except (TypeError, ValueError):
        return default


class GitHubClient:
    def __init__(self, settings: Settings) -> None:
        if not settings.github_token:
            raise MissingTokenError()
        self.settings = settings
        self.base_url = settings.github_base_url.rstrip("/")
        self.timeout = settings.request_timeout
        self.max_in_flight = settings.max_in_flight
        self.headers = {
            "User-Agent": "ghtriage",
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {settings.github_token}",
        }

    def request(
        self,
        method: str,
        url: str,
        extra_headers: dict[str, str] | None = None,
        allow_statuses: Iterable[int] = (),
    ) -> requests.Response:
        headers = dict(self.headers)
        if extra_headers:
            headers.update(extra_headers)
        logger.debug("%s %s", method, url)
        response = requests.request(method, url, headers=headers, timeout=self.timeout)
        logger.debug("status %s", response.status_code)
        if response.status_code in set(allow_statuses):
            return response
        response.raise_for_status()
        if not 200 <= response.status_code < 300:
            raise requests.HTTPError(
                f"unexpected status {response.status_code} for {url}",
                response=response,
            )
        return response

    def bounded_map(self, func: Callable[[T], R], values: Sequence[T]) -> list[R]:
        if not values:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_in_flight, len(values))) as executor:
            return list(executor.map(func, values))

    def list_notifications(self, since: datetime | None = None) -> requests.Response:
        if since is None:
            url = f"{self.base_url}/notifications"
        else:
            url = f"{self.base_url}/notifications?{urlencode({'all': 'true', 'since': format_since(since)})}"
        return self.request("GET", url)

    def get_notification_page(self, url: str) -> list[RemoteNotification]:
        response = self.request("GET", self.settings.rewrite_url(url))
        return [parse_notification(entry) for entry in response.json()]

    def fetch_notifications(self, since: datetime | None = None) -> list[RemoteNotification]:
        response = self.list_notifications(since)
        notifications: list[RemoteNotification] = []
        link = response.headers.get("link")
        if link:
            urls = pages_from_link(link)
            for page in self.bounded_map(self.get_notification_page, urls):
                notifications.extend(page)
        notifications.extend(parse_notification(entry) for entry in response.json())
        logger.info("fetched %s notifications", len(notifications))
        return notifications

    def check_update_and_limit(self, last_update: datetime | None) -> UpdateStatus:
        if last_update is None:
            return UpdateStatus(
                need_update=True,
                poll_interval=DEFAULT_POLL_INTERVAL,
                ratelimit_remaining=0,
                ratelimit_used=0,
            )
        response = self.request(
            "HEAD",
            f"{self.base_url}/notifications",
            extra_headers={"If-Modified-Since": format_http_date(last_update)},
            allow_statuses=(304,),
        )
        return UpdateStatus(
            need_update=response.status_code != 304,
            poll_interval=_header_int(response.headers, "X-Poll-Interval", DEFAULT_POLL_INTERVAL),
            ratelimit_remaining=_header_int(response.headers, "X-RateLimit-Remaining", 0),
            ratelimit_used=_header_int(response.headers, "X-RateLimit-Used", 0),
        )

    def _get_json(self, url: str) -> dict[str, Any]:
        return self.request("GET", self.settings.rewrite_url(url)).json()

    def _subject_urls(self, notifications: Iterable[RemoteNotification], kind: NotificationKind) -> list[str]:
        urls: list[str] = []
        for notification in notifications:
            if notification.kind == kind and notification.subject_url:
                urls.append(notification.subject_url)
        return list(dict.fromkeys(urls))

    def _fetch_subjects(
        self,
        notifications: Sequence[RemoteNotification],
        kind: NotificationKind,
    ) -> list[tuple[str, dict[str, Any]]]:
        urls = self._subject_urls(notifications, kind)
        return list(zip(urls, self.bounded_map(self._get_json, urls)))

    def fetch_pull_requests(self, notifications: Sequence[RemoteNotification]) -> list[PullRequest]:
        return [
            PullRequest(
                url=subject_url,
                html_url=payload.get("html_url", ""),
                state=payload.get("state", ""),
                draft=bool(payload.get("draft", False)),
                merged=bool(payload.get("merged", False)),
                author=_login(payload, "user"),
            )
            for subject_url, payload in self._fetch_subjects(notifications, NotificationKind.PULL_REQUEST)
        ]

    def fetch_issues(self, notifications: Sequence[RemoteNotification]) -> list[Issue]:
        return [
            Issue(
                url=subject_url,
                html_url=payload.get("html_url", ""),
                state=payload.get("state", ""),
                author=_login(payload, "user"),
            )
            for subject_url, payload in self._fetch_subjects(notifications, NotificationKind.ISSUE)
        ]

    def fetch_releases(self, notifications: Sequence[RemoteNotification]) -> list[Release]:
        return [
            Release(
                url=subject_url,
                html_url=payload.get("html_url", ""),
                author=_login(payload, "author"),
            )
            for subject_url, payload in self._fetch_subjects(notifications, NotificationKind.RELEASE)
        ]

    def fetch_details(self, notifications: Sequence[RemoteNotification]) -> Details:
        # Keyed by the subject URL exactly as the notification carries it.
        return Details(
            pulls={pr.url: pr for pr in self.fetch_pull_requests(notifications)},
            issues={issue.url: issue for issue in self.fetch_issues(notifications)},
            releases={release.url: release for release in self.fetch_releases(notifications)},
        )

    def thread_url(self, notification_id: str) -> str:
        return f"{self.base_url}/notifications/threads/{notification_id}"

    def mark_as_done(self, notification_id: str) -> None:
        self.request("DELETE", self.thread_url(notification_id))

    def mark_as_done_many(self, notification_ids: Sequence[str]) -> None:
        self.bounded_map(self.mark_as_done, list(notification_ids))

    def mark_as_read(self, notification_id: str) -> None:
        self.request("PATCH", self.thread_url(notification_id))
