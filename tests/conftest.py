"""Shared fixtures: a fake GitHub API served from a thread, settings and a store."""
from __future__ import annotations

import json
import re
import threading
from datetime import datetime, timedelta
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest

from ghtriage.config import Settings
from ghtriage.store import Store

API_ROOT = "https://api.github.com"
NOTIFICATION_COUNT = 50
PAGE_SIZE = 25
AUTHORS = ["JohnDoe", "alice", "bob", "carol", "dave"]
REPOS = ["torvalds/linux", "emacs-mirror/emacs", "rms/gnu", "octo/widgets"]
SUBJECTS = [("PullRequest", "pulls"), ("Issue", "issues"), ("Release", "releases")]
DETAIL_RE = re.compile(r"^/repos/([^/]+)/([^/]+)/(pulls|issues|releases)/(\d+)$")
THREAD_RE = re.compile(r"^/notifications/threads/([^/]+)$")

RULES_TOML = """
[me]
rule = "author"
param = "JohnDoe"
score = 50

[participating]
rule = "reason"
param = "participating"
score = 30

[friends]
rule = "author"
param = "alice,bob"
score = 20

[my_fav_repos]
rule = "repo"
param = "torvalds/linux,emacs-mirror/emacs"
score = 5

[kernel]
rule = "org"
param = "torvalds"
score = 10

[no_rms]
rule = "org"
param = "!rms"
score = 10

[wip]
rule = "title"
param = "WIP"
score = -50
"""


def build_notifications() -> list[dict]:
    start = datetime(2024, 5, 1, 12, 0, 0)
    notifications = []
    for index in range(NOTIFICATION_COUNT):
        subject_type, segment = SUBJECTS[index % len(SUBJECTS)]
        repo = REPOS[index % len(REPOS)]
        notifications.append(
            {
                "id": str(1000 + index),
                "unread": index % 2 == 0,
                "reason": "participating" if index % 4 == 0 else "subscribed",
                "updated_at": (start + timedelta(minutes=index)).strftime("%Y-%m-%dT%H:%M:%SZ"),
                "subject": {
                    "title": f"{'WIP ' if index % 10 == 9 else ''}Change number {index}",
                    "url": f"{API_ROOT}/repos/{repo}/{segment}/{index}",
                    "type": subject_type,
                },
                "repository": {"full_name": repo},
            }
        )
    return notifications


def build_detail(base_url: str, owner: str, repo: str, segment: str, number: int) -> dict:
    author = {"login": AUTHORS[number % len(AUTHORS)]}
    payload = {
        "url": f"{base_url}/repos/{owner}/{repo}/{segment}/{number}",
        "html_url": f"https://github.com/{owner}/{repo}/{segment}/{number}",
    }
    if segment == "pulls":
        payload.update(
            {
                "state": "closed" if number % 6 == 3 else "open",
                "draft": number % 6 == 0,
                "merged": number % 12 == 3,
                "user": author,
            }
        )
    elif segment == "issues":
        payload.update({"state": "closed" if number % 2 else "open", "user": author})
    else:
        payload.update({"author": author})
    return payload


class FakeGitHub:
    def __init__(self) -> None:
        self.notifications = build_notifications()
        self.calls: list[tuple[str, str]] = []
        self.headers: list[dict[str, str]] = []
        self.poll_interval = 60
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), self._handler())
        host, port = self.server.server_address[:2]
        self.base_url = f"http://{host}:{port}"
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self) -> None:
        self.thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        self.server.server_close()

    def calls_for(self, method: str) -> list[str]:
        return [path for verb, path in self.calls if verb == method]

    def _handler(self) -> type[BaseHTTPRequestHandler]:
        fake = self

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, *args) -> None:
                pass

            def _record(self) -> None:
                fake.calls.append((self.command, self.path))
                fake.headers.append(dict(self.headers))

            def _send_json(self, payload, headers: dict[str, str] | None = None) -> None:
                body = json.dumps(payload).replace(API_ROOT, fake.base_url).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                for name, value in (headers or {}).items():
                    self.send_header(name, value)
                self.end_headers()
                self.wfile.write(body)

            def _send_empty(self, status: int) -> None:
                self.send_response(status)
                self.send_header("Content-Length", "0")
                self.end_headers()

            def do_GET(self) -> None:
                self._record()
                parts = urlsplit(self.path)
                if parts.path == "/notifications":
                    page = int(parse_qs(parts.query).get("page", ["1"])[0])
                    last_page = (len(fake.notifications) + PAGE_SIZE - 1) // PAGE_SIZE
                    chunk = fake.notifications[(page - 1) * PAGE_SIZE : page * PAGE_SIZE]
                    headers = {}
                    if page == 1 and last_page > 1:
                        link = f"{fake.base_url}/notifications?page="
                        headers["Link"] = f'<{link}2>; rel="next", <{link}{last_page}>; rel="last"'
                    self._send_json(chunk, headers)
                    return
                match = DETAIL_RE.match(parts.path)
                if match:
                    owner, repo, segment, number = match.groups()
                    self._send_json(build_detail(fake.base_url, owner, repo, segment, int(number)))
                    return
                self._send_empty(404)

            def do_HEAD(self) -> None:
                self._record()
                status = 304 if self.headers.get("If-Modified-Since") else 200
                self.send_response(status)
                self.send_header("X-Poll-Interval", str(fake.poll_interval))
                self.send_header("X-RateLimit-Remaining", "4999")
                self.send_header("X-RateLimit-Used", "1")
                self.end_headers()

            def do_DELETE(self) -> None:
                self._record()
                self._send_empty(204 if THREAD_RE.match(self.path) else 404)

            def do_PATCH(self) -> None:
                self._record()
                self._send_empty(205 if THREAD_RE.match(self.path) else 404)

        return Handler


@pytest.fixture
def fake_github():
    fake = FakeGitHub()
    fake.start()
    yield fake
    fake.stop()


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    path = tmp_path / "rules.toml"
    path.write_text(RULES_TOML, encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path: Path, fake_github: FakeGitHub, rules_file: Path) -> Settings:
    return Settings(
        github_base_url=fake_github.base_url,
        github_token="faketoken",
        db_path=str(tmp_path / "ghtriage.db"),
        rules_path=rules_file,
        log_path=tmp_path / "ghtriage.log",
        log_level="DEBUG",
        request_timeout=5,
    )


@pytest.fixture
def offline_settings(tmp_path: Path, rules_file: Path) -> Settings:
    return Settings(
        github_base_url="http://127.0.0.1:9",
        github_token="faketoken",
        db_path=str(tmp_path / "offline.db"),
        rules_path=rules_file,
        log_path=tmp_path / "ghtriage.log",
        log_level="DEBUG",
        request_timeout=1,
    )


@pytest.fixture
def store(offline_settings: Settings):
    db_store = Store(offline_settings)
    db_store.create_all()
    yield db_store
    db_store.dispose()
