from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import filters, store
from .config import Settings
from .github import Details, GitHubClient, Issue, PullRequest, Release, RemoteNotification, UpdateStatus
from .models import Notification, NotificationKind, NotificationState
from .scorer import Rule, Scorer

logger = logging.getLogger(__name__)


class SyncError(Exception):
    pass


class MissingDetailError(SyncError):
    def __init__(self, notification: RemoteNotification) -> None:
        super().__init__(
            f"no {notification.kind.value} found for notification {notification.id} ({notification.subject_url})"
        )
        self.notification = notification


def pull_request_state(pr: PullRequest) -> NotificationState:
    if pr.state == "closed":
        return NotificationState.RESOLVED if pr.merged else NotificationState.CANCELED
    if pr.draft:
        return NotificationState.DRAFT
    return NotificationState.OPEN


def issue_state(issue: Issue) -> NotificationState:
    return NotificationState.OPEN if issue.state == "open" else NotificationState.RESOLVED


def release_state(_release: Release) -> NotificationState:
    return NotificationState.OPEN


def derive_state(kind: NotificationKind, detail: PullRequest | Issue | Release | None) -> NotificationState:
    if kind == NotificationKind.PULL_REQUEST and isinstance(detail, PullRequest):
        return pull_request_state(detail)
    if kind == NotificationKind.ISSUE and isinstance(detail, Issue):
        return issue_state(detail)
    if kind == NotificationKind.RELEASE and isinstance(detail, Release):
        return release_state(detail)
    return NotificationState.CANCELED


def find_detail(
    notification: RemoteNotification,
    details: Details,
) -> PullRequest | Issue | Release | None:
    lookup: dict[NotificationKind, dict[str, Any]] = {
        NotificationKind.PULL_REQUEST: details.pulls,
        NotificationKind.ISSUE: details.issues,
        NotificationKind.RELEASE: details.releases,
    }
    if notification.kind not in lookup or not notification.subject_url:
        return None
    detail = lookup[notification.kind].get(notification.subject_url)
    if detail is None:
        raise MissingDetailError(notification)
    return detail


def build_record(
    notification: RemoteNotification,
    detail: PullRequest | Issue | Release | None,
) -> dict[str, Any]:
    if detail is None:
        url = ""
        author = ""
    else:
        url = detail.html_url
        author = detail.author
    return {
        "id": notification.id,
        "title": notification.title,
        "repo": notification.repo,
        "url": url,
        "reason": notification.reason,
        "kind": notification.kind,
        "state": derive_state(notification.kind, detail),
        "author": author,
        "unread": notification.unread,
        "updated_at": notification.updated_at,
        "score": 0,
    }


class NotificationService:
    def __init__(
        self,
        settings: Settings,
        client_factory: Callable[[Settings], GitHubClient] = GitHubClient,
    ) -> None:
        self.settings = settings
        self.client_factory = client_factory

    def client(self) -> GitHubClient:
        return self.client_factory(self.settings)

    def load_scorer(self) -> Scorer:
        return Scorer.load(self.settings.rules_path)

    def check_update_and_limit(self, db: Session) -> UpdateStatus:
        return self.client().check_update_and_limit(store.latest_update(db))

    def sync(self, db: Session) -> int:
        client = self.client()
        last_update = store.latest_update(db)
        logger.info("recent update %s", last_update)

        remote_notifications = client.fetch_notifications(last_update)
        details = client.fetch_details(remote_notifications)
        records = [
            build_record(notification, find_detail(notification, details))
            for notification in remote_notifications
        ]
        scorer = self.load_scorer()

        logger.info("inserting %s notifications", len(records))
        written = 0
        for record in records:
            record["score"] = scorer.score(Notification(**record))
            logger.debug("score %s for %s %s", record["score"], record["title"], record["url"])
            try:
                store.upsert_notification(db, record)
                written += 1
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("insert err %s %r", exc, record)
        return written

    def get_notifications(self, db: Session, query: str = "") -> list[Notification]:
        return store.query_notifications(db, filters.parse(query))

    def update_score(self, db: Session, notification: Notification, delta: int) -> None:
        store.add_boost(db, notification.id, delta)

    def mark_done(self, db: Session, notification: Notification) -> None:
        self.client().mark_as_done(notification.id)
        store.set_done(db, [notification.id])

    def mark_done_bulk(self, db: Session, notifications: Sequence[Notification]) -> None:
        ids = [notification.id for notification in notifications]
        self.client().mark_as_done_many(ids)
        store.set_done(db, ids)

    def mark_read(self, db: Session, notification: Notification) -> None:
        self.client().mark_as_read(notification.id)
        store.set_read(db, notification.id)

    def explain(self, notification: Notification) -> list[Rule]:
        return self.load_scorer().explain(notification)
