"""
SQLite persistence for notifications.

Sessions are checked out of a pooled engine for a single logical operation;
every thread that touches the store opens its own.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import create_engine, event, func, or_
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .filters import SearchFilter
from .models import Base, Notification

logger = logging.getLogger(__name__)


class Store:
    def __init__(self, settings: Settings) -> None:
        self.url = f"sqlite:///{settings.db_path}"
        self.engine = create_engine(self.url, echo=False, pool_pre_ping=True)
        event.listen(self.engine, "connect", _enable_wal)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_wal(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def upsert_notification(db: Session, record: dict[str, Any]) -> None:
    """
    Insert or overwrite a notification by id.

    On conflict every column is replaced except `score_boost`, which keeps
    the stored value, and `done`, which is reset to False.
    """
    values = dict(record)
    values["done"] = False
    values.setdefault("score_boost", 0)
    statement = insert(Notification).values(**values)
    updates = {
        name: statement.excluded[name]
        for name in values
        if name not in {"id", "score_boost", "done"}
    }
    updates["done"] = False
    db.execute(statement.on_conflict_do_update(index_elements=[Notification.id], set_=updates))
    db.commit()


def latest_update(db: Session) -> datetime | None:
    return db.query(func.max(Notification.updated_at)).scalar()


def contains_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _contains(column: Any, text: str) -> Any:
    return column.ilike(contains_pattern(text), escape="\\")


def query_notifications(db: Session, search: SearchFilter | None = None) -> list[Notification]:
    query = db.query(Notification).filter(Notification.done.is_(False))
    if search is not None and not search.is_empty:
        for word in search.words:
            query = query.filter(
                or_(
                    _contains(Notification.title, word),
                    _contains(Notification.author, word),
                    _contains(Notification.repo, word),
                )
            )
        if search.title:
            query = query.filter(_contains(Notification.title, search.title))
        if search.author:
            query = query.filter(_contains(Notification.author, search.author))
        if search.repo:
            query = query.filter(_contains(Notification.repo, search.repo))
        if search.state is not None:
            query = query.filter(Notification.state == search.state)
    return query.order_by(
        (Notification.score + Notification.score_boost).desc(),
        Notification.updated_at.desc(),
    ).all()


def count_notifications(db: Session) -> int:
    return db.query(func.count(Notification.id)).scalar() or 0


def set_done(db: Session, ids: Sequence[str]) -> int:
    if not ids:
        return 0
    changed = (
        db.query(Notification)
        .filter(Notification.id.in_(list(ids)))
        .update({Notification.done: True}, synchronize_session=False)
    )
    db.commit()
    return changed


def set_read(db: Session, notification_id: str) -> None:
    db.query(Notification).filter(Notification.id == notification_id).update(
        {Notification.unread: False}, synchronize_session=False
    )
    db.commit()


def add_boost(db: Session, notification_id: str, delta: int) -> None:
    db.query(Notification).filter(Notification.id == notification_id).update(
        {Notification.score_boost: Notification.score_boost + delta},
        synchronize_session=False,
    )
    db.commit()


def get_notification(db: Session, notification_id: str) -> Notification | None:
    return db.get(Notification, notification_id)
