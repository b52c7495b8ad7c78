"""
Notification row and the kind/state enums shared by the sync engine,
the scorer and the terminal UI.
"""

from __future__ import annotations

import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class NotificationKind(str, enum.Enum):
    PULL_REQUEST = "PullRequest"
    ISSUE = "Issue"
    RELEASE = "Release"
    UNKNOWN = "Unknown"

    @classmethod
    def from_subject_type(cls, raw: str | None) -> NotificationKind:
        for kind in (cls.PULL_REQUEST, cls.ISSUE, cls.RELEASE):
            if raw == kind.value:
                return kind
        return cls.UNKNOWN


class NotificationState(str, enum.Enum):
    OPEN = "Open"
    DRAFT = "Draft"
    RESOLVED = "Resolved"
    CANCELED = "Canceled"


class Notification(Base):
    """
    One GitHub notification thread.

    `score` is recomputed on every sync; `score_boost` is only ever changed
    by the user and survives re-syncs.
    """
    __tablename__ = "notifications"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False, default="")
    repo = Column(String, nullable=False, default="", index=True)
    url = Column(String, nullable=False, default="")
    reason = Column(String, nullable=False, default="")
    kind = Column(Enum(NotificationKind, native_enum=False), nullable=False)
    state = Column(Enum(NotificationState, native_enum=False), nullable=False)
    author = Column(String, nullable=False, default="")
    unread = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, nullable=False, index=True)
    done = Column(Boolean, nullable=False, default=False, index=True)
    score = Column(Integer, nullable=False, default=0)
    score_boost = Column(Integer, nullable=False, default=0)

    @property
    def rank(self) -> int:
        return (self.score or 0) + (self.score_boost or 0)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, repo={self.repo}, title={self.title[:30] if self.title else ''})>"
