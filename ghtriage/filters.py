from __future__ import annotations

from dataclasses import dataclass, field

from .models import NotificationState

STATE_ALIASES = {
    "open": NotificationState.OPEN,
    "draft": NotificationState.DRAFT,
    "resolved": NotificationState.RESOLVED,
    "closed": NotificationState.RESOLVED,
    "merged": NotificationState.RESOLVED,
    "canceled": NotificationState.CANCELED,
    "cancelled": NotificationState.CANCELED,
}


@dataclass(frozen=True)
class SearchFilter:
    words: tuple[str, ...] = field(default_factory=tuple)
    title: str = ""
    author: str = ""
    repo: str = ""
    state: NotificationState | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.words or self.title or self.author or self.repo or self.state)


def parse(raw_query: str) -> SearchFilter:
    """
    Parse the search bar text.

    Bare words must each appear in the title, author or repo. `title:`,
    `author:` and `repo:` narrow to one field, `state:` selects a state
    (an unknown value clears it). Matching is case-insensitive.
    """
    words: list[str] = []
    title_parts: list[str] = []
    author = ""
    repo = ""
    state: NotificationState | None = None
    for word in raw_query.split():
        if word.startswith("author:"):
            author = word[len("author:"):]
        elif word.startswith("repo:"):
            repo = word[len("repo:"):]
        elif word.startswith("state:"):
            state = STATE_ALIASES.get(word[len("state:"):].lower())
        elif word.startswith("title:"):
            value = word[len("title:"):]
            if value:
                title_parts.append(value)
        else:
            words.append(word)
    return SearchFilter(
        words=tuple(words),
        title=" ".join(title_parts),
        author=author,
        repo=repo,
        state=state,
    )
