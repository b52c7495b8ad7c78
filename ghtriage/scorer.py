from __future__ import annotations

import enum
import logging
import tomllib
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ScorerError(Exception):
    pass


class InvalidRuleFileError(ScorerError):
    pass


class UnknownRuleError(ScorerError):
    def __init__(self, rule_name: str) -> None:
        super().__init__(f"Unknown rule name: {rule_name}")
        self.rule_name = rule_name


class Scorable(Protocol):
    title: str
    repo: str
    author: str
    reason: str


class RuleKind(str, enum.Enum):
    AUTHOR = "author"
    REPO = "repo"
    TITLE = "title"
    ORG = "org"
    REASON = "reason"

    @classmethod
    def parse(cls, raw: str) -> RuleKind:
        try:
            return cls(raw)
        except ValueError:
            raise UnknownRuleError(raw) from None


def rule_author(notification: Scorable, params: tuple[str, ...]) -> bool:
    return notification.author in params


def rule_repo(notification: Scorable, params: tuple[str, ...]) -> bool:
    return notification.repo in params


def rule_title(notification: Scorable, params: tuple[str, ...]) -> bool:
    return any(param in notification.title for param in params)


def rule_org(notification: Scorable, params: tuple[str, ...]) -> bool:
    org = notification.repo.split("/", 1)[0]
    for param in params:
        negated = param.startswith("!")
        name = param[1:] if negated else param
        if (org == name) != negated:
            return True
    return False


def rule_reason(notification: Scorable, params: tuple[str, ...]) -> bool:
    return any(param in notification.reason for param in params)


MATCHERS: dict[RuleKind, Callable[[Scorable, tuple[str, ...]], bool]] = {
    RuleKind.AUTHOR: rule_author,
    RuleKind.REPO: rule_repo,
    RuleKind.TITLE: rule_title,
    RuleKind.ORG: rule_org,
    RuleKind.REASON: rule_reason,
}


@dataclass(frozen=True)
class Rule:
    name: str
    kind: RuleKind
    params: tuple[str, ...]
    score: int

    def matcher(self, notification: Scorable) -> int:
        if MATCHERS[self.kind](notification, self.params):
            logger.debug("%s match %s", notification.title, self.name)
            return self.score
        return 0


def parse_params(raw: str) -> tuple[str, ...]:
    return tuple(piece.strip() for piece in raw.split(","))


def rule_from_entry(name: str, entry: Any) -> Rule:
    if not isinstance(entry, dict):
        raise InvalidRuleFileError(f"rule {name!r} is not a table")
    try:
        kind_raw = entry["rule"]
        params_raw = entry["param"]
        score = entry["score"]
    except KeyError as exc:
        raise InvalidRuleFileError(f"rule {name!r} is missing {exc.args[0]!r}") from exc
    if not isinstance(kind_raw, str) or not isinstance(params_raw, str):
        raise InvalidRuleFileError(f"rule {name!r}: 'rule' and 'param' must be strings")
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidRuleFileError(f"rule {name!r}: 'score' must be an integer")
    return Rule(name=name, kind=RuleKind.parse(kind_raw), params=parse_params(params_raw), score=score)


class Scorer:
    def __init__(self, rules: list[Rule] | None = None) -> None:
        self.rules: list[Rule] = list(rules or [])

    @classmethod
    def load(cls, path: str | Path) -> Scorer:
        rule_path = Path(path)
        try:
            content = rule_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("rule file %s not found, every notification scores 0", rule_path)
            return cls()
        except UnicodeDecodeError as exc:
            raise InvalidRuleFileError(f"{rule_path}: not UTF-8 ({exc})") from exc
        except OSError as exc:
            logger.warning("cannot read rule file %s (%s), every notification scores 0", rule_path, exc)
            return cls()
        try:
            table = tomllib.loads(content)
        except tomllib.TOMLDecodeError as exc:
            raise InvalidRuleFileError(f"{rule_path}: {exc}") from exc
        rules = [rule_from_entry(name, entry) for name, entry in table.items()]
        logger.debug("rules: %s", rules)
        return cls(rules)

    def score(self, notification: Scorable) -> int:
        return sum(rule.matcher(notification) for rule in self.rules)

    def explain(self, notification: Scorable) -> list[Rule]:
        return [rule for rule in self.rules if rule.matcher(notification) != 0]
