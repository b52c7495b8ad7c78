from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

GITHUB_BASE_URL = "https://api.github.com"
APP_NAME = "ghtriage"

MAX_IN_FLIGHT = 30
REFRESH_DELAY_SECONDS = 300
REDRAW_DELAY_SECONDS = 60
CHANNEL_CAPACITY = 32


def data_dir() -> Path:
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


def config_dir() -> Path:
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


@dataclass(frozen=True)
class Settings:
    github_base_url: str
    github_token: str | None
    db_path: str
    rules_path: Path
    log_path: Path
    log_level: str
    request_timeout: float
    max_in_flight: int = MAX_IN_FLIGHT
    refresh_delay_seconds: int = REFRESH_DELAY_SECONDS
    redraw_delay_seconds: int = REDRAW_DELAY_SECONDS
    channel_capacity: int = CHANNEL_CAPACITY

    def rewrite_url(self, url: str) -> str:
        if url.startswith(GITHUB_BASE_URL):
            return url.replace(GITHUB_BASE_URL, self.github_base_url.rstrip("/"), 1)
        return url

    def with_overrides(self, **changes: object) -> Settings:
        return replace(self, **changes)


def default_settings() -> Settings:
    return Settings(
        github_base_url=os.getenv("GITHUB_BASE_URL", GITHUB_BASE_URL),
        github_token=os.getenv("GH_TOKEN") or None,
        db_path=os.getenv("GHTRIAGE_DB", str(data_dir() / f"{APP_NAME}.db")),
        rules_path=Path(os.getenv("GHTRIAGE_RULES", str(config_dir() / "rules.toml"))),
        log_path=Path(os.getenv("GHTRIAGE_LOG", str(data_dir() / f"{APP_NAME}.log"))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        request_timeout=float(os.getenv("GHTRIAGE_TIMEOUT", "30")),
    )


def ensure_directories(settings: Settings) -> None:
    for directory in (Path(settings.db_path).parent, settings.rules_path.parent, settings.log_path.parent):
        directory.mkdir(parents=True, exist_ok=True)
