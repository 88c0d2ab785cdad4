"""Configuration management for the OfficeHub service and client core."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .policy import DEFAULT_END, DEFAULT_GRACE_MINUTES, DEFAULT_START, WorkdayPolicy, parse_clock

DEFAULT_TIMEZONE = "Asia/Seoul"
DEFAULT_API_URL = "http://127.0.0.1:8000"


def _section(data: Mapping[str, object], key: str) -> Dict[str, object]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Configuration section '{key}' must be a mapping")
    return dict(value)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class WorkdayConfig:
    """Working hours used by the backing store to classify attendance."""

    start: str = DEFAULT_START.strftime("%H:%M")
    end: str = DEFAULT_END.strftime("%H:%M")
    grace_minutes: int = DEFAULT_GRACE_MINUTES
    target_hours: float = 8.0

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "WorkdayConfig":
        config = WorkdayConfig(
            start=str(data.get("start", DEFAULT_START.strftime("%H:%M"))),
            end=str(data.get("end", DEFAULT_END.strftime("%H:%M"))),
            grace_minutes=int(data.get("grace_minutes", DEFAULT_GRACE_MINUTES)),  # type: ignore[arg-type]
            target_hours=float(data.get("target_hours", 8.0)),  # type: ignore[arg-type]
        )
        if config.target_hours <= 0:
            raise ValueError("workday.target_hours must be positive")
        config.policy()
        return config

    def policy(self) -> WorkdayPolicy:
        return WorkdayPolicy(
            start=parse_clock(self.start),
            end=parse_clock(self.end),
            grace_minutes=self.grace_minutes,
        )

    @property
    def target(self) -> timedelta:
        return timedelta(hours=self.target_hours)


@dataclass(frozen=True)
class ClientConfig:
    """Timings used by the client core."""

    notes_debounce_seconds: float = 1.0
    tick_seconds: float = 1.0
    timeout: float = 10.0

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "ClientConfig":
        return ClientConfig(
            notes_debounce_seconds=float(data.get("notes_debounce_seconds", 1.0)),  # type: ignore[arg-type]
            tick_seconds=float(data.get("tick_seconds", 1.0)),  # type: ignore[arg-type]
            timeout=float(data.get("timeout", 10.0)),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class Settings:
    """Top-level settings shared by the CLI, the HTTP service and clients."""

    database_path: Path
    api_base_url: str = DEFAULT_API_URL
    timezone: str = DEFAULT_TIMEZONE
    token_ttl_hours: float = 8.0
    auto_confirm_email: bool = False
    workday: WorkdayConfig = field(default_factory=WorkdayConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        settings = Settings(
            database_path=database_path,
            api_base_url=str(data.get("api_base_url", DEFAULT_API_URL)).rstrip("/"),
            timezone=str(data.get("timezone", DEFAULT_TIMEZONE)),
            token_ttl_hours=float(data.get("token_ttl_hours", 8.0)),  # type: ignore[arg-type]
            auto_confirm_email=bool(data.get("auto_confirm_email", False)),
            workday=WorkdayConfig.from_dict(_section(data, "workday")),
            client=ClientConfig.from_dict(_section(data, "client")),
        )
        settings.zone()
        return settings

    def zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{self.timezone}'") from exc

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(hours=self.token_ttl_hours)

    def with_env_overrides(self, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        updated = self
        if env.get("OFFICEHUB_DB_PATH"):
            updated = replace(updated, database_path=resolve_database_path(env["OFFICEHUB_DB_PATH"]))
        if env.get("OFFICEHUB_API_URL"):
            updated = replace(updated, api_base_url=env["OFFICEHUB_API_URL"].strip().rstrip("/"))
        if env.get("OFFICEHUB_TIMEZONE"):
            updated = replace(updated, timezone=env["OFFICEHUB_TIMEZONE"].strip())
            updated.zone()
        if "OFFICEHUB_AUTO_CONFIRM_EMAIL" in env:
            updated = replace(
                updated,
                auto_confirm_email=_env_flag(env.get("OFFICEHUB_AUTO_CONFIRM_EMAIL"), updated.auto_confirm_email),
            )
        return updated


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "officehub.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "officehub.yaml").resolve(strict=False)


def load_settings(config_path: Optional[Path] = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Load settings from YAML (when present) and apply environment overrides."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("OFFICEHUB_CONFIG"))
    raw: Dict[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, Mapping):
            raise ValueError("Configuration file must contain a mapping at the top level")
        raw = dict(loaded)
    return Settings.from_dict(raw, base_path=path.parent).with_env_overrides(env)


__all__ = [
    "ClientConfig",
    "Settings",
    "WorkdayConfig",
    "load_settings",
    "resolve_config_path",
    "resolve_database_path",
]
