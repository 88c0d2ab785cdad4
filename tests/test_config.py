from __future__ import annotations

from datetime import time, timedelta
from pathlib import Path

import pytest

from officehub.config import Settings, load_settings, resolve_config_path


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.yaml", environ={})

    assert settings.timezone == "Asia/Seoul"
    assert settings.token_ttl == timedelta(hours=8)
    assert settings.auto_confirm_email is False
    assert settings.workday.policy().start == time(9, 0)
    assert settings.workday.target == timedelta(hours=8)
    assert settings.client.notes_debounce_seconds == 1.0
    assert settings.database_path.name == "officehub.sqlite3"


def test_yaml_values_and_relative_database_path(tmp_path: Path) -> None:
    config_path = tmp_path / "officehub.yaml"
    config_path.write_text(
        "\n".join(
            [
                "database_path: data/hub.sqlite3",
                "api_base_url: http://hub.internal:9000/",
                "timezone: UTC",
                "workday:",
                "  start: '08:30'",
                "  end: '17:30'",
                "  grace_minutes: 10",
                "  target_hours: 7.5",
                "client:",
                "  notes_debounce_seconds: 0.5",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings(config_path, environ={})

    assert settings.database_path == (tmp_path / "data" / "hub.sqlite3").resolve()
    assert settings.api_base_url == "http://hub.internal:9000"
    assert settings.zone().key == "UTC"
    policy = settings.workday.policy()
    assert (policy.start, policy.end, policy.grace_minutes) == (time(8, 30), time(17, 30), 10)
    assert settings.workday.target == timedelta(hours=7, minutes=30)
    assert settings.client.notes_debounce_seconds == 0.5
    assert settings.client.tick_seconds == 1.0


def test_environment_overrides(tmp_path: Path) -> None:
    environ = {
        "OFFICEHUB_DB_PATH": str(tmp_path / "env.sqlite3"),
        "OFFICEHUB_API_URL": "https://hub.example.com/",
        "OFFICEHUB_TIMEZONE": "Europe/Berlin",
        "OFFICEHUB_AUTO_CONFIRM_EMAIL": "yes",
    }

    settings = load_settings(tmp_path / "missing.yaml", environ=environ)

    assert settings.database_path == (tmp_path / "env.sqlite3").resolve()
    assert settings.api_base_url == "https://hub.example.com"
    assert settings.timezone == "Europe/Berlin"
    assert settings.auto_confirm_email is True


def test_config_path_from_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("token_ttl_hours: 2\n", encoding="utf-8")

    settings = load_settings(environ={"OFFICEHUB_CONFIG": str(config_path)})

    assert settings.token_ttl == timedelta(hours=2)
    assert resolve_config_path(None).name == "officehub.yaml"


@pytest.mark.parametrize(
    "data",
    [
        {"timezone": "Mars/Olympus_Mons"},
        {"workday": {"start": "18:00", "end": "09:00"}},
        {"workday": {"target_hours": 0}},
        {"workday": "nine to six"},
    ],
)
def test_invalid_settings_are_rejected(data: dict) -> None:
    with pytest.raises(ValueError):
        Settings.from_dict(data)


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "broken.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings(config_path, environ={})
