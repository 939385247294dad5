"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from line.core.config import LineBotSettings


def _settings(**kwargs) -> LineBotSettings:
    return LineBotSettings(line_channel_access_token="token", line_channel_secret="secret", **kwargs)


def test_defaults(tmp_path):
    settings = _settings(data_dir=tmp_path)

    assert settings.port == 3000
    assert settings.github_enabled is False
    assert settings.games_file == tmp_path / "games.json"
    assert settings.snapshot_file == tmp_path / "registrations.csv"
    assert settings.self_ping_url == "http://localhost:3000/health"


def test_github_repository_fallback():
    settings = _settings(github_token="t", github_repository="owner/repo")

    assert settings.github_target == ("owner", "repo")
    assert settings.github_enabled is True


def test_wake_interval_has_a_floor_and_public_url_wins():
    settings = _settings(auto_wake_interval_minutes=1, render_external_url="https://bot.example.com/")

    assert settings.auto_wake_interval_minutes == 5
    assert settings.self_ping_url == "https://bot.example.com/health"


def test_invalid_values():
    assert _settings(log_level="chatty").log_level == "INFO"
    with pytest.raises(ValidationError):
        _settings(database_url="mysql://nope")
