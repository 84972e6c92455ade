"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import pydantic
import pytest

from deskscope.config.settings import (
    LoggingConfig,
    ObserverConfig,
    Settings,
    StreamConfig,
    WakeConfig,
    load_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's environment and .env file out of these tests."""
    for name in list(os.environ):
        if name.startswith("DESKSCOPE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


class TestSettings:
    """Test configuration models and loading."""

    def test_default_settings(self) -> None:
        settings = Settings()
        assert settings.stream.interval_ms == 1000
        assert settings.stream.diff is False
        assert settings.output.pretty is False
        assert settings.observer.watch_path is None
        assert settings.observer.all_connections is False
        assert settings.wake.no_public_ip is False
        assert settings.logging.level == "WARNING"

    def test_wake_config_defaults(self) -> None:
        config = WakeConfig()
        assert config.public_ip_url == "https://api.ipify.org"
        assert config.public_ip_timeout == 1.0
        assert config.verbose is False

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            StreamConfig(interval_ms=0)

    def test_public_ip_timeout_bounded(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            WakeConfig(public_ip_timeout=30)

    def test_watch_path_coerced(self) -> None:
        assert ObserverConfig(watch_path="/tmp").watch_path == Path("/tmp")

    def test_logging_defaults(self) -> None:
        assert LoggingConfig().file is None


class TestLoadSettings:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.stream.interval_ms == 1000

    def test_yaml_file_loaded(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "stream:\n  interval_ms: 250\n  diff: true\n"
            "observer:\n  all_connections: true\n"
            "wake:\n  no_public_ip: true\n"
        )
        settings = load_settings(path)
        assert settings.stream.interval_ms == 250
        assert settings.stream.diff is True
        assert settings.observer.all_connections is True
        assert settings.wake.no_public_ip is True

    def test_empty_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_settings(path).output.pretty is False

    @pytest.mark.parametrize("content", ["- 1\n- 2\n", "just text\n", "42\n"])
    def test_non_mapping_yaml_raises(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(content)
        with pytest.raises(ValueError, match="mapping"):
            load_settings(path)

    def test_invalid_value_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("stream:\n  interval_ms: -5\n")
        with pytest.raises(pydantic.ValidationError):
            load_settings(path)

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DESKSCOPE_STREAM__INTERVAL_MS", "500")
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.stream.interval_ms == 500

    def test_env_ranks_above_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("stream:\n  interval_ms: 250\n")
        monkeypatch.setenv("DESKSCOPE_STREAM__INTERVAL_MS", "750")
        assert load_settings(path).stream.interval_ms == 750
