"""Tests for pulltube.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from pulltube.config import (
    DEFAULT_CDP_URL,
    DEFAULT_SCHEME,
    Settings,
    SettingsError,
    load_config,
)

ENV_VARS = [
    "PULLTUBE_SCHEME",
    "PULLTUBE_STORE_PATH",
    "PULLTUBE_DOWNLOAD_DIR",
    "PULLTUBE_CDP_URL",
    "PULLTUBE_MAX_ATTEMPTS",
    "PULLTUBE_DEBUG",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettingsFromEnv:
    def test_defaults(self, clean_env):
        settings = Settings.from_env()
        assert settings.scheme == DEFAULT_SCHEME
        assert settings.scheme_prefix == "pulltube://"
        assert settings.cdp_url == DEFAULT_CDP_URL
        assert settings.max_attempts == 10
        assert settings.debug is False

    def test_overrides(self, clean_env, tmp_path: Path):
        clean_env.setenv("PULLTUBE_SCHEME", "grabber://")
        clean_env.setenv("PULLTUBE_STORE_PATH", str(tmp_path / "s.json"))
        clean_env.setenv("PULLTUBE_DOWNLOAD_DIR", str(tmp_path))
        clean_env.setenv("PULLTUBE_CDP_URL", "http://127.0.0.1:9333")
        clean_env.setenv("PULLTUBE_MAX_ATTEMPTS", "3")
        clean_env.setenv("PULLTUBE_DEBUG", "yes")

        settings = Settings.from_env()

        assert settings.scheme == "grabber"
        assert settings.store_path == tmp_path / "s.json"
        assert settings.download_dir == tmp_path
        assert settings.cdp_url == "http://127.0.0.1:9333"
        assert settings.max_attempts == 3
        assert settings.debug is True

    def test_non_integer_attempts(self, clean_env):
        clean_env.setenv("PULLTUBE_MAX_ATTEMPTS", "many")
        with pytest.raises(SettingsError, match="must be an integer"):
            Settings.from_env()

    def test_zero_attempts(self, clean_env):
        clean_env.setenv("PULLTUBE_MAX_ATTEMPTS", "0")
        with pytest.raises(SettingsError, match="at least 1"):
            Settings.from_env()

    def test_empty_scheme(self, clean_env):
        clean_env.setenv("PULLTUBE_SCHEME", "://")
        with pytest.raises(SettingsError):
            Settings.from_env()


class TestLoadConfig:
    def test_prefers_local_env(self, tmp_path: Path):
        (tmp_path / ".env").write_text("PULLTUBE_DEBUG=1\n", encoding="utf-8")
        loaded = []

        load_config(
            config_dir=tmp_path / "cfg",
            config_env_file=tmp_path / "cfg" / ".env",
            cwd=tmp_path,
            load_env=loaded.append,
        )

        assert loaded == [tmp_path / ".env"]

    def test_falls_back_to_user_config(self, tmp_path: Path):
        config_dir = tmp_path / "cfg"
        config_dir.mkdir()
        (config_dir / ".env").write_text("", encoding="utf-8")
        work = tmp_path / "work"
        work.mkdir()
        loaded = []

        load_config(
            config_dir=config_dir,
            config_env_file=config_dir / ".env",
            cwd=work,
            load_env=loaded.append,
        )

        assert loaded == [config_dir / ".env"]

    def test_seeds_user_config_from_example(self, tmp_path: Path):
        config_dir = tmp_path / "cfg"
        work = tmp_path / "work"
        work.mkdir()
        loaded = []
        copied = []

        def fake_copy(src: Path, dst: Path) -> str:
            copied.append((src.name, dst))
            return str(dst)

        load_config(
            config_dir=config_dir,
            config_env_file=config_dir / ".env",
            cwd=work,
            load_env=loaded.append,
            copy_file=fake_copy,
        )

        assert copied == [(".env.example", config_dir / ".env")]
        assert loaded == [config_dir / ".env"]
        assert config_dir.is_dir()
