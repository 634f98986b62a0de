"""Runtime settings and ``.env`` loading.

Environment variables are read at call time (inside :meth:`Settings.from_env`)
so tests can monkeypatch them and late ``.env`` loading still applies.

Supported variables:
    PULLTUBE_SCHEME: URI scheme of the consumer app (default: pulltube).
    PULLTUBE_STORE_PATH: JSON file for the durable store.
    PULLTUBE_DOWNLOAD_DIR: Directory that receives archive files.
    PULLTUBE_CDP_URL: DevTools endpoint of the browser to drive.
    PULLTUBE_MAX_ATTEMPTS: Playlist polling attempts (default: 10).
    PULLTUBE_DEBUG: Enable debug logging when truthy.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from .collector import DEFAULT_MAX_ATTEMPTS

CONFIG_DIR = Path.home() / ".config" / "pulltube"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"

DEFAULT_SCHEME = "pulltube"
DEFAULT_CDP_URL = "http://127.0.0.1:9222"
DEFAULT_STORE_PATH = CONFIG_DIR / "store.json"
DEFAULT_DOWNLOAD_DIR = Path.home() / "Downloads"

_TRUTHY = {"1", "true", "yes", "on"}


class SettingsError(ValueError):
    """Raised when an environment variable holds an invalid value."""


@dataclass(frozen=True)
class Settings:
    scheme: str = DEFAULT_SCHEME
    store_path: Path = DEFAULT_STORE_PATH
    download_dir: Path = DEFAULT_DOWNLOAD_DIR
    cdp_url: str = DEFAULT_CDP_URL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    debug: bool = False

    @property
    def scheme_prefix(self) -> str:
        return f"{self.scheme}://"

    @classmethod
    def from_env(cls) -> "Settings":
        scheme = os.getenv("PULLTUBE_SCHEME", DEFAULT_SCHEME).strip().rstrip(":/")
        if not scheme:
            raise SettingsError("PULLTUBE_SCHEME must not be empty")

        raw_attempts = os.getenv("PULLTUBE_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))
        try:
            max_attempts = int(raw_attempts)
        except ValueError as exc:
            raise SettingsError(
                f"PULLTUBE_MAX_ATTEMPTS must be an integer, got {raw_attempts!r}"
            ) from exc
        if max_attempts < 1:
            raise SettingsError("PULLTUBE_MAX_ATTEMPTS must be at least 1")

        return cls(
            scheme=scheme,
            store_path=Path(
                os.getenv("PULLTUBE_STORE_PATH", str(DEFAULT_STORE_PATH))
            ).expanduser(),
            download_dir=Path(
                os.getenv("PULLTUBE_DOWNLOAD_DIR", str(DEFAULT_DOWNLOAD_DIR))
            ).expanduser(),
            cdp_url=os.getenv("PULLTUBE_CDP_URL", DEFAULT_CDP_URL),
            max_attempts=max_attempts,
            debug=os.getenv("PULLTUBE_DEBUG", "").strip().lower() in _TRUTHY,
        )


def load_config(
    *,
    config_dir: Path = CONFIG_DIR,
    config_env_file: Path = CONFIG_ENV_FILE,
    cwd: Optional[Path] = None,
    load_env: Callable[[Path], bool] = load_dotenv,
    copy_file: Callable[[Path, Path], str] = shutil.copy,
) -> None:
    """Load .env configuration with fallback to user config directory.

    Search order:
    1. .env in current working directory
    2. ~/.config/pulltube/.env

    If neither exists and .env.example is found next to the package, it is
    copied to ~/.config/pulltube/.env as a starting point.
    """
    local_env = (cwd or Path.cwd()) / ".env"
    if local_env.is_file():
        load_env(local_env)
        return

    if config_env_file.is_file():
        load_env(config_env_file)
        return

    package_dir = Path(__file__).parent.parent
    example_file = package_dir / ".env.example"

    if example_file.is_file():
        try:
            config_dir.mkdir(parents=True, exist_ok=True)
            copy_file(example_file, config_env_file)
            logging.info("Created config file at %s from .env.example.", config_env_file)
            load_env(config_env_file)
        except OSError:
            pass
