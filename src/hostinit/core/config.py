"""Configuration: env, paths, settings.json."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from hostinit import __version__
from hostinit.plugins.models import OFFICIAL_SOURCES

DEFAULT_INSTALL_TIMEOUT = 600.0


def _default_home() -> Path:
    env = os.getenv("HOSTINIT_HOME")
    return Path(env).expanduser() if env else Path.home() / ".hostinit"


@dataclass
class Config:
    global_dir: Path = field(default_factory=_default_home)
    host_version: str = __version__
    verbose: bool = False
    log_level: str = "WARNING"
    install_timeout: float = DEFAULT_INSTALL_TIMEOUT
    official_sources: list[str] = field(default_factory=lambda: list(OFFICIAL_SOURCES))
    ssh_options: list[str] = field(default_factory=list)

    @property
    def plugins_dir(self) -> Path:
        return self.global_dir / "plugins"

    @property
    def cache_dir(self) -> Path:
        return self.global_dir / "cache" / "plugins"

    @property
    def plugins_config_path(self) -> Path:
        return self.global_dir / "plugins.yaml"

    @property
    def settings_path(self) -> Path:
        return self.global_dir / "settings.json"


def _apply_settings(config: Config, path: Path) -> None:
    """Apply a single settings.json file to config."""
    if not path.exists():
        return
    data = json.loads(path.read_text())
    if "logLevel" in data:
        config.log_level = str(data["logLevel"])
    if "verbose" in data:
        config.verbose = bool(data["verbose"])
    if "installTimeout" in data:
        config.install_timeout = float(data["installTimeout"])
    if isinstance(data.get("officialSources"), list):
        config.official_sources = [str(s) for s in data["officialSources"]]
    if isinstance(data.get("sshOptions"), list):
        config.ssh_options = [str(s) for s in data["sshOptions"]]


def load_config(
    verbose: bool = False,
    log_level: str | None = None,
    home: Path | None = None,
) -> Config:
    """Load config with priority: CLI args > env > .env > settings.json > defaults."""
    load_dotenv()

    config = Config()
    if home is not None:
        config.global_dir = home

    _apply_settings(config, config.settings_path)

    if env_level := os.getenv("HOSTINIT_LOG_LEVEL"):
        config.log_level = env_level
    if env_timeout := os.getenv("HOSTINIT_INSTALL_TIMEOUT"):
        config.install_timeout = float(env_timeout)

    if verbose:
        config.verbose = True
    if log_level:
        config.log_level = log_level

    return config
