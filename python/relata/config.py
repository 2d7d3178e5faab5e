"""Project configuration from relata.ini or the environment."""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from relata.exceptions import ConfigurationError

CONFIG_FILENAME = "relata.ini"


@dataclass
class RelataConfig:
    """Settings shared by the CLI and applications.

    Example relata.ini:
        [relata]
        url = postgresql://localhost/mydb
        models = myapp.models
        migrations_dir = migrations
        max_connections = 20
        log_level = DEBUG
    """

    url: str | None = None
    """Database connection URL (can be overridden)."""

    models: str | None = None
    """Dotted module path holding the record classes."""

    migrations_dir: Path = field(default_factory=lambda: Path("migrations"))
    """Directory that migration files are written to."""

    min_connections: int = 1
    max_connections: int = 10

    log_level: str = "INFO"

    extra: dict[str, Any] = field(default_factory=dict)
    """Unrecognised options from the config file."""

    _config_path: Path | None = None

    @classmethod
    def from_ini(cls, path: Path | str) -> RelataConfig:
        """Load configuration from a relata.ini file.

        Relative ``migrations_dir`` values are resolved against the file's
        directory.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigurationError: If the [relata] section is missing or a
                number is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        parser = configparser.ConfigParser()
        parser.read(path)
        if "relata" not in parser:
            raise ConfigurationError(f"No [relata] section in {path}")
        section = parser["relata"]

        migrations_dir = Path(section.get("migrations_dir", "migrations"))
        if not migrations_dir.is_absolute():
            migrations_dir = path.parent / migrations_dir

        try:
            min_connections = section.getint("min_connections", 1)
            max_connections = section.getint("max_connections", 10)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid connection count in {path}: {exc}") from exc

        known_keys = {
            "url",
            "models",
            "migrations_dir",
            "min_connections",
            "max_connections",
            "log_level",
        }
        return cls(
            url=section.get("url"),
            models=section.get("models"),
            migrations_dir=migrations_dir,
            min_connections=min_connections,
            max_connections=max_connections,
            log_level=section.get("log_level", "INFO"),
            extra={k: v for k, v in section.items() if k not in known_keys},
            _config_path=path,
        )

    @classmethod
    def auto_detect(cls, start_path: Path | str | None = None) -> RelataConfig | None:
        """Find relata.ini by searching up from ``start_path`` (default: cwd)."""
        current = Path.cwd() if start_path is None else Path(start_path)
        while True:
            ini_path = current / CONFIG_FILENAME
            if ini_path.exists():
                return cls.from_ini(ini_path)
            if current == current.parent:
                return None
            current = current.parent

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RelataConfig:
        """Build a configuration from environment variables.

        Reads ``DATABASE_URL``, ``RELATA_MODELS``, ``RELATA_MIGRATIONS_DIR``
        and ``RELATA_LOG_LEVEL``.
        """
        env = os.environ if environ is None else environ
        config = cls(
            url=env.get("DATABASE_URL") or None,
            models=env.get("RELATA_MODELS") or None,
            log_level=env.get("RELATA_LOG_LEVEL", "INFO"),
        )
        if env.get("RELATA_MIGRATIONS_DIR"):
            config.migrations_dir = Path(env["RELATA_MIGRATIONS_DIR"])
        return config

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def get_url(self, override: str | None = None) -> str:
        """Database URL, preferring ``override``.

        Raises:
            ConfigurationError: If no URL is available
        """
        url = override or self.url
        if not url:
            raise ConfigurationError("No database URL configured")
        return url
