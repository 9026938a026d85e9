"""Configuration dependency for nsscache-http."""

from __future__ import annotations

import os
from pathlib import Path

from ..config import Config
from ..constants import CONFIG_PATH

__all__ = ["ConfigDependency", "config_dependency"]


class ConfigDependency:
    """Load the nsscache-http configuration on first use.

    The file is read from ``NSSCACHE_HTTP_CONFIG_PATH`` if that is set and
    from the default path otherwise. Reading is deferred until the
    configuration is first needed so that the CLI and the test suite can
    point the dependency at another file beforehand.
    """

    def __init__(self) -> None:
        path = os.getenv("NSSCACHE_HTTP_CONFIG_PATH", CONFIG_PATH)
        self._path = Path(path)
        self._config: Config | None = None

    async def __call__(self) -> Config:
        return self.config()

    def config(self) -> Config:
        """Return the configuration, reading it first if necessary.

        Logging is configured from the configuration when it is read.
        """
        if self._config is None:
            self._config = self._load()
        return self._config

    def set_config_path(self, path: Path) -> None:
        """Read the configuration from a different file.

        Parameters
        ----------
        path
            Path to the YAML configuration file.
        """
        self._path = path
        self._config = self._load()

    def _load(self) -> Config:
        config = Config.from_file(self._path)
        config.configure_logging()
        return config


config_dependency = ConfigDependency()
"""Dependency returning the nsscache-http configuration."""
