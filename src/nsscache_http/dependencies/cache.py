"""Snapshot cache dependency for FastAPI."""

from __future__ import annotations

from ..config import Config
from ..factory import Factory
from ..services.snapshot import SnapshotCache

__all__ = ["SnapshotCacheDependency", "snapshot_cache_dependency"]


class SnapshotCacheDependency:
    """Provides the process-wide `SnapshotCache` as a dependency.

    The cache is created and loaded by `initialize`, which must be called from
    the application lifespan before any requests are handled, and stopped by
    `aclose` during shutdown.
    """

    def __init__(self) -> None:
        self._cache: SnapshotCache | None = None

    async def __call__(self) -> SnapshotCache:
        """Return the cache."""
        return self.cache

    @property
    def cache(self) -> SnapshotCache:
        """The underlying cache, primarily for use in tests."""
        if not self._cache:
            raise RuntimeError("SnapshotCacheDependency not initialized")
        return self._cache

    async def initialize(self, config: Config) -> None:
        """Create the cache, load it, and start the background refresh.

        Parameters
        ----------
        config
            nsscache-http configuration.

        Raises
        ------
        DirectoryError
            Raised if the initial load from LDAP failed. The dependency is
            left uninitialized.
        """
        if self._cache:
            await self.aclose()
        cache = Factory(config).create_snapshot_cache()
        await cache.start()
        self._cache = cache

    async def aclose(self) -> None:
        """Stop the background refresh and discard the cache."""
        if self._cache:
            await self._cache.aclose()
        self._cache = None


snapshot_cache_dependency = SnapshotCacheDependency()
"""The dependency that will return the snapshot cache."""
