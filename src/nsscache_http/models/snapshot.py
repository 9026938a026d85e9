"""Models for the cached directory data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .nss import AccountRecord, GroupRecord, ShadowRecord

__all__ = ["CacheStats", "Snapshot"]


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Sizes and age of the published snapshot, for health reporting."""

    accounts: int
    """Number of passwd entries."""

    groups: int
    """Number of group entries."""

    shadow: int
    """Number of shadow entries."""

    last_fetch: datetime
    """When the published snapshot was retrieved from LDAP."""


@dataclass(frozen=True, slots=True)
class Snapshot:
    """One consistent copy of the directory data.

    A snapshot is built from the results of a single refresh and never
    modified afterwards. A refresh replaces the published snapshot as a
    whole, so anything holding a reference to a snapshot sees a view of the
    directory from a single point in time.
    """

    accounts: tuple[AccountRecord, ...]
    """Entries for the passwd map, in directory order."""

    groups: tuple[GroupRecord, ...]
    """Entries for the group map, in directory order."""

    shadow: tuple[ShadowRecord, ...]
    """Entries for the shadow map, in directory order."""

    fetched_at: datetime
    """When the data was retrieved."""

    @property
    def stats(self) -> CacheStats:
        """Sizes and timestamp of this snapshot."""
        return CacheStats(
            accounts=len(self.accounts),
            groups=len(self.groups),
            shadow=len(self.shadow),
            last_fetch=self.fetched_at,
        )
