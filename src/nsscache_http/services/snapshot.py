"""Periodically refreshed cache of the directory data."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta

from pydantic import SecretStr
from safir.datetime import current_datetime, format_datetime_for_logging
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..exceptions import (
    CacheNotStartedError,
    CacheStateError,
    DirectoryError,
    DirectoryTimeoutError,
    EmptyResultError,
)
from ..models.nss import AccountRecord, GroupRecord, ShadowRecord
from ..models.snapshot import CacheStats, Snapshot
from ..storage.base import DirectoryClient
from .mapper import RecordMapper

__all__ = ["SnapshotCache"]


class SnapshotCache:
    """Cache of the passwd, group, and shadow maps retrieved from LDAP.

    The cache holds a single published `Snapshot`. A refresh retrieves all
    three maps from LDAP over a fresh connection and, only if everything
    succeeded, replaces the published snapshot with a new one. A failed
    refresh changes nothing, so readers keep getting the last good data.

    Notes
    -----
    Snapshots are immutable and the published snapshot is replaced by a
    single reference assignment, so readers never need a lock and always
    see one complete snapshot. The only lock serializes refreshes so that
    two refreshes never run at the same time. It is never held by readers.

    Parameters
    ----------
    client
        Client used to talk to the directory server.
    mapper
        Converts raw directory entries to map entries.
    bind_dn
        DN to bind as, or `None` for an anonymous bind.
    bind_password
        Password for ``bind_dn``.
    ttl
        Interval between background refreshes.
    refresh_timeout
        Deadline for a single refresh.
    fetch_shadow
        Whether to search for shadow entries.
    slack_client
        If set, failed background refreshes are reported to Slack.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        client: DirectoryClient,
        mapper: RecordMapper,
        bind_dn: str | None,
        bind_password: SecretStr | None,
        ttl: timedelta,
        refresh_timeout: timedelta,
        fetch_shadow: bool = True,
        slack_client: SlackWebhookClient | None = None,
        logger: BoundLogger,
    ) -> None:
        self._client = client
        self._mapper = mapper
        self._bind_dn = bind_dn
        self._bind_password = bind_password
        self._ttl = ttl
        self._refresh_timeout = refresh_timeout
        self._fetch_shadow = fetch_shadow
        self._slack = slack_client
        self._logger = logger

        self._snapshot: Snapshot | None = None
        self._refresh_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._started = False
        self._failing = False

    @property
    def running(self) -> bool:
        """Whether the background refresh is running."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Load the cache and start refreshing it in the background.

        The initial load happens before this method returns, and any error
        from it is raised so that the application can refuse to start rather
        than serve an empty cache.

        Raises
        ------
        CacheStateError
            Raised if the cache was already started.
        DirectoryError
            Raised if the initial load failed.
        """
        if self._started:
            raise CacheStateError("Cache was already started")
        self._started = True
        await self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())

    def stop(self) -> None:
        """Ask the background refresh to stop.

        Returns immediately. A refresh already in progress is allowed to
        finish, and no further refreshes are started. Calling this again, or
        on a cache that was never started, does nothing.
        """
        if self._started:
            self._stop_event.set()

    async def aclose(self) -> None:
        """Stop the background refresh and wait for it to exit.

        Waits for a refresh in progress, if any, to finish or reach its
        deadline.
        """
        self.stop()
        if self._task:
            await self._task
            self._task = None

    async def refresh(self) -> Snapshot:
        """Retrieve fresh data from LDAP and publish it.

        Opens a new connection, binds, searches for accounts, groups, and
        shadow entries, closes the connection, and converts the results. The
        new snapshot is published only if all of that succeeded. Concurrent
        calls are serialized.

        Returns
        -------
        Snapshot
            The newly published snapshot.

        Raises
        ------
        DirectoryError
            Raised if any step failed or the refresh took longer than the
            refresh deadline. The previously published snapshot, if any, is
            unchanged.
        """
        async with self._refresh_lock:
            start = time.monotonic()
            timeout = self._refresh_timeout.total_seconds()
            deadline = asyncio.timeout(timeout)
            try:
                async with deadline:
                    snapshot = await self._fetch_snapshot()
            except TimeoutError as e:
                if not deadline.expired():
                    raise
                msg = f"Refresh from LDAP took longer than {timeout}s"
                raise DirectoryTimeoutError(msg) from e
            self._snapshot = snapshot
            self._logger.info(
                "Refreshed cache from LDAP",
                accounts=len(snapshot.accounts),
                groups=len(snapshot.groups),
                shadow=len(snapshot.shadow),
                elapsed=round(time.monotonic() - start, 3),
            )
            return snapshot

    def snapshot(self) -> Snapshot:
        """Return the published snapshot.

        Use this rather than the individual accessors when more than one map
        is needed, since separate calls may see different snapshots if a
        refresh completed in between.

        Raises
        ------
        CacheNotStartedError
            Raised if no refresh has succeeded yet.
        """
        snapshot = self._snapshot
        if not snapshot:
            raise CacheNotStartedError("Cache has not been loaded")
        return snapshot

    def accounts(self) -> tuple[AccountRecord, ...]:
        """Return the published passwd entries."""
        return self.snapshot().accounts

    def groups(self) -> tuple[GroupRecord, ...]:
        """Return the published group entries."""
        return self.snapshot().groups

    def shadow_records(self) -> tuple[ShadowRecord, ...]:
        """Return the published shadow entries."""
        return self.snapshot().shadow

    def last_fetch_time(self) -> datetime:
        """Return when the published snapshot was retrieved."""
        return self.snapshot().fetched_at

    def stats(self) -> CacheStats:
        """Return the sizes and timestamp of the published snapshot."""
        return self.snapshot().stats

    async def _fetch_snapshot(self) -> Snapshot:
        """Retrieve and convert all the data over a new connection."""
        try:
            await self._client.connect()
            await self._client.authenticate(self._bind_dn, self._bind_password)
            account_entries = await self._client.fetch_account_entries()
            if not account_entries:
                raise EmptyResultError("accounts")
            group_entries = await self._client.fetch_group_entries()
            if not group_entries:
                raise EmptyResultError("groups")
            if self._fetch_shadow:
                shadow_entries = await self._client.fetch_shadow_entries()
            else:
                shadow_entries = []
        finally:
            self._client.close()
        return Snapshot(
            accounts=tuple(self._mapper.map_accounts(account_entries)),
            groups=tuple(self._mapper.map_groups(group_entries)),
            shadow=tuple(self._mapper.map_shadow(shadow_entries)),
            fetched_at=current_datetime(),
        )

    async def _refresh_loop(self) -> None:
        """Refresh the cache every ``ttl`` until asked to stop.

        Refreshes are scheduled on a fixed period measured from the start of
        the loop, not from the end of the previous refresh. If a refresh runs
        past one or more scheduled times, those refreshes are skipped.
        """
        loop = asyncio.get_running_loop()
        interval = self._ttl.total_seconds()
        next_refresh = loop.time() + interval
        while not self._stop_event.is_set():
            delay = max(next_refresh - loop.time(), 0)
            try:
                await asyncio.wait_for(self._stop_event.wait(), delay)
            except TimeoutError:
                await self._scheduled_refresh()
            now = loop.time()
            while next_refresh <= now:
                next_refresh += interval
        self._logger.debug("Stopped background cache refresh")

    async def _scheduled_refresh(self) -> None:
        """Run one background refresh, reporting but not raising errors."""
        try:
            await self.refresh()
        except DirectoryError as e:
            self._log_failure(e)
            if self._slack and not self._failing:
                await self._slack.post_exception(e)
            self._failing = True
        except Exception as e:
            self._log_failure(e)
            if self._slack and not self._failing:
                await self._slack.post_uncaught_exception(e)
            self._failing = True
        else:
            if self._failing:
                self._logger.info("Cache refresh from LDAP recovered")
            self._failing = False

    def _log_failure(self, exc: Exception) -> None:
        """Log a failed background refresh."""
        last_fetch = None
        if self._snapshot:
            last_fetch = format_datetime_for_logging(self._snapshot.fetched_at)
        msg = "Cache refresh from LDAP failed, serving previous data"
        if isinstance(exc, DirectoryError):
            self._logger.error(msg, error=str(exc), last_fetch=last_fetch)
        else:
            self._logger.exception(msg, error=str(exc), last_fetch=last_fetch)
