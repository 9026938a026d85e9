"""Tests for the snapshot cache."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import structlog
from safir.slack.webhook import SlackWebhookClient
from safir.testing.slack import MockSlackWebhook

from nsscache_http.config import Config
from nsscache_http.exceptions import (
    CacheNotStartedError,
    CacheStateError,
    DirectoryAuthenticationError,
    DirectoryConnectionError,
    DirectoryError,
    DirectorySearchError,
    DirectoryTimeoutError,
    EmptyResultError,
)
from nsscache_http.models.nss import AccountRecord, GroupRecord, ShadowRecord
from nsscache_http.services.mapper import RecordMapper
from nsscache_http.services.snapshot import SnapshotCache

from ..support.directory import (
    MockDirectoryClient,
    account_entry,
    group_entry,
)


def build_cache(
    directory: MockDirectoryClient,
    mapper: RecordMapper,
    *,
    ttl: timedelta = timedelta(minutes=5),
    refresh_timeout: timedelta = timedelta(seconds=10),
    fetch_shadow: bool = True,
    slack_client: SlackWebhookClient | None = None,
) -> SnapshotCache:
    return SnapshotCache(
        client=directory,
        mapper=mapper,
        bind_dn="cn=reader,dc=example,dc=com",
        bind_password=None,
        ttl=ttl,
        refresh_timeout=refresh_timeout,
        fetch_shadow=fetch_shadow,
        slack_client=slack_client,
        logger=structlog.get_logger("nsscache-http"),
    )


@pytest.mark.asyncio
async def test_start(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper)
    with pytest.raises(CacheNotStartedError):
        cache.snapshot()
    with pytest.raises(CacheNotStartedError):
        cache.accounts()
    with pytest.raises(CacheNotStartedError):
        cache.stats()

    await cache.start()
    try:
        assert cache.running
        assert cache.accounts() == (
            AccountRecord(
                name="alice",
                uid=1000,
                gid=1000,
                gecos="Alice Example",
                dir="/home/alice",
                shell="/bin/bash",
            ),
            AccountRecord(
                name="bob",
                uid=1001,
                gid=1001,
                gecos="Bob Example",
                dir="/home/bob",
                shell="/bin/bash",
            ),
        )
        assert cache.groups() == (
            GroupRecord(name="staff", gid=2000, members=("alice", "bob")),
        )
        assert cache.shadow_records() == (
            ShadowRecord(name="alice", passwd="$6$salt$hash"),
        )
        stats = cache.stats()
        assert (stats.accounts, stats.groups, stats.shadow) == (2, 1, 1)
        assert stats.last_fetch == cache.last_fetch_time()
        assert mock_directory.calls == [
            "connect",
            "authenticate",
            "accounts",
            "groups",
            "shadow",
            "close",
        ]
        assert mock_directory.bind == ("cn=reader,dc=example,dc=com", None)
        assert not mock_directory.connected

        with pytest.raises(CacheStateError):
            await cache.start()
    finally:
        await cache.aclose()
    assert not cache.running


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("step", "exc_class"),
    [
        ("connect", DirectoryConnectionError),
        ("authenticate", DirectoryAuthenticationError),
        ("accounts", DirectorySearchError),
        ("groups", DirectorySearchError),
        ("shadow", DirectorySearchError),
    ],
)
async def test_start_failure(
    mock_directory: MockDirectoryClient,
    mapper: RecordMapper,
    step: str,
    exc_class: type[Exception],
) -> None:
    mock_directory.fail_at = step
    cache = build_cache(mock_directory, mapper)
    with pytest.raises(exc_class):
        await cache.start()
    assert not cache.running
    assert not mock_directory.connected
    with pytest.raises(CacheNotStartedError):
        cache.snapshot()


@pytest.mark.asyncio
async def test_failed_refresh_keeps_snapshot(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper)
    await cache.start()
    try:
        snapshot = cache.snapshot()
        for step in ("connect", "authenticate", "accounts", "groups"):
            mock_directory.fail_at = step
            with pytest.raises(DirectoryError):
                await cache.refresh()
            assert cache.snapshot() is snapshot
            assert not mock_directory.connected

        mock_directory.fail_at = None
        mock_directory.accounts = [account_entry("carol", 1002)]
        new_snapshot = await cache.refresh()
        assert cache.snapshot() is new_snapshot
        assert [a.name for a in cache.accounts()] == ["carol"]
    finally:
        await cache.aclose()


@pytest.mark.asyncio
async def test_empty_results(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper)
    await cache.start()
    try:
        snapshot = cache.snapshot()

        mock_directory.accounts = []
        with pytest.raises(EmptyResultError) as excinfo:
            await cache.refresh()
        assert excinfo.value.kind == "accounts"
        assert cache.snapshot() is snapshot

        mock_directory.accounts = [account_entry("alice", 1000)]
        mock_directory.groups = []
        with pytest.raises(EmptyResultError) as excinfo:
            await cache.refresh()
        assert excinfo.value.kind == "groups"
        assert cache.snapshot() is snapshot

        # An empty shadow search is not an error.
        mock_directory.groups = [{"cn": ["staff"], "gidNumber": ["2000"]}]
        mock_directory.shadow = []
        await cache.refresh()
        assert cache.groups() == (GroupRecord(name="staff", gid=2000),)
        assert cache.shadow_records() == ()
    finally:
        await cache.aclose()


@pytest.mark.asyncio
async def test_no_shadow(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper, fetch_shadow=False)
    await cache.refresh()
    assert "shadow" not in mock_directory.calls
    assert cache.shadow_records() == ()
    assert len(cache.accounts()) == 2


@pytest.mark.asyncio
async def test_refresh_timeout(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(
        mock_directory, mapper, refresh_timeout=timedelta(seconds=0.1)
    )
    await cache.refresh()
    snapshot = cache.snapshot()

    mock_directory.block = asyncio.Event()
    with pytest.raises(DirectoryTimeoutError):
        await cache.refresh()
    assert cache.snapshot() is snapshot
    assert mock_directory.calls[-1] == "close"
    assert not mock_directory.connected


@pytest.mark.asyncio
async def test_readers_during_refresh(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper)
    await cache.refresh()
    snapshot = cache.snapshot()

    mock_directory.block = asyncio.Event()
    mock_directory.searching.clear()
    mock_directory.fail_at = "groups"
    refresh = asyncio.create_task(cache.refresh())
    await mock_directory.searching.wait()

    # Reads while a refresh is in progress are not blocked and see the
    # complete previous snapshot.
    assert not refresh.done()
    for _ in range(10):
        current = cache.snapshot()
        assert current is snapshot
        assert len(current.accounts) == 2
        assert len(current.groups) == 1
        await asyncio.sleep(0)

    mock_directory.block.set()
    with pytest.raises(DirectorySearchError):
        await refresh
    assert cache.snapshot() is snapshot


@pytest.mark.asyncio
async def test_refresh_serialized(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper)
    mock_directory.block = asyncio.Event()
    first = asyncio.create_task(cache.refresh())
    await mock_directory.searching.wait()
    second = asyncio.create_task(cache.refresh())
    await asyncio.sleep(0.05)
    assert mock_directory.calls.count("connect") == 1

    mock_directory.block.set()
    await asyncio.gather(first, second)
    assert mock_directory.calls.count("connect") == 2
    assert mock_directory.calls.count("close") == 2


@pytest.mark.asyncio
async def test_background_refresh(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper, ttl=timedelta(seconds=0.05))
    await cache.start()
    try:
        first = cache.snapshot()

        # Failures in the background do not stop the refresh loop or replace
        # the published data.
        stats = cache.stats()
        mock_directory.fail_at = "connect"
        await asyncio.sleep(0.3)
        assert cache.running
        assert cache.snapshot() is first
        assert cache.stats() == stats
        assert mock_directory.calls.count("connect") > 3

        mock_directory.fail_at = None
        mock_directory.accounts = [account_entry("carol", 1002)]
        await asyncio.sleep(0.2)
        assert cache.snapshot() is not first
        assert [a.name for a in cache.accounts()] == ["carol"]
    finally:
        await cache.aclose()
    assert not cache.running


@pytest.mark.asyncio
async def test_stop(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper, ttl=timedelta(seconds=0.05))

    # Stopping a cache that was never started does nothing.
    cache.stop()
    await cache.aclose()

    cache = build_cache(mock_directory, mapper, ttl=timedelta(seconds=0.05))
    await cache.start()
    cache.stop()
    cache.stop()
    await cache.aclose()
    await cache.aclose()
    assert not cache.running
    count = mock_directory.calls.count("connect")
    await asyncio.sleep(0.15)
    assert mock_directory.calls.count("connect") == count

    # The data is still available after stopping.
    assert len(cache.accounts()) == 2
    with pytest.raises(CacheStateError):
        await cache.start()


@pytest.mark.asyncio
async def test_stop_during_refresh(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper, ttl=timedelta(seconds=0.05))
    await cache.start()
    first = cache.snapshot()
    mock_directory.block = asyncio.Event()
    mock_directory.searching.clear()
    mock_directory.accounts = [account_entry("carol", 1002)]
    await mock_directory.searching.wait()

    # The refresh in progress is allowed to finish and is published.
    close = asyncio.create_task(cache.aclose())
    await asyncio.sleep(0.05)
    assert not close.done()
    mock_directory.block.set()
    await close
    assert not cache.running
    assert cache.snapshot() is not first
    assert [a.name for a in cache.accounts()] == ["carol"]


@pytest.mark.asyncio
async def test_slack_alerts(
    config: Config,
    mock_directory: MockDirectoryClient,
    mapper: RecordMapper,
    mock_slack: MockSlackWebhook,
) -> None:
    assert config.slack_webhook
    slack = SlackWebhookClient(
        config.slack_webhook,
        "nsscache-http",
        structlog.get_logger("nsscache-http"),
    )
    cache = build_cache(
        mock_directory,
        mapper,
        ttl=timedelta(seconds=0.05),
        slack_client=slack,
    )
    await cache.start()
    try:
        mock_directory.fail_at = "authenticate"
        await asyncio.sleep(0.3)
        assert mock_directory.calls.count("authenticate") > 3
        assert len(mock_slack.messages) == 1
        assert "Invalid credentials" in str(mock_slack.messages[0])

        # Recovery and another failure produce another alert.
        mock_directory.fail_at = None
        await asyncio.sleep(0.15)
        mock_directory.fail_at = "connect"
        await asyncio.sleep(0.15)
        assert len(mock_slack.messages) == 2
        assert "Connection refused" in str(mock_slack.messages[1])
    finally:
        await cache.aclose()


@pytest.mark.asyncio
async def test_members_not_filtered(mapper: RecordMapper) -> None:
    directory = MockDirectoryClient()
    directory.accounts = [
        account_entry("alice", 1000),
        account_entry("root", 0),
    ]
    directory.groups = [
        group_entry("staff", 2000, ["alice", "root"]),
    ]
    cache = build_cache(directory, mapper)
    await cache.refresh()

    assert [a.name for a in cache.accounts()] == ["alice"]
    assert cache.groups() == (
        GroupRecord(name="staff", gid=2000, members=("alice", "root")),
    )


@pytest.mark.asyncio
async def test_stop_before_start(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper, ttl=timedelta(seconds=0.05))
    cache.stop()
    await cache.start()
    try:
        await asyncio.sleep(0.2)
        assert cache.running
        assert mock_directory.calls.count("connect") > 1
    finally:
        await cache.aclose()
    assert not cache.running


@pytest.mark.asyncio
async def test_client_timeout(
    mock_directory: MockDirectoryClient, mapper: RecordMapper
) -> None:
    cache = build_cache(mock_directory, mapper)
    await cache.refresh()
    snapshot = cache.snapshot()

    # A timeout raised by the client itself is not the refresh deadline.
    fetch = AsyncMock(side_effect=TimeoutError("client timeout"))
    with patch.object(mock_directory, "fetch_account_entries", fetch):
        with pytest.raises(TimeoutError) as excinfo:
            await cache.refresh()
    assert not isinstance(excinfo.value, DirectoryTimeoutError)
    assert str(excinfo.value) == "client timeout"
    assert cache.snapshot() is snapshot
    assert not mock_directory.connected
