"""Test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from nsscache_http.config import Config
from nsscache_http.main import create_app
from nsscache_http.services.mapper import RecordMapper

from .support.config import configure
from .support.directory import (
    MockDirectoryClient,
    account_entry,
    group_entry,
    shadow_entry,
)
from .support.ldap import MockLDAP, add_test_entries, patch_ldap


@pytest.fixture(autouse=True)
def environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set default values of environment variables for testing."""
    monkeypatch.setenv("NSSCACHE_HTTP_LDAP_BIND_PASSWORD", "reader-password")
    monkeypatch.setenv(
        "NSSCACHE_HTTP_SLACK_WEBHOOK", "https://slack.example.com/webhook"
    )


@pytest_asyncio.fixture
async def app(
    mock_ldap: MockLDAP, mock_slack: MockSlackWebhook | None
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        base_url="https://example.com/", transport=ASGITransport(app=app)
    ) as client:
        yield client


@pytest.fixture
def config() -> Config:
    """Set up and return the default test configuration.

    Notes
    -----
    This fixture must not be async so that it can be used by the cli tests,
    which must not be async because the Click support starts its own asyncio
    loop.
    """
    return configure("base")


@pytest.fixture
def mapper() -> RecordMapper:
    """Return a mapper with the default username attribute."""
    return RecordMapper(
        user_name_attr="uid", logger=structlog.get_logger("nsscache-http")
    )


@pytest.fixture
def mock_directory() -> MockDirectoryClient:
    """Return a mock directory client with a few entries."""
    directory = MockDirectoryClient()
    directory.accounts = [
        account_entry("alice", 1000, gecos="Alice Example"),
        account_entry("bob", 1001, cn="Bob Example"),
    ]
    directory.groups = [
        group_entry("staff", 2000, ["alice"], ["uid=bob,dc=example,dc=com"])
    ]
    directory.shadow = [shadow_entry("alice", "{CRYPT}$6$salt$hash")]
    return directory


@pytest.fixture
def mock_ldap(config: Config) -> Iterator[MockLDAP]:
    """Replace the bonsai LDAP API with a mock class.

    The mock is populated with the entries added by
    `~tests.support.ldap.add_test_entries`.
    """
    for mock_ldap in patch_ldap():
        add_test_entries(mock_ldap, config.ldap)
        yield mock_ldap


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> MockSlackWebhook | None:
    """Mock a Slack webhook."""
    if not config.slack_webhook:
        return None
    webhook = config.slack_webhook.get_secret_value()
    return mock_slack_webhook(webhook, respx_mock)
