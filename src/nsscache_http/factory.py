"""Create nsscache-http components."""

from __future__ import annotations

import structlog
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .config import Config
from .services.mapper import RecordMapper
from .services.snapshot import SnapshotCache
from .storage.base import DirectoryClient
from .storage.ldap import LDAPDirectoryClient

__all__ = ["Factory"]


class Factory:
    """Build nsscache-http components.

    Parameters
    ----------
    config
        nsscache-http configuration.
    logger
        Logger to use for errors. If not given, the default application
        logger is used.
    """

    def __init__(
        self, config: Config, logger: BoundLogger | None = None
    ) -> None:
        self._config = config
        self._logger = logger or structlog.get_logger("nsscache-http")

    def create_directory_client(self) -> DirectoryClient:
        """Create a client for the configured LDAP server.

        Returns
        -------
        DirectoryClient
            Newly-created client, not yet connected.
        """
        return LDAPDirectoryClient(self._config.ldap, self._logger)

    def create_record_mapper(self) -> RecordMapper:
        """Create the converter from LDAP entries to map entries.

        Returns
        -------
        RecordMapper
            Newly-created mapper.
        """
        return RecordMapper(
            user_name_attr=self._config.ldap.user_name_attr,
            logger=self._logger,
        )

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for sending messages to Slack.

        Returns
        -------
        safir.slack.webhook.SlackWebhookClient or None
            Configured Slack client if Slack alerts are enabled, otherwise
            `None`.
        """
        if not self._config.slack_alerts or not self._config.slack_webhook:
            return None
        return SlackWebhookClient(
            self._config.slack_webhook, "nsscache-http", self._logger
        )

    def create_snapshot_cache(self) -> SnapshotCache:
        """Create the cache of LDAP data.

        The cache is returned unstarted. The caller is responsible for
        starting it and for stopping it at shutdown.

        Returns
        -------
        SnapshotCache
            Newly-created cache.
        """
        return SnapshotCache(
            client=self.create_directory_client(),
            mapper=self.create_record_mapper(),
            bind_dn=self._config.ldap.bind_dn,
            bind_password=self._config.ldap.bind_password,
            ttl=self._config.cache.ttl,
            refresh_timeout=self._config.cache.refresh_timeout,
            fetch_shadow=self._config.ldap.fetch_shadow,
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )
