"""LDAP storage layer for nsscache-http."""

from __future__ import annotations

import bonsai
from bonsai import LDAPClient, LDAPSearchScope
from bonsai.asyncio import AIOLDAPConnection
from pydantic import SecretStr
from structlog.stdlib import BoundLogger

from ..config import LDAPConfig
from ..constants import ACCOUNT_ATTRIBUTES, GROUP_ATTRIBUTES, SHADOW_ATTRIBUTES
from ..exceptions import (
    DirectoryAuthenticationError,
    DirectoryConnectionError,
    DirectorySearchError,
)
from .base import DirectoryClient, DirectoryEntry

__all__ = ["LDAPDirectoryClient"]


class LDAPDirectoryClient(DirectoryClient):
    """Retrieve POSIX entries from an LDAP server using bonsai.

    bonsai performs the bind as part of opening the connection, so `connect`
    only builds the client with its TLS settings and the network connection
    is opened by `authenticate`.

    Parameters
    ----------
    config
        Configuration for the LDAP server and searches.
    logger
        Logger for debug messages and errors.
    """

    def __init__(self, config: LDAPConfig, logger: BoundLogger) -> None:
        self._config = config
        self._logger = logger.bind(ldap_url=str(config.url))
        self._client: LDAPClient | None = None
        self._conn: AIOLDAPConnection | None = None

    async def connect(self) -> None:
        self.close()
        url = str(self._config.url)
        try:
            client = LDAPClient(url, tls=self._config.start_tls)
        except (bonsai.LDAPError, ValueError) as e:
            msg = f"Invalid LDAP server URL: {e!s}"
            raise DirectoryConnectionError(msg) from e
        if self._config.skip_verify:
            client.set_cert_policy("never")
        self._client = client

    async def authenticate(
        self, identity: str | None, credential: SecretStr | None
    ) -> None:
        if not self._client:
            raise DirectoryConnectionError("Not connected to LDAP server")
        logger = self._logger.bind(ldap_bind_dn=identity)
        if identity and credential:
            self._client.set_credentials(
                "SIMPLE",
                user=identity,
                password=credential.get_secret_value(),
            )
        timeout = self._config.search_timeout.total_seconds()
        try:
            logger.debug("Connecting to LDAP")
            self._conn = await self._client.connect(
                is_async=True, timeout=timeout
            )
        except bonsai.AuthenticationError as e:
            logger.exception("Cannot bind to LDAP", error=str(e))
            msg = f"Cannot bind to LDAP as {identity or 'anonymous'}"
            raise DirectoryAuthenticationError(msg) from e
        except (bonsai.LDAPError, TimeoutError) as e:
            logger.exception("Cannot connect to LDAP", error=str(e))
            msg = f"Cannot connect to LDAP: {e!s}"
            raise DirectoryConnectionError(msg) from e

    def close(self) -> None:
        if self._conn:
            self._conn.close()
        self._conn = None
        self._client = None

    async def fetch_account_entries(self) -> list[DirectoryEntry]:
        attrs = [self._config.user_name_attr, *ACCOUNT_ATTRIBUTES]
        return await self._query(self._config.user_filter, attrs)

    async def fetch_group_entries(self) -> list[DirectoryEntry]:
        return await self._query(
            self._config.group_filter, list(GROUP_ATTRIBUTES)
        )

    async def fetch_shadow_entries(self) -> list[DirectoryEntry]:
        if not self._config.shadow_filter:
            return []
        attrs = [self._config.user_name_attr, *SHADOW_ATTRIBUTES]
        return await self._query(self._config.shadow_filter, attrs)

    async def _query(
        self, filter_exp: str, attrlist: list[str]
    ) -> list[DirectoryEntry]:
        """Perform an LDAP search of the whole subtree under the base DN.

        Parameters
        ----------
        filter_exp
            Search filter.
        attrlist
            List of attributes to retrieve.

        Returns
        -------
        list of DirectoryEntry
            List of result entries, each of which is a dictionary of the
            requested attributes to a list of their values.

        Raises
        ------
        DirectoryConnectionError
            Raised if the connection is not open or was lost.
        DirectorySearchError
            Raised if the search failed or timed out.
        """
        if not self._conn:
            raise DirectoryConnectionError("Not connected to LDAP server")
        logger = self._logger.bind(
            ldap_attrs=attrlist,
            ldap_base=self._config.base_dn,
            ldap_search=filter_exp,
        )
        timeout = self._config.search_timeout.total_seconds()
        try:
            logger.debug("Querying LDAP")
            results = await self._conn.search(
                base=self._config.base_dn,
                scope=LDAPSearchScope.SUB,
                filter_exp=filter_exp,
                attrlist=attrlist,
                timeout=timeout,
            )
        except bonsai.ConnectionError as e:
            logger.exception("Lost connection to LDAP", error=str(e))
            msg = f"Lost connection to LDAP: {e!s}"
            raise DirectoryConnectionError(msg) from e
        except (bonsai.LDAPError, TimeoutError) as e:
            logger.exception("Cannot query LDAP", error=str(e))
            msg = f"Error querying LDAP with {filter_exp}: {e!s}"
            raise DirectorySearchError(msg) from e
        logger.debug("LDAP search complete", count=len(results))
        return [
            {str(k): list(v) for k, v in r.items() if str(k).lower() != "dn"}
            for r in results
        ]
