"""Base class for directory clients."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from collections.abc import Mapping, Sequence

from pydantic import SecretStr

__all__ = ["DirectoryClient", "DirectoryEntry"]

DirectoryEntry = Mapping[str, Sequence[str | bytes]]
"""One search result: attribute names mapped to their list of values."""


class DirectoryClient(metaclass=ABCMeta):
    """Abstract base class for the connection to the directory server.

    A client is used for one refresh at a time: `connect`, `authenticate`,
    any number of searches, and finally `close`. Connections are never
    reused between refreshes.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare a new connection to the directory server.

        Raises
        ------
        DirectoryConnectionError
            Raised if the server could not be reached.
        """

    @abstractmethod
    async def authenticate(
        self, identity: str | None, credential: SecretStr | None
    ) -> None:
        """Bind to the directory server.

        Parameters
        ----------
        identity
            DN to bind as, or `None` for an anonymous bind.
        credential
            Password for ``identity``.

        Raises
        ------
        DirectoryAuthenticationError
            Raised if the server rejected the credentials.
        DirectoryConnectionError
            Raised if the server could not be reached.
        """

    @abstractmethod
    def close(self) -> None:
        """Close the connection, if open. Safe to call at any time."""

    @abstractmethod
    async def fetch_account_entries(self) -> list[DirectoryEntry]:
        """Search for passwd entries.

        Returns
        -------
        list of DirectoryEntry
            Raw account entries in the order returned by the server.

        Raises
        ------
        DirectoryError
            Raised if the search failed.
        """

    @abstractmethod
    async def fetch_group_entries(self) -> list[DirectoryEntry]:
        """Search for group entries.

        Returns
        -------
        list of DirectoryEntry
            Raw group entries in the order returned by the server.

        Raises
        ------
        DirectoryError
            Raised if the search failed.
        """

    @abstractmethod
    async def fetch_shadow_entries(self) -> list[DirectoryEntry]:
        """Search for shadow entries.

        Returns
        -------
        list of DirectoryEntry
            Raw shadow entries in the order returned by the server.

        Raises
        ------
        DirectoryError
            Raised if the search failed.
        """
