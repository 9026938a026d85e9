"""Exceptions for nsscache-http."""

from __future__ import annotations

from safir.slack.blockkit import SlackException

__all__ = [
    "CacheNotStartedError",
    "CacheStateError",
    "DirectoryAuthenticationError",
    "DirectoryConnectionError",
    "DirectoryError",
    "DirectorySearchError",
    "DirectoryTimeoutError",
    "EmptyResultError",
]


class DirectoryError(SlackException):
    """Retrieving data from the directory server failed.

    This is the base exception for every error that aborts a refresh cycle.
    The cache catches it in the background refresh loop, logs it, optionally
    reports it to Slack, and keeps serving the previous snapshot.
    """


class DirectoryConnectionError(DirectoryError):
    """Unable to connect to the directory server."""


class DirectoryAuthenticationError(DirectoryError):
    """The directory server rejected the bind credentials."""


class DirectorySearchError(DirectoryError):
    """A search of the directory server failed."""


class DirectoryTimeoutError(DirectoryError):
    """A refresh cycle did not complete before its deadline."""


class EmptyResultError(DirectorySearchError):
    """A search that must return entries returned none.

    An empty account or group search almost always means a misconfigured
    filter or a directory server in a broken state, so it is treated as a
    failed refresh rather than published as an empty map.

    Parameters
    ----------
    kind
        Kind of entries that were requested (``accounts`` or ``groups``).
    """

    def __init__(self, kind: str) -> None:
        super().__init__(f"LDAP search for {kind} returned no entries")
        self.kind = kind


class CacheNotStartedError(Exception):
    """The cache was read before any refresh succeeded."""


class CacheStateError(Exception):
    """The cache lifecycle methods were called in an invalid order."""
