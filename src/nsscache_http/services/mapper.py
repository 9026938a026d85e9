"""Conversion of raw LDAP entries to NSS map entries."""

from __future__ import annotations

import re
from collections.abc import Iterable

import bonsai
from structlog.stdlib import BoundLogger

from ..constants import LOCKED_PASSWORD, SHADOW_DEFAULTS
from ..models.nss import AccountRecord, GroupRecord, ShadowRecord
from ..storage.base import DirectoryEntry

_CRYPT_PREFIX = re.compile(r"^\{crypt\}", re.IGNORECASE)
"""Scheme prefix of crypt(3) hashes stored in ``userPassword``."""

__all__ = ["RecordMapper"]


class _Entry:
    """Case-insensitive view of the attributes of a raw LDAP entry."""

    def __init__(self, entry: DirectoryEntry) -> None:
        self._attrs = {k.lower(): v for k, v in entry.items()}

    def values(self, attr: str) -> list[str]:
        """Return all values of an attribute, decoded to strings."""
        values = self._attrs.get(attr.lower(), [])
        return [
            v.decode(errors="replace") if isinstance(v, bytes) else str(v)
            for v in values
        ]

    def first(self, attr: str) -> str:
        """Return the first value of an attribute or the empty string."""
        values = self.values(attr)
        return values[0] if values else ""


def _parse_id(value: str) -> int | None:
    """Parse a UID or GID, returning `None` unless it is a positive integer."""
    try:
        number = int(value)
    except ValueError:
        return None
    return number if number > 0 else None


class RecordMapper:
    """Convert raw LDAP search results into passwd, group, and shadow entries.

    Invalid entries are skipped with a warning rather than failing the whole
    conversion, so that one broken entry in LDAP does not prevent refreshing
    the cache for everyone else. The mapper makes no network calls and has no
    state, so mapping the same entries always produces the same result.

    Parameters
    ----------
    user_name_attr
        Attribute holding usernames, both in account and shadow entries and
        as the RDN attribute of DNs in the ``member`` attribute of groups.
    logger
        Logger for skipped entries.
    """

    def __init__(self, *, user_name_attr: str, logger: BoundLogger) -> None:
        self._user_name_attr = user_name_attr
        self._logger = logger

    def map_accounts(
        self, entries: Iterable[DirectoryEntry]
    ) -> list[AccountRecord]:
        """Convert account entries to passwd entries.

        Entries whose ``uidNumber`` or ``gidNumber`` is missing, not a
        number, or zero are skipped. The GECOS field is taken from ``gecos``
        if set and otherwise from ``cn``.

        Parameters
        ----------
        entries
            Raw account entries.

        Returns
        -------
        list of AccountRecord
            Valid entries in the order of the input.
        """
        accounts = []
        for raw in entries:
            entry = _Entry(raw)
            name = entry.first(self._user_name_attr)
            uid = _parse_id(entry.first("uidNumber"))
            if not uid:
                msg = f"Invalid or zero uidNumber for user {name}, ignoring"
                self._logger.warning(msg, uid=entry.first("uidNumber"))
                continue
            gid = _parse_id(entry.first("gidNumber"))
            if not gid:
                msg = f"Invalid or zero gidNumber for user {name}, ignoring"
                self._logger.warning(msg, gid=entry.first("gidNumber"))
                continue
            account = AccountRecord(
                name=name,
                uid=uid,
                gid=gid,
                gecos=entry.first("gecos") or entry.first("cn"),
                dir=entry.first("homeDirectory"),
                shell=entry.first("loginShell"),
            )
            accounts.append(account)
        return accounts

    def map_groups(
        self, entries: Iterable[DirectoryEntry]
    ) -> list[GroupRecord]:
        """Convert group entries to group map entries.

        Entries whose ``gidNumber`` is missing, not a number, or zero are
        skipped. Members are the usernames in ``memberUid`` followed by the
        usernames extracted from the DNs in ``member``. Member DNs that
        cannot be parsed or have no username component are ignored. Members
        are not checked against the account entries.

        Parameters
        ----------
        entries
            Raw group entries.

        Returns
        -------
        list of GroupRecord
            Valid entries in the order of the input.
        """
        groups = []
        for raw in entries:
            entry = _Entry(raw)
            name = entry.first("cn")
            gid = _parse_id(entry.first("gidNumber"))
            if not gid:
                msg = f"Invalid or zero gidNumber for group {name}, ignoring"
                self._logger.warning(msg, gid=entry.first("gidNumber"))
                continue
            members = entry.values("memberUid")
            for dn in entry.values("member"):
                username = self._username_from_dn(dn)
                if username:
                    members.append(username)
                else:
                    msg = f"No username in member DN of group {name}, ignoring"
                    self._logger.debug(msg, dn=dn)
            groups.append(GroupRecord(name=name, gid=gid, members=members))
        return groups

    def map_shadow(
        self, entries: Iterable[DirectoryEntry]
    ) -> list[ShadowRecord]:
        """Convert shadow entries to shadow map entries.

        Entries without a password hash get a locked password. Numeric
        fields that are missing or not a number get their default value.
        No entry is ever skipped.

        Parameters
        ----------
        entries
            Raw shadow entries.

        Returns
        -------
        list of ShadowRecord
            Entries in the order of the input.
        """
        records = []
        for raw in entries:
            entry = _Entry(raw)
            name = entry.first(self._user_name_attr)
            password = _CRYPT_PREFIX.sub("", entry.first("userPassword"))
            numbers = []
            for attr, default in SHADOW_DEFAULTS.items():
                try:
                    numbers.append(int(entry.first(attr)))
                except ValueError:
                    numbers.append(default)
            lastchg, min_days, max_days, warn, inactive, expire, flag = numbers
            record = ShadowRecord(
                name=name,
                passwd=password or LOCKED_PASSWORD,
                lastchg=lastchg,
                min=min_days,
                max=max_days,
                warn=warn,
                inactive=inactive,
                expire=expire,
                flag=flag,
            )
            records.append(record)
        return records

    def _username_from_dn(self, dn: str) -> str | None:
        """Extract the username from a DN.

        Parameters
        ----------
        dn
            DN such as ``uid=someuser,cn=users,dc=example,dc=com``.

        Returns
        -------
        str or None
            Value of the first RDN component whose attribute is the username
            attribute, or `None` if the DN is invalid or has no such
            component.
        """
        try:
            parsed = bonsai.LDAPDN(dn)
        except bonsai.InvalidDN:
            return None
        attr = self._user_name_attr.lower()
        for rdn in parsed.rdns:
            for rdn_attr, value in rdn:
                if rdn_attr.lower() == attr:
                    return value
        return None
