"""Constants for nsscache-http."""

from datetime import timedelta

__all__ = [
    "ACCOUNT_ATTRIBUTES",
    "CONFIG_PATH",
    "DEFAULT_CACHE_TTL",
    "DEFAULT_LDAP_TIMEOUT",
    "DEFAULT_REFRESH_TIMEOUT",
    "GROUP_ATTRIBUTES",
    "LOCKED_PASSWORD",
    "PASSWORD_PLACEHOLDER",
    "SHADOW_ATTRIBUTES",
    "SHADOW_DEFAULTS",
    "STALE_TTL_MULTIPLE",
    "UNSET",
]

CONFIG_PATH = "/etc/nsscache-http/config.yaml"
"""Default configuration path."""

DEFAULT_CACHE_TTL = timedelta(minutes=5)
"""Default interval between cache refreshes."""

DEFAULT_LDAP_TIMEOUT = timedelta(seconds=30)
"""Default timeout for a single LDAP search."""

DEFAULT_REFRESH_TIMEOUT = timedelta(minutes=2)
"""Default deadline for one complete refresh cycle.

This covers connecting, binding, all three searches, and mapping the results.
A cycle that takes longer is abandoned and the previous snapshot is kept.
"""

STALE_TTL_MULTIPLE = 3
"""Number of refresh intervals after which the cache is reported stale."""

PASSWORD_PLACEHOLDER = "x"
"""Password field of passwd and group lines.

The real password hash, if any, is only served in the shadow map.
"""

LOCKED_PASSWORD = "!"
"""Password hash used in the shadow map for entries without a hash."""

UNSET = -1
"""Value of a numeric shadow field that is not set.

Rendered as an empty field in the flat shadow format and as ``null`` in JSON.
"""

ACCOUNT_ATTRIBUTES = (
    "uidNumber",
    "gidNumber",
    "cn",
    "gecos",
    "homeDirectory",
    "loginShell",
)
"""Attributes retrieved for accounts, in addition to the username attribute."""

GROUP_ATTRIBUTES = ("cn", "gidNumber", "memberUid", "member")
"""Attributes retrieved for groups."""

SHADOW_DEFAULTS = {
    "shadowLastChange": 0,
    "shadowMin": 0,
    "shadowMax": 99999,
    "shadowWarning": 7,
    "shadowInactive": UNSET,
    "shadowExpire": UNSET,
    "shadowFlag": UNSET,
}
"""Numeric shadow attributes and the value used if missing or invalid."""

SHADOW_ATTRIBUTES = ("userPassword", *SHADOW_DEFAULTS)
"""Attributes retrieved for shadow entries, besides the username attribute."""
