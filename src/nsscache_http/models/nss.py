"""Models for NSS map entries."""

from __future__ import annotations

from typing import Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

from ..constants import PASSWORD_PLACEHOLDER, UNSET

__all__ = [
    "AccountRecord",
    "GroupRecord",
    "ShadowRecord",
]


def _split_line(line: str, count: int, kind: str) -> list[str]:
    """Split a flat map line into its fields."""
    fields = line.rstrip("\n").split(":")
    if len(fields) != count:
        msg = f"Invalid {kind} line, expected {count} fields: {line}"
        raise ValueError(msg)
    return fields


class AccountRecord(BaseModel):
    """An entry in the passwd map."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., title="Username", examples=["someuser"])

    passwd: str = Field(
        PASSWORD_PLACEHOLDER,
        title="Password",
        description="Always a placeholder; hashes are only in the shadow map",
        examples=["x"],
    )

    uid: int = Field(..., title="UID number", examples=[4123], ge=1)

    gid: int = Field(..., title="Primary GID", examples=[4123], ge=1)

    gecos: str = Field(
        "", title="GECOS field", examples=["Alice Example"]
    )

    dir: str = Field("", title="Home directory", examples=["/home/someuser"])

    shell: str = Field("", title="Login shell", examples=["/bin/bash"])

    @classmethod
    def from_line(cls, line: str) -> Self:
        """Parse a line in the passwd file format.

        Parameters
        ----------
        line
            Line to parse.

        Returns
        -------
        AccountRecord
            Corresponding record.

        Raises
        ------
        ValueError
            Raised if the line could not be parsed.
        """
        name, passwd, uid, gid, gecos, home, shell = _split_line(
            line, 7, "passwd"
        )
        return cls(
            name=name,
            passwd=passwd,
            uid=int(uid),
            gid=int(gid),
            gecos=gecos,
            dir=home,
            shell=shell,
        )

    def to_line(self) -> str:
        """Format the record as a line in the passwd file format."""
        return (
            f"{self.name}:{self.passwd}:{self.uid}:{self.gid}:{self.gecos}"
            f":{self.dir}:{self.shell}"
        )


class GroupRecord(BaseModel):
    """An entry in the group map."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., title="Group name", examples=["g_special_users"])

    passwd: str = Field(PASSWORD_PLACEHOLDER, title="Password", examples=["x"])

    gid: int = Field(..., title="GID number", examples=[123181], ge=1)

    members: tuple[str, ...] = Field(
        (),
        title="Members",
        description=(
            "Usernames of the members of the group. Usernames listed directly"
            " come first, followed by those extracted from member DNs."
        ),
        examples=[["someuser", "otheruser"]],
    )

    @classmethod
    def from_line(cls, line: str) -> Self:
        """Parse a line in the group file format.

        Parameters
        ----------
        line
            Line to parse.

        Returns
        -------
        GroupRecord
            Corresponding record.

        Raises
        ------
        ValueError
            Raised if the line could not be parsed.
        """
        name, passwd, gid, members = _split_line(line, 4, "group")
        return cls(
            name=name,
            passwd=passwd,
            gid=int(gid),
            members=tuple(members.split(",")) if members else (),
        )

    def to_line(self) -> str:
        """Format the record as a line in the group file format."""
        members = ",".join(self.members)
        return f"{self.name}:{self.passwd}:{self.gid}:{members}"


class ShadowRecord(BaseModel):
    """An entry in the shadow map.

    Numeric fields that are not set are stored as a negative number and are
    rendered as an empty field in the shadow file format and as ``null`` in
    JSON.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., title="Username", examples=["someuser"])

    passwd: str = Field(
        ...,
        title="Password hash",
        description="Password hash, or ``!`` if the account has none",
        examples=["$6$rounds=5000$salt$hash"],
    )

    lastchg: int = Field(
        0,
        title="Last password change",
        description="Date of the last password change, in days since epoch",
        examples=[19000],
    )

    min: int = Field(0, title="Minimum password age in days", examples=[0])

    max: int = Field(
        99999, title="Maximum password age in days", examples=[99999]
    )

    warn: int = Field(7, title="Password warning period", examples=[7])

    inactive: int = Field(
        UNSET, title="Password inactivity period", examples=[None]
    )

    expire: int = Field(
        UNSET,
        title="Account expiration date",
        description="Expiration date in days since epoch",
        examples=[None],
    )

    flag: int = Field(UNSET, title="Reserved flag", examples=[None])

    @field_validator(
        "lastchg",
        "min",
        "max",
        "warn",
        "inactive",
        "expire",
        "flag",
        mode="before",
    )
    @classmethod
    def _validate_unset(cls, v: int | str | None) -> int | str:
        return UNSET if v is None or v == "" else v

    @field_serializer(
        "lastchg", "min", "max", "warn", "inactive", "expire", "flag"
    )
    def _serialize_unset(self, v: int) -> int | None:
        return v if v >= 0 else None

    @classmethod
    def from_line(cls, line: str) -> Self:
        """Parse a line in the shadow file format.

        Parameters
        ----------
        line
            Line to parse. Empty numeric fields are parsed as unset.

        Returns
        -------
        ShadowRecord
            Corresponding record.

        Raises
        ------
        ValueError
            Raised if the line could not be parsed.
        """
        fields = _split_line(line, 9, "shadow")
        name, passwd = fields[:2]
        numbers = [int(f) if f else UNSET for f in fields[2:]]
        lastchg, min_days, max_days, warn, inactive, expire, flag = numbers
        return cls(
            name=name,
            passwd=passwd,
            lastchg=lastchg,
            min=min_days,
            max=max_days,
            warn=warn,
            inactive=inactive,
            expire=expire,
            flag=flag,
        )

    def to_line(self) -> str:
        """Format the record as a line in the shadow file format."""
        numbers = (
            self.lastchg,
            self.min,
            self.max,
            self.warn,
            self.inactive,
            self.expire,
            self.flag,
        )
        fields = [str(n) if n >= 0 else "" for n in numbers]
        return ":".join([self.name, self.passwd, *fields])
