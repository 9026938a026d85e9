"""Models for health checks."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field

__all__ = [
    "HealthCheck",
    "HealthStatus",
]


class HealthStatus(str, Enum):
    """Status of health check."""

    HEALTHY = "healthy"
    STALE = "stale"


class HealthCheck(BaseModel):
    """Results of an internal health check."""

    status: Annotated[
        HealthStatus,
        Field(
            title="Health status",
            description=(
                "``stale`` if refreshes from LDAP have been failing for longer"
                " than the configured threshold"
            ),
        ),
    ]

    accounts: Annotated[int, Field(title="Number of passwd entries")]

    groups: Annotated[int, Field(title="Number of group entries")]

    shadow: Annotated[int, Field(title="Number of shadow entries")]

    last_fetch: Annotated[
        datetime, Field(title="Time of last successful refresh")
    ]

    cache_age: Annotated[
        str,
        Field(
            title="Age of cached data",
            description="Time since the last successful refresh",
            examples=["1m30s"],
        ),
    ]
