"""Handlers for the NSS map routes."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from email.utils import format_datetime
from typing import Annotated, Protocol

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from safir.dependencies.logger import logger_dependency
from safir.slack.webhook import SlackRouteErrorHandler
from structlog.stdlib import BoundLogger

from ..dependencies.cache import snapshot_cache_dependency
from ..models.nss import AccountRecord, GroupRecord, ShadowRecord
from ..services.snapshot import SnapshotCache

router = APIRouter(route_class=SlackRouteErrorHandler)

__all__ = ["router"]


class _Line(Protocol):
    def to_line(self) -> str: ...


def _flat_response(
    records: Iterable[_Line], fetched_at: datetime
) -> PlainTextResponse:
    """Render records as a flat map file."""
    content = "".join(f"{r.to_line()}\n" for r in records)
    headers = {"Last-Modified": format_datetime(fetched_at, usegmt=True)}
    return PlainTextResponse(content, headers=headers)


@router.get(
    "/passwd",
    description="Return the passwd map in the passwd file format",
    response_class=PlainTextResponse,
    summary="passwd map",
    tags=["nss"],
)
async def get_passwd(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
    logger: Annotated[BoundLogger, Depends(logger_dependency)],
) -> PlainTextResponse:
    snapshot = cache.snapshot()
    logger.debug("Returning passwd map", count=len(snapshot.accounts))
    return _flat_response(snapshot.accounts, snapshot.fetched_at)


@router.get(
    "/passwd.json",
    description="Return the passwd map as a list of JSON objects",
    response_model=list[AccountRecord],
    summary="passwd map as JSON",
    tags=["nss"],
)
async def get_passwd_json(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
) -> list[AccountRecord]:
    return list(cache.snapshot().accounts)


@router.get(
    "/group",
    description="Return the group map in the group file format",
    response_class=PlainTextResponse,
    summary="group map",
    tags=["nss"],
)
async def get_group(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
    logger: Annotated[BoundLogger, Depends(logger_dependency)],
) -> PlainTextResponse:
    snapshot = cache.snapshot()
    logger.debug("Returning group map", count=len(snapshot.groups))
    return _flat_response(snapshot.groups, snapshot.fetched_at)


@router.get(
    "/group.json",
    description="Return the group map as a list of JSON objects",
    response_model=list[GroupRecord],
    summary="group map as JSON",
    tags=["nss"],
)
async def get_group_json(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
) -> list[GroupRecord]:
    return list(cache.snapshot().groups)


@router.get(
    "/shadow",
    description=(
        "Return the shadow map in the shadow file format. Unset numeric"
        " fields are empty."
    ),
    response_class=PlainTextResponse,
    summary="shadow map",
    tags=["nss"],
)
async def get_shadow(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
    logger: Annotated[BoundLogger, Depends(logger_dependency)],
) -> PlainTextResponse:
    snapshot = cache.snapshot()
    logger.debug("Returning shadow map", count=len(snapshot.shadow))
    return _flat_response(snapshot.shadow, snapshot.fetched_at)


@router.get(
    "/shadow.json",
    description=(
        "Return the shadow map as a list of JSON objects. Unset numeric"
        " fields are null."
    ),
    response_model=list[ShadowRecord],
    summary="shadow map as JSON",
    tags=["nss"],
)
async def get_shadow_json(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
) -> list[ShadowRecord]:
    return list(cache.snapshot().shadow)
