"""Handlers for internal routes used by health checks."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from safir.datetime import current_datetime
from safir.metadata import Metadata, get_metadata
from safir.models import ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler

from ..config import Config
from ..dependencies.cache import snapshot_cache_dependency
from ..dependencies.config import config_dependency
from ..exceptions import CacheNotStartedError
from ..models.health import HealthCheck, HealthStatus
from ..services.snapshot import SnapshotCache
from ..util import format_duration

router = APIRouter(route_class=SlackRouteErrorHandler)

__all__ = ["router"]


@router.get(
    "/",
    description="Return metadata about the running application",
    response_model=Metadata,
    response_model_exclude_none=True,
    summary="Application metadata",
    tags=["internal"],
)
async def get_index() -> Metadata:
    return get_metadata(
        package_name="nsscache-http", application_name="nsscache-http"
    )


@router.get(
    "/health",
    description=(
        "Report the size and age of the cached data. The status is"
        " ``stale`` if the data is older than the configured threshold,"
        " which means refreshes from LDAP have been failing."
    ),
    response_model=HealthCheck,
    responses={503: {"description": "No data", "model": ErrorModel}},
    summary="Health check",
    tags=["internal"],
)
async def get_health(
    *,
    cache: Annotated[SnapshotCache, Depends(snapshot_cache_dependency)],
    config: Annotated[Config, Depends(config_dependency)],
) -> HealthCheck | JSONResponse:
    try:
        stats = cache.stats()
    except CacheNotStartedError as e:
        error = {"msg": str(e), "type": "cache_not_loaded"}
        return JSONResponse(status_code=503, content={"detail": [error]})
    age = current_datetime() - stats.last_fetch
    if age > config.cache.stale_threshold:
        status = HealthStatus.STALE
    else:
        status = HealthStatus.HEALTHY
    return HealthCheck(
        status=status,
        accounts=stats.accounts,
        groups=stats.groups,
        shadow=stats.shadow,
        last_fetch=stats.last_fetch,
        cache_age=format_duration(age),
    )
