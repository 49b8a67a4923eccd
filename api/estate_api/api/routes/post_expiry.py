from fastapi import APIRouter, Depends, HTTPException, status

from estate_api.api.deps import get_post_expiry_engine, get_scheduler, http_error, require_scopes
from estate_api.core.auth import Principal
from estate_api.core.security import get_current_principal
from estate_api.jobs.post_expiry import PostExpiryEngine
from estate_api.jobs.scheduler import JobScheduler
from estate_api.schemas.expiry import (
    ExpiryHealthOut,
    ExpiryRunData,
    ExpiryRunResponse,
    ExpiryStatsData,
    ExpiryStatsResponse,
    ExpiryStatusData,
    ExpiryStatusResponse,
    SchedulerStatusOut,
)
from estate_api.services.errors import ServiceError

router = APIRouter()


@router.get("/status", response_model=ExpiryStatusResponse)
async def get_expiry_status(
    principal: Principal = Depends(get_current_principal),
    engine: PostExpiryEngine = Depends(get_post_expiry_engine),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> ExpiryStatusResponse:
    require_scopes(principal, {"dashboard:read"})
    return ExpiryStatusResponse(
        data=ExpiryStatusData(
            scheduler=SchedulerStatusOut(**scheduler.status()),
            timestamp=engine.clock(),
        )
    )


@router.post("/run-check", response_model=ExpiryRunResponse)
async def run_expiry_check(
    principal: Principal = Depends(get_current_principal),
    engine: PostExpiryEngine = Depends(get_post_expiry_engine),
) -> ExpiryRunResponse:
    require_scopes(principal, {"posts:manage"})
    result = await engine.run_manual_check()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.message)
    return ExpiryRunResponse(
        message="Đã kiểm tra tin đăng hết hạn",
        data=ExpiryRunData(updated_count=result.updated_count, message=result.message, timestamp=engine.clock()),
    )


@router.get("/stats", response_model=ExpiryStatsResponse)
async def get_expiry_stats(
    principal: Principal = Depends(get_current_principal),
    engine: PostExpiryEngine = Depends(get_post_expiry_engine),
) -> ExpiryStatsResponse:
    require_scopes(principal, {"dashboard:read"})
    try:
        stats = await engine.get_stats()
    except ServiceError as exc:
        raise http_error(exc) from exc
    return ExpiryStatsResponse(
        data=ExpiryStatsData(
            post_stats=stats["post_stats"],
            expiry_status=ExpiryHealthOut(**stats["expiry_status"]),
            timestamp=stats["timestamp"],
        )
    )
