from datetime import datetime

from pydantic import Field

from estate_api.schemas.base import CamelModel


class SchedulerStatusOut(CamelModel):
    is_running: bool
    tasks_count: int


class ExpiryStatusData(CamelModel):
    scheduler: SchedulerStatusOut
    timestamp: datetime


class ExpiryStatusResponse(CamelModel):
    success: bool = True
    data: ExpiryStatusData


class ExpiryRunData(CamelModel):
    updated_count: int
    message: str
    timestamp: datetime


class ExpiryRunResponse(CamelModel):
    success: bool = True
    message: str
    data: ExpiryRunData


class ExpiryHealthOut(CamelModel):
    active_but_expired: int
    valid_active: int
    needs_attention: bool


class ExpiryStatsData(CamelModel):
    # Keyed by listing status value plus "total".
    post_stats: dict[str, int] = Field(default_factory=dict)
    expiry_status: ExpiryHealthOut
    timestamp: datetime


class ExpiryStatsResponse(CamelModel):
    success: bool = True
    data: ExpiryStatsData
