from fastapi import APIRouter, Depends, Query

from estate_api.api.deps import get_repository, http_error, require_scopes
from estate_api.core.auth import Principal
from estate_api.core.security import get_current_principal
from estate_api.schemas.notifications import (
    MarkAllReadOut,
    MarkAllReadResponse,
    MarkReadResponse,
    NotificationListResponse,
    NotificationOut,
    UnreadCountOut,
    UnreadCountResponse,
)
from estate_api.services.errors import ServiceError

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    principal: Principal = Depends(get_current_principal),
    repository=Depends(get_repository),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> NotificationListResponse:
    require_scopes(principal, {"notifications:read"})
    try:
        rows = await repository.list_notifications(
            user_id=principal.actor_id,
            unread_only=unread_only,
            limit=limit,
            offset=offset,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return NotificationListResponse(data=[NotificationOut(**row) for row in rows])


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    principal: Principal = Depends(get_current_principal),
    repository=Depends(get_repository),
) -> UnreadCountResponse:
    require_scopes(principal, {"notifications:read"})
    try:
        count = await repository.count_unread_notifications(user_id=principal.actor_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return UnreadCountResponse(data=UnreadCountOut(unread_count=count))


@router.put("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    principal: Principal = Depends(get_current_principal),
    repository=Depends(get_repository),
) -> MarkAllReadResponse:
    require_scopes(principal, {"notifications:read"})
    try:
        updated = await repository.mark_all_notifications_read(user_id=principal.actor_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return MarkAllReadResponse(data=MarkAllReadOut(updated_count=updated))


@router.put("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: str,
    principal: Principal = Depends(get_current_principal),
    repository=Depends(get_repository),
) -> MarkReadResponse:
    require_scopes(principal, {"notifications:read"})
    try:
        row = await repository.mark_notification_read(user_id=principal.actor_id, notification_id=notification_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return MarkReadResponse(data=NotificationOut(**row))
