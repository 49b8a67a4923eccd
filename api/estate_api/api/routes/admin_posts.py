from fastapi import APIRouter, Depends

from estate_api.api.deps import get_post_service, http_error, require_scopes
from estate_api.core.auth import Principal
from estate_api.core.security import get_current_principal
from estate_api.schemas.posts import PostActionResponse, PostData, PostOut, PostRejectRequest
from estate_api.services.errors import ServiceError
from estate_api.services.posts import PostService

router = APIRouter()


@router.put("/{post_id}/approve", response_model=PostActionResponse)
async def approve_post(
    post_id: str,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:manage"})
    try:
        post = await service.approve(post_id, actor_id=principal.actor_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return PostActionResponse(message="Duyệt tin đăng thành công", data=PostData(post=PostOut.from_record(post)))


@router.put("/{post_id}/reject", response_model=PostActionResponse)
async def reject_post(
    post_id: str,
    payload: PostRejectRequest,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:manage"})
    try:
        post = await service.reject(post_id, actor_id=principal.actor_id, reason=payload.reason)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return PostActionResponse(message="Từ chối tin đăng thành công", data=PostData(post=PostOut.from_record(post)))
