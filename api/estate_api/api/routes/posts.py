from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from estate_api.api.deps import get_post_service, http_error, require_scopes
from estate_api.core.auth import Principal
from estate_api.core.security import get_current_principal
from estate_api.schemas.posts import (
    PostActionResponse,
    PostCreateRequest,
    PostData,
    PostDetailResponse,
    PostExtendRequest,
    PostListData,
    PostListResponse,
    PostOut,
    PostStatusRequest,
    PostUpdateRequest,
)
from estate_api.services.errors import ServiceError
from estate_api.services.lifecycle import ListingStatus, PostRecord
from estate_api.services.posts import PostService

router = APIRouter()


def _action_response(message: str, post: PostRecord) -> PostActionResponse:
    return PostActionResponse(message=message, data=PostData(post=PostOut.from_record(post)))


@router.post("", response_model=PostActionResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    payload: PostCreateRequest,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:write"})
    try:
        post = await service.create(
            author_id=principal.actor_id,
            fields=payload.listing_fields(),
            package_id=payload.package_id,
            as_draft=payload.draft,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _action_response("Tạo tin đăng thành công, đang chờ duyệt", post)


@router.get("/my", response_model=PostListResponse)
async def list_my_posts(
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> PostListResponse:
    require_scopes(principal, {"posts:write"})
    try:
        posts = await service.list_mine(author_id=principal.actor_id, status=status_filter, limit=limit, offset=offset)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return PostListResponse(
        data=PostListData(posts=[PostOut.from_record(post) for post in posts], limit=limit, offset=offset)
    )


@router.get("/{post_id}", response_model=PostDetailResponse)
async def get_post(
    post_id: str,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostDetailResponse:
    try:
        post = await service.get(post_id)
    except ServiceError as exc:
        raise http_error(exc) from exc

    # Non-public listings are only visible to their owner and to moderators.
    visible = (
        post.status == ListingStatus.ACTIVE
        or post.author_id == principal.actor_id
        or principal.has_scope("posts:manage")
    )
    if not visible:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="post not found")
    return PostDetailResponse(data=PostData(post=PostOut.from_record(post)))


@router.put("/{post_id}", response_model=PostActionResponse)
async def update_post(
    post_id: str,
    payload: PostUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:write"})
    try:
        post = await service.update(post_id, actor_id=principal.actor_id, updates=payload.updates())
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _action_response("Cập nhật tin đăng thành công, tin đăng sẽ được duyệt lại", post)


@router.put("/{post_id}/resubmit", response_model=PostActionResponse)
async def resubmit_post(
    post_id: str,
    payload: PostUpdateRequest | None = Body(default=None),
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:write"})
    updates = payload.updates() if payload is not None else {}
    try:
        post = await service.resubmit(post_id, actor_id=principal.actor_id, updates=updates)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _action_response("Gửi lại tin đăng thành công, đang chờ duyệt", post)


@router.post("/{post_id}/extend", response_model=PostActionResponse)
async def extend_post(
    post_id: str,
    payload: PostExtendRequest,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:write"})
    try:
        post = await service.extend(post_id, actor_id=principal.actor_id, package_id=payload.package_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _action_response("Gia hạn tin đăng thành công", post)


@router.delete("/{post_id}", response_model=PostActionResponse)
async def delete_post(
    post_id: str,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:write"})
    try:
        post = await service.delete(
            post_id,
            actor_id=principal.actor_id,
            can_moderate=principal.has_scope("posts:manage"),
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _action_response("Xóa tin đăng thành công", post)


@router.patch("/{post_id}/status", response_model=PostActionResponse)
async def change_post_status(
    post_id: str,
    payload: PostStatusRequest,
    principal: Principal = Depends(get_current_principal),
    service: PostService = Depends(get_post_service),
) -> PostActionResponse:
    require_scopes(principal, {"posts:manage"})
    try:
        post = await service.change_status(
            post_id,
            actor_id=principal.actor_id,
            status=payload.status,
            reason=payload.reason,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _action_response("Cập nhật trạng thái tin đăng thành công", post)
