from __future__ import annotations

import logging
from typing import Any, Protocol

from estate_api.core.clock import Clock, utc_now
from estate_api.services import lifecycle
from estate_api.services.errors import ForbiddenError, NotFoundError
from estate_api.services.lifecycle import (
    DEFAULT_PACKAGE_DURATION_DAYS,
    ListingStatus,
    PackageRecord,
    PostRecord,
)
from estate_api.services.notifications import NotificationService
from estate_api.services.repository import PostEvent, WalletCharge

logger = logging.getLogger(__name__)


class PostStore(Protocol):
    async def get_post(self, post_id: str) -> PostRecord: ...

    async def list_posts_by_author(
        self,
        *,
        author_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[PostRecord]: ...

    async def create_post(
        self,
        *,
        author_id: str,
        fields: dict[str, Any],
        status: ListingStatus,
        package_id: str | None,
        package_duration: int | None,
    ) -> PostRecord: ...

    async def save_post(
        self,
        post: PostRecord,
        *,
        expected_status: ListingStatus,
        event: PostEvent,
        charge: WalletCharge | None = None,
    ) -> PostRecord: ...

    async def get_package(self, package_id: str) -> PackageRecord | None: ...


class PostService:
    """Synchronous listing actions for owners and moderators.

    Each action loads the post, applies a transition from
    :mod:`estate_api.services.lifecycle` and saves it conditionally on the
    status that was read, so a concurrent change (including an expiry tick)
    surfaces as ``ConflictError`` instead of being overwritten.
    """

    def __init__(
        self,
        repository: PostStore,
        notifications: NotificationService,
        *,
        clock: Clock = utc_now,
        default_duration_days: int = DEFAULT_PACKAGE_DURATION_DAYS,
    ) -> None:
        self.repository = repository
        self.notifications = notifications
        self.clock = clock
        self.default_duration_days = default_duration_days

    async def create(
        self,
        *,
        author_id: str,
        fields: dict[str, Any],
        package_id: str | None = None,
        as_draft: bool = False,
    ) -> PostRecord:
        lifecycle.require_title(fields.get("title"))
        package_duration: int | None = None
        if package_id:
            package = await self._require_active_package(package_id)
            package_duration = package.duration_days

        status = ListingStatus.DRAFT if as_draft else ListingStatus.PENDING
        post = await self.repository.create_post(
            author_id=author_id,
            fields=fields,
            status=status,
            package_id=package_id,
            package_duration=package_duration,
        )
        logger.info("post created post_id=%s author_id=%s status=%s", post.id, author_id, status.value)
        return post

    async def get(self, post_id: str) -> PostRecord:
        return await self.repository.get_post(post_id)

    async def list_mine(
        self,
        *,
        author_id: str,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[PostRecord]:
        if status is not None:
            status = lifecycle.coerce_listing_status(status).value
        return await self.repository.list_posts_by_author(
            author_id=author_id,
            status=status,
            limit=limit,
            offset=offset,
        )

    async def update(self, post_id: str, *, actor_id: str, updates: dict[str, Any]) -> PostRecord:
        post = await self._load_owned(post_id, actor_id)
        edited = lifecycle.apply_owner_edit(post, updates, now=self.clock())
        return await self._save(
            edited,
            expected_status=post.status,
            event=PostEvent(
                event_type="owner_edited",
                actor_id=actor_id,
                payload={"from_status": post.status.value, "to_status": edited.status.value},
            ),
        )

    async def resubmit(self, post_id: str, *, actor_id: str, updates: dict[str, Any]) -> PostRecord:
        post = await self._load_owned(post_id, actor_id)
        resubmitted = lifecycle.resubmit(post, updates, now=self.clock())
        return await self._save(
            resubmitted,
            expected_status=post.status,
            event=PostEvent(
                event_type="resubmitted",
                actor_id=actor_id,
                payload={"from_status": post.status.value},
            ),
        )

    async def extend(self, post_id: str, *, actor_id: str, package_id: str) -> PostRecord:
        post = await self._load_owned(post_id, actor_id)
        package = await self._require_active_package(package_id)
        now = self.clock()
        extended = lifecycle.extend(post, package=package, now=now)

        order_id = f"EXTEND_{int(now.timestamp() * 1000)}_{post.id[-6:]}"
        saved = await self._save(
            extended,
            expected_status=post.status,
            event=PostEvent(
                event_type="extended",
                actor_id=actor_id,
                payload={
                    "package_id": package.id,
                    "duration_days": package.duration_days,
                    "previous_expired_at": post.expired_at.isoformat() if post.expired_at else None,
                    "order_id": order_id,
                },
            ),
            charge=WalletCharge(
                user_id=actor_id,
                amount=package.price,
                order_id=order_id,
                description=f"Gia hạn tin đăng với gói {package.name}",
                metadata={"type": "post_extend", "package_id": package.id, "post_id": post.id},
            ),
        )
        await self.notifications.create_post_extended(
            actor_id,
            order_id=order_id,
            package_name=package.name,
            amount=package.price,
            duration=package.duration_days,
        )
        return saved

    async def approve(self, post_id: str, *, actor_id: str) -> PostRecord:
        post = await self.repository.get_post(post_id)
        return await self._approve_loaded(post, actor_id=actor_id)

    async def reject(self, post_id: str, *, actor_id: str, reason: str | None) -> PostRecord:
        post = await self.repository.get_post(post_id)
        return await self._reject_loaded(post, actor_id=actor_id, reason=reason)

    async def change_status(
        self,
        post_id: str,
        *,
        actor_id: str,
        status: str,
        reason: str | None = None,
    ) -> PostRecord:
        target = lifecycle.coerce_listing_status(status)
        post = await self.repository.get_post(post_id)
        if target == ListingStatus.ACTIVE:
            return await self._approve_loaded(post, actor_id=actor_id)
        if target == ListingStatus.REJECTED:
            return await self._reject_loaded(post, actor_id=actor_id, reason=reason)

        changed = lifecycle.set_status(post, target, now=self.clock())
        if changed is post:
            return post
        return await self._save(
            changed,
            expected_status=post.status,
            event=PostEvent(
                event_type="status_changed",
                actor_id=actor_id,
                payload={"from_status": post.status.value, "to_status": target.value, "reason": reason},
            ),
        )

    async def delete(self, post_id: str, *, actor_id: str, can_moderate: bool = False) -> PostRecord:
        post = await self.repository.get_post(post_id)
        if post.author_id != actor_id and not can_moderate:
            raise ForbiddenError("only the owner or a moderator can delete this post")
        deleted = lifecycle.mark_deleted(post, now=self.clock())
        return await self._save(
            deleted,
            expected_status=post.status,
            event=PostEvent(
                event_type="deleted",
                actor_id=actor_id,
                payload={"from_status": post.status.value},
            ),
        )

    async def _approve_loaded(self, post: PostRecord, *, actor_id: str) -> PostRecord:
        package = await self.repository.get_package(post.package_id) if post.package_id else None
        duration_days = lifecycle.resolve_duration_days(post, package, default_days=self.default_duration_days)
        approved = lifecycle.approve(post, actor_id=actor_id, now=self.clock(), duration_days=duration_days)
        saved = await self._save(
            approved,
            expected_status=post.status,
            event=PostEvent(
                event_type="approved",
                actor_id=actor_id,
                payload={
                    "from_status": post.status.value,
                    "expired_at": approved.expired_at.isoformat() if approved.expired_at else None,
                },
            ),
        )
        await self.notifications.create_post_approved(
            saved.author_id,
            post_id=saved.id,
            post_title=saved.title,
            post_type=saved.post_type,
        )
        return saved

    async def _reject_loaded(self, post: PostRecord, *, actor_id: str, reason: str | None) -> PostRecord:
        rejected = lifecycle.reject(post, actor_id=actor_id, reason=reason, now=self.clock())
        saved = await self._save(
            rejected,
            expected_status=post.status,
            event=PostEvent(
                event_type="rejected",
                actor_id=actor_id,
                payload={"from_status": post.status.value, "reason": rejected.rejected_reason},
            ),
        )
        await self.notifications.create_post_rejected(
            saved.author_id,
            post_id=saved.id,
            post_title=saved.title,
            reason=saved.rejected_reason,
        )
        return saved

    async def _save(
        self,
        post: PostRecord,
        *,
        expected_status: ListingStatus,
        event: PostEvent,
        charge: WalletCharge | None = None,
    ) -> PostRecord:
        saved = await self.repository.save_post(post, expected_status=expected_status, event=event, charge=charge)
        logger.info(
            "post transition post_id=%s event=%s from=%s to=%s actor_id=%s",
            saved.id,
            event.event_type,
            expected_status.value,
            saved.status.value,
            event.actor_id,
        )
        return saved

    async def _load_owned(self, post_id: str, actor_id: str) -> PostRecord:
        post = await self.repository.get_post(post_id)
        if post.author_id != actor_id:
            raise ForbiddenError("you do not have permission to modify this post")
        return post

    async def _require_active_package(self, package_id: str) -> PackageRecord:
        package = await self.repository.get_package(package_id)
        if package is None or not package.is_active:
            raise NotFoundError("package not found or inactive")
        return package
