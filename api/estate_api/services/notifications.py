from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Sequence
from typing import Any, Protocol

from estate_api.schemas.notifications import (
    ActionButton,
    NotificationData,
    PackagePurchaseData,
    PostApprovedData,
    PostExpiredData,
    PostRejectedData,
)

logger = logging.getLogger(__name__)

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_SPACE_RE = re.compile(r"\s+")
_SLUG_DASH_RE = re.compile(r"-+")


class NotificationSink(Protocol):
    async def insert_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> dict[str, Any]: ...


def slugify(text: str | None) -> str:
    if not text:
        return ""
    lowered = text.lower().replace("đ", "d")
    decomposed = unicodedata.normalize("NFD", lowered)
    ascii_only = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = _SLUG_STRIP_RE.sub("", ascii_only)
    dashed = _SLUG_SPACE_RE.sub("-", cleaned.strip())
    return _SLUG_DASH_RE.sub("-", dashed).strip("-")


def build_post_url(post_id: str, title: str | None, post_type: str | None = None) -> str:
    transaction_type = "mua-ban" if post_type == "ban" else "cho-thue"
    title_slug = slugify(title)
    id_slug = f"{post_id}-{title_slug}" if title_slug else post_id
    return f"/{transaction_type}/chi-tiet/{id_slug}"


class NotificationService:
    """Write-only notification emitter.

    Every public method is fire-and-forget: store failures are logged and
    swallowed so the state change that triggered the notification stands.
    """

    def __init__(self, sink: NotificationSink) -> None:
        self.sink = sink

    async def create_notification(
        self,
        *,
        user_id: str,
        title: str,
        message: str,
        data: NotificationData,
    ) -> None:
        try:
            await self.sink.insert_notification(
                user_id=user_id,
                type=data.type,
                title=title,
                message=message,
                data=data.model_dump(mode="json", by_alias=True),
            )
        except Exception:
            logger.exception("notification create failed user_id=%s type=%s", user_id, data.type)
            return
        logger.info("notification created user_id=%s type=%s title=%s", user_id, data.type, title)

    async def create_post_approved(
        self,
        user_id: str,
        *,
        post_id: str,
        post_title: str,
        post_type: str | None = None,
    ) -> None:
        await self.create_notification(
            user_id=user_id,
            title="Tin đăng được duyệt",
            message=(
                f'Tin đăng "{post_title}" của bạn đã được duyệt và hiển thị công khai. '
                "Khách hàng có thể xem và liên hệ với bạn."
            ),
            data=PostApprovedData(
                post_id=post_id,
                post_title=post_title,
                action_button=ActionButton(
                    text="Xem tin đăng",
                    link=build_post_url(post_id, post_title, post_type),
                ),
            ),
        )

    async def create_post_rejected(
        self,
        user_id: str,
        *,
        post_id: str,
        post_title: str,
        reason: str | None,
    ) -> None:
        if reason:
            message = (
                f'Tin đăng "{post_title}" của bạn đã bị từ chối. Lý do: {reason}. '
                "Vui lòng chỉnh sửa và gửi lại."
            )
        else:
            message = (
                f'Tin đăng "{post_title}" của bạn đã bị từ chối. '
                "Vui lòng kiểm tra và chỉnh sửa lại nội dung."
            )
        await self.create_notification(
            user_id=user_id,
            title="Tin đăng bị từ chối",
            message=message,
            data=PostRejectedData(
                post_id=post_id,
                post_title=post_title,
                reason=reason,
                action_button=ActionButton(
                    text="Chỉnh sửa tin",
                    link=f"/nguoi-dung/tin-dang/chinh-sua/{post_id}",
                    style="warning",
                ),
            ),
        )

    async def create_posts_expired(self, user_id: str, *, posts: Sequence[tuple[str, str]]) -> None:
        """One aggregate notice for all of an owner's posts expired in a tick.

        ``posts`` holds ``(post_id, title)`` pairs.
        """
        if not posts:
            return
        if len(posts) == 1:
            message = f'Bài đăng "{posts[0][1]}" của bạn đã hết hạn'
        else:
            titles = ", ".join(title for _, title in posts)
            message = f"{len(posts)} bài đăng của bạn đã hết hạn: {titles}"
        await self.create_notification(
            user_id=user_id,
            title="Bài đăng đã hết hạn",
            message=message,
            data=PostExpiredData(
                expired_post_ids=[post_id for post_id, _ in posts],
                expired_count=len(posts),
            ),
        )

    async def create_post_extended(
        self,
        user_id: str,
        *,
        order_id: str,
        package_name: str,
        amount: float,
        duration: int,
    ) -> None:
        await self.create_notification(
            user_id=user_id,
            title="Gia hạn tin đăng thành công",
            message=(
                f'Bạn đã gia hạn tin đăng với gói "{package_name}" giá {amount:,.0f} VND. '
                f"Gói có hiệu lực {duration} ngày."
            ),
            data=PackagePurchaseData(
                order_id=order_id,
                package_name=package_name,
                amount=amount,
                duration=duration,
            ),
        )
