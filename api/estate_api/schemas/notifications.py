from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Field

from estate_api.schemas.base import CamelModel

# Every type the shared notifications table may hold; this service emits
# only the variants in NotificationData.
NotificationType = Literal[
    "PAYMENT",
    "POST_APPROVED",
    "POST_REJECTED",
    "POST_EXPIRED",
    "PACKAGE_PURCHASE",
    "SYSTEM",
    "INTEREST",
]


class ActionButton(CamelModel):
    text: str
    link: str
    style: str = "primary"


class PostApprovedData(CamelModel):
    type: Literal["POST_APPROVED"] = "POST_APPROVED"
    post_id: str
    post_title: str
    action_button: ActionButton


class PostRejectedData(CamelModel):
    type: Literal["POST_REJECTED"] = "POST_REJECTED"
    post_id: str
    post_title: str
    reason: str | None = None
    action_button: ActionButton


class PostExpiredData(CamelModel):
    type: Literal["POST_EXPIRED"] = "POST_EXPIRED"
    expired_post_ids: list[str]
    expired_count: int


class PackagePurchaseData(CamelModel):
    type: Literal["PACKAGE_PURCHASE"] = "PACKAGE_PURCHASE"
    order_id: str
    package_name: str
    amount: float
    duration: int


NotificationData = Annotated[
    Union[
        PostApprovedData,
        PostRejectedData,
        PostExpiredData,
        PackagePurchaseData,
    ],
    Field(discriminator="type"),
]


class NotificationOut(CamelModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime


class UnreadCountOut(CamelModel):
    unread_count: int


class MarkAllReadOut(CamelModel):
    updated_count: int


class NotificationListResponse(CamelModel):
    success: bool = True
    data: list[NotificationOut]


class UnreadCountResponse(CamelModel):
    success: bool = True
    data: UnreadCountOut


class MarkReadResponse(CamelModel):
    success: bool = True
    data: NotificationOut


class MarkAllReadResponse(CamelModel):
    success: bool = True
    data: MarkAllReadOut
