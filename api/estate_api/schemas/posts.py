from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from estate_api.schemas.base import CamelModel
from estate_api.services.lifecycle import ListingStatus, PostRecord

PostType = Literal["ban", "cho-thue"]


class PostOut(CamelModel):
    id: str
    author_id: str
    title: str
    status: ListingStatus
    description: str | None = None
    content: str | None = None
    price: float | None = None
    area: float | None = None
    address: str | None = None
    category: str | None = None
    post_type: str | None = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    package_id: str | None = None
    package_duration: int | None = None
    original_package_duration: int | None = None
    expired_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejected_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: PostRecord) -> PostOut:
        return cls(**asdict(record))


class PostCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    content: str | None = None
    price: float | None = Field(default=None, ge=0)
    area: float | None = Field(default=None, ge=0)
    address: str | None = None
    category: str | None = None
    post_type: PostType | None = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    package_id: str | None = None
    draft: bool = False

    def listing_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude={"package_id", "draft"})


class PostUpdateRequest(CamelModel):
    """Owner-editable fields; anything not sent is left unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    content: str | None = None
    price: float | None = Field(default=None, ge=0)
    area: float | None = Field(default=None, ge=0)
    address: str | None = None
    images: list[str] | None = None
    tags: list[str] | None = None

    def updates(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class PostExtendRequest(CamelModel):
    package_id: str = Field(min_length=1)


class PostRejectRequest(CamelModel):
    reason: str


class PostStatusRequest(CamelModel):
    status: str
    reason: str | None = None


class PostData(CamelModel):
    post: PostOut


class PostActionResponse(CamelModel):
    success: bool = True
    message: str
    data: PostData


class PostDetailResponse(CamelModel):
    success: bool = True
    data: PostData


class PostListData(CamelModel):
    posts: list[PostOut]
    limit: int
    offset: int


class PostListResponse(CamelModel):
    success: bool = True
    data: PostListData
