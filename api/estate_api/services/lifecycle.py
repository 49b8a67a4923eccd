"""Listing and payment state machines.

Transitions are pure functions: they take the current record plus the acting
context and return a new record, or raise a typed service error when the
transition is not valid from the record's current status. Persistence and
notification are the caller's concern.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from estate_api.services.errors import ConflictError, ValidationFailedError

DEFAULT_PACKAGE_DURATION_DAYS = 30


class ListingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    DELETED = "deleted"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Moderator-driven transitions. The expiry engine performs active -> expired
# and owners reach pending through edit/resubmit; both are checked separately.
ADMIN_STATUS_TRANSITIONS: dict[ListingStatus, set[ListingStatus]] = {
    ListingStatus.DRAFT: {ListingStatus.PENDING, ListingStatus.DELETED},
    ListingStatus.PENDING: {
        ListingStatus.ACTIVE,
        ListingStatus.REJECTED,
        ListingStatus.INACTIVE,
        ListingStatus.DELETED,
    },
    ListingStatus.ACTIVE: {
        ListingStatus.INACTIVE,
        ListingStatus.REJECTED,
        ListingStatus.EXPIRED,
        ListingStatus.DELETED,
    },
    ListingStatus.REJECTED: {ListingStatus.PENDING, ListingStatus.ACTIVE, ListingStatus.DELETED},
    ListingStatus.EXPIRED: {ListingStatus.PENDING, ListingStatus.INACTIVE, ListingStatus.DELETED},
    ListingStatus.INACTIVE: {ListingStatus.ACTIVE, ListingStatus.PENDING, ListingStatus.DELETED},
    ListingStatus.DELETED: set(),
}

RESUBMITTABLE_STATUSES = frozenset({ListingStatus.REJECTED, ListingStatus.EXPIRED})
EXTENDABLE_STATUSES = frozenset({ListingStatus.ACTIVE, ListingStatus.EXPIRED})

# Fields an owner may change through edit or resubmit. Status, ownership,
# moderation audit, package and expiry are only moved by transitions.
OWNER_EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "content",
        "price",
        "area",
        "address",
        "images",
        "tags",
    }
)


@dataclass(slots=True)
class PostRecord:
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
    images: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
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


@dataclass(slots=True, frozen=True)
class PackageRecord:
    id: str
    name: str
    price: float
    duration_days: int
    is_active: bool = True
    priority: str = "normal"


@dataclass(slots=True)
class PaymentRecord:
    id: str
    order_id: str
    user_id: str
    amount: float
    status: PaymentStatus
    created_at: datetime
    post_id: str | None = None
    currency: str = "VND"
    payment_method: str = "vnpay"
    description: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None


def coerce_listing_status(value: Any) -> ListingStatus:
    try:
        return ListingStatus(value)
    except ValueError as exc:
        raise ValidationFailedError(f"unknown listing status: {value!r}") from exc


def resolve_duration_days(
    post: PostRecord,
    package: PackageRecord | None,
    *,
    default_days: int = DEFAULT_PACKAGE_DURATION_DAYS,
) -> int:
    """Duration used when a visibility window starts at approval time.

    The duration frozen on the post wins over the catalog so later catalog
    edits do not change what the owner paid for.
    """
    if post.original_package_duration:
        return int(post.original_package_duration)
    if package is not None and package.is_active and package.duration_days:
        return int(package.duration_days)
    return default_days


def has_open_window(post: PostRecord, now: datetime) -> bool:
    return post.expired_at is not None and post.expired_at > now


def approve(post: PostRecord, *, actor_id: str, now: datetime, duration_days: int) -> PostRecord:
    _require_admin_transition(post, ListingStatus.ACTIVE)

    expired_at = post.expired_at
    # A lapsed window counts as no window; approving must not yield an
    # active listing the next expiry tick would immediately expire.
    if not has_open_window(post, now) and (expired_at is not None or post.package_id):
        expired_at = now + timedelta(days=duration_days)

    return replace(
        post,
        status=ListingStatus.ACTIVE,
        expired_at=expired_at,
        approved_at=now,
        approved_by=actor_id,
        rejected_at=None,
        rejected_by=None,
        rejected_reason=None,
        updated_at=now,
    )


def reject(post: PostRecord, *, actor_id: str, reason: str | None, now: datetime) -> PostRecord:
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ValidationFailedError("rejection reason is required")
    _require_admin_transition(post, ListingStatus.REJECTED)

    return replace(
        post,
        status=ListingStatus.REJECTED,
        expired_at=None,
        rejected_at=now,
        rejected_by=actor_id,
        rejected_reason=normalized_reason,
        approved_at=None,
        approved_by=None,
        updated_at=now,
    )


def apply_owner_edit(post: PostRecord, updates: dict[str, Any], *, now: datetime) -> PostRecord:
    """Owner edit: apply updates, then send the post back to moderation.

    Rejection audit is kept so moderators still see why the previous
    version was turned down.
    """
    if post.status == ListingStatus.DELETED:
        raise ConflictError("deleted posts cannot be edited")

    edited = replace(post, **_filter_owner_updates(updates), updated_at=now)
    if edited.status == ListingStatus.DRAFT:
        return edited
    return replace(edited, status=ListingStatus.PENDING, approved_at=None, approved_by=None)


def resubmit(post: PostRecord, updates: dict[str, Any], *, now: datetime) -> PostRecord:
    if post.status not in RESUBMITTABLE_STATUSES:
        raise ConflictError("only rejected or expired posts can be resubmitted")

    # rejected_reason stays for history; only the decision stamp is cleared.
    return replace(
        post,
        **_filter_owner_updates(updates),
        status=ListingStatus.PENDING,
        rejected_at=None,
        rejected_by=None,
        updated_at=now,
    )


def extend(post: PostRecord, *, package: PackageRecord, now: datetime) -> PostRecord:
    if post.status not in EXTENDABLE_STATUSES:
        raise ConflictError(f"cannot extend a post with status: {post.status.value}")

    start = post.expired_at if has_open_window(post, now) else now
    return replace(
        post,
        status=ListingStatus.ACTIVE,
        expired_at=start + timedelta(days=package.duration_days),
        package_id=package.id,
        package_duration=package.duration_days,
        original_package_duration=package.duration_days,
        updated_at=now,
    )


def set_status(post: PostRecord, target: ListingStatus, *, now: datetime) -> PostRecord:
    """Moderator status patch for targets without their own audit semantics."""
    if target in {ListingStatus.ACTIVE, ListingStatus.REJECTED}:
        raise ValidationFailedError(f"use the {target.value} transition for this status")
    if target == post.status:
        return post
    _require_admin_transition(post, target)
    return replace(post, status=target, updated_at=now)


def mark_deleted(post: PostRecord, *, now: datetime) -> PostRecord:
    if post.status == ListingStatus.DELETED:
        raise ConflictError("post is already deleted")
    return replace(post, status=ListingStatus.DELETED, updated_at=now)


def _require_admin_transition(post: PostRecord, target: ListingStatus) -> None:
    allowed = ADMIN_STATUS_TRANSITIONS.get(post.status, set())
    if target not in allowed:
        raise ConflictError(f"invalid post status transition: {post.status.value} -> {target.value}")


def require_title(value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailedError("title must be a non-empty string")


def _filter_owner_updates(updates: dict[str, Any]) -> dict[str, Any]:
    filtered: dict[str, Any] = {}
    for key, value in updates.items():
        if key not in OWNER_EDITABLE_FIELDS:
            continue
        if key in {"images", "tags"}:
            if not isinstance(value, list):
                continue
            value = [str(item) for item in value]
        if key == "title":
            require_title(value)
        filtered[key] = value
    return filtered
