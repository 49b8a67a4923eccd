from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

import estate_api.core.security as security
from estate_api.core.config import Settings
from estate_api.main import create_app
from estate_api.services.errors import ConflictError, NotFoundError, ValidationFailedError
from estate_api.services.lifecycle import (
    ListingStatus,
    PackageRecord,
    PaymentRecord,
    PaymentStatus,
    PostRecord,
)
from estate_api.services.repository import ExpiredPostRecord, PostEvent, WalletCharge

OWNER_ID = "00000000-0000-0000-0000-00000000000a"
OTHER_USER_ID = "00000000-0000-0000-0000-00000000000b"
ADMIN_ID = "00000000-0000-0000-0000-0000000000ad"
EMPLOYEE_ID = "00000000-0000-0000-0000-0000000000e1"


class FakeClock:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRepository:
    """In-memory store. Conditional writes evaluate their predicate at write time.

    ``before_write`` runs inside each conditional write before the predicate is
    checked, which lets tests interleave a competing change.
    """

    def __init__(self) -> None:
        self.posts: dict[str, PostRecord] = {}
        self.packages: dict[str, PackageRecord] = {}
        self.payments: dict[str, PaymentRecord] = {}
        self.wallets: dict[str, float] = {}
        self.notifications: list[dict[str, Any]] = []
        self.events: list[dict[str, Any]] = []
        self.failing_notification_users: set[str] = set()
        self.before_write: Callable[[str], None] | None = None
        self.closed = False

    # Seeding helpers

    def add_package(self, package_id: str = "basic", *, duration_days: int = 30, price: float = 50000, **kwargs: Any) -> PackageRecord:
        package = PackageRecord(
            id=package_id,
            name=kwargs.pop("name", f"Gói {package_id}"),
            price=price,
            duration_days=duration_days,
            **kwargs,
        )
        self.packages[package_id] = package
        return package

    def add_post(self, *, author_id: str = OWNER_ID, title: str = "Căn hộ 2PN", **kwargs: Any) -> PostRecord:
        post_id = kwargs.pop("id", str(uuid.uuid4()))
        kwargs.setdefault("status", ListingStatus.PENDING)
        post = PostRecord(id=post_id, author_id=author_id, title=title, **kwargs)
        self.posts[post_id] = post
        return post

    def add_payment(self, *, created_at: datetime, status: PaymentStatus = PaymentStatus.PENDING, **kwargs: Any) -> PaymentRecord:
        payment_id = kwargs.pop("id", str(uuid.uuid4()))
        payment = PaymentRecord(
            id=payment_id,
            order_id=kwargs.pop("order_id", f"ORDER_{payment_id[:8]}"),
            user_id=kwargs.pop("user_id", OWNER_ID),
            amount=kwargs.pop("amount", 50000.0),
            status=status,
            created_at=created_at,
            **kwargs,
        )
        self.payments[payment_id] = payment
        return payment

    def _hook(self, operation: str) -> None:
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook(operation)

    async def close(self) -> None:
        self.closed = True

    # Listings

    async def get_post(self, post_id: str) -> PostRecord:
        post = self.posts.get(post_id)
        if post is None:
            raise NotFoundError("post not found")
        return post

    async def list_posts_by_author(self, *, author_id: str, status: str | None, limit: int, offset: int) -> list[PostRecord]:
        rows = [
            post
            for post in self.posts.values()
            if post.author_id == author_id
            and post.status != ListingStatus.DELETED
            and (status is None or post.status.value == status)
        ]
        return rows[offset : offset + limit]

    async def create_post(
        self,
        *,
        author_id: str,
        fields: dict[str, Any],
        status: ListingStatus,
        package_id: str | None,
        package_duration: int | None,
    ) -> PostRecord:
        post = self.add_post(
            author_id=author_id,
            status=status,
            package_id=package_id,
            package_duration=package_duration,
            original_package_duration=package_duration,
            **fields,
        )
        self.events.append({"entity_id": post.id, "event_type": "created", "actor_id": author_id})
        return post

    async def save_post(
        self,
        post: PostRecord,
        *,
        expected_status: ListingStatus,
        event: PostEvent,
        charge: WalletCharge | None = None,
    ) -> PostRecord:
        self._hook("save_post")
        current = self.posts.get(post.id)
        if current is None:
            raise NotFoundError("post not found")
        if current.status != expected_status:
            raise ConflictError("post was modified concurrently; reload and retry")

        if charge is not None:
            if charge.user_id not in self.wallets:
                raise NotFoundError("user wallet not found")
            if self.wallets[charge.user_id] < charge.amount:
                raise ValidationFailedError("insufficient wallet balance")
            self.wallets[charge.user_id] -= charge.amount
            self.add_payment(
                created_at=post.updated_at or datetime.now(timezone.utc),
                status=PaymentStatus.COMPLETED,
                user_id=charge.user_id,
                order_id=charge.order_id,
                amount=charge.amount,
                post_id=post.id,
                payment_method="wallet",
                metadata=dict(charge.metadata),
            )

        self.posts[post.id] = post
        self.events.append({"entity_id": post.id, "event_type": event.event_type, "actor_id": event.actor_id})
        return post

    async def expire_overdue_posts(self, *, now: datetime) -> list[ExpiredPostRecord]:
        self._hook("expire_overdue_posts")
        expired: list[ExpiredPostRecord] = []
        for post_id, post in list(self.posts.items()):
            if post.status == ListingStatus.ACTIVE and post.expired_at is not None and post.expired_at < now:
                self.posts[post_id] = replace(post, status=ListingStatus.EXPIRED, updated_at=now)
                expired.append(ExpiredPostRecord(id=post.id, title=post.title, author_id=post.author_id))
        return expired

    async def count_posts_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for post in self.posts.values():
            counts[post.status.value] = counts.get(post.status.value, 0) + 1
        return counts

    async def count_expiry_health(self, *, now: datetime) -> tuple[int, int]:
        active = [post for post in self.posts.values() if post.status == ListingStatus.ACTIVE]
        overdue = sum(1 for post in active if post.expired_at is not None and post.expired_at < now)
        valid = sum(1 for post in active if post.expired_at is None or post.expired_at > now)
        return overdue, valid

    async def get_package(self, package_id: str) -> PackageRecord | None:
        return self.packages.get(package_id)

    # Payments

    def _pending(self) -> list[PaymentRecord]:
        return [payment for payment in self.payments.values() if payment.status == PaymentStatus.PENDING]

    async def cancel_stale_payments(self, *, cutoff: datetime, now: datetime, reason: str) -> list[PaymentRecord]:
        self._hook("cancel_stale_payments")
        cancelled: list[PaymentRecord] = []
        for payment in self._pending():
            if payment.created_at < cutoff:
                updated = replace(
                    payment,
                    status=PaymentStatus.CANCELLED,
                    cancelled_at=now,
                    cancel_reason=reason,
                    updated_at=now,
                )
                self.payments[payment.id] = updated
                cancelled.append(updated)
        return cancelled

    async def count_pending_payments(
        self,
        *,
        created_before: datetime | None = None,
        created_since: datetime | None = None,
    ) -> int:
        return sum(
            1
            for payment in self._pending()
            if (created_before is None or payment.created_at < created_before)
            and (created_since is None or payment.created_at >= created_since)
        )

    async def summarize_pending_payments(self, *, created_before: datetime) -> dict[str, Any]:
        stale = [payment for payment in self._pending() if payment.created_at < created_before]
        return {
            "total_expired": len(stale),
            "total_amount": float(sum(payment.amount for payment in stale)),
            "oldest_expired": min((payment.created_at for payment in stale), default=None),
        }

    async def list_pending_payments(self, *, limit: int, offset: int) -> list[PaymentRecord]:
        rows = sorted(self._pending(), key=lambda payment: payment.created_at, reverse=True)
        return rows[offset : offset + limit]

    async def cancel_payment(
        self,
        *,
        payment_id: str,
        reason: str,
        now: datetime,
        actor_user_id: str | None,
    ) -> PaymentRecord:
        self._hook("cancel_payment")
        payment = self.payments.get(payment_id)
        if payment is None:
            raise NotFoundError("payment not found")
        if payment.status != PaymentStatus.PENDING:
            raise ConflictError(f"cannot cancel payment with status: {payment.status.value}")
        updated = replace(
            payment,
            status=PaymentStatus.CANCELLED,
            cancelled_at=now,
            cancel_reason=reason,
            updated_at=now,
        )
        self.payments[payment_id] = updated
        self.events.append({"entity_id": payment_id, "event_type": "cancelled", "actor_id": actor_user_id})
        return updated

    # Notifications

    async def insert_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        if user_id in self.failing_notification_users:
            raise RuntimeError("notification store unavailable")
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "data": data,
            "read": False,
            "created_at": datetime.now(timezone.utc),
        }
        self.notifications.append(row)
        return row

    def notifications_for(self, user_id: str) -> list[dict[str, Any]]:
        return [row for row in self.notifications if row["user_id"] == user_id]

    async def list_notifications(self, *, user_id: str, unread_only: bool, limit: int, offset: int) -> list[dict[str, Any]]:
        rows = [row for row in self.notifications_for(user_id) if not unread_only or not row["read"]]
        rows.reverse()
        return rows[offset : offset + limit]

    async def count_unread_notifications(self, *, user_id: str) -> int:
        return sum(1 for row in self.notifications_for(user_id) if not row["read"])

    async def mark_notification_read(self, *, user_id: str, notification_id: str) -> dict[str, Any]:
        for row in self.notifications_for(user_id):
            if row["id"] == notification_id:
                row["read"] = True
                return row
        raise NotFoundError("notification not found")

    async def mark_all_notifications_read(self, *, user_id: str) -> int:
        updated = 0
        for row in self.notifications_for(user_id):
            if not row["read"]:
                row["read"] = True
                updated += 1
        return updated


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        scheduler_enabled=False,
        otel_enabled=False,
    )


@pytest.fixture
def client(test_settings: Settings, repository: FakeRepository, clock: FakeClock) -> TestClient:
    app = create_app(test_settings, repository=repository, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(monkeypatch: pytest.MonkeyPatch) -> Callable[[str, str], dict[str, str]]:
    """Resolve the bearer token to the given user and return auth headers."""

    def _login(user_id: str, role: str = "user") -> dict[str, str]:
        async def _fake_fetch(**_: Any) -> dict[str, Any]:
            return {"id": user_id, "app_metadata": {"role": role}}

        monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
        return {"Authorization": "Bearer token"}

    return _login
