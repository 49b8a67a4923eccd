from __future__ import annotations

import asyncio

import pytest
from conftest import OWNER_ID, FakeRepository
from pydantic import TypeAdapter, ValidationError

from estate_api.schemas.notifications import NotificationData, PackagePurchaseData, PostExpiredData
from estate_api.services.notifications import NotificationService, build_post_url, slugify


def test_slugify_strips_vietnamese_marks() -> None:
    assert slugify("Bán nhà đường Lê Lợi, Quận 1!") == "ban-nha-duong-le-loi-quan-1"
    assert slugify("  Căn   hộ -- cao cấp ") == "can-ho-cao-cap"
    assert slugify(None) == ""


def test_build_post_url_by_transaction_type() -> None:
    assert build_post_url("abc", "Nhà đẹp", "ban") == "/mua-ban/chi-tiet/abc-nha-dep"
    assert build_post_url("abc", "Nhà đẹp", "cho-thue") == "/cho-thue/chi-tiet/abc-nha-dep"
    assert build_post_url("abc", "!!!") == "/cho-thue/chi-tiet/abc"


def test_payload_union_dispatches_on_type() -> None:
    adapter = TypeAdapter(NotificationData)

    parsed = adapter.validate_python({"type": "POST_EXPIRED", "expiredPostIds": ["p1", "p2"], "expiredCount": 2})
    assert isinstance(parsed, PostExpiredData)
    assert parsed.expired_post_ids == ["p1", "p2"]

    with pytest.raises(ValidationError):
        adapter.validate_python({"type": "POST_APPROVED", "postTitle": "thiếu postId"})


def test_extension_notice_payload(repository: FakeRepository) -> None:
    service = NotificationService(repository)

    asyncio.run(
        service.create_post_extended(
            OWNER_ID,
            order_id="EXTEND_1700000000000_abc123",
            package_name="Gói Cơ Bản",
            amount=50000,
            duration=30,
        )
    )

    row = repository.notifications_for(OWNER_ID)[0]
    assert row["type"] == "PACKAGE_PURCHASE"
    assert "50,000 VND" in row["message"]
    assert row["data"] == {
        "type": "PACKAGE_PURCHASE",
        "orderId": "EXTEND_1700000000000_abc123",
        "packageName": "Gói Cơ Bản",
        "amount": 50000.0,
        "duration": 30,
    }
    assert isinstance(TypeAdapter(NotificationData).validate_python(row["data"]), PackagePurchaseData)


def test_store_failure_is_swallowed(repository: FakeRepository) -> None:
    repository.failing_notification_users.add(OWNER_ID)
    service = NotificationService(repository)

    asyncio.run(service.create_posts_expired(OWNER_ID, posts=[("p1", "Tin 1")]))

    assert repository.notifications == []


def test_empty_expiry_batch_sends_nothing(repository: FakeRepository) -> None:
    asyncio.run(NotificationService(repository).create_posts_expired(OWNER_ID, posts=[]))
    assert repository.notifications == []
