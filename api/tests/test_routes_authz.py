from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import ADMIN_ID, EMPLOYEE_ID, OTHER_USER_ID, OWNER_ID, FakeClock, FakeRepository
from fastapi.testclient import TestClient

from estate_api.core.config import get_settings
from estate_api.services.lifecycle import ListingStatus, PaymentStatus


def test_requests_without_bearer_token_are_unauthorized(client: TestClient) -> None:
    response = client.get("/api/admin/post-expiry/status")
    assert response.status_code == 401


def test_auth_uses_settings_passed_to_create_app(
    client: TestClient, login, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("EL_SUPABASE_URL", raising=False)
    monkeypatch.delenv("EL_SUPABASE_ANON_KEY", raising=False)
    get_settings.cache_clear()
    try:
        assert get_settings().supabase_url is None
        response = client.get("/api/admin/post-expiry/status", headers=login(ADMIN_ID, "admin"))
    finally:
        get_settings.cache_clear()

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_plain_user_cannot_reach_admin_surface(client: TestClient, repository: FakeRepository, login) -> None:
    post = repository.add_post()
    headers = login(OWNER_ID, "user")

    assert client.get("/api/admin/post-expiry/stats", headers=headers).status_code == 403
    assert client.post("/api/admin/post-expiry/run-check", headers=headers).status_code == 403
    assert client.put(f"/api/admin/posts/{post.id}/approve", headers=headers).status_code == 403
    assert client.get("/api/payment-scheduler/stats", headers=headers).status_code == 403
    assert client.patch(f"/api/posts/{post.id}/status", json={"status": "inactive"}, headers=headers).status_code == 403


def test_employee_moderates_but_cannot_manage_payments(client: TestClient, repository: FakeRepository, login) -> None:
    post = repository.add_post()
    headers = login(EMPLOYEE_ID, "employee")

    approve = client.put(f"/api/admin/posts/{post.id}/approve", headers=headers)
    assert approve.status_code == 200
    assert approve.json()["data"]["post"]["approvedBy"] == EMPLOYEE_ID

    assert client.get("/api/payment-scheduler/pending", headers=headers).status_code == 403


def test_post_expiry_status_and_run_check(client: TestClient, repository: FakeRepository, clock: FakeClock, login) -> None:
    repository.add_post(status=ListingStatus.ACTIVE, expired_at=clock() - timedelta(hours=1))
    headers = login(ADMIN_ID, "admin")

    status_body = client.get("/api/admin/post-expiry/status", headers=headers).json()
    assert status_body["success"] is True
    # Scheduler is disabled in tests.
    assert status_body["data"]["scheduler"] == {"isRunning": False, "tasksCount": 0}

    run = client.post("/api/admin/post-expiry/run-check", headers=headers)
    assert run.status_code == 200
    assert run.json()["data"]["updatedCount"] == 1

    stats = client.get("/api/admin/post-expiry/stats", headers=headers).json()["data"]
    assert stats["postStats"]["expired"] == 1
    assert stats["expiryStatus"] == {"activeButExpired": 0, "validActive": 0, "needsAttention": False}


def test_run_check_failure_returns_500(client: TestClient, repository: FakeRepository, login) -> None:
    def explode(_: str) -> None:
        raise RuntimeError("database unavailable")

    repository.before_write = explode
    response = client.post("/api/admin/post-expiry/run-check", headers=login(ADMIN_ID, "admin"))

    assert response.status_code == 500
    assert response.json()["detail"] == "database unavailable"


def test_payment_scheduler_endpoints(client: TestClient, repository: FakeRepository, clock: FakeClock, login) -> None:
    stale = repository.add_payment(created_at=clock() - timedelta(hours=30))
    fresh = repository.add_payment(created_at=clock() - timedelta(hours=19))
    done = repository.add_payment(created_at=clock() - timedelta(hours=1), status=PaymentStatus.COMPLETED)
    headers = login(ADMIN_ID, "admin")

    stats = client.get("/api/payment-scheduler/stats", headers=headers).json()["data"]
    assert stats == {"expiredCount": 1, "expiringIn6Hours": 1, "expiringIn12Hours": 0}

    pending = client.get("/api/payment-scheduler/pending", params={"page": 1, "limit": 10}, headers=headers).json()
    payments = pending["data"]["payments"]
    assert [row["id"] for row in payments] == [fresh.id, stale.id]
    assert payments[0]["category"] == "expiring_soon"
    assert payments[0]["hoursElapsed"] == 19
    assert payments[0]["timeRemaining"] == 5
    assert pending["data"]["pagination"] == {"currentPage": 1, "totalPages": 1, "totalItems": 2, "itemsPerPage": 10}

    summary = client.get("/api/payment-scheduler/expired-summary", headers=headers).json()["data"]
    assert summary["totalExpired"] == 1

    cancelled = client.post("/api/payment-scheduler/cancel-expired", headers=headers).json()
    assert cancelled["success"] is True
    assert cancelled["cancelledCount"] == 1

    manual = client.post(f"/api/payment-scheduler/cancel/{fresh.id}", json={"reason": "khách hủy"}, headers=headers)
    assert manual.status_code == 200
    assert manual.json()["data"]["cancelReason"] == "khách hủy"

    assert client.post("/api/payment-scheduler/cancel/missing", headers=headers).status_code == 404
    conflict = client.post(f"/api/payment-scheduler/cancel/{done.id}", headers=headers)
    assert conflict.status_code == 400
    assert conflict.json()["detail"] == "cannot cancel payment with status: completed"


def test_non_public_post_hidden_from_other_users(client: TestClient, repository: FakeRepository, login) -> None:
    pending = repository.add_post()
    active = repository.add_post(status=ListingStatus.ACTIVE)

    assert client.get(f"/api/posts/{pending.id}", headers=login(OTHER_USER_ID)).status_code == 404
    assert client.get(f"/api/posts/{active.id}", headers=login(OTHER_USER_ID)).status_code == 200
    assert client.get(f"/api/posts/{pending.id}", headers=login(OWNER_ID)).status_code == 200
    assert client.get(f"/api/posts/{pending.id}", headers=login(EMPLOYEE_ID, "employee")).status_code == 200


def test_owner_only_routes(client: TestClient, repository: FakeRepository, login) -> None:
    post = repository.add_post(status=ListingStatus.REJECTED)
    headers = login(OTHER_USER_ID)

    assert client.put(f"/api/posts/{post.id}", json={"title": "x"}, headers=headers).status_code == 403
    assert client.put(f"/api/posts/{post.id}/resubmit", headers=headers).status_code == 403
    assert client.delete(f"/api/posts/{post.id}", headers=headers).status_code == 403
    assert client.get("/api/posts/missing", headers=headers).status_code == 404


def test_reject_route_requires_reason(client: TestClient, repository: FakeRepository, login) -> None:
    post = repository.add_post()
    headers = login(ADMIN_ID, "admin")

    response = client.put(f"/api/admin/posts/{post.id}/reject", json={"reason": "  "}, headers=headers)

    assert response.status_code == 400
    assert repository.posts[post.id].status == ListingStatus.PENDING


def test_resubmit_of_active_post_is_rejected(client: TestClient, repository: FakeRepository, login) -> None:
    post = repository.add_post(status=ListingStatus.ACTIVE)

    response = client.put(f"/api/posts/{post.id}/resubmit", json={}, headers=login(OWNER_ID))

    assert response.status_code == 400
    assert repository.posts[post.id].status == ListingStatus.ACTIVE


def test_create_rejects_blank_title(client: TestClient, repository: FakeRepository, login) -> None:
    response = client.post("/api/posts", json={"title": "   ", "postType": "ban"}, headers=login(OWNER_ID))

    assert response.status_code == 400
    assert response.json()["detail"] == "title must be a non-empty string"
    assert repository.posts == {}
