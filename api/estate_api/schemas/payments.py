from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from estate_api.schemas.base import CamelModel
from estate_api.services.lifecycle import PaymentRecord, PaymentStatus

PendingCategory = Literal["normal", "expiring", "expiring_soon", "expired"]


class PaymentOut(CamelModel):
    id: str
    order_id: str
    user_id: str
    post_id: str | None = None
    amount: float
    currency: str = "VND"
    payment_method: str
    status: PaymentStatus
    description: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: PaymentRecord) -> PaymentOut:
        return cls(**asdict(record))


class PendingPaymentOut(PaymentOut):
    category: PendingCategory
    hours_elapsed: int
    time_remaining: int


class PaginationOut(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class PendingPaymentsData(CamelModel):
    payments: list[PendingPaymentOut]
    pagination: PaginationOut


class PendingPaymentsResponse(CamelModel):
    success: bool = True
    data: PendingPaymentsData


class PaymentStatsOut(CamelModel):
    expired_count: int
    expiring_in_6_hours: int
    expiring_in_12_hours: int


class PaymentStatsResponse(CamelModel):
    success: bool = True
    data: PaymentStatsOut


class ExpiredSummaryOut(CamelModel):
    total_expired: int
    total_amount: float
    oldest_expired: datetime | None = None


class ExpiredSummaryResponse(CamelModel):
    success: bool = True
    data: ExpiredSummaryOut


class CancelExpiredResponse(CamelModel):
    success: bool = True
    message: str
    cancelled_count: int


class PaymentCancelRequest(CamelModel):
    reason: str | None = None


class PaymentCancelResponse(CamelModel):
    success: bool = True
    message: str
    data: PaymentOut
