from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from opentelemetry import trace

from estate_api.core.clock import Clock, utc_now
from estate_api.services.errors import ValidationFailedError
from estate_api.services.lifecycle import PaymentRecord

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

AUTO_CANCEL_REASON = "auto-cancelled: payment window exceeded"
MANUAL_CANCEL_REASON = "cancelled manually by admin"
DEFAULT_GRACE_HOURS = 24


class PaymentExpiryStore(Protocol):
    async def cancel_stale_payments(self, *, cutoff: datetime, now: datetime, reason: str) -> list[PaymentRecord]: ...

    async def count_pending_payments(
        self,
        *,
        created_before: datetime | None = None,
        created_since: datetime | None = None,
    ) -> int: ...

    async def summarize_pending_payments(self, *, created_before: datetime) -> dict[str, Any]: ...

    async def list_pending_payments(self, *, limit: int, offset: int) -> list[PaymentRecord]: ...

    async def cancel_payment(
        self,
        *,
        payment_id: str,
        reason: str,
        now: datetime,
        actor_user_id: str | None,
    ) -> PaymentRecord: ...


@dataclass(slots=True)
class CancelRunResult:
    success: bool
    cancelled_count: int
    message: str


def classify_pending_payment(
    created_at: datetime,
    now: datetime,
    *,
    grace_hours: int = DEFAULT_GRACE_HOURS,
) -> dict[str, Any]:
    """Elapsed-time annotation shown next to a pending payment.

    Categories use the same strict ``created_at < now - window`` cutoffs as
    the cancel tick and the stats buckets.
    """
    elapsed = max(timedelta(0), now - created_at)
    hours = elapsed.total_seconds() / 3600.0
    if elapsed > timedelta(hours=grace_hours):
        category = "expired"
    elif elapsed > timedelta(hours=grace_hours - 6):
        category = "expiring_soon"
    elif elapsed > timedelta(hours=grace_hours - 12):
        category = "expiring"
    else:
        category = "normal"
    return {
        "category": category,
        "hours_elapsed": math.floor(hours),
        "time_remaining": max(0, math.floor(grace_hours - hours)),
    }


class PaymentExpiryEngine:
    def __init__(
        self,
        repository: PaymentExpiryStore,
        *,
        grace_hours: int = DEFAULT_GRACE_HOURS,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.grace_hours = grace_hours
        self.clock = clock

    async def cancel_expired_payments(self) -> int:
        with tracer.start_as_current_span("payment_expiry.tick") as span:
            now = self.clock()
            cutoff = now - timedelta(hours=self.grace_hours)
            cancelled = await self.repository.cancel_stale_payments(
                cutoff=cutoff,
                now=now,
                reason=AUTO_CANCEL_REASON,
            )
            span.set_attribute("payment_expiry.cancelled_count", len(cancelled))
            if cancelled:
                logger.info(
                    "payment expiry cancelled count=%s order_ids=%s",
                    len(cancelled),
                    ",".join(payment.order_id for payment in cancelled),
                )
            else:
                logger.info("payment expiry found no stale pending payments")
            return len(cancelled)

    async def run_manual_cancel(self) -> CancelRunResult:
        try:
            cancelled_count = await self.cancel_expired_payments()
        except Exception as exc:
            logger.exception("manual payment expiry run failed")
            return CancelRunResult(success=False, cancelled_count=0, message=str(exc))
        return CancelRunResult(
            success=True,
            cancelled_count=cancelled_count,
            message=f"Cancelled {cancelled_count} expired payments",
        )

    async def get_expiring_stats(self) -> dict[str, int]:
        now = self.clock()
        grace_cutoff = now - timedelta(hours=self.grace_hours)
        six_hour_cutoff = now - timedelta(hours=self.grace_hours - 6)
        twelve_hour_cutoff = now - timedelta(hours=self.grace_hours - 12)

        # Same strict cutoff as the cancel write, so "expired" here is exactly
        # what the next tick will cancel.
        expired_count = await self.repository.count_pending_payments(created_before=grace_cutoff)
        expiring_in_6 = await self.repository.count_pending_payments(
            created_before=six_hour_cutoff,
            created_since=grace_cutoff,
        )
        expiring_in_12 = await self.repository.count_pending_payments(
            created_before=twelve_hour_cutoff,
            created_since=six_hour_cutoff,
        )
        return {
            "expired_count": expired_count,
            "expiring_in_6_hours": expiring_in_6,
            "expiring_in_12_hours": expiring_in_12,
        }

    async def get_expired_summary(self) -> dict[str, Any]:
        cutoff = self.clock() - timedelta(hours=self.grace_hours)
        return await self.repository.summarize_pending_payments(created_before=cutoff)

    async def list_pending_payments(self, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationFailedError("page and limit must be positive")

        now = self.clock()
        total_items = await self.repository.count_pending_payments()
        payments = await self.repository.list_pending_payments(limit=limit, offset=(page - 1) * limit)
        rows = [
            (payment, classify_pending_payment(payment.created_at, now, grace_hours=self.grace_hours))
            for payment in payments
        ]
        return {
            "payments": rows,
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total_items / limit),
                "total_items": total_items,
                "items_per_page": limit,
            },
        }

    async def cancel_payment(
        self,
        payment_id: str,
        *,
        reason: str | None = None,
        actor_user_id: str | None = None,
    ) -> PaymentRecord:
        cancel_reason = (reason or "").strip() or MANUAL_CANCEL_REASON
        payment = await self.repository.cancel_payment(
            payment_id=payment_id,
            reason=cancel_reason,
            now=self.clock(),
            actor_user_id=actor_user_id,
        )
        logger.info("payment cancelled manually payment_id=%s actor_id=%s", payment_id, actor_user_id)
        return payment
