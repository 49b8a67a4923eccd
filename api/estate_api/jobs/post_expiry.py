from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from opentelemetry import trace

from estate_api.core.clock import Clock, utc_now
from estate_api.services.lifecycle import ListingStatus
from estate_api.services.notifications import NotificationService
from estate_api.services.repository import ExpiredPostRecord

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class PostExpiryStore(Protocol):
    async def expire_overdue_posts(self, *, now: datetime) -> list[ExpiredPostRecord]: ...

    async def count_posts_by_status(self) -> dict[str, int]: ...

    async def count_expiry_health(self, *, now: datetime) -> tuple[int, int]: ...


@dataclass(slots=True)
class ExpiryRunResult:
    success: bool
    updated_count: int
    message: str


class PostExpiryEngine:
    """Moves active posts whose visibility window has lapsed to ``expired``.

    The transition is one conditional bulk write. Owners are then notified
    once each, for exactly the rows that write returned.
    """

    def __init__(
        self,
        repository: PostExpiryStore,
        notifications: NotificationService,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.notifications = notifications
        self.clock = clock

    async def check_and_update_expired_posts(self) -> int:
        with tracer.start_as_current_span("post_expiry.tick") as span:
            now = self.clock()
            expired = await self.repository.expire_overdue_posts(now=now)
            span.set_attribute("post_expiry.updated_count", len(expired))
            if not expired:
                logger.info("post expiry check found no overdue posts")
                return 0

            logger.info("post expiry updated count=%s", len(expired))
            await self._notify_owners(expired)
            return len(expired)

    async def run_manual_check(self) -> ExpiryRunResult:
        try:
            updated_count = await self.check_and_update_expired_posts()
        except Exception as exc:
            logger.exception("manual post expiry check failed")
            return ExpiryRunResult(success=False, updated_count=0, message=str(exc))
        return ExpiryRunResult(
            success=True,
            updated_count=updated_count,
            message=f"Updated {updated_count} expired posts",
        )

    async def get_stats(self) -> dict[str, Any]:
        now = self.clock()
        counts = await self.repository.count_posts_by_status()
        post_stats = {status.value: counts.get(status.value, 0) for status in ListingStatus}
        post_stats["total"] = sum(counts.values())

        active_but_expired, valid_active = await self.repository.count_expiry_health(now=now)
        return {
            "post_stats": post_stats,
            "expiry_status": {
                "active_but_expired": active_but_expired,
                "valid_active": valid_active,
                "needs_attention": active_but_expired > 0,
            },
            "timestamp": now,
        }

    async def _notify_owners(self, expired: list[ExpiredPostRecord]) -> None:
        by_owner: dict[str, list[tuple[str, str]]] = defaultdict(list)
        for row in expired:
            by_owner[row.author_id].append((row.id, row.title))

        for owner_id, posts in by_owner.items():
            try:
                await self.notifications.create_posts_expired(owner_id, posts=posts)
            except Exception:
                logger.exception("post expiry notification failed author_id=%s count=%s", owner_id, len(posts))
