from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from estate_api.services.errors import (
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationFailedError,
)
from estate_api.services.lifecycle import (
    ListingStatus,
    PackageRecord,
    PaymentRecord,
    PaymentStatus,
    PostRecord,
)

POST_COLUMNS = """
  id::text as id,
  author_id::text as author_id,
  title,
  status::text as status,
  description,
  content,
  price,
  area,
  address,
  category,
  post_type,
  images,
  tags,
  package_id,
  package_duration,
  original_package_duration,
  expired_at,
  approved_at,
  approved_by::text as approved_by,
  rejected_at,
  rejected_by::text as rejected_by,
  rejected_reason,
  created_at,
  updated_at
"""

PAYMENT_COLUMNS = """
  id::text as id,
  order_id,
  user_id::text as user_id,
  post_id::text as post_id,
  amount,
  currency,
  payment_method,
  status::text as status,
  description,
  completed_at,
  cancelled_at,
  cancel_reason,
  metadata,
  created_at,
  updated_at
"""


@dataclass(slots=True)
class PostEvent:
    event_type: str
    actor_id: str | None
    actor_type: str = "human"
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WalletCharge:
    user_id: str
    amount: float
    order_id: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExpiredPostRecord:
    id: str
    title: str
    author_id: str


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # Listings

    async def get_post(self, post_id: str) -> PostRecord:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {POST_COLUMNS} from posts where id = $1::uuid", post_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise NotFoundError("post not found") from exc
        if not row:
            raise NotFoundError("post not found")
        return self._post_row_to_record(row)

    async def list_posts_by_author(
        self,
        *,
        author_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[PostRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {POST_COLUMNS}
            from posts
            where author_id = $1::uuid
              and ($2::listing_status is null or status = $2::listing_status)
              and status <> 'deleted'
            order by created_at desc, id desc
            limit $3 offset $4
            """,
            author_id,
            status,
            limit,
            offset,
        )
        return [self._post_row_to_record(row) for row in rows]

    async def create_post(
        self,
        *,
        author_id: str,
        fields: dict[str, Any],
        status: ListingStatus,
        package_id: str | None,
        package_duration: int | None,
    ) -> PostRecord:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    insert into posts (
                      author_id,
                      title,
                      description,
                      content,
                      price,
                      area,
                      address,
                      category,
                      post_type,
                      images,
                      tags,
                      status,
                      package_id,
                      package_duration,
                      original_package_duration
                    )
                    values (
                      $1::uuid, $2, $3, $4, $5, $6, $7, $8, $9,
                      $10::text[], $11::text[], $12::listing_status, $13, $14, $14
                    )
                    returning {POST_COLUMNS}
                    """,
                    author_id,
                    fields["title"],
                    fields.get("description"),
                    fields.get("content"),
                    _to_numeric(fields.get("price")),
                    _to_numeric(fields.get("area")),
                    fields.get("address"),
                    fields.get("category"),
                    fields.get("post_type"),
                    list(fields.get("images") or []),
                    list(fields.get("tags") or []),
                    status.value,
                    package_id,
                    package_duration,
                )
                await self._record_event(
                    conn,
                    entity_type="post",
                    entity_id=row["id"],
                    event=PostEvent(event_type="created", actor_id=author_id, payload={"status": status.value}),
                )
                return self._post_row_to_record(row)

    async def save_post(
        self,
        post: PostRecord,
        *,
        expected_status: ListingStatus,
        event: PostEvent,
        charge: WalletCharge | None = None,
    ) -> PostRecord:
        """Persist a transitioned post if its stored status is still ``expected_status``.

        A wallet charge, when given, is applied in the same transaction.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"""
                        update posts
                        set
                          title = $3,
                          description = $4,
                          content = $5,
                          price = $6,
                          area = $7,
                          address = $8,
                          images = $9::text[],
                          tags = $10::text[],
                          status = $11::listing_status,
                          package_id = $12,
                          package_duration = $13,
                          original_package_duration = $14,
                          expired_at = $15,
                          approved_at = $16,
                          approved_by = $17::uuid,
                          rejected_at = $18,
                          rejected_by = $19::uuid,
                          rejected_reason = $20,
                          updated_at = coalesce($21, now())
                        where id = $1::uuid
                          and status = $2::listing_status
                        returning {POST_COLUMNS}
                        """,
                        post.id,
                        expected_status.value,
                        post.title,
                        post.description,
                        post.content,
                        _to_numeric(post.price),
                        _to_numeric(post.area),
                        post.address,
                        list(post.images),
                        list(post.tags),
                        post.status.value,
                        post.package_id,
                        post.package_duration,
                        post.original_package_duration,
                        post.expired_at,
                        post.approved_at,
                        post.approved_by,
                        post.rejected_at,
                        post.rejected_by,
                        post.rejected_reason,
                        post.updated_at,
                    )
                    if not row:
                        exists = await conn.fetchval("select 1 from posts where id = $1::uuid", post.id)
                        if not exists:
                            raise NotFoundError("post not found")
                        raise ConflictError("post was modified concurrently; reload and retry")

                    if charge is not None:
                        await self._apply_wallet_charge(conn, post_id=post.id, charge=charge)

                    await self._record_event(conn, entity_type="post", entity_id=post.id, event=event)
                    return self._post_row_to_record(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise NotFoundError("post not found") from exc

    async def expire_overdue_posts(self, *, now: datetime) -> list[ExpiredPostRecord]:
        """Flip every overdue active post to expired in one conditional statement.

        Only rows still matching the predicate when the statement executes are
        touched and returned.
        """
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            with expired as (
              update posts
              set
                status = 'expired',
                updated_at = $1
              where status = 'active'
                and expired_at is not null
                and expired_at < $1
              returning id, title, author_id, expired_at
            ),
            audit as (
              insert into provenance_events (entity_type, entity_id, event_type, actor_type, actor_id, payload)
              select
                'post',
                e.id,
                'expired',
                'system',
                null,
                jsonb_build_object('expired_at', e.expired_at, 'checked_at', $1::timestamptz)
              from expired e
            )
            select id::text as id, title, author_id::text as author_id
            from expired
            order by author_id, id
            """,
            now,
        )
        return [ExpiredPostRecord(id=row["id"], title=row["title"], author_id=row["author_id"]) for row in rows]

    async def count_posts_by_status(self) -> dict[str, int]:
        pool = await self._get_pool()
        rows = await pool.fetch("select status::text as status, count(*) as count from posts group by status")
        return {row["status"]: int(row["count"]) for row in rows}

    async def count_expiry_health(self, *, now: datetime) -> tuple[int, int]:
        """Return ``(active_but_expired, valid_active)`` counts at ``now``."""
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              count(*) filter (
                where status = 'active' and expired_at is not null and expired_at < $1
              ) as active_but_expired,
              count(*) filter (
                where status = 'active' and (expired_at is null or expired_at > $1)
              ) as valid_active
            from posts
            """,
            now,
        )
        return int(row["active_but_expired"]), int(row["valid_active"])

    # Packages

    async def get_package(self, package_id: str) -> PackageRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select id, name, price, duration_days, is_active, priority
            from packages
            where id = $1
            """,
            package_id,
        )
        if not row:
            return None
        return PackageRecord(
            id=row["id"],
            name=row["name"],
            price=float(row["price"]),
            duration_days=int(row["duration_days"]),
            is_active=bool(row["is_active"]),
            priority=row["priority"],
        )

    # Payments

    async def cancel_stale_payments(self, *, cutoff: datetime, now: datetime, reason: str) -> list[PaymentRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            update payments
            set
              status = 'cancelled',
              cancelled_at = $2,
              cancel_reason = $3,
              updated_at = $2
            where status = 'pending'
              and created_at < $1
            returning {PAYMENT_COLUMNS}
            """,
            cutoff,
            now,
            reason,
        )
        return [self._payment_row_to_record(row) for row in rows]

    async def count_pending_payments(
        self,
        *,
        created_before: datetime | None = None,
        created_since: datetime | None = None,
    ) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval(
            """
            select count(*)
            from payments
            where status = 'pending'
              and ($1::timestamptz is null or created_at < $1)
              and ($2::timestamptz is null or created_at >= $2)
            """,
            created_before,
            created_since,
        )
        return int(value or 0)

    async def summarize_pending_payments(self, *, created_before: datetime) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              count(*) as total_expired,
              coalesce(sum(amount), 0) as total_amount,
              min(created_at) as oldest_expired
            from payments
            where status = 'pending'
              and created_at < $1
            """,
            created_before,
        )
        return {
            "total_expired": int(row["total_expired"]),
            "total_amount": float(row["total_amount"]),
            "oldest_expired": row["oldest_expired"],
        }

    async def list_pending_payments(self, *, limit: int, offset: int) -> list[PaymentRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {PAYMENT_COLUMNS}
            from payments
            where status = 'pending'
            order by created_at desc, id desc
            limit $1 offset $2
            """,
            limit,
            offset,
        )
        return [self._payment_row_to_record(row) for row in rows]

    async def cancel_payment(
        self,
        *,
        payment_id: str,
        reason: str,
        now: datetime,
        actor_user_id: str | None,
    ) -> PaymentRecord:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"""
                        update payments
                        set
                          status = 'cancelled',
                          cancelled_at = $2,
                          cancel_reason = $3,
                          updated_at = $2
                        where id = $1::uuid
                          and status = 'pending'
                        returning {PAYMENT_COLUMNS}
                        """,
                        payment_id,
                        now,
                        reason,
                    )
                    if not row:
                        current_status = await conn.fetchval(
                            "select status::text from payments where id = $1::uuid",
                            payment_id,
                        )
                        if current_status is None:
                            raise NotFoundError("payment not found")
                        raise ConflictError(f"cannot cancel payment with status: {current_status}")

                    await self._record_event(
                        conn,
                        entity_type="payment",
                        entity_id=payment_id,
                        event=PostEvent(
                            event_type="cancelled",
                            actor_id=actor_user_id,
                            payload={"reason": reason},
                        ),
                    )
                    return self._payment_row_to_record(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise NotFoundError("payment not found") from exc

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
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            insert into notifications (user_id, type, title, message, data)
            values ($1::uuid, $2, $3, $4, $5::jsonb)
            returning id::text as id, user_id::text as user_id, type, title, message, data, read, created_at
            """,
            user_id,
            type,
            title,
            message,
            json.dumps(data),
        )
        return self._notification_row_to_dict(row)

    async def list_notifications(
        self,
        *,
        user_id: str,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as id, user_id::text as user_id, type, title, message, data, read, created_at
            from notifications
            where user_id = $1::uuid
              and (not $2 or read = false)
            order by created_at desc, id desc
            limit $3 offset $4
            """,
            user_id,
            unread_only,
            limit,
            offset,
        )
        return [self._notification_row_to_dict(row) for row in rows]

    async def count_unread_notifications(self, *, user_id: str) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval(
            "select count(*) from notifications where user_id = $1::uuid and read = false",
            user_id,
        )
        return int(value or 0)

    async def mark_notification_read(self, *, user_id: str, notification_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                update notifications
                set read = true
                where id = $1::uuid
                  and user_id = $2::uuid
                returning id::text as id, user_id::text as user_id, type, title, message, data, read, created_at
                """,
                notification_id,
                user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise NotFoundError("notification not found") from exc
        if not row:
            raise NotFoundError("notification not found")
        return self._notification_row_to_dict(row)

    async def mark_all_notifications_read(self, *, user_id: str) -> int:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            update notifications
            set read = true
            where user_id = $1::uuid
              and read = false
            returning id
            """,
            user_id,
        )
        return len(rows)

    async def _apply_wallet_charge(self, conn: asyncpg.Connection, *, post_id: str, charge: WalletCharge) -> None:
        balance = await conn.fetchval(
            """
            update wallets
            set balance = balance - $2, updated_at = now()
            where user_id = $1::uuid
              and balance >= $2
            returning balance
            """,
            charge.user_id,
            _to_numeric(charge.amount),
        )
        if balance is None:
            wallet_exists = await conn.fetchval("select 1 from wallets where user_id = $1::uuid", charge.user_id)
            if not wallet_exists:
                raise NotFoundError("user wallet not found")
            raise ValidationFailedError("insufficient wallet balance")

        await conn.execute(
            """
            insert into payments (
              user_id,
              post_id,
              order_id,
              amount,
              payment_method,
              status,
              description,
              completed_at,
              metadata
            )
            values ($1::uuid, $2::uuid, $3, $4, 'wallet', 'completed', $5, now(), $6::jsonb)
            """,
            charge.user_id,
            post_id,
            charge.order_id,
            _to_numeric(charge.amount),
            charge.description,
            json.dumps(charge.metadata),
        )

    @staticmethod
    async def _record_event(
        conn: asyncpg.Connection,
        *,
        entity_type: str,
        entity_id: str,
        event: PostEvent,
    ) -> None:
        await conn.execute(
            """
            insert into provenance_events (
              entity_type,
              entity_id,
              event_type,
              actor_type,
              actor_id,
              payload
            )
            values ($1, $2::uuid, $3, $4, $5::uuid, $6::jsonb)
            """,
            entity_type,
            entity_id,
            event.event_type,
            event.actor_type,
            event.actor_id,
            json.dumps(event.payload, default=str),
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise UnavailableError("EL_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise UnavailableError("database unavailable") from exc

    @staticmethod
    def _post_row_to_record(row: asyncpg.Record) -> PostRecord:
        return PostRecord(
            id=row["id"],
            author_id=row["author_id"],
            title=row["title"],
            status=ListingStatus(row["status"]),
            description=row["description"],
            content=row["content"],
            price=float(row["price"]) if row["price"] is not None else None,
            area=float(row["area"]) if row["area"] is not None else None,
            address=row["address"],
            category=row["category"],
            post_type=row["post_type"],
            images=list(row["images"] or []),
            tags=list(row["tags"] or []),
            package_id=row["package_id"],
            package_duration=row["package_duration"],
            original_package_duration=row["original_package_duration"],
            expired_at=row["expired_at"],
            approved_at=row["approved_at"],
            approved_by=row["approved_by"],
            rejected_at=row["rejected_at"],
            rejected_by=row["rejected_by"],
            rejected_reason=row["rejected_reason"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @classmethod
    def _payment_row_to_record(cls, row: asyncpg.Record) -> PaymentRecord:
        return PaymentRecord(
            id=row["id"],
            order_id=row["order_id"],
            user_id=row["user_id"],
            post_id=row["post_id"],
            amount=float(row["amount"]),
            currency=row["currency"],
            payment_method=row["payment_method"],
            status=PaymentStatus(row["status"]),
            description=row["description"],
            completed_at=row["completed_at"],
            cancelled_at=row["cancelled_at"],
            cancel_reason=row["cancel_reason"],
            metadata=cls._coerce_json_dict(row["metadata"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @classmethod
    def _notification_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "type": row["type"],
            "title": row["title"],
            "message": row["message"],
            "data": cls._coerce_json_dict(row["data"]),
            "read": bool(row["read"]),
            "created_at": row["created_at"],
        }

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}



def _to_numeric(value: float | int | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))
