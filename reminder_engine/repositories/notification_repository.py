"""Notification store over the notifications table.

Delivery goes through a claim: due rows are moved to ``processing`` with a
claim token and a lease in one conditional update, and every outcome write is
conditional on that token. Two overlapping queue runs therefore never attempt
the same notification, and a run that died mid-batch only holds its rows
until the lease runs out.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.models.notifications import notifications
from reminder_engine.schemas.notifications import NotificationRecord, NotificationStatus


def _to_record(row: Any) -> NotificationRecord:
    return NotificationRecord.model_validate(dict(row._mapping))


class NotificationRepository:
    """CRUD, due-queue and state transition operations for notifications."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    @staticmethod
    def _row_values(values: dict[str, Any], now: datetime) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "status": NotificationStatus.PENDING.value,
            "retry_count": 0,
            "created_at": now,
            "updated_at": now,
            **values,
        }
        for key in ("status", "channel"):
            row[key] = getattr(row[key], "value", row[key])
        return row

    async def create(self, values: dict[str, Any], now: datetime) -> NotificationRecord:
        """Insert a single notification."""
        result = await self.db.execute(
            insert(notifications).values(**self._row_values(values, now)).returning(notifications)
        )
        row = result.fetchone()
        await self.db.commit()
        return _to_record(row)

    async def create_many(
        self, values: list[dict[str, Any]], now: datetime
    ) -> list[NotificationRecord]:
        """Insert several notifications in one transaction."""
        if not values:
            return []

        rows = [self._row_values(item, now) for item in values]
        await self.db.execute(insert(notifications), rows)
        await self.db.commit()

        result = await self.db.execute(
            select(notifications)
            .where(notifications.c.id.in_([row["id"] for row in rows]))
            .order_by(notifications.c.scheduled_for, notifications.c.channel)
        )
        return [_to_record(row) for row in result.fetchall()]

    async def find_by_id(self, notification_id: str) -> NotificationRecord | None:
        """Get notification by ID."""
        result = await self.db.execute(
            select(notifications).where(notifications.c.id == notification_id)
        )
        row = result.fetchone()
        return _to_record(row) if row else None

    async def find_by_appointment_id(self, appointment_id: str) -> list[NotificationRecord]:
        """List every notification of an appointment, earliest first."""
        result = await self.db.execute(
            select(notifications)
            .where(notifications.c.appointment_id == appointment_id)
            .order_by(notifications.c.scheduled_for, notifications.c.channel)
        )
        return [_to_record(row) for row in result.fetchall()]

    @staticmethod
    def _due_condition(now: datetime):
        return and_(
            notifications.c.scheduled_for <= now,
            notifications.c.retry_count < notifications.c.max_retries,
            or_(
                notifications.c.status == NotificationStatus.PENDING.value,
                and_(
                    notifications.c.status == NotificationStatus.PROCESSING.value,
                    notifications.c.claimed_until < now,
                ),
            ),
        )

    async def claim_due(
        self,
        now: datetime,
        limit: int,
        claim_token: str,
        lease_until: datetime,
    ) -> list[NotificationRecord]:
        """
        Claim up to ``limit`` due notifications for delivery.

        Due means pending, scheduled at or before ``now`` and with retries
        left; claims whose lease ran out count as due again.

        Returns:
            The claimed notifications, earliest ``scheduled_for`` first
        """
        due = self._due_condition(now)
        candidates = await self.db.execute(
            select(notifications.c.id)
            .where(due)
            .order_by(notifications.c.scheduled_for)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        ids = list(candidates.scalars().all())
        if not ids:
            await self.db.commit()
            return []

        # Re-checking the due condition makes the claim a compare-and-swap
        await self.db.execute(
            update(notifications)
            .where(notifications.c.id.in_(ids), due)
            .values(
                status=NotificationStatus.PROCESSING.value,
                claim_token=claim_token,
                claimed_until=lease_until,
                updated_at=now,
            )
        )
        await self.db.commit()

        result = await self.db.execute(
            select(notifications)
            .where(notifications.c.claim_token == claim_token)
            .order_by(notifications.c.scheduled_for)
        )
        return [_to_record(row) for row in result.fetchall()]

    async def mark_sent(
        self, notification_id: str, claim_token: str, now: datetime
    ) -> NotificationRecord | None:
        """Record a successful delivery for a claimed notification."""
        return await self._finish_claim(
            notification_id,
            claim_token,
            status=NotificationStatus.SENT.value,
            sent_at=now,
            error_message=None,
            updated_at=now,
        )

    async def record_failure(
        self,
        notification_id: str,
        claim_token: str,
        error: str | None,
        now: datetime,
        retry_at: datetime | None,
    ) -> NotificationRecord | None:
        """
        Record a failed delivery for a claimed notification.

        The retry count, status, error and next attempt time are written in a
        single update. With ``retry_at`` the notification goes back to pending
        for that time; without it the notification is marked failed.
        """
        values: dict[str, Any] = {
            "retry_count": notifications.c.retry_count + 1,
            "error_message": error,
            "updated_at": now,
        }
        if retry_at is None:
            values["status"] = NotificationStatus.FAILED.value
        else:
            values["status"] = NotificationStatus.PENDING.value
            values["scheduled_for"] = retry_at

        return await self._finish_claim(notification_id, claim_token, **values)

    async def release_claim(
        self, notification_id: str, claim_token: str, now: datetime
    ) -> NotificationRecord | None:
        """Hand a claimed notification back to the queue without counting an attempt."""
        return await self._finish_claim(
            notification_id,
            claim_token,
            status=NotificationStatus.PENDING.value,
            updated_at=now,
        )

    async def _finish_claim(
        self, notification_id: str, claim_token: str, **values: Any
    ) -> NotificationRecord | None:
        result = await self.db.execute(
            update(notifications)
            .where(
                notifications.c.id == notification_id,
                notifications.c.claim_token == claim_token,
                notifications.c.status == NotificationStatus.PROCESSING.value,
            )
            .values(claim_token=None, claimed_until=None, **values)
            .returning(notifications)
        )
        row = result.fetchone()
        await self.db.commit()
        return _to_record(row) if row else None

    async def cancel_by_appointment_id(self, appointment_id: str, now: datetime) -> int:
        """Cancel the still-pending notifications of an appointment."""
        result = await self.db.execute(
            update(notifications)
            .where(
                notifications.c.appointment_id == appointment_id,
                notifications.c.status == NotificationStatus.PENDING.value,
            )
            .values(status=NotificationStatus.CANCELLED.value, updated_at=now)
        )
        await self.db.commit()
        return result.rowcount
