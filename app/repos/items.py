from __future__ import annotations
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Item, ItemUpdate

ACTIVE_STATUSES = ("current", "ongoing")


@dataclass(frozen=True)
class ReminderCandidate:
    """An item joined with the timestamp of its newest update (None if it has none)."""
    id: uuid.UUID
    title: str
    prayer_for: Optional[str]
    requester: Optional[str]
    is_anonymous: bool
    email: Optional[str]
    status: str
    approval_status: str
    created_at: datetime
    last_reminder_sent_at: Optional[datetime]
    last_update_at: Optional[datetime]

    @property
    def last_activity_at(self) -> datetime:
        if self.last_update_at and self.last_update_at > self.created_at:
            return self.last_update_at
        return self.created_at


async def list_reminder_candidates(db: AsyncSession) -> list[ReminderCandidate]:
    """Active, approved items that carry an email, with their newest update time (uncapped)."""
    newest_update = (
        select(ItemUpdate.item_id, sa.func.max(ItemUpdate.created_at).label("last_update_at"))
        .group_by(ItemUpdate.item_id)
        .subquery()
    )
    rows = await db.execute(
        select(Item, newest_update.c.last_update_at)
        .outerjoin(newest_update, newest_update.c.item_id == Item.id)
        .where(
            Item.status.in_(ACTIVE_STATUSES),
            Item.approval_status == "approved",
            Item.email.is_not(None),
            Item.email != "",
        )
        .order_by(Item.created_at.asc())
    )
    out: list[ReminderCandidate] = []
    for item, last_update_at in rows.all():
        out.append(
            ReminderCandidate(
                id=item.id,
                title=item.title,
                prayer_for=item.prayer_for,
                requester=item.requester,
                is_anonymous=item.is_anonymous,
                email=item.email,
                status=item.status,
                approval_status=item.approval_status,
                created_at=item.created_at,
                last_reminder_sent_at=item.last_reminder_sent_at,
                last_update_at=last_update_at,
            )
        )
    return out


async def claim_reminder(db: AsyncSession, item_id: uuid.UUID, *, at: datetime, cutoff: datetime) -> bool:
    """
    Stamp last_reminder_sent_at only if no reminder went out after `cutoff`.
    False means an overlapping sweep already claimed this item.
    """
    res = await db.execute(
        update(Item)
        .where(
            Item.id == item_id,
            sa.or_(Item.last_reminder_sent_at.is_(None), Item.last_reminder_sent_at <= cutoff),
        )
        .values(last_reminder_sent_at=at)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def release_reminder(
    db: AsyncSession, item_id: uuid.UUID, *, at: datetime, previous: Optional[datetime]
) -> None:
    # only undo our own stamp
    await db.execute(
        update(Item)
        .where(Item.id == item_id, Item.last_reminder_sent_at == at)
        .values(last_reminder_sent_at=previous)
        .execution_options(synchronize_session=False)
    )


async def list_subscriber_emails(db: AsyncSession) -> Sequence[str]:
    """Every non-empty submitter email on record, oldest first (may contain duplicates)."""
    rows = await db.execute(
        select(Item.email)
        .where(Item.email.is_not(None), Item.email != "")
        .order_by(Item.created_at.asc(), Item.id.asc())
    )
    return [e for e in rows.scalars().all() if e]
