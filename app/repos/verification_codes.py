from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import VerificationCode


async def insert_code(
    db: AsyncSession,
    *,
    email: str,
    code: str,
    action_type: str,
    action_data: dict,
    expires_at: datetime,
    created_at: datetime,
) -> VerificationCode:
    row = VerificationCode(
        email=email,
        code=code,
        action_type=action_type,
        action_data=action_data,
        expires_at=expires_at,
        created_at=created_at,
    )
    db.add(row)
    await db.flush()
    # no commit here; caller's transaction should commit
    return row


async def get_by_id(db: AsyncSession, code_id: uuid.UUID) -> Optional[VerificationCode]:
    res = await db.execute(
        select(VerificationCode)
        .where(VerificationCode.id == code_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def mark_used(db: AsyncSession, code_id: uuid.UUID, *, code: str, now: datetime) -> bool:
    """
    Consume the code in one conditional UPDATE. True only for the caller whose
    statement flipped used_at from NULL; every concurrent loser sees 0 rows.
    """
    res = await db.execute(
        update(VerificationCode)
        .where(
            VerificationCode.id == code_id,
            VerificationCode.code == code,
            VerificationCode.used_at.is_(None),
            VerificationCode.expires_at > now,
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
