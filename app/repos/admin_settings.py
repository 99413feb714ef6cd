from __future__ import annotations
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..domain.schemas.dispatch import AdminSettings, DistributionPolicy
from ..models import AdminSettingsRow

SETTINGS_ROW_ID = 1


async def get_snapshot(db: AsyncSession) -> AdminSettings:
    """Read admin settings once; a missing row means defaults."""
    row = (
        await db.execute(select(AdminSettingsRow).where(AdminSettingsRow.id == SETTINGS_ROW_ID))
    ).scalar_one_or_none()
    if not row:
        return AdminSettings(verification_code_length=get_settings().DEFAULT_CODE_LENGTH)
    return AdminSettings(
        distribution_policy=DistributionPolicy(row.distribution_policy),
        notification_emails=tuple(row.notification_emails or ()),
        reminder_interval_days=row.reminder_interval_days,
        verification_code_length=row.verification_code_length,
    )


async def upsert(
    db: AsyncSession,
    *,
    distribution_policy: Optional[DistributionPolicy] = None,
    notification_emails: Optional[Iterable[str]] = None,
    reminder_interval_days: Optional[int] = None,
    verification_code_length: Optional[int] = None,
) -> AdminSettingsRow:
    row = await db.get(AdminSettingsRow, SETTINGS_ROW_ID)
    if row is None:
        row = AdminSettingsRow(id=SETTINGS_ROW_ID, notification_emails=[])
        db.add(row)
    if distribution_policy is not None:
        row.distribution_policy = DistributionPolicy(distribution_policy).value
    if notification_emails is not None:
        row.notification_emails = list(notification_emails)
    if reminder_interval_days is not None:
        row.reminder_interval_days = reminder_interval_days
    if verification_code_length is not None:
        row.verification_code_length = verification_code_length
    row.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return row
