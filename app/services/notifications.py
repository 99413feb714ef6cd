from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.schemas.dispatch import DispatchReport, DistributionPolicy, EmailMessage
from ..repos import admin_settings as settings_repo
from . import dispatch
from .dispatch import Sleep
from .mailer import EmailTransport
from .templates import approved_submission_email, approved_update_email, pending_review_email

log = logging.getLogger(__name__)


async def notify_recipients(
    db: AsyncSession,
    message: EmailMessage,
    policy: Optional[DistributionPolicy] = None,
    *,
    transport: EmailTransport,
    sleep: Sleep = asyncio.sleep,
    cancel: Optional[asyncio.Event] = None,
) -> DispatchReport:
    """Send `message` to whoever the (given or configured) distribution policy names."""
    settings = await settings_repo.get_snapshot(db)
    effective = DistributionPolicy(policy) if policy is not None else settings.distribution_policy
    recipients = await dispatch.resolve_recipients(db, effective, settings)
    # release the read transaction before a potentially long paced send
    await db.rollback()
    if not recipients:
        log.info("notify_no_recipients", extra={"policy": effective.value})
        return DispatchReport()
    return await dispatch.send(message, recipients, transport=transport, sleep=sleep, cancel=cancel)


async def notify_approved_submission(
    db: AsyncSession,
    *,
    title: str,
    description: str,
    requester: Optional[str],
    prayer_for: Optional[str] = None,
    is_anonymous: bool = False,
    transport: EmailTransport,
) -> DispatchReport:
    msg = approved_submission_email(
        title=title,
        description=description,
        requester=requester,
        prayer_for=prayer_for,
        is_anonymous=is_anonymous,
    )
    return await notify_recipients(db, msg, transport=transport)


async def notify_approved_update(
    db: AsyncSession,
    *,
    title: str,
    author: Optional[str],
    content: str,
    transport: EmailTransport,
) -> DispatchReport:
    msg = approved_update_email(title=title, author=author, content=content)
    return await notify_recipients(db, msg, transport=transport)


async def notify_admins_pending(
    db: AsyncSession,
    *,
    kind: str,
    title: str,
    submitted_by: Optional[str],
    transport: EmailTransport,
) -> DispatchReport:
    """Pending-review notices always go to the admin list, whatever the public policy is."""
    msg = pending_review_email(kind=kind, title=title, submitted_by=submitted_by)
    return await notify_recipients(db, msg, DistributionPolicy.ADMIN_ONLY, transport=transport)

