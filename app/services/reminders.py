from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StorageError, TransportUnavailable
from ..domain.schemas.dispatch import AdminSettings, DispatchReport, EmailMessage, NotificationTarget, RateLimit
from ..observability.metrics import REMINDERS_SENT
from ..repos import items as items_repo
from ..repos.items import ACTIVE_STATUSES, ReminderCandidate
from . import dispatch
from .dispatch import Sleep
from .mailer import EmailTransport
from .templates import reminder_email

log = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "lock:reminder_sweep"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _is_candidate(item: ReminderCandidate) -> bool:
    return (
        item.status in ACTIVE_STATUSES
        and item.approval_status == "approved"
        and bool((item.email or "").strip())
    )


def compute_due_items(
    items: Iterable[ReminderCandidate],
    reminder_interval_days: int,
    now: datetime,
) -> List[ReminderCandidate]:
    """
    Items whose latest activity (or latest reminder, whichever is newer) is at
    least `reminder_interval_days` old. Oldest activity first, ties by id.
    An interval of 0 or less disables reminders.
    """
    if reminder_interval_days <= 0:
        return []
    interval = timedelta(days=reminder_interval_days)
    due: List[ReminderCandidate] = []
    for item in items:
        if not _is_candidate(item):
            continue
        anchor = item.last_activity_at
        if item.last_reminder_sent_at is not None and item.last_reminder_sent_at > anchor:
            anchor = item.last_reminder_sent_at
        if now - anchor >= interval:
            due.append(item)
    due.sort(key=lambda i: (i.last_activity_at, str(i.id)))
    return due


async def _release(db: AsyncSession, item: ReminderCandidate, at: datetime) -> None:
    try:
        await items_repo.release_reminder(db, item.id, at=at, previous=item.last_reminder_sent_at)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("could not release reminder claim") from e


async def run_reminder_sweep(
    db: AsyncSession,
    settings: AdminSettings,
    *,
    transport: EmailTransport,
    render: Callable[[ReminderCandidate], EmailMessage] = reminder_email,
    rate_limit: Optional[RateLimit] = None,
    sleep: Sleep = asyncio.sleep,
    cancel: Optional[asyncio.Event] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DispatchReport:
    """
    Remind every due item once.

    Each item is claimed (last_reminder_sent_at stamped with the sweep time and
    committed) before its message goes out, so an overlapping sweep skips it. A
    failed send gives the claim back and the item stays due. Raises
    TransportUnavailable only before the first send; if the transport is lost
    later, the current item is recorded as failed and the partial report returned.
    """
    sweep_at = now or _now_utc()
    report = DispatchReport()
    if settings.reminder_interval_days <= 0:
        log.info("reminders_disabled")
        return report

    try:
        candidates = await items_repo.list_reminder_candidates(db)
        await db.rollback()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("could not load reminder candidates") from e

    due = compute_due_items(candidates, settings.reminder_interval_days, sweep_at)
    if limit is not None:
        due = due[: max(limit, 0)]
    log.info("reminder_sweep_start", extra={"candidates": len(candidates), "due": len(due)})
    if not due:
        return report

    await transport.ensure_available()

    rate_limit = rate_limit or dispatch.default_rate_limit()
    cutoff = sweep_at - timedelta(days=settings.reminder_interval_days)
    for idx, item in enumerate(due):
        if cancel is not None and cancel.is_set():
            report.cancelled = True
            break
        # one message per item; keep the overall rate within the window
        if idx and idx % rate_limit.max_per_window == 0:
            if await dispatch.pause(rate_limit.window_seconds, sleep=sleep, cancel=cancel):
                report.cancelled = True
                break

        try:
            claimed = await items_repo.claim_reminder(db, item.id, at=sweep_at, cutoff=cutoff)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise StorageError("could not record reminder") from e
        if not claimed:
            log.info("reminder_already_claimed", extra={"item_id": str(item.id)})
            continue

        target = NotificationTarget(email=item.email.strip().lower(), name=item.requester)
        try:
            item_report = await dispatch.send(
                render(item), [target], rate_limit, transport=transport, sleep=sleep, cancel=cancel
            )
        except TransportUnavailable as e:
            await _release(db, item, sweep_at)
            report.record_failed(target.email, e.detail)
            log.warning("reminder_sweep_transport_lost", extra={"item_id": str(item.id), "reason": e.detail})
            break
        report.merge(item_report)
        if item_report.sent:
            REMINDERS_SENT.inc()
        else:
            await _release(db, item, sweep_at)

    log.info(
        "reminder_sweep_done",
        extra={"sent": len(report.sent), "failed": len(report.failed), "cancelled": report.cancelled},
    )
    return report
