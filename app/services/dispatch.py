from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..domain.errors import SendFailure
from ..domain.schemas.dispatch import (
    AdminSettings,
    DispatchReport,
    DistributionPolicy,
    EmailMessage,
    NotificationTarget,
    RateLimit,
)
from ..observability.metrics import DISPATCH_BATCHES, DISPATCH_SENDS
from ..repos import items as items_repo
from .mailer import EmailTransport

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def default_rate_limit() -> RateLimit:
    S = get_settings()
    return RateLimit(max_per_window=S.DISPATCH_MAX_PER_WINDOW, window_seconds=S.DISPATCH_WINDOW_SECONDS)


def normalize_targets(emails: Iterable[Optional[str]]) -> List[NotificationTarget]:
    """Trim and lowercase, drop blanks, keep the first occurrence of each address."""
    seen: set[str] = set()
    out: List[NotificationTarget] = []
    for raw in emails:
        email = (raw or "").strip().lower()
        if not email or email in seen:
            continue
        seen.add(email)
        out.append(NotificationTarget(email=email))
    return out


def unique_targets(recipients: Iterable[NotificationTarget]) -> List[NotificationTarget]:
    """Like normalize_targets, but keeps each target's name."""
    seen: set[str] = set()
    out: List[NotificationTarget] = []
    for target in recipients:
        email = target.email.strip().lower()
        if not email or email in seen:
            continue
        seen.add(email)
        out.append(target if target.email == email else target.model_copy(update={"email": email}))
    return out


async def resolve_recipients(
    db: AsyncSession,
    policy: DistributionPolicy,
    settings: AdminSettings,
) -> List[NotificationTarget]:
    policy = DistributionPolicy(policy)
    if policy is DistributionPolicy.ALL_SUBSCRIBERS:
        emails: Sequence[str] = await items_repo.list_subscriber_emails(db)
    else:
        emails = settings.notification_emails
    targets = normalize_targets(emails)
    log.info("recipients_resolved", extra={"policy": policy.value, "count": len(targets)})
    return targets


def partition(recipients: Sequence[NotificationTarget], size: int) -> List[List[NotificationTarget]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(recipients[i:i + size]) for i in range(0, len(recipients), size)]


async def pause(seconds: float, *, sleep: Sleep, cancel: Optional[asyncio.Event]) -> bool:
    """Wait between batches. Returns True if cancellation was requested during the wait."""
    if cancel is None:
        await sleep(seconds)
        return False
    sleeper = asyncio.ensure_future(sleep(seconds))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        sleeper.cancel()
        waiter.cancel()
    if sleeper.done() and not sleeper.cancelled():
        sleeper.result()
    return cancel.is_set()


async def send(
    message: EmailMessage,
    recipients: Sequence[NotificationTarget],
    rate_limit: Optional[RateLimit] = None,
    *,
    transport: EmailTransport,
    sleep: Sleep = asyncio.sleep,
    cancel: Optional[asyncio.Event] = None,
    send_timeout: Optional[float] = None,
) -> DispatchReport:
    """
    Deliver one rendered message to every recipient in paced batches. Each
    address is sent to at most once, compared case-insensitively.

    Raises TransportUnavailable before anything is sent if the transport cannot
    send at all. Per-recipient failures and timeouts land in the report.
    """
    report = DispatchReport()
    recipients = unique_targets(recipients)
    if not recipients:
        return report

    rate_limit = rate_limit or default_rate_limit()
    timeout = send_timeout if send_timeout is not None else get_settings().EMAIL_SEND_TIMEOUT_SEC

    await transport.ensure_available()

    async def _send_one(target: NotificationTarget) -> Optional[str]:
        try:
            await asyncio.wait_for(
                transport.send(
                    to=target.email,
                    subject=message.subject,
                    html_body=message.html_body,
                    text_body=message.text_body,
                ),
                timeout=timeout,
            )
        except SendFailure as e:
            return e.detail or "send failed"
        except asyncio.TimeoutError:
            return f"timed out after {timeout}s"
        return None

    batches = partition(recipients, rate_limit.max_per_window)
    for idx, batch in enumerate(batches):
        if cancel is not None and cancel.is_set():
            report.cancelled = True
            break

        report.batches += 1
        DISPATCH_BATCHES.inc()
        results = await asyncio.gather(*(_send_one(t) for t in batch))
        for target, reason in zip(batch, results):
            if reason is None:
                report.record_sent(target.email)
                DISPATCH_SENDS.labels(outcome="sent").inc()
            else:
                report.record_failed(target.email, reason)
                DISPATCH_SENDS.labels(outcome="failed").inc()
                log.warning("dispatch_send_failed", extra={"to": target.email, "reason": reason})

        if idx == len(batches) - 1:
            break
        if cancel is not None and cancel.is_set():
            report.cancelled = True
            break
        log.info(
            "dispatch_pacing",
            extra={"batch": idx + 1, "of": len(batches), "seconds": rate_limit.window_seconds},
        )
        if await pause(rate_limit.window_seconds, sleep=sleep, cancel=cancel):
            report.cancelled = True
            break

    log.info(
        "dispatch_done",
        extra={
            "sent": len(report.sent),
            "failed": len(report.failed),
            "batches": report.batches,
            "cancelled": report.cancelled,
        },
    )
    return report
