from __future__ import annotations
from typing import Awaitable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import get_settings
from ...db import get_db
from ...domain.errors import GateError, StorageError
from ...domain.schemas.dispatch import (
    ApprovedSubmissionIn,
    ApprovedUpdateIn,
    DispatchReport,
    NotifyIn,
    PendingReviewIn,
)
from ...redis_client import acquire_lock, release_lock
from ...repos import admin_settings as settings_repo
from ...services.mailer import EmailTransport
from ...services.notifications import (
    notify_admins_pending,
    notify_approved_submission,
    notify_approved_update,
    notify_recipients,
)
from ...services.reminders import SWEEP_LOCK_KEY, run_reminder_sweep
from ..deps import get_mail_transport, http_error, require_trigger_token

router = APIRouter(tags=["dispatch"], dependencies=[Depends(require_trigger_token)])
S = get_settings()


async def _dispatch(db: AsyncSession, pending: Awaitable[DispatchReport]) -> DispatchReport:
    try:
        return await pending
    except SQLAlchemyError as e:
        await db.rollback()
        raise http_error(StorageError("could not resolve recipients")) from e
    except GateError as e:
        raise http_error(e)


@router.post("/dispatch/notify", response_model=DispatchReport)
async def notify(
    payload: NotifyIn,
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    return await _dispatch(db, notify_recipients(db, payload.to_message(), payload.policy, transport=transport))


@router.post("/dispatch/approved-submission", response_model=DispatchReport)
async def approved_submission(
    payload: ApprovedSubmissionIn,
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    return await _dispatch(
        db,
        notify_approved_submission(
            db,
            title=payload.title,
            description=payload.description,
            requester=payload.requester,
            prayer_for=payload.prayer_for,
            is_anonymous=payload.is_anonymous,
            transport=transport,
        ),
    )


@router.post("/dispatch/approved-update", response_model=DispatchReport)
async def approved_update(
    payload: ApprovedUpdateIn,
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    return await _dispatch(
        db,
        notify_approved_update(
            db, title=payload.title, author=payload.author, content=payload.content, transport=transport
        ),
    )


@router.post("/dispatch/pending-review", response_model=DispatchReport)
async def pending_review(
    payload: PendingReviewIn,
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    return await _dispatch(
        db,
        notify_admins_pending(
            db, kind=payload.kind, title=payload.title, submitted_by=payload.submitted_by, transport=transport
        ),
    )


@router.post("/reminders/sweep", response_model=DispatchReport)
async def sweep(
    limit: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    token = await acquire_lock(SWEEP_LOCK_KEY, S.SWEEP_LOCK_TTL_SEC)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "sweep_running", "detail": "a reminder sweep is already running"},
        )
    try:
        settings = await settings_repo.get_snapshot(db)
        return await run_reminder_sweep(db, settings, transport=transport, limit=limit)
    except SQLAlchemyError as e:
        await db.rollback()
        raise http_error(StorageError("could not load admin settings")) from e
    except GateError as e:
        raise http_error(e)
    finally:
        await release_lock(SWEEP_LOCK_KEY, token)
