from __future__ import annotations

import asyncio
import hmac
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..domain.actions import ActionType, dump_action, parse_action
from ..domain.errors import AlreadyUsed, Expired, InvalidInput, Mismatch, NotFound, SendFailure, StorageError
from ..domain.schemas.dispatch import AdminSettings
from ..domain.schemas.verification import EmailStatus, IssuedCode, VerifiedAction
from ..observability.metrics import CODE_EMAILS, CODES_ISSUED, CODE_VALIDATIONS
from ..repos import verification_codes as codes_repo
from .mailer import EmailTransport
from .templates import verification_code_email

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def generate_code(length: int) -> str:
    # uniform over all `length`-digit strings, leading zeros included
    return "".join(secrets.choice("0123456789") for _ in range(length))


async def issue_code(
    db: AsyncSession,
    *,
    email: str,
    action_type: str,
    action_data: Any,
    settings: AdminSettings,
    transport: EmailTransport,
) -> IssuedCode:
    """
    Persist a fresh single-use code guarding `action_data`, then try to email it.

    The row is committed before the email goes out; a failed send is reported
    through `email_status` and never undoes issuance.
    """
    normalized = normalize_email(email)
    if not EMAIL_RE.match(normalized):
        raise InvalidInput("invalid email format")
    action = parse_action(action_type, action_data)
    kind = ActionType(action.action_type)

    S = get_settings()
    now = _now_utc()
    expires_at = now + timedelta(minutes=S.VERIFICATION_CODE_TTL_MINUTES)
    code = generate_code(settings.verification_code_length)

    try:
        row = await codes_repo.insert_code(
            db,
            email=normalized,
            code=code,
            action_type=kind.value,
            action_data=dump_action(action),
            expires_at=expires_at,
            created_at=now,
        )
        code_id = row.id
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("code_insert_failed", extra={"email": normalized, "action_type": kind.value})
        raise StorageError("could not store verification code") from e

    CODES_ISSUED.labels(action_type=kind.value).inc()
    log.info("code_issued", extra={"code_id": str(code_id), "action_type": kind.value})

    email_status = await _send_code_email(
        transport, to=normalized, code=code, kind=kind, ttl_minutes=S.VERIFICATION_CODE_TTL_MINUTES
    )
    return IssuedCode(code_id=code_id, expires_at=expires_at, email_status=email_status)


async def _send_code_email(
    transport: EmailTransport, *, to: str, code: str, kind: ActionType, ttl_minutes: int
) -> EmailStatus:
    msg = verification_code_email(code, kind, ttl_minutes)
    try:
        await asyncio.wait_for(
            transport.send(to=to, subject=msg.subject, html_body=msg.html_body, text_body=msg.text_body),
            timeout=get_settings().EMAIL_SEND_TIMEOUT_SEC,
        )
    except SendFailure as e:
        log.warning("code_email_failed: %s", e.detail, extra={"to": to})
        CODE_EMAILS.labels(status="failed").inc()
        return EmailStatus.FAILED
    except asyncio.TimeoutError:
        log.warning("code_email_timeout", extra={"to": to})
        CODE_EMAILS.labels(status="failed").inc()
        return EmailStatus.FAILED
    CODE_EMAILS.labels(status="sent").inc()
    return EmailStatus.SENT


async def validate_code(db: AsyncSession, *, code_id: uuid.UUID, code: str) -> VerifiedAction:
    """
    Consume a code and release its payload. Outcomes, in order of precedence:
    NotFound, Expired, AlreadyUsed, Mismatch. A mismatch leaves the code usable.
    """
    submitted = (code or "").strip()
    now = _now_utc()
    try:
        won = await codes_repo.mark_used(db, code_id, code=submitted, now=now)
        row = await codes_repo.get_by_id(db, code_id)
        if won and row is not None:
            result = VerifiedAction(
                action_type=ActionType(row.action_type),
                action=parse_action(row.action_type, row.action_data),
                email=row.email,
            )
            await db.commit()
            CODE_VALIDATIONS.labels(outcome="ok").inc()
            log.info("code_consumed", extra={"code_id": str(code_id), "action_type": row.action_type})
            return result
        # classify before rollback expires the loaded row
        error = _classify_failure(row, submitted, now)
        await db.rollback()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("could not validate verification code") from e

    CODE_VALIDATIONS.labels(outcome=error.code).inc()
    raise error


def _classify_failure(row, submitted: str, now: datetime):
    if row is None:
        return NotFound("verification code not found")
    if now >= row.expires_at:
        return Expired("verification code has expired")
    if row.used_at is not None:
        return AlreadyUsed("verification code has already been used")
    if not hmac.compare_digest(row.code.encode(), submitted.encode()):
        return Mismatch("verification code does not match")
    # matched and live, but another validation consumed it first
    return AlreadyUsed("verification code has already been used")


async def resend_code(
    db: AsyncSession,
    *,
    code_id: uuid.UUID,
    settings: AdminSettings,
    transport: EmailTransport,
) -> IssuedCode:
    """Issue a new code for the same email and payload. The old code is not revoked."""
    try:
        row = await codes_repo.get_by_id(db, code_id)
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("could not load verification code") from e
    if row is None:
        raise NotFound("verification code not found")
    if row.used_at is not None:
        raise AlreadyUsed("verification code has already been used")
    email, action_type, action_data = row.email, row.action_type, dict(row.action_data)
    await db.rollback()
    return await issue_code(
        db,
        email=email,
        action_type=action_type,
        action_data=action_data,
        settings=settings,
        transport=transport,
    )
