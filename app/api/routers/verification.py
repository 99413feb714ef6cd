from __future__ import annotations
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...db import get_db
from ...domain.actions import dump_action
from ...domain.errors import GateError, StorageError
from ...domain.schemas.verification import IssueCodeIn, IssueCodeOut, ValidateCodeIn, ValidateCodeOut
from ...repos import admin_settings as settings_repo
from ...services import verification_gate
from ...services.mailer import EmailTransport
from ...services.rate_limit import limit_code_request, limit_code_validate
from ..deps import get_mail_transport, http_error

router = APIRouter(prefix="/verification", tags=["verification"])


async def _settings_snapshot(db: AsyncSession):
    try:
        return await settings_repo.get_snapshot(db)
    except SQLAlchemyError as e:
        await db.rollback()
        raise http_error(StorageError("could not load admin settings")) from e


@router.post(
    "/codes",
    response_model=IssueCodeOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_code_request)],
)
async def request_code(
    payload: IssueCodeIn,
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    settings = await _settings_snapshot(db)
    try:
        issued = await verification_gate.issue_code(
            db,
            email=payload.email,
            action_type=payload.action_type,
            action_data=payload.action_data,
            settings=settings,
            transport=transport,
        )
    except GateError as e:
        raise http_error(e)
    return IssueCodeOut.from_issued(issued)


@router.post(
    "/codes/{code_id}/resend",
    response_model=IssueCodeOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_code_request)],
)
async def resend_code(
    code_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    transport: EmailTransport = Depends(get_mail_transport),
):
    settings = await _settings_snapshot(db)
    try:
        issued = await verification_gate.resend_code(db, code_id=code_id, settings=settings, transport=transport)
    except GateError as e:
        raise http_error(e)
    return IssueCodeOut.from_issued(issued)


@router.post(
    "/validate",
    response_model=ValidateCodeOut,
    dependencies=[Depends(limit_code_validate)],
)
async def validate_code(payload: ValidateCodeIn, db: AsyncSession = Depends(get_db)):
    try:
        verified = await verification_gate.validate_code(db, code_id=payload.code_id, code=payload.code)
    except GateError as e:
        raise http_error(e)
    return ValidateCodeOut(
        action_type=verified.action_type,
        action_data=dump_action(verified.action),
        email=verified.email,
    )
