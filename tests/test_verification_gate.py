import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.db import SessionLocal
from app.domain.actions import ActionType, SubmissionAction, UpdateAction
from app.domain.errors import AlreadyUsed, Expired, InvalidInput, Mismatch, NotFound, StorageError
from app.domain.schemas.dispatch import AdminSettings
from app.domain.schemas.verification import EmailStatus, VerifiedAction
from app.models import VerificationCode
from app.repos import verification_codes as codes_repo
from app.services import verification_gate
from tests.factories import RecordingTransport, submission_data, wrong_code

pytestmark = pytest.mark.asyncio

SETTINGS = AdminSettings()


async def _issue(db, transport, *, email="alice@example.org", action_type="submission", data=None, settings=SETTINGS):
    issued = await verification_gate.issue_code(
        db,
        email=email,
        action_type=action_type,
        action_data=data if data is not None else submission_data(),
        settings=settings,
        transport=transport,
    )
    row = await codes_repo.get_by_id(db, issued.code_id)
    code = row.code
    # end the read so other sessions can take the write lock
    await db.rollback()
    return issued, code


async def _count_codes(db) -> int:
    return int((await db.execute(select(func.count()).select_from(VerificationCode))).scalar_one())


async def test_valid_code_succeeds_exactly_once(db, transport):
    issued, code = await _issue(db, transport)

    assert issued.email_status is EmailStatus.SENT
    assert transport.recipients == ["alice@example.org"]
    assert code in transport.sent[0]["subject"]

    verified = await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    assert verified.action_type is ActionType.SUBMISSION
    assert isinstance(verified.action, SubmissionAction)
    assert verified.action.title == "Healing for Sam"
    assert verified.email == "alice@example.org"

    with pytest.raises(AlreadyUsed):
        await verification_gate.validate_code(db, code_id=issued.code_id, code=code)


async def test_expired_code_is_rejected_regardless_of_value(db, transport, monkeypatch):
    t0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(verification_gate, "_now_utc", lambda: t0)
    issued, code = await _issue(db, transport)
    assert issued.expires_at == t0 + timedelta(minutes=15)

    monkeypatch.setattr(verification_gate, "_now_utc", lambda: t0 + timedelta(minutes=16))
    with pytest.raises(Expired):
        await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    with pytest.raises(Expired):
        await verification_gate.validate_code(db, code_id=issued.code_id, code=wrong_code(code))

    row = await codes_repo.get_by_id(db, issued.code_id)
    assert row.used_at is None


async def test_code_is_still_valid_just_before_expiry(db, transport, monkeypatch):
    t0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(verification_gate, "_now_utc", lambda: t0)
    issued, code = await _issue(db, transport)

    monkeypatch.setattr(verification_gate, "_now_utc", lambda: t0 + timedelta(minutes=14, seconds=59))
    verified = await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    assert verified.action_type is ActionType.SUBMISSION


async def test_wrong_code_is_mismatch_and_leaves_code_unused(db, transport):
    issued, code = await _issue(db, transport)

    with pytest.raises(Mismatch):
        await verification_gate.validate_code(db, code_id=issued.code_id, code=wrong_code(code))

    row = await codes_repo.get_by_id(db, issued.code_id)
    assert row.used_at is None


async def test_five_mismatches_then_correct_code_succeeds(db, transport):
    issued, code = await _issue(db, transport)

    for _ in range(5):
        with pytest.raises(Mismatch):
            await verification_gate.validate_code(db, code_id=issued.code_id, code=wrong_code(code))

    verified = await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    assert verified.email == "alice@example.org"


async def test_unknown_code_id_is_not_found(db):
    with pytest.raises(NotFound):
        await verification_gate.validate_code(db, code_id=uuid.uuid4(), code="123456")


async def test_concurrent_validation_yields_exactly_one_winner(db, transport):
    issued, code = await _issue(db, transport)

    async def one():
        async with SessionLocal() as s:
            return await verification_gate.validate_code(s, code_id=issued.code_id, code=code)

    results = await asyncio.gather(one(), one(), return_exceptions=True)

    wins = [r for r in results if isinstance(r, VerifiedAction)]
    losses = [r for r in results if isinstance(r, AlreadyUsed)]
    assert len(wins) == 1
    assert len(losses) == 1


async def test_email_failure_still_issues_a_usable_code(db):
    transport = RecordingTransport(fail_for={"bob@example.org"})
    issued, code = await _issue(db, transport, email="bob@example.org")

    assert issued.email_status is EmailStatus.FAILED
    assert transport.sent == []
    verified = await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    assert verified.email == "bob@example.org"


async def test_email_timeout_is_reported_as_failed(db, monkeypatch):
    monkeypatch.setattr(verification_gate.get_settings(), "EMAIL_SEND_TIMEOUT_SEC", 0.05)
    transport = RecordingTransport(hang_for={"slow@example.org"})

    issued, _ = await _issue(db, transport, email="slow@example.org")

    assert issued.email_status is EmailStatus.FAILED
    assert await _count_codes(db) == 1


async def test_email_is_normalized(db, transport):
    issued, _ = await _issue(db, transport, email="  Alice@Example.ORG ")

    row = await codes_repo.get_by_id(db, issued.code_id)
    assert row.email == "alice@example.org"
    assert transport.recipients == ["alice@example.org"]


async def test_code_length_follows_admin_settings(db, transport):
    _, code = await _issue(db, transport, settings=AdminSettings(verification_code_length=8))

    assert len(code) == 8
    assert code.isdigit()


@pytest.mark.parametrize(
    "email,action_type,data",
    [
        ("not-an-email", "submission", submission_data()),
        ("a@b", "submission", submission_data()),
        ("alice@example.org", "launch_rockets", submission_data()),
        ("alice@example.org", "submission", {}),
        ("alice@example.org", "submission", submission_data(title="")),
        ("alice@example.org", "update", submission_data()),
    ],
)
async def test_invalid_input_creates_nothing(db, transport, email, action_type, data):
    with pytest.raises(InvalidInput):
        await verification_gate.issue_code(
            db, email=email, action_type=action_type, action_data=data, settings=SETTINGS, transport=transport
        )

    assert await _count_codes(db) == 0
    assert transport.attempts == []


async def test_update_payload_round_trips_through_the_gate(db, transport):
    item_id = uuid.uuid4()
    issued, code = await _issue(
        db,
        transport,
        action_type="update",
        data={"item_id": str(item_id), "content": "Surgery went well", "author": "Alice", "mark_as_answered": True},
    )

    verified = await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    assert isinstance(verified.action, UpdateAction)
    assert verified.action.item_id == item_id
    assert verified.action.mark_as_answered is True


async def test_resend_issues_new_code_and_keeps_old_one(db, transport):
    first, first_code = await _issue(db, transport)

    second = await verification_gate.resend_code(db, code_id=first.code_id, settings=SETTINGS, transport=transport)
    assert second.code_id != first.code_id
    assert len(transport.sent) == 2

    second_row = await codes_repo.get_by_id(db, second.code_id)
    assert second_row.email == "alice@example.org"
    assert second_row.action_type == "submission"

    # the earlier code was not revoked
    verified = await verification_gate.validate_code(db, code_id=first.code_id, code=first_code)
    assert verified.action.title == "Healing for Sam"


async def test_resend_of_used_or_missing_code_fails(db, transport):
    issued, code = await _issue(db, transport)
    await verification_gate.validate_code(db, code_id=issued.code_id, code=code)

    with pytest.raises(AlreadyUsed):
        await verification_gate.resend_code(db, code_id=issued.code_id, settings=SETTINGS, transport=transport)
    with pytest.raises(NotFound):
        await verification_gate.resend_code(db, code_id=uuid.uuid4(), settings=SETTINGS, transport=transport)


async def test_storage_failure_on_issue_persists_nothing_and_sends_nothing(db, transport, monkeypatch):
    async def _broken_insert(*args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(codes_repo, "insert_code", _broken_insert)

    with pytest.raises(StorageError):
        await verification_gate.issue_code(
            db, email="alice@example.org", action_type="submission", action_data=submission_data(),
            settings=SETTINGS, transport=transport,
        )

    assert await _count_codes(db) == 0
    assert transport.attempts == []


async def test_storage_failure_on_validate_leaves_code_unused(db, transport, monkeypatch):
    issued, code = await _issue(db, transport)

    async def _broken_mark_used(*args, **kwargs):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(codes_repo, "mark_used", _broken_mark_used)
    with pytest.raises(StorageError):
        await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    monkeypatch.undo()

    row = await codes_repo.get_by_id(db, issued.code_id)
    assert row.used_at is None
    await db.rollback()

    verified = await verification_gate.validate_code(db, code_id=issued.code_id, code=code)
    assert verified.email == "alice@example.org"
