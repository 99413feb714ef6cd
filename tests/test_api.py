import re
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from app.api.deps import get_mail_transport
from app.api.routers import dispatch as dispatch_router
from app.domain.schemas.dispatch import DistributionPolicy
from app.main import app
from app.services import rate_limit
from tests.factories import mk_item, set_admin, submission_data

pytestmark = pytest.mark.asyncio

TRIGGER = {"X-Trigger-Token": "test-trigger"}


@pytest_asyncio.fixture
async def client(db, transport, monkeypatch):
    # no redis in tests: rate limiter and sweep lock become no-ops
    async def _no_limit(*args, **kwargs):
        return None

    async def _lock(*args, **kwargs):
        return "test-lock-token"

    monkeypatch.setattr(rate_limit, "_hit", _no_limit)
    monkeypatch.setattr(dispatch_router, "acquire_lock", _lock)
    monkeypatch.setattr(dispatch_router, "release_lock", _no_limit)
    app.dependency_overrides[get_mail_transport] = lambda: transport
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _code_from(transport) -> str:
    return re.search(r"Verification Code: (\d+)", transport.sent[-1]["subject"]).group(1)


async def _request_code(client, **body):
    payload = {"email": "alice@example.org", "actionType": "submission", "actionData": submission_data()}
    payload.update(body)
    return await client.post("/verification/codes", json=payload)


async def test_request_then_validate_code(client, transport):
    r = await _request_code(client)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["emailStatus"] == "sent"
    assert set(body) == {"codeId", "expiresAt", "emailStatus"}

    code = _code_from(transport)
    r = await client.post("/verification/validate", json={"codeId": body["codeId"], "code": code})
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["actionType"] == "submission"
    assert out["actionData"]["title"] == "Healing for Sam"
    assert out["email"] == "alice@example.org"

    r = await client.post("/verification/validate", json={"codeId": body["codeId"], "code": code})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "used"


async def test_wrong_code_is_400_mismatch(client, transport):
    body = (await _request_code(client)).json()
    code = _code_from(transport)
    wrong = "0" * len(code) if code != "0" * len(code) else "9" * len(code)

    r = await client.post("/verification/validate", json={"codeId": body["codeId"], "code": wrong})

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "mismatch"


async def test_unknown_code_is_404(client):
    r = await client.post("/verification/validate", json={"codeId": str(uuid.uuid4()), "code": "123456"})

    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "not_found"


async def test_invalid_email_is_400(client, transport):
    r = await _request_code(client, email="nope")

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid_input"
    assert transport.attempts == []


async def test_malformed_body_is_400(client):
    r = await client.post("/verification/codes", json={"email": "alice@example.org"})

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid_input"


async def test_resend_returns_a_new_code(client, transport):
    first = (await _request_code(client)).json()

    r = await client.post(f"/verification/codes/{first['codeId']}/resend")

    assert r.status_code == 201, r.text
    assert r.json()["codeId"] != first["codeId"]
    assert len(transport.sent) == 2


async def test_trigger_endpoints_require_token(client):
    r = await client.post("/dispatch/notify", json={"subject": "Hi", "textBody": "hello"})
    assert r.status_code == 401

    r = await client.post("/reminders/sweep", headers={"X-Trigger-Token": "wrong"})
    assert r.status_code == 401


async def test_notify_sends_to_admin_list(client, db, transport):
    await set_admin(
        db,
        distribution_policy=DistributionPolicy.ADMIN_ONLY,
        notification_emails=["admin@example.org", "ops@example.org"],
    )

    r = await client.post(
        "/dispatch/notify",
        headers=TRIGGER,
        json={"subject": "New Prayer Request: Healing", "textBody": "hello", "htmlBody": "<p>hello</p>"},
    )

    assert r.status_code == 200, r.text
    report = r.json()
    assert sorted(report["sent"]) == ["admin@example.org", "ops@example.org"]
    assert report["batches"] == 1
    assert report["cancelled"] is False


async def test_approved_submission_goes_to_all_subscribers(client, db, transport):
    await mk_item(db, created_at=datetime.now(timezone.utc) - timedelta(days=2), email="member@example.org")
    await set_admin(db, distribution_policy=DistributionPolicy.ALL_SUBSCRIBERS)

    r = await client.post(
        "/dispatch/approved-submission",
        headers=TRIGGER,
        json={"title": "Healing for Sam", "description": "Surgery next week", "requester": "Alice", "isAnonymous": True},
    )

    assert r.status_code == 200, r.text
    assert r.json()["sent"] == ["member@example.org"]
    msg = transport.sent[0]
    assert "Healing for Sam" in msg["subject"]
    assert "Anonymous" in msg["text_body"]
    assert "Alice" not in msg["text_body"]


async def test_approved_update_uses_configured_admin_list(client, db, transport):
    await set_admin(db, distribution_policy=DistributionPolicy.ADMIN_ONLY, notification_emails=["admin@example.org"])

    r = await client.post(
        "/dispatch/approved-update",
        headers=TRIGGER,
        json={"title": "Healing for Sam", "content": "Surgery went well", "author": "Bob"},
    )

    assert r.status_code == 200, r.text
    assert r.json()["sent"] == ["admin@example.org"]
    assert "Surgery went well" in transport.sent[0]["text_body"]
    assert "Bob" in transport.sent[0]["text_body"]


async def test_pending_review_endpoint_notifies_admins(client, db, transport):
    await set_admin(
        db,
        distribution_policy=DistributionPolicy.ALL_SUBSCRIBERS,
        notification_emails=["admin@example.org"],
    )

    r = await client.post(
        "/dispatch/pending-review",
        headers=TRIGGER,
        json={"title": "Healing for Sam", "submittedBy": "Alice"},
    )

    assert r.status_code == 200, r.text
    assert transport.recipients == ["admin@example.org"]


async def test_reminder_sweep_endpoint(client, db, transport):
    await set_admin(db, reminder_interval_days=7)
    await mk_item(db, created_at=datetime.now(timezone.utc) - timedelta(days=9), email="alice@example.org")

    r = await client.post("/reminders/sweep", headers=TRIGGER)

    assert r.status_code == 200, r.text
    assert r.json()["sent"] == ["alice@example.org"]
    assert transport.recipients == ["alice@example.org"]


async def test_health_and_metrics(client):
    r = await client.get("/health/liveness")
    assert r.json() == {"alive": True}

    await _request_code(client)
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "verification_codes_issued_total" in r.text
