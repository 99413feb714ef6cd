import json

import httpx
import pytest

from app.config import get_settings
from app.domain.actions import ActionType
from app.domain.errors import SendFailure, TransportUnavailable
from app.services.mailer import GRAPH_URL, GraphEmailTransport
from app.services.templates import approved_submission_email, verification_code_email

pytestmark = pytest.mark.asyncio


def _graph_settings():
    return get_settings().model_copy(
        update={
            "AZURE_TENANT_ID": "tenant",
            "AZURE_CLIENT_ID": "client",
            "AZURE_CLIENT_SECRET": "secret",
            "MAIL_FROM_ADDRESS": "prayer@example.org",
        }
    )


def _transport(handler, token_result=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    t = GraphEmailTransport(_graph_settings(), client=client)
    t._acquire = lambda: token_result if token_result is not None else {"access_token": "tok"}
    return t, client


async def test_graph_send_posts_message():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(202)

    t, client = _transport(handler)
    async with client:
        await t.send(to="alice@example.org", subject="Hi", html_body="<p>x</p>", text_body="x")

    assert seen["url"] == f"{GRAPH_URL}/users/prayer@example.org/sendMail"
    assert seen["auth"] == "Bearer tok"
    msg = seen["body"]["message"]
    assert msg["toRecipients"] == [{"emailAddress": {"address": "alice@example.org"}}]
    assert msg["body"] == {"contentType": "HTML", "content": "<p>x</p>"}


async def test_graph_error_status_is_send_failure():
    t, client = _transport(lambda request: httpx.Response(403, text="denied"))

    async with client:
        with pytest.raises(SendFailure) as exc:
            await t.send(to="alice@example.org", subject="Hi", html_body="", text_body="x")

    assert "403" in exc.value.detail


async def test_rejected_credentials_make_transport_unavailable():
    t, client = _transport(
        lambda request: httpx.Response(202),
        token_result={"error": "invalid_client", "error_description": "bad secret"},
    )

    async with client:
        with pytest.raises(TransportUnavailable):
            await t.ensure_available()
        with pytest.raises(SendFailure):
            await t.send(to="alice@example.org", subject="Hi", html_body="", text_body="x")


async def test_verification_email_carries_code_and_ttl():
    msg = verification_code_email("042917", ActionType.UPDATE, 15)

    assert msg.subject == "Your Verification Code: 042917"
    assert "add a prayer update" in msg.text_body
    assert "15 minutes" in msg.html_body


async def test_html_body_escapes_user_text():
    msg = approved_submission_email(title="<script>x</script>", description="a & b", requester="Eve")

    assert "<script>" not in msg.html_body
    assert "&lt;script&gt;" in msg.html_body
    assert "<script>x</script>" in msg.subject
