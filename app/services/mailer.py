from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
from msal import ConfidentialClientApplication

from ..config import Settings, get_settings
from ..domain.errors import SendFailure, TransportUnavailable

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]


class EmailTransport:
    """(to, subject, html, text) -> delivered or SendFailure. No delivery callbacks."""

    name = "base"

    async def ensure_available(self) -> None:
        """Raise TransportUnavailable when nothing at all can be sent (e.g. auth rejected)."""

    async def send(self, *, to: str, subject: str, html_body: str, text_body: str) -> None:
        raise NotImplementedError


class LogEmailTransport(EmailTransport):
    """DEV transport: log the message instead of sending it."""

    name = "log"

    async def send(self, *, to: str, subject: str, html_body: str, text_body: str) -> None:
        logger.info("[DEV] email to=%s subject=%s\n%s", to, subject, text_body)


class GraphEmailTransport(EmailTransport):
    """Microsoft Graph sendMail with app-only (client credentials) auth."""

    name = "graph"

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        settings = settings or get_settings()
        self._from_address = settings.MAIL_FROM_ADDRESS
        self._from_name = settings.MAIL_FROM_NAME
        self._timeout = settings.EMAIL_SEND_TIMEOUT_SEC
        self._client_id = settings.AZURE_CLIENT_ID
        self._client_secret = settings.AZURE_CLIENT_SECRET
        self._authority = f"https://login.microsoftonline.com/{settings.AZURE_TENANT_ID}"
        self._app: Optional[ConfidentialClientApplication] = None
        self._client = client

    def _acquire(self) -> dict:
        # building the app runs authority discovery over the network
        if self._app is None:
            self._app = ConfidentialClientApplication(
                client_id=self._client_id,
                client_credential=self._client_secret,
                authority=self._authority,
            )
        return self._app.acquire_token_for_client(scopes=GRAPH_SCOPES)

    async def _token(self) -> str:
        # msal is synchronous and caches the app token internally
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, self._acquire)
        except Exception as exc:
            raise TransportUnavailable(f"token endpoint unreachable: {exc}") from exc
        result = result or {}
        token = result.get("access_token")
        if not token:
            raise TransportUnavailable(
                f"Microsoft Graph token acquisition failed: {result.get('error_description') or result.get('error')}"
            )
        return token

    async def ensure_available(self) -> None:
        await self._token()

    async def send(self, *, to: str, subject: str, html_body: str, text_body: str) -> None:
        try:
            token = await self._token()
        except TransportUnavailable as exc:
            raise SendFailure(exc.detail) from exc

        body = (
            {"contentType": "HTML", "content": html_body}
            if html_body
            else {"contentType": "Text", "content": text_body}
        )
        payload = {
            "message": {
                "subject": subject,
                "body": body,
                "from": {"emailAddress": {"address": self._from_address, "name": self._from_name}},
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": "false",
        }
        url = f"{GRAPH_URL}/users/{self._from_address}/sendMail"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            if self._client is not None:
                r = await self._client.post(url, json=payload, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    r = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise SendFailure(f"{type(exc).__name__}: {exc}") from exc

        if not 200 <= r.status_code < 300:  # Graph answers 202 Accepted
            raise SendFailure(f"graph status={r.status_code} body={r.text[:300]}")


_transport: Optional[EmailTransport] = None


def get_transport() -> EmailTransport:
    global _transport
    if _transport is None:
        settings = get_settings()
        if settings.graph_configured:
            _transport = GraphEmailTransport(settings)
        else:
            logger.info("Microsoft Graph mail disabled; missing AZURE_* settings. Logging emails instead.")
            _transport = LogEmailTransport()
    return _transport
