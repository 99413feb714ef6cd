from __future__ import annotations
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from ..config import get_settings
from ..domain.errors import GateError
from ..services.mailer import EmailTransport, get_transport

S = get_settings()


def get_mail_transport() -> EmailTransport:
    return get_transport()


async def require_trigger_token(x_trigger_token: Optional[str] = Header(default=None)) -> None:
    """Shared secret for cron/manual triggers. Not an admin login."""
    expected = S.TRIGGER_TOKEN or ""
    if not x_trigger_token or not expected or not hmac.compare_digest(
        x_trigger_token.encode(), expected.encode()
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid trigger token")


def http_error(e: GateError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail={"code": e.code, "detail": e.detail})
