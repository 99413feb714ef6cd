from __future__ import annotations


class GateError(Exception):
    """Base for every error the verification/dispatch core raises on purpose."""

    code = "error"
    http_status = 500

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class InvalidInput(GateError):
    code = "invalid_input"
    http_status = 400


# ---- verification outcomes (user-actionable, never merged) ----
class NotFound(GateError):
    code = "not_found"
    http_status = 404


class Expired(GateError):
    code = "expired"
    http_status = 410


class AlreadyUsed(GateError):
    code = "used"
    http_status = 409


class Mismatch(GateError):
    code = "mismatch"
    http_status = 400


# ---- infrastructure ----
class StorageError(GateError):
    code = "storage_error"
    http_status = 503


class TransportUnavailable(GateError):
    code = "transport_unavailable"
    http_status = 503


class SendFailure(GateError):
    """One recipient could not be sent to. Collected into reports, not propagated."""

    code = "send_failed"
    http_status = 502
