from __future__ import annotations

from typing import Any, Dict

from sourcing_engine.messages import error_message


class AppError(Exception):
    """Base for every error the engine raises on purpose.

    ``code`` is the stable machine-readable identifier returned to callers,
    ``message_key`` selects the human text from ``messages``. ``payload`` is
    merged into the JSON response so callers can see which document and
    status caused the rejection.
    """

    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
    retryable = False

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = self.default_critical if critical is None else bool(critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        return error_message(self.message_key, error_message("unexpected_error"))

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.user_message(), "request_id": request_id}
        if self.retryable:
            body["retryable"] = True
        body.update(self.payload)
        return body


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    """Input rejected before any write. Never retried."""

    default_code = "validation_error"
    default_message_key = "validation_error"


class StateConflictError(UserActionError):
    """The documents are in a status that does not allow the action."""

    default_code = "action_not_allowed_for_status"
    default_message_key = "action_not_allowed_for_status"
    default_http_status = 409


class ReferentialIntegrityError(UserActionError):
    """A document referenced by the operation does not exist."""

    default_code = "referenced_document_missing"
    default_message_key = "referenced_document_missing"
    default_http_status = 409


class NotFoundError(ReferentialIntegrityError):
    """The document addressed by the request does not exist."""

    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404


class TransactionAbortError(AppError):
    """Write conflict in the store; the whole operation may be replayed."""

    default_code = "transaction_conflict"
    default_message_key = "transaction_conflict"
    default_http_status = 503
    default_critical = False
    retryable = True


class UnexpectedError(AppError):
    """Wraps an exception nobody anticipated; always logged with its traceback."""

    default_code = "unexpected_error"
