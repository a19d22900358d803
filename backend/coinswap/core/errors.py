from __future__ import annotations

from typing import Any


class TradeError(Exception):
    """Base class for every error the trade engine reports to callers.

    Each subclass carries a stable machine-readable ``code`` and the HTTP
    status it maps to. ``extra`` is merged into the error response body.
    """

    code = "trade_error"
    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


class ValidationFailed(TradeError):
    code = "validation_error"
    status_code = 400


class Unauthenticated(TradeError):
    code = "unauthenticated"
    status_code = 401


class Forbidden(TradeError):
    code = "forbidden"
    status_code = 403


class NotFound(TradeError):
    code = "not_found"
    status_code = 404


class InvalidState(TradeError):
    code = "invalid_state"
    status_code = 409


class ConflictRetry(TradeError):
    """Another writer changed the trade first; the same request may be retried."""

    code = "conflict_retry"
    status_code = 409


class InternalError(TradeError):
    code = "internal_error"
    status_code = 500
