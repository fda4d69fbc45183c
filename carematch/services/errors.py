"""Error taxonomy and the structured result every lifecycle operation returns."""

from typing import Any

from fastapi import status
from pydantic import BaseModel


class LifecycleError(Exception):
    code = 'lifecycle_error'
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(LifecycleError):
    """Malformed input or a time-window violation."""
    code = 'validation_error'
    http_status = status.HTTP_400_BAD_REQUEST


class AuthorizationError(LifecycleError):
    """The actor is not a party allowed to perform the action."""
    code = 'authorization_error'
    http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(LifecycleError):
    code = 'not_found'
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(LifecycleError):
    """The appointment is no longer in the state the action requires."""
    code = 'conflict'
    http_status = status.HTTP_409_CONFLICT


class ExternalServiceError(LifecycleError):
    """A payment or notification collaborator failed."""
    code = 'external_service_error'
    http_status = status.HTTP_502_BAD_GATEWAY


class ActionResult(BaseModel):
    success: bool
    error: str | None = None
    error_code: str | None = None
    http_status: int = 200
    appointment_id: int | None = None
    status: str | None = None
    attempts_left: int | None = None
    hours_remaining: int | None = None
    minutes_remaining: int | None = None
    seconds_remaining: int | None = None
    refund_amount: int | None = None
    compensation_amount: int | None = None
    family_charge_amount: int | None = None
    settlement_status: str | None = None
    settlement_pending: bool = False

    @classmethod
    def ok(cls, **fields: Any) -> 'ActionResult':
        return cls(success=True, **fields)

    @classmethod
    def failure(cls, exc: LifecycleError) -> 'ActionResult':
        known = {key: value for key, value in exc.details.items() if key in cls.model_fields}
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.code,
            http_status=exc.http_status,
            **known,
        )
