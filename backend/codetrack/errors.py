# Overview: Domain error taxonomy shared by services and routes.

"""
Every failure the engine reports is a TrackingError carrying:

- code: stable machine-readable identifier (e.g. "ILLEGAL_TRANSITION")
- http_status: status the API answers with
- details: structured context (offending codes, current status, ...)

Categories:
- validation (400/422): rejected before any state is touched
- state conflict (409): the record is not in a state that allows the action
- not found (404)

Idempotent repeats (already received, already scanned, already in session)
are NOT errors; services return them as results.
"""

from __future__ import annotations

from typing import Any


class TrackingError(Exception):
    code = "TRACKING_ERROR"
    http_status = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


# Validation

class ValidationError(TrackingError):
    code = "VALIDATION_ERROR"
    http_status = 400


class LinkValidationError(TrackingError):
    """Linking rejected; details["failures"] lists each offending code and why."""
    code = "LINK_VALIDATION_FAILED"
    http_status = 422

    def __init__(self, message: str, *, failures: list[dict], details: dict[str, Any] | None = None):
        merged = dict(details or {})
        merged["failures"] = failures
        super().__init__(message, details=merged)
        self.failures = failures


# Not found

class NotFoundError(TrackingError):
    code = "NOT_FOUND"
    http_status = 404


class CodeNotFound(NotFoundError):
    code = "CODE_NOT_FOUND"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class BatchNotFound(NotFoundError):
    code = "BATCH_NOT_FOUND"


class SessionNotFound(NotFoundError):
    code = "SESSION_NOT_FOUND"


class ReportNotFound(NotFoundError):
    code = "REPORT_NOT_FOUND"


class OrganizationNotFound(NotFoundError):
    code = "ORGANIZATION_NOT_FOUND"


# State conflicts

class StateConflictError(TrackingError):
    code = "STATE_CONFLICT"
    http_status = 409


class IllegalTransition(StateConflictError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, *, code_value: str, current_status: str, attempted_status: str, transition: str):
        super().__init__(
            f"Code {code_value} cannot move from {current_status} to {attempted_status}",
            details={
                "code": code_value,
                "current_status": current_status,
                "attempted_status": attempted_status,
                "transition": transition,
            },
        )
        self.current_status = current_status
        self.attempted_status = attempted_status


class InvalidOrderState(StateConflictError):
    code = "INVALID_ORDER_STATE"


class DuplicateBatch(StateConflictError):
    code = "DUPLICATE_BATCH"


class NotSealed(StateConflictError):
    code = "NOT_SEALED"


class NotSealable(StateConflictError):
    code = "NOT_SEALABLE"


class AlreadyShipped(StateConflictError):
    code = "ALREADY_SHIPPED"


class AlreadyClaimed(StateConflictError):
    code = "ALREADY_CLAIMED"


class SessionClosed(StateConflictError):
    code = "SESSION_CLOSED"


class DiscrepancyNotApproved(StateConflictError):
    code = "DISCREPANCY_NOT_APPROVED"


class AlreadyConfirmed(StateConflictError):
    code = "ALREADY_CONFIRMED"


class ActorRoleMismatch(TrackingError):
    """Acting organization is not of the type the operation requires."""
    code = "ACTOR_ROLE_MISMATCH"
    http_status = 403
