"""Typed failures shared by the stores, the coordinator and the routes."""

from __future__ import annotations

from typing import Any, Dict


class PortalError(Exception):
    """Base class for failures that map onto a JSON error response."""

    status = 500
    code = "PortalError"
    default_message = "Unexpected error."

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Dict[str, Any] | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}
        if status is not None:
            self.status = status

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PortalError):
    status = 400
    code = "ValidationError"
    default_message = "Validation failed."


class NotFound(PortalError):
    status = 404
    code = "NotFound"
    default_message = "Not found."


class DuplicateKey(PortalError):
    status = 409
    code = "DuplicateKey"
    default_message = "A record with this key already exists."


class InvalidCredential(PortalError):
    status = 401
    code = "InvalidCredential"
    default_message = "Invalid email or password."


class NoToken(PortalError):
    status = 401
    code = "NoToken"
    default_message = "Authorization token is required."


class InvalidToken(PortalError):
    status = 401
    code = "InvalidToken"
    default_message = "Authorization token is invalid or expired."


class Forbidden(PortalError):
    status = 403
    code = "Forbidden"
    default_message = "forbidden"


class AlreadyEnrolled(PortalError):
    status = 409
    code = "AlreadyEnrolled"
    default_message = "Student is already enrolled in this course."


class CourseFull(PortalError):
    status = 409
    code = "CourseFull"
    default_message = "Course has reached its capacity."


class InternalError(PortalError):
    """The store failed; the message of the underlying failure may be shown."""

    status = 503
    code = "InternalError"
    default_message = "Database unavailable. Please try again later."


__all__ = [
    "AlreadyEnrolled",
    "CourseFull",
    "DuplicateKey",
    "Forbidden",
    "InternalError",
    "InvalidCredential",
    "InvalidToken",
    "NoToken",
    "NotFound",
    "PortalError",
    "ValidationError",
]
