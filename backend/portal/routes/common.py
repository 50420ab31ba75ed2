"""Helpers shared by the route blueprints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from flask import current_app, jsonify
from pymongo.errors import PyMongoError

from ..config import Settings
from ..db import StoreContext
from ..enrollment import EnrollmentCoordinator
from ..errors import InternalError, ValidationError
from ..identity import IdentityService
from ..models import MAX_COUNT, is_valid_id

logger = logging.getLogger(__name__)

EXTENSION_KEY = "portal"


@dataclass
class PortalServices:
    settings: Settings
    stores: StoreContext
    identity: IdentityService
    enrollment: EnrollmentCoordinator


def services() -> PortalServices:
    return current_app.extensions[EXTENSION_KEY]


def json_error(message: str, status: int, details: Dict[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def clean_string(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def clean_string_or_none(value: Any) -> str | None:
    cleaned = clean_string(value)
    return cleaned if cleaned else None


def require_valid_id(value: str, label: str = "ID") -> str:
    cleaned = clean_string(value)
    if not is_valid_id(cleaned):
        raise ValidationError(f"Invalid {label} format", details={"id": cleaned})
    return cleaned


def parse_positive_int(value: Any) -> int:
    """Accept 3, 3.0 and "3"; reject booleans, fractions and values outside 1..MAX_COUNT."""

    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, int):
        number = value
    else:
        try:
            as_float = float(value)
        except OverflowError:
            raise ValueError("not a positive integer") from None
        if not as_float.is_integer():
            raise ValueError("not a positive integer")
        number = int(as_float)
    if number <= 0 or number > MAX_COUNT:
        raise ValueError("not a positive integer")
    return number


def store_failure(action: str, exc: PyMongoError) -> InternalError:
    logger.exception("%s due to MongoDB error", action)
    return InternalError(details={"store": str(exc)})


def raise_validation(errors: Dict[str, str]) -> None:
    if errors:
        details = {k: v for k, v in errors.items() if k != "_global"}
        raise ValidationError(errors.get("_global", "Validation failed."), details=details)


__all__ = [
    "PortalServices",
    "clean_string",
    "clean_string_or_none",
    "json_error",
    "parse_positive_int",
    "raise_validation",
    "require_valid_id",
    "services",
    "store_failure",
]
