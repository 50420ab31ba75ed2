"""Login endpoints and the guards used by protected routes."""

from __future__ import annotations

import hmac
import logging
from functools import wraps
from typing import Any, Callable, TypeVar, cast

from flask import Blueprint, g, jsonify, request, session
from pymongo.errors import PyMongoError

from ..db import serialize_student
from ..errors import Forbidden, InvalidToken, NoToken, ValidationError
from .common import clean_string, services, store_failure

auth_bp = Blueprint("auth", __name__)

logger = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])


def require_admin(func: _F) -> _F:
    """Ensure the current session belongs to the admin user."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        if not session.get("is_admin"):
            raise Forbidden()
        return func(*args, **kwargs)

    return cast(_F, wrapper)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "").strip()
    if not header:
        raise NoToken()
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        raise InvalidToken()
    token = token.strip()
    if not token:
        raise NoToken()
    return token


def require_student(func: _F) -> _F:
    """Resolve the bearer token into ``g.student_id`` before calling the view."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        g.student_id = services().identity.verify(_bearer_token())
        return func(*args, **kwargs)

    return cast(_F, wrapper)


def _json_object() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def ensure_caller(student_id: str) -> None:
    if g.get("student_id") != student_id:
        raise Forbidden()


@auth_bp.post("/api/sessions")
def login():
    payload = _json_object()
    email = clean_string(payload.get("email"))
    password = payload.get("password")
    if not isinstance(password, str):
        password = ""

    try:
        student, token = services().identity.authenticate(email, password)
    except PyMongoError as exc:
        raise store_failure("Failed to authenticate student", exc) from exc

    return jsonify({"token": token, "student": serialize_student(student)}), 200


@auth_bp.post("/api/admin/login")
def admin_login():
    payload = _json_object()
    username = clean_string(payload.get("username"))
    password = str(payload.get("password", ""))
    settings = services().settings

    user_ok = hmac.compare_digest(username.encode("utf-8"), settings.admin_user.encode("utf-8"))
    pass_ok = hmac.compare_digest(password.encode("utf-8"), settings.admin_pass.encode("utf-8"))
    if user_ok and pass_ok:
        session.clear()
        session["is_admin"] = True
        session.permanent = False
        return (
            jsonify({
                "ok": True,
                "user": {"username": settings.admin_user, "role": "admin"},
            }),
            200,
        )

    session.pop("is_admin", None)
    logger.warning("Rejected admin login for %r", username)
    return jsonify({"error": "invalid_credentials"}), 401


@auth_bp.post("/api/admin/logout")
def admin_logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.get("/api/admin/me")
def admin_me():
    return jsonify({"is_admin": bool(session.get("is_admin", False))})


__all__ = ["auth_bp", "ensure_caller", "require_admin", "require_student"]
