"""Student registration, profile and administrative endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from flask import Blueprint, jsonify, request
from pymongo.errors import PyMongoError

from ..db import serialize_course, serialize_student
from ..errors import DuplicateKey, NotFound, ValidationError
from ..identity import validate_password
from ..models import Student, StudentFilter, normalize_code
from ..utils.paging import PagingParamError, page_window, parse_paging_params
from .auth import ensure_caller, require_admin, require_student
from .common import (
    clean_string,
    clean_string_or_none,
    raise_validation,
    require_valid_id,
    services,
    store_failure,
)

students_bp = Blueprint("students", __name__, url_prefix="/api/students")

logger = logging.getLogger(__name__)

STUDENT_SORT_FIELDS = {"name": "name", "email": "email", "created": "created_at"}

_STUDENT_FIELD_ALIASES = {"studentCode": "student_code"}


def _validate_student_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if not isinstance(payload, dict):
        return {}, {"_global": "Request body must be a JSON object."}

    payload = {_STUDENT_FIELD_ALIASES.get(key, key): value for key, value in payload.items()}
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    def require_field(field: str, message: str) -> bool:
        if field not in payload or clean_string(payload.get(field)) == "":
            errors[field] = message
            return False
        return True

    if require_all or "name" in payload:
        if require_field("name", "Name is required."):
            cleaned["name"] = clean_string(payload.get("name"))

    if require_all or "email" in payload:
        if require_field("email", "Email is required."):
            email = clean_string(payload.get("email"))
            if "@" not in email or "." not in email.split("@")[-1]:
                errors["email"] = "Enter a valid email address."
            else:
                cleaned["email"] = email.lower()

    if require_all or "password" in payload:
        password = payload.get("password")
        if not isinstance(password, str) or password == "":
            errors["password"] = "Password is required."
        else:
            try:
                validate_password(password)
            except ValidationError as exc:
                errors.update(exc.details)
            else:
                cleaned["password"] = password

    if require_all or "student_code" in payload:
        if require_field("student_code", "Student code is required."):
            cleaned["student_code"] = normalize_code(payload.get("student_code"))

    return cleaned, errors


def _student_by_id(student_id: str) -> Student:
    student_id = require_valid_id(student_id)
    try:
        student = services().stores.students.get(student_id)
    except PyMongoError as exc:
        raise store_failure("Failed to load student", exc) from exc
    if student is None:
        raise NotFound("Student not found.")
    return student


@students_bp.post("")
def register():
    cleaned, errors = _validate_student_payload(request.get_json(silent=True), require_all=True)
    raise_validation(errors)

    try:
        student, token = services().identity.register(
            cleaned["name"],
            cleaned["email"],
            cleaned["password"],
            cleaned["student_code"],
        )
    except DuplicateKey as exc:
        raise DuplicateKey(exc.message, details=exc.details, status=400) from None
    except PyMongoError as exc:
        raise store_failure("Failed to register student", exc) from exc

    return jsonify({"token": token, "student": serialize_student(student)}), 201


@students_bp.get("")
@require_admin
def list_students():
    try:
        paging = parse_paging_params(
            request.args,
            allowed_sort_fields=STUDENT_SORT_FIELDS,
            default_sort="name",
        )
    except PagingParamError as exc:
        raise ValidationError(str(exc)) from None

    course_id = clean_string_or_none(request.args.get("course_id"))
    filters = StudentFilter(
        q=clean_string_or_none(request.args.get("q")),
        course_id=require_valid_id(course_id) if course_id else None,
    )

    try:
        store = services().stores.students
        students, total = store.list(
            filters,
            sort=paging.sort,
            skip=paging.skip,
            limit=paging.page_size,
        )
        window = page_window(paging, total)
        if window.page != paging.page:
            students, total = store.list(
                filters,
                sort=paging.sort,
                skip=window.skip,
                limit=paging.page_size,
            )
    except PyMongoError as exc:
        raise store_failure("Failed to list students", exc) from exc

    return jsonify(
        {
            "items": [serialize_student(student) for student in students],
            "page": window.page,
            "page_size": paging.page_size,
            "sort": paging.normalized_sort,
            "total": total,
            "has_next": window.has_next,
            "has_prev": window.has_prev,
        }
    )


@students_bp.get("/<student_id>")
@require_student
def get_student(student_id: str):
    ensure_caller(student_id)
    return jsonify(serialize_student(_student_by_id(student_id)))


@students_bp.put("/<student_id>")
@require_student
def update_student(student_id: str):
    ensure_caller(student_id)
    student = _student_by_id(student_id)

    cleaned, errors = _validate_student_payload(request.get_json(silent=True), require_all=False)
    if "student_code" in cleaned:
        if cleaned.pop("student_code") != student.student_code:
            errors["student_code"] = "Student code cannot be changed."
    raise_validation(errors)

    password = cleaned.pop("password", None)
    if not cleaned and password is None:
        raise ValidationError("No changes supplied.")

    if password is not None:
        cleaned["password_hash"] = services().identity.hash(password)

    try:
        student = services().stores.students.update(student.id, cleaned)
    except PyMongoError as exc:
        raise store_failure("Failed to update student", exc) from exc
    if student is None:
        raise NotFound("Student not found.")

    return jsonify(serialize_student(student))


@students_bp.delete("/<student_id>")
@require_admin
def delete_student(student_id: str):
    student_id = require_valid_id(student_id)
    try:
        student, affected = services().enrollment.delete_student(student_id)
    except PyMongoError as exc:
        raise store_failure("Failed to delete student", exc) from exc
    return jsonify(
        {
            "deleted": True,
            "student": serialize_student(student),
            "courses_updated": affected,
        }
    )


@students_bp.get("/<student_id>/courses")
@require_student
def list_student_courses(student_id: str):
    ensure_caller(student_id)
    student_id = require_valid_id(student_id)
    try:
        courses = services().enrollment.courses_for(student_id)
    except PyMongoError as exc:
        raise store_failure("Failed to list enrolled courses", exc) from exc
    return jsonify(
        {
            "student_id": student_id,
            "count": len(courses),
            "items": [serialize_course(course, include_members=False) for course in courses],
        }
    )


__all__ = ["students_bp"]
