"""Course CRUD and the enroll/drop endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from flask import Blueprint, g, jsonify, request
from pymongo.errors import PyMongoError

from ..db import serialize_course
from ..errors import NotFound, ValidationError
from ..models import Course, CourseFilter, normalize_code
from ..utils.paging import PagingParamError, page_window, parse_paging_params
from .auth import require_student
from .common import (
    clean_string,
    clean_string_or_none,
    parse_positive_int,
    raise_validation,
    require_valid_id,
    services,
    store_failure,
)

courses_bp = Blueprint("courses", __name__, url_prefix="/api/courses")

logger = logging.getLogger(__name__)

COURSE_SORT_FIELDS = {
    "code": "course_code",
    "name": "course_name",
    "credits": "credits",
    "capacity": "capacity",
    "created": "created_at",
}

# Request bodies may use the camelCase names of the public API or the stored names.
_COURSE_FIELD_ALIASES = {
    "courseCode": "course_code",
    "courseName": "course_name",
}


def _normalize_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {_COURSE_FIELD_ALIASES.get(key, key): value for key, value in payload.items()}


def _validate_course_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if not isinstance(payload, dict):
        return {}, {"_global": "Request body must be a JSON object."}

    payload = _normalize_keys(payload)
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    def require_field(field: str, message: str) -> bool:
        if field not in payload or clean_string(payload.get(field)) == "":
            errors[field] = message
            return False
        return True

    if require_all or "course_code" in payload:
        if require_field("course_code", "Course code is required."):
            cleaned["course_code"] = normalize_code(payload.get("course_code"))

    if require_all or "course_name" in payload:
        if require_field("course_name", "Course name is required."):
            cleaned["course_name"] = clean_string(payload.get("course_name"))

    if require_all or "instructor" in payload:
        if require_field("instructor", "Instructor is required."):
            cleaned["instructor"] = clean_string(payload.get("instructor"))

    for field in ("credits", "capacity"):
        if field not in payload or payload.get(field) in (None, ""):
            continue
        try:
            cleaned[field] = parse_positive_int(payload.get(field))
        except (TypeError, ValueError):
            errors[field] = f"{field.capitalize()} must be a positive integer."

    for field in ("department", "description"):
        if field in payload:
            cleaned[field] = clean_string_or_none(payload.get(field))

    for field in ("enrolled_students", "enrolledStudents"):
        if field in payload:
            errors[field] = "Enrollment changes go through enroll and drop."

    return cleaned, errors


def _course_by_id(course_id: str) -> Course:
    course_id = require_valid_id(course_id)
    try:
        course = services().stores.courses.get(course_id)
    except PyMongoError as exc:
        raise store_failure("Failed to load course", exc) from exc
    if course is None:
        raise NotFound("Course not found.")
    return course


def _course_by_code(course_code: str) -> Course:
    try:
        course = services().stores.courses.find_by_code(course_code)
    except PyMongoError as exc:
        raise store_failure("Failed to load course", exc) from exc
    if course is None:
        raise NotFound(f"Course with code {normalize_code(course_code)} not found.")
    return course


@courses_bp.get("")
def list_courses():
    try:
        paging = parse_paging_params(
            request.args,
            allowed_sort_fields=COURSE_SORT_FIELDS,
            default_sort="code",
        )
    except PagingParamError as exc:
        raise ValidationError(str(exc)) from None

    filters = CourseFilter(
        course_code=clean_string_or_none(request.args.get("courseCode")),
        department=clean_string_or_none(request.args.get("department")),
        instructor=clean_string_or_none(request.args.get("instructor")),
        q=clean_string_or_none(request.args.get("q")),
    )

    try:
        courses, total = services().stores.courses.list(
            filters,
            sort=paging.sort,
            skip=paging.skip,
            limit=paging.page_size,
        )
        window = page_window(paging, total)
        if window.page != paging.page:
            # Requested page is past the end; serve the last one instead.
            courses, total = services().stores.courses.list(
                filters,
                sort=paging.sort,
                skip=window.skip,
                limit=paging.page_size,
            )
    except PyMongoError as exc:
        raise store_failure("Failed to list courses", exc) from exc

    return jsonify(
        {
            "items": [serialize_course(course, include_members=False) for course in courses],
            "page": window.page,
            "page_size": paging.page_size,
            "sort": paging.normalized_sort,
            "total": total,
            "has_next": window.has_next,
            "has_prev": window.has_prev,
        }
    )


@courses_bp.post("")
def create_course():
    cleaned, errors = _validate_course_payload(request.get_json(silent=True), require_all=True)
    raise_validation(errors)

    course = Course(**cleaned)
    try:
        services().stores.courses.create(course)
    except PyMongoError as exc:
        raise store_failure("Failed to create course", exc) from exc
    return jsonify(serialize_course(course)), 201


@courses_bp.get("/<course_id>")
def get_course(course_id: str):
    return jsonify(serialize_course(_course_by_id(course_id)))


@courses_bp.get("/code/<course_code>")
def get_course_by_code(course_code: str):
    return jsonify(serialize_course(_course_by_code(course_code)))


def _update_course(course: Course):
    cleaned, errors = _validate_course_payload(request.get_json(silent=True), require_all=False)
    if "course_code" in cleaned:
        if cleaned.pop("course_code") != course.course_code:
            errors["course_code"] = "Course code cannot be changed."
    raise_validation(errors)

    if not cleaned:
        raise ValidationError("No changes supplied.")

    try:
        updated = services().stores.courses.update(course.id, cleaned)
    except PyMongoError as exc:
        raise store_failure("Failed to update course", exc) from exc
    if updated is None:
        raise NotFound("Course not found.")
    return jsonify(serialize_course(updated))


@courses_bp.put("/<course_id>")
def update_course(course_id: str):
    return _update_course(_course_by_id(course_id))


@courses_bp.put("/code/<course_code>")
def update_course_by_code(course_code: str):
    return _update_course(_course_by_code(course_code))


def _delete_course(course: Course):
    try:
        deleted, affected = services().enrollment.delete_course(course.id)
    except PyMongoError as exc:
        raise store_failure("Failed to delete course", exc) from exc
    return jsonify(
        {
            "deleted": True,
            "course": serialize_course(deleted),
            "students_updated": affected,
        }
    )


@courses_bp.delete("/<course_id>")
def delete_course(course_id: str):
    return _delete_course(_course_by_id(course_id))


@courses_bp.delete("/code/<course_code>")
def delete_course_by_code(course_code: str):
    return _delete_course(_course_by_code(course_code))


@courses_bp.post("/<course_id>/enroll")
@require_student
def enroll(course_id: str):
    course_id = require_valid_id(course_id)
    try:
        course = services().enrollment.enroll(g.student_id, course_id)
    except PyMongoError as exc:
        raise store_failure("Failed to enroll student", exc) from exc
    return jsonify({"ok": True, "course": serialize_course(course, include_members=False)})


@courses_bp.post("/<course_id>/drop")
@require_student
def drop(course_id: str):
    course_id = require_valid_id(course_id)
    try:
        course = services().enrollment.drop(g.student_id, course_id)
    except PyMongoError as exc:
        raise store_failure("Failed to drop enrollment", exc) from exc
    return jsonify({"ok": True, "course": serialize_course(course, include_members=False)})


__all__ = ["courses_bp"]
