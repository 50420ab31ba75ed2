"""Reports over courses and enrollments."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Dict, List

from flask import Blueprint, Response, jsonify, request
from pymongo.errors import PyMongoError

from .auth import require_admin
from .common import clean_string, services, store_failure

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    "course_id",
    "course_code",
    "course_name",
    "student_id",
    "student_code",
    "student_email",
]


def _fill_rate(taken: int, capacity: int) -> float:
    return round(taken / capacity, 4) if capacity else 0.0


@reports_bp.get("/course-stats")
def course_stats():
    department = clean_string(request.args.get("department"))

    try:
        courses = list(services().stores.courses.iter_all())
    except PyMongoError as exc:
        raise store_failure("Failed to generate course stats", exc) from exc

    rows: List[Dict[str, Any]] = []
    for course in courses:
        if department and course.department != department:
            continue
        rows.append(
            {
                "course_id": course.id,
                "course_code": course.course_code,
                "course_name": course.course_name,
                "capacity": course.capacity,
                "enrolled_count": course.seats_taken,
                "seats_available": max(course.capacity - course.seats_taken, 0),
                "fill_rate": _fill_rate(course.seats_taken, course.capacity),
            }
        )

    rows.sort(key=lambda row: (-row["fill_rate"], row["course_code"]))

    payload: Dict[str, Any] = {
        "count": len(rows),
        "total_capacity": sum(row["capacity"] for row in rows),
        "total_enrolled": sum(row["enrolled_count"] for row in rows),
        "full_courses": sum(1 for row in rows if row["seats_available"] == 0),
        "courses": rows,
    }
    if department:
        payload["department"] = department
    return jsonify(payload)


@reports_bp.get("/enrollments.csv")
@require_admin
def export_enrollments_csv():
    course_code = clean_string(request.args.get("courseCode")).upper()

    try:
        stores = services().stores
        courses = [
            course
            for course in stores.courses.iter_all()
            if not course_code or course.course_code == course_code
        ]
        students = {student.id: student for student in stores.students.iter_all()}
    except PyMongoError as exc:
        raise store_failure("Failed to export enrollments", exc) from exc

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_FIELDS)
    writer.writeheader()

    for course in sorted(courses, key=lambda c: c.course_code):
        for student_id in sorted(course.enrolled_students):
            student = students.get(student_id)
            writer.writerow({
                "course_id": course.id,
                "course_code": course.course_code,
                "course_name": course.course_name,
                "student_id": student_id,
                "student_code": student.student_code if student else "",
                "student_email": student.email if student else "",
            })

    filename = f"enrollments_{course_code}.csv" if course_code else "enrollments.csv"
    response = Response(output.getvalue(), mimetype="text/csv")
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response


@reports_bp.get("/consistency")
@require_admin
def consistency():
    try:
        report = services().enrollment.audit()
    except PyMongoError as exc:
        raise store_failure("Failed to audit enrollments", exc) from exc
    return jsonify(report.to_payload())


@reports_bp.post("/consistency/repair")
@require_admin
def repair_consistency():
    try:
        repaired = services().enrollment.repair_dangling()
    except PyMongoError as exc:
        raise store_failure("Failed to repair enrollments", exc) from exc
    return jsonify({"ok": True, **repaired})


__all__ = ["reports_bp"]
