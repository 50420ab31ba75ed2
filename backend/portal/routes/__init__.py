"""Application route blueprints and helpers."""

from .auth import auth_bp, require_admin, require_student
from .courses import courses_bp
from .reports import reports_bp
from .students import students_bp

BLUEPRINTS = (auth_bp, courses_bp, students_bp, reports_bp)

__all__ = [
    "BLUEPRINTS",
    "auth_bp",
    "courses_bp",
    "reports_bp",
    "require_admin",
    "require_student",
    "students_bp",
]
