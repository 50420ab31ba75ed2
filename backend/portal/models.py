"""Typed student and course records stored by the portal."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from bson import ObjectId

from .errors import ValidationError

DEFAULT_CAPACITY = 30
DEFAULT_CREDITS = 3
# Stored as BSON int32.
MAX_COUNT = 2**31 - 1


def new_id() -> str:
    return str(ObjectId())


def is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(value: Any) -> str:
    """Course and student codes compare case-insensitively; store them upper-cased."""

    return str(value).strip().upper() if value is not None else ""


def normalize_email(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


def as_utc(value: Any) -> datetime:
    """Timestamps read back without an offset are UTC."""

    if not isinstance(value, datetime):
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_text(errors: Dict[str, str], field_name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        errors[field_name] = f"{field_name} must be a non-empty string."


def _require_positive_int(errors: Dict[str, str], field_name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors[field_name] = f"{field_name} must be a positive integer."
    elif value > MAX_COUNT:
        errors[field_name] = f"{field_name} must be at most {MAX_COUNT}."


def _require_member_ids(errors: Dict[str, str], field_name: str, values: Any) -> None:
    if not isinstance(values, list) or not all(is_valid_id(v) for v in values):
        errors[field_name] = f"{field_name} must be a list of identifiers."
    elif len(set(values)) != len(values):
        errors[field_name] = f"{field_name} must not contain duplicates."


@dataclass
class Course:
    course_code: str
    course_name: str
    instructor: str
    credits: int = DEFAULT_CREDITS
    capacity: int = DEFAULT_CAPACITY
    department: str | None = None
    description: str | None = None
    enrolled_students: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.course_code = normalize_code(self.course_code)
        errors: Dict[str, str] = {}
        _require_text(errors, "course_code", self.course_code)
        _require_text(errors, "course_name", self.course_name)
        _require_text(errors, "instructor", self.instructor)
        _require_positive_int(errors, "credits", self.credits)
        _require_positive_int(errors, "capacity", self.capacity)
        _require_member_ids(errors, "enrolled_students", self.enrolled_students)
        if errors:
            raise ValidationError("Invalid course record.", details=errors)

    def check_writable(self) -> None:
        """Reject a write that would leave more members than seats.

        Loading does not run this check, so an overfull stored course can
        still be read and reported by the audit.
        """

        if len(self.enrolled_students) > self.capacity:
            raise ValidationError(
                "Invalid course record.",
                details={"capacity": "capacity cannot be lower than current enrollment."},
            )

    @property
    def seats_taken(self) -> int:
        return len(self.enrolled_students)

    @property
    def is_full(self) -> bool:
        return self.seats_taken >= self.capacity

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Course":
        return cls(
            id=str(document["_id"]),
            course_code=document.get("course_code", ""),
            course_name=document.get("course_name", ""),
            instructor=document.get("instructor", ""),
            credits=document.get("credits", DEFAULT_CREDITS),
            capacity=document.get("capacity", DEFAULT_CAPACITY),
            department=document.get("department"),
            description=document.get("description"),
            enrolled_students=list(document.get("enrolled_students") or []),
            created_at=as_utc(document.get("created_at")),
            updated_at=as_utc(document.get("updated_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "course_code": self.course_code,
            "course_name": self.course_name,
            "instructor": self.instructor,
            "credits": self.credits,
            "capacity": self.capacity,
            "department": self.department,
            "description": self.description,
            "enrolled_students": list(self.enrolled_students),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Student:
    name: str
    email: str
    password_hash: str
    student_code: str
    enrolled_courses: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.email = normalize_email(self.email)
        self.student_code = normalize_code(self.student_code)
        errors: Dict[str, str] = {}
        _require_text(errors, "name", self.name)
        _require_text(errors, "email", self.email)
        _require_text(errors, "password_hash", self.password_hash)
        _require_text(errors, "student_code", self.student_code)
        _require_member_ids(errors, "enrolled_courses", self.enrolled_courses)
        if errors:
            raise ValidationError("Invalid student record.", details=errors)

    def check_writable(self) -> None:
        pass

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Student":
        return cls(
            id=str(document["_id"]),
            name=document.get("name", ""),
            email=document.get("email", ""),
            password_hash=document.get("password_hash", ""),
            student_code=document.get("student_code", ""),
            enrolled_courses=list(document.get("enrolled_courses") or []),
            created_at=as_utc(document.get("created_at")),
            updated_at=as_utc(document.get("updated_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "password_hash": self.password_hash,
            "student_code": self.student_code,
            "enrolled_courses": list(self.enrolled_courses),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CourseFilter:
    """Listing filters for courses; ``q`` is a case-insensitive substring."""

    course_code: str | None = None
    department: str | None = None
    instructor: str | None = None
    q: str | None = None


@dataclass
class StudentFilter:
    q: str | None = None
    course_id: str | None = None


__all__ = [
    "Course",
    "CourseFilter",
    "DEFAULT_CAPACITY",
    "DEFAULT_CREDITS",
    "MAX_COUNT",
    "Student",
    "StudentFilter",
    "as_utc",
    "is_valid_id",
    "new_id",
    "normalize_code",
    "normalize_email",
    "utcnow",
]
