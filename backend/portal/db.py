"""Store context and JSON serializers for the application."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from pymongo import MongoClient

from .config import get_db_name, get_mongo_uri, get_store_backend
from .models import Course, Student
from .stores import MongoCourseStore, MongoStudentStore
from .stores_memory import MemoryCourseStore, MemoryStudentStore

logger = logging.getLogger(__name__)

COURSES_COLLECTION = "courses"
STUDENTS_COLLECTION = "students"


class StoreContext:
    """Owns the course and student stores and the client behind them.

    Construct one explicitly (``from_env``, ``mongo`` or ``in_memory``), pass it
    to :func:`portal.app.create_app`, and call :meth:`close` on shutdown.
    """

    def __init__(self, courses, students, client: MongoClient | None = None) -> None:
        self.courses = courses
        self.students = students
        self._client = client
        self._ready = False

    @classmethod
    def mongo(cls, client: MongoClient, db_name: str) -> "StoreContext":
        database = client[db_name]
        return cls(
            MongoCourseStore(database[COURSES_COLLECTION]),
            MongoStudentStore(database[STUDENTS_COLLECTION]),
            client=client,
        )

    @classmethod
    def in_memory(cls) -> "StoreContext":
        return cls(MemoryCourseStore(), MemoryStudentStore())

    @classmethod
    def from_env(cls) -> "StoreContext":
        if get_store_backend() == "memory":
            logger.warning("Using the in-memory store; data is lost on restart")
            return cls.in_memory()
        client = MongoClient(get_mongo_uri(), serverSelectionTimeoutMS=5000, tz_aware=True)
        return cls.mongo(client, get_db_name())

    def open(self) -> "StoreContext":
        """Create the unique and lookup indexes once per context."""

        if not self._ready:
            self.courses.ensure_indexes()
            self.students.ensure_indexes()
            self._ready = True
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self._ready = False

    def __enter__(self) -> "StoreContext":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if isinstance(value, datetime) else None


def serialize_student(student: Student) -> Dict[str, Any]:
    """Convert a student record into a JSON-serialisable dict without the hash."""

    return {
        "_id": student.id,
        "name": student.name,
        "email": student.email,
        "student_code": student.student_code,
        "enrolled_courses": sorted(student.enrolled_courses),
        "created_at": _timestamp(student.created_at),
        "updated_at": _timestamp(student.updated_at),
    }


def serialize_course(course: Course, *, include_members: bool = True) -> Dict[str, Any]:
    """Serialize a course record to a JSON-friendly dict."""

    payload: Dict[str, Any] = {
        "_id": course.id,
        "course_code": course.course_code,
        "course_name": course.course_name,
        "instructor": course.instructor,
        "credits": course.credits,
        "department": course.department,
        "description": course.description,
        "capacity": course.capacity,
        "enrolled_count": course.seats_taken,
        "seats_available": max(course.capacity - course.seats_taken, 0),
        "created_at": _timestamp(course.created_at),
        "updated_at": _timestamp(course.updated_at),
    }
    if include_members:
        payload["enrolled_students"] = sorted(course.enrolled_students)
    return payload


__all__ = [
    "StoreContext",
    "serialize_course",
    "serialize_student",
]
