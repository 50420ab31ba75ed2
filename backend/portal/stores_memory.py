"""
In-memory course and student stores for development and tests.

Same interface as the MongoDB stores in :mod:`portal.stores`. Each store keeps
its documents in a dict guarded by one lock, so every method (including the
conditional ``add_member_if_room``) is atomic with respect to the others.
Data lives only as long as the process.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Callable, Dict, Iterator, List, Mapping, Tuple, Type

from pymongo import DESCENDING

from .errors import DuplicateKey
from .models import (
    Course,
    CourseFilter,
    Student,
    StudentFilter,
    normalize_code,
    normalize_email,
    utcnow,
)
from .stores import Sort, check_update_fields, merged_changes


def _contains(haystack: Any, needle: str) -> bool:
    return isinstance(haystack, str) and needle.lower() in haystack.lower()


def _sort_key(field_name: str) -> Callable[[Dict[str, Any]], Tuple[bool, Any]]:
    def key(document: Dict[str, Any]) -> Tuple[bool, Any]:
        value = document.get(field_name)
        return (value is not None, value if value is not None else "")

    return key


class _MemoryStore:
    record_type: Type[Any]
    noun = "record"
    member_field = ""
    key_field = ""
    unique_fields: Dict[str, str] = {}

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def ensure_indexes(self) -> None:
        """Uniqueness is checked on every write; nothing to build."""

    def _matches(self, document: Mapping[str, Any], filters: Any) -> bool:
        raise NotImplementedError

    def _to_record(self, document: Mapping[str, Any] | None):
        if document is None:
            return None
        return self.record_type.from_document(copy.deepcopy(document))

    def _check_unique(self, document: Mapping[str, Any]) -> None:
        for field_name, label in self.unique_fields.items():
            value = document.get(field_name)
            for other in self._documents.values():
                if other["_id"] != document["_id"] and other.get(field_name) == value:
                    raise DuplicateKey(
                        f"A {self.noun} with this {label} already exists.",
                        details={field_name: f"{label.capitalize()} already in use."},
                    )

    def create(self, record):
        record.check_writable()
        document = record.to_document()
        with self._lock:
            if document["_id"] in self._documents:
                raise DuplicateKey(f"A {self.noun} with this id already exists.")
            self._check_unique(document)
            self._documents[document["_id"]] = copy.deepcopy(document)
        return record

    def get(self, record_id: str):
        with self._lock:
            return self._to_record(self._documents.get(record_id))

    def _find_one(self, field_name: str, value: Any):
        with self._lock:
            for document in self._documents.values():
                if document.get(field_name) == value:
                    return self._to_record(document)
        return None

    def list(
        self,
        filters: Any,
        *,
        sort: Sort,
        skip: int = 0,
        limit: int = 0,
    ) -> Tuple[List[Any], int]:
        field_name, direction = sort
        with self._lock:
            matched = [doc for doc in self._documents.values() if self._matches(doc, filters)]
            matched.sort(key=lambda doc: doc["_id"])
            matched.sort(key=_sort_key(field_name), reverse=direction == DESCENDING)
            total = len(matched)
            window = matched[skip : skip + limit] if limit else matched[skip:]
            return [self._to_record(doc) for doc in window], total

    def iter_all(self) -> Iterator[Any]:
        with self._lock:
            snapshot = [self._to_record(self._documents[key]) for key in sorted(self._documents)]
        return iter(snapshot)

    def update(self, record_id: str, fields: Mapping[str, Any]):
        check_update_fields(self.record_type, self.key_field, self.member_field, fields)
        with self._lock:
            current = self._to_record(self._documents.get(record_id))
            if current is None:
                return None
            changes = merged_changes(current, fields)
            document = copy.deepcopy(self._documents[record_id])
            document.update(changes)
            self._check_unique(document)
            self._documents[record_id] = document
            return self._to_record(document)

    def delete(self, record_id: str):
        with self._lock:
            return self._to_record(self._documents.pop(record_id, None))

    def add_member(self, record_id: str, member_id: str) -> bool:
        with self._lock:
            document = self._documents.get(record_id)
            if document is None:
                return False
            if member_id not in document[self.member_field]:
                document[self.member_field].append(member_id)
            document["updated_at"] = utcnow()
            return True

    def remove_member(self, record_id: str, member_id: str) -> bool:
        with self._lock:
            document = self._documents.get(record_id)
            if document is None:
                return False
            if member_id in document[self.member_field]:
                document[self.member_field].remove(member_id)
            document["updated_at"] = utcnow()
            return True

    def remove_member_everywhere(self, member_id: str) -> int:
        modified = 0
        with self._lock:
            for document in self._documents.values():
                if member_id in document[self.member_field]:
                    document[self.member_field].remove(member_id)
                    document["updated_at"] = utcnow()
                    modified += 1
        return modified

    def count(self) -> int:
        with self._lock:
            return len(self._documents)


class MemoryCourseStore(_MemoryStore):
    record_type = Course
    noun = "course"
    member_field = "enrolled_students"
    key_field = "course_code"
    unique_fields = {"course_code": "course code"}

    def _matches(self, document: Mapping[str, Any], filters: CourseFilter | None) -> bool:
        if filters is None:
            return True
        if filters.course_code and document["course_code"] != normalize_code(filters.course_code):
            return False
        if filters.department and document.get("department") != filters.department:
            return False
        if filters.instructor and document.get("instructor") != filters.instructor:
            return False
        if filters.q and not any(
            _contains(document.get(name), filters.q)
            for name in ("course_code", "course_name", "instructor")
        ):
            return False
        return True

    def find_by_code(self, course_code: str) -> Course | None:
        return self._find_one("course_code", normalize_code(course_code))

    def find_many(self, course_ids: List[str]) -> List[Course]:
        with self._lock:
            found = [self._to_record(self._documents[i]) for i in course_ids if i in self._documents]
        return sorted(found, key=lambda course: course.course_code)

    def add_member_if_room(
        self, course_id: str, student_id: str, capacity: int
    ) -> Course | None:
        with self._lock:
            document = self._documents.get(course_id)
            if (
                document is None
                or document["capacity"] != capacity
                or student_id in document["enrolled_students"]
                or len(document["enrolled_students"]) >= capacity
            ):
                return None
            document["enrolled_students"].append(student_id)
            document["updated_at"] = utcnow()
            return self._to_record(document)


class MemoryStudentStore(_MemoryStore):
    record_type = Student
    noun = "student"
    member_field = "enrolled_courses"
    key_field = "student_code"
    unique_fields = {"email": "email", "student_code": "student code"}

    def _matches(self, document: Mapping[str, Any], filters: StudentFilter | None) -> bool:
        if filters is None:
            return True
        if filters.course_id and filters.course_id not in document["enrolled_courses"]:
            return False
        if filters.q and not any(
            _contains(document.get(name), filters.q)
            for name in ("name", "email", "student_code")
        ):
            return False
        return True

    def find_by_email(self, email: str) -> Student | None:
        return self._find_one("email", normalize_email(email))

    def find_by_code(self, student_code: str) -> Student | None:
        return self._find_one("student_code", normalize_code(student_code))


__all__ = ["MemoryCourseStore", "MemoryStudentStore"]
