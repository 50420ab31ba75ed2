"""MongoDB-backed course and student stores.

Every method touches a single document (or runs one ``update_many`` for the
cascade helpers), so each write is atomic at the store level. Membership
lists are only ever modified with ``$addToSet``/``$pull``, which keeps them
duplicate free and makes adding or removing a member idempotent.
"""

from __future__ import annotations

import logging
import re
from dataclasses import fields as dataclass_fields
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Mapping, Tuple, Type

from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from .errors import DuplicateKey, ValidationError
from .models import (
    Course,
    CourseFilter,
    Student,
    StudentFilter,
    normalize_code,
    normalize_email,
    utcnow,
)

logger = logging.getLogger(__name__)

Sort = Tuple[str, int]

_PROTECTED_FIELDS = {"id", "_id", "created_at", "updated_at"}


def _contains(value: str) -> Dict[str, Any]:
    return {"$regex": re.escape(value), "$options": "i"}


def check_update_fields(
    record_type: Type[Any],
    key_field: str,
    member_field: str,
    fields: Mapping[str, Any],
) -> None:
    """Reject partial updates touching natural keys, memberships or bookkeeping."""

    errors: Dict[str, str] = {}
    if key_field in fields:
        errors[key_field] = f"{key_field} cannot be changed."
    if member_field in fields:
        errors[member_field] = "Membership changes go through enrollment."
    for name in _PROTECTED_FIELDS.intersection(fields):
        errors[name] = f"{name} cannot be changed."
    known = {f.name for f in dataclass_fields(record_type)}
    for name in set(fields) - known - _PROTECTED_FIELDS:
        errors[name] = "Unknown field."
    if errors:
        raise ValidationError("Validation failed.", details=errors)


def merged_changes(current: Any, fields: Mapping[str, Any]) -> Dict[str, Any]:
    # Building the merged record runs the record validation.
    merged = replace(current, **fields)
    merged.check_writable()
    changes = {name: getattr(merged, name) for name in fields}
    changes["updated_at"] = utcnow()
    return changes


class _MongoStore:
    record_type: Type[Any]
    noun = "record"
    member_field = ""
    key_field = ""
    unique_fields: Dict[str, str] = {}

    def __init__(self, collection: Collection) -> None:
        self._collection = collection

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        raise NotImplementedError

    def _query(self, filters: Any) -> Dict[str, Any]:
        raise NotImplementedError

    def _to_record(self, document: Mapping[str, Any] | None):
        if document is None:
            return None
        return self.record_type.from_document(document)

    def _duplicate(self, exc: DuplicateKeyError) -> DuplicateKey:
        details = exc.details or {}
        pattern = details.get("keyPattern") or details.get("keyValue") or {}
        for field_name, label in self.unique_fields.items():
            if field_name in pattern or field_name in str(exc):
                return DuplicateKey(
                    f"A {self.noun} with this {label} already exists.",
                    details={field_name: f"{label.capitalize()} already in use."},
                )
        return DuplicateKey(f"A {self.noun} with this key already exists.")

    def create(self, record):
        record.check_writable()
        try:
            self._collection.insert_one(record.to_document())
        except DuplicateKeyError as exc:
            raise self._duplicate(exc) from None
        logger.info("Created %s %s", self.noun, record.id)
        return record

    def get(self, record_id: str):
        return self._to_record(self._collection.find_one({"_id": record_id}))

    def list(
        self,
        filters: Any,
        *,
        sort: Sort,
        skip: int = 0,
        limit: int = 0,
    ) -> Tuple[List[Any], int]:
        query = self._query(filters)
        total = self._collection.count_documents(query)
        cursor = self._collection.find(query).sort([sort, ("_id", ASCENDING)]).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [self._to_record(doc) for doc in cursor], total

    def iter_all(self) -> Iterator[Any]:
        for document in self._collection.find({}).sort("_id", ASCENDING):
            yield self._to_record(document)

    def update(self, record_id: str, fields: Mapping[str, Any]):
        """Apply a partial update and return the stored record, or None if absent."""

        check_update_fields(self.record_type, self.key_field, self.member_field, fields)
        current = self.get(record_id)
        if current is None:
            return None
        changes = merged_changes(current, fields)

        query: Dict[str, Any] = {"_id": record_id}
        query.update(self._update_guard(changes))
        try:
            document = self._collection.find_one_and_update(
                query,
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise self._duplicate(exc) from None

        if document is None:
            return self._rejected_update(record_id)
        return self._to_record(document)

    def _update_guard(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return {}

    def _rejected_update(self, record_id: str):
        return self.get(record_id)

    def delete(self, record_id: str):
        document = self._collection.find_one_and_delete({"_id": record_id})
        if document is not None:
            logger.info("Deleted %s %s", self.noun, record_id)
        return self._to_record(document)

    def add_member(self, record_id: str, member_id: str) -> bool:
        """Add ``member_id`` to the membership set; False when the record is gone."""

        result = self._collection.update_one(
            {"_id": record_id},
            {
                "$addToSet": {self.member_field: member_id},
                "$set": {"updated_at": utcnow()},
            },
        )
        return result.matched_count > 0

    def remove_member(self, record_id: str, member_id: str) -> bool:
        result = self._collection.update_one(
            {"_id": record_id},
            {
                "$pull": {self.member_field: member_id},
                "$set": {"updated_at": utcnow()},
            },
        )
        return result.matched_count > 0

    def remove_member_everywhere(self, member_id: str) -> int:
        result = self._collection.update_many(
            {self.member_field: member_id},
            {
                "$pull": {self.member_field: member_id},
                "$set": {"updated_at": utcnow()},
            },
        )
        return result.modified_count

    def count(self) -> int:
        return self._collection.count_documents({})


class MongoCourseStore(_MongoStore):
    record_type = Course
    noun = "course"
    member_field = "enrolled_students"
    key_field = "course_code"
    unique_fields = {"course_code": "course code"}

    def ensure_indexes(self) -> None:
        self._collection.create_indexes(
            [
                IndexModel(
                    [("course_code", ASCENDING)],
                    name="unique_course_code",
                    unique=True,
                ),
                IndexModel([("department", ASCENDING)], name="department_idx"),
                IndexModel([("instructor", ASCENDING)], name="instructor_idx"),
                IndexModel([("enrolled_students", ASCENDING)], name="enrolled_students_idx"),
            ]
        )

    def _query(self, filters: CourseFilter | None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if filters is None:
            return query
        if filters.course_code:
            query["course_code"] = normalize_code(filters.course_code)
        if filters.department:
            query["department"] = filters.department
        if filters.instructor:
            query["instructor"] = filters.instructor
        if filters.q:
            query["$or"] = [
                {"course_code": _contains(filters.q)},
                {"course_name": _contains(filters.q)},
                {"instructor": _contains(filters.q)},
            ]
        return query

    def find_by_code(self, course_code: str) -> Course | None:
        return self._to_record(
            self._collection.find_one({"course_code": normalize_code(course_code)})
        )

    def find_many(self, course_ids: List[str]) -> List[Course]:
        cursor = self._collection.find({"_id": {"$in": list(course_ids)}}).sort(
            "course_code", ASCENDING
        )
        return [self._to_record(doc) for doc in cursor]

    def add_member_if_room(
        self, course_id: str, student_id: str, capacity: int
    ) -> Course | None:
        """Add the student only while a seat is free.

        The document must still have the capacity the caller read, must not
        already list the student, and must have no element at index
        ``capacity - 1``. Returns None when any condition fails.
        """

        document = self._collection.find_one_and_update(
            {
                "_id": course_id,
                "capacity": capacity,
                "enrolled_students": {"$ne": student_id},
                f"enrolled_students.{capacity - 1}": {"$exists": False},
            },
            {
                "$addToSet": {"enrolled_students": student_id},
                "$set": {"updated_at": utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._to_record(document)

    def _update_guard(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        if "capacity" not in changes:
            return {}
        return {f"enrolled_students.{changes['capacity']}": {"$exists": False}}

    def _rejected_update(self, record_id: str):
        current = self.get(record_id)
        if current is None:
            return None
        raise ValidationError(
            "Invalid course record.",
            details={"capacity": "capacity cannot be lower than current enrollment."},
        )


class MongoStudentStore(_MongoStore):
    record_type = Student
    noun = "student"
    member_field = "enrolled_courses"
    key_field = "student_code"
    unique_fields = {"email": "email", "student_code": "student code"}

    def ensure_indexes(self) -> None:
        self._collection.create_indexes(
            [
                IndexModel([("email", ASCENDING)], name="unique_email", unique=True),
                IndexModel(
                    [("student_code", ASCENDING)],
                    name="unique_student_code",
                    unique=True,
                ),
                IndexModel([("name", ASCENDING)], name="name_asc"),
                IndexModel([("created_at", DESCENDING)], name="created_desc"),
                IndexModel([("enrolled_courses", ASCENDING)], name="enrolled_courses_idx"),
            ]
        )

    def _query(self, filters: StudentFilter | None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if filters is None:
            return query
        if filters.course_id:
            query["enrolled_courses"] = filters.course_id
        if filters.q:
            query["$or"] = [
                {"name": _contains(filters.q)},
                {"email": _contains(filters.q)},
                {"student_code": _contains(filters.q)},
            ]
        return query

    def find_by_email(self, email: str) -> Student | None:
        return self._to_record(self._collection.find_one({"email": normalize_email(email)}))

    def find_by_code(self, student_code: str) -> Student | None:
        return self._to_record(
            self._collection.find_one({"student_code": normalize_code(student_code)})
        )


__all__ = [
    "MongoCourseStore",
    "MongoStudentStore",
    "check_update_fields",
    "merged_changes",
]
