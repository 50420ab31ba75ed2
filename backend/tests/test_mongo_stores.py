"""Query shapes of the MongoDB stores, run against mongomock."""

from __future__ import annotations

import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

import mongomock

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from portal.db import StoreContext, serialize_course
from portal.errors import DuplicateKey, ValidationError
from portal.models import Course, CourseFilter, Student, StudentFilter
from portal.stores import MongoCourseStore

STUDENT_IDS = [
    "64b000000000000000000001",
    "64b000000000000000000002",
    "64b000000000000000000003",
]


class MongoStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.context = StoreContext.mongo(mongomock.MongoClient(), "portal_test").open()
        self.courses = self.context.courses
        self.students = self.context.students

    def tearDown(self) -> None:
        self.context.close()

    def _course(self, code: str = "CS101", capacity: int = 2, **extra) -> Course:
        return self.courses.create(
            Course(
                course_code=code,
                course_name=extra.pop("course_name", f"Course {code}"),
                instructor=extra.pop("instructor", "Dr. Reyes"),
                capacity=capacity,
                **extra,
            )
        )

    def _student(self, index: int) -> Student:
        return self.students.create(
            Student(
                name=f"Student {index}",
                email=f"student{index}@example.edu",
                password_hash="$2b$04$placeholderhashplaceholderhashplaceholderhas",
                student_code=f"S{index:04d}",
            )
        )


class CourseStoreTestCase(MongoStoreTestCase):
    def test_context_uses_mongo_stores(self) -> None:
        self.assertIsInstance(self.courses, MongoCourseStore)

    def test_create_and_find_by_code(self) -> None:
        created = self._course("cs101")

        self.assertEqual("CS101", created.course_code)
        self.assertEqual(created.id, self.courses.find_by_code(" cs101 ").id)
        self.assertEqual(created.id, self.courses.get(created.id).id)
        self.assertIsNone(self.courses.find_by_code("CS999"))

    def test_duplicate_code_is_rejected(self) -> None:
        self._course("CS101")

        with self.assertRaises(DuplicateKey):
            self._course("cs101")
        self.assertEqual(1, self.courses.count())

    def test_conditional_add_stops_at_capacity(self) -> None:
        course = self._course(capacity=2)

        first = self.courses.add_member_if_room(course.id, STUDENT_IDS[0], 2)
        repeat = self.courses.add_member_if_room(course.id, STUDENT_IDS[0], 2)
        second = self.courses.add_member_if_room(course.id, STUDENT_IDS[1], 2)
        third = self.courses.add_member_if_room(course.id, STUDENT_IDS[2], 2)
        stale = self.courses.add_member_if_room(course.id, STUDENT_IDS[2], 5)

        self.assertEqual([STUDENT_IDS[0]], first.enrolled_students)
        self.assertIsNone(repeat)
        self.assertEqual(STUDENT_IDS[:2], second.enrolled_students)
        self.assertIsNone(third)
        self.assertIsNone(stale)
        self.assertEqual(2, self.courses.get(course.id).seats_taken)

    def test_membership_removal(self) -> None:
        first = self._course("CS101")
        second = self._course("CS201")
        for course in (first, second):
            self.courses.add_member(course.id, STUDENT_IDS[0])
        self.courses.add_member(first.id, STUDENT_IDS[1])

        self.assertTrue(self.courses.remove_member(first.id, STUDENT_IDS[1]))
        self.assertTrue(self.courses.remove_member(first.id, STUDENT_IDS[1]))
        self.assertFalse(self.courses.remove_member("64b0000000000000000000ff", STUDENT_IDS[1]))

        self.assertEqual(2, self.courses.remove_member_everywhere(STUDENT_IDS[0]))
        self.assertEqual([], self.courses.get(first.id).enrolled_students)
        self.assertEqual([], self.courses.get(second.id).enrolled_students)

    def test_update_rules(self) -> None:
        course = self._course(capacity=3)
        self.courses.add_member(course.id, STUDENT_IDS[0])
        self.courses.add_member(course.id, STUDENT_IDS[1])

        updated = self.courses.update(course.id, {"capacity": 2, "course_name": "Renamed"})
        self.assertEqual(2, updated.capacity)
        self.assertEqual("Renamed", updated.course_name)

        for fields in ({"capacity": 1}, {"course_code": "CS999"}, {"enrolled_students": []}):
            with self.subTest(fields=fields):
                with self.assertRaises(ValidationError):
                    self.courses.update(course.id, fields)

        self.assertIsNone(self.courses.update("64b0000000000000000000ff", {"credits": 4}))
        self.assertEqual(2, self.courses.get(course.id).capacity)

    def test_list_filters_sort_and_search(self) -> None:
        self._course("CS101", course_name="Intro to Programming", department="CS")
        self._course("CS201", course_name="Data Structures", department="CS")
        self._course("MATH150", course_name="Calculus", instructor="Prof. Okafor", department="Math")

        items, total = self.courses.list(CourseFilter(department="CS"), sort=("course_code", -1))
        self.assertEqual(2, total)
        self.assertEqual(["CS201", "CS101"], [c.course_code for c in items])

        items, total = self.courses.list(CourseFilter(q="okafor"), sort=("course_code", 1))
        self.assertEqual(["MATH150"], [c.course_code for c in items])

        items, total = self.courses.list(CourseFilter(q="a.b"), sort=("course_code", 1))
        self.assertEqual(0, total)

        items, total = self.courses.list(None, sort=("course_code", 1), skip=1, limit=1)
        self.assertEqual(3, total)
        self.assertEqual(["CS201"], [c.course_code for c in items])

    def test_timestamps_read_back_as_utc(self) -> None:
        created = self._course()
        self.courses.collection.insert_one(
            {
                "_id": "64c0000000000000000000aa",
                "course_code": "HIST100",
                "course_name": "World History",
                "instructor": "Prof. Lin",
                "capacity": 5,
                "enrolled_students": [],
                "created_at": datetime(2024, 1, 2, 3, 4, 5),
                "updated_at": datetime(2024, 1, 2, 3, 4, 5),
            }
        )

        for course_id in (created.id, "64c0000000000000000000aa"):
            with self.subTest(course_id=course_id):
                course = self.courses.get(course_id)
                self.assertIsNotNone(course.created_at.tzinfo)
                self.assertTrue(serialize_course(course)["created_at"].endswith("+00:00"))

        legacy = self.courses.get("64c0000000000000000000aa")
        self.assertEqual(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc), legacy.created_at)

    def test_overfull_stored_course_can_still_be_read(self) -> None:
        course = self._course(capacity=1)
        self.courses.add_member(course.id, STUDENT_IDS[0])
        self.courses.add_member(course.id, STUDENT_IDS[1])

        loaded = self.courses.get(course.id)

        self.assertEqual(2, loaded.seats_taken)
        self.assertTrue(loaded.is_full)

    def test_find_many_sorts_by_code(self) -> None:
        later = self._course("MATH150")
        earlier = self._course("CS101")
        self._course("ENG110")

        found = self.courses.find_many([later.id, earlier.id])

        self.assertEqual(["CS101", "MATH150"], [c.course_code for c in found])


class StudentStoreTestCase(MongoStoreTestCase):
    def test_duplicate_email_or_code(self) -> None:
        self._student(1)

        clash_email = Student(
            name="Copy",
            email="STUDENT1@example.edu",
            password_hash="x",
            student_code="S9000",
        )
        clash_code = Student(
            name="Copy",
            email="copy@example.edu",
            password_hash="x",
            student_code="s0001",
        )
        for record in (clash_email, clash_code):
            with self.subTest(record=record.email):
                with self.assertRaises(DuplicateKey):
                    self.students.create(record)
        self.assertEqual(1, self.students.count())

    def test_lookups_and_course_filter(self) -> None:
        first = self._student(1)
        second = self._student(2)
        course_id = "64c000000000000000000001"
        self.students.add_member(second.id, course_id)

        self.assertEqual(first.id, self.students.find_by_email("Student1@Example.edu").id)
        self.assertEqual(second.id, self.students.find_by_code("s0002").id)

        items, total = self.students.list(StudentFilter(course_id=course_id), sort=("name", 1))
        self.assertEqual(1, total)
        self.assertEqual(second.id, items[0].id)

        self.assertFalse(self.students.add_member("64b0000000000000000000ff", course_id))
        self.assertEqual(1, self.students.remove_member_everywhere(course_id))


if __name__ == "__main__":
    unittest.main()
