"""Enrollment coordination between the course and student stores.

A student S is enrolled in course C exactly when C's id is in
``S.enrolled_courses`` and S's id is in ``C.enrolled_students``. The two lists
live in different documents, so :class:`EnrollmentCoordinator` is the only
code that writes both of them together. There is no cross-document
transaction:

* ``enroll`` claims the seat first with one conditional update on the course
  (the only authoritative capacity check), then records the course on the
  student. If the second write fails, the seat is released again.
* ``drop`` removes both sides and is idempotent.
* Deleting a course or a student deletes the document, then pulls its id
  from every document on the other side. If that second step fails,
  ``repair_dangling`` re-runs it for every id whose record is gone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .errors import AlreadyEnrolled, CourseFull, InternalError, NotFound
from .models import Course, Student

logger = logging.getLogger(__name__)

CAPACITY_ATTEMPTS = 3
REPAIR_ENDPOINT = "POST /api/reports/consistency/repair"


@dataclass
class AuditReport:
    """Pairs that break the bidirectional membership rule, and overfull courses."""

    students_checked: int = 0
    courses_checked: int = 0
    missing_on_course: List[Tuple[str, str]] = field(default_factory=list)
    missing_on_student: List[Tuple[str, str]] = field(default_factory=list)
    over_capacity: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not (self.missing_on_course or self.missing_on_student or self.over_capacity)

    def to_payload(self) -> dict:
        return {
            "consistent": self.consistent,
            "students_checked": self.students_checked,
            "courses_checked": self.courses_checked,
            "missing_on_course": [
                {"student_id": s, "course_id": c} for s, c in self.missing_on_course
            ],
            "missing_on_student": [
                {"student_id": s, "course_id": c} for s, c in self.missing_on_student
            ],
            "over_capacity": list(self.over_capacity),
        }


class EnrollmentCoordinator:
    def __init__(self, courses, students, *, capacity_attempts: int = CAPACITY_ATTEMPTS) -> None:
        self._courses = courses
        self._students = students
        self._capacity_attempts = capacity_attempts

    def _load_student(self, student_id: str) -> Student:
        student = self._students.get(student_id)
        if student is None:
            raise NotFound("Student not found.")
        return student

    def _load_course(self, course_id: str) -> Course:
        course = self._courses.get(course_id)
        if course is None:
            raise NotFound("Course not found.")
        return course

    def enroll(self, student_id: str, course_id: str) -> Course:
        """Enroll the student and return the updated course."""

        student = self._load_student(student_id)
        course = self._load_course(course_id)
        if course_id in student.enrolled_courses:
            raise AlreadyEnrolled()

        self._claim_seat(student_id, course)
        updated = self._record_on_student(student_id, course_id)
        logger.info(
            "Enrolled student %s in course %s (%d/%d)",
            student_id,
            course_id,
            updated.seats_taken,
            updated.capacity,
        )
        return updated

    def _claim_seat(self, student_id: str, course: Course) -> Course:
        for _ in range(self._capacity_attempts):
            updated = self._courses.add_member_if_room(course.id, student_id, course.capacity)
            if updated is not None:
                return updated

            current = self._courses.get(course.id)
            if current is None:
                raise NotFound("Course not found.")
            if student_id in current.enrolled_students:
                raise AlreadyEnrolled()
            if current.is_full:
                raise CourseFull(details={"capacity": current.capacity})
            # Only the capacity changed since it was read; try again with it.
            course = current
        raise CourseFull(details={"capacity": course.capacity})

    def _record_on_student(self, student_id: str, course_id: str) -> Course:
        try:
            recorded = self._students.add_member(student_id, course_id)
        except Exception:
            logger.warning(
                "Recording course %s on student %s failed; releasing the seat",
                course_id,
                student_id,
            )
            self._release_seat(student_id, course_id)
            raise

        if not recorded:
            self._release_seat(student_id, course_id)
            raise NotFound("Student not found.")

        # A concurrent delete_course may have pulled the course from students
        # before the add above landed, and a concurrent drop may have released
        # the seat in between the two writes.
        current = self._courses.get(course_id)
        if current is None:
            self._students.remove_member(student_id, course_id)
            raise NotFound("Course not found.")
        if student_id not in current.enrolled_students:
            logger.warning(
                "Seat of student %s in course %s was released during enroll",
                student_id,
                course_id,
            )
            self._students.remove_member(student_id, course_id)
        return current

    def _release_seat(self, student_id: str, course_id: str) -> None:
        try:
            self._courses.remove_member(course_id, student_id)
        except Exception as exc:
            logger.exception(
                "Could not release seat: course %s still lists student %s",
                course_id,
                student_id,
            )
            raise InternalError(details={"store": str(exc)}) from exc
        logger.warning("Released seat of student %s in course %s", student_id, course_id)

    def drop(self, student_id: str, course_id: str) -> Course:
        """Remove the enrollment from both sides; a pair not enrolled is left as is."""

        self._load_student(student_id)
        self._load_course(course_id)

        self._courses.remove_member(course_id, student_id)
        try:
            self._students.remove_member(student_id, course_id)
        except Exception:
            logger.exception(
                "Drop of student %s from course %s only reached the course; retry the drop",
                student_id,
                course_id,
            )
            raise

        logger.info("Dropped student %s from course %s", student_id, course_id)
        return self._load_course(course_id)

    def delete_course(self, course_id: str) -> Tuple[Course, int]:
        """Delete the course and return it with the number of students updated."""

        course = self._courses.delete(course_id)
        if course is None:
            raise NotFound("Course not found.")
        affected = self._cascade(self._students, "course_id", course_id)
        logger.info("Deleted course %s, removed from %d student(s)", course_id, affected)
        return course, affected

    def delete_student(self, student_id: str) -> Tuple[Student, int]:
        student = self._students.delete(student_id)
        if student is None:
            raise NotFound("Student not found.")
        affected = self._cascade(self._courses, "student_id", student_id)
        logger.info("Deleted student %s, removed from %d course(s)", student_id, affected)
        return student, affected

    def _cascade(self, store, id_label: str, deleted_id: str) -> int:
        try:
            return store.remove_member_everywhere(deleted_id)
        except Exception as exc:
            logger.exception("Deleted %s %s is still referenced", id_label, deleted_id)
            raise InternalError(
                details={
                    "store": str(exc),
                    id_label: deleted_id,
                    "recovery": REPAIR_ENDPOINT,
                }
            ) from exc

    def repair_dangling(self) -> Dict[str, int]:
        """Pull ids of deleted courses and students out of the other side's lists.

        Re-runs the delete cascade for every referenced id whose record is
        gone; returns how many documents were updated on each side.
        """

        referenced_courses = set()
        for student in self._students.iter_all():
            referenced_courses.update(student.enrolled_courses)
        referenced_students = set()
        for course in self._courses.iter_all():
            referenced_students.update(course.enrolled_students)

        repaired = {"students_updated": 0, "courses_updated": 0}
        for course_id in sorted(referenced_courses):
            if self._courses.get(course_id) is None:
                repaired["students_updated"] += self._students.remove_member_everywhere(course_id)
        for student_id in sorted(referenced_students):
            if self._students.get(student_id) is None:
                repaired["courses_updated"] += self._courses.remove_member_everywhere(student_id)

        if repaired["students_updated"] or repaired["courses_updated"]:
            logger.warning("Removed dangling references: %s", repaired)
        return repaired

    def courses_for(self, student_id: str) -> List[Course]:
        student = self._load_student(student_id)
        return self._courses.find_many(student.enrolled_courses)

    def audit(self) -> AuditReport:
        """Scan both stores and report every broken membership pair.

        The scan is not a snapshot; pairs changed while it runs may show up.
        """

        report = AuditReport()
        course_members = {}
        for course in self._courses.iter_all():
            report.courses_checked += 1
            course_members[course.id] = set(course.enrolled_students)
            if len(course.enrolled_students) > course.capacity:
                report.over_capacity.append(course.id)

        listed_by_students = set()
        for student in self._students.iter_all():
            report.students_checked += 1
            for course_id in student.enrolled_courses:
                listed_by_students.add((student.id, course_id))
                if student.id not in course_members.get(course_id, ()):
                    report.missing_on_course.append((student.id, course_id))

        for course_id, members in sorted(course_members.items()):
            for student_id in sorted(members):
                if (student_id, course_id) not in listed_by_students:
                    report.missing_on_student.append((student_id, course_id))

        if not report.consistent:
            logger.warning(
                "Enrollment audit found %d broken pair(s) and %d overfull course(s)",
                len(report.missing_on_course) + len(report.missing_on_student),
                len(report.over_capacity),
            )
        return report


__all__ = ["AuditReport", "EnrollmentCoordinator"]
