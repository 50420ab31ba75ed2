"""Registration, login and the bearer-protected enrollment endpoints."""

from __future__ import annotations

import sys
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from portal.app import create_app
from portal.config import Settings
from portal.db import StoreContext

SETTINGS = Settings(
    secret_key="test-secret-key-that-is-long-enough-for-hs256",
    admin_user="admin",
    admin_pass="admin-pass",
    store_backend="memory",
    bcrypt_rounds=4,
)


class EnrollmentApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(SETTINGS, StoreContext.in_memory())
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()

    def _register(self, index: int):
        response = self.client.post(
            "/api/students",
            json={
                "name": f"Student {index}",
                "email": f"student{index}@example.edu",
                "password": "correct horse",
                "studentCode": f"s{index:04d}",
            },
        )
        self.assertEqual(201, response.status_code, response.get_json())
        payload = response.get_json()
        return payload["student"]["_id"], {"Authorization": f"Bearer {payload['token']}"}

    def _course(self, code: str = "CS101", capacity: int = 30) -> str:
        response = self.client.post(
            "/api/courses",
            json={
                "courseCode": code,
                "courseName": f"Course {code}",
                "instructor": "Dr. Reyes",
                "capacity": capacity,
            },
        )
        self.assertEqual(201, response.status_code, response.get_json())
        return response.get_json()["_id"]

    def test_register_never_returns_password_hash(self) -> None:
        response = self.client.post(
            "/api/students",
            json={
                "name": "Ana",
                "email": "ana@example.edu",
                "password": "correct horse",
                "studentCode": "s1",
            },
        )
        student = response.get_json()["student"]
        self.assertNotIn("password_hash", student)
        self.assertNotIn("password", student)
        self.assertEqual("S1", student["student_code"])

    def test_duplicate_registration_is_a_bad_request(self) -> None:
        self._register(1)

        response = self.client.post(
            "/api/students",
            json={
                "name": "Copy",
                "email": "STUDENT1@example.edu",
                "password": "correct horse",
                "studentCode": "S9999",
            },
        )

        self.assertEqual(400, response.status_code)
        self.assertEqual("DuplicateKey", response.get_json()["code"])

    def test_register_requires_every_field(self) -> None:
        response = self.client.post("/api/students", json={"email": "bad"})

        self.assertEqual(400, response.status_code)
        self.assertEqual(
            {"name", "email", "password", "student_code"},
            set(response.get_json()["details"]),
        )

    def test_login(self) -> None:
        student_id, _ = self._register(1)

        ok = self.client.post(
            "/api/sessions",
            json={"email": "student1@example.edu", "password": "correct horse"},
        )
        wrong = self.client.post(
            "/api/sessions",
            json={"email": "student1@example.edu", "password": "nope"},
        )
        unknown = self.client.post(
            "/api/sessions",
            json={"email": "ghost@example.edu", "password": "correct horse"},
        )

        self.assertEqual(200, ok.status_code)
        self.assertEqual(student_id, ok.get_json()["student"]["_id"])
        self.assertTrue(ok.get_json()["token"])
        self.assertEqual(401, wrong.status_code)
        self.assertEqual(401, unknown.status_code)
        self.assertEqual(wrong.get_json(), unknown.get_json())

    def test_enroll_requires_a_valid_token(self) -> None:
        course_id = self._course()
        cases = [
            ({}, "NoToken"),
            ({"Authorization": "Bearer "}, "NoToken"),
            ({"Authorization": "Bearer garbage"}, "InvalidToken"),
            ({"Authorization": "Basic abc"}, "InvalidToken"),
        ]
        for headers, code in cases:
            with self.subTest(headers=headers):
                response = self.client.post(f"/api/courses/{course_id}/enroll", headers=headers)
                self.assertEqual(401, response.status_code)
                self.assertEqual(code, response.get_json()["code"])

    def test_capacity_one_course(self) -> None:
        course_id = self._course(capacity=1)
        _, alice = self._register(1)
        _, bob = self._register(2)

        first = self.client.post(f"/api/courses/{course_id}/enroll", headers=alice)
        self.assertEqual(200, first.status_code)
        self.assertEqual(1, first.get_json()["course"]["enrolled_count"])

        full = self.client.post(f"/api/courses/{course_id}/enroll", headers=bob)
        self.assertEqual(409, full.status_code)
        self.assertEqual("CourseFull", full.get_json()["code"])

        again = self.client.post(f"/api/courses/{course_id}/enroll", headers=alice)
        self.assertEqual("AlreadyEnrolled", again.get_json()["code"])

        dropped = self.client.post(f"/api/courses/{course_id}/drop", headers=alice)
        self.assertEqual(200, dropped.status_code)
        self.assertEqual(0, dropped.get_json()["course"]["enrolled_count"])

        second = self.client.post(f"/api/courses/{course_id}/enroll", headers=bob)
        self.assertEqual(200, second.status_code)

    def test_enroll_in_missing_course(self) -> None:
        _, headers = self._register(1)

        missing = self.client.post("/api/courses/5f0000000000000000000000/enroll", headers=headers)
        malformed = self.client.post("/api/courses/xyz/enroll", headers=headers)

        self.assertEqual(404, missing.status_code)
        self.assertEqual(400, malformed.status_code)

    def test_my_courses_and_course_deletion(self) -> None:
        student_id, headers = self._register(1)
        first = self._course("CS101")
        second = self._course("CS201")
        for course_id in (first, second):
            self.client.post(f"/api/courses/{course_id}/enroll", headers=headers)

        mine = self.client.get(f"/api/students/{student_id}/courses", headers=headers).get_json()
        self.assertEqual(["CS101", "CS201"], [c["course_code"] for c in mine["items"]])

        deleted = self.client.delete(f"/api/courses/{first}").get_json()
        self.assertEqual(1, deleted["students_updated"])

        mine = self.client.get(f"/api/students/{student_id}/courses", headers=headers).get_json()
        self.assertEqual(["CS201"], [c["course_code"] for c in mine["items"]])
        profile = self.client.get(f"/api/students/{student_id}", headers=headers).get_json()
        self.assertEqual([second], profile["enrolled_courses"])

    def test_students_only_see_their_own_records(self) -> None:
        alice_id, _ = self._register(1)
        _, bob = self._register(2)

        for path in (f"/api/students/{alice_id}", f"/api/students/{alice_id}/courses"):
            with self.subTest(path=path):
                response = self.client.get(path, headers=bob)
                self.assertEqual(403, response.status_code)

        update = self.client.put(f"/api/students/{alice_id}", headers=bob, json={"name": "X"})
        self.assertEqual(403, update.status_code)

    def test_profile_update(self) -> None:
        student_id, headers = self._register(1)
        path = f"/api/students/{student_id}"

        renamed = self.client.put(path, headers=headers, json={"name": "Renamed", "password": "new secret"})
        self.assertEqual(200, renamed.status_code)
        self.assertEqual("Renamed", renamed.get_json()["name"])

        login = self.client.post(
            "/api/sessions",
            json={"email": "student1@example.edu", "password": "new secret"},
        )
        self.assertEqual(200, login.status_code)

        code_change = self.client.put(path, headers=headers, json={"studentCode": "S7777"})
        self.assertEqual(400, code_change.status_code)

        self._register(2)
        taken = self.client.put(path, headers=headers, json={"email": "student2@example.edu"})
        self.assertEqual(409, taken.status_code)

    def test_rejected_profile_update_changes_nothing(self) -> None:
        student_id, headers = self._register(1)
        path = f"/api/students/{student_id}"

        response = self.client.put(path, headers=headers, json={"name": "Changed", "password": "abc"})

        self.assertEqual(400, response.status_code)
        self.assertIn("password", response.get_json()["details"])
        profile = self.client.get(path, headers=headers).get_json()
        self.assertEqual("Student 1", profile["name"])
        login = self.client.post(
            "/api/sessions",
            json={"email": "student1@example.edu", "password": "correct horse"},
        )
        self.assertEqual(200, login.status_code)

    def test_short_password_at_registration(self) -> None:
        response = self.client.post(
            "/api/students",
            json={"name": "Ana", "email": "ana@example.edu", "password": "abc", "studentCode": "S1"},
        )

        self.assertEqual(400, response.status_code)
        self.assertIn("password", response.get_json()["details"])

    def test_login_body_must_be_an_object(self) -> None:
        for path in ("/api/sessions", "/api/admin/login"):
            with self.subTest(path=path):
                response = self.client.post(path, json=[1])
                self.assertEqual(400, response.status_code)
                self.assertEqual("ValidationError", response.get_json()["code"])

    def test_parallel_requests_respect_capacity(self) -> None:
        capacity = 5
        course_id = self._course(capacity=capacity)
        headers = [self._register(i)[1] for i in range(capacity + 5)]

        def enroll(auth):
            with self.app.test_client() as client:
                return client.post(f"/api/courses/{course_id}/enroll", headers=auth).status_code

        with ThreadPoolExecutor(max_workers=len(headers)) as pool:
            statuses = list(pool.map(enroll, headers))

        self.assertEqual(capacity, statuses.count(200))
        self.assertEqual(5, statuses.count(409))
        course = self.client.get(f"/api/courses/{course_id}").get_json()
        self.assertEqual(capacity, course["enrolled_count"])


if __name__ == "__main__":
    unittest.main()
