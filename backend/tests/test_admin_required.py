"""Ensure admin endpoints require an admin session."""

from __future__ import annotations

import sys
import unittest
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


class AdminSessionRequirementTestCase(unittest.TestCase):
    """Verify that admin endpoints cannot be used without admin login."""

    def setUp(self) -> None:
        self.app = create_app(SETTINGS, StoreContext.in_memory())
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()

    def _login(self, password: str = "admin-pass"):
        return self.client.post(
            "/api/admin/login",
            json={"username": "admin", "password": password},
        )

    def _register(self) -> str:
        response = self.client.post(
            "/api/students",
            json={
                "name": "Ana Lima",
                "email": "ana@example.edu",
                "password": "correct horse",
                "studentCode": "S1001",
            },
        )
        payload = response.get_json()
        self.student_headers = {"Authorization": f"Bearer {payload['token']}"}
        return payload["student"]["_id"]

    def _assert_forbidden(self, method: str, path: str) -> None:
        response = getattr(self.client, method)(path)

        self.assertEqual(403, response.status_code)
        self.assertEqual("forbidden", response.get_json()["error"])

    def test_admin_endpoints_require_admin(self) -> None:
        student_id = self._register()
        for method, path in [
            ("get", "/api/students"),
            ("delete", f"/api/students/{student_id}"),
            ("get", "/api/reports/consistency"),
            ("get", "/api/reports/enrollments.csv"),
            ("post", "/api/reports/consistency/repair"),
        ]:
            with self.subTest(method=method, path=path):
                self._assert_forbidden(method, path)

    def test_wrong_admin_password_is_rejected(self) -> None:
        response = self._login("nope")

        self.assertEqual(401, response.status_code)
        self.assertFalse(self.client.get("/api/admin/me").get_json()["is_admin"])
        self._assert_forbidden("get", "/api/students")

    def test_admin_session_unlocks_reports_and_cascading_delete(self) -> None:
        student_id = self._register()
        course = self.client.post(
            "/api/courses",
            json={"courseCode": "CS101", "courseName": "Intro", "instructor": "Dr. Reyes"},
        ).get_json()
        self.client.post(f"/api/courses/{course['_id']}/enroll", headers=self.student_headers)

        self.assertEqual(200, self._login().status_code)
        self.assertTrue(self.client.get("/api/admin/me").get_json()["is_admin"])

        listing = self.client.get("/api/students").get_json()
        self.assertEqual(1, listing["total"])
        self.assertNotIn("password_hash", listing["items"][0])

        export = self.client.get("/api/reports/enrollments.csv")
        self.assertEqual(200, export.status_code)
        lines = export.get_data(as_text=True).strip().splitlines()
        self.assertEqual(2, len(lines))
        self.assertIn("CS101", lines[1])
        self.assertIn("S1001", lines[1])

        deleted = self.client.delete(f"/api/students/{student_id}").get_json()
        self.assertEqual(1, deleted["courses_updated"])
        course = self.client.get(f"/api/courses/{course['_id']}").get_json()
        self.assertEqual([], course["enrolled_students"])

        report = self.client.get("/api/reports/consistency").get_json()
        self.assertTrue(report["consistent"])

        repaired = self.client.post("/api/reports/consistency/repair").get_json()
        self.assertEqual(
            {"ok": True, "students_updated": 0, "courses_updated": 0},
            repaired,
        )

        self.client.post("/api/admin/logout")
        self._assert_forbidden("get", "/api/students")


if __name__ == "__main__":
    unittest.main()
