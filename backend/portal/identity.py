"""
Identity and credentials

Registration, login and bearer-token verification for students. Passwords are
stored as bcrypt hashes; identity tokens are HS256 JWTs whose subject is the
student id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Tuple

import bcrypt
import jwt

from .errors import InvalidCredential, InvalidToken, NoToken, NotFound, ValidationError
from .models import Student, normalize_email

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 6


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes.
    return password.encode("utf-8")[:72]


def hash_password(password: str, *, rounds: int = 12) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def validate_password(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Validation failed.",
            details={"password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters."},
        )


class IdentityService:
    """Issues and checks student credentials against a student store."""

    def __init__(
        self,
        students,
        *,
        secret_key: str,
        token_ttl: timedelta = timedelta(days=7),
        bcrypt_rounds: int = 12,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._students = students
        self._secret_key = secret_key
        self._token_ttl = token_ttl
        self._bcrypt_rounds = bcrypt_rounds
        # Compared against when the email is unknown, so both failure paths
        # spend the same bcrypt time.
        self._dummy_hash = hash_password("portal-dummy-password", rounds=bcrypt_rounds)

    def issue_token(self, student_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": student_id,
            "iat": now,
            "exp": now + self._token_ttl,
            "type": "access",
        }
        return jwt.encode(payload, self._secret_key, algorithm=TOKEN_ALGORITHM)

    def register(
        self, name: str, email: str, raw_password: str, student_code: str
    ) -> Tuple[Student, str]:
        """Create a student and return it with a fresh token.

        Raises ``DuplicateKey`` (from the store) when the email or the student
        code is taken; nothing is written in that case.
        """

        validate_password(raw_password)
        student = Student(
            name=name,
            email=email,
            password_hash=hash_password(raw_password, rounds=self._bcrypt_rounds),
            student_code=student_code,
        )
        self._students.create(student)
        logger.info("Registered student %s", student.id)
        return student, self.issue_token(student.id)

    def authenticate(self, email: str, raw_password: str) -> Tuple[Student, str]:
        student = self._students.find_by_email(normalize_email(email))
        if student is None:
            verify_password(raw_password or "", self._dummy_hash)
            raise InvalidCredential()
        if not verify_password(raw_password or "", student.password_hash):
            raise InvalidCredential()
        return student, self.issue_token(student.id)

    def verify(self, token: str | None) -> str:
        """Return the student id carried by ``token``."""

        if not token:
            raise NoToken()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[TOKEN_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise InvalidToken() from None
        except jwt.InvalidTokenError as exc:
            logger.warning("Token validation failed: %s", exc)
            raise InvalidToken() from None

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidToken()
        return subject

    def hash(self, raw_password: str) -> str:
        """Validate a new password and return its hash for a profile update."""

        validate_password(raw_password)
        return hash_password(raw_password, rounds=self._bcrypt_rounds)

    def change_password(self, student_id: str, raw_password: str) -> Student:
        updated = self._students.update(student_id, {"password_hash": self.hash(raw_password)})
        if updated is None:
            raise NotFound("Student not found.")
        return updated


__all__ = [
    "IdentityService",
    "hash_password",
    "validate_password",
    "verify_password",
]
