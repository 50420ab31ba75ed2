"""Application configuration helpers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_DOTENV_PATH = os.path.join(_BASE_DIR, ".env")

if os.path.exists(_DOTENV_PATH):
    load_dotenv(_DOTENV_PATH)

STORE_BACKENDS = ("mongo", "memory")
DEFAULT_TOKEN_TTL_DAYS = 7
DEFAULT_BCRYPT_ROUNDS = 12
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "portal_admin")


class ConfigError(RuntimeError):
    """Raised when configuration values are missing or invalid."""


def get_mongo_uri() -> str:
    """Return the MongoDB connection string from the environment."""

    uri = os.getenv("MONGODB_URI", "").strip()
    if not uri:
        raise ConfigError("MONGODB_URI is not set. Define it in backend/.env.")
    return uri


def _db_name_from_uri(uri: str) -> str | None:
    main = uri.split("?", 1)[0].rstrip("/")
    after_scheme = main.split("://", 1)[1] if "://" in main else main
    if "/" not in after_scheme:
        return None
    return after_scheme.split("/", 1)[1] or None


def get_db_name() -> str:
    """Return the database name from MONGODB_DB or the path of the URI."""

    db_name = os.getenv("MONGODB_DB", "").strip()
    if db_name:
        return db_name

    candidate = _db_name_from_uri(get_mongo_uri())
    if not candidate:
        raise ConfigError(
            "Database name not found. Provide it via MONGODB_URI or MONGODB_DB."
        )
    return candidate


def get_store_backend() -> str:
    backend = os.getenv("STORE_BACKEND", "mongo").strip().lower()
    if backend not in STORE_BACKENDS:
        raise ConfigError(
            "STORE_BACKEND must be one of: " + ", ".join(STORE_BACKENDS) + "."
        )
    return backend


def get_secret_key() -> str:
    """Return the key used to sign identity tokens and admin sessions."""

    secret = os.getenv("SECRET_KEY", "")
    if not secret:
        raise ConfigError("SECRET_KEY is not set. Define it in backend/.env.")
    return secret


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer.") from None
    if value <= 0:
        raise ConfigError(f"{name} must be a positive integer.")
    return value


def get_token_ttl() -> timedelta:
    return timedelta(days=_get_positive_int("TOKEN_TTL_DAYS", DEFAULT_TOKEN_TTL_DAYS))


def get_bcrypt_rounds() -> int:
    return _get_positive_int("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS)


def get_admin_credentials() -> tuple[str, str]:
    """Return the (username, password) pair for the admin session login."""

    username = os.getenv("ADMIN_USER", "").strip()
    password = os.getenv("ADMIN_PASS", "")
    if not username or not password:
        raise ConfigError("ADMIN_USER and ADMIN_PASS must both be set.")
    return username, password


@dataclass(frozen=True)
class Settings:
    secret_key: str
    admin_user: str
    admin_pass: str
    store_backend: str = "mongo"
    token_ttl: timedelta = timedelta(days=DEFAULT_TOKEN_TTL_DAYS)
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    session_cookie_name: str = SESSION_COOKIE_NAME


def load_settings() -> Settings:
    """Collect every setting the web application needs from the environment."""

    admin_user, admin_pass = get_admin_credentials()
    return Settings(
        secret_key=get_secret_key(),
        admin_user=admin_user,
        admin_pass=admin_pass,
        store_backend=get_store_backend(),
        token_ttl=get_token_ttl(),
        bcrypt_rounds=get_bcrypt_rounds(),
    )


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ConfigError(f"LOG_LEVEL {level_name!r} is not a logging level.")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "ConfigError",
    "Settings",
    "configure_logging",
    "get_admin_credentials",
    "get_bcrypt_rounds",
    "get_db_name",
    "get_mongo_uri",
    "get_secret_key",
    "get_store_backend",
    "get_token_ttl",
    "load_settings",
]
