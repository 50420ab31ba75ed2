"""Seed helper that loads sample courses into the configured store."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv
from pymongo.errors import PyMongoError

ROOT_DIR = Path(__file__).resolve().parent.parent
BACKEND_DIR = ROOT_DIR / "backend"
ENV_PATH = BACKEND_DIR / ".env"
SEED_PATH = Path(__file__).resolve().parent / "seed.json"

if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from portal.config import ConfigError  # noqa: E402
from portal.db import StoreContext  # noqa: E402
from portal.errors import DuplicateKey, ValidationError  # noqa: E402
from portal.models import Course  # noqa: E402


def load_env() -> None:
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH)


def read_seed_file(path: Path = SEED_PATH) -> List[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as seed_file:
        data = json.load(seed_file)
    courses = data.get("courses") if isinstance(data, dict) else None
    if not isinstance(courses, list):
        raise ValueError("Seed file must contain an object with a 'courses' list")
    return courses


def seed_courses(context: StoreContext, documents: List[Dict[str, Any]]) -> int:
    """Create every course whose code is not taken yet; return how many were added."""

    created = 0
    for document in documents:
        try:
            context.courses.create(Course(**document))
        except DuplicateKey:
            print(f"Skipping existing course {document.get('course_code')}")
            continue
        created += 1
    return created


def main() -> None:
    load_env()
    try:
        context = StoreContext.from_env()
    except ConfigError as exc:  # pragma: no cover - simple CLI utility
        print(f"Configuration error: {exc}")
        raise SystemExit(1)

    try:
        with context:
            documents = read_seed_file()
            created = seed_courses(context, documents)
            print(f"Loaded {created} of {len(documents)} course(s).")
    except ValidationError as exc:
        print(f"Invalid seed data: {exc.message} {exc.details}")
        raise SystemExit(1)
    except PyMongoError as exc:  # pragma: no cover - requires Mongo connection
        print(f"MongoDB error: {exc}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
