"""Student and course portal backend."""

from .app import create_app
from .db import StoreContext

__all__ = ["StoreContext", "create_app"]
