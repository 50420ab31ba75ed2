"""WSGI entry point, e.g. ``gunicorn wsgi:app`` from the backend directory."""

import atexit

from portal.app import create_app
from portal.config import configure_logging
from portal.db import StoreContext

configure_logging()
context = StoreContext.from_env()
atexit.register(context.close)

app = create_app(context=context)
