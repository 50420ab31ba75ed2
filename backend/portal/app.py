from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Flask, jsonify, request
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

from .config import ConfigError, Settings, configure_logging, load_settings
from .db import StoreContext
from .enrollment import EnrollmentCoordinator
from .errors import InternalError, PortalError
from .identity import IdentityService
from .routes import BLUEPRINTS
from .routes.common import EXTENSION_KEY, PortalServices, json_error

logger = logging.getLogger(__name__)

ENDPOINTS: Dict[str, str] = {
    "POST /api/students": "Register a student",
    "POST /api/sessions": "Log in and receive a bearer token",
    "GET /api/students/<id>": "Read your profile",
    "PUT /api/students/<id>": "Update your profile",
    "GET /api/students/<id>/courses": "List your enrolled courses",
    "GET /api/courses": "List courses",
    "GET /api/courses/<id>": "Get course by ID",
    "GET /api/courses/code/<courseCode>": "Get course by course code",
    "POST /api/courses": "Create a new course",
    "PUT /api/courses/<id>": "Update course by ID",
    "PUT /api/courses/code/<courseCode>": "Update course by course code",
    "DELETE /api/courses/<id>": "Delete course by ID",
    "DELETE /api/courses/code/<courseCode>": "Delete course by course code",
    "POST /api/courses/<id>/enroll": "Enroll in a course",
    "POST /api/courses/<id>/drop": "Drop a course",
    "GET /api/reports/course-stats": "Seats used per course",
}


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(PortalError)
    def handle_portal_error(exc: PortalError):
        return jsonify(exc.to_payload()), exc.status

    @app.errorhandler(PyMongoError)
    def handle_db_error(exc: PyMongoError):
        logger.exception("Request failed due to MongoDB error")
        error = InternalError(details={"store": str(exc)})
        return jsonify(error.to_payload()), error.status

    @app.errorhandler(ConfigError)
    def handle_config_error(exc: ConfigError):
        logger.exception("Missing configuration")
        return json_error(str(exc), 500)

    @app.errorhandler(404)
    def handle_not_found(exc: HTTPException):
        payload: Dict[str, Any] = {
            "error": "Route not found",
            "message": f"Cannot {request.method} {request.path}",
        }
        return jsonify(payload), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(exc: HTTPException):
        return json_error(f"Method {request.method} not allowed on {request.path}", 405)


def create_app(
    settings: Settings | None = None,
    context: StoreContext | None = None,
) -> Flask:
    """Build the Flask application around an explicit store context.

    Both arguments default to values read from the environment. The caller
    owns the context and closes it on shutdown.
    """

    settings = settings or load_settings()
    if context is None:
        context = StoreContext.from_env()
    context.open()

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config["SESSION_COOKIE_NAME"] = settings.session_cookie_name
    app.json.sort_keys = False

    identity = IdentityService(
        context.students,
        secret_key=settings.secret_key,
        token_ttl=settings.token_ttl,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    app.extensions[EXTENSION_KEY] = PortalServices(
        settings=settings,
        stores=context,
        identity=identity,
        enrollment=EnrollmentCoordinator(context.courses, context.students),
    )

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    _register_error_handlers(app)

    @app.get("/")
    def index():
        return jsonify({"message": "Course portal API is running", "endpoints": ENDPOINTS})

    @app.get("/api/health")
    def health():
        return jsonify({"ok": True})

    return app


def main() -> None:
    configure_logging()
    context = StoreContext.from_env()
    try:
        create_app(context=context).run(debug=True)
    finally:
        context.close()


if __name__ == "__main__":
    main()
