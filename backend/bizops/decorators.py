# Overview: Request context decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import SalesEngineError


def _header_id(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if not raw.isdigit() or int(raw) <= 0:
        raise ValueError(f"{name} must be a positive integer")
    return int(raw)


def require_business_context(f):
    """
    Establish tenant context from request headers.

    Sets:
    - g.business_id: from X-Business-Id (REQUIRED)
    - g.user_id: from X-User-Id (optional actor id)

    Authentication is handled upstream; this only scopes the request.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            business_id = _header_id("X-Business-Id")
            user_id = _header_id("X-User-Id")
        except ValueError as e:
            return jsonify({"error": str(e), "code": "validation_error", "details": {}}), 400

        if business_id is None:
            return jsonify({
                "error": "X-Business-Id header required",
                "code": "validation_error",
                "details": {},
            }), 400

        g.business_id = business_id
        g.user_id = user_id
        return f(*args, **kwargs)

    return decorated_function


def handle_engine_errors(f):
    """
    Map sales engine errors to JSON responses.

    The status code comes from the error class; message text is never
    inspected. Anything else is logged and returned as a 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SalesEngineError as e:
            return jsonify(e.to_dict()), e.http_status
        except Exception:
            current_app.logger.exception("Unhandled error in %s", f.__name__)
            return jsonify({"error": "Internal server error", "code": "internal_error", "details": {}}), 500

    return decorated_function
