# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .validation import parse_int
from .services.errors import InvalidArgument


def _actor_from_header() -> int | None:
    raw = request.headers.get("X-User-Id")
    if raw is None or not raw.strip():
        return None
    return parse_int(raw, "X-User-Id")


def require_actor(f):
    """
    Require the caller identity for audit attribution.

    Authentication happens upstream; the auth layer forwards the user id in
    the X-User-Id header. Sets g.actor_id for the route.

    Returns 401 if the header is missing, 400 if it is not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            actor_id = _actor_from_header()
        except InvalidArgument as e:
            return jsonify(e.to_dict()), e.http_status

        if actor_id is None:
            return jsonify({"error": "Authentication required"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function

