# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-User-Id"


def with_actor(f):
    """
    Resolve the acting user for attribution.

    Sets g.actor_user_id from the X-User-Id header (None when absent).
    This is attribution only; requests are not authenticated.

    Returns 400 when the header is present but not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw:
            g.actor_user_id = None
            return f(*args, **kwargs)

        if not (raw.isascii() and raw.isdigit()) or int(raw) <= 0:
            return jsonify({"error": f"{ACTOR_HEADER} must be a positive integer"}), 400

        g.actor_user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
