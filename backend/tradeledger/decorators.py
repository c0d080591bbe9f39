# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require an acting user on write routes.

    Identity is an opaque string supplied by the caller in the X-User-Id
    header; it is stored on every record the request creates.

    Sets:
    - g.actor_id: the header value, stripped

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor:
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401
        g.actor_id = actor
        return f(*args, **kwargs)

    return decorated_function
