# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.session_service import get_session_store


def with_actor(f):
    """
    Establish who is acting for this request.

    Sets g.actor:
    - the session's Actor when a valid "Authorization: Bearer <token>" is sent
    - None when no Authorization header is sent; the route may then take
      actorId/actorName from the request body

    Returns 401 if an Authorization header is present but the token is
    malformed, unknown or expired.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        g.actor = None

        if auth_header:
            if not auth_header.startswith("Bearer "):
                return jsonify({"success": False, "error": "Authorization must be a Bearer token"}), 401

            token = auth_header.split(" ", 1)[1].strip()
            actor = get_session_store().resolve(token)
            if actor is None:
                return jsonify({"success": False, "error": "Invalid or expired token"}), 401
            g.actor = actor

        return f(*args, **kwargs)

    return decorated_function
