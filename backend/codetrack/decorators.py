# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_USER_HEADER = "X-Actor-User-Id"
ACTOR_ORG_HEADER = "X-Actor-Org-Id"


def require_actor(f):
    """
    Require an authenticated actor and establish acting context.

    Authentication happens upstream (API gateway / auth service); it forwards
    the verified identity in headers. Sets the following Flask g attributes:
    - g.actor_user_id: opaque user identifier - REQUIRED
    - g.actor_org_id: default acting organization (may be None)

    Returns 401 if the user header is missing, 400 if the org header is not
    an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get(ACTOR_USER_HEADER) or "").strip()
        if not user_id:
            return jsonify({"error": "Authentication required", "code": "ACTOR_REQUIRED"}), 401

        org_id = None
        raw_org = (request.headers.get(ACTOR_ORG_HEADER) or "").strip()
        if raw_org:
            bad_org = jsonify({"error": f"{ACTOR_ORG_HEADER} must be an integer", "code": "VALIDATION_ERROR"}), 400
            if not raw_org.isdigit():
                return bad_org
            try:
                org_id = int(raw_org)
            except ValueError:
                # isdigit() also accepts superscript digits
                return bad_org

        g.actor_user_id = user_id
        g.actor_org_id = org_id

        return f(*args, **kwargs)

    return decorated_function
