# Overview: Request identity decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


USER_ID_HEADER = "X-User-Id"


def _load_user():
    raw = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not raw.isdigit():
        return None
    user = db.session.get(User, int(raw))
    if not user or not user.is_active:
        return None
    return user


def require_user(f):
    """
    Require an identified, active user.

    Identity is asserted by the upstream session layer through the
    X-User-Id header; this service only resolves it.

    Sets g.current_user. Returns 401 if the header is missing, malformed,
    or names an unknown/inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _load_user()
        if not user:
            return jsonify({"error": "Authentication required"}), 401
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require an identified admin user (401 unidentified, 403 non-admin)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _load_user()
        if not user:
            return jsonify({"error": "Authentication required"}), 401
        if not user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
