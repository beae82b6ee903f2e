# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import token_service


def bearer_token() -> str | None:
    """Token from an `Authorization: Bearer <token>` header, or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.access_token: The AccessToken record

    Returns 401 with a distinct code for each failure so clients can react:
    - AUTH_REQUIRED: no Authorization header
    - INVALID_TOKEN: unknown, malformed or revoked token
    - TOKEN_EXPIRED: token past its lifetime
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()

        if not token:
            return jsonify({"error": "Authentication required", "code": "AUTH_REQUIRED"}), 401

        check = token_service.verify(token)

        if check.status == token_service.TOKEN_EXPIRED:
            return jsonify({"error": "Token expired", "code": "TOKEN_EXPIRED"}), 401

        if not check.is_valid:
            return jsonify({"error": "Invalid token", "code": "INVALID_TOKEN"}), 401

        g.current_user = check.user
        g.access_token = check.token

        return f(*args, **kwargs)

    return decorated_function
