"""
Auth utilities for Flask routes.

Verifies Supabase JWTs using the JWT secret (HS256).
Checks admin role from the profiles table using a service role client
(bypasses RLS).

A missing or invalid token is not an error: the request is simply
anonymous, and anonymous players only get local run persistence.
"""

import functools
import os

import jwt
from flask import current_app, g, jsonify, request

# Service role client for profiles lookup (bypasses RLS)
_service_client = None
_warned_no_secret = False


def _jwt_secret():
    # JWT secret from Supabase dashboard (Settings > API > JWT Secret)
    return os.environ.get("SUPABASE_JWT_SECRET", "")


def _get_service_client():
    """Lazy-init a Supabase client using the service role key."""
    global _service_client
    if _service_client is None:
        from supabase import create_client
        url = os.environ.get("SUPABASE_URL", "")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            return None
        _service_client = create_client(url, key)
    return _service_client


def decode_token(token, secret=None):
    """Return the verified JWT payload, or None."""
    global _warned_no_secret
    secret = secret or _jwt_secret()
    if not secret:
        # No JWT secret configured, cannot verify tokens
        if not _warned_no_secret:
            print("[WARNING] No SUPABASE_JWT_SECRET env var, every request is anonymous")
            _warned_no_secret = True
        return None
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience="authenticated",
        )
    except jwt.InvalidTokenError:
        # Includes ExpiredSignatureError
        return None


def _lookup_role(user_id):
    client = _get_service_client()
    if not client:
        return "user"

    result = client.table("profiles").select("role").eq("id", user_id).execute()

    if not result.data:
        return "user"  # No profile row yet (trigger race condition edge case)
    return result.data[0].get("role", "user")


def get_current_user():
    """
    Extract and verify the JWT from Authorization header.
    Returns dict with {uid, email, role} or None if no valid token.
    Caches result in flask.g for the duration of the request.
    """
    if hasattr(g, "_current_user"):
        return g._current_user

    g._current_user = None

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    payload = decode_token(auth_header[7:])
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    g._current_user = {
        "uid": user_id,
        "email": payload.get("email", ""),
        "role": _lookup_role(user_id),
    }
    return g._current_user


def current_identity():
    """
    Identity for this request. Apps can override the lookup with
    app.config['IDENTITY_PROVIDER'] (a zero-argument callable).
    """
    provider = current_app.config.get("IDENTITY_PROVIDER")
    if provider is not None:
        return provider()
    return get_current_user()


def require_user(f):
    """
    Decorator: require a signed-in user. Returns 401 otherwise.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_identity() is None:
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)
    return decorated


def require_admin(f):
    """
    Decorator: require a valid JWT with admin role.
    Returns 401 if no valid token, 403 if not admin.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user = current_identity()
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        if user.get("role") != "admin":
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated
