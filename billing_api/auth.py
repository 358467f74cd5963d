from __future__ import annotations

import hmac
from functools import wraps

from flask import abort, current_app, g, request

from billing_api.extensions import get_provider
from billing_api.services.provider import ProviderAuthError, ProviderUser


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    return token or None


def authenticate() -> ProviderUser:
    """Resolve the bearer token against the provider and stash the identity on `g`.

    Every call is a round trip to the provider; nothing is cached.
    """
    cached = getattr(g, "current_user", None)
    if isinstance(cached, ProviderUser):
        return cached

    token = bearer_token()
    if token is None:
        abort(401, description="Authentication required. Please sign in.")

    try:
        user = get_provider().get_user(token)
    except ProviderAuthError as exc:
        current_app.logger.info("Token verification failed: %s", exc.message)
        abort(401, description="Session expired. Please sign in again.")
    except Exception:
        current_app.logger.exception("Auth middleware error.")
        abort(401, description="Authentication failed")

    if user is None:
        abort(401, description="User not found")

    g.current_user = user
    g.access_token = token
    return user


def require_user(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        authenticate()
        return view(*args, **kwargs)

    return wrapper


def require_admin_key(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_KEY")
        provided = request.headers.get("X-Admin-Key", "")
        if not expected or not hmac.compare_digest(
            provided.encode("utf-8"), expected.encode("utf-8")
        ):
            abort(403, description="Admin access required")
        return view(*args, **kwargs)

    return wrapper
