from __future__ import annotations

import base64
import hashlib
import secrets

from flask import Response, current_app, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

OAUTH_COOKIE_NAME = "billing_oauth_state"
OAUTH_COOKIE_MAX_AGE = 60 * 10
OAUTH_CALLBACK_PATH = "/api/auth/callback"
GOOGLE_QUERY_PARAMS = {"access_type": "offline", "prompt": "consent"}


def pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(
        secret_key=current_app.config["AUTH_SECRET_KEY"], salt="billing-oauth-state"
    )


def _cookie_secure() -> bool:
    return request.is_secure or current_app.config.get("APP_ENV") == "production"


def set_oauth_cookie(resp: Response, payload: dict[str, str]) -> None:
    resp.set_cookie(
        OAUTH_COOKIE_NAME,
        _serializer().dumps(payload),
        max_age=OAUTH_COOKIE_MAX_AGE,
        httponly=True,
        secure=_cookie_secure(),
        samesite="Lax",
        path=OAUTH_CALLBACK_PATH,
    )


def load_oauth_cookie() -> dict[str, str] | None:
    raw = request.cookies.get(OAUTH_COOKIE_NAME)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        payload = _serializer().loads(raw, max_age=OAUTH_COOKIE_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def clear_oauth_cookie(resp: Response) -> None:
    resp.delete_cookie(
        OAUTH_COOKIE_NAME,
        path=OAUTH_CALLBACK_PATH,
        secure=_cookie_secure(),
        samesite="Lax",
    )
