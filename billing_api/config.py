import os
import secrets
from pathlib import Path

from dotenv import load_dotenv

# Load env vars from `billing_api/.env` regardless of the process working directory.
load_dotenv(dotenv_path=Path(__file__).with_name(".env"))
# Also allow a repo/root `.env` (or process env) to supply values without overriding.
load_dotenv()

# ── CORS origins ──────────────────────────────────────────────────────────
_DEFAULT_CORS_ORIGINS = (
    "http://localhost:8081",
    "http://localhost:19006",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5500",
    "http://127.0.0.1:5500",
)


def _cors_origins() -> list[str]:
    raw = os.environ.get("CORS_ORIGINS", "").strip()
    if not raw:
        return list(_DEFAULT_CORS_ORIGINS)
    origins = [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]
    if "*" in origins:
        raise RuntimeError(
            "CORS_ORIGINS cannot include '*' when supports_credentials=True. "
            "Specify explicit origins instead."
        )
    return origins or list(_DEFAULT_CORS_ORIGINS)


def _env(name: str, default: str | None = None) -> str | None:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


def load_config() -> dict[str, object]:
    supabase_url = _env("SUPABASE_URL")
    auth_secret = _env("AUTH_SECRET_KEY") or _env("SECRET_KEY") or secrets.token_urlsafe(32)
    return {
        "SECRET_KEY": auth_secret,
        "AUTH_SECRET_KEY": auth_secret,
        "APP_ENV": (_env("APP_ENV", "production") or "production").lower(),
        "AUTH_MODE": (_env("AUTH_MODE", "") or "").lower(),
        "SUPABASE_URL": supabase_url,
        "SUPABASE_ANON_KEY": _env("SUPABASE_ANON_KEY"),
        "SUPABASE_SERVICE_ROLE_KEY": _env("SUPABASE_SERVICE_ROLE_KEY"),
        "ADMIN_API_KEY": _env("ADMIN_API_KEY"),
        "PORT": int(_env("PORT", "3000") or "3000"),
        "PUBLIC_BASE_URL": (_env("PUBLIC_BASE_URL", "http://localhost:3000") or "").rstrip("/"),
        "MOBILE_OAUTH_REDIRECT": _env("MOBILE_OAUTH_REDIRECT", "myapp://auth-callback"),
        "PASSWORD_RESET_REDIRECT_URL": _env(
            "PASSWORD_RESET_REDIRECT_URL",
            f"{supabase_url.rstrip('/')}/auth/v1/callback" if supabase_url else None,
        ),
        "CORS_ORIGINS": _cors_origins(),
        "LOG_LEVEL": (_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        "MOCK_REQUIRE_EMAIL_CONFIRMATION": _env("MOCK_REQUIRE_EMAIL_CONFIRMATION") == "1",
        # ── OpenAPI / Flask-Smorest configuration ───────────────────────
        "API_TITLE": "Billing Manager API",
        "API_VERSION": "v1",
        "OPENAPI_VERSION": "3.0.2",
        "OPENAPI_URL_PREFIX": "/",
        "OPENAPI_JSON_PATH": "openapi.json",
    }
