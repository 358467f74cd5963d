from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from billing_api.services.provider import Provider, ProviderUser

USERS_TABLE = "users"
DEFAULT_PLAN = "free"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_profile(provider: Provider, user_id: str) -> dict[str, Any] | None:
    rows = provider.table(USERS_TABLE).select("*").eq("id", user_id).limit(1).execute()
    return rows[0] if rows else None


def email_is_registered(provider: Provider, email: str) -> bool:
    rows = (
        provider.table(USERS_TABLE)
        .select("email")
        .eq("email", normalize_email(email))
        .limit(1)
        .execute()
    )
    return bool(rows)


def ensure_profile(
    provider: Provider, user: ProviderUser, *, defaults: dict[str, Any] | None = None
) -> dict[str, Any] | None:
    """Get-or-create the application profile row for a provider identity.

    Insert-if-absent is a single upsert that ignores conflicts on ``id``, so
    concurrent first logins for the same identity never produce two rows.
    """
    now = utc_now_iso()
    row: dict[str, Any] = {
        "id": user.id,
        "email": user.email,
        "name": None,
        "phone": None,
        "company_name": None,
        "avatar_url": user.user_metadata.get("avatar_url"),
        "subscription_plan": DEFAULT_PLAN,
        "invoice_count": 0,
        "client_count": 0,
        "total_revenue": 0,
        "created_at": now,
        "updated_at": now,
    }
    for key, value in (defaults or {}).items():
        if value is not None:
            row[key] = value
    if not row["name"]:
        row["name"] = "User"
    provider.table(USERS_TABLE).upsert(row, on_conflict="id", ignore_duplicates=True).execute()
    return get_profile(provider, user.id)


def update_profile(
    provider: Provider, user_id: str, updates: dict[str, Any]
) -> dict[str, Any] | None:
    values = dict(updates)
    values["updated_at"] = utc_now_iso()
    rows = provider.table(USERS_TABLE).update(values).eq("id", user_id).execute()
    return rows[0] if rows else None


def serialize_user(user: ProviderUser, profile: dict[str, Any] | None) -> dict[str, Any]:
    """Merge the profile row over provider metadata into the API's user shape."""
    profile = profile or {}
    metadata = user.user_metadata

    def pick(key: str, *fallbacks: str) -> Any:
        value = profile.get(key)
        if value not in (None, ""):
            return value
        for name in (key, *fallbacks):
            if metadata.get(name) not in (None, ""):
                return metadata[name]
        return None

    return {
        "id": user.id,
        "email": user.email,
        "name": pick("name", "full_name"),
        "phone": pick("phone"),
        "company_name": pick("company_name"),
        "avatar_url": metadata.get("avatar_url") or profile.get("avatar_url"),
        "subscription_plan": profile.get("subscription_plan") or DEFAULT_PLAN,
        "invoice_count": profile.get("invoice_count") or 0,
        "client_count": profile.get("client_count") or 0,
        "total_revenue": profile.get("total_revenue") or 0,
        "created_at": profile.get("created_at") or user.created_at,
        "updated_at": profile.get("updated_at"),
    }
