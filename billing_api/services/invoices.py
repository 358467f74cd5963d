from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Iterator

from flask import current_app

from billing_api.services.profiles import USERS_TABLE, utc_now_iso
from billing_api.services.provider import Provider, ProviderDataError

INVOICES_TABLE = "invoices"
RECONCILE_PAGE_SIZE = 1000


def generate_invoice_number() -> str:
    return f"INV-{int(time.time() * 1000)}"


def list_invoices(provider: Provider, user_id: str) -> list[dict[str, Any]]:
    return (
        provider.table(INVOICES_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )


def get_invoice(provider: Provider, user_id: str, invoice_id: str) -> dict[str, Any] | None:
    rows = (
        provider.table(INVOICES_TABLE)
        .select("*")
        .eq("id", invoice_id)
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    return rows[0] if rows else None


def create_invoice(provider: Provider, user_id: str, values: dict[str, Any]) -> dict[str, Any]:
    now = utc_now_iso()
    row = dict(values)
    row["user_id"] = user_id
    row["created_at"] = now
    row["updated_at"] = now
    rows = provider.table(INVOICES_TABLE).insert(row).execute()
    if not rows:
        raise ProviderDataError("Insert returned no row.")
    _adjust_invoice_count(provider, user_id, "increment_invoice_count")
    return rows[0]


def update_invoice(
    provider: Provider, user_id: str, invoice_id: str, updates: dict[str, Any]
) -> dict[str, Any] | None:
    values = dict(updates)
    values["updated_at"] = utc_now_iso()
    rows = (
        provider.table(INVOICES_TABLE)
        .update(values)
        .eq("id", invoice_id)
        .eq("user_id", user_id)
        .execute()
    )
    return rows[0] if rows else None


def delete_invoice(provider: Provider, user_id: str, invoice_id: str) -> bool:
    rows = (
        provider.table(INVOICES_TABLE)
        .delete()
        .eq("id", invoice_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not rows:
        return False
    _adjust_invoice_count(provider, user_id, "decrement_invoice_count")
    return True


def _adjust_invoice_count(provider: Provider, user_id: str, fn: str) -> None:
    # Fire-and-forget: drift is repaired by reconcile_invoice_counts().
    try:
        provider.rpc(fn, {"user_id": user_id})
    except ProviderDataError as exc:
        current_app.logger.warning("%s failed for user %s: %s", fn, user_id, exc.message)


def _month_key(value: Any) -> tuple[int, int] | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.year, parsed.month


def invoice_stats(provider: Provider, user_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    statuses = provider.table(INVOICES_TABLE).select("status").eq("user_id", user_id).execute()
    paid = (
        provider.table(INVOICES_TABLE)
        .select("total_amount, status, created_at")
        .eq("user_id", user_id)
        .eq("status", "paid")
        .execute()
    )

    now = now or datetime.now(timezone.utc)
    this_month = (now.year, now.month)
    last_month = (now.year - 1, 12) if now.month == 1 else (now.year, now.month - 1)

    stats: dict[str, Any] = {"total": len(statuses)}
    for status in ("paid", "pending", "overdue", "draft"):
        stats[status] = sum(1 for row in statuses if row.get("status") == status)
    stats["total_revenue"] = sum(float(row.get("total_amount") or 0) for row in paid)
    stats["this_month"] = sum(
        float(row.get("total_amount") or 0)
        for row in paid
        if _month_key(row.get("created_at")) == this_month
    )
    stats["last_month"] = sum(
        float(row.get("total_amount") or 0)
        for row in paid
        if _month_key(row.get("created_at")) == last_month
    )
    return stats


def _users_to_reconcile(provider: Provider, user_id: str | None) -> Iterator[dict[str, Any]]:
    if user_id is not None:
        yield from (
            provider.table(USERS_TABLE).select("id, invoice_count").eq("id", user_id).execute()
        )
        return
    start = 0
    while True:
        page = (
            provider.table(USERS_TABLE)
            .select("id, invoice_count")
            .order("id")
            .range(start, start + RECONCILE_PAGE_SIZE - 1)
            .execute()
        )
        if not page:
            return
        yield from page
        # The server may cap a page below the requested size.
        start += len(page)


def reconcile_invoice_counts(provider: Provider, *, user_id: str | None = None) -> dict[str, int]:
    """Recompute ``users.invoice_count`` from the invoice rows it summarizes."""
    corrected: dict[str, int] = {}
    for user in _users_to_reconcile(provider, user_id):
        actual = (
            provider.table(INVOICES_TABLE)
            .select("id", count="exact")
            .eq("user_id", user["id"])
            .limit(1)
            .count()
        )
        if int(user.get("invoice_count") or 0) == actual:
            continue
        provider.table(USERS_TABLE).update(
            {"invoice_count": actual, "updated_at": utc_now_iso()}
        ).eq("id", user["id"]).execute()
        corrected[user["id"]] = actual
    return corrected
