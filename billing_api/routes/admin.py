from __future__ import annotations

from flask import Blueprint, request

from billing_api.auth import require_admin_key
from billing_api.extensions import get_provider
from billing_api.http import clean_str, ok
from billing_api.services.invoices import reconcile_invoice_counts


def register_admin_routes(app) -> Blueprint:
    admin_blp = Blueprint("admin", __name__, url_prefix="/api/admin")

    @admin_blp.route("/reconcile-counters", methods=["POST"])
    @require_admin_key
    def admin_reconcile_counters():
        body = request.get_json(silent=True)
        user_id = clean_str(body.get("user_id")) if isinstance(body, dict) else None
        corrected = reconcile_invoice_counts(get_provider(), user_id=user_id)
        app.logger.info("Reconciled invoice counters for %d user(s).", len(corrected))
        return ok(
            message="Invoice counters reconciled",
            data={"corrected": corrected, "count": len(corrected)},
        )

    app.register_blueprint(admin_blp)
    return admin_blp
