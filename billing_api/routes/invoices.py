from __future__ import annotations

import math
import re
from typing import Any

from flask import abort, g, request
from flask.views import MethodView
from flask_smorest import Blueprint

from billing_api.auth import authenticate
from billing_api.extensions import get_provider
from billing_api.http import clean_str, load_json
from billing_api.schemas import (
    InvoiceBodySchema,
    InvoiceEnvelopeSchema,
    InvoiceListEnvelopeSchema,
    InvoiceStatsEnvelopeSchema,
    MessageEnvelopeSchema,
)
from billing_api.services.invoices import (
    create_invoice,
    delete_invoice,
    generate_invoice_number,
    get_invoice,
    invoice_stats,
    list_invoices,
    update_invoice,
)

_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
_TEXT_FIELDS = ("client_email", "client_phone", "notes")
_NUMBER_FIELDS = ("amount", "tax_rate", "tax_amount", "total_amount")

invoices_blp = Blueprint(
    "invoices",
    "invoices",
    url_prefix="/api/invoices",
    description="Invoices owned by the signed-in user",
)


@invoices_blp.before_request
def _require_signed_in_user():
    if request.method == "OPTIONS":
        return None
    authenticate()
    return None


def _to_number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        abort(400, description=f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        abort(400, description=f"{field} must be a number")
    if not math.isfinite(number):
        abort(400, description=f"{field} must be a number")
    return number


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == 0 or value is False


def _owned_invoice_id(invoice_id: str) -> str:
    # Non-UUID ids can never match a row; answer like any other miss.
    if not _UUID_RE.match(invoice_id):
        abort(404, description="Invoice not found")
    return invoice_id


def _new_invoice_values(data: dict[str, Any]) -> dict[str, Any]:
    client_name = clean_str(data.get("client_name"))
    if not client_name or _is_blank(data.get("amount")):
        abort(400, description="Client name and amount are required")
    amount = _to_number(data["amount"], "amount")

    values: dict[str, Any] = {
        "client_name": client_name,
        "invoice_number": clean_str(data.get("invoice_number")) or generate_invoice_number(),
        "amount": amount,
        "tax_rate": 0.0,
        "tax_amount": 0.0,
        "total_amount": amount,
        "currency": clean_str(data.get("currency")) or "USD",
        "status": clean_str(data.get("status")) or "draft",
        "due_date": clean_str(data.get("due_date")),
        "items": data.get("items") or [],
    }
    for field in ("tax_rate", "tax_amount", "total_amount"):
        if not _is_blank(data.get(field)):
            values[field] = _to_number(data[field], field)
    for field in _TEXT_FIELDS:
        values[field] = clean_str(data.get(field))
    return values


def _invoice_updates(data: dict[str, Any]) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    if "client_name" in data:
        client_name = clean_str(data["client_name"])
        if not client_name:
            abort(400, description="Client name cannot be empty")
        updates["client_name"] = client_name
    for field in _NUMBER_FIELDS:
        if field in data and data[field] is not None:
            updates[field] = _to_number(data[field], field)
    for field in _TEXT_FIELDS:
        if field in data:
            updates[field] = clean_str(data[field])
    for field in ("invoice_number", "currency", "status"):
        if field in data and clean_str(data[field]):
            updates[field] = clean_str(data[field])
    if "due_date" in data:
        updates["due_date"] = clean_str(data["due_date"])
    if "items" in data:
        updates["items"] = data["items"] or []
    return updates


@invoices_blp.route("")
class InvoiceListResource(MethodView):
    @invoices_blp.response(200, InvoiceListEnvelopeSchema)
    def get(self):
        return {"success": True, "data": list_invoices(get_provider(), g.current_user.id)}

    @invoices_blp.response(201, InvoiceEnvelopeSchema)
    def post(self):
        values = _new_invoice_values(load_json(InvoiceBodySchema()))
        invoice = create_invoice(get_provider(), g.current_user.id, values)
        return {"success": True, "message": "Invoice created successfully", "data": invoice}


@invoices_blp.route("/stats/summary")
class InvoiceStatsResource(MethodView):
    @invoices_blp.response(200, InvoiceStatsEnvelopeSchema)
    def get(self):
        return {"success": True, "data": invoice_stats(get_provider(), g.current_user.id)}


@invoices_blp.route("/<string:invoice_id>")
class InvoiceResource(MethodView):
    @invoices_blp.response(200, InvoiceEnvelopeSchema)
    def get(self, invoice_id):
        invoice = get_invoice(get_provider(), g.current_user.id, _owned_invoice_id(invoice_id))
        if invoice is None:
            abort(404, description="Invoice not found")
        return {"success": True, "data": invoice}

    @invoices_blp.response(200, InvoiceEnvelopeSchema)
    def put(self, invoice_id):
        invoice_id = _owned_invoice_id(invoice_id)
        updates = _invoice_updates(load_json(InvoiceBodySchema()))
        invoice = update_invoice(get_provider(), g.current_user.id, invoice_id, updates)
        if invoice is None:
            abort(404, description="Invoice not found")
        return {"success": True, "message": "Invoice updated successfully", "data": invoice}

    @invoices_blp.response(200, MessageEnvelopeSchema)
    def delete(self, invoice_id):
        invoice_id = _owned_invoice_id(invoice_id)
        if not delete_invoice(get_provider(), g.current_user.id, invoice_id):
            abort(404, description="Invoice not found")
        return {"success": True, "message": "Invoice deleted successfully"}
