from __future__ import annotations

from typing import Any

from flask import abort, jsonify, request
from marshmallow import Schema, ValidationError


def _first_message(messages: Any) -> str:
    if isinstance(messages, str):
        return messages
    if isinstance(messages, list) and messages:
        return _first_message(messages[0])
    if isinstance(messages, dict) and messages:
        key, value = next(iter(messages.items()))
        inner = _first_message(value)
        return f"{key}: {inner}" if isinstance(key, str) and key != "_schema" else inner
    return "Invalid request body."


def load_json(schema: Schema) -> dict[str, Any]:
    """Parse the request body as a JSON object and type-check it with ``schema``."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Expected JSON object body.")
    try:
        return schema.load(data)
    except ValidationError as exc:
        abort(400, description=_first_message(exc.messages))


def ok(*, http_status: int = 200, **payload: Any):
    body: dict[str, Any] = {"success": True}
    body.update(payload)
    return jsonify(body), http_status


def clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None
