from __future__ import annotations

import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path

import click
from flask import Flask, Response, g, jsonify, request
from flask_cors import CORS
from flask_smorest import Api
from werkzeug.exceptions import HTTPException, InternalServerError, NotFound

from billing_api.config import load_config
from billing_api.extensions import get_provider, provider_ext
from billing_api.http import ok
from billing_api.routes import invoices_blp, register_admin_routes, register_auth_routes
from billing_api.services.invoices import reconcile_invoice_counts
from billing_api.services.provider import Provider, ProviderError

_PROCESS_STARTED = time.monotonic()

_ENDPOINTS = {
    "health": "GET /api/health",
    "auth": {
        "signup": "POST /api/auth/signup",
        "signin": "POST /api/auth/signin",
        "profile": "GET /api/auth/profile",
        "update_profile": "PUT /api/auth/profile",
        "signout": "POST /api/auth/signout",
        "refresh": "POST /api/auth/refresh",
        "reset_password": "POST /api/auth/reset-password",
        "update_password": "PUT /api/auth/update-password",
        "check": "GET /api/auth/check",
        "google": "POST /api/auth/google (send cookies: credentials include)",
        "callback": "GET /api/auth/callback",
        "google_url": "GET /api/auth/google/url",
        "google_callback": "POST /api/auth/google/callback",
        "providers": "GET /api/auth/providers",
    },
    "invoices": {
        "list": "GET /api/invoices",
        "create": "POST /api/invoices",
        "get": "GET /api/invoices/:id",
        "update": "PUT /api/invoices/:id",
        "delete": "DELETE /api/invoices/:id",
        "stats": "GET /api/invoices/stats/summary",
    },
}


def create_app(
    config_overrides: dict[str, object] | None = None, *, provider: Provider | None = None
) -> Flask:
    app = Flask(__name__)
    app.config.update(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PROVIDER_CONFIGURED"] = bool(
        app.config.get("SUPABASE_URL") and app.config.get("SUPABASE_ANON_KEY")
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # ── CORS setup ────────────────────────────────────────────────────────
    CORS(
        app,
        resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}},
        methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
        supports_credentials=True,
        max_age=600,
    )

    provider_ext.init_app(app, provider=provider)

    api = Api(app)
    api.register_blueprint(invoices_blp)
    register_auth_routes(app)
    register_admin_routes(app)

    _register_error_handlers(app)
    _register_request_hooks(app)
    _register_cli(app, api)

    @app.route("/api/health", methods=["GET"])
    def health():
        return ok(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime=round(time.monotonic() - _PROCESS_STARTED, 3),
            environment=app.config["APP_ENV"],
            provider_configured=app.config["PROVIDER_CONFIGURED"],
            auth_mode=get_provider().name,
            endpoints=_ENDPOINTS,
        )

    return app


# ── JSON error responses for API routes ──────────────────────────────────


def _register_error_handlers(app: Flask) -> None:
    def _server_error_body(exc: BaseException) -> dict[str, object]:
        body: dict[str, object] = {"success": False, "error": "Internal server error"}
        if app.config.get("APP_ENV") == "development":
            body["message"] = str(exc)
        return body

    @app.errorhandler(HTTPException)
    def _handle_http_exception(err: HTTPException):
        if not request.path.startswith("/api/"):
            return err
        if isinstance(err, NotFound) and request.url_rule is None:
            return (
                jsonify({"success": False, "error": "API endpoint not found", "path": request.path}),
                404,
            )
        return jsonify({"success": False, "error": err.description or err.name}), err.code

    @app.errorhandler(InternalServerError)
    def _handle_internal_server_error(err: InternalServerError):
        if not request.path.startswith("/api/"):
            return err
        original = getattr(err, "original_exception", None)
        if original is None:
            # Raised deliberately with abort(500, description=...).
            return jsonify({"success": False, "error": err.description}), 500
        app.logger.exception("Unhandled API exception: %s", original)
        return jsonify(_server_error_body(original)), 500

    @app.errorhandler(ProviderError)
    def _handle_provider_error(err: ProviderError):
        app.logger.error(
            "Provider call failed on %s %s: %s (code=%s)",
            request.method,
            request.path,
            err.message,
            err.code,
        )
        return jsonify(_server_error_body(err)), 500


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _capture_request_start() -> None:
        g.request_start = time.perf_counter()

    @app.after_request
    def _log_request(response: Response):
        started = getattr(g, "request_start", None)
        if started is not None:
            app.logger.info(
                "%s %s -> %s (%.1fms)",
                request.method,
                request.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        return response

    @app.after_request
    def _set_security_headers(response: Response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        origin = request.headers.get("Origin")
        if isinstance(origin, str) and origin.strip():
            existing = response.headers.get("Vary")
            if existing:
                if "Origin" not in {part.strip() for part in existing.split(",")}:
                    response.headers["Vary"] = f"{existing}, Origin"
            else:
                response.headers["Vary"] = "Origin"
        # The OAuth callback page runs inline script, so only JSON gets the strict policy.
        if request.path.startswith("/api/") and response.mimetype == "application/json":
            response.headers.setdefault(
                "Content-Security-Policy",
                "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
            )
        return response


def _register_cli(app: Flask, api: Api) -> None:
    @app.cli.command("reconcile-counters")
    @click.option("--user-id", default=None, help="Only reconcile this user.")
    def reconcile_counters(user_id: str | None):
        """Recompute users.invoice_count from the invoices table."""
        try:
            corrected = reconcile_invoice_counts(get_provider(), user_id=user_id)
        except ProviderError as exc:
            raise click.ClickException(f"Reconciliation failed: {exc.message}") from exc
        for corrected_id, count in sorted(corrected.items()):
            click.echo(f"{corrected_id}: invoice_count -> {count}")
        click.echo(f"Corrected {len(corrected)} user(s).")

    @app.cli.command("gen-openapi")
    @click.option("--output", default="openapi.json", show_default=True)
    def gen_openapi(output: str):
        """Write the OpenAPI document for the invoice API."""
        with app.test_request_context():
            Path(output).write_text(json.dumps(api.spec.to_dict(), indent=2))
        click.echo(f"Wrote {output}")


if __name__ == "__main__":
    app = create_app()
    debug = os.environ.get("FLASK_DEBUG", "").strip().lower() in ("1", "true", "yes")
    app.run(debug=debug, port=app.config["PORT"])
