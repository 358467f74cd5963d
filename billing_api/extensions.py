from __future__ import annotations

from flask import Flask, current_app

from billing_api.services.provider import Provider


class ProviderExtension:
    """Holds the process-wide provider client for an app.

    The client is built once at app creation and shared by every request.
    """

    def __init__(self, app: Flask | None = None, *, provider: Provider | None = None) -> None:
        if app is not None:
            self.init_app(app, provider=provider)

    def init_app(self, app: Flask, *, provider: Provider | None = None) -> None:
        app.extensions["provider"] = provider or _build_provider(app)


def _build_provider(app: Flask) -> Provider:
    mode = (app.config.get("AUTH_MODE") or "").strip().lower()
    if mode == "mock":
        if not (app.debug or app.testing):
            raise RuntimeError("AUTH_MODE=mock is only allowed in debug or testing.")
        from billing_api.services.mock_provider import MockProvider

        return MockProvider(
            require_email_confirmation=bool(app.config.get("MOCK_REQUIRE_EMAIL_CONFIRMATION"))
        )

    url = app.config.get("SUPABASE_URL")
    anon_key = app.config.get("SUPABASE_ANON_KEY")
    if not url or not anon_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set (or AUTH_MODE=mock).")
    from billing_api.services.supabase_provider import SupabaseProvider

    return SupabaseProvider(
        url=url,
        anon_key=anon_key,
        service_role_key=app.config.get("SUPABASE_SERVICE_ROLE_KEY") or None,
    )


def get_provider() -> Provider:
    return current_app.extensions["provider"]


provider_ext = ProviderExtension()
