from __future__ import annotations

import threading
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from postgrest.exceptions import APIError
from supabase import AuthError, Client, ClientOptions, create_client

from billing_api.services.provider import (
    AuthResult,
    ProviderAuthError,
    ProviderDataError,
    ProviderSession,
    ProviderUser,
)


def _auth_error(exc: AuthError) -> ProviderAuthError:
    return ProviderAuthError(
        getattr(exc, "message", None) or str(exc),
        code=getattr(exc, "code", None),
        status=getattr(exc, "status", None),
    )


def _to_user(raw) -> ProviderUser | None:
    if raw is None:
        return None
    created_at = getattr(raw, "created_at", None)
    if isinstance(created_at, datetime):
        created_at = created_at.isoformat()
    return ProviderUser(
        id=str(raw.id),
        email=getattr(raw, "email", None),
        user_metadata=dict(getattr(raw, "user_metadata", None) or {}),
        created_at=created_at,
    )


def _to_session(raw) -> ProviderSession | None:
    if raw is None:
        return None
    return ProviderSession(
        access_token=raw.access_token,
        refresh_token=raw.refresh_token,
        expires_at=raw.expires_at,
        expires_in=raw.expires_in,
    )


def _to_result(response) -> AuthResult:
    return AuthResult(
        user=_to_user(getattr(response, "user", None)),
        session=_to_session(getattr(response, "session", None)),
    )


class _SupabaseQuery:
    """Wraps a postgrest request builder so `execute()` yields rows and typed errors."""

    def __init__(self, builder) -> None:
        self._builder = builder

    def __getattr__(self, name: str):
        attr = getattr(self._builder, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            return _SupabaseQuery(attr(*args, **kwargs))

        return call

    def _run(self):
        try:
            return self._builder.execute()
        except APIError as exc:
            raise ProviderDataError(exc.message or "Data request failed.", code=exc.code) from exc

    def execute(self) -> list[dict[str, Any]]:
        data = self._run().data
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return list(data)

    def count(self) -> int:
        # Needs select(..., count="exact"). Unlike the rows, the count ignores max-rows.
        response = self._run()
        if response.count is None:
            raise ProviderDataError("Count requested without select(count=...).")
        return int(response.count)


class SupabaseProvider:
    name = "supabase"

    def __init__(self, *, url: str, anon_key: str, service_role_key: str | None = None) -> None:
        self._url = url.rstrip("/")
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        options = ClientOptions(persist_session=False, auto_refresh_token=False)
        self._client: Client = create_client(self._url, anon_key, options=options)
        self._data_client: Client = (
            create_client(self._url, service_role_key, options=options)
            if service_role_key
            else self._client
        )
        self._local = threading.local()

    def _session_client(self) -> Client:
        # Sign-in style calls store the session on the client they run on, so
        # each worker thread gets its own client, kept off the shared table handle.
        client = getattr(self._local, "session_client", None)
        if client is None:
            client = create_client(
                self._url,
                self._anon_key,
                options=ClientOptions(persist_session=False, auto_refresh_token=False),
            )
            self._local.session_client = client
        return client

    def sign_up(self, *, email: str, password: str, metadata: dict[str, Any]) -> AuthResult:
        try:
            response = self._session_client().auth.sign_up(
                {"email": email, "password": password, "options": {"data": metadata}}
            )
        except AuthError as exc:
            raise _auth_error(exc) from exc
        return _to_result(response)

    def sign_in_with_password(self, *, email: str, password: str) -> AuthResult:
        try:
            response = self._session_client().auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except AuthError as exc:
            raise _auth_error(exc) from exc
        return _to_result(response)

    def get_user(self, access_token: str) -> ProviderUser | None:
        try:
            response = self._client.auth.get_user(access_token)
        except AuthError as exc:
            raise _auth_error(exc) from exc
        if response is None:
            return None
        return _to_user(response.user)

    def refresh_session(self, refresh_token: str) -> AuthResult:
        try:
            response = self._session_client().auth.refresh_session(refresh_token)
        except AuthError as exc:
            raise _auth_error(exc) from exc
        return _to_result(response)

    def set_session(self, *, access_token: str, refresh_token: str | None) -> AuthResult:
        try:
            response = self._session_client().auth.set_session(access_token, refresh_token or "")
        except AuthError as exc:
            raise _auth_error(exc) from exc
        return _to_result(response)

    def exchange_code_for_session(
        self, *, code: str, code_verifier: str, redirect_to: str | None
    ) -> AuthResult:
        params: dict[str, str] = {"auth_code": code, "code_verifier": code_verifier}
        if redirect_to:
            params["redirect_to"] = redirect_to
        try:
            response = self._session_client().auth.exchange_code_for_session(params)
        except AuthError as exc:
            raise _auth_error(exc) from exc
        return _to_result(response)

    def oauth_url(
        self,
        provider: str,
        *,
        redirect_to: str,
        code_challenge: str | None = None,
        query_params: dict[str, str] | None = None,
    ) -> str:
        params: dict[str, str] = {"provider": provider, "redirect_to": redirect_to}
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "s256"
        params.update(query_params or {})
        return f"{self._url}/auth/v1/authorize?{urlencode(params)}"

    def reset_password_for_email(self, email: str, *, redirect_to: str | None) -> None:
        options = {"redirect_to": redirect_to} if redirect_to else {}
        try:
            self._client.auth.reset_password_for_email(email, options)
        except AuthError as exc:
            raise _auth_error(exc) from exc

    def update_user(self, *, user_id: str, attributes: dict[str, Any]) -> ProviderUser:
        if not self._service_role_key:
            raise ProviderAuthError(
                "User updates are not configured (missing SUPABASE_SERVICE_ROLE_KEY).",
                code="not_configured",
            )
        try:
            response = self._data_client.auth.admin.update_user_by_id(user_id, attributes)
        except AuthError as exc:
            raise _auth_error(exc) from exc
        return _to_user(response.user)

    def sign_out(self, access_token: str) -> None:
        try:
            self._client.auth.admin.sign_out(access_token)
        except AuthError as exc:
            raise _auth_error(exc) from exc

    def table(self, name: str) -> _SupabaseQuery:
        return _SupabaseQuery(self._data_client.table(name))

    def rpc(self, fn: str, params: dict[str, Any]) -> Any:
        try:
            return self._data_client.rpc(fn, params).execute().data
        except APIError as exc:
            raise ProviderDataError(exc.message or "RPC failed.", code=exc.code) from exc
