from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class ProviderError(Exception):
    def __init__(self, message: str, *, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class ProviderAuthError(ProviderError):
    """Credential, token or account failure reported by the identity provider."""


class ProviderDataError(ProviderError):
    """Table or RPC failure reported by the data API."""


@dataclass(frozen=True)
class ProviderUser:
    id: str
    email: str | None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None


@dataclass(frozen=True)
class ProviderSession:
    access_token: str
    refresh_token: str | None
    expires_at: int | None
    expires_in: int | None

    def as_dict(self) -> dict[str, object]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "expires_in": self.expires_in,
        }


@dataclass(frozen=True)
class AuthResult:
    user: ProviderUser | None
    session: ProviderSession | None


class Query(Protocol):
    def select(self, columns: str = "*", *, count: str | None = None) -> "Query": ...

    def insert(self, row: dict[str, Any]) -> "Query": ...

    def upsert(
        self, row: dict[str, Any], *, on_conflict: str = "", ignore_duplicates: bool = False
    ) -> "Query": ...

    def update(self, values: dict[str, Any]) -> "Query": ...

    def delete(self) -> "Query": ...

    def eq(self, column: str, value: Any) -> "Query": ...

    def order(self, column: str, *, desc: bool = False) -> "Query": ...

    def limit(self, count: int) -> "Query": ...

    def range(self, start: int, end: int) -> "Query": ...

    def execute(self) -> list[dict[str, Any]]: ...

    def count(self) -> int:
        """Run the query and return the exact number of matching rows."""
        ...


class Provider(Protocol):
    """Identity + table store the service delegates to.

    Implementations must be safe to share across concurrent requests: no
    per-request state may live on the provider object itself.
    """

    name: str

    def sign_up(self, *, email: str, password: str, metadata: dict[str, Any]) -> AuthResult: ...

    def sign_in_with_password(self, *, email: str, password: str) -> AuthResult: ...

    def get_user(self, access_token: str) -> ProviderUser | None: ...

    def refresh_session(self, refresh_token: str) -> AuthResult: ...

    def set_session(self, *, access_token: str, refresh_token: str | None) -> AuthResult: ...

    def exchange_code_for_session(
        self, *, code: str, code_verifier: str, redirect_to: str | None
    ) -> AuthResult: ...

    def oauth_url(
        self,
        provider: str,
        *,
        redirect_to: str,
        code_challenge: str | None = None,
        query_params: dict[str, str] | None = None,
    ) -> str: ...

    def reset_password_for_email(self, email: str, *, redirect_to: str | None) -> None: ...

    def update_user(self, *, user_id: str, attributes: dict[str, Any]) -> ProviderUser: ...

    def sign_out(self, access_token: str) -> None: ...

    def table(self, name: str) -> Query: ...

    def rpc(self, fn: str, params: dict[str, Any]) -> Any: ...


def is_invalid_credentials(err: ProviderAuthError) -> bool:
    if err.code:
        return err.code == "invalid_credentials"
    return "Invalid login credentials" in err.message


def is_email_not_confirmed(err: ProviderAuthError) -> bool:
    if err.code:
        return err.code == "email_not_confirmed"
    return "Email not confirmed" in err.message
