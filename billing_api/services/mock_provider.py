from __future__ import annotations

import base64
import copy
import hashlib
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any
from urllib.parse import urlencode

from werkzeug.security import check_password_hash, generate_password_hash

from billing_api.services.provider import (
    AuthResult,
    ProviderAuthError,
    ProviderDataError,
    ProviderSession,
    ProviderUser,
)

_MOCK_BASE_URL = "https://mock-provider.local"
_SESSION_TTL_SECONDS = 3600


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class _MockAuthUser:
    id: str
    email: str
    password_hash: str | None
    user_metadata: dict[str, Any]
    email_confirmed_at: str | None
    created_at: str


@dataclass
class _MockOAuthCode:
    user_id: str
    code_challenge: str | None


@dataclass
class _PendingQuery:
    action: str = "select"
    columns: str = "*"
    payload: dict[str, Any] | None = None
    on_conflict: str = ""
    ignore_duplicates: bool = False
    filters: list[tuple[str, Any]] = field(default_factory=list)
    order_by: tuple[str, bool] | None = None
    limit: int | None = None
    offset: int = 0
    count: str | None = None


class _MockQuery:
    def __init__(self, provider: "MockProvider", table: str) -> None:
        self._provider = provider
        self._table = table
        self._query = _PendingQuery()

    def select(self, columns: str = "*", *, count: str | None = None) -> "_MockQuery":
        self._query.action = "select"
        self._query.columns = columns
        self._query.count = count
        return self

    def insert(self, row: dict[str, Any]) -> "_MockQuery":
        self._query.action = "insert"
        self._query.payload = dict(row)
        return self

    def upsert(
        self, row: dict[str, Any], *, on_conflict: str = "", ignore_duplicates: bool = False
    ) -> "_MockQuery":
        self._query.action = "upsert"
        self._query.payload = dict(row)
        self._query.on_conflict = on_conflict or "id"
        self._query.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values: dict[str, Any]) -> "_MockQuery":
        self._query.action = "update"
        self._query.payload = dict(values)
        return self

    def delete(self) -> "_MockQuery":
        self._query.action = "delete"
        return self

    def eq(self, column: str, value: Any) -> "_MockQuery":
        self._query.filters.append((column, value))
        return self

    def order(self, column: str, *, desc: bool = False) -> "_MockQuery":
        self._query.order_by = (column, desc)
        return self

    def limit(self, count: int) -> "_MockQuery":
        self._query.limit = count
        return self

    def range(self, start: int, end: int) -> "_MockQuery":
        self._query.offset = start
        self._query.limit = end - start + 1
        return self

    def execute(self) -> list[dict[str, Any]]:
        return self._provider._execute(self._table, self._query)

    def count(self) -> int:
        if self._query.action != "select" or self._query.count is None:
            raise ProviderDataError("Count requested without select(count=...).")
        return self._provider._count(self._table, self._query)


class MockProvider:
    """In-memory stand-in for the hosted identity/data provider.

    Only used when ``AUTH_MODE=mock`` in debug/testing, and by the test suite.
    """

    name = "mock"

    def __init__(
        self, *, require_email_confirmation: bool = False, max_rows: int | None = None
    ) -> None:
        self.require_email_confirmation = require_email_confirmation
        # PostgREST max-rows: selects never return more than this many rows.
        self.max_rows = max_rows
        self.calls: list[str] = []
        self.reset_requests: list[tuple[str, str | None]] = []
        self._lock = Lock()
        self._users_by_id: dict[str, _MockAuthUser] = {}
        self._users_by_email: dict[str, str] = {}
        self._access_tokens: dict[str, str] = {}
        self._refresh_tokens: dict[str, str] = {}
        self._oauth_codes: dict[str, _MockOAuthCode] = {}
        self._tables: dict[str, list[dict[str, Any]]] = defaultdict(list)

    # ── auth ──────────────────────────────────────────────────────────────

    def _issue_session(self, user_id: str) -> ProviderSession:
        access_token = f"mock_{uuid.uuid4().hex}{uuid.uuid4().hex}"
        refresh_token = f"mock_refresh_{uuid.uuid4().hex}"
        self._access_tokens[access_token] = user_id
        self._refresh_tokens[refresh_token] = user_id
        return ProviderSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(time.time()) + _SESSION_TTL_SECONDS,
            expires_in=_SESSION_TTL_SECONDS,
        )

    @staticmethod
    def _public_user(user: _MockAuthUser) -> ProviderUser:
        return ProviderUser(
            id=user.id,
            email=user.email,
            user_metadata=dict(user.user_metadata),
            created_at=user.created_at,
        )

    def sign_up(self, *, email: str, password: str, metadata: dict[str, Any]) -> AuthResult:
        self.calls.append("sign_up")
        if len(password) < 6:
            raise ProviderAuthError(
                "Password should be at least 6 characters.", code="weak_password", status=422
            )
        now = _utc_now_iso()
        user = _MockAuthUser(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=generate_password_hash(password),
            user_metadata=dict(metadata),
            email_confirmed_at=None if self.require_email_confirmation else now,
            created_at=now,
        )
        with self._lock:
            if email in self._users_by_email:
                raise ProviderAuthError(
                    "User already registered", code="user_already_exists", status=422
                )
            self._users_by_id[user.id] = user
            self._users_by_email[email] = user.id
            session = None if self.require_email_confirmation else self._issue_session(user.id)
        return AuthResult(user=self._public_user(user), session=session)

    def sign_in_with_password(self, *, email: str, password: str) -> AuthResult:
        self.calls.append("sign_in_with_password")
        with self._lock:
            user_id = self._users_by_email.get(email)
            user = self._users_by_id.get(user_id) if user_id else None
        if user is None or not user.password_hash:
            raise ProviderAuthError(
                "Invalid login credentials", code="invalid_credentials", status=400
            )
        if not check_password_hash(user.password_hash, password):
            raise ProviderAuthError(
                "Invalid login credentials", code="invalid_credentials", status=400
            )
        if user.email_confirmed_at is None:
            raise ProviderAuthError("Email not confirmed", code="email_not_confirmed", status=400)
        with self._lock:
            session = self._issue_session(user.id)
        return AuthResult(user=self._public_user(user), session=session)

    def get_user(self, access_token: str) -> ProviderUser | None:
        self.calls.append("get_user")
        with self._lock:
            user_id = self._access_tokens.get(access_token)
            user = self._users_by_id.get(user_id) if user_id else None
        if user_id is None:
            raise ProviderAuthError(
                "invalid JWT: unable to parse or verify signature", code="bad_jwt", status=403
            )
        return self._public_user(user) if user is not None else None

    def refresh_session(self, refresh_token: str) -> AuthResult:
        self.calls.append("refresh_session")
        with self._lock:
            user_id = self._refresh_tokens.pop(refresh_token, None)
            user = self._users_by_id.get(user_id) if user_id else None
            if user is None:
                raise ProviderAuthError(
                    "Invalid Refresh Token: Refresh Token Not Found",
                    code="refresh_token_not_found",
                    status=400,
                )
            session = self._issue_session(user.id)
        return AuthResult(user=self._public_user(user), session=session)

    def set_session(self, *, access_token: str, refresh_token: str | None) -> AuthResult:
        self.calls.append("set_session")
        with self._lock:
            user_id = self._access_tokens.get(access_token)
            user = self._users_by_id.get(user_id) if user_id else None
        if user is None:
            if refresh_token:
                return self.refresh_session(refresh_token)
            raise ProviderAuthError(
                "invalid JWT: unable to parse or verify signature", code="bad_jwt", status=403
            )
        session = ProviderSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(time.time()) + _SESSION_TTL_SECONDS,
            expires_in=_SESSION_TTL_SECONDS,
        )
        return AuthResult(user=self._public_user(user), session=session)

    def issue_oauth_code(
        self,
        *,
        email: str,
        metadata: dict[str, Any] | None = None,
        code_challenge: str | None = None,
    ) -> str:
        """Simulate the provider redirecting back after a successful Google consent."""
        with self._lock:
            user_id = self._users_by_email.get(email)
            if user_id is None:
                now = _utc_now_iso()
                user = _MockAuthUser(
                    id=str(uuid.uuid4()),
                    email=email,
                    password_hash=None,
                    user_metadata=dict(metadata or {}),
                    email_confirmed_at=now,
                    created_at=now,
                )
                self._users_by_id[user.id] = user
                self._users_by_email[email] = user.id
                user_id = user.id
            code = uuid.uuid4().hex
            self._oauth_codes[code] = _MockOAuthCode(user_id=user_id, code_challenge=code_challenge)
        return code

    def issue_session_for(self, email: str) -> ProviderSession:
        """Simulate a native SDK that already holds a session for ``email``."""
        with self._lock:
            user_id = self._users_by_email[email]
            return self._issue_session(user_id)

    def exchange_code_for_session(
        self, *, code: str, code_verifier: str, redirect_to: str | None
    ) -> AuthResult:
        self.calls.append("exchange_code_for_session")
        with self._lock:
            entry = self._oauth_codes.pop(code, None)
            if entry is None or not code_verifier:
                raise ProviderAuthError(
                    "invalid flow state, no valid flow state found",
                    code="flow_state_not_found",
                    status=404,
                )
            if entry.code_challenge is not None:
                digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
                challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
                if challenge != entry.code_challenge:
                    raise ProviderAuthError(
                        "code challenge does not match previously saved code verifier",
                        code="bad_code_verifier",
                        status=400,
                    )
            user = self._users_by_id[entry.user_id]
            session = self._issue_session(user.id)
        return AuthResult(user=self._public_user(user), session=session)

    def oauth_url(
        self,
        provider: str,
        *,
        redirect_to: str,
        code_challenge: str | None = None,
        query_params: dict[str, str] | None = None,
    ) -> str:
        self.calls.append("oauth_url")
        params: dict[str, str] = {"provider": provider, "redirect_to": redirect_to}
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "s256"
        params.update(query_params or {})
        return f"{_MOCK_BASE_URL}/auth/v1/authorize?{urlencode(params)}"

    def reset_password_for_email(self, email: str, *, redirect_to: str | None) -> None:
        self.calls.append("reset_password_for_email")
        self.reset_requests.append((email, redirect_to))

    def update_user(self, *, user_id: str, attributes: dict[str, Any]) -> ProviderUser:
        self.calls.append("update_user")
        password = attributes.get("password")
        if password is not None and len(password) < 6:
            raise ProviderAuthError(
                "Password should be at least 6 characters.", code="weak_password", status=422
            )
        with self._lock:
            user = self._users_by_id.get(user_id)
            if user is None:
                raise ProviderAuthError("User not found", code="user_not_found", status=404)
            metadata = dict(user.user_metadata)
            metadata.update(attributes.get("data") or {})
            user = replace(
                user,
                user_metadata=metadata,
                password_hash=generate_password_hash(password) if password else user.password_hash,
            )
            self._users_by_id[user_id] = user
        return self._public_user(user)

    def sign_out(self, access_token: str) -> None:
        self.calls.append("sign_out")
        with self._lock:
            user_id = self._access_tokens.pop(access_token, None)
            if user_id is None:
                raise ProviderAuthError("Session not found", code="session_not_found", status=404)

    # ── data ──────────────────────────────────────────────────────────────

    def table(self, name: str) -> _MockQuery:
        self.calls.append(f"table:{name}")
        return _MockQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._tables[name])

    def rpc(self, fn: str, params: dict[str, Any]) -> Any:
        self.calls.append(f"rpc:{fn}")
        if fn not in ("increment_invoice_count", "decrement_invoice_count"):
            raise ProviderDataError(
                f"Could not find the function public.{fn} in the schema cache", code="PGRST202"
            )
        delta = 1 if fn == "increment_invoice_count" else -1
        with self._lock:
            for row in self._tables["users"]:
                if row.get("id") == params.get("user_id"):
                    row["invoice_count"] = max(0, int(row.get("invoice_count") or 0) + delta)
        return None

    @staticmethod
    def _matches(row: dict[str, Any], filters: list[tuple[str, Any]]) -> bool:
        return all(row.get(column) == value for column, value in filters)

    @staticmethod
    def _project(row: dict[str, Any], columns: str) -> dict[str, Any]:
        if columns.strip() == "*":
            return copy.deepcopy(row)
        wanted = [c.strip() for c in columns.split(",") if c.strip()]
        return {c: copy.deepcopy(row.get(c)) for c in wanted}

    def _count(self, table: str, query: _PendingQuery) -> int:
        with self._lock:
            return sum(1 for r in self._tables[table] if self._matches(r, query.filters))

    def _execute(self, table: str, query: _PendingQuery) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._tables[table]
            if query.action == "insert":
                row = dict(query.payload or {})
                row.setdefault("id", str(uuid.uuid4()))
                if any(existing.get("id") == row["id"] for existing in rows):
                    raise ProviderDataError(
                        f'duplicate key value violates unique constraint "{table}_pkey"',
                        code="23505",
                    )
                rows.append(row)
                return [copy.deepcopy(row)]
            if query.action == "upsert":
                row = dict(query.payload or {})
                key = query.on_conflict
                existing = next((r for r in rows if r.get(key) == row.get(key)), None)
                if existing is not None:
                    if query.ignore_duplicates:
                        return []
                    existing.update(row)
                    return [copy.deepcopy(existing)]
                row.setdefault("id", str(uuid.uuid4()))
                rows.append(row)
                return [copy.deepcopy(row)]

            matched = [r for r in rows if self._matches(r, query.filters)]
            if query.action == "update":
                for row in matched:
                    row.update(query.payload or {})
                return [copy.deepcopy(r) for r in matched]
            if query.action == "delete":
                self._tables[table] = [r for r in rows if not self._matches(r, query.filters)]
                return [copy.deepcopy(r) for r in matched]

            if query.order_by is not None:
                column, desc = query.order_by
                present = [r for r in matched if r.get(column) is not None]
                missing = [r for r in matched if r.get(column) is None]
                present.sort(key=lambda r: r[column], reverse=desc)
                matched = present + missing
            matched = matched[query.offset :]
            if query.limit is not None:
                matched = matched[: query.limit]
            if self.max_rows is not None:
                matched = matched[: self.max_rows]
            return [self._project(r, query.columns) for r in matched]
