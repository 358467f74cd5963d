from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, current_app, g, make_response, render_template, request

from billing_api.auth import bearer_token, require_user
from billing_api.extensions import get_provider
from billing_api.http import clean_str, load_json, ok
from billing_api.schemas import (
    EmailSchema,
    GoogleStartSchema,
    GoogleTokensSchema,
    ProfileUpdateSchema,
    RefreshSchema,
    SigninSchema,
    SignupSchema,
    UpdatePasswordSchema,
)
from billing_api.services.oauth import (
    GOOGLE_QUERY_PARAMS,
    OAUTH_CALLBACK_PATH,
    clear_oauth_cookie,
    load_oauth_cookie,
    pkce_pair,
    set_oauth_cookie,
)
from billing_api.services.profiles import (
    email_is_registered,
    ensure_profile,
    get_profile,
    normalize_email,
    serialize_user,
    update_profile,
)
from billing_api.services.provider import (
    AuthResult,
    ProviderAuthError,
    ProviderError,
    ProviderUser,
    is_email_not_confirmed,
    is_invalid_credentials,
)

_MIN_PASSWORD_LENGTH = 6
_MIN_NAME_LENGTH = 2


def _profile_defaults(user: ProviderUser, **fallbacks: Any) -> dict[str, Any]:
    metadata = user.user_metadata
    return {
        "name": metadata.get("name") or metadata.get("full_name") or fallbacks.get("name"),
        "phone": metadata.get("phone") or fallbacks.get("phone"),
        "company_name": metadata.get("company_name") or fallbacks.get("company_name"),
    }


def _session_payload(result: AuthResult) -> dict[str, Any]:
    user = result.user
    if user is None or result.session is None:
        abort(401, description="Authentication failed")
    profile = ensure_profile(get_provider(), user, defaults=_profile_defaults(user))
    return {"user": serialize_user(user, profile), "session": result.session.as_dict()}


def _require_email(data: dict[str, Any]) -> str:
    email = clean_str(data.get("email"))
    if not email or "@" not in email:
        abort(400, description="Valid email is required")
    return normalize_email(email)


def register_auth_routes(app) -> Blueprint:
    auth_blp = Blueprint("auth", __name__, url_prefix="/api/auth")

    # ── email / password ──────────────────────────────────────────────────

    @auth_blp.route("/signup", methods=["POST"])
    def auth_signup():
        data = load_json(SignupSchema())
        email = _require_email(data)
        password = data.get("password")
        if not isinstance(password, str) or len(password) < _MIN_PASSWORD_LENGTH:
            abort(400, description="Password must be at least 6 characters")
        name = clean_str(data.get("name"))
        if not name or len(name) < _MIN_NAME_LENGTH:
            abort(400, description="Name is required (min 2 characters)")
        phone = clean_str(data.get("phone"))
        company_name = clean_str(data.get("company_name"))

        provider = get_provider()
        if email_is_registered(provider, email):
            abort(
                409,
                description=(
                    "Email already in use. This email may have been used with "
                    "Google Sign-In. Please sign in instead."
                ),
            )

        try:
            created = provider.sign_up(
                email=email,
                password=password.strip(),
                metadata={"name": name, "phone": phone, "company_name": company_name},
            )
        except ProviderAuthError as exc:
            app.logger.warning("Signup rejected by provider: %s", exc.message)
            if exc.code == "user_already_exists":
                abort(409, description="Email already in use. Please sign in instead.")
            abort(400, description=exc.message or "Failed to create account")
        if created.user is None:
            abort(500, description="Account creation failed. Please try again.")

        try:
            signed_in = provider.sign_in_with_password(email=email, password=password.strip())
        except ProviderAuthError as exc:
            app.logger.info("Auto sign-in after signup failed: %s", exc.message)
            signed_in = None
        if signed_in is None or signed_in.session is None or signed_in.user is None:
            return ok(
                http_status=201,
                message="Account created! Please sign in.",
                data={
                    "user": {"id": created.user.id, "email": created.user.email, "name": name},
                    "requires_signin": True,
                },
            )

        user = signed_in.user
        profile = ensure_profile(
            provider,
            user,
            defaults=_profile_defaults(
                user, name=name, phone=phone, company_name=company_name
            ),
        )
        return ok(
            http_status=201,
            message="Account created and signed in successfully!",
            data={
                "user": serialize_user(user, profile),
                "session": signed_in.session.as_dict(),
            },
        )

    @auth_blp.route("/signin", methods=["POST"])
    def auth_signin():
        data = load_json(SigninSchema())
        email = _require_email(data)
        password = data.get("password")
        if not isinstance(password, str) or not password:
            abort(400, description="Password is required")

        try:
            result = get_provider().sign_in_with_password(email=email, password=password.strip())
        except ProviderAuthError as exc:
            if is_invalid_credentials(exc):
                abort(401, description="Invalid email or password")
            if is_email_not_confirmed(exc):
                abort(403, description="Please verify your email first")
            abort(401, description=exc.message or "Sign in failed")
        return ok(message="Signed in successfully", data=_session_payload(result))

    # ── profile ───────────────────────────────────────────────────────────

    @auth_blp.route("/profile", methods=["GET"])
    @require_user
    def auth_profile():
        user: ProviderUser = g.current_user
        profile = get_profile(get_provider(), user.id)
        if profile is None:
            abort(404, description="Profile not found")
        return ok(data={"user": serialize_user(user, profile)})

    @auth_blp.route("/profile", methods=["PUT"])
    @require_user
    def auth_update_profile():
        user: ProviderUser = g.current_user
        data = load_json(ProfileUpdateSchema())
        updates: dict[str, Any] = {}
        name = clean_str(data.get("name"))
        if name:
            updates["name"] = name
        for key in ("phone", "company_name"):
            if key in data:
                updates[key] = clean_str(data[key])

        provider = get_provider()
        profile = update_profile(provider, user.id, updates)
        if profile is None:
            abort(404, description="Profile not found")

        if name:
            # Second write; the profile row is already committed if this fails.
            try:
                user = provider.update_user(user_id=user.id, attributes={"data": {"name": name}})
            except ProviderError as exc:
                app.logger.warning("Metadata sync failed for user %s: %s", user.id, exc.message)
        return ok(
            message="Profile updated successfully",
            data={"user": serialize_user(user, profile)},
        )

    # ── session lifecycle ─────────────────────────────────────────────────

    @auth_blp.route("/signout", methods=["POST"])
    def auth_signout():
        token = bearer_token()
        if token is not None:
            try:
                get_provider().sign_out(token)
            except ProviderError as exc:
                app.logger.warning("Provider sign-out failed: %s", exc.message)
        return ok(message="Signed out successfully")

    @auth_blp.route("/refresh", methods=["POST"])
    def auth_refresh():
        data = load_json(RefreshSchema())
        refresh_token = clean_str(data.get("refresh_token"))
        if not refresh_token:
            abort(400, description="Refresh token is required")
        try:
            result = get_provider().refresh_session(refresh_token)
        except ProviderAuthError:
            abort(401, description="Invalid or expired refresh token")
        if result.session is None:
            abort(401, description="Invalid or expired refresh token")
        return ok(data=result.session.as_dict())

    @auth_blp.route("/check", methods=["GET"])
    def auth_check():
        token = bearer_token()
        if token is None:
            return ok(success=False, valid=False, error="No token provided")
        try:
            user = get_provider().get_user(token)
        except ProviderAuthError:
            user = None
        except Exception:
            app.logger.exception("Session check failed.")
            return ok(success=False, valid=False, error="Session check failed")
        valid = user is not None
        return ok(
            success=valid,
            valid=valid,
            user=(
                {
                    "id": user.id,
                    "email": user.email,
                    "name": user.user_metadata.get("name"),
                    "avatar_url": user.user_metadata.get("avatar_url"),
                }
                if user is not None
                else None
            ),
        )

    # ── passwords ─────────────────────────────────────────────────────────

    @auth_blp.route("/reset-password", methods=["POST"])
    def auth_reset_password():
        data = load_json(EmailSchema())
        email = _require_email(data)
        try:
            get_provider().reset_password_for_email(
                email, redirect_to=current_app.config.get("PASSWORD_RESET_REDIRECT_URL")
            )
        except ProviderError as exc:
            app.logger.warning("Password reset request failed: %s", exc.message)
        return ok(
            message="If an account exists with this email, you will receive reset instructions."
        )

    @auth_blp.route("/update-password", methods=["PUT"])
    @require_user
    def auth_update_password():
        user: ProviderUser = g.current_user
        data = load_json(UpdatePasswordSchema())
        new_password = data.get("new_password")
        if not isinstance(new_password, str) or len(new_password.strip()) < _MIN_PASSWORD_LENGTH:
            abort(400, description="New password must be at least 6 characters")

        provider = get_provider()
        current_password = data.get("current_password")
        if current_password and user.email:
            try:
                provider.sign_in_with_password(email=user.email, password=current_password)
            except ProviderAuthError:
                abort(401, description="Current password is incorrect")

        try:
            provider.update_user(user_id=user.id, attributes={"password": new_password.strip()})
        except ProviderAuthError as exc:
            abort(400, description=exc.message)
        return ok(message="Password updated successfully")

    # ── Google OAuth ──────────────────────────────────────────────────────

    @auth_blp.route("/google", methods=["POST"])
    def auth_google_start():
        """Start the web PKCE flow.

        The verifier travels in an HttpOnly cookie scoped to the callback path,
        so browsers must call this with ``credentials: "include"``.
        """
        data = load_json(GoogleStartSchema())
        origin = clean_str(request.headers.get("Origin")) or current_app.config["PUBLIC_BASE_URL"]
        redirect_to = clean_str(data.get("redirect_to")) or f"{origin.rstrip('/')}{OAUTH_CALLBACK_PATH}"

        verifier, challenge = pkce_pair()
        try:
            url = get_provider().oauth_url(
                "google",
                redirect_to=redirect_to,
                code_challenge=challenge,
                query_params=GOOGLE_QUERY_PARAMS,
            )
        except ProviderAuthError as exc:
            abort(400, description=exc.message)

        resp, status = ok(data={"url": url})
        set_oauth_cookie(resp, {"code_verifier": verifier, "redirect_to": redirect_to})
        return resp, status

    @auth_blp.route("/google/url", methods=["GET"])
    def auth_google_url():
        redirect_to = (
            clean_str(request.args.get("redirect_to"))
            or current_app.config["MOBILE_OAUTH_REDIRECT"]
        )
        try:
            url = get_provider().oauth_url(
                "google", redirect_to=redirect_to, query_params=GOOGLE_QUERY_PARAMS
            )
        except ProviderAuthError as exc:
            abort(400, description=exc.message)
        return ok(data={"auth_url": url, "redirect_to": redirect_to})

    def _callback_error(message: str, status: int):
        resp = make_response(render_template("oauth_error.html", error=message), status)
        clear_oauth_cookie(resp)
        return resp

    @auth_blp.route("/callback", methods=["GET"])
    def auth_callback():
        provider_error = clean_str(request.args.get("error_description")) or clean_str(
            request.args.get("error")
        )
        if provider_error:
            return _callback_error(provider_error, 400)
        code = clean_str(request.args.get("code"))
        if not code:
            return _callback_error("No authorization code received", 400)
        state = load_oauth_cookie()
        if not state or not state.get("code_verifier"):
            return _callback_error("Sign-in session expired. Please try again.", 400)

        try:
            result = get_provider().exchange_code_for_session(
                code=code,
                code_verifier=state["code_verifier"],
                redirect_to=state.get("redirect_to"),
            )
        except ProviderAuthError as exc:
            app.logger.info("OAuth code exchange failed: %s", exc.message)
            return _callback_error(exc.message or "Session creation failed", 401)
        if result.user is None or result.session is None:
            return _callback_error("Session creation failed", 401)

        user = result.user
        try:
            profile = ensure_profile(
                get_provider(), user, defaults=_profile_defaults(user, name="Google User")
            )
            page = render_template(
                "oauth_success.html",
                tokens={
                    "access_token": result.session.access_token,
                    "refresh_token": result.session.refresh_token,
                    "expires_at": result.session.expires_at,
                },
                user=serialize_user(user, profile),
            )
        except Exception:
            # The popup only reports back through the page, never through JSON.
            app.logger.exception("OAuth callback failed for user %s", user.id)
            return _callback_error("An unexpected error occurred", 500)
        resp = make_response(page)
        # Tokens are embedded in the page body.
        resp.headers["Cache-Control"] = "no-store"
        clear_oauth_cookie(resp)
        return resp

    @auth_blp.route("/google/callback", methods=["POST"])
    def auth_google_callback():
        data = load_json(GoogleTokensSchema())
        access_token = clean_str(data.get("access_token"))
        refresh_token = clean_str(data.get("refresh_token"))
        if not access_token and not refresh_token:
            abort(400, description="Access token or refresh token required")

        provider = get_provider()
        try:
            if access_token:
                result = provider.set_session(
                    access_token=access_token, refresh_token=refresh_token
                )
            else:
                result = provider.refresh_session(refresh_token)
        except ProviderAuthError as exc:
            abort(401, description=exc.message or "Invalid refresh token")
        if result.session is None:
            abort(500, description="Session creation failed")

        try:
            user = provider.get_user(result.session.access_token)
        except ProviderAuthError:
            user = None
        if user is None:
            abort(401, description="User not found")

        profile = ensure_profile(
            provider, user, defaults=_profile_defaults(user, name="Google User")
        )
        return ok(
            message="Google authentication successful",
            data={"user": serialize_user(user, profile), "session": result.session.as_dict()},
        )

    # ── discovery ─────────────────────────────────────────────────────────

    @auth_blp.route("/providers", methods=["GET"])
    def auth_providers():
        return ok(
            data={
                "providers": ["email", "google"],
                "google_configured": current_app.config.get("PROVIDER_CONFIGURED", False),
            }
        )

    app.register_blueprint(auth_blp)
    return auth_blp
