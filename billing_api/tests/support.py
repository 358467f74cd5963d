import unittest

from billing_api.app import create_app
from billing_api.services.mock_provider import MockProvider

ADMIN_KEY = "test-admin-key"


class ApiTestCase(unittest.TestCase):
    """Fresh app + in-memory provider per test."""

    provider_options: dict = {}
    config_overrides: dict = {}

    def setUp(self) -> None:
        self.provider = MockProvider(**self.provider_options)
        overrides = {
            "TESTING": True,
            "AUTH_MODE": "mock",
            "APP_ENV": "development",
            "SECRET_KEY": "test-auth-secret",
            "AUTH_SECRET_KEY": "test-auth-secret",
            "ADMIN_API_KEY": ADMIN_KEY,
            "SUPABASE_URL": None,
            "SUPABASE_ANON_KEY": None,
            "SUPABASE_SERVICE_ROLE_KEY": None,
            "PUBLIC_BASE_URL": "http://localhost:3000",
            "MOBILE_OAUTH_REDIRECT": "myapp://auth-callback",
            "PASSWORD_RESET_REDIRECT_URL": "http://localhost:3000/reset",
        }
        overrides.update(self.config_overrides)
        self.app = create_app(config_overrides=overrides, provider=self.provider)
        self.client = self.app.test_client()

    def signup(self, email="a@b.com", password="secret1", name="Ann", **extra):
        payload = {"email": email, "password": password, "name": name}
        payload.update(extra)
        return self.client.post("/api/auth/signup", json=payload)

    def signed_in_token(self, email="a@b.com", password="secret1", name="Ann") -> str:
        res = self.signup(email=email, password=password, name=name)
        self.assertEqual(res.status_code, 201, res.get_json())
        return res.get_json()["data"]["session"]["access_token"]

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
