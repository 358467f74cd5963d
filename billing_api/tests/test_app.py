import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from billing_api.app import create_app
from billing_api.config import load_config
from billing_api.services.mock_provider import MockProvider
from billing_api.services.provider import ProviderDataError
from billing_api.tests.support import ApiTestCase


class HealthAndRoutingTests(ApiTestCase):
    def test_health(self) -> None:
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"], "healthy")
        self.assertEqual(body["environment"], "development")
        self.assertEqual(body["auth_mode"], "mock")
        self.assertFalse(body["provider_configured"])
        self.assertIn("signup", body["endpoints"]["auth"])
        self.assertEqual(body["endpoints"]["health"], "GET /api/health")
        self.assertEqual(body["endpoints"]["auth"]["callback"], "GET /api/auth/callback")
        self.assertGreaterEqual(body["uptime"], 0)

    def test_unknown_api_path(self) -> None:
        res = self.client.get("/api/nope")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(
            res.get_json(),
            {"success": False, "error": "API endpoint not found", "path": "/api/nope"},
        )

    def test_wrong_method_is_json(self) -> None:
        res = self.client.delete("/api/health")
        self.assertEqual(res.status_code, 405)
        self.assertFalse(res.get_json()["success"])

    def test_security_headers(self) -> None:
        res = self.client.get("/api/health")
        self.assertEqual(res.headers["X-Content-Type-Options"], "nosniff")
        self.assertIn("default-src 'none'", res.headers["Content-Security-Policy"])

    def test_cors_preflight_for_known_origin(self) -> None:
        res = self.client.options(
            "/api/invoices",
            headers={
                "Origin": "http://localhost:8081",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Authorization",
            },
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers["Access-Control-Allow-Origin"], "http://localhost:8081")
        self.assertEqual(res.headers["Access-Control-Allow-Credentials"], "true")

    def test_cors_ignores_unknown_origin(self) -> None:
        res = self.client.get("/api/health", headers={"Origin": "https://evil.example"})
        self.assertNotIn("Access-Control-Allow-Origin", res.headers)

    def test_openapi_document(self) -> None:
        res = self.client.get("/openapi.json")
        self.assertEqual(res.status_code, 200)
        doc = res.get_json()
        self.assertEqual(doc["info"]["title"], "Billing Manager API")
        self.assertIn("/api/invoices/{invoice_id}", doc["paths"])

    def test_gen_openapi_command(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "openapi.json"
            result = self.app.test_cli_runner().invoke(
                args=["gen-openapi", "--output", str(target)]
            )
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertIn("/api/invoices", target.read_text())


def _list_with_failing_table(case: ApiTestCase):
    token = case.signed_in_token()
    failure = ProviderDataError("relation missing", code="42P01")
    with mock.patch.object(case.provider, "table", side_effect=failure):
        return case.client.get("/api/invoices", headers=case.bearer(token))


class ProviderFailureTests(ApiTestCase):
    def test_provider_failure_exposes_detail_in_development(self) -> None:
        res = _list_with_failing_table(self)
        self.assertEqual(res.status_code, 500)
        self.assertEqual(
            res.get_json(),
            {"success": False, "error": "Internal server error", "message": "relation missing"},
        )


class ProductionProviderFailureTests(ApiTestCase):
    config_overrides = {"APP_ENV": "production"}

    def test_provider_failure_hides_detail_in_production(self) -> None:
        res = _list_with_failing_table(self)
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json(), {"success": False, "error": "Internal server error"})


class FactoryTests(unittest.TestCase):
    def test_mock_mode_builds_in_memory_provider_when_testing(self) -> None:
        app = create_app(config_overrides={"TESTING": True, "AUTH_MODE": "mock"})
        self.assertIsInstance(app.extensions["provider"], MockProvider)

    def test_mock_mode_is_refused_outside_debug_and_testing(self) -> None:
        with self.assertRaises(RuntimeError):
            create_app(config_overrides={"TESTING": False, "DEBUG": False, "AUTH_MODE": "mock"})

    def test_real_mode_requires_provider_settings(self) -> None:
        with self.assertRaises(RuntimeError):
            create_app(
                config_overrides={
                    "TESTING": True,
                    "AUTH_MODE": "",
                    "SUPABASE_URL": None,
                    "SUPABASE_ANON_KEY": None,
                }
            )


class ConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_config()
        self.assertEqual(config["APP_ENV"], "production")
        self.assertEqual(config["PORT"], 3000)
        self.assertEqual(config["MOBILE_OAUTH_REDIRECT"], "myapp://auth-callback")
        self.assertIn("http://localhost:3000", config["CORS_ORIGINS"])
        self.assertIsNone(config["PASSWORD_RESET_REDIRECT_URL"])
        self.assertTrue(config["AUTH_SECRET_KEY"])

    def test_env_overrides(self) -> None:
        env = {
            "SUPABASE_URL": "https://proj.supabase.co/",
            "PORT": "8080",
            "CORS_ORIGINS": "https://app.example.com/, https://admin.example.com",
            "APP_ENV": "Development",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()
        self.assertEqual(config["PORT"], 8080)
        self.assertEqual(config["APP_ENV"], "development")
        self.assertEqual(
            config["CORS_ORIGINS"], ["https://app.example.com", "https://admin.example.com"]
        )
        self.assertEqual(
            config["PASSWORD_RESET_REDIRECT_URL"], "https://proj.supabase.co/auth/v1/callback"
        )

    def test_wildcard_origin_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {"CORS_ORIGINS": "*"}, clear=True):
            with self.assertRaises(RuntimeError):
                load_config()


if __name__ == "__main__":
    unittest.main()
