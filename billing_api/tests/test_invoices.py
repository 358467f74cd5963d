import unittest
import uuid
from datetime import datetime, timezone
from unittest import mock

from billing_api.services.invoices import invoice_stats, reconcile_invoice_counts
from billing_api.services.provider import ProviderDataError
from billing_api.tests.support import ADMIN_KEY, ApiTestCase


class InvoiceApiTestCase(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.token = self.signed_in_token()
        self.user_id = self.provider.rows("users")[0]["id"]

    def create(self, token=None, **fields):
        payload = {"client_name": "Globex", "amount": 100}
        payload.update(fields)
        return self.client.post(
            "/api/invoices", json=payload, headers=self.bearer(token or self.token)
        )

    def invoice_count(self, user_id=None) -> int:
        user_id = user_id or self.user_id
        row = next(r for r in self.provider.rows("users") if r["id"] == user_id)
        return row["invoice_count"]


class InvoiceCrudTests(InvoiceApiTestCase):
    def test_requires_authentication(self) -> None:
        res = self.client.get("/api/invoices")
        self.assertEqual(res.status_code, 401)
        self.assertFalse(res.get_json()["success"])

    def test_create_applies_defaults(self) -> None:
        res = self.create(client_name="  Globex  ", amount="250.5", notes=" net 30 ")
        self.assertEqual(res.status_code, 201)
        body = res.get_json()
        self.assertEqual(body["message"], "Invoice created successfully")
        invoice = body["data"]
        self.assertEqual(invoice["client_name"], "Globex")
        self.assertEqual(invoice["amount"], 250.5)
        self.assertEqual(invoice["total_amount"], 250.5)
        self.assertEqual(invoice["tax_rate"], 0)
        self.assertEqual(invoice["currency"], "USD")
        self.assertEqual(invoice["status"], "draft")
        self.assertEqual(invoice["items"], [])
        self.assertEqual(invoice["notes"], "net 30")
        self.assertTrue(invoice["invoice_number"].startswith("INV-"))
        self.assertEqual(invoice["user_id"], self.user_id)
        self.assertEqual(self.invoice_count(), 1)

    def test_create_keeps_supplied_values(self) -> None:
        res = self.create(
            invoice_number="A-1",
            tax_rate=10,
            tax_amount=10,
            total_amount=110,
            currency="EUR",
            status="pending",
            items=[{"description": "Widgets", "qty": 2}],
        )
        invoice = res.get_json()["data"]
        self.assertEqual(invoice["invoice_number"], "A-1")
        self.assertEqual(invoice["total_amount"], 110)
        self.assertEqual(invoice["currency"], "EUR")
        self.assertEqual(invoice["status"], "pending")
        self.assertEqual(invoice["items"], [{"description": "Widgets", "qty": 2}])

    def test_create_requires_client_name_and_amount(self) -> None:
        for payload in (
            {"amount": 100},
            {"client_name": "Globex"},
            {"client_name": "   ", "amount": 100},
            {"client_name": "Globex", "amount": 0},
            {"client_name": "Globex", "amount": ""},
        ):
            res = self.client.post("/api/invoices", json=payload, headers=self.bearer(self.token))
            self.assertEqual(res.status_code, 400, payload)
            self.assertEqual(res.get_json()["error"], "Client name and amount are required")
        self.assertEqual(self.provider.rows("invoices"), [])
        self.assertEqual(self.invoice_count(), 0)

    def test_create_rejects_non_numeric_amount(self) -> None:
        res = self.create(amount="lots")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "amount must be a number")
        self.assertEqual(self.provider.rows("invoices"), [])

    def test_list_is_newest_first_and_scoped(self) -> None:
        for created_at, number in (
            ("2026-01-05T10:00:00+00:00", "OLD"),
            ("2026-03-05T10:00:00+00:00", "NEW"),
        ):
            self.provider.table("invoices").insert(
                {"user_id": self.user_id, "invoice_number": number, "created_at": created_at}
            ).execute()
        self.provider.table("invoices").insert(
            {"user_id": "someone-else", "invoice_number": "OTHER"}
        ).execute()

        res = self.client.get("/api/invoices", headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 200)
        numbers = [inv["invoice_number"] for inv in res.get_json()["data"]]
        self.assertEqual(numbers, ["NEW", "OLD"])
        self.assertEqual([inv["items"] for inv in res.get_json()["data"]], [[], []])

    def test_get_update_delete(self) -> None:
        invoice_id = self.create().get_json()["data"]["id"]
        url = f"/api/invoices/{invoice_id}"

        res = self.client.get(url, headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["id"], invoice_id)

        res = self.client.put(url, json={"status": "paid"}, headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 200)
        updated = res.get_json()["data"]
        self.assertEqual(updated["status"], "paid")
        self.assertEqual(updated["client_name"], "Globex")
        self.assertEqual(updated["amount"], 100)

        res = self.client.delete(url, headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["message"], "Invoice deleted successfully")
        self.assertEqual(self.invoice_count(), 0)
        self.assertEqual(self.client.get(url, headers=self.bearer(self.token)).status_code, 404)

    def test_delete_of_missing_invoice_does_not_touch_counter(self) -> None:
        invoice_id = self.create().get_json()["data"]["id"]
        url = f"/api/invoices/{invoice_id}"
        self.client.delete(url, headers=self.bearer(self.token))
        res = self.client.delete(url, headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self.provider.calls.count("rpc:decrement_invoice_count"), 1)

    def test_update_rejects_blank_client_name(self) -> None:
        invoice_id = self.create().get_json()["data"]["id"]
        res = self.client.put(
            f"/api/invoices/{invoice_id}",
            json={"client_name": " "},
            headers=self.bearer(self.token),
        )
        self.assertEqual(res.status_code, 400)

    def test_other_users_invoice_is_not_found(self) -> None:
        invoice_id = self.create().get_json()["data"]["id"]
        other = self.signed_in_token(email="b@b.com", name="Bob")
        url = f"/api/invoices/{invoice_id}"

        self.assertEqual(self.client.get(url, headers=self.bearer(other)).status_code, 404)
        res = self.client.put(url, json={"status": "paid"}, headers=self.bearer(other))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self.client.delete(url, headers=self.bearer(other)).status_code, 404)

        rows = self.provider.rows("invoices")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["status"], "draft")
        self.assertEqual(self.invoice_count(), 1)

    def test_malformed_id_is_not_found(self) -> None:
        res = self.client.get("/api/invoices/not-a-uuid", headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "Invoice not found")

    def test_unknown_id_is_not_found(self) -> None:
        res = self.client.get(f"/api/invoices/{uuid.uuid4()}", headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 404)


class InvoiceCounterTests(InvoiceApiTestCase):
    def test_counter_failure_does_not_fail_create(self) -> None:
        with mock.patch.object(
            self.provider, "rpc", side_effect=ProviderDataError("rpc down", code="PGRST202")
        ):
            res = self.create()
        self.assertEqual(res.status_code, 201)
        self.assertEqual(self.invoice_count(), 0)

        res = self.client.post(
            "/api/admin/reconcile-counters", headers={"X-Admin-Key": ADMIN_KEY}
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["corrected"], {self.user_id: 1})
        self.assertEqual(self.invoice_count(), 1)

    def test_reconcile_single_user(self) -> None:
        other = self.signed_in_token(email="b@b.com", name="Bob")
        other_id = next(r["id"] for r in self.provider.rows("users") if r["email"] == "b@b.com")
        self.create(token=other)
        self.provider.table("users").update({"invoice_count": 7}).eq("id", self.user_id).execute()
        self.provider.table("users").update({"invoice_count": 7}).eq("id", other_id).execute()

        res = self.client.post(
            "/api/admin/reconcile-counters",
            json={"user_id": other_id},
            headers={"X-Admin-Key": ADMIN_KEY},
        )
        self.assertEqual(res.get_json()["data"]["corrected"], {other_id: 1})
        self.assertEqual(self.invoice_count(other_id), 1)
        self.assertEqual(self.invoice_count(), 7)

    def test_reconcile_requires_admin_key(self) -> None:
        res = self.client.post("/api/admin/reconcile-counters")
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json(), {"success": False, "error": "Admin access required"})

        res = self.client.post(
            "/api/admin/reconcile-counters", headers={"X-Admin-Key": "wrong"}
        )
        self.assertEqual(res.status_code, 403)

    def test_cli_reconcile(self) -> None:
        self.provider.table("users").update({"invoice_count": 3}).eq("id", self.user_id).execute()
        result = self.app.test_cli_runner().invoke(args=["reconcile-counters"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Corrected 1 user(s).", result.output)
        self.assertEqual(self.invoice_count(), 0)


class CappedReconcileTests(InvoiceApiTestCase):
    provider_options = {"max_rows": 2}

    def test_counts_and_users_are_not_truncated_by_row_cap(self) -> None:
        for i in range(3):
            self.provider.table("invoices").insert(
                {"user_id": self.user_id, "invoice_number": f"N-{i}"}
            ).execute()
        for extra_id in ("u-2", "u-3"):
            self.provider.table("users").insert({"id": extra_id, "invoice_count": 5}).execute()

        with self.app.app_context():
            corrected = reconcile_invoice_counts(self.provider)

        self.assertEqual(corrected, {self.user_id: 3, "u-2": 0, "u-3": 0})
        self.assertEqual(self.invoice_count(), 3)


class InvoiceStatsTests(InvoiceApiTestCase):
    def test_zero_invoices(self) -> None:
        res = self.client.get("/api/invoices/stats/summary", headers=self.bearer(self.token))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(
            res.get_json()["data"],
            {
                "total": 0,
                "paid": 0,
                "pending": 0,
                "overdue": 0,
                "draft": 0,
                "total_revenue": 0,
                "this_month": 0,
                "last_month": 0,
            },
        )

    def test_counts_and_revenue(self) -> None:
        self.create(status="paid", total_amount=110)
        self.create(status="paid", amount=50)
        self.create(status="pending")
        self.create(status="overdue")
        self.create()
        self.create(token=self.signed_in_token(email="b@b.com", name="Bob"), status="paid")

        stats = self.client.get(
            "/api/invoices/stats/summary", headers=self.bearer(self.token)
        ).get_json()["data"]
        self.assertEqual(stats["total"], 5)
        self.assertEqual(stats["paid"], 2)
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["overdue"], 1)
        self.assertEqual(stats["draft"], 1)
        self.assertEqual(stats["total_revenue"], 160)
        self.assertEqual(stats["this_month"], 160)

    def test_monthly_buckets(self) -> None:
        for created_at, amount in (
            ("2026-03-02T09:00:00Z", 40),
            ("2026-02-27T23:00:00+00:00", 25),
            ("2026-01-15T12:00:00+00:00", 1000),
        ):
            self.provider.table("invoices").insert(
                {
                    "user_id": self.user_id,
                    "status": "paid",
                    "total_amount": amount,
                    "created_at": created_at,
                }
            ).execute()
        with self.app.app_context():
            stats = invoice_stats(
                self.provider, self.user_id, now=datetime(2026, 3, 10, tzinfo=timezone.utc)
            )
        self.assertEqual(stats["this_month"], 40)
        self.assertEqual(stats["last_month"], 25)
        self.assertEqual(stats["total_revenue"], 1065)

    def test_january_compares_with_december(self) -> None:
        self.provider.table("invoices").insert(
            {
                "user_id": self.user_id,
                "status": "paid",
                "total_amount": 5,
                "created_at": "2025-12-31T10:00:00+00:00",
            }
        ).execute()
        with self.app.app_context():
            stats = invoice_stats(
                self.provider, self.user_id, now=datetime(2026, 1, 2, tzinfo=timezone.utc)
            )
        self.assertEqual(stats["last_month"], 5)
        self.assertEqual(stats["this_month"], 0)


if __name__ == "__main__":
    unittest.main()
