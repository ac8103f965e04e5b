import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fintrack import main


def dec(value) -> Decimal:
    return Decimal(str(value))


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.saved_engine = main.engine
        main.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        main.metadata.create_all(main.engine)
        main.SUMMARY_CACHE.clear()
        self.client = TestClient(main.app)

        response = self.client.post("/users", json={"display_name": "Ana"})
        self.assertEqual(response.status_code, 200)
        self.headers = {"x-user-id": str(response.json()["id"])}

    def tearDown(self) -> None:
        main.engine.dispose()
        main.engine = self.saved_engine
        main.SUMMARY_CACHE.clear()

    def post(self, path: str, payload: dict | None = None):
        return self.client.post(path, json=payload, headers=self.headers)

    def get(self, path: str, **params):
        return self.client.get(path, params=params, headers=self.headers)

    def create_accounts(self) -> tuple[int, int]:
        bank = self.post("/accounts", {"name": "Checking", "initial_balance": "1000"})
        card = self.post(
            "/accounts",
            {"name": "Card", "card_limit": "5000", "closing_day": 10, "due_day": 20},
        )
        self.assertEqual(bank.status_code, 200)
        self.assertEqual(card.status_code, 200)
        self.assertEqual(card.json()["account_type"], "card")
        return bank.json()["id"], card.json()["id"]

    def seed_month(self) -> tuple[int, int, int]:
        bank_id, card_id = self.create_accounts()
        self.post(
            "/transactions",
            {
                "kind": "income",
                "amount": "3000",
                "date": "2024-03-05",
                "account_id": bank_id,
                "category": "Salary",
            },
        )
        self.post(
            "/transactions",
            {
                "kind": "expense",
                "amount": "200",
                "date": "2024-03-10",
                "account_id": bank_id,
                "category": "Food",
            },
        )
        purchase = self.post(
            "/transactions",
            {
                "kind": "card_expense",
                "amount": "600",
                "date": "2024-02-15",
                "account_id": card_id,
                "category": "Electronics",
                "is_installment": True,
                "installment_total": 3,
            },
        )
        self.assertEqual(purchase.status_code, 200)
        return bank_id, card_id, purchase.json()["id"]


class IdentityTests(ApiTestCase):
    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_missing_identity(self) -> None:
        self.assertEqual(self.client.get("/accounts").status_code, 401)

    def test_unknown_user(self) -> None:
        response = self.client.get("/accounts", headers={"x-user-id": "999"})

        self.assertEqual(response.status_code, 404)


class AccountApiTests(ApiTestCase):
    def test_rejects_invalid_closing_day(self) -> None:
        response = self.post("/accounts", {"name": "Card", "card_limit": "100", "closing_day": 32})

        self.assertEqual(response.status_code, 400)

    def test_summary_balances_and_invoice(self) -> None:
        bank_id, card_id, _ = self.seed_month()
        transfer = self.post(
            "/transfers",
            {
                "from_account_id": bank_id,
                "to_account_id": card_id,
                "amount": "500",
                "date": "2024-03-01",
            },
        )
        self.assertEqual(transfer.status_code, 200)

        body = self.get("/accounts/summary", as_of="2024-03-05").json()

        by_id = {item["account_id"]: item for item in body["accounts"]}
        self.assertEqual(dec(by_id[bank_id]["balance"]), Decimal("3300"))
        self.assertEqual(dec(by_id[card_id]["balance"]), Decimal("-100"))
        self.assertEqual(dec(by_id[card_id]["invoice_current"]), Decimal("200"))
        self.assertIsNone(by_id[bank_id]["invoice_current"])
        self.assertEqual(dec(body["totals"]["income"]), Decimal("3000"))
        self.assertEqual(dec(body["totals"]["expense"]), Decimal("800"))

    def test_card_cycle(self) -> None:
        bank_id, card_id, _ = self.seed_month()

        body = self.get(f"/cards/{card_id}/cycle", as_of="2024-03-05").json()

        self.assertEqual(body["last_closing"], "2024-02-10")
        self.assertEqual(body["next_closing"], "2024-03-10")
        self.assertEqual(body["due_date"], "2024-03-20")
        self.assertEqual(dec(body["invoice_total"]), Decimal("200"))
        self.assertEqual(self.get(f"/cards/{bank_id}/cycle").status_code, 400)

    def test_account_with_transactions_cannot_be_deleted(self) -> None:
        bank_id, _, _ = self.seed_month()

        self.assertEqual(self.client.delete(f"/accounts/{bank_id}", headers=self.headers).status_code, 409)

    def test_transfer_to_same_account(self) -> None:
        bank_id, _ = self.create_accounts()

        response = self.post(
            "/transfers",
            {"from_account_id": bank_id, "to_account_id": bank_id, "amount": "5", "date": "2024-03-01"},
        )

        self.assertEqual(response.status_code, 400)


class TransactionApiTests(ApiTestCase):
    def test_month_listing_expands_installments(self) -> None:
        self.seed_month()

        stored = self.get("/transactions").json()
        march = self.get("/transactions", month="2024-03").json()

        self.assertEqual(len(stored), 3)
        self.assertEqual(len(march), 3)
        installment = [item for item in march if item["occurrence_index"] is not None][0]
        self.assertEqual(installment["occurrence_index"], 1)
        self.assertEqual(dec(installment["effective_amount"]), Decimal("200"))

    def test_rejects_bad_payloads(self) -> None:
        bank_id, _ = self.create_accounts()
        bad_amount = self.post(
            "/transactions",
            {"kind": "expense", "amount": "0", "date": "2024-03-01", "account_id": bank_id},
        )
        bad_kind = self.post(
            "/transactions",
            {"kind": "refund", "amount": "10", "date": "2024-03-01", "account_id": bank_id},
        )
        bad_month = self.get("/transactions", month="March")

        self.assertEqual(bad_amount.status_code, 400)
        self.assertEqual(bad_kind.status_code, 400)
        self.assertEqual(bad_month.status_code, 400)

    def test_installment_total_is_capped(self) -> None:
        bank_id, _ = self.create_accounts()
        payload = {
            "kind": "expense",
            "amount": "100",
            "date": "2024-03-05",
            "account_id": bank_id,
            "is_installment": True,
        }

        too_long = self.post("/transactions", {**payload, "installment_total": 100000})
        longest = self.post("/transactions", {**payload, "installment_total": 360})
        march = self.get("/transactions", month="2024-03")

        self.assertEqual(too_long.status_code, 400)
        self.assertEqual(longest.status_code, 200)
        self.assertEqual(march.status_code, 200)
        self.assertEqual(len(march.json()), 1)
        self.assertEqual(self.get("/reports/months", months_back=3).status_code, 200)

    def test_pay_installment_clamps_at_total(self) -> None:
        _, _, purchase_id = self.seed_month()

        for _ in range(4):
            response = self.post(f"/transactions/{purchase_id}/pay-installment")
            self.assertEqual(response.status_code, 200)

        body = response.json()
        self.assertEqual(body["installments_paid"], 3)
        self.assertTrue(body["is_paid"])

    def test_pay_installment_on_single_record(self) -> None:
        bank_id, _ = self.create_accounts()
        single = self.post(
            "/transactions",
            {"kind": "expense", "amount": "10", "date": "2024-03-01", "account_id": bank_id},
        ).json()

        self.assertEqual(self.post(f"/transactions/{single['id']}/pay-installment").status_code, 400)
        self.assertEqual(self.post("/transactions/999/pay-installment").status_code, 404)
        toggled = self.post(f"/transactions/{single['id']}/toggle-paid").json()
        self.assertTrue(toggled["is_paid"])

    def test_legacy_card_rows_are_reclassified(self) -> None:
        bank_id, card_id = self.create_accounts()
        self.post(
            "/transactions",
            {
                "kind": "expense",
                "amount": "90",
                "date": "2024-03-01",
                "account_id": card_id,
                "description": "Parcela loja",
            },
        )
        self.post(
            "/transactions",
            {"kind": "expense", "amount": "15", "date": "2024-03-01", "account_id": bank_id},
        )

        response = self.post("/transactions/migrate-legacy")

        self.assertEqual(response.json(), {"reclassified": 1})
        kinds = sorted(item["kind"] for item in self.get("/transactions").json())
        self.assertEqual(kinds, ["card_expense", "expense"])


class ReportApiTests(ApiTestCase):
    def test_month_report_refreshes_after_writes(self) -> None:
        _, _, purchase_id = self.seed_month()

        before = self.get("/reports/month", month="2024-03").json()
        self.post(f"/transactions/{purchase_id}/pay-installment")
        after = self.get("/reports/month", month="2024-03").json()

        self.assertEqual(dec(before["income"]), Decimal("3000"))
        self.assertEqual(dec(before["expense"]), Decimal("400"))
        self.assertEqual(dec(before["open_expense"]), Decimal("800"))
        self.assertEqual(
            {item["category"] for item in before["categories"]},
            {"Food", "Electronics"},
        )
        self.assertEqual(dec(after["open_expense"]), Decimal("600"))

    def test_categories_and_daily_flow(self) -> None:
        self.seed_month()

        income = self.get("/reports/categories", month="2024-03", mode="income").json()
        flow = self.get("/reports/daily-flow", month="2024-03").json()

        self.assertEqual([item["category"] for item in income], ["Salary"])
        self.assertEqual(len(flow), 31)
        self.assertEqual(dec(flow[-1]["net"]), Decimal("2600"))
        self.assertEqual(self.get("/reports/categories", mode="transfers").status_code, 400)

    def test_month_list_and_options(self) -> None:
        self.seed_month()

        months = self.get("/reports/months", months_back=2).json()
        options = self.get("/reports/month-options").json()

        self.assertEqual(len(months), 2)
        self.assertGreater(months[0]["key"], months[1]["key"])
        self.assertIn("2024-02", options)
        self.assertIn("2024-04", options)


class InvestmentApiTests(ApiTestCase):
    def test_purchases_update_average_price(self) -> None:
        asset = self.post("/investments", {"asset_type": "B3", "symbol": "petr4"}).json()
        self.assertEqual(asset["symbol"], "PETR4")
        self.assertEqual(asset["asset_type"], "listed_equity")

        by_cash = self.post(
            f"/investments/{asset['id']}/purchases",
            {"date": "2024-01-02", "price_per_unit": "33", "cash": "100"},
        ).json()
        by_quantity = self.post(
            f"/investments/{asset['id']}/purchases",
            {"date": "2024-02-02", "price_per_unit": "35", "quantity": "3"},
        ).json()

        self.assertEqual(dec(by_cash["quantity"]), Decimal("3"))
        self.assertEqual(dec(by_cash["average_price"]), Decimal("33"))
        self.assertEqual(dec(by_quantity["quantity"]), Decimal("6"))
        self.assertEqual(dec(by_quantity["average_price"]), Decimal("34"))
        purchases = self.get(f"/investments/{asset['id']}/purchases").json()
        self.assertEqual([item["mode_used"] for item in purchases], ["value", "quantity"])

    def test_rejected_purchases(self) -> None:
        asset = self.post("/investments", {"asset_type": "stock", "symbol": "VALE3"}).json()
        path = f"/investments/{asset['id']}/purchases"

        too_small = self.post(path, {"date": "2024-01-02", "price_per_unit": "33", "cash": "10"})
        both = self.post(
            path,
            {"date": "2024-01-02", "price_per_unit": "33", "cash": "100", "quantity": "1"},
        )
        missing = self.post(
            "/investments/999/purchases",
            {"date": "2024-01-02", "price_per_unit": "33", "quantity": "1"},
        )

        self.assertEqual(too_small.status_code, 400)
        self.assertEqual(both.status_code, 400)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(len(self.get("/investments").json()), 1)

    def test_duplicate_symbol(self) -> None:
        self.post("/investments", {"asset_type": "crypto", "symbol": "btc"})

        response = self.post("/investments", {"asset_type": "crypto", "symbol": "BTC"})

        self.assertEqual(response.status_code, 409)

    def test_quote_quantity(self) -> None:
        body = self.post(
            "/investments/quote-quantity",
            {"asset_type": "crypto", "cash": "4000", "price_per_unit": "81"},
        ).json()

        self.assertEqual(dec(body["quantity"]), Decimal("49.38271604"))
        self.assertLessEqual(dec(body["total"]), Decimal("4000"))


if __name__ == "__main__":
    unittest.main()
