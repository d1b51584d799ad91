import unittest
from datetime import datetime

from fastapi.testclient import TestClient

from budget_manager.config import Settings
from budget_manager.main import RECOVERY_MESSAGE, create_app
from budget_manager.store import DEFAULT_CATEGORIES, BudgetStore
from budget_manager.suggestions import CategorySuggestion

PASSWORD = "Passw0rd"
MISSING_ID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = Settings(database_url="sqlite://", log_level="WARNING")
        self.store = BudgetStore.from_url(self.settings.database_url)
        self.client = TestClient(create_app(self.settings, self.store))

    def tearDown(self) -> None:
        self.client.close()
        self.store.engine.dispose()

    def signup(self, email: str = "user@example.com", client: TestClient | None = None) -> dict:
        response = (client or self.client).post(
            "/api/auth/signup", json={"email": email, "password": PASSWORD}
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["user"]

    def default_account_id(self) -> str:
        return self.client.get("/api/rest/v1/accounts").json()["data"][0]["id"]

    def category_id(self, name: str) -> str:
        rows = self.client.get("/api/rest/v1/categories?limit=50").json()["data"]
        return next(row["id"] for row in rows if row["name"] == name)

    def create_transaction(self, **overrides):
        payload = {
            "amount_cents": 150000,
            "transaction_type": "income",
            "description": "Salary",
            "transaction_date": "2024-01-05T09:00:00Z",
            "account_id": self.default_account_id(),
        }
        payload.update(overrides)
        return self.client.post("/api/rest/v1/transactions", json=payload)


class AuthApiTests(ApiTestCase):
    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_signup_sets_session_cookie(self) -> None:
        user = self.signup()

        self.assertEqual(user["email"], "user@example.com")
        self.assertIn(self.settings.session_cookie_name, self.client.cookies)

    def test_signup_rejects_weak_password(self) -> None:
        response = self.client.post(
            "/api/auth/signup", json={"email": "user@example.com", "password": "12345678"}
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Password must contain a letter.")
        self.assertEqual(response.json()["errors"][0]["field"], "password")

    def test_overlong_password_is_a_field_error(self) -> None:
        response = self.client.post(
            "/api/auth/signup", json={"email": "user@example.com", "password": "a1" * 40}
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Password must be at most 72 bytes.")

    def test_signup_reports_every_password_rule(self) -> None:
        response = self.client.post(
            "/api/auth/signup", json={"email": "user@example.com", "password": "abcdefg"}
        )

        self.assertEqual(
            response.json()["detail"],
            "Password must be at least 8 characters., Password must contain a number.",
        )

    def test_duplicate_signup_conflicts(self) -> None:
        self.signup()

        response = self.client.post(
            "/api/auth/signup", json={"email": "USER@example.com", "password": PASSWORD}
        )

        self.assertEqual(response.status_code, 409)

    def test_malformed_json_is_bad_request(self) -> None:
        response = self.client.post(
            "/api/auth/login",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Invalid JSON in request body.")

    def test_non_object_body_is_bad_request(self) -> None:
        response = self.client.post("/api/auth/login", json=["user@example.com"])

        self.assertEqual(response.status_code, 400)

    def test_login_and_logout(self) -> None:
        self.signup()
        self.client.cookies.clear()

        bad = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "Wr0ngpass"}
        )
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.json()["detail"], "Invalid login credentials.")

        good = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": PASSWORD}
        )
        self.assertEqual(good.status_code, 200)
        self.assertEqual(self.client.get("/api/rest/v1/accounts").status_code, 200)

        self.assertEqual(self.client.post("/api/auth/logout").status_code, 204)
        self.client.cookies.clear()
        token = good.cookies[self.settings.session_cookie_name]
        response = self.client.get(
            "/api/rest/v1/accounts", headers={"Authorization": f"Bearer {token}"}
        )
        self.assertEqual(response.status_code, 401)

    def test_bearer_token_authenticates(self) -> None:
        self.signup()
        token = self.client.cookies[self.settings.session_cookie_name]
        self.client.cookies.clear()

        response = self.client.get(
            "/api/rest/v1/accounts", headers={"Authorization": f"Bearer {token}"}
        )

        self.assertEqual(response.status_code, 200)

    def test_protected_routes_require_session(self) -> None:
        for method, path in (
            ("get", "/api/rest/v1/transactions"),
            ("get", "/api/rest/v1/accounts"),
            ("get", "/api/rest/v1/categories"),
            ("post", "/api/rest/v1/rpc/get_income_summary"),
        ):
            with self.subTest(path=path):
                response = getattr(self.client, method)(path)
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response.json(), {"detail": "Unauthorized"})

    def test_recover_does_not_reveal_accounts(self) -> None:
        self.signup()

        known = self.client.post("/api/auth/recover", json={"email": "user@example.com"})
        unknown = self.client.post("/api/auth/recover", json={"email": "nobody@example.com"})

        self.assertEqual(known.status_code, 202)
        self.assertEqual(known.json(), unknown.json())
        self.assertEqual(known.json()["message"], RECOVERY_MESSAGE)

    def test_reset_with_unknown_token(self) -> None:
        response = self.client.post(
            "/api/auth/reset", json={"token": "made-up", "password": PASSWORD}
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Recovery token is invalid or expired.")


class AccountApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.signup()

    def test_lists_seeded_account(self) -> None:
        body = self.client.get("/api/rest/v1/accounts").json()

        self.assertEqual(body["meta"], {"total_count": 1, "limit": 20, "offset": 0})
        self.assertEqual(body["data"][0]["name"], "Basic account")

    def test_create_rename_delete(self) -> None:
        created = self.client.post(
            "/api/rest/v1/accounts", json={"name": "Vacation", "account_type": "savings"}
        )
        self.assertEqual(created.status_code, 201)
        account_id = created.json()["id"]

        renamed = self.client.patch(
            f"/api/rest/v1/accounts?id=eq.{account_id}", json={"name": "Travel"}
        )
        self.assertEqual(renamed.json()["name"], "Travel")

        deleted = self.client.delete(f"/api/rest/v1/accounts?id=eq.{account_id}")
        self.assertEqual(deleted.status_code, 204)
        missing = self.client.delete(f"/api/rest/v1/accounts?id=eq.{account_id}")
        self.assertEqual(missing.status_code, 404)

    def test_duplicate_name_conflicts(self) -> None:
        response = self.client.post(
            "/api/rest/v1/accounts", json={"name": "Basic account", "account_type": "cash"}
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"], "Account with this name already exists.")

    def test_unknown_account_type(self) -> None:
        response = self.client.post(
            "/api/rest/v1/accounts", json={"name": "Wallet", "account_type": "crypto"}
        )

        self.assertEqual(response.status_code, 422)

    def test_pagination_limits(self) -> None:
        for query in ("limit=0", "limit=51", "offset=-1"):
            with self.subTest(query=query):
                response = self.client.get(f"/api/rest/v1/accounts?{query}")
                self.assertEqual(response.status_code, 400)
                self.assertTrue(response.json()["detail"].startswith("Invalid query parameters"))


class CategoryApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.signup()

    def test_lists_defaults_ordered_by_name(self) -> None:
        body = self.client.get("/api/rest/v1/categories?limit=50&order=name.asc").json()

        self.assertEqual(body["meta"]["total_count"], len(DEFAULT_CATEGORIES))
        self.assertEqual([row["name"] for row in body["data"]], sorted(DEFAULT_CATEGORIES))

    def test_invalid_order(self) -> None:
        response = self.client.get("/api/rest/v1/categories?order=user_id.asc")

        self.assertEqual(response.status_code, 400)

    def test_duplicate_name_is_constraint_violation(self) -> None:
        response = self.client.post("/api/rest/v1/categories", json={"name": " groceries "})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Category name already exists for this user.")

    def test_empty_name(self) -> None:
        response = self.client.post("/api/rest/v1/categories", json={"name": "   "})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Category name cannot be empty.")

    def test_delete_uncategorizes_transactions(self) -> None:
        category_id = self.category_id("Salary")
        transaction_id = self.create_transaction(category_id=category_id).json()["id"]

        self.assertEqual(
            self.client.delete(f"/api/rest/v1/categories?id=eq.{category_id}").status_code, 204
        )

        view = self.client.get(f"/api/rest/v1/transactions?id=eq.{transaction_id}").json()
        self.assertEqual(view["categoryName"], "Uncategorized")
        self.assertIsNone(view["categoryId"])


class TransactionApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.signup()

    def test_create_returns_stored_row(self) -> None:
        response = self.create_transaction()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["amount_cents"], 150000)
        self.assertEqual(body["transaction_date"], "2024-01-05T09:00:00")
        self.assertIsNone(body["category_id"])

    def test_create_validation_errors(self) -> None:
        response = self.create_transaction(amount_cents=0, description="")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(
            [error["field"] for error in response.json()["errors"]],
            ["amount_cents", "description"],
        )

    def test_create_with_unknown_account(self) -> None:
        response = self.create_transaction(account_id=MISSING_ID)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(
            response.json()["detail"], "Account not found or does not belong to user."
        )

    def test_fetch_single_view_model(self) -> None:
        transaction_id = self.create_transaction().json()["id"]

        response = self.client.get(f"/api/rest/v1/transactions?id=eq.{transaction_id}")

        self.assertEqual(response.status_code, 200)
        view = response.json()
        self.assertEqual(view["amountFormatted"], "$1,500.00")
        self.assertEqual(view["amountClassName"], "text-green-600")
        self.assertEqual(view["accountName"], "Basic account")

    def test_record_id_errors(self) -> None:
        missing = self.client.delete("/api/rest/v1/transactions")
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(
            missing.json()["detail"],
            "Transaction ID is required in format: ?id=eq.{transaction_id}",
        )

        malformed = self.client.delete("/api/rest/v1/transactions?id=eq.123")
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(
            malformed.json()["detail"], "Invalid transaction ID format: must be a valid UUID"
        )

        unknown = self.client.get(f"/api/rest/v1/transactions?id=eq.{MISSING_ID}")
        self.assertEqual(unknown.status_code, 404)

        trailing_newline = self.client.get(f"/api/rest/v1/transactions?id=eq.{MISSING_ID}%0A")
        self.assertEqual(trailing_newline.status_code, 400)

    def test_list_with_pagination(self) -> None:
        for description in ("one", "two", "three"):
            self.create_transaction(description=description)

        body = self.client.get("/api/rest/v1/transactions?limit=2&offset=0").json()

        self.assertEqual(body["meta"], {"total_count": 3, "limit": 2, "offset": 0})
        self.assertEqual(len(body["data"]), 2)
        self.assertIn("amountCents", body["data"][0])

    def test_update_returns_view_model(self) -> None:
        transaction_id = self.create_transaction().json()["id"]

        response = self.client.patch(
            f"/api/rest/v1/transactions?id=eq.{transaction_id}",
            json={"transaction_type": "expense", "amount_cents": 7525},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["amountFormatted"], "$75.25")
        self.assertEqual(response.json()["amountClassName"], "text-red-600")

    def test_empty_update_is_rejected(self) -> None:
        transaction_id = self.create_transaction().json()["id"]

        response = self.client.patch(f"/api/rest/v1/transactions?id=eq.{transaction_id}", json={})

        self.assertEqual(response.status_code, 422)

    def test_delete(self) -> None:
        transaction_id = self.create_transaction().json()["id"]

        url = f"/api/rest/v1/transactions?id=eq.{transaction_id}"
        self.assertEqual(self.client.delete(url).status_code, 204)
        self.assertEqual(self.client.get(url).status_code, 404)

    def test_other_user_cannot_see_transactions(self) -> None:
        transaction_id = self.create_transaction().json()["id"]
        with TestClient(self.client.app) as other:
            self.signup("other@example.com", client=other)

            response = other.get(f"/api/rest/v1/transactions?id=eq.{transaction_id}")
            listing = other.get("/api/rest/v1/transactions").json()

        self.assertEqual(response.status_code, 404)
        self.assertEqual(listing["meta"]["total_count"], 0)


class SummaryApiTests(ApiTestCase):
    period = {"start_date": "2024-01-01T00:00:00Z", "end_date": "2024-01-31T23:59:59Z"}

    def setUp(self) -> None:
        super().setUp()
        self.signup()
        self.create_transaction(amount_cents=150000)
        self.create_transaction(amount_cents=25050, transaction_date="2024-01-20T10:00:00Z")
        self.create_transaction(transaction_type="expense", amount_cents=7525)
        self.create_transaction(transaction_type="expense", amount_cents=12000)
        self.create_transaction(amount_cents=99900, transaction_date="2024-02-01T00:00:00Z")

    def test_income_summary(self) -> None:
        body = self.client.post("/api/rest/v1/rpc/get_income_summary", json=self.period).json()

        self.assertEqual(body["total_cents"], 175050)
        self.assertEqual(body["transaction_count"], 2)
        self.assertEqual(body["period_start"], "2024-01-01T00:00:00")

    def test_expense_summary(self) -> None:
        body = self.client.post("/api/rest/v1/rpc/get_expense_summary", json=self.period).json()

        self.assertEqual((body["total_cents"], body["transaction_count"]), (19525, 2))

    def test_reversed_range(self) -> None:
        response = self.client.post(
            "/api/rest/v1/rpc/get_income_summary",
            json={"start_date": self.period["end_date"], "end_date": self.period["start_date"]},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(
            response.json()["detail"], "Start date must be before or equal to end date."
        )


class DashboardSummaryApiTests(ApiTestCase):
    def setUp(self) -> None:
        self.settings = Settings(database_url="sqlite://", log_level="WARNING")
        self.store = BudgetStore.from_url(
            self.settings.database_url, clock=lambda: datetime(2024, 1, 20, 12, 0)
        )
        self.client = TestClient(create_app(self.settings, self.store))
        self.signup()
        self.create_transaction(amount_cents=150000, transaction_date="2024-01-05T09:00:00Z")
        self.create_transaction(
            transaction_type="expense", amount_cents=7525, transaction_date="2024-01-20T23:00:00Z"
        )
        self.create_transaction(amount_cents=99900, transaction_date="2023-12-31T09:00:00Z")

    def test_defaults_to_month_to_date(self) -> None:
        response = self.client.get("/api/dashboard/summary")

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["income"]["total_formatted"], "$1,500.00")
        self.assertEqual(body["income"]["period_start_iso"], "2024-01-01T00:00:00")
        self.assertEqual(body["income"]["period_end_iso"], "2024-01-20T23:59:59.999000")
        self.assertEqual(body["expense"]["kind"], "expense")
        self.assertEqual(body["expense"]["transaction_count"], 1)

    def test_explicit_range_end_is_inclusive(self) -> None:
        response = self.client.get(
            "/api/dashboard/summary",
            params={"start": "31/12/2023 00:00", "end": "05/01/2024 09:00"},
        )

        income = response.json()["income"]
        self.assertEqual((income["total_cents"], income["transaction_count"]), (249900, 2))
        self.assertEqual(income["period_end_iso"], "2024-01-05T09:00:59.999000")

    def test_bad_date_format(self) -> None:
        for params in (
            {"start": "2024-01-01", "end": "05/01/2024 09:00"},
            {"start": "01/01/2024 00:00"},
        ):
            with self.subTest(params=params):
                response = self.client.get("/api/dashboard/summary", params=params)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(
                    response.json()["detail"], "Invalid date format. Use DD/MM/YYYY HH:mm."
                )

    def test_reversed_range(self) -> None:
        response = self.client.get(
            "/api/dashboard/summary",
            params={"start": "05/01/2024 09:00", "end": "01/01/2024 00:00"},
        )

        self.assertEqual(response.status_code, 422)


class CategoryPickingProvider:
    """Suggests the category with the configured name."""

    def __init__(self, category_name: str) -> None:
        self.category_name = category_name
        self.transactions = []

    def suggest(self, transaction, categories) -> CategorySuggestion:
        self.transactions.append(transaction["id"])
        category = next(row for row in categories if row["name"] == self.category_name)
        return CategorySuggestion(
            suggested_category_id=category["id"], confidence_score=0.87, reasoning="Paycheck."
        )


class SuggestionApiTests(ApiTestCase):
    def setUp(self) -> None:
        self.settings = Settings(database_url="sqlite://", log_level="WARNING")
        self.store = BudgetStore.from_url(self.settings.database_url)
        self.provider = CategoryPickingProvider("Salary")
        self.client = TestClient(
            create_app(self.settings, self.store, suggestion_provider=self.provider)
        )
        self.signup()
        self.transaction_id = self.create_transaction().json()["id"]

    def suggestion(self) -> dict:
        response = self.client.get(
            f"/api/rest/v1/ai_suggestions?transaction_id=eq.{self.transaction_id}"
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def review(self, suggestion_id: str, approved):
        return self.client.post(
            "/api/rest/v1/rpc/handle_ai_suggestion",
            json={"suggestion_id": suggestion_id, "approved": approved},
        )

    def test_suggestion_generated_after_create(self) -> None:
        suggestion = self.suggestion()

        self.assertEqual(self.provider.transactions, [self.transaction_id])
        self.assertEqual(suggestion["transaction_id"], self.transaction_id)
        self.assertEqual(suggestion["confidence_score"], 0.87)
        self.assertIsNone(suggestion["approved"])
        self.assertEqual(suggestion["categories"], {"name": "Salary"})

    def test_approve_sets_category(self) -> None:
        response = self.review(self.suggestion()["id"], True)

        self.assertEqual(response.status_code, 200, response.text)
        self.assertTrue(response.json()["approved"])
        transaction = self.client.get(
            f"/api/rest/v1/transactions?id=eq.{self.transaction_id}"
        ).json()
        self.assertEqual(transaction["categoryName"], "Salary")

    def test_reject_then_review_again_conflicts(self) -> None:
        suggestion_id = self.suggestion()["id"]

        rejected = self.review(suggestion_id, False)
        self.assertFalse(rejected.json()["approved"])

        again = self.review(suggestion_id, True)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["detail"], "Suggestion has already been reviewed.")

    def test_review_validation(self) -> None:
        response = self.review("not-a-uuid", "yes")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(
            [error["field"] for error in response.json()["errors"]],
            ["suggestion_id", "approved"],
        )

    def test_unknown_suggestion(self) -> None:
        self.assertEqual(self.review(MISSING_ID, True).status_code, 404)
        missing = self.client.get(f"/api/rest/v1/ai_suggestions?transaction_id=eq.{MISSING_ID}")
        self.assertEqual(missing.status_code, 404)

    def test_transaction_filter_is_required(self) -> None:
        response = self.client.get("/api/rest/v1/ai_suggestions")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["detail"],
            "Transaction ID is required in format: ?transaction_id=eq.{transaction_id}",
        )


if __name__ == "__main__":
    unittest.main()
