# Overview: Pytest coverage for cashbox API routes.

ACTOR = {"X-User-Id": "3"}


class TestCashboxRoutes:
    def test_balance(self, client, cashbox):
        data = client.get("/api/cashbox/balance").get_json()
        assert data["balance_usd"] == 1000.0
        assert data["cash_balance_lbp"] == 10_000_000
        assert data["lbp_per_usd"] == 89000

    def test_set_capital(self, client, cashbox):
        response = client.post("/api/cashbox/capital", json={"amount_usd": "2,500", "account_type": "wish"}, headers=ACTOR)
        assert response.status_code == 201
        data = response.get_json()
        assert data["wish_balance_usd"] == 2500.0
        assert data["cash_balance_usd"] == 0.0
        assert data["capital_set_by_user_id"] == 3

    def test_edit_capital(self, client, cashbox):
        response = client.put("/api/cashbox/capital", json={"amount_usd": 1100, "amount_lbp": 10_000_000})
        assert response.status_code == 200
        assert response.get_json()["balance_usd"] == 1100.0

    def test_income_and_expense(self, client, cashbox):
        assert client.post("/api/cashbox/income", json={"amount_usd": 50, "description": "Tips"}).status_code == 201
        response = client.post("/api/cashbox/expense", json={
            "amount_usd": 20, "description": "Fuel", "category": "Operations / Fleet",
        })
        assert response.status_code == 201
        assert response.get_json()["balance_usd"] == 1030.0

    def test_expense_requires_description(self, client, cashbox):
        response = client.post("/api/cashbox/expense", json={"amount_usd": 20})
        assert response.status_code == 400

    def test_negative_amount_rejected(self, client, cashbox):
        response = client.post("/api/cashbox/income", json={"amount_usd": -5, "description": "x"})
        assert response.status_code == 400
        assert "amount_usd" in response.get_json()["error"]

    def test_boolean_amount_rejected(self, client, cashbox):
        response = client.post("/api/cashbox/expense-capital", json={"amount_usd": True})
        assert response.status_code == 400

    def test_invalid_account_rejected(self, client, cashbox):
        response = client.post("/api/cashbox/income", json={"amount_usd": 5, "description": "x", "account_type": "bank"})
        assert response.status_code == 400

    def test_capital_expense(self, client, cashbox):
        response = client.post("/api/cashbox/expense-capital", json={"amount_lbp": 1_000_000})
        assert response.status_code == 201
        assert response.get_json()["balance_lbp"] == 9_000_000

    def test_transfer(self, client, cashbox):
        response = client.post("/api/cashbox/transfer", json={
            "amount_usd": 100, "from_account": "cash", "to_account": "wish",
        })
        assert response.status_code == 201
        data = response.get_json()
        assert data["cash_balance_usd"] == 900.0
        assert data["wish_balance_usd"] == 100.0
        assert data["balance_usd"] == 1000.0

    def test_timeline(self, client, cashbox):
        client.post("/api/cashbox/income", json={"amount_usd": 1, "description": "latest"})
        data = client.get("/api/cashbox/timeline?limit=1").get_json()
        assert len(data["entries"]) == 1
        assert data["entries"][0]["description"] == "latest"

    def test_report(self, client, cashbox):
        client.post("/api/cashbox/expense", json={"amount_usd": 20, "description": "Fuel", "category": "Fuel"})
        response = client.get("/api/cashbox/report?date_from=2000-01-01&account_type=cash")
        assert response.status_code == 200
        types = {row["entry_type"] for row in response.get_json()["breakdown"]}
        assert {"capital_add", "expense"} <= types

    def test_report_bad_date(self, client, cashbox):
        assert client.get("/api/cashbox/report?date_from=yesterday").status_code == 400
