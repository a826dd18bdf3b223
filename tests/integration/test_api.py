"""Integration tests for API endpoints"""

from decimal import Decimal
from fastapi.testclient import TestClient

ALICE = {"X-User-ID": "alice"}


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "zimcrowd_ledger_mutations_total" in response.text


def test_request_id_header_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_missing_user_header_is_unauthenticated(client: TestClient):
    response = client.get("/v1/wallets/balance")

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


def test_wallet_deposit_withdraw_and_history(client: TestClient):
    response = client.post("/v1/wallets/deposit", json={"amount_cents": 5_000, "reference_id": "dep-1"}, headers=ALICE)
    assert response.status_code == 200
    assert response.json() == {"user_id": "alice", "cash_cents": 5_000, "credit_cents": 0}

    response = client.post("/v1/wallets/withdraw", json={"amount_cents": 2_000}, headers=ALICE)
    assert response.json()["cash_cents"] == 3_000

    history = client.get("/v1/wallets/history", headers=ALICE).json()
    assert [entry["entry_type"] for entry in history["entries"]] == ["WITHDRAWAL", "DEPOSIT"]

    reconcile = client.get("/v1/wallets/reconcile", headers=ALICE).json()
    assert reconcile["consistent"] is True
    assert reconcile["ledger_balance_cents"] == 3_000


def test_overdraw_maps_to_payment_required(client: TestClient):
    response = client.post("/v1/wallets/withdraw", json={"amount_cents": 100}, headers=ALICE)

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "insufficient_funds"
    assert body["details"]["available_cents"] == 0


def test_request_validation_for_non_positive_amount(client: TestClient):
    response = client.post("/v1/wallets/deposit", json={"amount_cents": 0}, headers=ALICE)
    assert response.status_code == 422


def test_signup_bonus_then_conflict(client: TestClient):
    response = client.post("/v1/wallets/signup-bonus", headers=ALICE)
    assert response.json()["credit_cents"] == 2_500

    response = client.post("/v1/wallets/signup-bonus", headers=ALICE)
    assert response.status_code == 409

    stats = client.get("/v1/wallets/statistics", headers=ALICE).json()
    assert stats["total_earned_cents"] == 2_500
    assert stats["by_type"] == {"SIGNUP_BONUS": 2_500}


def test_cold_start_ceiling_maps_to_unprocessable(client: TestClient):
    response = client.post(
        "/v1/primary/listings",
        json={"amount_cents": 50_000, "term_months": 6, "rate": "0.05"},
        headers=ALICE,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "cold_start_limit_exceeded"
    assert body["details"]["ceiling_cents"] == 10_000


def test_unknown_listing_is_not_found(client: TestClient):
    response = client.get("/v1/primary/listings/00000000-0000-0000-0000-000000000000")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_borrower_fee_quote(client: TestClient):
    response = client.get("/v1/fees/borrower", params={"amount": "1000", "term_months": 12, "annual_rate_percent": "8"})

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["total_upfront_fees"]) == Decimal("150.00")
    assert Decimal(data["net_amount"]) == Decimal("850.00")
    assert Decimal(data["monthly_payment"]) == Decimal("86.99")
    assert Decimal(data["total_monthly_payment"]) == Decimal("101.34")
    assert data["true_annual_effective_rate"] is not None


def test_borrower_fee_quote_rate_cap(client: TestClient):
    response = client.get("/v1/fees/borrower", params={"amount": "1000", "term_months": 12, "annual_rate_percent": "11"})
    assert response.status_code == 422


def test_lender_fee_quote_variants(client: TestClient):
    params = {"investment_amount": "100", "loan_amount": "1000", "monthly_payment": "86.99", "term_months": 12}

    marketplace = client.get("/v1/fees/lender", params=params).json()
    creation = client.get("/v1/fees/lender", params={**params, "variant": "investment_creation"}).json()

    assert Decimal(marketplace["net_investment"]) == Decimal("85.00")
    assert Decimal(creation["insurance_fee"]) == Decimal("3.00")
    assert Decimal(creation["net_investment"]) == Decimal("87.00")


def test_late_deal_and_coverage_quotes(client: TestClient):
    late = client.get("/v1/fees/late", params={"remaining_balance": "100"}).json()
    assert Decimal(late["total"]) == Decimal("50.00")

    deal = client.get("/v1/fees/deal", params={"sale_price": "500"}).json()
    assert Decimal(deal["amount"]) == Decimal("10.00")

    coverage = client.get("/v1/fees/coverage", params={"amount_due": "100", "days_late": 10}).json()
    assert coverage["coverage_percentage"] == 60
    assert Decimal(coverage["offer_amount_credits"]) == Decimal("60.00")


def test_direct_loan_quote(client: TestClient):
    data = client.get("/v1/fees/direct", params={"amount": "100", "score": 95}).json()

    assert data["fee_percentage"] == 5
    assert Decimal(data["fixed_fee"]) == Decimal("5.00")
    assert Decimal(data["total_repayment"]) == Decimal("105.00")
    assert Decimal(data["apr"]) == Decimal("60.83")
    assert Decimal(data["max_loan_amount"]) == Decimal("1000.00")
