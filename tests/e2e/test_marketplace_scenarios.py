"""
End-to-end marketplace journeys through the HTTP API.

Personas:
- borrower: lists a loan, repays it
- lender_a / lender_b: fund listings, resell holdings
- platform: collects fees (settings.platform_user_id)
"""

from datetime import date, timedelta
from decimal import Decimal
import pytest
from fastapi.testclient import TestClient
from zimcrowd_gateway.config import settings
from zimcrowd_gateway.services.repayments import RepaymentService


def _as(user_id: str) -> dict:
    return {"X-User-ID": user_id}


def _balance(client: TestClient, user_id: str) -> dict:
    return client.get("/v1/wallets/balance", headers=_as(user_id)).json()


def _deposit(client: TestClient, user_id: str, amount_cents: int):
    response = client.post("/v1/wallets/deposit", json={"amount_cents": amount_cents}, headers=_as(user_id))
    assert response.status_code == 200


def _fund_listing(client: TestClient, borrower: str, lender: str, amount_cents: int, term_months: int, rate: str) -> dict:
    """List, offer and accept in one go; returns the funded listing"""
    _deposit(client, lender, amount_cents)
    listing = client.post(
        "/v1/primary/listings",
        json={"amount_cents": amount_cents, "term_months": term_months, "rate": rate, "purpose": "Inventory"},
        headers=_as(borrower),
    ).json()
    offer = client.post(
        f"/v1/primary/listings/{listing['id']}/offers",
        json={"offer_amount_cents": amount_cents, "offered_rate": rate},
        headers=_as(lender),
    ).json()
    response = client.post(f"/v1/primary/offers/{offer['id']}/accept", headers=_as(borrower))
    assert response.status_code == 200
    return client.get(f"/v1/primary/listings/{listing['id']}").json()


@pytest.mark.e2e
def test_first_time_borrower_lists_within_ceiling_and_gets_funded(client: TestClient, sent_notifications):
    """
    First loan is capped at $100; once funded the borrower receives the
    principal less 15% upfront fees and is told the loan is approved.
    """
    refused = client.post(
        "/v1/primary/listings",
        json={"amount_cents": 50_000, "term_months": 6, "rate": "0.05"},
        headers=_as("borrower"),
    )
    assert refused.status_code == 422
    assert refused.json()["details"]["ceiling_cents"] == 10_000

    listing = _fund_listing(client, "borrower", "lender_a", 10_000, 1, "0")

    assert listing["status"] == "funded"
    assert _balance(client, "borrower")["cash_cents"] == 8_500
    assert _balance(client, settings.platform_user_id)["cash_cents"] == 1_500
    assert sent_notifications[-1]["user_id"] == "borrower"
    assert sent_notifications[-1]["event_type"] == "loan_approved"
    assert sent_notifications[-1]["payload"]["loan_id"] == listing["loan_id"]

    portfolio = client.get("/v1/primary/portfolio", headers=_as("lender_a")).json()
    assert portfolio["total_invested_cents"] == 10_000
    assert portfolio["active_count"] == 1


@pytest.mark.e2e
def test_borrower_repays_and_lender_is_told_investment_matured(client: TestClient, sent_notifications):
    listing = _fund_listing(client, "borrower", "lender_a", 10_000, 1, "0")
    schedule = client.get(f"/v1/installments/loans/{listing['loan_id']}").json()
    (installment,) = schedule["installments"]
    assert installment["amount_due_cents"] == 10_000

    _deposit(client, "borrower", 2_100)
    response = client.post(f"/v1/installments/{installment['id']}/pay", headers=_as("borrower"))

    assert response.status_code == 200
    receipt = response.json()
    assert receipt["total_paid_cents"] == 10_600
    assert receipt["loan_completed"] is True
    assert _balance(client, "lender_a")["cash_cents"] == 9_500
    assert sent_notifications[-1]["user_id"] == "lender_a"
    assert sent_notifications[-1]["event_type"] == "investment_matured"

    schedule = client.get(f"/v1/installments/loans/{listing['loan_id']}").json()
    assert schedule["loan_status"] == "completed"

    # a repaid borrower is no longer held to the first-time ceiling
    response = client.post(
        "/v1/primary/listings",
        json={"amount_cents": 50_000, "term_months": 6, "rate": "0.05"},
        headers=_as("borrower"),
    )
    assert response.status_code == 201


@pytest.mark.e2e
def test_late_installment_covered_with_platform_credit(client: TestClient, db):
    """$100 installment ten days late: lender takes 60 credits, platform collects later"""
    listing = _fund_listing(client, "borrower", "lender_a", 10_000, 1, "0")
    (installment,) = client.get(f"/v1/installments/loans/{listing['loan_id']}").json()["installments"]
    # no cron in tests: run the late sweep as of ten days past due
    RepaymentService(db).mark_late_installments(as_of=date.fromisoformat(installment["due_date"]) + timedelta(days=10))

    offer = client.post(f"/v1/coverage/installments/{installment['id']}/offers", params={"days_late": 10})
    assert offer.status_code == 201
    assert offer.json()["offer_amount_credits_cents"] == 6_000
    duplicate = client.post(f"/v1/coverage/installments/{installment['id']}/offers", params={"days_late": 10})
    assert duplicate.status_code == 409

    pending = client.get("/v1/coverage/offers", headers=_as("lender_a")).json()
    assert [o["id"] for o in pending] == [offer.json()["id"]]

    accepted = client.post(f"/v1/coverage/offers/{offer.json()['id']}/accept", headers=_as("lender_a"))
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
    assert _balance(client, "lender_a")["credit_cents"] == 6_000

    (installment,) = client.get(f"/v1/installments/loans/{listing['loan_id']}").json()["installments"]
    assert installment["status"] == "covered_by_platform"

    platform_before = _balance(client, settings.platform_user_id)["cash_cents"]
    _deposit(client, "borrower", 7_100)
    receipt = client.post(f"/v1/installments/{installment['id']}/pay", headers=_as("borrower")).json()
    assert receipt["platform_cents"] == 15_600
    assert _balance(client, settings.platform_user_id)["cash_cents"] - platform_before == 15_600


@pytest.mark.e2e
def test_holding_resold_on_secondary_market(client: TestClient):
    """$500 sale: buyer pays $500, seller receives $490"""
    _fund_listing(client, "borrower", "lender_a", 10_000, 1, "0")
    holding = client.get("/v1/primary/portfolio", headers=_as("lender_a")).json()["holdings"][0]

    listing = client.post(
        "/v1/secondary/listings",
        json={"holding_id": holding["id"], "asking_price_cents": 50_000},
        headers=_as("lender_a"),
    )
    assert listing.status_code == 201
    listing_id = listing.json()["id"]

    _deposit(client, "lender_b", 50_000)
    offer = client.post(
        f"/v1/secondary/listings/{listing_id}/offers", json={"offer_price_cents": 50_000}, headers=_as("lender_b")
    ).json()
    assert client.get("/v1/secondary/offers", headers=_as("lender_b")).json()[0]["id"] == offer["id"]

    transfer = client.post(f"/v1/secondary/offers/{offer['id']}/accept", headers=_as("lender_a"))
    assert transfer.status_code == 200
    assert transfer.json()["deal_fee_cents"] == 1_000

    assert _balance(client, "lender_a")["cash_cents"] == 49_000
    assert _balance(client, "lender_b")["cash_cents"] == 0
    assert client.get(f"/v1/secondary/listings/{listing_id}").json()["status"] == "sold"
    new_owner = client.get("/v1/primary/portfolio", headers=_as("lender_b")).json()
    assert [h["id"] for h in new_owner["holdings"]] == [holding["id"]]


@pytest.mark.e2e
def test_funding_beyond_goal_is_refused(client: TestClient, experienced_borrower):
    experienced_borrower("borrower")
    _deposit(client, "lender_a", 60_000)
    _deposit(client, "lender_b", 50_000)
    listing = client.post(
        "/v1/primary/listings",
        json={"amount_cents": 100_000, "term_months": 12, "rate": "0.08"},
        headers=_as("borrower"),
    ).json()
    offers = [
        client.post(
            f"/v1/primary/listings/{listing['id']}/offers",
            json={"offer_amount_cents": amount, "offered_rate": "0.08"},
            headers=_as(lender),
        ).json()
        for lender, amount in (("lender_a", 60_000), ("lender_b", 50_000))
    ]

    assert client.post(f"/v1/primary/offers/{offers[0]['id']}/accept", headers=_as("borrower")).status_code == 200
    response = client.post(f"/v1/primary/offers/{offers[1]['id']}/accept", headers=_as("borrower"))

    assert response.status_code == 422
    assert response.json()["error"] == "funding_goal_exceeded"
    assert response.json()["details"]["remaining_cents"] == 40_000
    assert _balance(client, "lender_b")["cash_cents"] == 50_000


@pytest.mark.e2e
def test_direct_loan_journey(client: TestClient, sent_notifications):
    assert client.post("/v1/direct-loans/scores", json={"user_id": "chipo", "score": 95}).status_code == 200

    offer = client.post("/v1/direct-loans/offers", json={"amount_cents": 10_000}, headers=_as("chipo"))
    assert offer.status_code == 201
    assert Decimal(offer.json()["apr"]) == Decimal("60.83")

    loan = client.post(
        f"/v1/direct-loans/offers/{offer.json()['id']}/accept",
        json={"signature_name": "Chipo Ndlovu"},
        headers=_as("chipo"),
    )
    assert loan.status_code == 201
    loan_id = loan.json()["id"]

    assert client.post(f"/v1/direct-loans/{loan_id}/disburse", headers=_as("someone_else")).status_code == 403
    disbursed = client.post(f"/v1/direct-loans/{loan_id}/disburse", headers=_as("chipo"))
    assert disbursed.json()["status"] == "disbursed"
    assert _balance(client, "chipo")["cash_cents"] == 10_000
    assert sent_notifications[-1]["event_type"] == "loan_approved"

    _deposit(client, "chipo", 500)
    repaid = client.post(f"/v1/direct-loans/{loan_id}/repayments", json={"amount_cents": 10_500}, headers=_as("chipo"))
    assert repaid.json()["status"] == "repaid"
    assert [loan["id"] for loan in client.get("/v1/direct-loans", headers=_as("chipo")).json()] == [loan_id]


@pytest.mark.e2e
def test_default_and_recovery_through_jobs(client: TestClient):
    listing = _fund_listing(client, "borrower", "lender_a", 10_000, 1, "0")

    assert client.post(f"/v1/jobs/loans/{listing['loan_id']}/default").json()["affected"] == 1
    recoveries = client.post(f"/v1/jobs/loans/{listing['loan_id']}/recovery", json={"collected_cents": 5_000}).json()

    assert recoveries[0]["lender_id"] == "lender_a"
    assert Decimal(recoveries[0]["net_share"]) == Decimal("35.00")
    assert Decimal(recoveries[0]["loss"]) == Decimal("65.00")
    assert _balance(client, "lender_a")["cash_cents"] == 3_500

    # sweeps run cleanly with nothing due
    for job in (
        "expire-funding-offers",
        "expire-listings",
        "expire-secondary",
        "mark-late",
        "payment-reminders",
        "scan-coverage",
    ):
        response = client.post(f"/v1/jobs/{job}")
        assert response.status_code == 200
        assert response.json()["affected"] == 0


@pytest.mark.e2e
def test_borrower_reminded_before_due_date_and_told_when_overdue(client: TestClient, sent_notifications):
    listing = _fund_listing(client, "borrower", "lender_a", 10_000, 1, "0")
    (installment,) = client.get(f"/v1/installments/loans/{listing['loan_id']}").json()["installments"]
    due = date.fromisoformat(installment["due_date"])

    early = client.post("/v1/jobs/payment-reminders", params={"as_of": (due - timedelta(days=10)).isoformat()})
    assert early.json()["affected"] == 0

    response = client.post("/v1/jobs/payment-reminders", params={"as_of": (due - timedelta(days=2)).isoformat()})
    assert response.json()["affected"] == 1
    reminder = sent_notifications[-1]
    assert reminder["user_id"] == "borrower"
    assert reminder["event_type"] == "payment_reminder"
    assert reminder["payload"]["amount_due_cents"] == 10_000
    assert reminder["payload"]["due_date"] == installment["due_date"]

    response = client.post("/v1/jobs/mark-late", params={"as_of": (due + timedelta(days=3)).isoformat()})
    assert response.json()["affected"] == 1
    overdue = sent_notifications[-1]
    assert overdue["user_id"] == "borrower"
    assert overdue["event_type"] == "payment_overdue"
    assert overdue["payload"]["days_late"] == 3
    assert overdue["payload"]["loan_id"] == listing["loan_id"]
