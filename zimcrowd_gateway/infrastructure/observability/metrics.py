"""Prometheus metrics for ledger activity, marketplace settlement, and notification delivery"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_mutation_counter = Counter(
    "zimcrowd_ledger_mutations_total",
    "Wallet balance mutations",
    ["wallet", "direction"],  # cash | credit, credit | debit
)

ledger_rejection_counter = Counter(
    "zimcrowd_ledger_rejections_total",
    "Wallet mutations refused",
    ["reason"],  # insufficient_funds | invalid_amount
)

# Primary market metrics
funding_offer_counter = Counter(
    "zimcrowd_funding_offers_total",
    "Funding offer outcomes",
    ["outcome"],  # submitted | accepted | capped | overshoot_rejected | rejected | withdrawn | expired
)

listing_counter = Counter(
    "zimcrowd_listings_total",
    "Loan listing lifecycle events",
    ["event"],  # created | funded | cancelled | expired | cold_start_rejected
)

# Secondary market metrics
secondary_sale_counter = Counter(
    "zimcrowd_secondary_sales_total",
    "Completed holding resales",
)

secondary_deal_fee_cents = Counter(
    "zimcrowd_secondary_deal_fees_cents_total",
    "Deal fees collected on resales, in cents",
)

# Coverage metrics
coverage_offer_counter = Counter(
    "zimcrowd_coverage_offers_total",
    "Payment coverage offer outcomes",
    ["outcome"],  # created | accepted | declined | expired
)

# Repayments
installment_payment_counter = Counter(
    "zimcrowd_installment_payments_total",
    "Installments paid by borrowers",
    ["timeliness"],  # on_time | late | after_coverage
)

# Direct loans
direct_loan_counter = Counter(
    "zimcrowd_direct_loans_total",
    "Direct loan lifecycle events",
    ["event"],  # offered | signed | disbursed | repaid | late
)

# Notification webhook metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification dispatcher response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_funding_outcome(outcome: str) -> None:
    funding_offer_counter.labels(outcome=outcome).inc()


def record_secondary_sale(deal_fee: int) -> None:
    """Count a resale and the platform fee it produced"""
    secondary_sale_counter.inc()
    if deal_fee > 0:
        secondary_deal_fee_cents.inc(deal_fee)
