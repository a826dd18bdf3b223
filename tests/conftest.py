"""Pytest fixtures for testing"""

import json
import httpx
import pytest
from decimal import Decimal
from typing import Callable, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from zimcrowd_gateway.api.dependencies import get_notification_client
from zimcrowd_gateway.api.main import create_app
from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.models import FundingOfferStatus, LoanStatus
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient
from zimcrowd_gateway.infrastructure.database.models import Base, Loan
from zimcrowd_gateway.infrastructure.database.session import get_db
from zimcrowd_gateway.services.ledger import LedgerService
from zimcrowd_gateway.services.primary_market import PrimaryMarketService

PLATFORM = settings.platform_user_id


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    """Fresh SQLite file per test so several sessions can share it"""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create test database session"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def other_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Second session for interleaving concurrent requests"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def sent_notifications() -> List[dict]:
    return []


@pytest.fixture
def client(db: Session, sent_notifications: List[dict]) -> TestClient:
    """Create FastAPI test client with test database and a stubbed notification dispatcher"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def record(request: httpx.Request) -> httpx.Response:
        sent_notifications.append(json.loads(request.content))
        return httpx.Response(202)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_client] = lambda: NotificationClient(
        webhook_url="http://dispatcher.test/notifications", transport=httpx.MockTransport(record)
    )
    return TestClient(app)


@pytest.fixture
def fund(db: Session) -> Callable[[str, int], int]:
    """Deposit cash into a user's wallet"""

    def _fund(user_id: str, amount_cents: int) -> int:
        return LedgerService(db).deposit(user_id, amount_cents, reference_id="test-deposit")

    return _fund


@pytest.fixture
def experienced_borrower(db: Session) -> Callable[[str], str]:
    """Give a borrower a completed loan so the cold-start ceiling no longer applies"""

    def _make(borrower_id: str) -> str:
        db.add(
            Loan(
                borrower_id=borrower_id,
                principal_cents=5_000,
                annual_rate=Decimal("0.05"),
                term_months=1,
                monthly_payment_cents=5_021,
                status=LoanStatus.COMPLETED,
            )
        )
        db.commit()
        return borrower_id

    return _make


@pytest.fixture
def funded_loan(db: Session, fund):
    """
    A $100, one-month, zero-rate loan fully funded by one lender.

    Its single installment is exactly $100.00 of principal.
    """

    def _make(borrower_id: str = "borrower_1", lender_id: str = "lender_1"):
        market = PrimaryMarketService(db)
        fund(lender_id, 10_000)
        listing = market.create_listing(borrower_id, 10_000, 1, "0", "School fees")
        offer = market.submit_offer(lender_id, listing.id, 10_000, "0")
        offer = market.accept_offer(borrower_id, offer.id)
        assert offer.status == FundingOfferStatus.ACCEPTED
        db.refresh(listing)
        return listing.loan

    return _make
