"""Data access layer for marketplace entities

Guarded transitions use a single conditional UPDATE and report whether a row
matched; the database is the serialization point for concurrent requests.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
from sqlalchemy import update, select, func, case, and_, exists
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
from zimcrowd_gateway.infrastructure.database.models import (
    WalletBalance,
    LedgerEntry,
    ZimScore,
    Loan,
    LoanListing,
    FundingOffer,
    LoanHolding,
    HoldingTransfer,
    SecondaryListing,
    PurchaseOffer,
    Installment,
    CoverageOffer,
    DirectLoanOffer,
    DirectLoan,
    DirectLoanRepayment,
)
from zimcrowd_gateway.domain.models import (
    WalletType,
    LedgerEntryType,
    ListingStatus,
    LoanStatus,
    FundingOfferStatus,
    HoldingStatus,
    SecondaryListingStatus,
    PurchaseOfferStatus,
    InstallmentStatus,
    CoverageOfferStatus,
    DirectOfferStatus,
    DirectLoanStatus,
    FUNDABLE_LISTING_STATUSES,
    MarketplaceFilters,
    Page,
    ScheduledInstallment,
)


def _paginate(db: Session, query, page: int, limit: int) -> Page:
    page = max(page, 1)
    total = db.execute(select(func.count()).select_from(query.order_by(None).subquery())).scalar_one()
    items = db.execute(query.offset((page - 1) * limit).limit(limit)).scalars().all()
    return Page(items=list(items), page=page, limit=limit, total=total)


class WalletRepository:
    """Repository for wallet balances and the ledger"""

    def __init__(self, db: Session):
        self.db = db

    def ensure_wallet(self, user_id: str, wallet_type: WalletType) -> None:
        """Create a zero balance row if the user has none for this wallet"""
        dialect = self.db.get_bind().dialect.name
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        self.db.execute(
            insert(WalletBalance)
            .values(user_id=user_id, wallet_type=wallet_type, balance_cents=0)
            .on_conflict_do_nothing(index_elements=["user_id", "wallet_type"])
        )

    def get_balance(self, user_id: str, wallet_type: WalletType) -> int:
        balance = self.db.execute(
            select(WalletBalance.balance_cents).where(
                WalletBalance.user_id == user_id,
                WalletBalance.wallet_type == wallet_type,
            )
        ).scalar_one_or_none()
        return balance or 0

    def increment(self, user_id: str, wallet_type: WalletType, amount_cents: int) -> int:
        """Add to the balance in place and return the new balance"""
        self.ensure_wallet(user_id, wallet_type)
        self.db.execute(
            update(WalletBalance)
            .where(WalletBalance.user_id == user_id, WalletBalance.wallet_type == wallet_type)
            .values(balance_cents=WalletBalance.balance_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )
        return self.get_balance(user_id, wallet_type)

    def decrement_if_sufficient(self, user_id: str, wallet_type: WalletType, amount_cents: int) -> Optional[int]:
        """
        Subtract from the balance only if it stays non-negative.

        Check and write are one statement. Returns the new balance, or None
        when the wallet cannot cover the amount.
        """
        result = self.db.execute(
            update(WalletBalance)
            .where(
                WalletBalance.user_id == user_id,
                WalletBalance.wallet_type == wallet_type,
                WalletBalance.balance_cents >= amount_cents,
            )
            .values(balance_cents=WalletBalance.balance_cents - amount_cents)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return self.get_balance(user_id, wallet_type)

    def add_entry(
        self,
        user_id: str,
        wallet_type: WalletType,
        amount_cents: int,
        balance_after_cents: int,
        entry_type: LedgerEntryType,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            user_id=user_id,
            wallet_type=wallet_type,
            amount_cents=amount_cents,
            balance_after_cents=balance_after_cents,
            entry_type=entry_type,
            reference_id=reference_id,
            notes=notes,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_entries(
        self,
        user_id: str,
        wallet_type: Optional[WalletType] = None,
        limit: int = 50,
    ) -> List[LedgerEntry]:
        query = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if wallet_type is not None:
            query = query.where(LedgerEntry.wallet_type == wallet_type)
        query = query.order_by(LedgerEntry.created_at.desc()).limit(limit)
        return list(self.db.execute(query).scalars().all())

    def sum_entries(self, user_id: str, wallet_type: WalletType) -> int:
        total = self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount_cents), 0)).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.wallet_type == wallet_type,
            )
        ).scalar_one()
        return int(total)

    def totals_by_type(self, user_id: str, wallet_type: WalletType) -> List[Tuple[LedgerEntryType, int]]:
        rows = self.db.execute(
            select(LedgerEntry.entry_type, func.sum(LedgerEntry.amount_cents))
            .where(LedgerEntry.user_id == user_id, LedgerEntry.wallet_type == wallet_type)
            .group_by(LedgerEntry.entry_type)
        ).all()
        return [(entry_type, int(total)) for entry_type, total in rows]

    def has_entry_of_type(self, user_id: str, entry_type: LedgerEntryType) -> bool:
        return self.db.execute(
            select(exists().where(LedgerEntry.user_id == user_id, LedgerEntry.entry_type == entry_type))
        ).scalar_one()


class ScoreRepository:
    """Repository for ZimScore snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[ZimScore]:
        return self.db.get(ZimScore, user_id)

    def upsert(self, user_id: str, score_value: int, max_loan_amount_cents: int) -> ZimScore:
        record = self.get(user_id)
        if record is None:
            record = ZimScore(user_id=user_id)
            self.db.add(record)
        record.score_value = score_value
        record.max_loan_amount_cents = max_loan_amount_cents
        self.db.flush()
        return record


class ListingRepository:
    """Repository for primary-market loans, listings and funding offers"""

    def __init__(self, db: Session):
        self.db = db

    def has_completed_loan(self, borrower_id: str) -> bool:
        return self.db.execute(
            select(exists().where(Loan.borrower_id == borrower_id, Loan.status == LoanStatus.COMPLETED))
        ).scalar_one()

    def create_listing(
        self,
        borrower_id: str,
        amount_cents: int,
        term_months: int,
        rate: Decimal,
        monthly_payment_cents: int,
        purpose: Optional[str],
        is_first_time: bool,
        funding_deadline: datetime,
    ) -> LoanListing:
        """Create the loan and its marketplace listing together"""
        loan = Loan(
            borrower_id=borrower_id,
            principal_cents=amount_cents,
            annual_rate=rate,
            term_months=term_months,
            monthly_payment_cents=monthly_payment_cents,
            purpose=purpose,
            status=LoanStatus.PENDING,
        )
        self.db.add(loan)
        self.db.flush()

        listing = LoanListing(
            loan_id=loan.id,
            borrower_id=borrower_id,
            principal_requested_cents=amount_cents,
            term_months=term_months,
            requested_rate=rate,
            funding_goal_cents=amount_cents,
            amount_funded_cents=0,
            purpose=purpose,
            is_first_time_borrower=is_first_time,
            status=ListingStatus.ACTIVE,
            funding_deadline=funding_deadline,
        )
        self.db.add(listing)
        self.db.flush()
        return listing

    def get_listing(self, listing_id: uuid.UUID) -> Optional[LoanListing]:
        return self.db.get(LoanListing, listing_id)

    def get_loan(self, loan_id: uuid.UUID) -> Optional[Loan]:
        return self.db.get(Loan, loan_id)

    def transition_loan(
        self,
        loan_id: uuid.UUID,
        from_statuses: Sequence[LoanStatus],
        to_status: LoanStatus,
        **values,
    ) -> bool:
        result = self.db.execute(
            update(Loan)
            .where(Loan.id == loan_id, Loan.status.in_(from_statuses))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def browse(self, filters: MarketplaceFilters) -> Page:
        """Fundable listings, newest first"""
        query = select(LoanListing).where(LoanListing.status.in_(FUNDABLE_LISTING_STATUSES))
        if filters.min_amount_cents is not None:
            query = query.where(LoanListing.principal_requested_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            query = query.where(LoanListing.principal_requested_cents <= filters.max_amount_cents)
        if filters.max_rate is not None:
            query = query.where(LoanListing.requested_rate <= filters.max_rate)
        if filters.term_months is not None:
            query = query.where(LoanListing.term_months == filters.term_months)
        query = query.order_by(LoanListing.created_at.desc(), LoanListing.id)
        return _paginate(self.db, query, filters.page, filters.limit)

    def try_add_funding(self, listing_id: uuid.UUID, amount_cents: int, now: datetime) -> bool:
        """
        Atomically add to amount_funded if the goal is not overshot and the
        funding deadline has not passed.

        The listing moves to funded when the goal is met exactly, otherwise to
        partially_funded. Returns False when the guard did not match.
        """
        new_total = LoanListing.amount_funded_cents + amount_cents
        result = self.db.execute(
            update(LoanListing)
            .where(
                LoanListing.id == listing_id,
                LoanListing.status.in_(FUNDABLE_LISTING_STATUSES),
                LoanListing.funding_deadline > now,
                new_total <= LoanListing.funding_goal_cents,
            )
            .values(
                amount_funded_cents=new_total,
                status=case(
                    (new_total >= LoanListing.funding_goal_cents, ListingStatus.FUNDED.value),
                    else_=ListingStatus.PARTIALLY_FUNDED.value,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def transition_listing(
        self,
        listing_id: uuid.UUID,
        from_statuses: Sequence[ListingStatus],
        to_status: ListingStatus,
        require_unfunded: bool = False,
    ) -> bool:
        conditions = [LoanListing.id == listing_id, LoanListing.status.in_(from_statuses)]
        if require_unfunded:
            conditions.append(LoanListing.amount_funded_cents == 0)
        result = self.db.execute(
            update(LoanListing)
            .where(*conditions)
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def get_expired_listings(self, now: datetime) -> List[LoanListing]:
        return list(
            self.db.execute(
                select(LoanListing).where(
                    LoanListing.status.in_(FUNDABLE_LISTING_STATUSES),
                    LoanListing.funding_deadline < now,
                )
            ).scalars().all()
        )

    def create_offer(
        self,
        listing_id: uuid.UUID,
        lender_id: str,
        offer_amount_cents: int,
        offered_rate: Decimal,
        funding_wallet: WalletType,
        expires_at: datetime,
    ) -> FundingOffer:
        offer = FundingOffer(
            listing_id=listing_id,
            lender_id=lender_id,
            offer_amount_cents=offer_amount_cents,
            offered_rate=offered_rate,
            funding_wallet=funding_wallet,
            status=FundingOfferStatus.PENDING,
            expires_at=expires_at,
        )
        self.db.add(offer)
        self.db.flush()
        return offer

    def get_offer(self, offer_id: uuid.UUID) -> Optional[FundingOffer]:
        return self.db.get(FundingOffer, offer_id)

    def transition_offer(
        self,
        offer_id: uuid.UUID,
        to_status: FundingOfferStatus,
        responded_at: datetime,
        funded_amount_cents: Optional[int] = None,
    ) -> bool:
        """Move a pending offer to its next status; False if it was no longer pending"""
        values = {"status": to_status, "responded_at": responded_at}
        if funded_amount_cents is not None:
            values["funded_amount_cents"] = funded_amount_cents
        result = self.db.execute(
            update(FundingOffer)
            .where(FundingOffer.id == offer_id, FundingOffer.status == FundingOfferStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reject_pending_offers(self, listing_id: uuid.UUID, responded_at: datetime) -> int:
        result = self.db.execute(
            update(FundingOffer)
            .where(FundingOffer.listing_id == listing_id, FundingOffer.status == FundingOfferStatus.PENDING)
            .values(status=FundingOfferStatus.REJECTED, responded_at=responded_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def expire_offers(self, now: datetime) -> int:
        result = self.db.execute(
            update(FundingOffer)
            .where(FundingOffer.status == FundingOfferStatus.PENDING, FundingOffer.expires_at < now)
            .values(status=FundingOfferStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class HoldingRepository:
    """Repository for loan investment holdings and their transfers"""

    def __init__(self, db: Session):
        self.db = db

    def create_holding(
        self,
        loan_id: uuid.UUID,
        lender_id: str,
        principal_cents: int,
        share_percentage: Decimal,
        funding_offer_id: Optional[uuid.UUID] = None,
        funding_wallet: WalletType = WalletType.CASH,
    ) -> LoanHolding:
        holding = LoanHolding(
            loan_id=loan_id,
            lender_id=lender_id,
            funding_offer_id=funding_offer_id,
            funding_wallet=funding_wallet,
            principal_cents=principal_cents,
            outstanding_cents=principal_cents,
            share_percentage=share_percentage,
            status=HoldingStatus.ACTIVE,
            is_for_sale=False,
        )
        self.db.add(holding)
        self.db.flush()
        return holding

    def get(self, holding_id: uuid.UUID) -> Optional[LoanHolding]:
        return self.db.get(LoanHolding, holding_id)

    def get_for_loan(self, loan_id: uuid.UUID, status: Optional[HoldingStatus] = HoldingStatus.ACTIVE) -> List[LoanHolding]:
        query = select(LoanHolding).where(LoanHolding.loan_id == loan_id)
        if status is not None:
            query = query.where(LoanHolding.status == status)
        return list(self.db.execute(query.order_by(LoanHolding.created_at)).scalars().all())

    def get_for_lender(self, lender_id: str) -> List[LoanHolding]:
        return list(
            self.db.execute(
                select(LoanHolding).where(LoanHolding.lender_id == lender_id).order_by(LoanHolding.created_at.desc())
            ).scalars().all()
        )

    def set_for_sale(self, holding_id: uuid.UUID, owner_id: str, for_sale: bool) -> bool:
        """Flip the for-sale flag on an active holding still owned by `owner_id`"""
        result = self.db.execute(
            update(LoanHolding)
            .where(
                LoanHolding.id == holding_id,
                LoanHolding.lender_id == owner_id,
                LoanHolding.status == HoldingStatus.ACTIVE,
                LoanHolding.is_for_sale == (not for_sale),
            )
            .values(is_for_sale=for_sale)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def try_transfer(self, holding_id: uuid.UUID, seller_id: str, buyer_id: str) -> bool:
        """Move ownership only if the seller still owns it and it is still for sale"""
        result = self.db.execute(
            update(LoanHolding)
            .where(
                LoanHolding.id == holding_id,
                LoanHolding.lender_id == seller_id,
                LoanHolding.status == HoldingStatus.ACTIVE,
                LoanHolding.is_for_sale == True,  # noqa: E712
            )
            .values(lender_id=buyer_id, is_for_sale=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_transfer(
        self,
        holding_id: uuid.UUID,
        secondary_listing_id: uuid.UUID,
        from_lender_id: str,
        to_lender_id: str,
        price_cents: int,
        deal_fee_cents: int,
    ) -> HoldingTransfer:
        transfer = HoldingTransfer(
            holding_id=holding_id,
            secondary_listing_id=secondary_listing_id,
            from_lender_id=from_lender_id,
            to_lender_id=to_lender_id,
            price_cents=price_cents,
            deal_fee_cents=deal_fee_cents,
        )
        self.db.add(transfer)
        self.db.flush()
        return transfer

    def reduce_outstanding(self, holding_id: uuid.UUID, principal_cents: int) -> None:
        self.db.execute(
            update(LoanHolding)
            .where(LoanHolding.id == holding_id)
            .values(
                outstanding_cents=case(
                    (LoanHolding.outstanding_cents > principal_cents, LoanHolding.outstanding_cents - principal_cents),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )

    def close(self, holding_id: uuid.UUID) -> None:
        self.db.execute(
            update(LoanHolding)
            .where(LoanHolding.id == holding_id)
            .values(status=HoldingStatus.CLOSED, is_for_sale=False)
            .execution_options(synchronize_session=False)
        )


class SecondaryMarketRepository:
    """Repository for secondary-market listings and purchase offers"""

    def __init__(self, db: Session):
        self.db = db

    def create_listing(
        self,
        holding: LoanHolding,
        asking_price_cents: int,
        listing_expiry: datetime,
    ) -> SecondaryListing:
        listing = SecondaryListing(
            holding_id=holding.id,
            seller_id=holding.lender_id,
            asking_price_cents=asking_price_cents,
            outstanding_cents=holding.outstanding_cents,
            status=SecondaryListingStatus.ACTIVE,
            listing_expiry=listing_expiry,
        )
        self.db.add(listing)
        self.db.flush()
        return listing

    def get_listing(self, listing_id: uuid.UUID) -> Optional[SecondaryListing]:
        return self.db.get(SecondaryListing, listing_id)

    def browse(self, max_price_cents: Optional[int], page: int, limit: int) -> Page:
        query = select(SecondaryListing).where(SecondaryListing.status == SecondaryListingStatus.ACTIVE)
        if max_price_cents is not None:
            query = query.where(SecondaryListing.asking_price_cents <= max_price_cents)
        query = query.order_by(SecondaryListing.created_at.desc(), SecondaryListing.id)
        return _paginate(self.db, query, page, limit)

    def transition_listing(
        self,
        listing_id: uuid.UUID,
        to_status: SecondaryListingStatus,
    ) -> bool:
        result = self.db.execute(
            update(SecondaryListing)
            .where(SecondaryListing.id == listing_id, SecondaryListing.status == SecondaryListingStatus.ACTIVE)
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def get_expired_listings(self, now: datetime) -> List[SecondaryListing]:
        return list(
            self.db.execute(
                select(SecondaryListing).where(
                    SecondaryListing.status == SecondaryListingStatus.ACTIVE,
                    SecondaryListing.listing_expiry < now,
                )
            ).scalars().all()
        )

    def create_offer(
        self,
        listing_id: uuid.UUID,
        buyer_id: str,
        offer_price_cents: int,
        expires_at: datetime,
    ) -> PurchaseOffer:
        offer = PurchaseOffer(
            secondary_listing_id=listing_id,
            buyer_id=buyer_id,
            offer_price_cents=offer_price_cents,
            status=PurchaseOfferStatus.PENDING,
            expires_at=expires_at,
        )
        self.db.add(offer)
        self.db.flush()
        return offer

    def get_offer(self, offer_id: uuid.UUID) -> Optional[PurchaseOffer]:
        return self.db.get(PurchaseOffer, offer_id)

    def get_offers_for_buyer(self, buyer_id: str) -> List[PurchaseOffer]:
        return list(
            self.db.execute(
                select(PurchaseOffer).where(PurchaseOffer.buyer_id == buyer_id).order_by(PurchaseOffer.created_at.desc())
            ).scalars().all()
        )

    def transition_offer(self, offer_id: uuid.UUID, to_status: PurchaseOfferStatus, responded_at: datetime) -> bool:
        result = self.db.execute(
            update(PurchaseOffer)
            .where(PurchaseOffer.id == offer_id, PurchaseOffer.status == PurchaseOfferStatus.PENDING)
            .values(status=to_status, responded_at=responded_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reject_pending_offers(
        self,
        listing_id: uuid.UUID,
        responded_at: datetime,
        except_offer_id: Optional[uuid.UUID] = None,
    ) -> int:
        conditions = [
            PurchaseOffer.secondary_listing_id == listing_id,
            PurchaseOffer.status == PurchaseOfferStatus.PENDING,
        ]
        if except_offer_id is not None:
            conditions.append(PurchaseOffer.id != except_offer_id)
        result = self.db.execute(
            update(PurchaseOffer)
            .where(*conditions)
            .values(status=PurchaseOfferStatus.REJECTED, responded_at=responded_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def expire_offers(self, now: datetime) -> int:
        result = self.db.execute(
            update(PurchaseOffer)
            .where(PurchaseOffer.status == PurchaseOfferStatus.PENDING, PurchaseOffer.expires_at < now)
            .values(status=PurchaseOfferStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class InstallmentRepository:
    """Repository for repayment schedules"""

    def __init__(self, db: Session):
        self.db = db

    def create_schedule(
        self,
        loan_id: uuid.UUID,
        holding_id: uuid.UUID,
        installments: List[ScheduledInstallment],
    ) -> List[Installment]:
        rows = []
        for number, inst in enumerate(installments, start=1):
            row = Installment(
                loan_id=loan_id,
                holding_id=holding_id,
                installment_number=number,
                due_date=inst.due_date,
                amount_due_cents=inst.amount_cents,
                principal_cents=inst.principal_cents,
                interest_cents=inst.interest_cents,
                status=InstallmentStatus.PENDING,
            )
            self.db.add(row)
            rows.append(row)
        self.db.flush()
        return rows

    def get(self, installment_id: uuid.UUID) -> Optional[Installment]:
        return self.db.get(Installment, installment_id)

    def get_for_loan(self, loan_id: uuid.UUID) -> List[Installment]:
        return list(
            self.db.execute(
                select(Installment)
                .where(Installment.loan_id == loan_id)
                .order_by(Installment.due_date, Installment.installment_number)
            ).scalars().all()
        )

    def sum_due_for_period(self, loan_id: uuid.UUID, installment_number: int) -> int:
        """The borrower's whole payment for one month of the loan, across every holding"""
        return self.db.execute(
            select(func.coalesce(func.sum(Installment.amount_due_cents), 0)).where(
                Installment.loan_id == loan_id,
                Installment.installment_number == installment_number,
            )
        ).scalar_one()

    def count_open_for_holding(self, holding_id: uuid.UUID) -> int:
        """Installments still owed to the holder (pending or late)"""
        return self.db.execute(
            select(func.count()).where(
                Installment.holding_id == holding_id,
                Installment.status.in_((InstallmentStatus.PENDING, InstallmentStatus.LATE)),
            )
        ).scalar_one()

    def count_unsettled_for_loan(self, loan_id: uuid.UUID) -> int:
        """Installments the borrower still owes, including platform-covered ones not yet repaid"""
        return self.db.execute(
            select(func.count()).where(
                Installment.loan_id == loan_id,
                Installment.status.in_(
                    (InstallmentStatus.PENDING, InstallmentStatus.LATE, InstallmentStatus.COVERED_BY_PLATFORM)
                ),
                Installment.borrower_paid_cents == 0,
            )
        ).scalar_one()

    def get_overdue(self, as_of: date) -> List[Installment]:
        return list(
            self.db.execute(
                select(Installment).where(
                    Installment.status.in_((InstallmentStatus.PENDING, InstallmentStatus.LATE)),
                    Installment.due_date < as_of,
                )
            ).scalars().all()
        )

    def get_for_active_loans(
        self,
        status: InstallmentStatus,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> List[Installment]:
        query = (
            select(Installment)
            .join(Loan, Loan.id == Installment.loan_id)
            .where(Loan.status == LoanStatus.ACTIVE, Installment.status == status)
        )
        if due_from is not None:
            query = query.where(Installment.due_date >= due_from)
        if due_to is not None:
            query = query.where(Installment.due_date <= due_to)
        return list(
            self.db.execute(query.order_by(Installment.due_date, Installment.installment_number)).scalars().all()
        )

    def transition(
        self,
        installment_id: uuid.UUID,
        from_statuses: Tuple[InstallmentStatus, ...],
        to_status: InstallmentStatus,
        paid_amount_cents: int,
        paid_at: datetime,
    ) -> bool:
        result = self.db.execute(
            update(Installment)
            .where(Installment.id == installment_id, Installment.status.in_(from_statuses))
            .values(status=to_status, paid_amount_cents=paid_amount_cents, paid_at=paid_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_late(self, installment_id: uuid.UUID, days_late: int) -> bool:
        """Flag an unpaid installment late; paid or covered ones are left alone"""
        result = self.db.execute(
            update(Installment)
            .where(
                Installment.id == installment_id,
                Installment.status.in_((InstallmentStatus.PENDING, InstallmentStatus.LATE)),
            )
            .values(status=InstallmentStatus.LATE, days_late=days_late)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_borrower_payment(self, installment_id: uuid.UUID, amount_cents: int) -> bool:
        """Borrower cash against an installment; only accepted once"""
        result = self.db.execute(
            update(Installment)
            .where(Installment.id == installment_id, Installment.borrower_paid_cents == 0)
            .values(borrower_paid_cents=amount_cents)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def late_without_pending_offer(self) -> List[Installment]:
        pending_offer = exists().where(
            and_(
                CoverageOffer.installment_id == Installment.id,
                CoverageOffer.status == CoverageOfferStatus.PENDING,
            )
        )
        return list(
            self.db.execute(
                select(Installment).where(Installment.status == InstallmentStatus.LATE, ~pending_offer)
            ).scalars().all()
        )


class CoverageOfferRepository:
    """Repository for payment coverage offers"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, offer_id: uuid.UUID) -> Optional[CoverageOffer]:
        return self.db.get(CoverageOffer, offer_id)

    def get_pending_for_installment(self, installment_id: uuid.UUID) -> Optional[CoverageOffer]:
        return self.db.execute(
            select(CoverageOffer).where(
                CoverageOffer.installment_id == installment_id,
                CoverageOffer.status == CoverageOfferStatus.PENDING,
            )
        ).scalars().first()

    def get_pending_for_lender(self, lender_id: str) -> List[CoverageOffer]:
        return list(
            self.db.execute(
                select(CoverageOffer)
                .where(CoverageOffer.lender_id == lender_id, CoverageOffer.status == CoverageOfferStatus.PENDING)
                .order_by(CoverageOffer.created_at.desc())
            ).scalars().all()
        )

    def create(self, **fields) -> CoverageOffer:
        offer = CoverageOffer(status=CoverageOfferStatus.PENDING, **fields)
        self.db.add(offer)
        self.db.flush()
        return offer

    def transition(
        self,
        offer_id: uuid.UUID,
        to_status: CoverageOfferStatus,
        lender_id: str,
        accepted_at: Optional[datetime] = None,
    ) -> bool:
        """Move a pending offer on, only while it still belongs to `lender_id`"""
        result = self.db.execute(
            update(CoverageOffer)
            .where(
                CoverageOffer.id == offer_id,
                CoverageOffer.status == CoverageOfferStatus.PENDING,
                CoverageOffer.lender_id == lender_id,
            )
            .values(status=to_status, accepted_at=accepted_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reassign_pending_for_holding(self, holding_id: uuid.UUID, from_lender_id: str, to_lender_id: str) -> int:
        """Pending offers follow the holding to its new owner"""
        result = self.db.execute(
            update(CoverageOffer)
            .where(
                CoverageOffer.status == CoverageOfferStatus.PENDING,
                CoverageOffer.lender_id == from_lender_id,
                CoverageOffer.installment_id.in_(select(Installment.id).where(Installment.holding_id == holding_id)),
            )
            .values(lender_id=to_lender_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def expire_old(self, now: datetime) -> int:
        result = self.db.execute(
            update(CoverageOffer)
            .where(CoverageOffer.status == CoverageOfferStatus.PENDING, CoverageOffer.expires_at < now)
            .values(status=CoverageOfferStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class DirectLoanRepository:
    """Repository for direct loan offers, loans and repayments"""

    def __init__(self, db: Session):
        self.db = db

    def create_offer(self, **fields) -> DirectLoanOffer:
        offer = DirectLoanOffer(status=DirectOfferStatus.PENDING, **fields)
        self.db.add(offer)
        self.db.flush()
        return offer

    def get_offer(self, offer_id: uuid.UUID) -> Optional[DirectLoanOffer]:
        return self.db.get(DirectLoanOffer, offer_id)

    def transition_offer(self, offer_id: uuid.UUID, to_status: DirectOfferStatus) -> bool:
        result = self.db.execute(
            update(DirectLoanOffer)
            .where(DirectLoanOffer.id == offer_id, DirectLoanOffer.status == DirectOfferStatus.PENDING)
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def expire_offers(self, now: datetime) -> int:
        result = self.db.execute(
            update(DirectLoanOffer)
            .where(DirectLoanOffer.status == DirectOfferStatus.PENDING, DirectLoanOffer.expires_at < now)
            .values(status=DirectOfferStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def create_loan(self, **fields) -> DirectLoan:
        loan = DirectLoan(status=DirectLoanStatus.SIGNED, amount_paid_cents=0, **fields)
        self.db.add(loan)
        self.db.flush()
        return loan

    def get_loan(self, direct_loan_id: uuid.UUID) -> Optional[DirectLoan]:
        return self.db.get(DirectLoan, direct_loan_id)

    def get_loans_for_user(self, borrower_id: str) -> List[DirectLoan]:
        return list(
            self.db.execute(
                select(DirectLoan).where(DirectLoan.borrower_id == borrower_id).order_by(DirectLoan.created_at.desc())
            ).scalars().all()
        )

    def transition_loan(
        self,
        direct_loan_id: uuid.UUID,
        from_statuses: Tuple[DirectLoanStatus, ...],
        to_status: DirectLoanStatus,
        **values,
    ) -> bool:
        result = self.db.execute(
            update(DirectLoan)
            .where(DirectLoan.id == direct_loan_id, DirectLoan.status.in_(from_statuses))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_payment(self, direct_loan_id: uuid.UUID, amount_cents: int) -> None:
        self.db.execute(
            update(DirectLoan)
            .where(DirectLoan.id == direct_loan_id)
            .values(amount_paid_cents=DirectLoan.amount_paid_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )

    def add_repayment(
        self,
        direct_loan_id: uuid.UUID,
        amount_cents: int,
        payment_method: str,
        transaction_reference: Optional[str],
    ) -> DirectLoanRepayment:
        repayment = DirectLoanRepayment(
            direct_loan_id=direct_loan_id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            transaction_reference=transaction_reference,
        )
        self.db.add(repayment)
        self.db.flush()
        return repayment

    def mark_late(self, as_of: date) -> int:
        result = self.db.execute(
            update(DirectLoan)
            .where(
                DirectLoan.status.in_((DirectLoanStatus.SIGNED, DirectLoanStatus.DISBURSED)),
                DirectLoan.due_date < as_of,
            )
            .values(status=DirectLoanStatus.LATE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
