"""Domain-specific exceptions"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "domain_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnauthenticatedError(DomainException):
    """No authenticated user id supplied by the caller"""

    code = "unauthenticated"


class ValidationError(DomainException):
    """Malformed or out-of-range input"""

    code = "validation_error"


class InvalidAmountError(ValidationError):
    """Money amount is zero, negative, or otherwise unusable"""

    code = "invalid_amount"


class InvalidRateError(ValidationError):
    """Interest rate outside the permitted range"""

    code = "invalid_rate"


class InvalidSignatureError(ValidationError):
    """E-signature name too short to be a legal name"""

    code = "invalid_signature"


class NotFoundError(DomainException):
    """Referenced entity does not exist"""

    code = "not_found"


class NoZimScoreError(NotFoundError):
    """User has no ZimScore record yet"""

    code = "no_zimscore"


class StateConflictError(DomainException):
    """Operation attempted against an entity in the wrong status"""

    code = "state_conflict"


class ListingNotFundableError(StateConflictError):
    code = "listing_not_fundable"


class OfferNotPendingError(StateConflictError):
    code = "offer_not_pending"


class OfferAlreadyExistsError(StateConflictError):
    code = "offer_already_exists"


class HoldingNotSellableError(StateConflictError):
    code = "holding_not_sellable"


class AuthorizationError(DomainException):
    """Actor is not the owner of the entity"""

    code = "unauthorized"


class InsufficientFundsError(DomainException):
    """Ledger debit would take a wallet below zero"""

    code = "insufficient_funds"


class LimitExceededError(DomainException):
    """A quota or ceiling would be exceeded"""

    code = "limit_exceeded"


class ColdStartLimitExceededError(LimitExceededError):
    """First-time borrower asked for more than the cold-start ceiling"""

    code = "cold_start_limit_exceeded"

    def __init__(self, ceiling_cents: int, requested_cents: int):
        super().__init__(
            f"First-time borrowers are limited to {ceiling_cents / 100:.2f}",
            {"ceiling_cents": ceiling_cents, "requested_cents": requested_cents},
        )
        self.ceiling_cents = ceiling_cents


class FundingGoalExceededError(LimitExceededError):
    """Accepting the offer would overshoot the listing's funding goal"""

    code = "funding_goal_exceeded"

    def __init__(self, remaining_cents: int, offer_cents: int):
        super().__init__(
            "Offer exceeds the amount still needed by the listing",
            {"remaining_cents": remaining_cents, "offer_cents": offer_cents},
        )
        self.remaining_cents = remaining_cents


class AmountExceedsLimitError(LimitExceededError):
    code = "amount_exceeds_limit"


class ExpiredError(DomainException):
    """Offer or listing is past its deadline"""

    code = "expired"


class OfferExpiredError(ExpiredError):
    code = "offer_expired"
