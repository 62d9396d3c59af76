"""
kudos.exceptions — Typed Error Taxonomy
========================================

Every failure the engine reports is a subclass of :class:`EconomyError`
with a machine-readable ``code`` and structured attributes, so callers
catch by type and the API layer maps by class, never by message text.

Hierarchy::

    EconomyError
    ├── InsufficientFunds
    ├── DuplicateApplication        (idempotent replay — not user-facing)
    ├── ConcurrentModification      (retried internally first)
    ├── WalletArchived
    ├── UnknownEventType
    ├── InvalidRequest
    ├── CreditError
    │   ├── CreditLimitExceeded
    │   ├── LoanAlreadyActive
    │   ├── LoanNotActive
    │   └── LoanNotFound
    └── SocialError
        ├── CommentNotFound
        ├── ReferralCodeNotFound
        └── ReferralAlreadyRegistered
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kudos.database.models import LedgerEntry


class EconomyError(Exception):
    """Base class for all engine errors."""

    code: str = "ECONOMY_ERROR"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
class InsufficientFunds(EconomyError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, user_id: str, currency: str, balance: int, requested: int):
        self.user_id = user_id
        self.currency = currency
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"User {user_id} has {balance} {currency}, needs {requested}"
        )


class DuplicateApplication(EconomyError):
    """The ``(user, currency, reason, reference_id)`` key was already applied."""

    code = "DUPLICATE_APPLICATION"

    def __init__(
        self,
        user_id: str,
        currency: str,
        reason: str,
        reference_id: str,
        prior: LedgerEntry | None = None,
    ):
        self.user_id = user_id
        self.currency = currency
        self.reason = reason
        self.reference_id = reference_id
        self.prior = prior
        super().__init__(
            f"{reason}/{reference_id} already applied to {currency} for user {user_id}"
        )


class ConcurrentModification(EconomyError):
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"Version conflict on {key} after {attempts} attempts")


class WalletArchived(EconomyError):
    code = "WALLET_ARCHIVED"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Wallet for user {user_id} is archived")


# ---------------------------------------------------------------------------
# Rule engine / input validation
# ---------------------------------------------------------------------------
class UnknownEventType(EconomyError):
    code = "UNKNOWN_EVENT_TYPE"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")


class InvalidRequest(EconomyError):
    code = "INVALID_REQUEST"


# ---------------------------------------------------------------------------
# Credit
# ---------------------------------------------------------------------------
class CreditError(EconomyError):
    code = "CREDIT_ERROR"


class CreditLimitExceeded(CreditError):
    code = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, user_id: str, requested: int, limit: int):
        self.user_id = user_id
        self.requested = requested
        self.limit = limit
        super().__init__(f"Requested {requested} exceeds credit limit {limit}")


class LoanAlreadyActive(CreditError):
    code = "LOAN_ALREADY_ACTIVE"

    def __init__(self, user_id: str, loan_id: str | None = None):
        self.user_id = user_id
        self.loan_id = loan_id
        super().__init__(f"User {user_id} already has an active loan")


class LoanNotActive(CreditError):
    code = "LOAN_NOT_ACTIVE"

    def __init__(self, loan_id: str, status: str):
        self.loan_id = loan_id
        self.status = status
        super().__init__(f"Loan {loan_id} is {status}")


class LoanNotFound(CreditError):
    code = "LOAN_NOT_FOUND"

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} not found")


# ---------------------------------------------------------------------------
# Social (comments, referrals)
# ---------------------------------------------------------------------------
class SocialError(EconomyError):
    code = "SOCIAL_ERROR"


class CommentNotFound(SocialError):
    code = "COMMENT_NOT_FOUND"

    def __init__(self, comment_id: str):
        self.comment_id = comment_id
        super().__init__(f"Comment {comment_id} not found")


class ReferralCodeNotFound(SocialError):
    code = "REFERRAL_CODE_NOT_FOUND"

    def __init__(self, code: str):
        self.referral_code = code
        super().__init__(f"Referral code {code!r} not found")


class ReferralAlreadyRegistered(SocialError):
    code = "REFERRAL_ALREADY_REGISTERED"

    def __init__(self, referee_id: str):
        self.referee_id = referee_id
        super().__init__(f"User {referee_id} was already referred")
