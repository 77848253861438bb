"""
Domain-specific exceptions for dj_billing.

All errors are raised synchronously to the caller. Nothing inside the
package retries a money-moving operation after one of these is raised.
"""


class BillingException(Exception):
    """Base exception for all billing errors."""

    pass


class ValidationError(BillingException):
    """Raised when input is malformed (zero amount, bad currency, missing field)."""

    pass


class InsufficientBalanceError(BillingException):
    """Raised when a consumption debit or transfer would overdraw a balance."""

    pass


class NotFoundError(BillingException):
    """Raised when a merchant, balance, subscription or payment request is absent."""

    pass


class OwnershipError(BillingException):
    """Raised when the actor lacks the required role over a merchant."""

    pass


class ConflictError(BillingException):
    """Raised when a state-machine precondition is violated."""

    pass
