from .ledger import (
    KIND_ADMIN_ADJUSTMENT,
    KIND_CONSUMPTION_DEBIT,
    BalanceInfo,
    LedgerEntry,
    LedgerService,
    OrderFeeResult,
    TransactionPage,
    TransferResult,
)
from .payment_request import PaymentRequestService
from .scheduler import BillingRunResult, BillingScheduler
from .subscription import SubscriptionService, SubscriptionStatus

__all__ = [
    "KIND_ADMIN_ADJUSTMENT",
    "KIND_CONSUMPTION_DEBIT",
    "BalanceInfo",
    "BillingRunResult",
    "BillingScheduler",
    "LedgerEntry",
    "LedgerService",
    "OrderFeeResult",
    "PaymentRequestService",
    "SubscriptionService",
    "SubscriptionStatus",
    "TransactionPage",
    "TransferResult",
]
