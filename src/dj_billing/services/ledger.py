"""
Balance ledger service.

Owns Balance and Transaction rows. Every write goes through ``_post`` while
the merchant's balance row is locked by ``with_lock``, so ``balance_before``
on each transaction is the amount observed immediately before its commit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from django.db import transaction
from django.db.models import Q, Sum

from ..auth import AuthContext, require_owner
from ..clock import days_until
from ..exceptions import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from ..history import record_event
from ..locking import with_lock
from ..models import (
    Balance,
    Merchant,
    PaymentRequest,
    Subscription,
    SubscriptionEvent,
    Transaction,
)
from ..money import Money
from ..signals import balance_changed, transaction_created
from ..utils import get_clock, get_plan_pricing

logger = logging.getLogger(__name__)

KIND_CONSUMPTION_DEBIT = "consumption-debit"
KIND_ADMIN_ADJUSTMENT = "admin-adjustment"

ADMIN_ADJUSTMENT_TYPES = (
    Transaction.TYPE_ADJUSTMENT,
    Transaction.TYPE_REFUND,
    Transaction.TYPE_TOPUP,
)


@dataclass(frozen=True)
class BalanceInfo:
    merchant_id: int
    amount: Money
    currency: str
    last_topup_at: datetime | None


@dataclass(frozen=True)
class TransferResult:
    from_balance: Money
    to_balance: Money
    transfer_group: uuid.UUID


@dataclass(frozen=True)
class OrderFeeResult:
    charged: bool
    duplicate: bool
    balance: Money


@dataclass(frozen=True)
class LedgerEntry:
    """One row of the operator transaction view."""

    id: int
    type: str
    amount: Money
    balance_before: Money | None
    balance_after: Money | None
    description: str
    created_at: datetime
    pending: bool = False
    status: str | None = None
    ledger_visible: bool = True


@dataclass
class TransactionPage:
    items: list = field(default_factory=list)
    total: int = 0


@dataclass
class MerchantSummary:
    merchant_id: int
    code: str
    name: str
    branch_type: str
    parent_id: int | None
    currency: str
    balance: Money
    last_topup_at: datetime | None
    subscription_type: str
    subscription_status: str
    days_remaining: int | None
    suspend_reason: str | None


@dataclass
class BranchGroup:
    main: MerchantSummary | None = None
    branches: list = field(default_factory=list)


class LedgerService:
    def __init__(self, clock=None):
        self.clock = clock or get_clock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_merchant(self, merchant_id) -> Merchant:
        try:
            return Merchant.objects.get(pk=merchant_id)
        except (Merchant.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Merchant {merchant_id} not found") from None

    def get_balance(self, merchant_id) -> BalanceInfo:
        """Current balance of a merchant. No locks are taken."""
        try:
            balance = Balance.objects.select_related("merchant").get(
                merchant_id=merchant_id
            )
        except (Balance.DoesNotExist, ValueError, TypeError):
            self._get_merchant(merchant_id)
            raise NotFoundError(
                f"Balance for merchant {merchant_id} not found"
            ) from None
        return BalanceInfo(
            merchant_id=balance.merchant_id,
            amount=balance.amount,
            currency=balance.merchant.currency,
            last_topup_at=balance.last_topup_at,
        )

    @staticmethod
    def to_money(amount, currency) -> Money:
        """Coerce a boundary amount into Money of the merchant currency."""
        return Money.from_decimal(amount, currency)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _post(
        self,
        *,
        balance: Balance,
        txn_type: str,
        amount: Money,
        actor: AuthContext,
        description: str = "",
        reference: str = "",
        ledger_visible: bool = True,
        transfer_group=None,
        counterparty_id=None,
        payment_request=None,
    ) -> Transaction:
        """Append one transaction and move the locked balance with it."""
        now = self.clock.now()
        before = balance.amount_minor
        after = before + amount.minor

        txn = Transaction.objects.create(
            balance=balance,
            type=txn_type,
            amount_minor=amount.minor,
            balance_before_minor=before,
            balance_after_minor=after,
            currency=amount.currency,
            description=(description or "")[:255],
            ledger_visible=ledger_visible,
            reference=reference or "",
            transfer_group=transfer_group,
            counterparty_id=counterparty_id,
            payment_request=payment_request,
            created_by_actor_id=actor.actor_id,
            created_at=now,
        )

        balance.amount_minor = after
        update_fields = ["amount_minor", "updated_at"]
        if txn_type == Transaction.TYPE_TOPUP:
            balance.last_topup_at = now
            update_fields.append("last_topup_at")
        balance.save(update_fields=update_fields)

        # Signal dispatching
        balance_changed.send(sender=self.__class__, balance=balance, transaction=txn)
        transaction_created.send(sender=self.__class__, transaction=txn)

        return txn

    def adjust(
        self,
        actor: AuthContext,
        merchant_id,
        amount,
        kind: str,
        description: str = "",
        txn_type: str | None = None,
        reference: str = "",
        payment_request: PaymentRequest | None = None,
    ) -> Money:
        """
        Apply a signed amount to a merchant's balance.

        ``consumption-debit`` writes a DEDUCTION and refuses to take the
        balance below zero. ``admin-adjustment`` writes an ADJUSTMENT (or
        TOPUP / REFUND via ``txn_type``) with no floor.

        Returns the new balance.
        """
        merchant = self._get_merchant(merchant_id)
        money = self.to_money(amount, merchant.currency)
        if money.is_zero:
            raise ValidationError("Adjustment amount must be non-zero.")

        if kind == KIND_CONSUMPTION_DEBIT:
            if txn_type not in (None, Transaction.TYPE_DEDUCTION):
                raise ValidationError("Consumption debits are always DEDUCTION.")
            if money.is_positive:
                raise ValidationError("A consumption debit must be negative.")
            txn_type = Transaction.TYPE_DEDUCTION
        elif kind == KIND_ADMIN_ADJUSTMENT:
            txn_type = txn_type or Transaction.TYPE_ADJUSTMENT
            if txn_type not in ADMIN_ADJUSTMENT_TYPES:
                raise ValidationError(
                    f"{txn_type} cannot be written as an admin adjustment."
                )
            if txn_type == Transaction.TYPE_TOPUP and not money.is_positive:
                raise ValidationError("A top-up must be positive.")
        else:
            raise ValidationError(f"Unknown adjustment kind: {kind!r}")

        require_owner(actor, merchant.pk)

        with with_lock([merchant.pk]) as scope:
            balance = scope.balance(merchant.pk)

            if reference and Transaction.objects.filter(
                balance=balance, type=txn_type, reference=reference
            ).exists():
                logger.warning(
                    "Duplicate %s prevented for merchant=%s reference=%s",
                    txn_type,
                    merchant.pk,
                    reference,
                )
                raise ConflictError(
                    f"{txn_type} for reference {reference} was already recorded."
                )

            # Check balance *after* acquiring lock
            if (
                kind == KIND_CONSUMPTION_DEBIT
                and balance.amount_minor + money.minor < 0
            ):
                raise InsufficientBalanceError(
                    f"Insufficient balance. Balance: {balance.amount}, "
                    f"Required: {-money}"
                )

            self._post(
                balance=balance,
                txn_type=txn_type,
                amount=money,
                actor=actor,
                description=description,
                reference=reference,
                payment_request=payment_request,
            )

        logger.info(
            "Ledger %s of %s on merchant=%s by actor=%s, balance now %s",
            txn_type,
            money,
            merchant.pk,
            actor.actor_id,
            balance.amount,
        )
        return balance.amount

    def transfer(
        self,
        actor: AuthContext,
        from_merchant_id,
        to_merchant_id,
        amount,
        note: str = "",
    ) -> TransferResult:
        """
        Move money between two merchants of one branch group.

        Writes TRANSFER_OUT on the source and TRANSFER_IN on the destination
        in a single unit of work; either both legs commit or neither does.
        """
        source = self._get_merchant(from_merchant_id)
        destination = self._get_merchant(to_merchant_id)
        if source.pk == destination.pk:
            raise ValidationError("Cannot transfer to the same merchant.")
        if source.currency != destination.currency:
            raise ValidationError(
                f"Currency mismatch: {source.currency} != {destination.currency}"
            )

        money = self.to_money(amount, source.currency)
        if not money.is_positive:
            raise ValidationError("Transfer amount must be positive.")

        require_owner(actor, source.pk, destination.pk, allow_super_admin=False)
        if source.group_root_id != destination.group_root_id:
            raise OwnershipError("Transfers are only allowed within one branch group.")

        group = uuid.uuid4()
        description = note or f"Transfer {source.code} -> {destination.code}"

        with with_lock([source.pk, destination.pk]) as scope:
            from_balance = scope.balance(source.pk)
            to_balance = scope.balance(destination.pk)

            if from_balance.amount_minor < money.minor:
                raise InsufficientBalanceError(
                    f"Insufficient balance. Balance: {from_balance.amount}, "
                    f"Required: {money}"
                )

            self._post(
                balance=from_balance,
                txn_type=Transaction.TYPE_TRANSFER_OUT,
                amount=-money,
                actor=actor,
                description=description,
                transfer_group=group,
                counterparty_id=destination.pk,
            )
            self._post(
                balance=to_balance,
                txn_type=Transaction.TYPE_TRANSFER_IN,
                amount=money,
                actor=actor,
                description=description,
                transfer_group=group,
                counterparty_id=source.pk,
            )

        logger.info(
            "Transferred %s from merchant=%s to merchant=%s (group %s)",
            money,
            source.pk,
            destination.pk,
            group,
        )
        return TransferResult(
            from_balance=from_balance.amount,
            to_balance=to_balance.amount,
            transfer_group=group,
        )

    def record_subscription_entry(
        self,
        actor: AuthContext,
        merchant_id,
        description: str,
        amount=None,
        payment_request: PaymentRequest | None = None,
    ) -> Transaction:
        """
        Write a SUBSCRIPTION bookkeeping transaction.

        Zero-amount entries are hidden from the operator view through
        ``ledger_visible``.
        """
        merchant = self._get_merchant(merchant_id)
        money = (
            Money.zero(merchant.currency)
            if amount is None
            else self.to_money(amount, merchant.currency)
        )
        with with_lock([merchant.pk]) as scope:
            return self._post(
                balance=scope.balance(merchant.pk),
                txn_type=Transaction.TYPE_SUBSCRIPTION,
                amount=money,
                actor=actor,
                description=description,
                ledger_visible=not money.is_zero,
                payment_request=payment_request,
            )

    def deduct_order_fee(
        self, merchant_id, order_reference, actor: AuthContext | None = None
    ) -> OrderFeeResult:
        """
        Charge the per-order fee to a deposit-mode merchant.

        Merchants on any other plan are not charged. A fee already recorded
        for the same order is not charged twice.
        """
        actor = actor or AuthContext.system()
        order_reference = str(order_reference or "").strip()
        if not order_reference:
            raise ValidationError("An order reference is required.")

        merchant = self._get_merchant(merchant_id)
        subscription_type = (
            Subscription.objects.filter(merchant_id=merchant.pk)
            .values_list("type", flat=True)
            .first()
        )
        if subscription_type != Subscription.TYPE_DEPOSIT:
            return OrderFeeResult(
                charged=False,
                duplicate=False,
                balance=self.get_balance(merchant.pk).amount,
            )

        fee = get_plan_pricing(merchant.currency).order_fee
        if fee.is_zero:
            return OrderFeeResult(
                charged=False,
                duplicate=False,
                balance=self.get_balance(merchant.pk).amount,
            )

        try:
            with transaction.atomic():
                new_balance = self.adjust(
                    actor,
                    merchant.pk,
                    -fee,
                    KIND_CONSUMPTION_DEBIT,
                    description=f"Order fee for #{order_reference}",
                    reference=order_reference,
                )
                record_event(
                    merchant.pk,
                    SubscriptionEvent.EVENT_ORDER_FEE_DEDUCTED,
                    now=self.clock.now(),
                    currency=merchant.currency,
                    actor=actor,
                    previous_type=Subscription.TYPE_DEPOSIT,
                    reason=f"Order fee {fee} for #{order_reference}",
                    balance_minor=new_balance.minor,
                )
        except ConflictError:
            return OrderFeeResult(
                charged=False,
                duplicate=True,
                balance=self.get_balance(merchant.pk).amount,
            )
        return OrderFeeResult(charged=True, duplicate=False, balance=new_balance)

    # ------------------------------------------------------------------
    # Operator views
    # ------------------------------------------------------------------

    def has_sufficient_balance(self, merchant_id) -> bool:
        merchant = self._get_merchant(merchant_id)
        subscription_type = (
            Subscription.objects.filter(merchant_id=merchant.pk)
            .values_list("type", flat=True)
            .first()
        )
        if subscription_type != Subscription.TYPE_DEPOSIT:
            return True
        fee = get_plan_pricing(merchant.currency).order_fee
        return self.get_balance(merchant.pk).amount >= fee

    def is_low_balance(self, merchant_id, threshold_orders: int) -> bool:
        """True when the balance covers fewer than ``threshold_orders`` order fees."""
        info = self.get_balance(merchant_id)
        fee = get_plan_pricing(info.currency).order_fee
        if fee.is_zero:
            return False
        return info.amount.minor // fee.minor < threshold_orders

    def get_transactions(
        self,
        merchant_id,
        type: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        search: str | None = None,
        include_pending: bool = True,
        include_hidden: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionPage:
        """
        Operator view of a merchant's ledger.

        Open payment requests come first (tagged ``pending=True``; they never
        count toward the balance), then committed transactions, newest first.
        """
        merchant = self._get_merchant(merchant_id)
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative.")

        committed = Transaction.objects.filter(balance__merchant_id=merchant.pk)
        if not include_hidden:
            committed = committed.filter(ledger_visible=True)
        if type:
            committed = committed.filter(type=type)
        if date_from:
            committed = committed.filter(created_at__gte=date_from)
        if date_to:
            committed = committed.filter(created_at__lte=date_to)
        if search:
            committed = committed.filter(
                Q(description__icontains=search) | Q(reference__icontains=search)
            )
        committed = committed.order_by("-created_at", "-id")

        pending = []
        if include_pending:
            pending = self._pending_entries(merchant, type, date_from, date_to, search)

        total = len(pending) + committed.count()
        items = pending[offset:offset + limit]
        remaining = limit - len(items)
        if remaining > 0:
            start = max(0, offset - len(pending))
            for txn in committed[start:start + remaining]:
                items.append(
                    LedgerEntry(
                        id=txn.pk,
                        type=txn.type,
                        amount=txn.amount,
                        balance_before=txn.balance_before,
                        balance_after=txn.balance_after,
                        description=txn.description,
                        created_at=txn.created_at,
                        ledger_visible=txn.ledger_visible,
                    )
                )
        return TransactionPage(items=items, total=total)

    def _pending_entries(self, merchant, type, date_from, date_to, search):
        request_types = {
            None: (
                PaymentRequest.TYPE_DEPOSIT_TOPUP,
                PaymentRequest.TYPE_SUBSCRIPTION_RENEWAL,
            ),
            Transaction.TYPE_TOPUP: (PaymentRequest.TYPE_DEPOSIT_TOPUP,),
            Transaction.TYPE_SUBSCRIPTION: (PaymentRequest.TYPE_SUBSCRIPTION_RENEWAL,),
        }.get(type or None, ())
        if not request_types:
            return []

        requests = PaymentRequest.objects.filter(
            merchant_id=merchant.pk,
            status__in=PaymentRequest.OPEN_STATUSES,
            type__in=request_types,
        )
        if date_from:
            requests = requests.filter(created_at__gte=date_from)
        if date_to:
            requests = requests.filter(created_at__lte=date_to)

        entries = []
        for request in requests.order_by("-created_at", "-id"):
            description = f"Payment request #{request.pk} ({request.get_type_display()})"
            if search and search.lower() not in (
                f"{description} {request.transfer_notes}".lower()
            ):
                continue
            entries.append(
                LedgerEntry(
                    id=request.pk,
                    type=request.type,
                    amount=request.amount,
                    balance_before=None,
                    balance_after=None,
                    description=description,
                    created_at=request.created_at,
                    pending=True,
                    status=request.status,
                )
            )
        return entries

    def billing_summary(self, merchant_id) -> dict:
        """Order fees charged yesterday, in the last 7 days and the last 30 days."""
        merchant = self._get_merchant(merchant_id)
        now = self.clock.now()
        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        windows = {
            "yesterday": (start_of_today - timedelta(days=1), start_of_today),
            "last_week": (start_of_today - timedelta(days=7), now),
            "last_month": (start_of_today - timedelta(days=30), now),
        }
        fees = Transaction.objects.filter(
            balance__merchant_id=merchant.pk, type=Transaction.TYPE_DEDUCTION
        )
        summary = {}
        for key, (start, end) in windows.items():
            total = (
                fees.filter(created_at__gte=start, created_at__lt=end)
                .aggregate(total=Sum("amount_minor"))
                .get("total")
                or 0
            )
            summary[key] = Money(-total, merchant.currency)
        return summary

    def group_balances(self, actor: AuthContext) -> list:
        """Balances and plan state of every branch group the actor owns."""
        if not actor.owned_merchant_ids:
            return []

        owned = Merchant.objects.filter(pk__in=actor.owned_merchant_ids)
        root_ids = {m.group_root_id for m in owned}
        merchants = Merchant.objects.filter(
            Q(pk__in=root_ids) | Q(parent_id__in=root_ids)
        ).select_related("balance", "subscription")

        now = self.clock.now()
        groups = {}
        for merchant in merchants.order_by("parent_id", "code"):
            balance = getattr(merchant, "balance", None)
            subscription = getattr(merchant, "subscription", None)
            subscription_type = subscription.type if subscription else Subscription.TYPE_NONE
            if subscription_type == Subscription.TYPE_TRIAL:
                days_remaining = days_until(subscription.trial_ends_at, now)
            elif subscription_type == Subscription.TYPE_MONTHLY:
                days_remaining = days_until(subscription.current_period_end, now)
            else:
                days_remaining = None

            summary = MerchantSummary(
                merchant_id=merchant.pk,
                code=merchant.code,
                name=merchant.name,
                branch_type=merchant.branch_type,
                parent_id=merchant.parent_id,
                currency=merchant.currency,
                balance=balance.amount if balance else Money.zero(merchant.currency),
                last_topup_at=balance.last_topup_at if balance else None,
                subscription_type=subscription_type,
                subscription_status=(
                    subscription.status if subscription else Subscription.STATUS_CANCELLED
                ),
                days_remaining=days_remaining,
                suspend_reason=subscription.suspend_reason if subscription else None,
            )
            group = groups.setdefault(merchant.group_root_id, BranchGroup())
            if merchant.parent_id:
                group.branches.append(summary)
            else:
                group.main = summary
        return [groups[root_id] for root_id in sorted(groups)]
