"""
Models for dj_billing.

Merchant and its one-to-one Balance and Subscription rows, the append-only
Transaction log, customer-originated PaymentRequest rows and the
SubscriptionEvent history. All money is stored as signed integer minor
units; see ``dj_billing.money``.
"""
import uuid

from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from .conf import billing_settings
from .exceptions import ValidationError
from .money import Money, currency_scale


def default_currency():
    return billing_settings.DEFAULT_CURRENCY


class Merchant(models.Model):
    """
    A tenant: a restaurant (MAIN) or one of its branches (BRANCH).

    Merchants are registered by the host project. Creating one provisions
    its Balance and a trial Subscription (see ``DjBillingConfig.ready``).
    """

    BRANCH_MAIN = "MAIN"
    BRANCH_BRANCH = "BRANCH"

    code = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    currency = models.CharField(max_length=3, default=default_currency)

    # A merchant without parent is MAIN; others are BRANCH of that MAIN
    parent = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="branches",
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Merchant")
        verbose_name_plural = _("Merchants")
        ordering = ("code",)

    def __str__(self):
        return f"{self.code} ({self.currency})"

    @property
    def branch_type(self):
        return self.BRANCH_BRANCH if self.parent_id else self.BRANCH_MAIN

    @property
    def group_root_id(self):
        """Id of the MAIN merchant heading this merchant's branch group."""
        return self.parent_id or self.pk

    def clean(self):
        currency_scale(self.currency)
        if self.parent_id is not None:
            if self.pk is not None and self.parent_id == self.pk:
                raise ValidationError("A merchant cannot be its own parent.")
            if self.parent.parent_id is not None:
                raise ValidationError("A branch cannot have branches of its own.")

    def save(self, *args, **kwargs):
        self.currency = (self.currency or "").upper()
        if self.pk is not None and not self._state.adding:
            previous = (
                Merchant.objects.filter(pk=self.pk)
                .values_list("currency", flat=True)
                .first()
            )
            if (
                previous is not None
                and previous != self.currency
                and Transaction.objects.filter(balance__merchant_id=self.pk).exists()
            ):
                raise ValidationError(
                    "Merchant currency cannot change once transactions exist."
                )
        super().save(*args, **kwargs)


class Balance(models.Model):
    """
    Cached balance of a merchant.

    ``amount_minor`` always equals the sum of the merchant's committed
    Transaction amounts. Only the ledger service writes this row.
    """

    merchant = models.OneToOneField(
        Merchant, on_delete=models.PROTECT, related_name="balance"
    )
    amount_minor = models.BigIntegerField(default=0)
    last_topup_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Balance")
        verbose_name_plural = _("Balances")

    def __str__(self):
        return f"{self.merchant.code}: {self.amount}"

    @property
    def amount(self):
        return Money(self.amount_minor, self.merchant.currency)


class Transaction(models.Model):
    """
    Immutable ledger entry.

    ``balance_after_minor == balance_before_minor + amount_minor`` holds for
    every row; corrections are written as new rows (e.g. REFUND).
    """

    TYPE_TOPUP = "TOPUP"
    TYPE_DEDUCTION = "DEDUCTION"
    TYPE_TRANSFER_OUT = "TRANSFER_OUT"
    TYPE_TRANSFER_IN = "TRANSFER_IN"
    TYPE_SUBSCRIPTION = "SUBSCRIPTION"
    TYPE_ADJUSTMENT = "ADJUSTMENT"
    TYPE_REFUND = "REFUND"

    TYPE_CHOICES = (
        (TYPE_TOPUP, _("Top-up")),
        (TYPE_DEDUCTION, _("Deduction")),
        (TYPE_TRANSFER_OUT, _("Transfer out")),
        (TYPE_TRANSFER_IN, _("Transfer in")),
        (TYPE_SUBSCRIPTION, _("Subscription")),
        (TYPE_ADJUSTMENT, _("Adjustment")),
        (TYPE_REFUND, _("Refund")),
    )

    balance = models.ForeignKey(
        Balance, on_delete=models.PROTECT, related_name="transactions"
    )
    uuid = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    amount_minor = models.BigIntegerField()
    balance_before_minor = models.BigIntegerField()
    balance_after_minor = models.BigIntegerField()
    currency = models.CharField(max_length=3)
    description = models.CharField(max_length=255, blank=True, default="")

    # Zero-amount bookkeeping rows are written with ledger_visible=False
    ledger_visible = models.BooleanField(default=True)

    # External reference, e.g. the order an order fee was charged for
    reference = models.CharField(max_length=64, blank=True, default="")

    # Both legs of a transfer share one transfer_group
    transfer_group = models.UUIDField(null=True, blank=True, db_index=True)
    counterparty = models.ForeignKey(
        Merchant,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    payment_request = models.ForeignKey(
        "PaymentRequest",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )
    created_by_actor_id = models.BigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Transaction")
        verbose_name_plural = _("Transactions")
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(
                fields=["balance", "created_at"], name="txn_balance_created_idx"
            ),
            models.Index(fields=["balance", "type"], name="txn_balance_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    balance_after_minor=F("balance_before_minor") + F("amount_minor")
                ),
                name="txn_after_equals_before_plus_amount",
            ),
            models.CheckConstraint(
                condition=~Q(amount_minor=0) | Q(type="SUBSCRIPTION"),
                name="txn_nonzero_unless_subscription",
            ),
            models.UniqueConstraint(
                fields=["balance", "type", "reference"],
                condition=~Q(reference=""),
                name="txn_unique_reference_per_type",
            ),
        ]

    def __str__(self):
        return f"{self.type} {self.amount}"

    @property
    def amount(self):
        return Money(self.amount_minor, self.currency)

    @property
    def balance_before(self):
        return Money(self.balance_before_minor, self.currency)

    @property
    def balance_after(self):
        return Money(self.balance_after_minor, self.currency)

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Ledger transactions are immutable.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Ledger transactions cannot be deleted.")


class Subscription(models.Model):
    """
    Billing plan state of a merchant.

    ``type`` (which plan) is orthogonal to ``status`` (whether service is on).
    A SUSPENDED subscription always carries a reason; an ACTIVE one never does.
    """

    TYPE_TRIAL = "TRIAL"
    TYPE_DEPOSIT = "DEPOSIT"
    TYPE_MONTHLY = "MONTHLY"
    TYPE_NONE = "NONE"

    TYPE_CHOICES = (
        (TYPE_TRIAL, _("Trial")),
        (TYPE_DEPOSIT, _("Deposit")),
        (TYPE_MONTHLY, _("Monthly")),
        (TYPE_NONE, _("None")),
    )

    STATUS_ACTIVE = "ACTIVE"
    STATUS_SUSPENDED = "SUSPENDED"
    STATUS_CANCELLED = "CANCELLED"

    STATUS_CHOICES = (
        (STATUS_ACTIVE, _("Active")),
        (STATUS_SUSPENDED, _("Suspended")),
        (STATUS_CANCELLED, _("Cancelled")),
    )

    merchant = models.OneToOneField(
        Merchant, on_delete=models.PROTECT, related_name="subscription"
    )
    type = models.CharField(max_length=16, choices=TYPE_CHOICES, default=TYPE_TRIAL)
    status = models.CharField(
        max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True
    )
    trial_started_at = models.DateTimeField(null=True, blank=True)
    trial_ends_at = models.DateTimeField(null=True, blank=True)
    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    suspend_reason = models.CharField(max_length=255, null=True, blank=True)
    suspended_at = models.DateTimeField(null=True, blank=True)

    # Set by a manual suspend; computed evaluation leaves such rows alone
    manual_override = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Subscription")
        verbose_name_plural = _("Subscriptions")
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(status="SUSPENDED", suspend_reason__isnull=False)
                    | (~Q(status="SUSPENDED") & Q(suspend_reason__isnull=True))
                ),
                name="subscription_reason_matches_status",
            ),
        ]

    def __str__(self):
        return f"{self.merchant.code}: {self.type}/{self.status}"

    @property
    def is_cancelled(self):
        return self.status == self.STATUS_CANCELLED

    def clean(self):
        if self.status == self.STATUS_SUSPENDED and not self.suspend_reason:
            raise ValidationError("A suspended subscription requires a reason.")
        if self.status != self.STATUS_SUSPENDED and self.suspend_reason is not None:
            raise ValidationError("Only a suspended subscription may carry a reason.")
        if (
            self.current_period_start
            and self.current_period_end
            and self.current_period_end < self.current_period_start
        ):
            raise ValidationError("Period end cannot precede period start.")


class PaymentRequest(models.Model):
    """
    A merchant's claim of an off-platform payment, awaiting staff verification.

    PENDING -> CONFIRMED -> VERIFIED | REJECTED, or PENDING -> EXPIRED.
    VERIFIED, REJECTED and EXPIRED are terminal.
    """

    TYPE_DEPOSIT_TOPUP = "DEPOSIT_TOPUP"
    TYPE_SUBSCRIPTION_RENEWAL = "SUBSCRIPTION_RENEWAL"

    TYPE_CHOICES = (
        (TYPE_DEPOSIT_TOPUP, _("Deposit top-up")),
        (TYPE_SUBSCRIPTION_RENEWAL, _("Subscription renewal")),
    )

    STATUS_PENDING = "PENDING"
    STATUS_CONFIRMED = "CONFIRMED"
    STATUS_VERIFIED = "VERIFIED"
    STATUS_REJECTED = "REJECTED"
    STATUS_EXPIRED = "EXPIRED"

    STATUS_CHOICES = (
        (STATUS_PENDING, _("Pending")),
        (STATUS_CONFIRMED, _("Confirmed")),
        (STATUS_VERIFIED, _("Verified")),
        (STATUS_REJECTED, _("Rejected")),
        (STATUS_EXPIRED, _("Expired")),
    )

    OPEN_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)
    TERMINAL_STATUSES = (STATUS_VERIFIED, STATUS_REJECTED, STATUS_EXPIRED)

    merchant = models.ForeignKey(
        Merchant, on_delete=models.PROTECT, related_name="payment_requests"
    )
    uuid = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)
    type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    amount_minor = models.BigIntegerField()
    currency = models.CharField(max_length=3)
    days_requested = models.PositiveIntegerField(null=True, blank=True)
    status = models.CharField(
        max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True
    )
    transfer_notes = models.TextField(blank=True, default="")
    rejection_reason = models.TextField(blank=True, default="")
    created_by_actor_id = models.BigIntegerField(null=True, blank=True)
    decided_by_actor_id = models.BigIntegerField(null=True, blank=True)

    created_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    confirmed_at = models.DateTimeField(null=True, blank=True)
    decided_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Payment request")
        verbose_name_plural = _("Payment requests")
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(
                fields=["merchant", "status"], name="payreq_merchant_status_idx"
            ),
            models.Index(fields=["status", "expires_at"], name="payreq_status_exp_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_minor__gt=0), name="payreq_amount_positive"
            ),
        ]

    def __str__(self):
        return f"{self.type}:{self.amount} ({self.status})"

    @property
    def amount(self):
        return Money(self.amount_minor, self.currency)

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES


class SubscriptionEvent(models.Model):
    """
    Append-only history of a merchant's plan and payment events.

    Written in the same unit of work as the change it records, so a
    rolled-back operation leaves no event behind.
    """

    EVENT_AUTO_SWITCHED = "AUTO_SWITCHED"
    EVENT_SWITCHED = "SWITCHED"
    EVENT_SUSPENDED = "SUSPENDED"
    EVENT_REACTIVATED = "REACTIVATED"
    EVENT_TRIAL_EXPIRED = "TRIAL_EXPIRED"
    EVENT_EXTENDED = "EXTENDED"
    EVENT_CANCELLED = "CANCELLED"
    EVENT_PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    EVENT_PAYMENT_REJECTED = "PAYMENT_REJECTED"
    EVENT_ORDER_FEE_DEDUCTED = "ORDER_FEE_DEDUCTED"

    EVENT_CHOICES = (
        (EVENT_AUTO_SWITCHED, _("Auto-switched")),
        (EVENT_SWITCHED, _("Switched")),
        (EVENT_SUSPENDED, _("Suspended")),
        (EVENT_REACTIVATED, _("Reactivated")),
        (EVENT_TRIAL_EXPIRED, _("Trial expired")),
        (EVENT_EXTENDED, _("Extended")),
        (EVENT_CANCELLED, _("Cancelled")),
        (EVENT_PAYMENT_RECEIVED, _("Payment received")),
        (EVENT_PAYMENT_REJECTED, _("Payment rejected")),
        (EVENT_ORDER_FEE_DEDUCTED, _("Order fee deducted")),
    )

    TRIGGER_SYSTEM = "SYSTEM"
    TRIGGER_ADMIN = "ADMIN"
    TRIGGER_MERCHANT = "MERCHANT"

    TRIGGER_CHOICES = (
        (TRIGGER_SYSTEM, _("System")),
        (TRIGGER_ADMIN, _("Admin")),
        (TRIGGER_MERCHANT, _("Merchant")),
    )

    merchant = models.ForeignKey(
        Merchant, on_delete=models.PROTECT, related_name="subscription_events"
    )
    event_type = models.CharField(max_length=32, choices=EVENT_CHOICES)
    previous_type = models.CharField(max_length=16, blank=True, default="")
    previous_status = models.CharField(max_length=16, blank=True, default="")
    new_type = models.CharField(max_length=16, blank=True, default="")
    new_status = models.CharField(max_length=16, blank=True, default="")
    reason = models.CharField(max_length=255, blank=True, default="")

    # Balance of the merchant when the event was recorded
    balance_minor = models.BigIntegerField(null=True, blank=True)
    currency = models.CharField(max_length=3)
    current_period_end = models.DateTimeField(null=True, blank=True)

    payment_request = models.ForeignKey(
        PaymentRequest,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="events",
    )
    triggered_by = models.CharField(max_length=16, choices=TRIGGER_CHOICES)
    actor_id = models.BigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Subscription event")
        verbose_name_plural = _("Subscription events")
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(
                fields=["merchant", "created_at"], name="subevent_merchant_created_idx"
            ),
            models.Index(fields=["event_type"], name="subevent_type_idx"),
        ]

    def __str__(self):
        return f"{self.event_type} {self.previous_status}->{self.new_status}"

    @property
    def balance(self):
        if self.balance_minor is None:
            return None
        return Money(self.balance_minor, self.currency)

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Subscription events are immutable.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Subscription events cannot be deleted.")
