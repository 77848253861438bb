"""
Subscription state machine.

``type`` says which plan a merchant is on (TRIAL, DEPOSIT, MONTHLY, NONE);
``status`` says whether service is on. Computed evaluation derives status
from balance and elapsed time; an admin suspension (``manual_override``) is
left alone until an explicit ``activate``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.db import transaction

from ..auth import AuthContext, require_owner
from ..clock import days_until
from ..conf import billing_settings
from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..history import get_history, record_event
from ..locking import with_lock
from ..models import Balance, Merchant, Subscription, SubscriptionEvent
from ..money import Money
from ..signals import subscription_status_changed
from ..utils import get_clock, get_ledger_service

logger = logging.getLogger(__name__)

REASON_TRIAL_EXPIRED = "Trial expired"
REASON_INSUFFICIENT_BALANCE = "Insufficient balance"
REASON_SUBSCRIPTION_EXPIRED = "Subscription expired"

SWITCH_TARGETS = (Subscription.TYPE_DEPOSIT, Subscription.TYPE_MONTHLY)

SWITCH_CAUSES = {
    Subscription.TYPE_TRIAL: "Trial expired",
    Subscription.TYPE_DEPOSIT: "Deposit balance exhausted",
    Subscription.TYPE_MONTHLY: "Monthly period expired",
}


@dataclass(frozen=True)
class SubscriptionStatus:
    merchant_id: int
    type: str
    status: str
    is_valid: bool
    suspend_reason: str | None
    trial_ends_at: datetime | None
    current_period_end: datetime | None
    days_remaining: int | None
    balance: Money | None = None
    low_balance: bool = False


class SubscriptionService:
    def __init__(self, clock=None, ledger=None):
        self.clock = clock or get_clock()
        self.ledger = ledger or get_ledger_service()(clock=self.clock)

    def provision_merchant(self, merchant: Merchant) -> Subscription:
        """
        Create the Balance and trial Subscription of a new merchant.

        Safe to call more than once; existing rows are returned untouched.
        """
        now = self.clock.now()
        with transaction.atomic():
            Balance.objects.get_or_create(merchant=merchant)
            subscription, created = Subscription.objects.get_or_create(
                merchant=merchant,
                defaults={
                    "type": Subscription.TYPE_TRIAL,
                    "status": Subscription.STATUS_ACTIVE,
                    "trial_started_at": now,
                    "trial_ends_at": now + timedelta(days=billing_settings.TRIAL_DAYS),
                },
            )
        if created:
            logger.info(
                "Provisioned merchant=%s with a %s day trial",
                merchant.pk,
                billing_settings.TRIAL_DAYS,
            )
        return subscription

    # ------------------------------------------------------------------
    # Computed evaluation
    # ------------------------------------------------------------------

    def _computed_state(self, subscription: Subscription, balance: Balance, now):
        """Return (type, status, reason) implied by balance and time."""
        sub_type = subscription.type
        grace = timedelta(days=billing_settings.GRACE_PERIOD_DAYS)
        period_end = subscription.current_period_end
        period_active = period_end is not None and now <= period_end
        has_balance = balance.amount_minor > 0

        if sub_type == Subscription.TYPE_TRIAL:
            trial_end = subscription.trial_ends_at
            if trial_end is None or now <= trial_end + grace:
                return sub_type, Subscription.STATUS_ACTIVE, None
            # Trial over: fall through to a paid plan the merchant already has
            if period_active:
                return Subscription.TYPE_MONTHLY, Subscription.STATUS_ACTIVE, None
            if has_balance:
                return Subscription.TYPE_DEPOSIT, Subscription.STATUS_ACTIVE, None
            return sub_type, Subscription.STATUS_SUSPENDED, REASON_TRIAL_EXPIRED

        if sub_type == Subscription.TYPE_DEPOSIT:
            if has_balance:
                return sub_type, Subscription.STATUS_ACTIVE, None
            if period_active:
                return Subscription.TYPE_MONTHLY, Subscription.STATUS_ACTIVE, None
            return sub_type, Subscription.STATUS_SUSPENDED, REASON_INSUFFICIENT_BALANCE

        if sub_type == Subscription.TYPE_MONTHLY:
            if period_end is not None and now <= period_end + grace:
                return sub_type, Subscription.STATUS_ACTIVE, None
            if has_balance:
                return Subscription.TYPE_DEPOSIT, Subscription.STATUS_ACTIVE, None
            return sub_type, Subscription.STATUS_SUSPENDED, REASON_SUBSCRIPTION_EXPIRED

        return sub_type, subscription.status, subscription.suspend_reason

    @staticmethod
    def _event_type(previous_type, previous_status, subscription):
        if subscription.type != previous_type:
            return SubscriptionEvent.EVENT_AUTO_SWITCHED
        if subscription.status == Subscription.STATUS_SUSPENDED:
            if subscription.suspend_reason == REASON_TRIAL_EXPIRED:
                return SubscriptionEvent.EVENT_TRIAL_EXPIRED
            return SubscriptionEvent.EVENT_SUSPENDED
        if previous_status == Subscription.STATUS_SUSPENDED:
            return SubscriptionEvent.EVENT_REACTIVATED
        return None

    def _record(
        self,
        subscription: Subscription,
        event_type: str,
        now,
        actor: AuthContext | None = None,
        previous_type: str = "",
        previous_status: str = "",
        reason: str | None = None,
        balance: Balance | None = None,
        payment_request=None,
    ):
        if reason is None:
            reason = subscription.suspend_reason
        return record_event(
            subscription.merchant_id,
            event_type,
            now=now,
            currency=subscription.merchant.currency,
            actor=actor,
            previous_type=previous_type,
            previous_status=previous_status,
            subscription=subscription,
            reason=reason,
            balance_minor=balance.amount_minor if balance is not None else None,
            payment_request=payment_request,
        )

    def _apply(
        self, subscription: Subscription, balance: Balance, now, actor=None
    ) -> str:
        """Bring a locked subscription in line with its computed state."""
        previous_type = subscription.type
        previous_status = subscription.status
        if subscription.is_cancelled or subscription.manual_override:
            return previous_status

        sub_type, status, reason = self._computed_state(subscription, balance, now)
        if (sub_type, status, reason) == (
            subscription.type,
            subscription.status,
            subscription.suspend_reason,
        ):
            return previous_status

        if sub_type != subscription.type:
            logger.info(
                "Merchant=%s switched from %s to %s",
                subscription.merchant_id,
                subscription.type,
                sub_type,
            )
        subscription.type = sub_type
        self._set_status(subscription, status, reason, now)
        subscription.save()

        event_type = self._event_type(previous_type, previous_status, subscription)
        if event_type is not None:
            self._record(
                subscription,
                event_type,
                now,
                actor=actor,
                previous_type=previous_type,
                previous_status=previous_status,
                reason=self._switch_reason(previous_type, subscription),
                balance=balance,
            )
        self._notify(subscription, previous_status)
        return previous_status

    @staticmethod
    def _switch_reason(previous_type, subscription):
        if subscription.type == previous_type:
            return None
        cause = SWITCH_CAUSES.get(previous_type, previous_type)
        return f"{cause}, switched to {subscription.type}"

    def _set_status(self, subscription, status, reason, now):
        if status == Subscription.STATUS_SUSPENDED:
            if subscription.status != Subscription.STATUS_SUSPENDED:
                subscription.suspended_at = now
        else:
            subscription.suspended_at = None
        subscription.status = status
        subscription.suspend_reason = reason

    def _notify(self, subscription, previous_status):
        if subscription.status == previous_status:
            return
        logger.info(
            "Subscription of merchant=%s %s -> %s (%s)",
            subscription.merchant_id,
            previous_status,
            subscription.status,
            subscription.suspend_reason or "no reason",
        )
        subscription_status_changed.send(
            sender=self.__class__,
            subscription=subscription,
            previous_status=previous_status,
        )

    def evaluate_status_change(self, merchant_id):
        """Evaluate one merchant; returns (subscription, previous_status)."""
        with with_lock([merchant_id]) as scope:
            subscription = scope.subscription(merchant_id)
            previous_status = self._apply(
                subscription, scope.balance(merchant_id), self.clock.now()
            )
        return subscription, previous_status

    def evaluate_status(self, merchant_id) -> Subscription:
        subscription, _previous = self.evaluate_status_change(merchant_id)
        return subscription

    # ------------------------------------------------------------------
    # Admin transitions
    # ------------------------------------------------------------------

    def _locked(self, actor: AuthContext, merchant_id):
        try:
            exists = Merchant.objects.filter(pk=merchant_id).exists()
        except (ValueError, TypeError):
            exists = False
        if not exists:
            raise NotFoundError(f"Merchant {merchant_id} not found")
        require_owner(actor, merchant_id)
        return with_lock([merchant_id])

    @staticmethod
    def _ensure_not_cancelled(subscription):
        if subscription.is_cancelled:
            raise ConflictError(
                f"Subscription of merchant {subscription.merchant_id} is cancelled."
            )

    def extend_days(
        self, actor: AuthContext, merchant_id, days: int, payment_request=None
    ) -> Subscription:
        """
        Add ``days`` of paid service.

        A lapsed or missing period restarts at now; a running one is extended
        from its current end.
        """
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError("days must be a positive integer.")

        with self._locked(actor, merchant_id) as scope:
            subscription = scope.subscription(merchant_id)
            self._ensure_not_cancelled(subscription)
            previous_type = subscription.type
            previous_status = subscription.status
            now = self.clock.now()

            end = subscription.current_period_end
            if end is None or end < now:
                subscription.current_period_start = now
                subscription.current_period_end = now + timedelta(days=days)
            else:
                subscription.current_period_end = end + timedelta(days=days)

            if subscription.type in (Subscription.TYPE_NONE, Subscription.TYPE_TRIAL):
                subscription.type = Subscription.TYPE_MONTHLY
            subscription.manual_override = False
            self._set_status(subscription, Subscription.STATUS_ACTIVE, None, now)
            subscription.save()

            self.ledger.record_subscription_entry(
                actor,
                merchant_id,
                f"Subscription extended by {days} days",
                payment_request=payment_request,
            )
            self._record(
                subscription,
                SubscriptionEvent.EVENT_EXTENDED,
                now,
                actor=actor,
                previous_type=previous_type,
                previous_status=previous_status,
                reason=f"Extended by {days} days",
                balance=scope.balance(merchant_id),
                payment_request=payment_request,
            )
            self._notify(subscription, previous_status)

        logger.info(
            "Extended merchant=%s by %s days until %s",
            merchant_id,
            days,
            subscription.current_period_end,
        )
        return subscription

    def suspend(self, actor: AuthContext, merchant_id, reason: str) -> Subscription:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A suspension reason is required.")

        with self._locked(actor, merchant_id) as scope:
            subscription = scope.subscription(merchant_id)
            self._ensure_not_cancelled(subscription)
            previous_status = subscription.status
            now = self.clock.now()
            subscription.manual_override = True
            self._set_status(subscription, Subscription.STATUS_SUSPENDED, reason[:255], now)
            subscription.save()
            self._record(
                subscription,
                SubscriptionEvent.EVENT_SUSPENDED,
                now,
                actor=actor,
                previous_type=subscription.type,
                previous_status=previous_status,
                balance=scope.balance(merchant_id),
            )
            self._notify(subscription, previous_status)
        return subscription

    def activate(self, actor: AuthContext, merchant_id) -> Subscription:
        """Lift any suspension, manual or computed. Dates are not touched."""
        with self._locked(actor, merchant_id) as scope:
            subscription = scope.subscription(merchant_id)
            self._ensure_not_cancelled(subscription)
            previous_status = subscription.status
            previous_reason = subscription.suspend_reason
            now = self.clock.now()
            subscription.manual_override = False
            self._set_status(subscription, Subscription.STATUS_ACTIVE, None, now)
            subscription.save()
            if previous_status != Subscription.STATUS_ACTIVE:
                self._record(
                    subscription,
                    SubscriptionEvent.EVENT_REACTIVATED,
                    now,
                    actor=actor,
                    previous_type=subscription.type,
                    previous_status=previous_status,
                    reason=f"Lifted suspension: {previous_reason}",
                    balance=scope.balance(merchant_id),
                )
            self._notify(subscription, previous_status)
        return subscription

    def cancel(self, actor: AuthContext, merchant_id) -> Subscription:
        with self._locked(actor, merchant_id) as scope:
            subscription = scope.subscription(merchant_id)
            self._ensure_not_cancelled(subscription)
            previous_status = subscription.status
            now = self.clock.now()
            subscription.manual_override = False
            subscription.cancelled_at = now
            self._set_status(subscription, Subscription.STATUS_CANCELLED, None, now)
            subscription.save()
            self._record(
                subscription,
                SubscriptionEvent.EVENT_CANCELLED,
                now,
                actor=actor,
                previous_type=subscription.type,
                previous_status=previous_status,
                reason="",
                balance=scope.balance(merchant_id),
            )
            self._notify(subscription, previous_status)
        return subscription

    def switch_type(self, actor: AuthContext, merchant_id, target: str) -> Subscription:
        """
        Move a merchant onto the DEPOSIT or MONTHLY plan.

        DEPOSIT needs a positive balance, MONTHLY an unexpired paid period.
        """
        if target not in SWITCH_TARGETS:
            raise ValidationError(f"Cannot switch to {target!r}.")

        with self._locked(actor, merchant_id) as scope:
            subscription = scope.subscription(merchant_id)
            balance = scope.balance(merchant_id)
            self._ensure_not_cancelled(subscription)
            now = self.clock.now()

            if subscription.type == target:
                raise ConflictError(f"Merchant {merchant_id} is already on {target}.")
            if target == Subscription.TYPE_DEPOSIT and balance.amount_minor <= 0:
                raise ConflictError("Switching to DEPOSIT requires a positive balance.")
            if target == Subscription.TYPE_MONTHLY and (
                subscription.current_period_end is None
                or subscription.current_period_end < now
            ):
                raise ConflictError("Switching to MONTHLY requires an active period.")

            logger.info(
                "Merchant=%s switched from %s to %s by actor=%s",
                merchant_id,
                subscription.type,
                target,
                actor.actor_id,
            )
            previous_type = subscription.type
            subscription.type = target
            subscription.save()
            self._record(
                subscription,
                SubscriptionEvent.EVENT_SWITCHED,
                now,
                actor=actor,
                previous_type=previous_type,
                previous_status=subscription.status,
                reason=f"Switched from {previous_type} to {target}",
                balance=balance,
            )
            self._apply(subscription, balance, now, actor=actor)
        return subscription

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, merchant_id) -> SubscriptionStatus:
        try:
            subscription = Subscription.objects.get(merchant_id=merchant_id)
        except (Subscription.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(
                f"Subscription for merchant {merchant_id} not found"
            ) from None

        now = self.clock.now()
        balance = None
        low_balance = False
        days_remaining = None
        if subscription.type == Subscription.TYPE_TRIAL:
            days_remaining = days_until(subscription.trial_ends_at, now)
        elif subscription.type == Subscription.TYPE_MONTHLY:
            days_remaining = days_until(subscription.current_period_end, now)
        elif subscription.type == Subscription.TYPE_DEPOSIT:
            balance = self.ledger.get_balance(merchant_id).amount
            low_balance = self.ledger.is_low_balance(
                merchant_id, billing_settings.LOW_BALANCE_ORDER_THRESHOLD
            )

        return SubscriptionStatus(
            merchant_id=subscription.merchant_id,
            type=subscription.type,
            status=subscription.status,
            is_valid=subscription.status == Subscription.STATUS_ACTIVE,
            suspend_reason=subscription.suspend_reason,
            trial_ends_at=subscription.trial_ends_at,
            current_period_end=subscription.current_period_end,
            days_remaining=days_remaining,
            balance=balance,
            low_balance=low_balance,
        )

    def get_history(self, merchant_id, event_type=None, limit=50, offset=0):
        """Recorded plan and payment events of a merchant, newest first."""
        return get_history(merchant_id, event_type=event_type, limit=limit, offset=offset)
