"""
Payment request reconciliation.

A merchant opens a request, pays off-platform and confirms; a super-admin
then verifies or rejects it. Verification applies the ledger or
subscription effect, re-evaluates the subscription and marks the request
VERIFIED in one unit of work, so the effect is applied exactly once.
"""

import logging
from datetime import timedelta

from ..auth import AuthContext, require_owner, require_super_admin
from ..conf import billing_settings
from ..exceptions import ConflictError, NotFoundError, ValidationError
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
from ..signals import payment_request_verified
from ..utils import get_clock, get_ledger_service, get_plan_pricing, get_subscription_service
from .ledger import KIND_ADMIN_ADJUSTMENT

logger = logging.getLogger(__name__)

MAX_RENEWAL_PERIODS = 12

PAYMENT_LABELS = {
    PaymentRequest.TYPE_DEPOSIT_TOPUP: "deposit top-up",
    PaymentRequest.TYPE_SUBSCRIPTION_RENEWAL: "subscription renewal",
}


class PaymentRequestService:
    def __init__(self, clock=None, ledger=None, subscriptions=None):
        self.clock = clock or get_clock()
        self.ledger = ledger or get_ledger_service()(clock=self.clock)
        self.subscriptions = subscriptions or get_subscription_service()(
            clock=self.clock, ledger=self.ledger
        )

    def _get_request(self, request_id) -> PaymentRequest:
        try:
            return PaymentRequest.objects.get(pk=request_id)
        except (PaymentRequest.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Payment request {request_id} not found") from None

    @staticmethod
    def _lock_request(request_id) -> PaymentRequest:
        return PaymentRequest.objects.select_for_update().get(pk=request_id)

    def _renewal_price(self, currency, days):
        period = billing_settings.MONTHLY_PERIOD_DAYS
        if days is None:
            days = period
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError("days must be a positive integer.")
        periods, remainder = divmod(days, period)
        if remainder or not 1 <= periods <= MAX_RENEWAL_PERIODS:
            raise ValidationError(
                f"Renewals are sold in blocks of {period} days, "
                f"1 to {MAX_RENEWAL_PERIODS} blocks at a time."
            )
        return days, get_plan_pricing(currency).monthly_price * periods

    def create(
        self, actor: AuthContext, merchant_id, type: str, amount=None, days=None
    ) -> PaymentRequest:
        """Open a top-up or renewal request for a merchant the actor owns."""
        try:
            merchant = Merchant.objects.get(pk=merchant_id)
        except (Merchant.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Merchant {merchant_id} not found") from None
        require_owner(actor, merchant.pk, allow_super_admin=False)

        if type == PaymentRequest.TYPE_DEPOSIT_TOPUP:
            money = self.ledger.to_money(amount, merchant.currency)
            minimum = get_plan_pricing(merchant.currency).deposit_minimum
            if money < minimum:
                raise ValidationError(f"Minimum deposit is {minimum}.")
            days_requested = None
        elif type == PaymentRequest.TYPE_SUBSCRIPTION_RENEWAL:
            days_requested, money = self._renewal_price(merchant.currency, days)
            if amount is not None and self.ledger.to_money(amount, merchant.currency) != money:
                raise ValidationError(f"A {days_requested} day renewal costs {money}.")
        else:
            raise ValidationError(f"Unknown payment request type: {type!r}")

        with with_lock([merchant.pk]) as scope:
            if scope.subscription(merchant.pk).is_cancelled:
                raise ConflictError(f"Subscription of merchant {merchant.pk} is cancelled.")
            if PaymentRequest.objects.filter(
                merchant_id=merchant.pk, status__in=PaymentRequest.OPEN_STATUSES
            ).exists():
                logger.warning(
                    "Rejected second open payment request for merchant=%s", merchant.pk
                )
                raise ConflictError(
                    f"Merchant {merchant.pk} already has an open payment request."
                )

            now = self.clock.now()
            request = PaymentRequest.objects.create(
                merchant=merchant,
                type=type,
                amount_minor=money.minor,
                currency=money.currency,
                days_requested=days_requested,
                created_by_actor_id=actor.actor_id,
                created_at=now,
                expires_at=now + timedelta(hours=billing_settings.PAYMENT_REQUEST_TTL_HOURS),
            )

        logger.info(
            "Payment request %s (%s, %s) opened for merchant=%s",
            request.pk,
            type,
            money,
            merchant.pk,
        )
        return request

    def confirm(
        self, actor: AuthContext, request_id, transfer_notes: str = ""
    ) -> PaymentRequest:
        """Merchant claims the transfer was made. Only PENDING requests qualify."""
        request = self._get_request(request_id)
        require_owner(actor, request.merchant_id)

        expired = False
        with with_lock([request.merchant_id]):
            request = self._lock_request(request.pk)
            if request.status != PaymentRequest.STATUS_PENDING:
                raise ConflictError(
                    f"Payment request {request.pk} is {request.status}, not PENDING."
                )
            now = self.clock.now()
            if now > request.expires_at:
                request.status = PaymentRequest.STATUS_EXPIRED
                request.decided_at = now
                expired = True
            else:
                request.status = PaymentRequest.STATUS_CONFIRMED
                request.confirmed_at = now
                request.transfer_notes = transfer_notes or ""
            request.save()

        if expired:
            raise ConflictError(f"Payment request {request.pk} has expired.")
        return request

    def verify(self, actor: AuthContext, request_id) -> PaymentRequest:
        """
        Apply a paid request.

        DEPOSIT_TOPUP credits the balance with a TOPUP transaction.
        SUBSCRIPTION_RENEWAL extends the paid period (moving a deposit merchant
        onto MONTHLY). The subscription is then re-evaluated. Everything
        commits together or not at all.
        """
        require_super_admin(actor)
        request = self._get_request(request_id)
        merchant_id = request.merchant_id

        with with_lock([merchant_id]) as scope:
            request = self._lock_request(request.pk)
            if not request.is_open:
                logger.warning(
                    "Refused to verify payment request %s in status %s",
                    request.pk,
                    request.status,
                )
                raise ConflictError(
                    f"Payment request {request.pk} is already {request.status}."
                )

            before = scope.subscription(merchant_id)
            previous_type, previous_status = before.type, before.status
            now = self.clock.now()
            request.status = PaymentRequest.STATUS_VERIFIED
            request.decided_at = now
            request.decided_by_actor_id = actor.actor_id
            request.save()

            if request.type == PaymentRequest.TYPE_DEPOSIT_TOPUP:
                self.ledger.adjust(
                    actor,
                    merchant_id,
                    request.amount,
                    KIND_ADMIN_ADJUSTMENT,
                    description=f"Deposit top-up (payment request #{request.pk})",
                    txn_type=Transaction.TYPE_TOPUP,
                    reference=f"payreq-{request.pk}",
                    payment_request=request,
                )
            else:
                subscription = self.subscriptions.extend_days(
                    actor, merchant_id, request.days_requested, payment_request=request
                )
                if subscription.type == Subscription.TYPE_DEPOSIT:
                    self.subscriptions.switch_type(
                        actor, merchant_id, Subscription.TYPE_MONTHLY
                    )

            subscription = self.subscriptions.evaluate_status(merchant_id)
            record_event(
                merchant_id,
                SubscriptionEvent.EVENT_PAYMENT_RECEIVED,
                now=now,
                currency=request.currency,
                actor=actor,
                previous_type=previous_type,
                previous_status=previous_status,
                subscription=subscription,
                reason=(
                    f"Payment of {request.amount} verified for "
                    f"{PAYMENT_LABELS[request.type]}"
                ),
                balance_minor=Balance.objects.get(merchant_id=merchant_id).amount_minor,
                payment_request=request,
            )
            payment_request_verified.send(sender=self.__class__, payment_request=request)

        logger.info(
            "Payment request %s verified by actor=%s: %s for merchant=%s",
            request.pk,
            actor.actor_id,
            request.amount,
            merchant_id,
        )
        return request

    def reject(self, actor: AuthContext, request_id, reason: str) -> PaymentRequest:
        require_super_admin(actor)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required.")
        request = self._get_request(request_id)

        with with_lock([request.merchant_id]) as scope:
            request = self._lock_request(request.pk)
            if not request.is_open:
                raise ConflictError(
                    f"Payment request {request.pk} is already {request.status}."
                )
            now = self.clock.now()
            request.status = PaymentRequest.STATUS_REJECTED
            request.rejection_reason = reason
            request.decided_at = now
            request.decided_by_actor_id = actor.actor_id
            request.save()

            subscription = scope.subscription(request.merchant_id)
            record_event(
                request.merchant_id,
                SubscriptionEvent.EVENT_PAYMENT_REJECTED,
                now=now,
                currency=request.currency,
                actor=actor,
                previous_type=subscription.type,
                previous_status=subscription.status,
                subscription=subscription,
                reason=f"Payment of {request.amount} rejected: {reason}",
                balance_minor=scope.balance(request.merchant_id).amount_minor,
                payment_request=request,
            )

        logger.info("Payment request %s rejected: %s", request.pk, reason)
        return request

    def expire_stale(self) -> int:
        """Mark PENDING requests past their expiry as EXPIRED. Returns the count."""
        now = self.clock.now()
        candidates = PaymentRequest.objects.filter(
            status=PaymentRequest.STATUS_PENDING, expires_at__lt=now
        ).values_list("pk", "merchant_id")

        expired = 0
        for request_id, merchant_id in list(candidates):
            with with_lock([merchant_id]):
                request = self._lock_request(request_id)
                if request.status != PaymentRequest.STATUS_PENDING or request.expires_at >= now:
                    continue
                request.status = PaymentRequest.STATUS_EXPIRED
                request.decided_at = now
                request.save()
                expired += 1

        if expired:
            logger.info("Expired %s stale payment request(s)", expired)
        return expired
