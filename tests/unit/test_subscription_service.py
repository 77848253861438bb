"""
Unit tests for SubscriptionService.

Tests for computed evaluation, admin transitions and plan switching.
"""

from datetime import timedelta

import pytest

from dj_billing.exceptions import ConflictError, NotFoundError, OwnershipError, ValidationError
from dj_billing.models import Subscription, Transaction
from dj_billing.money import Money
from dj_billing.services import KIND_ADMIN_ADJUSTMENT, KIND_CONSUMPTION_DEBIT


def reload(merchant):
    return Subscription.objects.get(merchant=merchant)


# ============================================================================
# Evaluation Tests
# ============================================================================


@pytest.mark.django_db()
class TestEvaluateTrial:
    def test_trial_within_window_stays_active(self, subscriptions, merchant, clock):
        clock.advance(days=13)
        subscription = subscriptions.evaluate_status(merchant.pk)
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.type == Subscription.TYPE_TRIAL

    def test_expired_trial_suspended(self, subscriptions, merchant, clock):
        """Trial of 14 days queried at day 15 with no top-up."""
        clock.advance(days=15)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Trial expired"
        assert subscription.suspended_at == clock.now()

    def test_expired_trial_with_balance_moves_to_deposit(
        self, subscriptions, funded_merchant, clock
    ):
        merchant = funded_merchant(amount="100000")
        clock.advance(days=15)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_DEPOSIT
        assert subscription.status == Subscription.STATUS_ACTIVE

    def test_expired_trial_with_paid_period_moves_to_monthly(
        self, subscriptions, merchant, clock
    ):
        Subscription.objects.filter(merchant=merchant).update(
            current_period_start=clock.now(),
            current_period_end=clock.now() + timedelta(days=60),
        )
        clock.advance(days=15)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_MONTHLY
        assert subscription.status == Subscription.STATUS_ACTIVE

    def test_evaluation_is_idempotent(self, subscriptions, merchant, clock, signal_receiver):
        from dj_billing.signals import subscription_status_changed

        clock.advance(days=15)
        subscriptions.evaluate_status(merchant.pk)
        first = reload(merchant)

        subscription_status_changed.connect(signal_receiver)
        try:
            subscriptions.evaluate_status(merchant.pk)
        finally:
            subscription_status_changed.disconnect(signal_receiver)

        second = reload(merchant)
        assert second.updated_at == first.updated_at
        assert not signal_receiver.was_called

    def test_unknown_merchant(self, subscriptions, db):
        with pytest.raises(NotFoundError):
            subscriptions.evaluate_status(424242)


@pytest.mark.django_db()
class TestEvaluateDeposit:
    def test_depleted_deposit_suspended_then_lifted(
        self, subscriptions, ledger, funded_merchant, system_actor, super_admin
    ):
        merchant = funded_merchant(amount="500")
        Subscription.objects.filter(merchant=merchant).update(type=Subscription.TYPE_DEPOSIT)
        ledger.adjust(system_actor, merchant.pk, "-500", KIND_CONSUMPTION_DEBIT)

        subscription = subscriptions.evaluate_status(merchant.pk)
        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Insufficient balance"

        ledger.adjust(
            super_admin,
            merchant.pk,
            "1000",
            KIND_ADMIN_ADJUSTMENT,
            txn_type=Transaction.TYPE_TOPUP,
        )
        subscription = subscriptions.evaluate_status(merchant.pk)
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.suspend_reason is None
        assert subscription.suspended_at is None


@pytest.mark.django_db()
class TestEvaluateMonthly:
    def test_lapsed_period_suspended(self, subscriptions, merchant, super_admin, clock):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=31)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Subscription expired"

    def test_period_end_is_inclusive(self, subscriptions, merchant, super_admin, clock):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=30)
        assert subscriptions.evaluate_status(merchant.pk).status == Subscription.STATUS_ACTIVE

    def test_lapsed_period_with_balance_falls_back_to_deposit(
        self, subscriptions, funded_merchant, super_admin, clock
    ):
        merchant = funded_merchant(amount="5000")
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=31)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_DEPOSIT
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.suspend_reason is None

    def test_suspended_monthly_reactivated_as_deposit_after_topup(
        self, subscriptions, ledger, merchant, super_admin, clock
    ):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=31)
        assert subscriptions.evaluate_status(merchant.pk).status == (
            Subscription.STATUS_SUSPENDED
        )

        ledger.adjust(
            super_admin,
            merchant.pk,
            "100000",
            KIND_ADMIN_ADJUSTMENT,
            txn_type=Transaction.TYPE_TOPUP,
        )
        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_DEPOSIT
        assert subscription.status == Subscription.STATUS_ACTIVE


@pytest.mark.django_db()
class TestDepositFallback:
    def test_exhausted_deposit_with_paid_period_moves_to_monthly(
        self, subscriptions, ledger, funded_merchant, super_admin, system_actor, clock
    ):
        """A deposit merchant who also paid for a period keeps service."""
        merchant = funded_merchant(amount="1000")
        subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        assert reload(merchant).type == Subscription.TYPE_DEPOSIT

        ledger.adjust(system_actor, merchant.pk, "-1000", KIND_CONSUMPTION_DEBIT)
        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_MONTHLY
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.current_period_end == clock.now() + timedelta(days=30)

    def test_exhausted_deposit_with_lapsed_period_suspended(
        self, subscriptions, ledger, funded_merchant, super_admin, system_actor, clock
    ):
        merchant = funded_merchant(amount="1000")
        subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=31)

        ledger.adjust(system_actor, merchant.pk, "-1000", KIND_CONSUMPTION_DEBIT)
        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_DEPOSIT
        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Insufficient balance"

    def test_fallback_is_stable(
        self, subscriptions, ledger, funded_merchant, super_admin, system_actor
    ):
        merchant = funded_merchant(amount="1000")
        subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        ledger.adjust(system_actor, merchant.pk, "-1000", KIND_CONSUMPTION_DEBIT)

        first = subscriptions.evaluate_status(merchant.pk)
        second = subscriptions.evaluate_status(merchant.pk)

        assert (first.type, first.status) == (second.type, second.status)
        assert second.updated_at == first.updated_at


@pytest.mark.django_db()
class TestGracePeriod:
    @pytest.fixture()
    def grace_days(self, monkeypatch):
        from dj_billing.conf import billing_settings

        monkeypatch.setattr(billing_settings, "GRACE_PERIOD_DAYS", 3)
        return 3

    def test_trial_active_during_grace(self, subscriptions, merchant, clock, grace_days):
        clock.advance(days=14 + grace_days)
        assert subscriptions.evaluate_status(merchant.pk).status == Subscription.STATUS_ACTIVE

    def test_trial_suspended_after_grace(self, subscriptions, merchant, clock, grace_days):
        clock.advance(days=14 + grace_days, seconds=1)
        subscription = subscriptions.evaluate_status(merchant.pk)
        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Trial expired"

    def test_monthly_active_during_grace(
        self, subscriptions, merchant, super_admin, clock, grace_days
    ):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=30 + grace_days)
        subscription = subscriptions.evaluate_status(merchant.pk)
        assert subscription.type == Subscription.TYPE_MONTHLY
        assert subscription.status == Subscription.STATUS_ACTIVE

    def test_monthly_suspended_after_grace(
        self, subscriptions, merchant, super_admin, clock, grace_days
    ):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=30 + grace_days, seconds=1)
        subscription = subscriptions.evaluate_status(merchant.pk)
        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Subscription expired"

    def test_grace_does_not_extend_deposit_fallback(
        self, subscriptions, ledger, funded_merchant, super_admin, system_actor, clock,
        grace_days,
    ):
        """Falling back to MONTHLY needs an unexpired period, grace aside."""
        merchant = funded_merchant(amount="1000")
        subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=31)
        ledger.adjust(system_actor, merchant.pk, "-1000", KIND_CONSUMPTION_DEBIT)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.type == Subscription.TYPE_DEPOSIT
        assert subscription.status == Subscription.STATUS_SUSPENDED


@pytest.mark.django_db()
class TestMalformedMerchantId:
    @pytest.mark.parametrize("merchant_id", ["abc", None, "1.5"])
    def test_evaluate_status(self, subscriptions, merchant_id):
        with pytest.raises(NotFoundError):
            subscriptions.evaluate_status(merchant_id)

    def test_extend_days(self, subscriptions, super_admin, db):
        with pytest.raises(NotFoundError):
            subscriptions.extend_days(super_admin, "abc", 30)

    def test_lock_scope(self, db):
        from dj_billing.locking import with_lock

        with pytest.raises(NotFoundError):
            with with_lock(["abc"]):
                pass


# ============================================================================
# Admin Transition Tests
# ============================================================================


@pytest.mark.django_db()
class TestExtendDays:
    def test_extend_lapsed_monthly_restarts_at_now(
        self, subscriptions, merchant, super_admin, clock
    ):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=45)
        subscriptions.evaluate_status(merchant.pk)

        subscription = subscriptions.extend_days(super_admin, merchant.pk, 30)

        assert subscription.current_period_start == clock.now()
        assert subscription.current_period_end == clock.now() + timedelta(days=30)
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.suspend_reason is None

    def test_extend_running_period_appends(self, subscriptions, merchant, super_admin, clock):
        first = subscriptions.extend_days(super_admin, merchant.pk, 30)
        end = first.current_period_end
        clock.advance(days=10)

        subscription = subscriptions.extend_days(super_admin, merchant.pk, 30)

        assert subscription.current_period_end == end + timedelta(days=30)

    def test_trial_becomes_monthly(self, subscriptions, merchant, super_admin):
        assert subscriptions.extend_days(super_admin, merchant.pk, 30).type == (
            Subscription.TYPE_MONTHLY
        )

    def test_writes_hidden_subscription_entry(self, subscriptions, merchant, super_admin):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        txn = Transaction.objects.get(balance__merchant=merchant)
        assert txn.type == Transaction.TYPE_SUBSCRIPTION
        assert txn.amount_minor == 0
        assert txn.ledger_visible is False

    @pytest.mark.parametrize("days", [0, -3, True, "30"])
    def test_invalid_days(self, subscriptions, merchant, super_admin, days):
        with pytest.raises(ValidationError):
            subscriptions.extend_days(super_admin, merchant.pk, days)

    def test_cancelled_conflicts(self, subscriptions, merchant, super_admin):
        subscriptions.cancel(super_admin, merchant.pk)
        with pytest.raises(ConflictError):
            subscriptions.extend_days(super_admin, merchant.pk, 30)

    def test_lifts_manual_suspension(self, subscriptions, merchant, super_admin):
        subscriptions.suspend(super_admin, merchant.pk, "Fraud review")
        subscription = subscriptions.extend_days(super_admin, merchant.pk, 30)
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.manual_override is False


@pytest.mark.django_db()
class TestSuspendActivateCancel:
    def test_manual_suspension_survives_evaluation(
        self, subscriptions, funded_merchant, super_admin
    ):
        merchant = funded_merchant()
        subscriptions.suspend(super_admin, merchant.pk, "Fraud review")

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.status == Subscription.STATUS_SUSPENDED
        assert subscription.suspend_reason == "Fraud review"
        assert subscription.manual_override is True

    def test_suspend_requires_reason(self, subscriptions, merchant, super_admin):
        with pytest.raises(ValidationError):
            subscriptions.suspend(super_admin, merchant.pk, "   ")

    def test_activate_clears_reason(self, subscriptions, merchant, super_admin):
        subscriptions.suspend(super_admin, merchant.pk, "Fraud review")
        subscription = subscriptions.activate(super_admin, merchant.pk)
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert subscription.suspend_reason is None
        assert subscription.manual_override is False

    def test_cancel_is_terminal(self, subscriptions, merchant, super_admin, clock):
        subscriptions.cancel(super_admin, merchant.pk)
        clock.advance(days=30)

        subscription = subscriptions.evaluate_status(merchant.pk)

        assert subscription.status == Subscription.STATUS_CANCELLED
        assert subscription.cancelled_at is not None
        with pytest.raises(ConflictError):
            subscriptions.cancel(super_admin, merchant.pk)
        with pytest.raises(ConflictError):
            subscriptions.activate(super_admin, merchant.pk)
        with pytest.raises(ConflictError):
            subscriptions.suspend(super_admin, merchant.pk, "late")

    def test_foreign_owner_rejected(self, subscriptions, merchant_factory, owner_factory):
        mine, theirs = merchant_factory(), merchant_factory()
        with pytest.raises(OwnershipError):
            subscriptions.suspend(owner_factory(mine), theirs.pk, "spite")
        assert reload(theirs).status == Subscription.STATUS_ACTIVE

    def test_unknown_merchant(self, subscriptions, super_admin, db):
        with pytest.raises(NotFoundError):
            subscriptions.activate(super_admin, 424242)


# ============================================================================
# Plan Switching Tests
# ============================================================================


@pytest.mark.django_db()
class TestSwitchType:
    def test_switch_to_deposit_requires_balance(self, subscriptions, merchant, super_admin):
        with pytest.raises(ConflictError):
            subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)

    def test_switch_to_deposit(self, subscriptions, funded_merchant, owner_factory):
        merchant = funded_merchant()
        subscription = subscriptions.switch_type(
            owner_factory(merchant), merchant.pk, Subscription.TYPE_DEPOSIT
        )
        assert subscription.type == Subscription.TYPE_DEPOSIT
        assert subscription.status == Subscription.STATUS_ACTIVE

    def test_switch_to_monthly_requires_period(self, subscriptions, funded_merchant, super_admin):
        merchant = funded_merchant()
        subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)
        with pytest.raises(ConflictError):
            subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_MONTHLY)

    def test_switch_to_same_type_conflicts(self, subscriptions, merchant, super_admin):
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        with pytest.raises(ConflictError):
            subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_MONTHLY)

    def test_switch_reactivates_lapsed_monthly(
        self, subscriptions, funded_merchant, super_admin, clock
    ):
        merchant = funded_merchant()
        subscriptions.extend_days(super_admin, merchant.pk, 30)
        clock.advance(days=31)
        assert subscriptions.evaluate_status(merchant.pk).status == Subscription.STATUS_SUSPENDED

        subscription = subscriptions.switch_type(
            super_admin, merchant.pk, Subscription.TYPE_DEPOSIT
        )

        assert subscription.status == Subscription.STATUS_ACTIVE

    def test_invalid_target(self, subscriptions, merchant, super_admin):
        with pytest.raises(ValidationError):
            subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_TRIAL)


# ============================================================================
# Status Read Tests
# ============================================================================


@pytest.mark.django_db()
class TestGetStatus:
    def test_trial_status(self, subscriptions, merchant, clock):
        clock.advance(days=4)
        status = subscriptions.get_status(merchant.pk)
        assert status.type == Subscription.TYPE_TRIAL
        assert status.is_valid is True
        assert status.days_remaining == 10
        assert status.balance is None

    def test_deposit_status_reports_balance(self, subscriptions, funded_merchant, super_admin):
        merchant = funded_merchant(amount="2000")
        subscriptions.switch_type(super_admin, merchant.pk, Subscription.TYPE_DEPOSIT)

        status = subscriptions.get_status(merchant.pk)

        assert status.balance == Money(2000, "IDR")
        assert status.low_balance is True
        assert status.days_remaining is None

    def test_unknown_merchant(self, subscriptions, db):
        with pytest.raises(NotFoundError):
            subscriptions.get_status(424242)
