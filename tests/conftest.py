"""
Pytest configuration and fixtures for dj_billing tests.
"""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone

import django
import pytest

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


def pytest_configure():
    """Configure Django settings before running tests."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "tests.settings")
    django.setup()


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ============================================================================
# Clock and Actor Fixtures
# ============================================================================


@pytest.fixture()
def clock():
    """A FixedClock frozen at T0."""
    from dj_billing.clock import FixedClock

    return FixedClock(T0)


@pytest.fixture()
def system_actor():
    from dj_billing.auth import AuthContext

    return AuthContext.system()


@pytest.fixture()
def super_admin():
    from dj_billing.auth import ROLE_SUPER_ADMIN, AuthContext

    return AuthContext(actor_id=1, role=ROLE_SUPER_ADMIN)


@pytest.fixture()
def owner_factory():
    """Factory for OWNER contexts over the given merchants."""
    from dj_billing.auth import ROLE_OWNER, AuthContext

    def create_owner(*merchants, actor_id=100):
        return AuthContext(
            actor_id=actor_id,
            role=ROLE_OWNER,
            owned_merchant_ids=frozenset(m.pk for m in merchants),
        )

    return create_owner


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture()
def ledger(clock):
    from dj_billing.services import LedgerService

    return LedgerService(clock=clock)


@pytest.fixture()
def subscriptions(clock, ledger):
    from dj_billing.services import SubscriptionService

    return SubscriptionService(clock=clock, ledger=ledger)


@pytest.fixture()
def payment_requests(clock, ledger, subscriptions):
    from dj_billing.services import PaymentRequestService

    return PaymentRequestService(clock=clock, ledger=ledger, subscriptions=subscriptions)


@pytest.fixture()
def scheduler(clock, subscriptions, payment_requests):
    from dj_billing.services import BillingScheduler

    return BillingScheduler(
        clock=clock, subscriptions=subscriptions, payment_requests=payment_requests
    )


# ============================================================================
# Merchant Fixtures
# ============================================================================


@pytest.fixture()
def merchant_factory(db, clock):
    """
    Factory for creating merchants.

    Provisioning runs on post_save with the wall clock; the trial is then
    re-anchored at the test clock so time-based tests start from T0.
    """
    from dj_billing.conf import billing_settings
    from dj_billing.models import Merchant, Subscription

    def create_merchant(code=None, currency="IDR", parent=None, **kwargs):
        if code is None:
            code = f"m-{uuid.uuid4().hex[:8]}"
        merchant = Merchant.objects.create(
            code=code,
            name=kwargs.pop("name", code.upper()),
            currency=currency,
            parent=parent,
            **kwargs,
        )
        Subscription.objects.filter(merchant=merchant).update(
            trial_started_at=clock.now(),
            trial_ends_at=clock.now() + timedelta(days=billing_settings.TRIAL_DAYS),
        )
        return merchant

    return create_merchant


@pytest.fixture()
def merchant(merchant_factory):
    """A single IDR merchant on a fresh trial."""
    return merchant_factory()


@pytest.fixture()
def funded_merchant(merchant_factory, ledger, system_actor):
    """Factory for merchants credited with an opening TOPUP."""
    from dj_billing.models import Transaction
    from dj_billing.services import KIND_ADMIN_ADJUSTMENT

    def create_funded(amount="100000", **kwargs):
        merchant = merchant_factory(**kwargs)
        ledger.adjust(
            system_actor,
            merchant.pk,
            amount,
            KIND_ADMIN_ADJUSTMENT,
            description="Opening balance",
            txn_type=Transaction.TYPE_TOPUP,
        )
        return merchant

    return create_funded


@pytest.fixture()
def branch_group(merchant_factory):
    """A MAIN merchant with two branches."""
    main = merchant_factory(code="resto-main")
    branch_a = merchant_factory(code="resto-a", parent=main)
    branch_b = merchant_factory(code="resto-b", parent=main)
    return main, branch_a, branch_b


# ============================================================================
# Signal Testing Fixtures
# ============================================================================


@pytest.fixture()
def signal_receiver():
    """Helper fixture for testing signals."""

    class SignalReceiver:
        def __init__(self):
            self.calls = []
            self.last_sender = None
            self.last_kwargs = None

        def __call__(self, sender, **kwargs):
            self.calls.append((sender, kwargs))
            self.last_sender = sender
            self.last_kwargs = kwargs

        @property
        def call_count(self):
            return len(self.calls)

        @property
        def was_called(self):
            return len(self.calls) > 0

        def reset(self):
            self.calls = []
            self.last_sender = None
            self.last_kwargs = None

    return SignalReceiver()
