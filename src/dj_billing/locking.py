"""
Unit of work used by every mutating billing operation.

``with_lock`` opens one ``transaction.atomic()`` block and takes a row lock
on the Balance and Subscription of each merchant involved, always in
ascending merchant id order, so two operations touching the same merchants
in opposite directions cannot deadlock. Nested calls become savepoints of
the outer unit and re-lock rows the transaction already holds.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field

from django.db import transaction

from .exceptions import NotFoundError
from .models import Balance, Merchant, Subscription


@dataclass
class LockedScope:
    balances: dict = field(default_factory=dict)
    subscriptions: dict = field(default_factory=dict)

    def balance(self, merchant_id) -> Balance:
        return self.balances[int(merchant_id)]

    def subscription(self, merchant_id) -> Subscription:
        return self.subscriptions[int(merchant_id)]


def _merchant_pk(merchant_id):
    try:
        return int(merchant_id)
    except (ValueError, TypeError):
        raise NotFoundError(f"Merchant {merchant_id} not found") from None


@contextmanager
def with_lock(merchant_ids):
    ids = sorted({_merchant_pk(m) for m in merchant_ids})
    with transaction.atomic():
        scope = LockedScope()
        for merchant_id in ids:
            try:
                scope.balances[merchant_id] = (
                    Balance.objects.select_for_update().get(merchant_id=merchant_id)
                )
            except Balance.DoesNotExist:
                if not Merchant.objects.filter(pk=merchant_id).exists():
                    raise NotFoundError(f"Merchant {merchant_id} not found") from None
                raise NotFoundError(
                    f"Balance for merchant {merchant_id} not found"
                ) from None
        for merchant_id in ids:
            try:
                scope.subscriptions[merchant_id] = (
                    Subscription.objects.select_for_update().get(merchant_id=merchant_id)
                )
            except Subscription.DoesNotExist:
                raise NotFoundError(
                    f"Subscription for merchant {merchant_id} not found"
                ) from None
        yield scope
