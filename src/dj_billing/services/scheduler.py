"""
Periodic billing job.

Re-evaluates every non-cancelled subscription through the same locked path
admin actions use, then expires stale payment requests.
"""

import logging
from dataclasses import dataclass, field

from ..models import Subscription
from ..utils import get_clock, get_ledger_service, get_payment_request_service, get_subscription_service

logger = logging.getLogger(__name__)


@dataclass
class BillingRunResult:
    evaluated: int = 0
    suspended: int = 0
    reactivated: int = 0
    expired_requests: int = 0
    failed: int = 0
    failed_merchant_ids: list = field(default_factory=list)


class BillingScheduler:
    def __init__(self, clock=None, subscriptions=None, payment_requests=None):
        self.clock = clock or get_clock()
        ledger = get_ledger_service()(clock=self.clock)
        self.subscriptions = subscriptions or get_subscription_service()(
            clock=self.clock, ledger=ledger
        )
        self.payment_requests = payment_requests or get_payment_request_service()(
            clock=self.clock, ledger=ledger, subscriptions=self.subscriptions
        )

    def run(self, merchant_ids=None) -> BillingRunResult:
        result = BillingRunResult()

        queryset = Subscription.objects.exclude(status=Subscription.STATUS_CANCELLED)
        if merchant_ids is not None:
            queryset = queryset.filter(merchant_id__in=merchant_ids)
        ids = list(queryset.order_by("merchant_id").values_list("merchant_id", flat=True))

        for merchant_id in ids:
            try:
                subscription, previous_status = (
                    self.subscriptions.evaluate_status_change(merchant_id)
                )
            except Exception:
                logger.exception("Billing evaluation failed for merchant=%s", merchant_id)
                result.failed += 1
                result.failed_merchant_ids.append(merchant_id)
                continue

            result.evaluated += 1
            if subscription.status == previous_status:
                continue
            if subscription.status == Subscription.STATUS_SUSPENDED:
                result.suspended += 1
            elif subscription.status == Subscription.STATUS_ACTIVE:
                result.reactivated += 1

        result.expired_requests = self.payment_requests.expire_stale()

        logger.info(
            "Billing run: evaluated=%s suspended=%s reactivated=%s "
            "expired_requests=%s failed=%s",
            result.evaluated,
            result.suspended,
            result.reactivated,
            result.expired_requests,
            result.failed,
        )
        return result
