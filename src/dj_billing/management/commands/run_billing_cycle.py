from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from dj_billing.models import Merchant
from dj_billing.services.scheduler import BillingScheduler


class Command(BaseCommand):
    help = "Re-evaluate merchant subscriptions and expire stale payment requests."

    def add_arguments(self, parser):
        parser.add_argument("--merchant-code", help="Optional merchant code filter.")

    def handle(self, *args, **options):
        merchant_code = (options.get("merchant_code") or "").strip().lower()
        merchant_ids = None
        if merchant_code:
            merchant = Merchant.objects.filter(code__iexact=merchant_code).first()
            if merchant is None:
                raise CommandError("Merchant not found for --merchant-code.")
            merchant_ids = [merchant.pk]

        result = BillingScheduler().run(merchant_ids=merchant_ids)

        summary = (
            f"evaluated={result.evaluated} suspended={result.suspended} "
            f"reactivated={result.reactivated} expired_requests={result.expired_requests} "
            f"failed={result.failed}"
        )
        if result.failed:
            self.stdout.write(self.style.WARNING(summary))
            for merchant_id in result.failed_merchant_ids:
                self.stdout.write(f"FAILED merchant_id={merchant_id}")
        else:
            self.stdout.write(self.style.SUCCESS(summary))
