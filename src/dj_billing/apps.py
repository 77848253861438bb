"""
Django app configuration for dj_billing.
"""

from django.apps import AppConfig
from django.db.models.signals import post_save


def _provision_new_merchant(sender, instance, created, raw=False, **kwargs):
    """Bridge Django post_save to SubscriptionService.provision_merchant."""
    if not created or raw:
        return
    from .utils import get_subscription_service

    get_subscription_service()().provision_merchant(instance)


class DjBillingConfig(AppConfig):
    """Configuration for the merchant billing application."""

    name = "dj_billing"
    verbose_name = "Merchant Billing"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        # Import signals to register them
        from . import signals  # noqa: F401
        from .models import Merchant

        post_save.connect(
            _provision_new_merchant,
            sender=Merchant,
            dispatch_uid="dj_billing.provision_merchant",
        )
