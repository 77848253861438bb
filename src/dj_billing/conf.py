"""
Configuration settings for dj_billing.

Settings can be overridden in your Django settings.py using the DJ_BILLING dictionary.
"""

from dataclasses import MISSING, dataclass, field, fields
from decimal import Decimal, InvalidOperation
from typing import Any

from django.conf import settings as django_settings
from django.core.exceptions import ImproperlyConfigured


def _default_currency_scales():
    return {"IDR": 0, "AUD": 2}


def _default_plan_pricing():
    return {
        "IDR": {
            "ORDER_FEE": "250",
            "DEPOSIT_MINIMUM": "100000",
            "MONTHLY_PRICE": "100000",
        },
        "AUD": {
            "ORDER_FEE": "0.04",
            "DEPOSIT_MINIMUM": "15.00",
            "MONTHLY_PRICE": "15.00",
        },
    }


PRICING_KEYS = ("ORDER_FEE", "DEPOSIT_MINIMUM", "MONTHLY_PRICE")


@dataclass
class BillingSettings:
    """Settings container for dj_billing configuration."""

    # Length of the free trial given to every new merchant
    TRIAL_DAYS: int = 30

    # Currency assigned to merchants created without one
    DEFAULT_CURRENCY: str = "IDR"

    # Number of minor-unit decimal places per currency code
    CURRENCY_SCALES: dict = field(default_factory=_default_currency_scales)

    # Per-currency plan pricing, values are fixed-point strings
    PLAN_PRICING: dict = field(default_factory=_default_plan_pricing)

    # Days granted per paid monthly period
    MONTHLY_PERIOD_DAYS: int = 30

    # Days a lapsed trial or monthly period keeps running before it counts as expired
    GRACE_PERIOD_DAYS: int = 0

    # Hours before an untouched payment request expires
    PAYMENT_REQUEST_TTL_HOURS: int = 24

    # A deposit balance covering fewer orders than this is reported as low
    LOW_BALANCE_ORDER_THRESHOLD: int = 10

    # Swappable service classes - use dotted path strings
    LEDGER_SERVICE_CLASS: str = "dj_billing.services.ledger.LedgerService"
    SUBSCRIPTION_SERVICE_CLASS: str = (
        "dj_billing.services.subscription.SubscriptionService"
    )
    PAYMENT_REQUEST_SERVICE_CLASS: str = (
        "dj_billing.services.payment_request.PaymentRequestService"
    )
    CLOCK_CLASS: str = "dj_billing.clock.SystemClock"

    def __init__(self):
        """Initialize settings from Django settings if available."""
        user_settings = getattr(django_settings, "DJ_BILLING", {})

        for f in fields(self):
            if f.name in user_settings:
                setattr(self, f.name, user_settings[f.name])
            elif f.default is not MISSING:
                setattr(self, f.name, f.default)
            else:
                setattr(self, f.name, f.default_factory())

        self.DEFAULT_CURRENCY = str(self.DEFAULT_CURRENCY).upper()

        # Validate settings after initialization
        self._validate_settings()

    def _validate_settings(self):
        """
        Validate user-provided settings and raise ImproperlyConfigured for invalid values.
        """
        positive_ints = [
            "TRIAL_DAYS",
            "MONTHLY_PERIOD_DAYS",
            "PAYMENT_REQUEST_TTL_HOURS",
            "LOW_BALANCE_ORDER_THRESHOLD",
        ]
        for name in positive_ints:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ImproperlyConfigured(
                    f"DJ_BILLING['{name}'] must be a positive integer. Got: {value}"
                )

        if not isinstance(self.CURRENCY_SCALES, dict) or not self.CURRENCY_SCALES:
            raise ImproperlyConfigured(
                "DJ_BILLING['CURRENCY_SCALES'] must be a non-empty dict. "
                f"Got: {self.CURRENCY_SCALES}"
            )
        for code, scale in self.CURRENCY_SCALES.items():
            if not isinstance(code, str) or code != code.upper() or len(code) != 3:
                raise ImproperlyConfigured(
                    "DJ_BILLING['CURRENCY_SCALES'] keys must be upper-case ISO codes. "
                    f"Got: {code}"
                )
            if isinstance(scale, bool) or not isinstance(scale, int) or not 0 <= scale <= 8:
                raise ImproperlyConfigured(
                    f"DJ_BILLING['CURRENCY_SCALES']['{code}'] must be an integer "
                    f"between 0 and 8. Got: {scale}"
                )

        grace = self.GRACE_PERIOD_DAYS
        if isinstance(grace, bool) or not isinstance(grace, int) or grace < 0:
            raise ImproperlyConfigured(
                "DJ_BILLING['GRACE_PERIOD_DAYS'] must be a non-negative integer. "
                f"Got: {grace}"
            )

        if self.DEFAULT_CURRENCY not in self.CURRENCY_SCALES:
            raise ImproperlyConfigured(
                "DJ_BILLING['DEFAULT_CURRENCY'] must be one of CURRENCY_SCALES. "
                f"Got: {self.DEFAULT_CURRENCY}"
            )

        if not isinstance(self.PLAN_PRICING, dict):
            raise ImproperlyConfigured("DJ_BILLING['PLAN_PRICING'] must be a dict.")
        for code, pricing in self.PLAN_PRICING.items():
            if code not in self.CURRENCY_SCALES:
                raise ImproperlyConfigured(
                    f"DJ_BILLING['PLAN_PRICING'] has no scale for currency {code}."
                )
            for key in PRICING_KEYS:
                raw = pricing.get(key) if isinstance(pricing, dict) else None
                try:
                    value = Decimal(str(raw))
                except (InvalidOperation, ValueError):
                    value = None
                if raw is None or isinstance(raw, float) or value is None or value < 0:
                    raise ImproperlyConfigured(
                        f"DJ_BILLING['PLAN_PRICING']['{code}']['{key}'] must be a "
                        f"non-negative decimal string. Got: {raw}"
                    )

        # Validate service class paths
        service_classes = [
            ("LEDGER_SERVICE_CLASS", self.LEDGER_SERVICE_CLASS),
            ("SUBSCRIPTION_SERVICE_CLASS", self.SUBSCRIPTION_SERVICE_CLASS),
            ("PAYMENT_REQUEST_SERVICE_CLASS", self.PAYMENT_REQUEST_SERVICE_CLASS),
            ("CLOCK_CLASS", self.CLOCK_CLASS),
        ]

        for name, value in service_classes:
            if not isinstance(value, str) or "." not in value:
                raise ImproperlyConfigured(
                    f"DJ_BILLING['{name}'] must be a valid dotted path string. "
                    f"Got: {value}"
                )

    def __getattr__(self, name: str) -> Any:
        """Fallback for attribute access."""
        raise AttributeError(f"'{type(self).__name__}' has no setting '{name}'")


# Singleton instance for import convenience
billing_settings = BillingSettings()
