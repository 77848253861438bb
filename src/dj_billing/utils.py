from dataclasses import dataclass

from django.utils.module_loading import import_string

from .conf import billing_settings
from .exceptions import ValidationError
from .money import Money


def get_ledger_service():
    """
    Returns the configured LedgerService class.
    Override via settings: DJ_BILLING['LEDGER_SERVICE_CLASS']
    Example:
        LedgerService = get_ledger_service()
        LedgerService().get_balance(merchant_id)
    """
    return import_string(billing_settings.LEDGER_SERVICE_CLASS)


def get_subscription_service():
    """
    Returns the configured SubscriptionService class.
    Override via settings: DJ_BILLING['SUBSCRIPTION_SERVICE_CLASS']
    """
    return import_string(billing_settings.SUBSCRIPTION_SERVICE_CLASS)


def get_payment_request_service():
    """
    Returns the configured PaymentRequestService class.
    Override via settings: DJ_BILLING['PAYMENT_REQUEST_SERVICE_CLASS']
    """
    return import_string(billing_settings.PAYMENT_REQUEST_SERVICE_CLASS)


def get_clock():
    """
    Returns an instance of the configured clock.
    Override via settings: DJ_BILLING['CLOCK_CLASS']
    """
    return import_string(billing_settings.CLOCK_CLASS)()


@dataclass(frozen=True)
class PlanPricing:
    currency: str
    order_fee: Money
    deposit_minimum: Money
    monthly_price: Money


def get_plan_pricing(currency):
    """Plan pricing for ``currency`` as Money values."""
    code = str(currency or "").upper()
    raw = billing_settings.PLAN_PRICING.get(code)
    if raw is None:
        raise ValidationError(f"No plan pricing configured for {code}.")
    return PlanPricing(
        currency=code,
        order_fee=Money.from_decimal(str(raw["ORDER_FEE"]), code),
        deposit_minimum=Money.from_decimal(str(raw["DEPOSIT_MINIMUM"]), code),
        monthly_price=Money.from_decimal(str(raw["MONTHLY_PRICE"]), code),
    )
