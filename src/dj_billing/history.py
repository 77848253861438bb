"""
Subscription history.

``record_event`` is called by the services inside their own unit of work;
``get_history`` reads a merchant's events back, newest first.
"""

from __future__ import annotations

from .auth import ROLE_SUPER_ADMIN, ROLE_SYSTEM, AuthContext
from .exceptions import NotFoundError, ValidationError
from .models import Merchant, SubscriptionEvent

DEFAULT_HISTORY_LIMIT = 50


def triggered_by(actor: AuthContext | None) -> str:
    if actor is None or actor.role == ROLE_SYSTEM:
        return SubscriptionEvent.TRIGGER_SYSTEM
    if actor.role == ROLE_SUPER_ADMIN:
        return SubscriptionEvent.TRIGGER_ADMIN
    return SubscriptionEvent.TRIGGER_MERCHANT


def record_event(
    merchant_id,
    event_type: str,
    *,
    now,
    currency: str,
    actor: AuthContext | None = None,
    previous_type: str = "",
    previous_status: str = "",
    subscription=None,
    reason: str | None = "",
    balance_minor: int | None = None,
    payment_request=None,
) -> SubscriptionEvent:
    return SubscriptionEvent.objects.create(
        merchant_id=merchant_id,
        event_type=event_type,
        previous_type=previous_type or "",
        previous_status=previous_status or "",
        new_type=subscription.type if subscription is not None else "",
        new_status=subscription.status if subscription is not None else "",
        current_period_end=(
            subscription.current_period_end if subscription is not None else None
        ),
        reason=(reason or "")[:255],
        balance_minor=balance_minor,
        currency=currency,
        payment_request=payment_request,
        triggered_by=triggered_by(actor),
        actor_id=actor.actor_id if actor is not None else None,
        created_at=now,
    )


def get_history(
    merchant_id,
    event_type: str | None = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
    offset: int = 0,
) -> list[SubscriptionEvent]:
    try:
        merchant = Merchant.objects.get(pk=merchant_id)
    except (Merchant.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Merchant {merchant_id} not found") from None

    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer.")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset must be a non-negative integer.")

    events = SubscriptionEvent.objects.filter(merchant=merchant)
    if event_type is not None:
        if event_type not in dict(SubscriptionEvent.EVENT_CHOICES):
            raise ValidationError(f"Unknown event type: {event_type!r}")
        events = events.filter(event_type=event_type)
    return list(events.order_by("-created_at", "-id")[offset : offset + limit])
