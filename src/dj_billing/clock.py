"""
Clock abstraction for "now".

Services never call ``timezone.now()`` directly; they ask the clock they
were built with, which defaults to ``DJ_BILLING['CLOCK_CLASS']``.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from django.utils import timezone


class SystemClock:
    """Wall-clock time, timezone aware."""

    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """A clock frozen at a given instant until explicitly advanced."""

    def __init__(self, now: datetime):
        if timezone.is_naive(now):
            raise ValueError("FixedClock requires a timezone-aware datetime.")
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def days_until(moment: datetime | None, now: datetime) -> int | None:
    """Whole days left until ``moment``, rounded up and never negative."""
    if moment is None:
        return None
    remaining = (moment - now).total_seconds() / 86400
    return max(0, math.ceil(remaining))
