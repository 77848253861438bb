"""
Signals sent by dj_billing services.

Receivers run inside the unit of work that sent them; a receiver that
raises aborts and rolls back the whole operation.
"""

from django.dispatch import Signal

# Sent after a balance row was updated. Args: balance, transaction
balance_changed = Signal()

# Sent after a ledger transaction was written. Args: transaction
transaction_created = Signal()

# Sent when a subscription status changes. Args: subscription, previous_status
subscription_status_changed = Signal()

# Sent after a payment request was verified and applied. Args: payment_request
payment_request_verified = Signal()
