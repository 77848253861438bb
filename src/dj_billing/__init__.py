"""
dj_billing - merchant balance ledger and subscription billing for Django.
"""

__version__ = "0.1.0"
