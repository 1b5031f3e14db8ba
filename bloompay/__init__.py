"""
bloompay: flower shop order and payment reconciliation service.

Orders reserve stock atomically, payment links are issued through PayOS, and
gateway outcomes arriving by redirect or webhook are merged idempotently.
"""

__version__ = "1.0.0"
