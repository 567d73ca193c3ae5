"""
Invoice payment polling.

Watches payment addresses of unpaid invoices through a transaction oracle
and marks invoices paid exactly once per satisfied payment.
"""

from cmspay.payments.models import Invoice, InvoicePayment, InvoiceStatus, PollEntry

__all__ = ["Invoice", "InvoicePayment", "InvoiceStatus", "PollEntry"]
