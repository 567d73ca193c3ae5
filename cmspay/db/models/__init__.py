"""Database models for the invoice payment service."""

from .invoice import Invoice
from .invoice_payment import InvoicePayment

__all__ = ["Invoice", "InvoicePayment"]
