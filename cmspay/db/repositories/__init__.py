"""Repository exports."""

from .invoice_repository import InvoicePaymentRepository, InvoiceRepository

__all__ = ["InvoiceRepository", "InvoicePaymentRepository"]
