"""Invoice and invoice payment repositories."""

import time
from typing import List, Optional
from sqlalchemy import select

from cmspay.db.models.invoice import Invoice
from cmspay.db.models.invoice_payment import InvoicePayment
from cmspay.db.repository import BaseRepository


class InvoiceRepository(BaseRepository[Invoice]):
    """Repository for Invoice model with specialized queries."""

    async def get_by_token(self, token: str) -> Optional[Invoice]:
        """Get an invoice (with its payments) by token."""
        return await self.get_by_field("token", token)

    async def get_with_payments(self) -> List[Invoice]:
        """
        Get every invoice that has at least one payment intent.

        Returns:
            Invoices ordered by ID, payments eagerly loaded
        """
        query = (
            select(self.model)
            .where(self.model.payments.any())
            .order_by(self.model.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().unique().all())

    async def set_status(self, token: str, status: str) -> Optional[Invoice]:
        """
        Set an invoice's status.

        Writing the status an invoice already has only bumps the timestamp,
        so repeating the call is safe.

        Args:
            token: Invoice token
            status: New status value

        Returns:
            Updated invoice or None if not found
        """
        invoice = await self.get_by_token(token)
        if invoice is None:
            return None
        invoice.status = status
        invoice.timestamp = int(time.time())
        await self.session.flush()
        return invoice

    async def count_by_status(self, status: str) -> int:
        """Get count of invoices with specific status."""
        return await self.count(status=status)


class InvoicePaymentRepository(BaseRepository[InvoicePayment]):
    """Repository for InvoicePayment model."""

    async def get_active(self, now: Optional[int] = None) -> List[InvoicePayment]:
        """
        Get payment intents whose poll window has not closed.

        Args:
            now: Reference Unix time (defaults to current time)

        Returns:
            Payments ordered by expiry, soonest first
        """
        if now is None:
            now = int(time.time())
        payments = await self.filter(poll_expiry__gte=now)
        return sorted(payments, key=lambda p: (p.poll_expiry, p.id))
