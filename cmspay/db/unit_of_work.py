"""Unit of Work pattern for managing database transactions."""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cmspay.db.base import AsyncSessionLocal
from cmspay.db.models import Invoice, InvoicePayment
from cmspay.db.repositories import InvoicePaymentRepository, InvoiceRepository


class UnitOfWork:
    """
    Unit of Work pattern implementation for managing database transactions.

    All repositories within one context share the same session and
    transaction.

    Usage:
        async with UnitOfWork() as uow:
            invoice = await uow.invoices.get_by_token(token)
            await uow.invoices.set_status(token, "paid")
            await uow.commit()
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            session: Optional existing session (useful for testing)
            session_factory: Factory used when no session is given
                (defaults to the application session factory)
        """
        self._session = session
        self._owned_session = session is None
        self._session_factory = session_factory or AsyncSessionLocal

        # Repositories (initialized in __aenter__)
        self.invoices: InvoiceRepository = None  # type: ignore
        self.payments: InvoicePaymentRepository = None  # type: ignore

    async def __aenter__(self):
        """Enter async context manager."""
        if self._owned_session:
            self._session = self._session_factory()

        assert self._session is not None, "Session must be initialized"
        self.invoices = InvoiceRepository(Invoice, self._session)
        self.payments = InvoicePaymentRepository(InvoicePayment, self._session)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if exc_type is not None:
            await self.rollback()
        elif self._owned_session:
            await self.commit()

        if self._owned_session and self._session:
            await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()
