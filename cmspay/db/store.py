"""
Invoice store.

Facade over the unit of work that hands out plain invoice records and
signals permanent unavailability with StoreShutdownError once closed.
"""

import asyncio
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from cmspay.db import models as orm
from cmspay.db.unit_of_work import UnitOfWork
from cmspay.payments.models import Invoice, InvoicePayment, InvoiceStatus

logger = structlog.get_logger()


class StoreError(Exception):
    """Base exception for invoice store errors."""

    pass


class StoreShutdownError(StoreError):
    """Raised by every store operation once the store has been closed."""

    pass


class InvoiceNotFoundError(StoreError):
    """Raised when no invoice exists for a token."""

    pass


class InvoiceStore:
    """
    Durable invoice storage used by the payment poller.

    Every operation runs in its own unit of work and holds the store lock,
    so close() waits for in-flight operations before shutting down.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Session factory (defaults to the application one)
            engine: Engine disposed on close, if the store owns one
        """
        self._session_factory = session_factory
        self._engine = engine
        self._shutdown = False
        self._lock = asyncio.Lock()

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(session_factory=self._session_factory)

    def _check_shutdown(self) -> None:
        if self._shutdown:
            raise StoreShutdownError("invoice store is shut down")

    async def fetch_invoice_by_token(self, token: str) -> Invoice:
        """
        Return the invoice for a token.

        Raises:
            StoreShutdownError: If the store is closed
            InvoiceNotFoundError: If no invoice has this token
            StoreError: On any database failure
        """
        async with self._lock:
            self._check_shutdown()
            logger.debug("store.fetch_invoice_by_token", token=token)
            try:
                async with self._uow() as uow:
                    invoice = await uow.invoices.get_by_token(token)
                    if invoice is None:
                        raise InvoiceNotFoundError(f"invoice not found: {token}")
                    return _to_record(invoice)
            except SQLAlchemyError as e:
                raise StoreError(f"fetch invoice {token}: {e}") from e

    async def update_invoice(self, invoice: Invoice) -> None:
        """
        Persist an invoice's status.

        Idempotent: writing the same status twice leaves the same row.

        Raises:
            StoreShutdownError: If the store is closed
            InvoiceNotFoundError: If the invoice no longer exists
            StoreError: On any database failure
        """
        async with self._lock:
            self._check_shutdown()
            logger.debug(
                "store.update_invoice", token=invoice.token, status=invoice.status.value
            )
            try:
                async with self._uow() as uow:
                    updated = await uow.invoices.set_status(
                        invoice.token, invoice.status.value
                    )
                    if updated is None:
                        raise InvoiceNotFoundError(
                            f"invoice not found: {invoice.token}"
                        )
            except SQLAlchemyError as e:
                raise StoreError(f"update invoice {invoice.token}: {e}") from e

    async def fetch_invoices_with_payments(self) -> List[Invoice]:
        """Return every invoice that has payment intents."""
        async with self._lock:
            self._check_shutdown()
            logger.debug("store.fetch_invoices_with_payments")
            try:
                async with self._uow() as uow:
                    invoices = await uow.invoices.get_with_payments()
                    return [_to_record(i) for i in invoices]
            except SQLAlchemyError as e:
                raise StoreError(f"fetch invoices: {e}") from e

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        """Insert a new invoice, including any payment intents it carries."""
        async with self._lock:
            self._check_shutdown()
            logger.debug("store.create_invoice", token=invoice.token)
            try:
                async with self._uow() as uow:
                    row = orm.Invoice(
                        token=invoice.token,
                        user_id=invoice.user_id,
                        username=invoice.username,
                        month=invoice.month,
                        year=invoice.year,
                        status=invoice.status.value,
                        timestamp=invoice.timestamp,
                        payments=[_to_payment_row(p) for p in invoice.payments],
                    )
                    await uow.invoices.add(row)
                    return _to_record(row)
            except SQLAlchemyError as e:
                raise StoreError(f"create invoice {invoice.token}: {e}") from e

    async def add_invoice_payment(
        self, token: str, payment: InvoicePayment
    ) -> Invoice:
        """
        Attach a payment intent to an existing invoice.

        Raises:
            StoreShutdownError: If the store is closed
            InvoiceNotFoundError: If no invoice has this token
        """
        async with self._lock:
            self._check_shutdown()
            logger.debug(
                "store.add_invoice_payment", token=token, address=payment.address
            )
            try:
                async with self._uow() as uow:
                    invoice = await uow.invoices.get_by_token(token)
                    if invoice is None:
                        raise InvoiceNotFoundError(f"invoice not found: {token}")
                    invoice.payments.append(_to_payment_row(payment))
                    await uow.invoices.session.flush()
                    return _to_record(invoice)
            except SQLAlchemyError as e:
                raise StoreError(f"add payment to {token}: {e}") from e

    async def close(self) -> None:
        """Shut the store down; all later operations raise StoreShutdownError."""
        async with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            if self._engine is not None:
                await self._engine.dispose()
        logger.info("store.closed")


def _to_payment_row(payment: InvoicePayment) -> orm.InvoicePayment:
    return orm.InvoicePayment(
        address=payment.address,
        amount=payment.amount,
        tx_not_before=payment.tx_not_before,
        poll_expiry=payment.poll_expiry,
    )


def _to_record(row: orm.Invoice) -> Invoice:
    return Invoice(
        token=row.token,
        user_id=row.user_id,
        username=row.username,
        month=row.month,
        year=row.year,
        status=InvoiceStatus(row.status),
        timestamp=row.timestamp,
        payments=[
            InvoicePayment(
                address=p.address,
                amount=p.amount,
                tx_not_before=p.tx_not_before,
                poll_expiry=p.poll_expiry,
            )
            for p in row.payments
        ],
    )
