"""Invoice payment intents: persisted, then handed to the poller."""

import time
from typing import Callable, Optional

import structlog

from cmspay.db.store import InvoiceStore
from cmspay.payments.config import PollerConfig, get_poller_config
from cmspay.payments.models import InvoicePayment
from cmspay.payments.poller import PaymentPoller

logger = structlog.get_logger()


class PaymentService:
    """
    Entry point for the invoice-creation path.

    An invoice has one active payment intent at a time: a new intent for
    the same token replaces the polled address. Without an in-process
    poller the intent is only persisted; a running poller picks it up on
    its next store refresh.
    """

    def __init__(
        self,
        store: InvoiceStore,
        poller: Optional[PaymentPoller] = None,
        config: Optional[PollerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.poller = poller
        if config is None:
            config = poller.config if poller is not None else get_poller_config()
        self.config = config
        self._clock = clock

    def new_payment(self, address: str, amount: int) -> InvoicePayment:
        """Build a payment intent valid from now until the poll window closes."""
        now = int(self._clock())
        expiry = now + int(self.config.get_poll_expiry_timedelta().total_seconds())
        return InvoicePayment(
            address=address,
            amount=amount,
            tx_not_before=now,
            poll_expiry=expiry,
        )

    async def submit_payment(self, token: str, address: str, amount: int) -> InvoicePayment:
        """
        Record a payment intent for an invoice and start polling its address
        (immediately when this service owns a poller).

        Raises:
            InvoiceNotFoundError: If no invoice has this token
            StoreShutdownError: If the store is closed
        """
        payment = self.new_payment(address, amount)
        await self.store.add_invoice_payment(token, payment)
        if self.poller is not None:
            await self.poller.register_for_polling(token, payment)
        logger.info(
            "payment.submitted",
            token=token,
            address=address,
            amount=amount,
            poll_expiry=payment.poll_expiry,
        )
        return payment
