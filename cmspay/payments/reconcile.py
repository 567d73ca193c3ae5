"""
Payment reconciliation.

Decides, for each polled invoice, whether to drop it from the pool
(already paid or expired), settle it (a satisfying transaction was found
and the invoice was marked paid) or leave it for the next cycle.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from cmspay.db.store import InvoiceStore, StoreShutdownError
from cmspay.payments.config import PollerConfig
from cmspay.payments.metrics import EntryOutcome, PollerMetrics
from cmspay.payments.models import Invoice, InvoiceStatus, PollEntry
from cmspay.payments.oracle.base import BaseTransactionOracle

logger = structlog.get_logger()

REMOVE_OUTCOMES = frozenset(
    {EntryOutcome.SETTLED, EntryOutcome.EXPIRED, EntryOutcome.ALREADY_PAID}
)


class PaymentReconciler:
    """Reconciles a snapshot of polled payments against the store and oracle."""

    def __init__(
        self,
        store: InvoiceStore,
        oracle: BaseTransactionOracle,
        config: PollerConfig,
        metrics: Optional[PollerMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Invoice store (source of truth for invoice status)
            oracle: Transaction oracle queried for unpaid invoices
            config: Poller configuration (confirmations, check gap)
            metrics: Optional metrics tracker for per-entry outcomes
            clock: Returns the current Unix time
        """
        self.store = store
        self.oracle = oracle
        self.config = config
        self.metrics = metrics or PollerMetrics()
        self._clock = clock

    async def reconcile(
        self, entries: Dict[str, PollEntry]
    ) -> Tuple[bool, List[str]]:
        """
        Check every entry of a pool snapshot.

        Returns:
            (continue, tokens_to_remove). ``continue`` is False once the store
            reports shutdown; the pass is abandoned and nothing is removed.
        """
        tokens_to_remove: List[str] = []

        for token, entry in entries.items():
            try:
                outcome = await self._check_entry(token, entry)
            except StoreShutdownError:
                logger.info("reconcile.store_shutdown", token=token)
                return False, []

            self.metrics.record_outcome(outcome)
            if outcome in REMOVE_OUTCOMES:
                tokens_to_remove.append(token)

        return True, tokens_to_remove

    async def _check_entry(self, token: str, entry: PollEntry) -> EntryOutcome:
        try:
            invoice = await self.store.fetch_invoice_by_token(token)
        except StoreShutdownError:
            raise
        except Exception as e:
            self._log_failure("reconcile.fetch_failed", token, e)
            return EntryOutcome.FAILED

        logger.debug("reconcile.checking", token=token, address=entry.address)

        if invoice.status == InvoiceStatus.PAID:
            # Paid through some other path, e.g. an admin status edit.
            logger.debug("reconcile.removing", token=token, reason="already_paid")
            return EntryOutcome.ALREADY_PAID

        if entry.has_expired(self._clock()):
            logger.debug("reconcile.removing", token=token, reason="expired")
            return EntryOutcome.EXPIRED

        outcome = await self._settle_if_paid(invoice, entry)

        # Rate-limits the oracle.
        await asyncio.sleep(self.config.check_gap_seconds)
        return outcome

    async def _settle_if_paid(self, invoice: Invoice, entry: PollEntry) -> EntryOutcome:
        start = time.perf_counter()
        try:
            txid = await self.oracle.find_transaction(
                entry.address,
                entry.expected_amount,
                entry.not_before,
                self.config.min_confirmations,
            )
        except Exception as e:
            self._log_failure("reconcile.oracle_failed", invoice.token, e)
            return EntryOutcome.FAILED
        finally:
            self.metrics.record_oracle_call(time.perf_counter() - start)

        if not txid:
            return EntryOutcome.PENDING

        paid = invoice.model_copy(update={"status": InvoiceStatus.PAID})
        try:
            await self.store.update_invoice(paid)
        except StoreShutdownError:
            raise
        except Exception as e:
            self._log_failure("reconcile.update_failed", invoice.token, e, txid=txid)
            return EntryOutcome.FAILED

        logger.info(
            "reconcile.invoice_paid",
            token=invoice.token,
            address=entry.address,
            amount=entry.expected_amount,
            txid=txid,
        )
        return EntryOutcome.SETTLED

    def _log_failure(self, event: str, token: str, error: Exception, **kw) -> None:
        logger.error(
            event,
            token=token,
            error=str(error),
            error_type=type(error).__name__,
            **kw,
        )
        self.metrics.record_error(f"{token}: {error}")
