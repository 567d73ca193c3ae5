"""
Invoice payment poller.

Watches the payment addresses of unpaid invoices and marks invoices paid
once a satisfying transaction shows up. Runs as a single background task
for the life of the process and stops only when the invoice store shuts
down.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from cmspay.db.store import InvoiceStore, StoreShutdownError
from cmspay.payments.config import PollerConfig, get_poller_config
from cmspay.payments.metrics import CycleStatus, PollerMetrics
from cmspay.payments.models import InvoicePayment, InvoiceStatus, PollEntry
from cmspay.payments.oracle.base import BaseTransactionOracle
from cmspay.payments.oracle.explorer import BlockExplorerOracle
from cmspay.payments.oracle.mock_oracle import MockTransactionOracle
from cmspay.payments.pool import PollingPool
from cmspay.payments.reconcile import PaymentReconciler

logger = structlog.get_logger()


class PollerState(str, Enum):
    """Lifecycle of the poll cycle driver."""

    IDLE = "idle"  # Not started yet
    RUNNING = "running"
    STOPPED = "stopped"  # Terminal: the store shut down


class PaymentPoller:
    """
    Poll cycle driver.

    Each cycle snapshots the pool, reconciles the snapshot, removes the
    tokens reconciliation gave up on or settled, then sleeps the check gap.
    """

    def __init__(
        self,
        store: InvoiceStore,
        oracle: Optional[BaseTransactionOracle] = None,
        config: Optional[PollerConfig] = None,
        pool: Optional[PollingPool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the poller.

        Args:
            store: Invoice store
            oracle: Transaction oracle (defaults to the configured one)
            config: Poller configuration (defaults to loaded config)
            pool: Polling pool (defaults to a new empty pool)
            clock: Returns the current Unix time
        """
        self.config = config or get_poller_config()
        self.store = store
        self._owns_oracle = oracle is None
        self.oracle = oracle or self._create_default_oracle()
        self.pool = pool or PollingPool()
        self.metrics = PollerMetrics()
        self.reconciler = PaymentReconciler(
            store, self.oracle, self.config, metrics=self.metrics, clock=clock
        )
        self._clock = clock

        self.state = PollerState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._last_cycle_time: Optional[float] = None
        self._cycles_since_refresh = 0

        logger.info(
            "poller.initialized",
            oracle=self.oracle.get_source_name(),
            check_gap_seconds=self.config.check_gap_seconds,
            min_confirmations=self.config.min_confirmations,
        )

    def _create_default_oracle(self) -> BaseTransactionOracle:
        """Create the oracle named by the config."""
        if self.config.oracle_type == "mock":
            return MockTransactionOracle()
        return BlockExplorerOracle(
            self.config.get_explorer_config(),
            retry=self.config.retry,
            circuit_breaker=self.config.circuit_breaker,
        )

    async def start(self) -> None:
        """
        Seed the pool from the store and launch the polling task.

        Raises:
            StoreError: If the startup scan fails (the poller does not start)
        """
        if self._task is not None:
            logger.warning("poller.already_started", state=self.state.value)
            return

        await self.load_pool()
        self.state = PollerState.RUNNING
        self._task = asyncio.create_task(self._polling_loop(), name="payment-poller")
        logger.info("poller.started", pool_size=len(self.pool))

    async def load_pool(self) -> int:
        """
        Add every unexpired invoice payment in the store to the pool.

        Returns:
            Pool size after seeding
        """
        invoices = await self.store.fetch_invoices_with_payments()
        now = self._clock()

        async with self.pool.write_lock():
            for invoice in invoices:
                for payment in invoice.payments:
                    if payment.has_expired(now):
                        continue
                    self.pool.insert_locked(invoice.token, PollEntry.from_payment(payment))

        logger.info("poller.pool_loaded", invoices=len(invoices), pool_size=len(self.pool))
        return len(self.pool)

    async def refresh_pool(self) -> int:
        """
        Merge payment addresses written to the store since the pool was seeded.

        Picks up intents registered by other processes (e.g. the CLI). Paid
        invoices and expired payments are skipped; for each remaining
        invoice the last unexpired payment is the one polled.

        Returns:
            Number of pool entries added or replaced
        """
        invoices = await self.store.fetch_invoices_with_payments()
        now = self._clock()

        latest: Dict[str, PollEntry] = {}
        for invoice in invoices:
            if invoice.status == InvoiceStatus.PAID:
                continue
            for payment in invoice.payments:
                if not payment.has_expired(now):
                    latest[invoice.token] = PollEntry.from_payment(payment)

        changed = await self.pool.merge(latest)
        self._cycles_since_refresh = 0
        if changed:
            logger.info("poller.pool_refreshed", changed=changed, pool_size=len(self.pool))
        return changed

    def _refresh_due(self) -> bool:
        every = self.config.refresh_every_cycles
        return every > 0 and self._cycles_since_refresh >= every

    async def register_for_polling(self, token: str, payment: InvoicePayment) -> None:
        """Start watching a newly derived payment address for an invoice."""
        await self.pool.insert(token, PollEntry.from_payment(payment))
        logger.info(
            "poller.registered",
            token=token,
            address=payment.address,
            amount=payment.amount,
            poll_expiry=payment.poll_expiry,
        )

    async def run_cycle(self) -> bool:
        """
        Run one snapshot / reconcile / remove pass.

        Returns:
            False once the store has shut down, True otherwise
        """
        entries = await self.pool.snapshot()
        cycle_id = self.metrics.start_cycle(pool_size=len(entries))

        should_continue, tokens_to_remove = await self.reconciler.reconcile(entries)
        if not should_continue:
            self.metrics.end_cycle(CycleStatus.STOPPED)
            return False

        removed = await self.pool.remove(tokens_to_remove, expected=entries)
        self._cycles_since_refresh += 1
        self.metrics.end_cycle()
        self._last_cycle_time = self._clock()

        logger.debug(
            "poller.cycle_complete",
            cycle_id=cycle_id,
            checked=len(entries),
            removed=removed,
            pool_size=len(self.pool),
        )
        return True

    async def _polling_loop(self) -> None:
        try:
            while True:
                try:
                    if not await self.run_cycle():
                        break
                    if self._refresh_due():
                        await self.refresh_pool()
                except StoreShutdownError:
                    break
                except Exception as e:
                    logger.error(
                        "poller.cycle_error",
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                await asyncio.sleep(self.config.check_gap_seconds)
        finally:
            self.state = PollerState.STOPPED
            if self._owns_oracle:
                await self.oracle.aclose()
        logger.info("poller.stopped", reason="store_shutdown")

    async def wait_stopped(self) -> None:
        """Wait until the polling task has exited."""
        if self._task is not None:
            await self._task

    @property
    def running(self) -> bool:
        return self.state == PollerState.RUNNING

    def get_status(self) -> Dict[str, Any]:
        """Get current poller status and metrics."""
        last_cycle = self.metrics.get_last_cycle()
        return {
            "state": self.state.value,
            "pool_size": len(self.pool),
            "last_cycle_time": self._last_cycle_time,
            "last_cycle": last_cycle.to_dict() if last_cycle else None,
            "metrics_24h": self.metrics.get_aggregate_metrics(hours=24).to_dict(),
            "config": {
                "check_gap_seconds": self.config.check_gap_seconds,
                "min_confirmations": self.config.min_confirmations,
                "refresh_every_cycles": self.config.refresh_every_cycles,
                "poll_expiry_hours": self.config.poll_expiry_hours,
                "oracle": self.oracle.get_source_name(),
            },
        }
