"""
Payment poller CLI commands.

Provides command-line interface for creating the schema, running the
poller, listing polled payments and registering a payment address.
"""

import asyncio
import sys
from datetime import datetime, timezone

import structlog

from cmspay.core.config import get_settings
from cmspay.core.logging import configure_logging
from cmspay.db.base import engine
from cmspay.db.init import create_tables
from cmspay.db.store import InvoiceStore
from cmspay.db.unit_of_work import UnitOfWork
from cmspay.payments.models import InvoiceStatus
from cmspay.payments.poller import PaymentPoller
from cmspay.payments.service import PaymentService

logger = structlog.get_logger()


def _fmt_time(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def print_status(status: dict):
    """Pretty print poller status."""
    print("\n=== Payment Poller Status ===\n")
    print(f"State: {status['state']}")
    print(f"Pool Size: {status['pool_size']}")

    if status["last_cycle"]:
        cycle = status["last_cycle"]
        print("\n--- Last Cycle ---")
        print(f"Cycle ID: {cycle['cycle_id']}")
        print(f"Status: {cycle['status']}")
        print(f"Duration: {cycle['duration_seconds']:.2f}s")
        print(f"Checked: {cycle['entries_checked']}")
        print(f"Settled: {cycle['settled']}")
        print(f"Expired: {cycle['expired']}")
        print(f"Already Paid: {cycle['already_paid']}")
        if cycle["errors"]:
            print(f"Errors: {len(cycle['errors'])}")

    metrics = status["metrics_24h"]
    print("\n--- 24 Hour Metrics ---")
    print(f"Total Cycles: {metrics['total_cycles']}")
    print(f"Settled: {metrics['total_settled']}")
    print(f"Expired: {metrics['total_expired']}")
    print(f"Errors: {metrics['total_errors']}")
    print(f"Avg Oracle Latency: {metrics['avg_oracle_latency_seconds']:.2f}s")
    print()


async def init_db_command():
    """Create the database schema."""
    await create_tables()
    print("Database tables created.")
    return 0


async def pending_command():
    """List payment addresses whose poll window is still open."""
    async with UnitOfWork() as uow:
        payments = await uow.payments.get_active()
        paid = await uow.invoices.count_by_status(InvoiceStatus.PAID.value)

        print(f"\n=== Polled Payments ({len(payments)}) ===\n")
        for payment in payments:
            invoice = payment.invoice
            print(
                f"{invoice.token}  {invoice.status:<10}  {payment.address}  "
                f"{payment.amount} atoms  expires {_fmt_time(payment.poll_expiry)}"
            )
        print(f"\nInvoices paid: {paid}\n")
    return 0


async def register_command(token: str, address: str, amount: int):
    """
    Attach a payment address to an invoice in the store.

    Only the store is written; a running poller picks the address up on its
    next store refresh (every ``refresh_every_cycles`` cycles) or on restart.
    """
    store = InvoiceStore()
    service = PaymentService(store)
    payment = await service.submit_payment(token, address, amount)

    print(f"Registered {address} for invoice {token}")
    print(f"Expected: {payment.amount} atoms")
    print(f"Poll window ends: {_fmt_time(payment.poll_expiry)}")
    if service.config.refresh_every_cycles:
        print(
            "A running poller picks this address up within "
            f"{service.config.refresh_every_cycles} poll cycles, or on restart."
        )
    else:
        print("A running poller picks this address up on restart.")
    return 0


async def run_command():
    """Run the poller until the store shuts down (Ctrl+C closes the store)."""
    store = InvoiceStore(engine=engine)
    poller = PaymentPoller(store)

    print("Starting payment poller...")
    print(f"Check gap: {poller.config.check_gap_seconds}s")
    print(f"Min confirmations: {poller.config.min_confirmations}")
    print(f"Store refresh: every {poller.config.refresh_every_cycles} cycles")
    print("Press Ctrl+C to stop\n")

    await poller.start()
    try:
        await poller.wait_stopped()
    except asyncio.CancelledError:
        print("\nShutting down, closing store...")
        await store.close()
        await poller.wait_stopped()
        print_status(poller.get_status())
        print("Poller stopped.")
        raise
    return 0


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print("Usage: python -m cmspay.payments.cli <command> [options]")
        print("\nCommands:")
        print("  init-db                            Create database tables")
        print("  run                                Run the payment poller")
        print("  pending                            List polled payment addresses")
        print("  register <token> <address> <atoms> Watch an address for an invoice")
        print("\nExamples:")
        print("  python -m cmspay.payments.cli init-db")
        print("  python -m cmspay.payments.cli register 3f9a... TsXy... 150000000")
        print("  python -m cmspay.payments.cli run")
        return 1

    settings = get_settings()
    configure_logging(settings.ENV, debug=settings.DEBUG)
    command = sys.argv[1]

    try:
        if command == "init-db":
            return asyncio.run(init_db_command())
        elif command == "run":
            return asyncio.run(run_command())
        elif command == "pending":
            return asyncio.run(pending_command())
        elif command == "register":
            if len(sys.argv) != 5:
                print("Usage: register <token> <address> <atoms>")
                return 1
            return asyncio.run(
                register_command(sys.argv[2], sys.argv[3], int(sys.argv[4]))
            )
        else:
            print(f"Unknown command: {command}")
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        print(f"Error: {str(e)}")
        logger.exception("cli.error", command=command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
