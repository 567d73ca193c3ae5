"""
Tests for payment reconciliation.

Covers the skip / settle / expire decisions, shutdown propagation and
the handling of transient store and oracle failures.
"""

from unittest.mock import AsyncMock, patch

import pytest

from cmspay.db.store import StoreError, StoreShutdownError
from cmspay.payments.metrics import EntryOutcome, PollerMetrics
from cmspay.payments.models import Invoice, InvoiceStatus
from cmspay.payments.reconcile import REMOVE_OUTCOMES, PaymentReconciler
from tests.fixtures.invoices import add_invoice, make_entry, make_payment

NOW = 5000


def make_reconciler(store, oracle, config, metrics=None):
    return PaymentReconciler(store, oracle, config, metrics=metrics, clock=lambda: NOW)


@pytest.mark.asyncio
class TestReconcileDecisions:
    """Tests for per-entry outcomes."""

    async def test_unpaid_entry_is_retained(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment())
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})

        assert ok is True
        assert to_remove == []
        invoice = await store.fetch_invoice_by_token("abc")
        assert invoice.status == InvoiceStatus.UNREVIEWED

        query = oracle.queries[0]
        assert (query.address, query.min_amount, query.not_before) == ("A1", 500, 1000)
        assert query.min_confirmations == poller_config.min_confirmations

    async def test_satisfied_payment_settles_invoice(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment(), status=InvoiceStatus.APPROVED)
        oracle.add_payment("A1", "txid123", amount=500, timestamp=2000)
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})

        assert ok is True
        assert to_remove == ["abc"]
        invoice = await store.fetch_invoice_by_token("abc")
        assert invoice.status == InvoiceStatus.PAID

    async def test_expired_entry_removed_without_oracle_or_write(
        self, store, oracle, poller_config
    ):
        await add_invoice(store, "abc", make_payment(poll_expiry=NOW - 1))
        oracle.add_payment("A1", "txid123", amount=500, timestamp=2000)
        store.update_invoice = AsyncMock(wraps=store.update_invoice)
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry(expiry=NOW - 1)})

        assert ok is True
        assert to_remove == ["abc"]
        assert not oracle.queries
        store.update_invoice.assert_not_called()
        invoice = await store.fetch_invoice_by_token("abc")
        assert invoice.status == InvoiceStatus.UNREVIEWED

    async def test_expiry_equal_to_now_is_still_polled(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment(poll_expiry=NOW))
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry(expiry=NOW)})

        assert ok is True
        assert to_remove == []
        assert oracle.queried_addresses() == ["A1"]

    async def test_already_paid_removed_without_oracle(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment(), status=InvoiceStatus.PAID)
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})

        assert ok is True
        assert to_remove == ["abc"]
        assert not oracle.queries

    async def test_payment_below_amount_does_not_settle(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment())
        oracle.add_payment("A1", "txsmall", amount=499, timestamp=2000)
        oracle.add_payment("A1", "txearly", amount=500, timestamp=999)
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})

        assert ok is True
        assert to_remove == []

    async def test_mixed_batch(self, store, oracle, poller_config):
        await add_invoice(store, "paid", make_payment(address="P"), status=InvoiceStatus.PAID)
        await add_invoice(store, "expired", make_payment(address="E"))
        await add_invoice(store, "settle", make_payment(address="S"))
        await add_invoice(store, "wait", make_payment(address="W"))
        oracle.add_payment("S", "txS", amount=500, timestamp=2000)
        metrics = PollerMetrics()
        metrics.start_cycle(pool_size=4)
        reconciler = make_reconciler(store, oracle, poller_config, metrics=metrics)

        ok, to_remove = await reconciler.reconcile(
            {
                "paid": make_entry(address="P"),
                "expired": make_entry(address="E", expiry=NOW - 10),
                "settle": make_entry(address="S"),
                "wait": make_entry(address="W"),
            }
        )

        assert ok is True
        assert sorted(to_remove) == ["expired", "paid", "settle"]
        assert sorted(oracle.queried_addresses()) == ["S", "W"]

        cycle = metrics.get_current_cycle()
        assert cycle.entries_checked == 4
        assert cycle.settled == 1
        assert cycle.expired == 1
        assert cycle.already_paid == 1
        assert cycle.pending == 1
        assert cycle.oracle_calls == 2


@pytest.mark.asyncio
class TestReconcileFailures:
    """Tests for shutdown and transient failure handling."""

    async def test_store_shutdown_on_fetch_stops_pass(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment())
        await store.close()
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})

        assert ok is False
        assert to_remove == []
        assert not oracle.queries

    async def test_store_shutdown_on_update_discards_batch(self, oracle, poller_config):
        store = AsyncMock()
        store.fetch_invoice_by_token.side_effect = lambda token: Invoice(
            token=token,
            status=InvoiceStatus.PAID if token == "first" else InvoiceStatus.APPROVED,
        )
        store.update_invoice.side_effect = StoreShutdownError("closed")
        oracle.add_payment("A2", "tx2", amount=500, timestamp=2000)
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile(
            {
                "first": make_entry(address="A1"),
                "second": make_entry(address="A2"),
                "third": make_entry(address="A3"),
            }
        )

        assert ok is False
        assert to_remove == []
        assert "A3" not in oracle.queried_addresses()

    async def test_fetch_error_skips_entry(self, store, oracle, poller_config):
        await add_invoice(store, "known", make_payment(address="K"))
        oracle.add_payment("K", "txK", amount=500, timestamp=2000)
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile(
            {"missing": make_entry(address="M"), "known": make_entry(address="K")}
        )

        assert ok is True
        assert to_remove == ["known"]
        assert oracle.queried_addresses() == ["K"]

    async def test_oracle_error_skips_entry(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment())
        oracle.fail_for("A1")
        metrics = PollerMetrics()
        metrics.start_cycle(pool_size=1)
        reconciler = make_reconciler(store, oracle, poller_config, metrics=metrics)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})

        assert ok is True
        assert to_remove == []
        cycle = metrics.get_current_cycle()
        assert cycle.failed == 1
        assert len(cycle.errors) == 1

    async def test_update_error_retried_next_pass(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment())
        oracle.add_payment("A1", "txid123", amount=500, timestamp=2000)
        real_update = store.update_invoice
        store.update_invoice = AsyncMock(side_effect=StoreError("db busy"))
        reconciler = make_reconciler(store, oracle, poller_config)

        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})
        assert ok is True
        assert to_remove == []

        store.update_invoice = AsyncMock(wraps=real_update)
        ok, to_remove = await reconciler.reconcile({"abc": make_entry()})
        assert ok is True
        assert to_remove == ["abc"]
        assert len(oracle.queries) == 2

        invoice = await store.fetch_invoice_by_token("abc")
        assert invoice.status == InvoiceStatus.PAID

    async def test_settling_twice_is_idempotent(self, store, oracle, poller_config):
        await add_invoice(store, "abc", make_payment())
        invoice = await store.fetch_invoice_by_token("abc")
        paid = invoice.model_copy(update={"status": InvoiceStatus.PAID})

        await store.update_invoice(paid)
        await store.update_invoice(paid)

        invoice = await store.fetch_invoice_by_token("abc")
        assert invoice.status == InvoiceStatus.PAID
        assert len(invoice.payments) == 1


@pytest.mark.asyncio
async def test_gap_sleep_only_after_oracle_queries(store, oracle, poller_config):
    await add_invoice(store, "paid", make_payment(address="P"), status=InvoiceStatus.PAID)
    await add_invoice(store, "wait", make_payment(address="W"))
    await add_invoice(store, "broken", make_payment(address="B"))
    oracle.fail_for("B")
    config = poller_config.model_copy(update={"check_gap_seconds": 5.0})
    reconciler = make_reconciler(store, oracle, config)

    with patch("cmspay.payments.reconcile.asyncio.sleep", new=AsyncMock()) as sleep:
        await reconciler.reconcile(
            {
                "paid": make_entry(address="P"),
                "wait": make_entry(address="W"),
                "broken": make_entry(address="B"),
                "expired": make_entry(address="E", expiry=NOW - 1),
            }
        )

    assert sleep.await_count == 2
    sleep.assert_awaited_with(5.0)


def test_entry_outcomes_that_remove():
    assert EntryOutcome.PENDING not in REMOVE_OUTCOMES
    assert EntryOutcome.FAILED not in REMOVE_OUTCOMES
    assert {EntryOutcome.SETTLED, EntryOutcome.EXPIRED, EntryOutcome.ALREADY_PAID} == set(
        REMOVE_OUTCOMES
    )
