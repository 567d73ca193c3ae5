"""
Tests for poller metrics.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cmspay.payments.metrics import CycleStatus, EntryOutcome, PollerMetrics


class TestPollerMetrics:
    """Tests for PollerMetrics."""

    def test_cycle_outcomes(self):
        metrics = PollerMetrics()
        metrics.start_cycle(pool_size=3)
        metrics.record_outcome(EntryOutcome.SETTLED)
        metrics.record_outcome(EntryOutcome.PENDING)
        metrics.record_outcome(EntryOutcome.EXPIRED)
        metrics.record_oracle_call(0.5)
        metrics.record_oracle_call(1.5)
        metrics.end_cycle()

        cycle = metrics.get_last_cycle()
        assert cycle.status == CycleStatus.COMPLETED
        assert cycle.pool_size == 3
        assert cycle.entries_checked == 3
        assert (cycle.settled, cycle.pending, cycle.expired) == (1, 1, 1)
        assert cycle.oracle_calls == 2
        assert metrics.get_current_cycle() is None

    def test_failed_entry_makes_cycle_partial(self):
        metrics = PollerMetrics()
        metrics.start_cycle(pool_size=1)
        metrics.record_outcome(EntryOutcome.FAILED)
        metrics.record_error("abc: timeout")
        metrics.end_cycle()

        cycle = metrics.get_last_cycle()
        assert cycle.status == CycleStatus.PARTIAL
        assert cycle.to_dict()["errors"] == ["abc: timeout"]

    def test_explicit_status_wins(self):
        metrics = PollerMetrics()
        metrics.start_cycle(pool_size=0)
        metrics.end_cycle(CycleStatus.STOPPED)

        assert metrics.get_last_cycle().to_dict()["status"] == "stopped"

    def test_recording_outside_cycle_is_ignored(self):
        metrics = PollerMetrics()
        metrics.record_outcome(EntryOutcome.SETTLED)
        metrics.record_oracle_call(1.0)
        metrics.record_error("ignored")
        metrics.end_cycle()

        assert metrics.get_last_cycle() is None

    def test_history_is_bounded(self):
        metrics = PollerMetrics(history_size=2)
        for _ in range(5):
            metrics.start_cycle(pool_size=0)
            metrics.end_cycle()

        history = metrics.get_history()
        assert len(history) == 2
        assert history[0].cycle_id.endswith("-5")
        assert len(metrics.get_history(limit=1)) == 1

    def test_aggregate_metrics(self):
        metrics = PollerMetrics()

        metrics.start_cycle(pool_size=2)
        metrics.record_outcome(EntryOutcome.SETTLED)
        metrics.record_outcome(EntryOutcome.ALREADY_PAID)
        metrics.record_oracle_call(2.0)
        metrics.end_cycle()

        metrics.start_cycle(pool_size=1)
        metrics.record_outcome(EntryOutcome.FAILED)
        metrics.record_error("abc: boom")
        metrics.record_oracle_call(4.0)
        metrics.end_cycle()

        metrics.start_cycle(pool_size=1)
        metrics.end_cycle(CycleStatus.STOPPED)

        agg = metrics.get_aggregate_metrics()
        assert agg.total_cycles == 3
        assert (agg.completed_cycles, agg.partial_cycles, agg.stopped_cycles) == (1, 1, 1)
        assert agg.total_settled == 1
        assert agg.total_already_paid == 1
        assert agg.total_errors == 1
        assert agg.avg_oracle_latency_seconds == pytest.approx(3.0)
        assert agg.last_settlement is not None
        assert agg.to_dict()["first_cycle"] is not None

    def test_aggregate_window_excludes_old_cycles(self):
        metrics = PollerMetrics()
        metrics.start_cycle(pool_size=0)
        metrics.end_cycle()
        metrics.get_last_cycle().started_at = datetime.now(timezone.utc) - timedelta(
            hours=48
        )

        assert metrics.get_aggregate_metrics(hours=24).total_cycles == 0
        assert metrics.get_aggregate_metrics().total_cycles == 1
