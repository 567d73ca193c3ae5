"""
Payment poller metrics.

Tracks what each poll cycle did (settlements, expiries, errors) and how
long the oracle took, keeping a bounded in-memory history.
"""

from typing import Dict, Any, Optional, List
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field, asdict
from enum import Enum


class CycleStatus(str, Enum):
    """Status of a poll cycle."""

    COMPLETED = "completed"
    PARTIAL = "partial"  # Finished, but some entries failed and stay pooled
    STOPPED = "stopped"  # Aborted because the store shut down


class EntryOutcome(str, Enum):
    """What reconciliation decided for one polled entry."""

    SETTLED = "settled"
    EXPIRED = "expired"
    ALREADY_PAID = "already_paid"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class PollCycleMetrics:
    """Metrics for a single poll cycle."""

    cycle_id: str
    started_at: datetime
    pool_size: int = 0
    ended_at: Optional[datetime] = None
    status: CycleStatus = CycleStatus.COMPLETED

    # Entry outcomes
    entries_checked: int = 0
    settled: int = 0
    expired: int = 0
    already_paid: int = 0
    pending: int = 0
    failed: int = 0

    # Performance
    duration_seconds: float = 0.0
    oracle_calls: int = 0
    oracle_latency_seconds: float = 0.0

    # Error tracking
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        data["status"] = self.status.value
        return data


@dataclass
class AggregateMetrics:
    """Aggregated metrics across poll cycles."""

    total_cycles: int = 0
    completed_cycles: int = 0
    partial_cycles: int = 0
    stopped_cycles: int = 0

    total_settled: int = 0
    total_expired: int = 0
    total_already_paid: int = 0
    total_errors: int = 0

    avg_duration_seconds: float = 0.0
    avg_oracle_latency_seconds: float = 0.0

    first_cycle: Optional[datetime] = None
    last_cycle: Optional[datetime] = None
    last_settlement: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ["first_cycle", "last_cycle", "last_settlement"]:
            if data[key]:
                data[key] = data[key].isoformat()
        return data


class PollerMetrics:
    """In-memory metrics tracker for the payment poller."""

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self._current: Optional[PollCycleMetrics] = None
        self._history: List[PollCycleMetrics] = []
        self._cycle_counter = 0

    def start_cycle(self, pool_size: int) -> str:
        """
        Start tracking a new poll cycle.

        Returns:
            Cycle ID
        """
        self._cycle_counter += 1
        now = datetime.now(timezone.utc)
        cycle_id = f"cycle-{now.strftime('%Y%m%d-%H%M%S')}-{self._cycle_counter}"
        self._current = PollCycleMetrics(
            cycle_id=cycle_id, started_at=now, pool_size=pool_size
        )
        return cycle_id

    def end_cycle(self, status: Optional[CycleStatus] = None):
        """
        End the current cycle.

        Without an explicit status the cycle is COMPLETED, or PARTIAL if any
        entry failed.
        """
        cycle = self._current
        if not cycle:
            return

        if status is None:
            status = CycleStatus.PARTIAL if cycle.failed else CycleStatus.COMPLETED
        cycle.ended_at = datetime.now(timezone.utc)
        cycle.status = status
        cycle.duration_seconds = (cycle.ended_at - cycle.started_at).total_seconds()

        self._history.append(cycle)
        if len(self._history) > self.history_size:
            self._history = self._history[-self.history_size :]

        self._current = None

    def record_outcome(self, outcome: EntryOutcome):
        if not self._current:
            return
        self._current.entries_checked += 1
        if outcome == EntryOutcome.SETTLED:
            self._current.settled += 1
        elif outcome == EntryOutcome.EXPIRED:
            self._current.expired += 1
        elif outcome == EntryOutcome.ALREADY_PAID:
            self._current.already_paid += 1
        elif outcome == EntryOutcome.PENDING:
            self._current.pending += 1
        else:
            self._current.failed += 1

    def record_oracle_call(self, latency_seconds: float):
        if self._current:
            self._current.oracle_calls += 1
            self._current.oracle_latency_seconds += latency_seconds

    def record_error(self, error: str):
        if self._current:
            self._current.errors.append(error)

    def get_current_cycle(self) -> Optional[PollCycleMetrics]:
        return self._current

    def get_last_cycle(self) -> Optional[PollCycleMetrics]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: Optional[int] = None) -> List[PollCycleMetrics]:
        """Recent cycles, newest first."""
        history = list(reversed(self._history))
        if limit:
            history = history[:limit]
        return history

    def get_aggregate_metrics(self, hours: Optional[int] = None) -> AggregateMetrics:
        """
        Get aggregated metrics across recent cycles.

        Args:
            hours: Only include cycles from the last N hours (None = all history)
        """
        cycles = self._history

        if hours:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
            cycles = [c for c in cycles if c.started_at >= cutoff]

        if not cycles:
            return AggregateMetrics()

        metrics = AggregateMetrics(total_cycles=len(cycles))
        for cycle in cycles:
            if cycle.status == CycleStatus.COMPLETED:
                metrics.completed_cycles += 1
            elif cycle.status == CycleStatus.PARTIAL:
                metrics.partial_cycles += 1
            else:
                metrics.stopped_cycles += 1
            if cycle.settled:
                metrics.last_settlement = cycle.started_at

        metrics.total_settled = sum(c.settled for c in cycles)
        metrics.total_expired = sum(c.expired for c in cycles)
        metrics.total_already_paid = sum(c.already_paid for c in cycles)
        metrics.total_errors = sum(len(c.errors) for c in cycles)

        metrics.avg_duration_seconds = (
            sum(c.duration_seconds for c in cycles) / metrics.total_cycles
        )
        oracle_calls = sum(c.oracle_calls for c in cycles)
        if oracle_calls:
            metrics.avg_oracle_latency_seconds = (
                sum(c.oracle_latency_seconds for c in cycles) / oracle_calls
            )

        metrics.first_cycle = cycles[0].started_at
        metrics.last_cycle = cycles[-1].started_at
        return metrics
