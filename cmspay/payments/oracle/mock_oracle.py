"""
Mock transaction oracle for testing and development.

Answers from a table of known payments instead of a block explorer and
keeps a bounded log of the queries it receives.
"""

import asyncio
import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from cmspay.payments.oracle.base import BaseTransactionOracle, OracleConnectionError


@dataclass(frozen=True)
class OracleQuery:
    """One find_transaction call as seen by the mock."""

    address: str
    min_amount: int
    not_before: int
    min_confirmations: int


@dataclass(frozen=True)
class MockPayment:
    """A payment the mock reports once it satisfies a query."""

    txid: str
    amount: int
    timestamp: int
    confirmations: int = 6


class MockTransactionOracle(BaseTransactionOracle):
    """
    Mock oracle with scripted payments and optional simulated failures.

    Payments registered with ``add_payment`` are matched with the same rules
    as the explorer oracle: amount, confirmations and not-before time.
    """

    def __init__(
        self, failure_rate: float = 0.0, latency_ms: int = 0, history_size: int = 1000
    ):
        """
        Initialize mock oracle.

        Args:
            failure_rate: Probability of simulated failure (0.0 to 1.0)
            latency_ms: Simulated network latency in milliseconds
            history_size: Most recent queries kept in ``queries``
        """
        self.failure_rate = failure_rate
        self.latency_ms = latency_ms
        self.queries: Deque[OracleQuery] = deque(maxlen=history_size)
        self._payments: Dict[str, List[MockPayment]] = {}
        self._failing: Dict[str, Exception] = {}

    def get_source_name(self) -> str:
        return "mock"

    def add_payment(
        self,
        address: str,
        txid: str,
        amount: int,
        timestamp: int,
        confirmations: int = 6,
    ) -> None:
        """Make a payment to ``address`` visible to future queries."""
        self._payments.setdefault(address, []).append(
            MockPayment(txid, amount, timestamp, confirmations)
        )

    def fail_for(self, address: str, error: Optional[Exception] = None) -> None:
        """Make every query for ``address`` raise ``error``."""
        self._failing[address] = error or OracleConnectionError(
            f"Simulated oracle failure for {address}"
        )

    def queried_addresses(self) -> List[str]:
        return [q.address for q in self.queries]

    async def find_transaction(
        self,
        address: str,
        min_amount: int,
        not_before: int,
        min_confirmations: int,
    ) -> str:
        self.queries.append(
            OracleQuery(address, min_amount, not_before, min_confirmations)
        )
        await self._simulate_latency()

        if address in self._failing:
            raise self._failing[address]
        if random.random() < self.failure_rate:
            raise OracleConnectionError("Simulated oracle connection failure")

        for payment in self._payments.get(address, []):
            if (
                payment.amount >= min_amount
                and payment.timestamp >= not_before
                and payment.confirmations >= min_confirmations
            ):
                return payment.txid
        return ""

    async def _simulate_latency(self):
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
