"""
Block explorer transaction oracle.

Looks for payments through public block explorers: dcrdata first, with an
insight API as fallback when dcrdata is unreachable or misbehaving.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from cmspay.payments.config import CircuitBreakerConfig, ExplorerConfig, RetryConfig
from cmspay.payments.oracle.base import (
    BaseTransactionOracle,
    OracleConnectionError,
    OracleError,
    OracleRateLimitError,
    OracleResponseError,
)
from cmspay.payments.retry import CircuitBreaker, CircuitOpenError, retry_with_backoff

logger = structlog.get_logger()

ATOMS_PER_COIN = 100_000_000


def coins_to_atoms(value: Any) -> int:
    """Convert a coin amount as reported by an explorer to atoms."""
    atoms = Decimal(str(value)) * ATOMS_PER_COIN
    return int(atoms.to_integral_value(rounding=ROUND_HALF_UP))


class BlockExplorerOracle(BaseTransactionOracle):
    """
    Oracle backed by dcrdata with an insight fallback.

    Each backend call is retried with exponential backoff on connection
    and rate-limit errors and guarded by its own circuit breaker.
    """

    def __init__(
        self,
        config: ExplorerConfig,
        retry: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreakerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the oracle.

        Args:
            config: Explorer endpoints and HTTP timeout
            retry: Retry policy per backend call
            circuit_breaker: Circuit breaker policy per backend
            client: Optional shared HTTP client (useful for testing)
        """
        self.config = config
        self.retry_config = retry or RetryConfig()
        breaker_config = circuit_breaker or CircuitBreakerConfig()
        self._client = client or httpx.AsyncClient(timeout=config.timeout)
        self._owns_client = client is None
        self.breakers: Dict[str, CircuitBreaker] = {
            "dcrdata": CircuitBreaker(breaker_config, name="dcrdata"),
            "insight": CircuitBreaker(breaker_config, name="insight"),
        }

    def get_source_name(self) -> str:
        return "dcrdata"

    async def find_transaction(
        self,
        address: str,
        min_amount: int,
        not_before: int,
        min_confirmations: int,
    ) -> str:
        async def primary() -> str:
            return await self._find_with_dcrdata(
                address, min_amount, not_before, min_confirmations
            )

        try:
            return await self._call("dcrdata", primary)
        except OracleError as e:
            if not self.config.fallback_url:
                raise
            logger.warning(
                "oracle.primary_failed",
                address=address,
                error=str(e),
                error_type=type(e).__name__,
            )

        async def fallback() -> str:
            return await self._find_with_insight(
                address, min_amount, not_before, min_confirmations
            )

        return await self._call("insight", fallback)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, backend: str, func: Callable[[], Awaitable[str]]) -> str:
        async def with_retry() -> str:
            return await retry_with_backoff(
                func,
                self.retry_config,
                operation_name=f"{backend}.find_transaction",
                retry_on=(OracleConnectionError, OracleRateLimitError),
            )

        try:
            return await self.breakers[backend].call_async(with_retry)
        except CircuitOpenError as e:
            raise OracleConnectionError(str(e)) from e

    async def _find_with_dcrdata(
        self, address: str, min_amount: int, not_before: int, min_confirmations: int
    ) -> str:
        url = f"{self.config.primary_url.rstrip('/')}/address/{address}/raw"
        transactions = await self._get_json(url)
        if transactions is None:
            return ""
        if not isinstance(transactions, list):
            raise OracleResponseError(f"unexpected dcrdata response for {address}")

        try:
            for tx in transactions:
                if tx.get("confirmations", 0) < min_confirmations:
                    continue
                if (tx.get("time") or tx.get("blocktime") or 0) < not_before:
                    continue
                for vout in tx.get("vout") or []:
                    script = vout.get("scriptPubKey") or {}
                    if address not in (script.get("addresses") or []):
                        continue
                    if coins_to_atoms(vout.get("value", 0)) >= min_amount:
                        return str(tx["txid"])
        except (AttributeError, KeyError, TypeError, ArithmeticError) as e:
            raise OracleResponseError(f"malformed dcrdata tx for {address}: {e}") from e
        return ""

    async def _find_with_insight(
        self, address: str, min_amount: int, not_before: int, min_confirmations: int
    ) -> str:
        assert self.config.fallback_url is not None
        url = f"{self.config.fallback_url.rstrip('/')}/addr/{address}/utxo"
        utxos: List[Dict[str, Any]] = await self._get_json(url) or []
        if not isinstance(utxos, list):
            raise OracleResponseError(f"unexpected insight response for {address}")

        try:
            for utxo in utxos:
                if utxo.get("address") != address:
                    continue
                if utxo.get("confirmations", 0) < min_confirmations:
                    continue
                if utxo.get("ts", 0) < not_before:
                    continue
                if "satoshis" in utxo:
                    amount = int(utxo["satoshis"])
                else:
                    amount = coins_to_atoms(utxo.get("amount", 0))
                if amount >= min_amount:
                    return str(utxo["txid"])
        except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise OracleResponseError(f"malformed insight utxo for {address}: {e}") from e
        return ""

    async def _get_json(self, url: str) -> Any:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise OracleConnectionError(f"GET {url}: {e}") from e

        if response.status_code == 429:
            raise OracleRateLimitError(f"GET {url}: rate limited")
        if response.status_code >= 500:
            raise OracleConnectionError(f"GET {url}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise OracleResponseError(
                f"GET {url}: HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise OracleResponseError(f"GET {url}: invalid JSON") from e
