"""Transaction oracle implementations."""

from cmspay.payments.oracle.base import (
    BaseTransactionOracle,
    OracleConnectionError,
    OracleError,
    OracleRateLimitError,
    OracleResponseError,
)
from cmspay.payments.oracle.explorer import BlockExplorerOracle
from cmspay.payments.oracle.mock_oracle import MockTransactionOracle

__all__ = [
    "BaseTransactionOracle",
    "BlockExplorerOracle",
    "MockTransactionOracle",
    "OracleError",
    "OracleConnectionError",
    "OracleRateLimitError",
    "OracleResponseError",
]
