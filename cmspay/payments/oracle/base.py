"""
Base transaction oracle interface.

An oracle answers one question for the poller: has this address received
a transaction that satisfies the expected payment?
"""

from abc import ABC, abstractmethod


class BaseTransactionOracle(ABC):
    """
    Abstract base class for transaction oracles.

    Implementations must be safe to query repeatedly for the same payment:
    the poller re-asks every cycle until the invoice is settled or expires.
    """

    @abstractmethod
    async def find_transaction(
        self,
        address: str,
        min_amount: int,
        not_before: int,
        min_confirmations: int,
    ) -> str:
        """
        Look for a transaction satisfying a payment.

        Args:
            address: Payment address
            min_amount: Minimum amount in atoms paid to the address
            not_before: Ignore transactions before this Unix time
            min_confirmations: Minimum confirmations required

        Returns:
            Transaction ID, or "" if no satisfying transaction exists yet

        Raises:
            OracleConnectionError: If the backend cannot be reached
            OracleRateLimitError: If the backend throttles the request
            OracleResponseError: If the backend returns unusable data
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """
        Get the name of this oracle.

        Returns:
            Source identifier (e.g., 'dcrdata', 'mock')
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the oracle."""
        return None


class OracleError(Exception):
    """Base exception for transaction oracle errors."""

    pass


class OracleConnectionError(OracleError):
    """Raised when connection to the oracle backend fails."""

    pass


class OracleRateLimitError(OracleError):
    """Raised when the oracle backend rate limit is exceeded."""

    pass


class OracleResponseError(OracleError):
    """Raised when the oracle backend returns invalid data."""

    pass
