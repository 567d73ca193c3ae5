"""
Payment poller configuration.

Defines the poll cadence, poll window, confirmation requirement,
oracle selection and the block-explorer client's resilience settings.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field
from datetime import timedelta

from cmspay.core.config import Settings, get_settings


class RetryConfig(BaseModel):
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = Field(default=3, ge=1, description="Maximum retry attempts")
    initial_delay: float = Field(
        default=1.0, gt=0, description="Initial delay in seconds"
    )
    max_delay: float = Field(default=30.0, gt=0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(
        default=True, description="Add random jitter to prevent thundering herd"
    )


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker pattern."""

    failure_threshold: int = Field(
        default=5, ge=1, description="Failures before opening circuit"
    )
    success_threshold: int = Field(
        default=2, ge=1, description="Successes to close circuit"
    )
    timeout: float = Field(
        default=60.0, gt=0, description="Seconds before attempting reset"
    )


class ExplorerConfig(BaseModel):
    """Block explorer endpoints for one network."""

    primary_url: str = Field(..., description="dcrdata API base URL")
    fallback_url: Optional[str] = Field(
        default=None, description="Insight API base URL used when primary fails"
    )
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")


EXPLORERS: dict[str, ExplorerConfig] = {
    "mainnet": ExplorerConfig(
        primary_url="https://explorer.dcrdata.org/api",
        fallback_url="https://mainnet.decred.org/api",
    ),
    "testnet": ExplorerConfig(
        primary_url="https://testnet.dcrdata.org/api",
        fallback_url="https://testnet.decred.org/api",
    ),
}


class PollerConfig(BaseModel):
    """Main payment poller configuration."""

    # Polling behavior
    check_gap_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds slept after each checked address and after each cycle",
    )
    poll_expiry_hours: int = Field(
        default=24, ge=1, description="Hours a new payment address is watched"
    )
    min_confirmations: int = Field(
        default=2, ge=0, description="Confirmations required on a payment tx"
    )
    refresh_every_cycles: int = Field(
        default=12,
        ge=0,
        description="Cycles between store rescans for new payment addresses (0 = never)",
    )

    # Oracle settings
    oracle_type: Literal["explorer", "mock"] = Field(
        default="explorer", description="Transaction oracle implementation"
    )
    network: Literal["mainnet", "testnet"] = Field(default="testnet")
    explorer: Optional[ExplorerConfig] = Field(
        default=None, description="Explorer endpoints (defaults by network)"
    )

    # Retry and resilience for explorer calls
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    def get_poll_expiry_timedelta(self) -> timedelta:
        """Get poll window as timedelta."""
        return timedelta(hours=self.poll_expiry_hours)

    def get_explorer_config(self) -> ExplorerConfig:
        return self.explorer or EXPLORERS[self.network]

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollerConfig":
        return cls(
            check_gap_seconds=settings.POLL_CHECK_GAP_SECONDS,
            poll_expiry_hours=settings.POLL_EXPIRY_HOURS,
            min_confirmations=settings.MIN_CONFIRMATIONS_REQUIRED,
            refresh_every_cycles=settings.POLL_REFRESH_CYCLES,
            oracle_type=settings.ORACLE_TYPE,
            network=settings.NETWORK,
        )


def get_poller_config() -> PollerConfig:
    """Build the poller configuration from application settings."""
    return PollerConfig.from_settings(get_settings())
