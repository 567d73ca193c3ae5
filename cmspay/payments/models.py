"""Data models for invoices, payment intents and polled payments."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class InvoiceStatus(str, Enum):
    """Lifecycle status of an invoice."""

    NOT_FOUND = "not_found"
    UNREVIEWED = "unreviewed"
    REJECTED = "rejected"
    APPROVED = "approved"
    PAID = "paid"


class InvoicePayment(BaseModel):
    """Payment intent attached to an invoice."""

    address: str = Field(..., min_length=1, description="Payment address")
    amount: int = Field(..., ge=0, description="Expected amount in atoms")
    tx_not_before: int = Field(..., description="Earliest valid tx time (Unix seconds)")
    poll_expiry: int = Field(..., description="Stop polling after this time (Unix seconds)")

    def has_expired(self, now: float | None = None) -> bool:
        return poll_has_expired(self.poll_expiry, now)


class Invoice(BaseModel):
    """Invoice record as returned by the invoice store."""

    token: str = Field(..., min_length=1, description="Unique invoice token")
    user_id: int | None = Field(default=None, description="Submitting user")
    username: str | None = Field(default=None, description="Submitting username")
    month: int | None = Field(default=None, ge=1, le=12)
    year: int | None = Field(default=None)
    status: InvoiceStatus = Field(default=InvoiceStatus.UNREVIEWED)
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    payments: list[InvoicePayment] = Field(default_factory=list)


@dataclass(frozen=True)
class PollEntry:
    """Polling metadata for one invoice payment address."""

    address: str
    expected_amount: int
    not_before: int
    expiry: int

    @classmethod
    def from_payment(cls, payment: InvoicePayment) -> "PollEntry":
        return cls(
            address=payment.address,
            expected_amount=payment.amount,
            not_before=payment.tx_not_before,
            expiry=payment.poll_expiry,
        )

    def has_expired(self, now: float | None = None) -> bool:
        return poll_has_expired(self.expiry, now)


def poll_has_expired(poll_expiry: int, now: float | None = None) -> bool:
    """True once ``now`` is strictly after ``poll_expiry``."""
    if now is None:
        now = time.time()
    return now > poll_expiry
