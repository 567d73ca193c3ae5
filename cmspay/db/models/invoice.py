"""Invoice model for contractor invoices awaiting review or payment."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional
from sqlalchemy import BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cmspay.db.base import Base

if TYPE_CHECKING:
    from cmspay.db.models.invoice_payment import InvoicePayment


class Invoice(Base):
    """
    Stores submitted contractor invoices.

    The status column is the durable source of truth for whether an invoice
    has been paid; the payment poller only ever moves it to 'paid'.
    """

    __tablename__ = "invoices"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Invoice identification
    token: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique invoice token",
    )

    # Submitter
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, index=True, comment="Submitting user ID"
    )
    username: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Submitting username"
    )

    # Billing period
    month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="unreviewed",
        index=True,
        comment="Invoice status (e.g., 'unreviewed', 'approved', 'paid')",
    )
    timestamp: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="Last update of invoice (Unix seconds)"
    )

    # Relationships
    payments: Mapped[List["InvoicePayment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoicePayment.id",
    )

    # Audit fields
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (Index("idx_invoice_period", "year", "month"),)

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, token={self.token}, status={self.status})>"
