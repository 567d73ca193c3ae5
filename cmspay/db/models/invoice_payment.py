"""Invoice payment model holding the address an invoice is paid to."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cmspay.db.base import Base

if TYPE_CHECKING:
    from cmspay.db.models.invoice import Invoice


class InvoicePayment(Base):
    """Payment intent for an invoice: address, expected amount and poll window."""

    __tablename__ = "invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Reference to the invoice",
    )

    address: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True, comment="Payment address"
    )
    amount: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="Expected amount in atoms"
    )
    tx_not_before: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="Earliest valid tx time (Unix seconds)"
    )
    poll_expiry: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        index=True,
        comment="Address is not polled after this time (Unix seconds)",
    )

    invoice: Mapped["Invoice"] = relationship(back_populates="payments", lazy="joined")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<InvoicePayment(id={self.id}, invoice_id={self.invoice_id}, "
            f"address={self.address}, amount={self.amount})>"
        )
