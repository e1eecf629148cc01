"""Customer-side and expense documents that trigger journal postings."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import Date, ForeignKey, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finledger.database import Base
from finledger.models.base import UUIDPrimaryKeyMixin, utcnow


class Expense(UUIDPrimaryKeyMixin, Base):
    """A paid business expense (debits an expense account, credits cash/bank)."""
    __tablename__ = "expenses"

    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    reference_number: Mapped[str | None] = mapped_column(String(200))
    account_code: Mapped[str | None] = mapped_column(String(20))
    payment_method: Mapped[str] = mapped_column(
        String(30), nullable=False, default="cash", server_default=text("'cash'")
    )
    bank_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bank_accounts.id")
    )
    cash_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cash_accounts.id")
    )
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Expense {self.category!r} {self.amount}>"


class Invoice(UUIDPrimaryKeyMixin, Base):
    """A customer invoice; issuing it books the receivable."""
    __tablename__ = "invoices"

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    invoice_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    total: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    total_refunded: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="issued", server_default=text("'issued'")
    )
    notes: Mapped[str | None] = mapped_column(Text)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    # ------ relationships ------
    payments: Mapped[list[Payment]] = relationship(
        "Payment",
        back_populates="invoice",
        lazy="selectin",
    )
    refunds: Mapped[list[Refund]] = relationship(
        "Refund",
        back_populates="invoice",
        lazy="selectin",
    )

    @property
    def outstanding(self) -> decimal.Decimal:
        return self.total - self.paid_amount

    def refresh_status(self) -> None:
        if self.status == "cancelled":
            return
        if self.paid_amount <= 0:
            self.status = "issued"
        elif self.paid_amount < self.total:
            self.status = "partial"
        else:
            self.status = "paid"

    def __repr__(self) -> str:
        return f"<Invoice {self.customer_name!r} total={self.total} status={self.status!r}>"


class Payment(UUIDPrimaryKeyMixin, Base):
    """Money received from a customer against an invoice."""
    __tablename__ = "payments"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id"), nullable=False
    )
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(
        String(30), nullable=False, default="cash", server_default=text("'cash'")
    )
    bank_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bank_accounts.id")
    )
    cash_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cash_accounts.id")
    )
    reference_number: Mapped[str | None] = mapped_column(String(200))
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    # ------ relationships ------
    invoice: Mapped[Invoice] = relationship(
        "Invoice",
        back_populates="payments",
    )

    def __repr__(self) -> str:
        return f"<Payment {self.amount} via {self.method!r}>"


class Refund(UUIDPrimaryKeyMixin, Base):
    """Money returned to a customer against an invoice."""
    __tablename__ = "invoice_refunds"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id"), nullable=False
    )
    refund_amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    refund_method: Mapped[str] = mapped_column(
        String(30), nullable=False, default="cash", server_default=text("'cash'")
    )
    bank_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bank_accounts.id")
    )
    cash_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cash_accounts.id")
    )
    reference_number: Mapped[str | None] = mapped_column(String(200))
    processed_at: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    # ------ relationships ------
    invoice: Mapped[Invoice] = relationship(
        "Invoice",
        back_populates="refunds",
    )

    def __repr__(self) -> str:
        return f"<Refund {self.refund_amount} via {self.refund_method!r}>"
