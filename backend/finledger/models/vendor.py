"""Procurement-side documents: vendors, bills, bill payments and purchase returns."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finledger.database import Base
from finledger.models.base import UUIDPrimaryKeyMixin, utcnow


class Vendor(UUIDPrimaryKeyMixin, Base):
    """A supplier we receive bills from."""
    __tablename__ = "vendors"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200))
    phone: Mapped[str | None] = mapped_column(String(30))
    notes: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Vendor {self.name!r}>"


class VendorBill(UUIDPrimaryKeyMixin, Base):
    """A vendor bill; recording it books the payable."""
    __tablename__ = "vendor_bills"

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendors.id"), nullable=False
    )
    bill_number: Mapped[str] = mapped_column(String(100), nullable=False)
    bill_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    returned_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default="Raw Materials", server_default=text("'Raw Materials'")
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unpaid", server_default=text("'unpaid'")
    )
    description: Mapped[str | None] = mapped_column(Text)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    # ------ relationships ------
    vendor: Mapped[Vendor] = relationship("Vendor", lazy="selectin")

    @property
    def outstanding(self) -> decimal.Decimal:
        return self.total_amount - self.paid_amount - self.returned_amount

    def refresh_status(self) -> None:
        if self.status == "cancelled":
            return
        if self.outstanding <= 0:
            self.status = "paid"
        elif self.paid_amount > 0 or self.returned_amount > 0:
            self.status = "partial"
        else:
            self.status = "unpaid"

    def __repr__(self) -> str:
        return f"<VendorBill {self.bill_number!r} total={self.total_amount} status={self.status!r}>"


class VendorPayment(UUIDPrimaryKeyMixin, Base):
    """Money paid to a vendor against a bill."""
    __tablename__ = "vendor_payments"

    vendor_bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendor_bills.id"), nullable=False
    )
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(
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

    def __repr__(self) -> str:
        return f"<VendorPayment {self.amount} via {self.payment_method!r}>"


class VendorPaymentHistory(UUIDPrimaryKeyMixin, Base):
    """Per-vendor payment history row written alongside each vendor payment."""
    __tablename__ = "vendor_payment_history"

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendors.id"), nullable=False
    )
    vendor_bill_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("vendor_bills.id")
    )
    vendor_payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(30))
    reference_number: Mapped[str | None] = mapped_column(String(200))
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<VendorPaymentHistory vendor={self.vendor_id} amount={self.amount}>"


class PurchaseReturn(UUIDPrimaryKeyMixin, Base):
    """Goods sent back to a vendor, reducing what we owe on a bill."""
    __tablename__ = "purchase_returns"

    vendor_bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendor_bills.id"), nullable=False
    )
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    return_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("journal_entries.id")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<PurchaseReturn {self.amount}>"
