"""Bank and cash accounts together with the transaction rows that move their balances."""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finledger.database import Base
from finledger.models.base import UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from finledger.models.gl import Account


class BankAccount(UUIDPrimaryKeyMixin, Base):
    """A real bank account, linked to its chart-of-accounts asset account."""
    __tablename__ = "bank_accounts"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(200))
    account_number: Mapped[str | None] = mapped_column(String(50))
    opening_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    current_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    chart_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("accounts.id"),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )

    # ------ relationships ------
    chart_account: Mapped[Account | None] = relationship(
        "Account",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<BankAccount {self.name!r} balance={self.current_balance}>"


class CashAccount(UUIDPrimaryKeyMixin, Base):
    """A physical cash box / till."""
    __tablename__ = "cash_accounts"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    opening_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    current_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<CashAccount {self.name!r} balance={self.current_balance}>"


class BankTransaction(UUIDPrimaryKeyMixin, Base):
    """Deposit or withdrawal on a bank account."""
    __tablename__ = "bank_transactions"

    bank_account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("bank_accounts.id"),
        nullable=False,
    )
    transaction_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    reference_number: Mapped[str | None] = mapped_column(String(200))
    source_type: Mapped[str | None] = mapped_column(String(50))
    source_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )

    @property
    def signed_amount(self) -> decimal.Decimal:
        return self.amount if self.type == "deposit" else -self.amount

    def __repr__(self) -> str:
        return f"<BankTransaction {self.type} {self.amount}>"


class CashTransaction(UUIDPrimaryKeyMixin, Base):
    """Cash movement; CREDIT is money in, DEBIT is money out."""
    __tablename__ = "cash_transactions"

    cash_account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cash_accounts.id"),
        nullable=False,
    )
    transaction_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    reference_number: Mapped[str | None] = mapped_column(String(200))
    source_type: Mapped[str | None] = mapped_column(String(50))
    source_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )

    @property
    def signed_amount(self) -> decimal.Decimal:
        return self.amount if self.transaction_type == "CREDIT" else -self.amount

    def __repr__(self) -> str:
        return f"<CashTransaction {self.transaction_type} {self.amount}>"
