"""General Ledger models: chart of accounts, journal entries, and journal lines."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Sequence,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finledger.database import Base
from finledger.models.base import UUIDPrimaryKeyMixin, utcnow

# Entry numbers come from this sequence where the dialect has sequences (Postgres);
# elsewhere the poster falls back to max + 1 under a serialised writer.
entry_number_seq = Sequence("journal_entries_entry_number_seq", metadata=Base.metadata)


class Account(UUIDPrimaryKeyMixin, Base):
    """Chart of Accounts entry carrying its running balance."""
    __tablename__ = "accounts"

    account_code: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False
    )
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    normal_balance: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    opening_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    current_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("accounts.id"),
    )
    is_system: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    # ------ relationships ------
    parent: Mapped[Account | None] = relationship(
        "Account",
        remote_side="Account.id",
        back_populates="children",
    )
    children: Mapped[list[Account]] = relationship(
        "Account",
        back_populates="parent",
    )
    journal_lines: Mapped[list[JournalLine]] = relationship(
        "JournalLine",
        back_populates="account",
    )

    def __repr__(self) -> str:
        return f"<Account {self.account_code!r} {self.account_name!r}>"


class JournalEntry(UUIDPrimaryKeyMixin, Base):
    """A posted journal entry (header) with its ordered lines.

    Entries are never edited after posting; voiding one creates a reversing
    entry and flips ``status`` to ``reversed``.
    """
    __tablename__ = "journal_entries"
    __table_args__ = (
        Index("ix_journal_entries_source", "source_document_type", "source_document_id"),
    )

    entry_number: Mapped[int] = mapped_column(
        Integer, entry_number_seq, unique=True, nullable=False,
    )
    journal_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    entry_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    memo: Mapped[str | None] = mapped_column(Text)
    reference_number: Mapped[str | None] = mapped_column(String(200))
    source_document_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    source_document_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="posted",
        server_default=text("'posted'"),
    )
    reversal_of_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
    )
    reversed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
    )
    posted_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )

    # ------ relationships ------
    lines: Mapped[list[JournalLine]] = relationship(
        "JournalLine",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_number",
        lazy="selectin",
    )

    @property
    def total_debit(self) -> decimal.Decimal:
        return sum((l.debit_amount for l in self.lines), decimal.Decimal("0"))

    @property
    def total_credit(self) -> decimal.Decimal:
        return sum((l.credit_amount for l in self.lines), decimal.Decimal("0"))

    def __repr__(self) -> str:
        return f"<JournalEntry {self.journal_number} status={self.status!r}>"


class JournalLine(UUIDPrimaryKeyMixin, Base):
    """Individual debit or credit line within a journal entry."""
    __tablename__ = "journal_lines"

    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("accounts.id"),
        nullable=False,
    )
    debit_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    credit_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0"), server_default=text("0")
    )
    memo: Mapped[str | None] = mapped_column(Text)

    # ------ relationships ------
    journal_entry: Mapped[JournalEntry] = relationship(
        "JournalEntry",
        back_populates="lines",
    )
    account: Mapped[Account] = relationship(
        "Account",
        back_populates="journal_lines",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<JournalLine #{self.line_number} "
            f"debit={self.debit_amount} credit={self.credit_amount}>"
        )
