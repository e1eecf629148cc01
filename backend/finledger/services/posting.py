"""Journal poster: turns financial events into balanced journal entries.

A posting resolves the two accounts an event touches, writes one journal
entry with a debit line and a credit line, moves both account balances, and
records the settlement (bank/cash transaction row, vendor payment history)
linked to the entry by foreign key. A reversal writes the mirror entry,
restores the balances and removes the settlement rows.

The poster only flushes. The caller owns the transaction, so one logical
operation either lands completely or not at all.

Posting rules::

    EXPENSE          Dr expense(category)   Cr cash/bank      money out
    VENDOR_BILL      Dr expense(category)   Cr payable
    PURCHASE_RETURN  Dr payable             Cr expense(category)
    VENDOR_PAYMENT   Dr payable             Cr cash/bank      money out
    INVOICE          Dr receivable          Cr sales
    PAYMENT          Dr cash/bank           Cr receivable     money in
    REFUND           Dr sales returns       Cr cash/bank      money out
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.models.banking import BankAccount, BankTransaction, CashTransaction
from finledger.models.base import utcnow
from finledger.models.gl import Account, JournalEntry, JournalLine, entry_number_seq
from finledger.models.vendor import VendorPaymentHistory
from finledger.services.chart import BANK_METHODS, AccountResolver, apply_leg
from finledger.services.errors import (
    DuplicatePostingError,
    LedgerInconsistencyError,
    PostingValidationError,
    SourceDocumentNotFoundError,
)
from finledger.services.matching import CounterpartMatcher

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
TWOPLACES = Decimal("0.01")


def money(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


class EventKind(str, enum.Enum):
    EXPENSE = "EXPENSE"
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    VENDOR_BILL = "VENDOR_BILL"
    VENDOR_PAYMENT = "VENDOR_PAYMENT"
    PURCHASE_RETURN = "PURCHASE_RETURN"
    MANUAL = "MANUAL"


JOURNAL_PREFIXES = {
    EventKind.EXPENSE: "EXP",
    EventKind.INVOICE: "INV",
    EventKind.PAYMENT: "PAY",
    EventKind.REFUND: "REF",
    EventKind.VENDOR_BILL: "BILL",
    EventKind.VENDOR_PAYMENT: "VPAY",
    EventKind.PURCHASE_RETURN: "PRET",
    EventKind.MANUAL: "MAN",
}

MONEY_OUT = frozenset({EventKind.EXPENSE, EventKind.VENDOR_PAYMENT, EventKind.REFUND})
MONEY_IN = frozenset({EventKind.PAYMENT})


@dataclass
class FinancialEvent:
    """Business-level transaction that is posted as one journal entry."""

    kind: EventKind
    source_id: uuid.UUID
    amount: Decimal
    entry_date: date
    description: str | None = None
    reference: str | None = None
    category: str | None = None
    account_code: str | None = None
    payment_method: str = "cash"
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None
    vendor_id: uuid.UUID | None = None
    vendor_bill_id: uuid.UUID | None = None

    @property
    def moves_money(self) -> bool:
        return self.kind in MONEY_OUT or self.kind in MONEY_IN

    @property
    def uses_bank(self) -> bool:
        return self.bank_account_id is not None and self.payment_method in BANK_METHODS


@dataclass
class Leg:
    account: Account
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    memo: str | None = None


@dataclass
class ManualLine:
    account_id: uuid.UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    memo: str | None = None


class JournalPoster:
    def __init__(self, db: AsyncSession, user_id: uuid.UUID | None = None):
        self.db = db
        self.user_id = user_id
        self.accounts = AccountResolver(db)
        self.matcher = CounterpartMatcher(db)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    async def post(self, event: FinancialEvent) -> JournalEntry:
        """Post ``event`` as a two-line journal entry and apply its side effects."""
        amount = money(event.amount)
        if amount <= ZERO:
            raise PostingValidationError(f"Amount must be positive, got {event.amount}")
        await self._ensure_not_posted(event)

        bank_account = None
        if event.moves_money and event.uses_bank:
            bank_account = await self.accounts.bank_account(event.bank_account_id)

        debit_account, credit_account = await self._resolve_accounts(event, bank_account)
        memo = event.description or f"{event.kind.value.replace('_', ' ').title()}"
        entry = await self._write_entry(
            kind=event.kind,
            source_id=event.source_id,
            entry_date=event.entry_date,
            memo=memo,
            reference=event.reference,
            legs=[
                Leg(debit_account, debit=amount, memo=memo),
                Leg(credit_account, credit=amount, memo=memo),
            ],
        )
        await self._settle(event, entry, amount, bank_account)

        logger.info(
            f"Posted {entry.journal_number}: Dr {debit_account.account_code} "
            f"/ Cr {credit_account.account_code} {amount}"
        )
        return entry

    async def post_manual(
        self,
        lines: list[ManualLine],
        entry_date: date,
        memo: str | None = None,
        reference: str | None = None,
    ) -> JournalEntry:
        """Post a hand-written balanced entry against existing accounts."""
        legs = []
        for line in lines:
            account = await self.accounts.by_id(line.account_id)
            legs.append(Leg(account, money(line.debit), money(line.credit), line.memo))
        entry = await self._write_entry(
            kind=EventKind.MANUAL,
            source_id=None,
            entry_date=entry_date,
            memo=memo,
            reference=reference,
            legs=legs,
        )
        logger.info(f"Posted manual entry {entry.journal_number} ({len(legs)} lines)")
        return entry

    async def _ensure_not_posted(self, event: FinancialEvent) -> None:
        existing = await self._live_entry(event.kind, event.source_id)
        if existing is not None:
            raise DuplicatePostingError(
                f"{event.kind.value} {event.source_id} is already posted as {existing.journal_number}"
            )

    async def _resolve_accounts(
        self,
        event: FinancialEvent,
        bank_account: BankAccount | None,
    ) -> tuple[Account, Account]:
        kind = event.kind
        if kind == EventKind.EXPENSE:
            return (
                await self.accounts.expense_account(event.category, event.account_code),
                await self.accounts.payment_account(event.payment_method, bank_account),
            )
        if kind == EventKind.VENDOR_BILL:
            return (
                await self.accounts.expense_account(event.category, event.account_code),
                await self.accounts.payable_account(),
            )
        if kind == EventKind.PURCHASE_RETURN:
            return (
                await self.accounts.payable_account(),
                await self.accounts.expense_account(event.category, event.account_code),
            )
        if kind == EventKind.VENDOR_PAYMENT:
            return (
                await self.accounts.payable_account(),
                await self.accounts.payment_account(event.payment_method, bank_account),
            )
        if kind == EventKind.INVOICE:
            return (
                await self.accounts.receivable_account(),
                await self.accounts.sales_account(),
            )
        if kind == EventKind.PAYMENT:
            return (
                await self.accounts.payment_account(event.payment_method, bank_account),
                await self.accounts.receivable_account(),
            )
        if kind == EventKind.REFUND:
            return (
                await self.accounts.sales_returns_account(),
                await self.accounts.payment_account(event.payment_method, bank_account),
            )
        raise PostingValidationError(f"No posting rule for {kind.value}")

    async def _next_entry_number(self) -> int:
        if self.db.get_bind().dialect.supports_sequences:
            return await self.db.scalar(select(entry_number_seq.next_value()))
        result = await self.db.execute(select(func.max(JournalEntry.entry_number)))
        return (result.scalar() or 0) + 1

    @staticmethod
    def _validate_legs(legs: list[Leg]) -> None:
        if len(legs) < 2:
            raise PostingValidationError("Journal entry must have at least 2 lines")
        for i, leg in enumerate(legs, start=1):
            if leg.debit < ZERO or leg.credit < ZERO:
                raise PostingValidationError(f"Line {i}: amounts cannot be negative")
            if (leg.debit > ZERO) == (leg.credit > ZERO):
                raise PostingValidationError(
                    f"Line {i}: exactly one of debit or credit must be non-zero"
                )
        total_debit = sum((l.debit for l in legs), ZERO)
        total_credit = sum((l.credit for l in legs), ZERO)
        if total_debit != total_credit:
            raise PostingValidationError(
                f"Debits ({total_debit}) must equal credits ({total_credit})"
            )

    async def _write_entry(
        self,
        kind: EventKind,
        source_id: uuid.UUID | None,
        entry_date: date,
        memo: str | None,
        reference: str | None,
        legs: list[Leg],
        reversal_of: JournalEntry | None = None,
    ) -> JournalEntry:
        self._validate_legs(legs)

        number = await self._next_entry_number()
        prefix = "REV" if reversal_of is not None else JOURNAL_PREFIXES[kind]
        entry = JournalEntry(
            entry_number=number,
            journal_number=f"JE-{prefix}-{number:06d}",
            entry_date=entry_date,
            memo=memo,
            reference_number=reference,
            source_document_type=kind.value,
            source_document_id=source_id,
            status="posted",
            reversal_of_id=reversal_of.id if reversal_of is not None else None,
            created_by=self.user_id,
            posted_at=utcnow(),
        )
        for i, leg in enumerate(legs, start=1):
            entry.lines.append(JournalLine(
                line_number=i,
                account_id=leg.account.id,
                account=leg.account,
                debit_amount=leg.debit,
                credit_amount=leg.credit,
                memo=leg.memo,
            ))
            apply_leg(leg.account, leg.debit, leg.credit)

        self.db.add(entry)
        await self.db.flush()
        return entry

    async def _settle(
        self,
        event: FinancialEvent,
        entry: JournalEntry,
        amount: Decimal,
        bank_account: BankAccount | None,
    ) -> None:
        if not event.moves_money:
            return
        outflow = event.kind in MONEY_OUT
        source_type = event.kind.value.lower()

        if bank_account is not None:
            self.db.add(BankTransaction(
                bank_account_id=bank_account.id,
                transaction_date=event.entry_date,
                type="withdrawal" if outflow else "deposit",
                amount=amount,
                description=event.description,
                reference_number=event.reference,
                source_type=source_type,
                source_id=event.source_id,
                journal_entry_id=entry.id,
            ))
            bank_account.current_balance += -amount if outflow else amount
        elif event.payment_method not in BANK_METHODS:
            cash_box = await self.accounts.cash_box(event.cash_account_id)
            if cash_box is not None:
                self.db.add(CashTransaction(
                    cash_account_id=cash_box.id,
                    transaction_date=event.entry_date,
                    transaction_type="DEBIT" if outflow else "CREDIT",
                    amount=amount,
                    description=event.description,
                    reference_number=event.reference,
                    source_type=source_type,
                    source_id=event.source_id,
                    journal_entry_id=entry.id,
                ))
                cash_box.current_balance += -amount if outflow else amount

        if event.kind == EventKind.VENDOR_PAYMENT and event.vendor_id is not None:
            self.db.add(VendorPaymentHistory(
                vendor_id=event.vendor_id,
                vendor_bill_id=event.vendor_bill_id,
                vendor_payment_id=event.source_id,
                amount=amount,
                payment_date=event.entry_date,
                payment_method=event.payment_method,
                reference_number=event.reference,
                journal_entry_id=entry.id,
            ))
        await self.db.flush()

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    async def _live_entry(self, kind: EventKind, source_id: uuid.UUID) -> JournalEntry | None:
        result = await self.db.execute(
            select(JournalEntry).where(
                JournalEntry.source_document_type == kind.value,
                JournalEntry.source_document_id == source_id,
                JournalEntry.status == "posted",
                JournalEntry.reversal_of_id.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def reverse(self, event: FinancialEvent) -> JournalEntry:
        """Void the posting of ``event`` and undo its settlement rows."""
        original = await self._live_entry(event.kind, event.source_id)
        if original is None:
            raise SourceDocumentNotFoundError(
                f"No posted journal entry for {event.kind.value} {event.source_id}"
            )
        reversal = await self._write_reversal(original)
        await self._unsettle(event, original)
        logger.info(f"Reversed {original.journal_number} with {reversal.journal_number}")
        return reversal

    async def reverse_entry(self, entry_id: uuid.UUID) -> JournalEntry:
        """Reverse a manual journal entry by id."""
        result = await self.db.execute(
            select(JournalEntry).where(JournalEntry.id == entry_id)
        )
        original = result.scalar_one_or_none()
        if original is None:
            raise SourceDocumentNotFoundError("Journal entry not found")
        if original.source_document_type != EventKind.MANUAL.value:
            raise LedgerInconsistencyError(
                f"{original.journal_number} was posted from a "
                f"{original.source_document_type} document; delete or update the document instead"
            )
        if original.status != "posted" or original.reversal_of_id is not None:
            raise LedgerInconsistencyError("Can only reverse posted entries")
        reversal = await self._write_reversal(original)
        logger.info(f"Reversed {original.journal_number} with {reversal.journal_number}")
        return reversal

    async def _write_reversal(self, original: JournalEntry) -> JournalEntry:
        legs = []
        for line in original.lines:
            account = await self.accounts.by_id(line.account_id)
            # swapped
            legs.append(Leg(
                account,
                debit=line.credit_amount,
                credit=line.debit_amount,
                memo=f"Reversal: {line.memo or ''}",
            ))
        reversal = await self._write_entry(
            kind=EventKind(original.source_document_type),
            source_id=original.source_document_id,
            entry_date=date.today(),
            memo=f"Reversal of {original.journal_number}: {original.memo or ''}",
            reference=f"reversal:{original.id}",
            legs=legs,
            reversal_of=original,
        )
        original.status = "reversed"
        original.reversed_by_id = reversal.id
        await self.db.flush()
        return reversal

    async def _unsettle(self, event: FinancialEvent, original: JournalEntry) -> None:
        if event.moves_money:
            for tx in await self.matcher.bank_transactions(event, original):
                bank_account = await self.accounts.bank_account(tx.bank_account_id)
                bank_account.current_balance -= tx.signed_amount
                await self.db.delete(tx)
            for tx in await self.matcher.cash_transactions(event, original):
                cash_box = await self.accounts.cash_box(tx.cash_account_id)
                cash_box.current_balance -= tx.signed_amount
                await self.db.delete(tx)
        if event.kind == EventKind.VENDOR_PAYMENT:
            for row in await self.matcher.payment_history(event, original):
                await self.db.delete(row)
        await self.db.flush()
