"""Locate the settlement rows a posting created so a reversal can undo them.

Rows written by this service carry ``journal_entry_id`` and are found by that
key. Rows imported from older data may lack it; for those we fall back to
three matching strategies, tried in order:

1. ``source_type`` + ``source_id``
2. ``reference_number`` + amount
3. amount + date + description containing the event description

The first strategy that finds anything wins. If it finds more than one row
we refuse to guess and raise ``AmbiguousMatchError``.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.models.banking import BankTransaction, CashTransaction
from finledger.models.gl import JournalEntry
from finledger.models.vendor import VendorPaymentHistory
from finledger.services.errors import AmbiguousMatchError

if TYPE_CHECKING:
    from finledger.services.posting import FinancialEvent

logger = logging.getLogger(__name__)


class CounterpartMatcher:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _linked(self, model, entry: JournalEntry) -> list[Any]:
        result = await self.db.execute(
            select(model).where(model.journal_entry_id == entry.id)
        )
        return list(result.scalars().all())

    async def _first_unique(self, label: str, strategies: list[tuple[str, Any]]) -> list[Any]:
        for name, stmt in strategies:
            rows = list((await self.db.execute(stmt)).scalars().all())
            if len(rows) == 1:
                logger.warning(f"Matched legacy {label} row by {name}")
                return rows
            if len(rows) > 1:
                raise AmbiguousMatchError(
                    f"{len(rows)} {label} rows match by {name}; refusing to guess"
                )
        return []

    def _transaction_strategies(self, model, date_column, event: FinancialEvent) -> list[tuple[str, Any]]:
        unlinked = select(model).where(model.journal_entry_id.is_(None))
        strategies = [(
            "source document",
            unlinked.where(
                model.source_type == event.kind.value.lower(),
                model.source_id == event.source_id,
            ),
        )]
        if event.reference:
            strategies.append((
                "reference and amount",
                unlinked.where(
                    model.reference_number == event.reference,
                    model.amount == event.amount,
                ),
            ))
        if event.description:
            strategies.append((
                "amount, date and description",
                unlinked.where(
                    model.amount == event.amount,
                    date_column == event.entry_date,
                    model.description.icontains(event.description, autoescape=True),
                ),
            ))
        return strategies

    async def bank_transactions(self, event: FinancialEvent, entry: JournalEntry) -> list[BankTransaction]:
        rows = await self._linked(BankTransaction, entry)
        if rows:
            return rows
        return await self._first_unique(
            "bank transaction",
            self._transaction_strategies(BankTransaction, BankTransaction.transaction_date, event),
        )

    async def cash_transactions(self, event: FinancialEvent, entry: JournalEntry) -> list[CashTransaction]:
        rows = await self._linked(CashTransaction, entry)
        if rows:
            return rows
        return await self._first_unique(
            "cash transaction",
            self._transaction_strategies(CashTransaction, CashTransaction.transaction_date, event),
        )

    async def payment_history(self, event: FinancialEvent, entry: JournalEntry) -> list[VendorPaymentHistory]:
        rows = await self._linked(VendorPaymentHistory, entry)
        if rows:
            return rows

        unlinked = select(VendorPaymentHistory).where(
            VendorPaymentHistory.journal_entry_id.is_(None)
        )
        strategies = [(
            "source document",
            unlinked.where(VendorPaymentHistory.vendor_payment_id == event.source_id),
        )]
        if event.reference:
            strategies.append((
                "reference and amount",
                unlinked.where(
                    VendorPaymentHistory.reference_number == event.reference,
                    VendorPaymentHistory.amount == event.amount,
                ),
            ))
        if event.vendor_id:
            strategies.append((
                "vendor, amount and date",
                unlinked.where(
                    VendorPaymentHistory.vendor_id == event.vendor_id,
                    VendorPaymentHistory.amount == event.amount,
                    VendorPaymentHistory.payment_date == event.entry_date,
                ),
            ))
        return await self._first_unique("vendor payment history", strategies)
