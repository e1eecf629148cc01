"""
Reversal — voiding postings restores every balance exactly, flips the
original entry, and removes the settlement rows (including legacy rows
that predate the journal_entry_id link).
Tests 301-319.
"""
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from finledger.models import (
    BankAccount,
    BankTransaction,
    CashAccount,
    CashTransaction,
    Expense,
    JournalEntry,
    VendorBill,
    VendorPaymentHistory,
)
from finledger.services.errors import (
    AmbiguousMatchError,
    LedgerInconsistencyError,
    SourceDocumentNotFoundError,
)
from finledger.services.events import (
    ExpenseService,
    VendorBillService,
    VendorPaymentService,
    expense_event,
)
from finledger.services.posting import EventKind, FinancialEvent, JournalPoster, ManualLine
from finledger.services.reconciliation import check_balances

from conftest import TODAY, balance_of, fetch, fetch_all


def expense_data(**kw) -> dict:
    data = {
        "date": TODAY,
        "amount": Decimal("120.00"),
        "category": "Technology",
        "description": "Laptop stand",
        "reference_number": "R-301",
        "payment_method": "cash",
    }
    data.update(kw)
    return data


async def create_expense(session_factory, **kw) -> Expense:
    async with session_factory() as s:
        return await ExpenseService(s).create(expense_data(**kw))


async def delete_expense(session_factory, expense_id):
    async with session_factory() as s:
        await ExpenseService(s).delete(expense_id)


async def entries_for(session_factory, source_id):
    return await fetch_all(
        session_factory,
        select(JournalEntry)
        .where(JournalEntry.source_document_id == source_id)
        .order_by(JournalEntry.entry_number),
    )


class TestBalancesRestored:

    async def test_301_cash_expense_delete_restores_accounts(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        assert await balance_of(session_factory, "6500") == Decimal("120.00")
        assert await balance_of(session_factory, "1010") == Decimal("-120.00")

        await delete_expense(session_factory, expense.id)
        assert await balance_of(session_factory, "6500") == Decimal("0.00")
        assert await balance_of(session_factory, "1010") == Decimal("0.00")

    async def test_302_cash_box_restored_and_row_removed(self, session_factory, main_cash):
        expense = await create_expense(session_factory)
        box = await fetch(session_factory, CashAccount, main_cash.id)
        assert box.current_balance == Decimal("-120.00")

        await delete_expense(session_factory, expense.id)
        box = await fetch(session_factory, CashAccount, main_cash.id)
        assert box.current_balance == Decimal("0.00")
        assert await fetch_all(session_factory, select(CashTransaction)) == []

    async def test_303_bank_balance_restored_and_row_removed(self, session_factory, bank_account):
        expense = await create_expense(
            session_factory, payment_method="bank_transfer", bank_account_id=bank_account.id,
        )
        bank = await fetch(session_factory, BankAccount, bank_account.id)
        assert bank.current_balance == Decimal("9880.00")
        assert await balance_of(session_factory, "1020-4321") == Decimal("-120.00")

        await delete_expense(session_factory, expense.id)
        bank = await fetch(session_factory, BankAccount, bank_account.id)
        assert bank.current_balance == Decimal("10000.00")
        assert await balance_of(session_factory, "1020-4321") == Decimal("0.00")
        assert await fetch_all(session_factory, select(BankTransaction)) == []

    async def test_304_vendor_payment_delete_removes_history(self, session_factory, vendor):
        async with session_factory() as s:
            bill = await VendorBillService(s).create(vendor.id, {
                "bill_number": "B-304",
                "bill_date": TODAY,
                "total_amount": Decimal("1000.00"),
            })
        async with session_factory() as s:
            payment = await VendorPaymentService(s).create(bill.id, {
                "amount": Decimal("400.00"),
                "payment_date": TODAY,
                "reference_number": "CHQ-304",
            })
        assert await balance_of(session_factory, "2010") == Decimal("600.00")
        assert len(await fetch_all(session_factory, select(VendorPaymentHistory))) == 1

        async with session_factory() as s:
            await VendorPaymentService(s).delete(payment.id)
        assert await balance_of(session_factory, "2010") == Decimal("1000.00")
        assert await fetch_all(session_factory, select(VendorPaymentHistory)) == []
        bill = await fetch(session_factory, VendorBill, bill.id)
        assert bill.paid_amount == Decimal("0.00")
        assert bill.status == "unpaid"

    async def test_305_ledger_consistent_after_post_and_reverse(self, session_factory, bank_account):
        first = await create_expense(session_factory)
        await create_expense(session_factory, amount=Decimal("55.55"), category="Insurance")
        await delete_expense(session_factory, first.id)
        async with session_factory() as s:
            assert await check_balances(s) == []


class TestReversalEntry:

    async def test_306_original_flipped_and_linked(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        await delete_expense(session_factory, expense.id)

        original, reversal = await entries_for(session_factory, expense.id)
        assert original.status == "reversed"
        assert original.reversed_by_id == reversal.id
        assert reversal.reversal_of_id == original.id
        assert reversal.status == "posted"

    async def test_307_reversal_lines_are_swapped(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        await delete_expense(session_factory, expense.id)

        original, reversal = await entries_for(session_factory, expense.id)
        assert [(l.account_id, l.debit_amount, l.credit_amount) for l in reversal.lines] == [
            (l.account_id, l.credit_amount, l.debit_amount) for l in original.lines
        ]

    async def test_308_reversal_numbering_and_date(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        await delete_expense(session_factory, expense.id)

        original, reversal = await entries_for(session_factory, expense.id)
        assert reversal.journal_number == f"JE-REV-{reversal.entry_number:06d}"
        assert reversal.entry_number == original.entry_number + 1
        assert reversal.entry_date == date.today()
        assert reversal.reference_number == f"reversal:{original.id}"
        assert reversal.source_document_type == "EXPENSE"

    async def test_309_repost_after_update_keeps_one_live_entry(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        async with session_factory() as s:
            await ExpenseService(s).update(expense.id, {"amount": Decimal("200.00")})

        entries = await entries_for(session_factory, expense.id)
        assert [e.status for e in entries] == ["reversed", "posted", "posted"]
        live = [e for e in entries if e.status == "posted" and e.reversal_of_id is None]
        assert len(live) == 1
        assert live[0].total_debit == Decimal("200.00")
        assert await balance_of(session_factory, "6500") == Decimal("200.00")

        expense = await fetch(session_factory, Expense, expense.id)
        assert expense.journal_entry_id == live[0].id


class TestReversalErrors:

    async def test_310_nothing_posted_is_not_found(self, db):
        event = FinancialEvent(
            kind=EventKind.EXPENSE,
            source_id=uuid.uuid4(),
            amount=Decimal("10.00"),
            entry_date=TODAY,
        )
        with pytest.raises(SourceDocumentNotFoundError):
            await JournalPoster(db).reverse(event)

    async def test_311_second_reversal_is_not_found(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        async with session_factory() as s:
            loaded = await fetch(session_factory, Expense, expense.id)
            poster = JournalPoster(s)
            await poster.reverse(expense_event(loaded))
            with pytest.raises(SourceDocumentNotFoundError):
                await poster.reverse(expense_event(loaded))

    async def test_312_reverse_entry_rejects_document_postings(self, session_factory, seeded):
        expense = await create_expense(session_factory)
        async with session_factory() as s:
            with pytest.raises(LedgerInconsistencyError, match="EXPENSE"):
                await JournalPoster(s).reverse_entry(expense.journal_entry_id)

    async def test_313_reverse_entry_unknown_id(self, db):
        with pytest.raises(SourceDocumentNotFoundError):
            await JournalPoster(db).reverse_entry(uuid.uuid4())

    async def test_314_manual_entry_reverses_once(self, db):
        from finledger.services.chart import AccountResolver

        resolver = AccountResolver(db)
        cash = await resolver.cash_account()
        equity = await resolver.by_code("3000")
        poster = JournalPoster(db)
        entry = await poster.post_manual(
            [ManualLine(cash.id, debit=Decimal("250")), ManualLine(equity.id, credit=Decimal("250"))],
            entry_date=TODAY,
        )
        reversal = await poster.reverse_entry(entry.id)
        assert entry.status == "reversed"
        assert cash.current_balance == Decimal("0.00")
        assert equity.current_balance == Decimal("0.00")

        with pytest.raises(LedgerInconsistencyError):
            await poster.reverse_entry(entry.id)
        with pytest.raises(LedgerInconsistencyError):
            await poster.reverse_entry(reversal.id)


class TestLegacySettlementMatching:
    """Rows without journal_entry_id are located by source, reference, then description."""

    async def _unlink(self, session_factory, **values):
        async with session_factory() as s:
            await s.execute(update(CashTransaction).values(journal_entry_id=None, **values))
            await s.commit()

    async def test_315_matched_by_source_document(self, session_factory, main_cash):
        expense = await create_expense(session_factory)
        await self._unlink(session_factory)

        await delete_expense(session_factory, expense.id)
        assert await fetch_all(session_factory, select(CashTransaction)) == []
        box = await fetch(session_factory, CashAccount, main_cash.id)
        assert box.current_balance == Decimal("0.00")

    async def test_316_matched_by_reference_and_amount(self, session_factory, main_cash):
        expense = await create_expense(session_factory)
        await self._unlink(session_factory, source_type=None, source_id=None)

        await delete_expense(session_factory, expense.id)
        assert await fetch_all(session_factory, select(CashTransaction)) == []

    async def test_317_matched_by_amount_date_and_description(self, session_factory, main_cash):
        expense = await create_expense(session_factory)
        await self._unlink(session_factory, source_type=None, source_id=None, reference_number=None)

        await delete_expense(session_factory, expense.id)
        assert await fetch_all(session_factory, select(CashTransaction)) == []
        box = await fetch(session_factory, CashAccount, main_cash.id)
        assert box.current_balance == Decimal("0.00")

    async def test_318_ambiguous_match_rolls_back_everything(self, session_factory, main_cash):
        expense = await create_expense(session_factory)
        await self._unlink(session_factory)
        async with session_factory() as s:
            s.add(CashTransaction(
                cash_account_id=main_cash.id,
                transaction_date=TODAY,
                transaction_type="DEBIT",
                amount=Decimal("120.00"),
                source_type="expense",
                source_id=expense.id,
            ))
            await s.commit()

        with pytest.raises(AmbiguousMatchError):
            await delete_expense(session_factory, expense.id)

        assert await fetch(session_factory, Expense, expense.id) is not None
        entries = await entries_for(session_factory, expense.id)
        assert [e.status for e in entries] == ["posted"]
        assert await balance_of(session_factory, "6500") == Decimal("120.00")
        assert len(await fetch_all(session_factory, select(CashTransaction))) == 2

    async def test_319_description_wildcards_match_literally(self, session_factory, main_cash):
        expense = await create_expense(session_factory, description="Q1_rent 100%")
        await self._unlink(session_factory, source_type=None, source_id=None, reference_number=None)
        async with session_factory() as s:
            s.add(CashTransaction(
                cash_account_id=main_cash.id,
                transaction_date=TODAY,
                transaction_type="DEBIT",
                amount=Decimal("120.00"),
                description="Q1-rent 100 percent",
            ))
            await s.commit()

        await delete_expense(session_factory, expense.id)
        remaining = await fetch_all(session_factory, select(CashTransaction))
        assert [tx.description for tx in remaining] == ["Q1-rent 100 percent"]
