"""
Journal posting — posting rules, entry validation, duplicate protection and
settlement rows (bank / cash transactions, vendor payment history).
Tests 201-237.
"""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from finledger.models import (
    Account,
    BankAccount,
    BankTransaction,
    CashAccount,
    CashTransaction,
    JournalEntry,
    VendorPaymentHistory,
)
from finledger.services.errors import (
    AccountResolutionError,
    DuplicatePostingError,
    PostingValidationError,
    SourceDocumentNotFoundError,
)
from finledger.services.posting import EventKind, FinancialEvent, JournalPoster, ManualLine
from finledger.services.reconciliation import verify_entry_balanced

from conftest import TODAY


def make_event(kind: EventKind, amount="100.00", **kw) -> FinancialEvent:
    defaults = dict(
        kind=kind,
        source_id=uuid.uuid4(),
        amount=Decimal(amount),
        entry_date=TODAY,
        description=f"{kind.value} test",
    )
    defaults.update(kw)
    return FinancialEvent(**defaults)


async def balance(db, code: str) -> Decimal:
    account = (await db.execute(select(Account).where(Account.account_code == code))).scalar_one()
    return account.current_balance


def legs(entry):
    return [(l.account.account_code, l.debit_amount, l.credit_amount) for l in entry.lines]


class TestPostingRules:
    """One test per event kind: which accounts are debited and credited."""

    async def test_201_expense_debits_expense_credits_cash(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.EXPENSE, "150.00", category="Technology"))
        assert legs(entry) == [
            ("6500", Decimal("150.00"), Decimal("0.00")),
            ("1010", Decimal("0.00"), Decimal("150.00")),
        ]
        assert await balance(db, "6500") == Decimal("150.00")
        assert await balance(db, "1010") == Decimal("-150.00")

    async def test_202_vendor_bill_debits_expense_credits_payable(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.VENDOR_BILL, "900.00", category="Raw Materials"))
        assert legs(entry) == [
            ("5100", Decimal("900.00"), Decimal("0.00")),
            ("2010", Decimal("0.00"), Decimal("900.00")),
        ]
        assert await balance(db, "2010") == Decimal("900.00")

    async def test_203_purchase_return_debits_payable_credits_expense(self, db):
        poster = JournalPoster(db)
        await poster.post(make_event(EventKind.VENDOR_BILL, "900.00", category="Raw Materials"))
        entry = await poster.post(make_event(EventKind.PURCHASE_RETURN, "200.00", category="Raw Materials"))
        assert legs(entry) == [
            ("2010", Decimal("200.00"), Decimal("0.00")),
            ("5100", Decimal("0.00"), Decimal("200.00")),
        ]
        assert await balance(db, "2010") == Decimal("700.00")
        assert await balance(db, "5100") == Decimal("700.00")

    async def test_204_vendor_payment_debits_payable_credits_cash(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.VENDOR_PAYMENT, "300.00"))
        assert legs(entry) == [
            ("2010", Decimal("300.00"), Decimal("0.00")),
            ("1010", Decimal("0.00"), Decimal("300.00")),
        ]

    async def test_205_invoice_debits_receivable_credits_sales(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.INVOICE, "1200.00"))
        assert legs(entry) == [
            ("1200", Decimal("1200.00"), Decimal("0.00")),
            ("4000", Decimal("0.00"), Decimal("1200.00")),
        ]
        assert await balance(db, "4000") == Decimal("1200.00")

    async def test_206_payment_debits_cash_credits_receivable(self, db):
        poster = JournalPoster(db)
        await poster.post(make_event(EventKind.INVOICE, "1200.00"))
        entry = await poster.post(make_event(EventKind.PAYMENT, "500.00", payment_method="upi"))
        assert legs(entry) == [
            ("1025", Decimal("500.00"), Decimal("0.00")),
            ("1200", Decimal("0.00"), Decimal("500.00")),
        ]
        assert await balance(db, "1200") == Decimal("700.00")

    async def test_207_refund_debits_sales_returns_credits_cash(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.REFUND, "80.00"))
        assert legs(entry) == [
            ("4900", Decimal("80.00"), Decimal("0.00")),
            ("1010", Decimal("0.00"), Decimal("80.00")),
        ]
        assert await balance(db, "4900") == Decimal("80.00")

    async def test_208_manual_kind_has_no_posting_rule(self, db):
        with pytest.raises(PostingValidationError, match="No posting rule"):
            await JournalPoster(db).post(make_event(EventKind.MANUAL))


class TestEntryShape:

    async def test_209_entry_is_balanced(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.EXPENSE, "99.99"))
        assert verify_entry_balanced(entry)
        assert entry.total_debit == entry.total_credit == Decimal("99.99")

    async def test_210_journal_number_carries_kind_prefix(self, db):
        poster = JournalPoster(db)
        exp = await poster.post(make_event(EventKind.EXPENSE))
        inv = await poster.post(make_event(EventKind.INVOICE))
        vpay = await poster.post(make_event(EventKind.VENDOR_PAYMENT))
        assert exp.journal_number == f"JE-EXP-{exp.entry_number:06d}"
        assert inv.journal_number.startswith("JE-INV-")
        assert vpay.journal_number.startswith("JE-VPAY-")

    async def test_211_entry_numbers_are_sequential(self, db):
        poster = JournalPoster(db)
        numbers = [(await poster.post(make_event(EventKind.EXPENSE))).entry_number for _ in range(3)]
        assert numbers == [numbers[0], numbers[0] + 1, numbers[0] + 2]

    async def test_212_entry_links_source_document(self, db):
        event = make_event(EventKind.EXPENSE)
        entry = await JournalPoster(db).post(event)
        assert entry.source_document_type == "EXPENSE"
        assert entry.source_document_id == event.source_id
        assert entry.status == "posted"
        assert entry.reversal_of_id is None

    async def test_213_lines_are_numbered_in_order(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.INVOICE))
        assert [l.line_number for l in entry.lines] == [1, 2]

    async def test_214_amount_is_rounded_to_cents(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.EXPENSE, "10.005"))
        assert entry.total_debit == Decimal("10.01")


class TestPostingValidation:

    async def test_215_zero_amount_rejected(self, db):
        with pytest.raises(PostingValidationError, match="positive"):
            await JournalPoster(db).post(make_event(EventKind.EXPENSE, "0"))

    async def test_216_negative_amount_rejected(self, db):
        with pytest.raises(PostingValidationError):
            await JournalPoster(db).post(make_event(EventKind.EXPENSE, "-5.00"))

    async def test_217_rejected_posting_leaves_no_entry(self, db):
        with pytest.raises(PostingValidationError):
            await JournalPoster(db).post(make_event(EventKind.EXPENSE, "0"))
        entries = (await db.execute(select(JournalEntry))).scalars().all()
        assert entries == []

    async def test_218_same_source_posted_twice_rejected(self, db):
        poster = JournalPoster(db)
        event = make_event(EventKind.EXPENSE)
        await poster.post(event)
        with pytest.raises(DuplicatePostingError):
            await poster.post(event)
        assert await balance(db, "1010") == Decimal("-100.00")

    async def test_219_same_id_different_kind_is_not_a_duplicate(self, db):
        poster = JournalPoster(db)
        source_id = uuid.uuid4()
        await poster.post(make_event(EventKind.INVOICE, source_id=source_id))
        await poster.post(make_event(EventKind.PAYMENT, source_id=source_id))

    async def test_220_missing_system_account_rejected(self, db):
        from sqlalchemy import delete

        await db.execute(delete(Account).where(Account.account_code == "4000"))
        with pytest.raises(AccountResolutionError, match="Sales Revenue"):
            await JournalPoster(db).post(make_event(EventKind.INVOICE))

    async def test_221_unknown_bank_account_rejected(self, db):
        event = make_event(EventKind.EXPENSE, payment_method="bank_transfer", bank_account_id=uuid.uuid4())
        with pytest.raises(SourceDocumentNotFoundError):
            await JournalPoster(db).post(event)


class TestManualEntries:

    async def _accounts(self, db, *codes):
        rows = (await db.execute(select(Account).where(Account.account_code.in_(codes)))).scalars().all()
        by_code = {a.account_code: a for a in rows}
        return [by_code[c] for c in codes]

    async def test_222_balanced_manual_entry_posts(self, db):
        cash, equity = await self._accounts(db, "1010", "3000")
        entry = await JournalPoster(db).post_manual(
            [
                ManualLine(cash.id, debit=Decimal("5000")),
                ManualLine(equity.id, credit=Decimal("5000")),
            ],
            entry_date=TODAY,
            memo="Owner contribution",
        )
        assert entry.source_document_type == "MANUAL"
        assert entry.journal_number.startswith("JE-MAN-")
        assert cash.current_balance == Decimal("5000.00")
        assert equity.current_balance == Decimal("5000.00")

    async def test_223_three_line_entry_posts(self, db):
        cash, bank, equity = await self._accounts(db, "1010", "1020", "3000")
        entry = await JournalPoster(db).post_manual(
            [
                ManualLine(cash.id, debit=Decimal("100")),
                ManualLine(bank.id, debit=Decimal("400")),
                ManualLine(equity.id, credit=Decimal("500")),
            ],
            entry_date=TODAY,
        )
        assert len(entry.lines) == 3

    async def test_224_unbalanced_entry_rejected(self, db):
        cash, equity = await self._accounts(db, "1010", "3000")
        with pytest.raises(PostingValidationError, match="must equal"):
            await JournalPoster(db).post_manual(
                [ManualLine(cash.id, debit=Decimal("100")), ManualLine(equity.id, credit=Decimal("90"))],
                entry_date=TODAY,
            )
        assert cash.current_balance == Decimal("0.00")

    async def test_225_single_line_rejected(self, db):
        (cash,) = await self._accounts(db, "1010")
        with pytest.raises(PostingValidationError, match="at least 2 lines"):
            await JournalPoster(db).post_manual([ManualLine(cash.id, debit=Decimal("1"))], entry_date=TODAY)

    async def test_226_line_with_both_sides_rejected(self, db):
        cash, equity = await self._accounts(db, "1010", "3000")
        with pytest.raises(PostingValidationError, match="exactly one"):
            await JournalPoster(db).post_manual(
                [
                    ManualLine(cash.id, debit=Decimal("50"), credit=Decimal("50")),
                    ManualLine(equity.id, debit=Decimal("10"), credit=Decimal("10")),
                ],
                entry_date=TODAY,
            )

    async def test_227_unknown_account_rejected(self, db):
        (cash,) = await self._accounts(db, "1010")
        with pytest.raises(AccountResolutionError):
            await JournalPoster(db).post_manual(
                [ManualLine(cash.id, debit=Decimal("5")), ManualLine(uuid.uuid4(), credit=Decimal("5"))],
                entry_date=TODAY,
            )


class TestSettlementRows:

    async def test_228_cash_outflow_writes_cash_transaction(self, db, main_cash):
        event = make_event(EventKind.EXPENSE, "75.00", reference="R-228")
        entry = await JournalPoster(db).post(event)

        rows = (await db.execute(select(CashTransaction))).scalars().all()
        assert len(rows) == 1
        tx = rows[0]
        assert tx.cash_account_id == main_cash.id
        assert tx.transaction_type == "DEBIT"
        assert tx.amount == Decimal("75.00")
        assert tx.source_type == "expense"
        assert tx.source_id == event.source_id
        assert tx.journal_entry_id == entry.id

        box = (await db.execute(select(CashAccount).where(CashAccount.id == main_cash.id))).scalar_one()
        assert box.current_balance == Decimal("-75.00")

    async def test_229_bank_inflow_writes_deposit_and_moves_bank_balance(self, db, bank_account):
        event = make_event(
            EventKind.PAYMENT, "2500.00",
            payment_method="bank_transfer",
            bank_account_id=bank_account.id,
        )
        entry = await JournalPoster(db).post(event)
        assert legs(entry)[0][0] == "1020-4321"

        tx = (await db.execute(select(BankTransaction))).scalar_one()
        assert tx.type == "deposit"
        assert tx.journal_entry_id == entry.id
        assert tx.source_type == "payment"

        bank = (await db.execute(select(BankAccount).where(BankAccount.id == bank_account.id))).scalar_one()
        assert bank.current_balance == Decimal("12500.00")
        assert (await db.execute(select(CashTransaction))).scalars().all() == []

    async def test_230_bank_outflow_writes_withdrawal(self, db, bank_account):
        event = make_event(
            EventKind.EXPENSE, "400.00",
            payment_method="cheque",
            bank_account_id=bank_account.id,
        )
        await JournalPoster(db).post(event)
        tx = (await db.execute(select(BankTransaction))).scalar_one()
        assert tx.type == "withdrawal"
        assert tx.signed_amount == Decimal("-400.00")
        bank = (await db.execute(select(BankAccount).where(BankAccount.id == bank_account.id))).scalar_one()
        assert bank.current_balance == Decimal("9600.00")

    async def test_231_explicit_cash_box_is_used(self, db, session_factory):
        async with session_factory() as s:
            petty = CashAccount(name="Petty Cash")
            s.add(petty)
            await s.commit()
        event = make_event(EventKind.REFUND, "20.00", cash_account_id=petty.id)
        await JournalPoster(db).post(event)
        tx = (await db.execute(select(CashTransaction))).scalar_one()
        assert tx.cash_account_id == petty.id
        assert tx.transaction_type == "DEBIT"

    async def test_232_cash_inflow_is_credit_row(self, db):
        await JournalPoster(db).post(make_event(EventKind.PAYMENT, "60.00"))
        tx = (await db.execute(select(CashTransaction))).scalar_one()
        assert tx.transaction_type == "CREDIT"
        assert tx.signed_amount == Decimal("60.00")

    async def test_233_non_cash_events_write_no_settlement(self, db):
        poster = JournalPoster(db)
        await poster.post(make_event(EventKind.INVOICE))
        await poster.post(make_event(EventKind.VENDOR_BILL))
        await poster.post(make_event(EventKind.PURCHASE_RETURN))
        assert (await db.execute(select(CashTransaction))).scalars().all() == []
        assert (await db.execute(select(BankTransaction))).scalars().all() == []

    async def test_234_bank_method_without_bank_account_uses_chart_fallback(self, db):
        entry = await JournalPoster(db).post(make_event(EventKind.EXPENSE, payment_method="bank_transfer"))
        assert legs(entry)[1][0] == "1020"
        assert (await db.execute(select(BankTransaction))).scalars().all() == []
        assert (await db.execute(select(CashTransaction))).scalars().all() == []

    async def test_235_vendor_payment_writes_history(self, db, vendor):
        bill_id = uuid.uuid4()
        event = make_event(
            EventKind.VENDOR_PAYMENT, "300.00",
            vendor_id=vendor.id,
            vendor_bill_id=bill_id,
            reference="CHQ-235",
        )
        entry = await JournalPoster(db).post(event)
        history = (await db.execute(select(VendorPaymentHistory))).scalar_one()
        assert history.vendor_id == vendor.id
        assert history.vendor_bill_id == bill_id
        assert history.vendor_payment_id == event.source_id
        assert history.amount == Decimal("300.00")
        assert history.journal_entry_id == entry.id


class TestEntryNumbering:

    def test_236_entry_number_backed_by_sequence(self):
        default = JournalEntry.__table__.c.entry_number.default
        assert default.is_sequence
        assert default.name == "journal_entries_entry_number_seq"

    async def test_237_numbers_drawn_from_sequence_when_supported(self, db, monkeypatch):
        from types import SimpleNamespace

        from sqlalchemy.dialects import postgresql

        issued = []

        async def scalar(stmt):
            issued.append(str(stmt.compile(dialect=postgresql.dialect())))
            return 42

        monkeypatch.setattr(
            db, "get_bind",
            lambda *a, **kw: SimpleNamespace(dialect=SimpleNamespace(supports_sequences=True)),
        )
        monkeypatch.setattr(db, "scalar", scalar)

        assert await JournalPoster(db)._next_entry_number() == 42
        assert "nextval('journal_entries_entry_number_seq')" in issued[0]
