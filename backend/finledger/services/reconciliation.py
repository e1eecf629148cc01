"""Balance reconciliation: recompute stored balances from the ledger and report drift.

Every account's ``current_balance`` should equal its ``opening_balance`` plus
the signed legs of every journal line posted to it. Reversal entries are
ledger lines like any other, so a posting and its reversal cancel out.
Bank and cash boxes are checked the same way against their transaction rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.models.banking import BankAccount, BankTransaction, CashAccount, CashTransaction
from finledger.models.gl import Account, JournalEntry, JournalLine
from finledger.services.chart import signed_delta
from finledger.services.posting import ZERO, money

logger = logging.getLogger(__name__)


@dataclass
class BalanceDrift:
    kind: str  # account | bank_account | cash_account
    id: Any
    label: str
    recorded: Decimal
    expected: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded - self.expected

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": str(self.id),
            "label": self.label,
            "recorded": float(self.recorded),
            "expected": float(self.expected),
            "difference": float(self.difference),
        }


def verify_entry_balanced(entry: JournalEntry) -> bool:
    """True when the entry's debits equal its credits."""
    return money(entry.total_debit) == money(entry.total_credit)


async def _account_expected(db: AsyncSession) -> list[tuple[Account, Decimal]]:
    sums = await db.execute(
        select(
            JournalLine.account_id,
            func.coalesce(func.sum(JournalLine.debit_amount), 0),
            func.coalesce(func.sum(JournalLine.credit_amount), 0),
        ).group_by(JournalLine.account_id)
    )
    totals = {row[0]: (money(row[1]), money(row[2])) for row in sums.all()}

    accounts = (await db.execute(select(Account).order_by(Account.account_code))).scalars().all()
    out = []
    for account in accounts:
        debit, credit = totals.get(account.id, (ZERO, ZERO))
        expected = money(account.opening_balance) + signed_delta(account, debit, credit)
        out.append((account, expected))
    return out


async def _box_expected(
    db: AsyncSession, box_model, fk_column, direction_column, amount_column, inflow: str,
) -> list[tuple[Any, Decimal]]:
    sums = await db.execute(
        select(
            fk_column,
            direction_column,
            func.coalesce(func.sum(amount_column), 0),
        ).group_by(fk_column, direction_column)
    )
    net: dict[Any, Decimal] = {}
    for box_id, direction, total in sums.all():
        signed = money(total) if direction == inflow else -money(total)
        net[box_id] = net.get(box_id, ZERO) + signed

    boxes = (await db.execute(select(box_model).order_by(box_model.created_at))).scalars().all()
    return [(box, money(box.opening_balance) + net.get(box.id, ZERO)) for box in boxes]


async def _expected_balances(db: AsyncSession) -> list[tuple[str, Any, Decimal]]:
    rows: list[tuple[str, Any, Decimal]] = []
    for account, expected in await _account_expected(db):
        rows.append(("account", account, expected))
    for box, expected in await _box_expected(
        db, BankAccount, BankTransaction.bank_account_id,
        BankTransaction.type, BankTransaction.amount, "deposit",
    ):
        rows.append(("bank_account", box, expected))
    for box, expected in await _box_expected(
        db, CashAccount, CashTransaction.cash_account_id,
        CashTransaction.transaction_type, CashTransaction.amount, "CREDIT",
    ):
        rows.append(("cash_account", box, expected))
    return rows


def _label(kind: str, obj: Any) -> str:
    if kind == "account":
        return f"{obj.account_code} {obj.account_name}"
    return obj.name


async def check_balances(db: AsyncSession) -> list[BalanceDrift]:
    """Return every account, bank account and cash box whose stored balance has drifted."""
    drifts = []
    for kind, obj, expected in await _expected_balances(db):
        recorded = money(obj.current_balance)
        if recorded != expected:
            drifts.append(BalanceDrift(kind, obj.id, _label(kind, obj), recorded, expected))
    return drifts


async def unbalanced_entries(db: AsyncSession) -> list[str]:
    """Journal numbers of entries whose lines do not balance."""
    entries = (await db.execute(select(JournalEntry).order_by(JournalEntry.entry_number))).scalars().all()
    return [e.journal_number for e in entries if not verify_entry_balanced(e)]


async def fix_balances(db: AsyncSession, user: dict[str, Any] | None = None) -> list[BalanceDrift]:
    """Reset drifted balances to their ledger-derived values and commit."""
    from finledger.middleware.auth import write_audit_log

    try:
        fixed = []
        for kind, obj, expected in await _expected_balances(db):
            recorded = money(obj.current_balance)
            if recorded == expected:
                continue
            fixed.append(BalanceDrift(kind, obj.id, _label(kind, obj), recorded, expected))
            obj.current_balance = expected
            logger.warning(f"Fixed {kind} {_label(kind, obj)}: {recorded} -> {expected}")

        await write_audit_log(
            db,
            user,
            action="reconciliation.fix",
            resource_type="ledger",
            details={"fixed": [d.as_dict() for d in fixed]},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return fixed


async def run_scheduled_check() -> None:
    """APScheduler job: log any drift found in the live database."""
    from finledger.database import AsyncSessionLocal

    try:
        async with AsyncSessionLocal() as db:
            drifts = await check_balances(db)
            broken = await unbalanced_entries(db)
    except Exception as exc:
        logger.error(f"Reconciliation check failed: {exc}")
        return

    for drift in drifts:
        logger.warning(
            f"Balance drift on {drift.kind} {drift.label}: "
            f"recorded {drift.recorded}, expected {drift.expected}"
        )
    for journal_number in broken:
        logger.error(f"Unbalanced journal entry {journal_number}")
    if not drifts and not broken:
        logger.info("Reconciliation check passed: all balances agree with the ledger")
