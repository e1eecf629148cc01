"""Financial reports — P&L, Balance Sheet, account ledger, aging and balance reconciliation."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.database import get_db
from finledger.middleware.auth import require_permission

router = APIRouter(prefix="/api/reports", tags=["reports"])

ZERO = Decimal("0")


def _sums_stmt(date_from: date | None = None, date_to: date | None = None):
    """Debit/credit totals per account over every applied entry in the range.

    A reversed entry and its reversal are both included and cancel out.
    """
    from finledger.models.gl import Account, JournalEntry, JournalLine

    stmt = (
        select(
            Account.id,
            Account.account_code,
            Account.account_name,
            Account.account_type,
            Account.normal_balance,
            Account.opening_balance,
            func.coalesce(func.sum(JournalLine.debit_amount), 0).label("total_debits"),
            func.coalesce(func.sum(JournalLine.credit_amount), 0).label("total_credits"),
        )
        .join(JournalLine, JournalLine.account_id == Account.id)
        .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
    )
    if date_from:
        stmt = stmt.where(JournalEntry.entry_date >= date_from)
    if date_to:
        stmt = stmt.where(JournalEntry.entry_date <= date_to)
    return stmt.group_by(
        Account.id,
        Account.account_code,
        Account.account_name,
        Account.account_type,
        Account.normal_balance,
        Account.opening_balance,
    ).order_by(Account.account_code)


# ---------------------------------------------------------------------------
# Profit & Loss
# ---------------------------------------------------------------------------

@router.get("/profit-and-loss")
async def profit_and_loss(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reports.financial.view")),
):
    """Revenue less expenses over the period. Contra-revenue (sales returns) nets against revenue."""
    rows = (await db.execute(_sums_stmt(date_from, date_to))).all()

    revenue_items = []
    expense_items = []
    total_revenue = ZERO
    total_expenses = ZERO

    for row in rows:
        debits = Decimal(str(row.total_debits))
        credits = Decimal(str(row.total_credits))
        if row.account_type == "revenue":
            amount = credits - debits
            revenue_items.append({
                "account_code": row.account_code,
                "account_name": row.account_name,
                "amount": float(amount),
            })
            total_revenue += amount
        elif row.account_type == "expense":
            amount = debits - credits
            expense_items.append({
                "account_code": row.account_code,
                "account_name": row.account_name,
                "amount": float(amount),
            })
            total_expenses += amount

    return {
        "title": "Profit and Loss",
        "date_from": str(date_from) if date_from else None,
        "date_to": str(date_to) if date_to else None,
        "revenue": {"items": revenue_items, "total": float(total_revenue)},
        "expenses": {"items": expense_items, "total": float(total_expenses)},
        "net_income": float(total_revenue - total_expenses),
    }


# ---------------------------------------------------------------------------
# Balance Sheet
# ---------------------------------------------------------------------------

@router.get("/balance-sheet")
async def balance_sheet(
    as_of: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reports.financial.view")),
):
    """Balances of asset, liability and equity accounts as of a date.

    Opening balances plus all entries up to ``as_of``. Net income to date is
    shown as current earnings under equity.
    """
    from finledger.models.gl import Account

    rows = {row.id: row for row in (await db.execute(_sums_stmt(date_to=as_of))).all()}
    accounts = (await db.execute(select(Account).order_by(Account.account_code))).scalars().all()

    sections: dict[str, list[dict]] = {"asset": [], "liability": [], "equity": []}
    totals = {"asset": ZERO, "liability": ZERO, "equity": ZERO}
    current_earnings = ZERO

    for account in accounts:
        row = rows.get(account.id)
        debits = Decimal(str(row.total_debits)) if row else ZERO
        credits = Decimal(str(row.total_credits)) if row else ZERO

        if account.account_type in ("revenue", "expense"):
            current_earnings += credits - debits
            continue

        if account.account_type == "asset":
            balance = account.opening_balance + debits - credits
        else:
            balance = account.opening_balance + credits - debits
        if balance == 0 and row is None:
            continue
        sections[account.account_type].append({
            "account_code": account.account_code,
            "account_name": account.account_name,
            "balance": float(balance),
        })
        totals[account.account_type] += balance

    total_equity = totals["equity"] + current_earnings
    return {
        "title": "Balance Sheet",
        "as_of": str(as_of) if as_of else None,
        "assets": {"items": sections["asset"], "total": float(totals["asset"])},
        "liabilities": {"items": sections["liability"], "total": float(totals["liability"])},
        "equity": {
            "items": sections["equity"],
            "current_earnings": float(current_earnings),
            "total": float(total_equity),
        },
        "total_liabilities_and_equity": float(totals["liability"] + total_equity),
        "balanced": totals["asset"] == totals["liability"] + total_equity,
    }


# ---------------------------------------------------------------------------
# Account ledger
# ---------------------------------------------------------------------------

@router.get("/account-ledger/{account_id}")
async def account_ledger(
    account_id: uuid.UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reports.financial.view")),
):
    """Every line posted to one account with a running balance in its natural sign."""
    from finledger.models.gl import Account, JournalEntry, JournalLine
    from finledger.services.chart import signed_delta

    account = (await db.execute(select(Account).where(Account.id == account_id))).scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    stmt = (
        select(JournalLine, JournalEntry)
        .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
        .where(JournalLine.account_id == account_id)
        .order_by(JournalEntry.entry_date, JournalEntry.entry_number, JournalLine.line_number)
    )
    if date_to:
        stmt = stmt.where(JournalEntry.entry_date <= date_to)
    rows = (await db.execute(stmt)).all()

    running = account.opening_balance
    opening = running
    items = []
    for line, je in rows:
        running += signed_delta(account, line.debit_amount, line.credit_amount)
        if date_from and je.entry_date < date_from:
            opening = running
            continue
        items.append({
            "journal_entry_id": str(je.id),
            "journal_number": je.journal_number,
            "entry_date": str(je.entry_date),
            "source_document_type": je.source_document_type,
            "status": je.status,
            "memo": line.memo,
            "debit_amount": float(line.debit_amount),
            "credit_amount": float(line.credit_amount),
            "running_balance": float(running),
        })

    return {
        "account": {
            "id": str(account.id),
            "account_code": account.account_code,
            "account_name": account.account_name,
            "normal_balance": account.normal_balance,
            "current_balance": float(account.current_balance),
        },
        "opening_balance": float(opening),
        "closing_balance": float(running),
        "items": items,
        "total": len(items),
    }


# ---------------------------------------------------------------------------
# Aging
# ---------------------------------------------------------------------------

AGING_BUCKETS = ("current", "days_1_30", "days_31_60", "days_61_90", "days_90_plus")


def _aging_bucket(days: int) -> str:
    if days <= 0:
        return "current"
    if days <= 30:
        return "days_1_30"
    if days <= 60:
        return "days_31_60"
    if days <= 90:
        return "days_61_90"
    return "days_90_plus"


def _age(documents, as_of: date) -> dict:
    """Bucket ``(party_key, party_name, doc_date, outstanding)`` rows by days since the document date."""
    summary = {bucket: ZERO for bucket in AGING_BUCKETS}
    parties: dict = {}
    for key, name, doc_date, outstanding in documents:
        if outstanding <= 0:
            continue
        days = (as_of - doc_date).days
        bucket = _aging_bucket(days)
        party = parties.setdefault(key, {
            "party_id": str(key) if isinstance(key, uuid.UUID) else None,
            "name": name,
            **{b: ZERO for b in AGING_BUCKETS},
            "total_due": ZERO,
            "documents": 0,
            "oldest_date": doc_date,
        })
        party[bucket] += outstanding
        party["total_due"] += outstanding
        party["documents"] += 1
        party["oldest_date"] = min(party["oldest_date"], doc_date)
        summary[bucket] += outstanding

    accounts = []
    for party in sorted(parties.values(), key=lambda p: (-p["total_due"], p["name"])):
        oldest = party.pop("oldest_date")
        accounts.append({
            **{k: float(v) if isinstance(v, Decimal) else v for k, v in party.items()},
            "oldest_date": str(oldest),
            "oldest_days": (as_of - oldest).days,
        })
    return {
        "summary": {
            **{b: float(summary[b]) for b in AGING_BUCKETS},
            "total": float(sum(summary.values(), ZERO)),
        },
        "accounts": accounts,
    }


async def _receivables_aging(db: AsyncSession, as_of: date) -> dict:
    from finledger.models.finance import Invoice

    invoices = (await db.execute(
        select(Invoice)
        .where(Invoice.status != "cancelled", Invoice.invoice_date <= as_of)
        .order_by(Invoice.invoice_date)
    )).scalars().all()
    return _age(
        [(i.customer_name, i.customer_name, i.invoice_date, i.outstanding) for i in invoices],
        as_of,
    )


async def _payables_aging(db: AsyncSession, as_of: date) -> dict:
    from finledger.models.vendor import VendorBill

    bills = (await db.execute(
        select(VendorBill)
        .where(VendorBill.status != "cancelled", VendorBill.bill_date <= as_of)
        .order_by(VendorBill.bill_date)
    )).scalars().all()
    return _age(
        [(b.vendor_id, b.vendor.name, b.bill_date, b.outstanding) for b in bills],
        as_of,
    )


@router.get("/aging")
async def aging_report(
    as_of: date | None = Query(None),
    report_type: str | None = Query(None, alias="type", pattern="^(receivables|payables)$"),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reports.financial.view")),
):
    """Receivables and payables aged by days since the invoice or bill date.

    Only documents dated on or before ``as_of`` (default today) with an
    outstanding balance are included. ``type`` narrows the report to one side.
    """
    as_of = as_of or date.today()
    if report_type == "receivables":
        return {"as_of": str(as_of), "type": report_type, **await _receivables_aging(db, as_of)}
    if report_type == "payables":
        return {"as_of": str(as_of), "type": report_type, **await _payables_aging(db, as_of)}
    return {
        "as_of": str(as_of),
        "receivables": await _receivables_aging(db, as_of),
        "payables": await _payables_aging(db, as_of),
    }


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@router.get("/reconciliation")
async def reconciliation_check(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reports.reconciliation.view")),
):
    """Compare stored balances with the values the ledger implies."""
    from finledger.services.reconciliation import check_balances, unbalanced_entries

    drifts = await check_balances(db)
    broken = await unbalanced_entries(db)
    return {
        "consistent": not drifts and not broken,
        "drifts": [d.as_dict() for d in drifts],
        "unbalanced_entries": broken,
    }


@router.post("/reconciliation/fix")
async def reconciliation_fix(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.reconciliation.fix")),
):
    """Reset drifted balances to their ledger-derived values."""
    from finledger.services.reconciliation import fix_balances

    fixed = await fix_balances(db, user)
    return {"fixed": [d.as_dict() for d in fixed], "total_fixed": len(fixed)}
