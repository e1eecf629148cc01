"""Banking routes — bank accounts, cash boxes and their transaction ledgers."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.database import get_db
from finledger.middleware.auth import require_permission, write_audit_log

router = APIRouter(prefix="/api/banking", tags=["banking"])


class BankAccountCreate(BaseModel):
    name: str
    bank_name: str | None = None
    account_number: str | None = None
    opening_balance: float = 0.0


class CashAccountCreate(BaseModel):
    name: str
    opening_balance: float = 0.0


def _bank_dict(b) -> dict:
    return {
        "id": str(b.id),
        "name": b.name,
        "bank_name": b.bank_name,
        "account_number": b.account_number,
        "opening_balance": float(b.opening_balance),
        "current_balance": float(b.current_balance),
        "chart_account_id": str(b.chart_account_id) if b.chart_account_id else None,
        "chart_account_code": b.chart_account.account_code if b.chart_account else None,
        "is_active": b.is_active,
    }


def _cash_dict(c) -> dict:
    return {
        "id": str(c.id),
        "name": c.name,
        "opening_balance": float(c.opening_balance),
        "current_balance": float(c.current_balance),
        "is_active": c.is_active,
    }


def _ledger(opening: Decimal, rows) -> list[dict]:
    running = opening
    out = []
    for tx in rows:
        running += tx.signed_amount
        out.append({
            "id": str(tx.id),
            "transaction_date": str(tx.transaction_date),
            "amount": float(tx.amount),
            "signed_amount": float(tx.signed_amount),
            "description": tx.description,
            "reference_number": tx.reference_number,
            "source_type": tx.source_type,
            "source_id": str(tx.source_id) if tx.source_id else None,
            "journal_entry_id": str(tx.journal_entry_id) if tx.journal_entry_id else None,
            "running_balance": float(running),
        })
    return out


async def _post_opening_balance(
    db: AsyncSession, user: dict, account, opening: Decimal, name: str, box_id: uuid.UUID,
):
    """Bring a new box's opening funds into the ledger against equity."""
    from finledger.services.chart import AccountResolver
    from finledger.services.posting import JournalPoster, ManualLine

    if opening == 0:
        return None
    equity = await AccountResolver(db).equity_account()
    amount = abs(opening)
    if opening > 0:
        lines = [ManualLine(account.id, debit=amount), ManualLine(equity.id, credit=amount)]
    else:
        lines = [ManualLine(account.id, credit=amount), ManualLine(equity.id, debit=amount)]
    return await JournalPoster(db, user_id=user["user_id"]).post_manual(
        lines,
        entry_date=date.today(),
        memo=f"Opening balance - {name}",
        reference=f"opening:{box_id}",
    )


# ---------------------------------------------------------------------------
# BANK ACCOUNTS
# ---------------------------------------------------------------------------

@router.get("/bank-accounts")
async def list_bank_accounts(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("banking.accounts.view")),
):
    from finledger.models.banking import BankAccount

    result = await db.execute(select(BankAccount).order_by(BankAccount.name))
    items = [_bank_dict(b) for b in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.post("/bank-accounts", status_code=201)
async def create_bank_account(
    body: BankAccountCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("banking.accounts.manage")),
):
    """Create a bank account and link (or create) its ``1020-<last4>`` chart account."""
    from finledger.models.banking import BankAccount
    from finledger.services.chart import AccountResolver

    opening = Decimal(str(body.opening_balance))
    bank_account = BankAccount(
        name=body.name,
        bank_name=body.bank_name,
        account_number=body.account_number,
        opening_balance=opening,
        current_balance=opening,
    )
    try:
        db.add(bank_account)
        await db.flush()
        chart_account = await AccountResolver(db).bank_chart_account(bank_account)
        opening_entry = await _post_opening_balance(
            db, user, chart_account, opening, bank_account.name, bank_account.id,
        )
        await write_audit_log(
            db, user, "banking.bank_account.create",
            resource_type="bank_account",
            resource_id=str(bank_account.id),
            details={
                "name": bank_account.name,
                "chart_account": chart_account.account_code,
                "opening_entry": opening_entry.journal_number if opening_entry else None,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return _bank_dict(bank_account)


@router.get("/bank-accounts/{account_id}/transactions")
async def bank_account_ledger(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("banking.accounts.view")),
):
    from finledger.models.banking import BankAccount, BankTransaction

    bank_account = (await db.execute(
        select(BankAccount).where(BankAccount.id == account_id)
    )).scalar_one_or_none()
    if not bank_account:
        raise HTTPException(status_code=404, detail="Bank account not found")

    rows = (await db.execute(
        select(BankTransaction)
        .where(BankTransaction.bank_account_id == account_id)
        .order_by(BankTransaction.transaction_date, BankTransaction.created_at)
    )).scalars().all()

    items = _ledger(bank_account.opening_balance, rows)
    for item, tx in zip(items, rows):
        item["type"] = tx.type
    return {"account": _bank_dict(bank_account), "items": items, "total": len(items)}


# ---------------------------------------------------------------------------
# CASH ACCOUNTS
# ---------------------------------------------------------------------------

@router.get("/cash-accounts")
async def list_cash_accounts(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("banking.accounts.view")),
):
    from finledger.models.banking import CashAccount

    result = await db.execute(select(CashAccount).order_by(CashAccount.created_at))
    items = [_cash_dict(c) for c in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.post("/cash-accounts", status_code=201)
async def create_cash_account(
    body: CashAccountCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("banking.accounts.manage")),
):
    from finledger.models.banking import CashAccount
    from finledger.services.chart import AccountResolver

    opening = Decimal(str(body.opening_balance))
    cash_account = CashAccount(name=body.name, opening_balance=opening, current_balance=opening)
    try:
        db.add(cash_account)
        await db.flush()
        opening_entry = await _post_opening_balance(
            db, user, await AccountResolver(db).cash_account(), opening, cash_account.name, cash_account.id,
        )
        await write_audit_log(
            db, user, "banking.cash_account.create",
            resource_type="cash_account",
            resource_id=str(cash_account.id),
            details={
                "name": cash_account.name,
                "opening_entry": opening_entry.journal_number if opening_entry else None,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return _cash_dict(cash_account)


@router.get("/cash-accounts/{account_id}/transactions")
async def cash_account_ledger(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("banking.accounts.view")),
):
    from finledger.models.banking import CashAccount, CashTransaction

    cash_account = (await db.execute(
        select(CashAccount).where(CashAccount.id == account_id)
    )).scalar_one_or_none()
    if not cash_account:
        raise HTTPException(status_code=404, detail="Cash account not found")

    rows = (await db.execute(
        select(CashTransaction)
        .where(CashTransaction.cash_account_id == account_id)
        .order_by(CashTransaction.transaction_date, CashTransaction.created_at)
    )).scalars().all()

    items = _ledger(cash_account.opening_balance, rows)
    for item, tx in zip(items, rows):
        item["transaction_type"] = tx.transaction_type
    return {"account": _cash_dict(cash_account), "items": items, "total": len(items)}
