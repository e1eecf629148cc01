"""General Ledger routes — Chart of Accounts, Journal Entries, Trial Balance."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.database import get_db
from finledger.middleware.auth import require_permission, write_audit_log

router = APIRouter(prefix="/api/gl", tags=["general-ledger"])


# ---------------------------------------------------------------------------
# Pydantic Schemas
# ---------------------------------------------------------------------------

class AccountCreate(BaseModel):
    account_code: str
    account_name: str
    account_type: str
    normal_balance: str | None = None
    opening_balance: float = 0.0
    parent_id: uuid.UUID | None = None
    description: str | None = None

    @field_validator("account_type")
    @classmethod
    def validate_account_type(cls, v):
        if v not in ("asset", "liability", "equity", "revenue", "expense"):
            raise ValueError("Must be asset, liability, equity, revenue, or expense")
        return v

    @field_validator("normal_balance")
    @classmethod
    def validate_normal_balance(cls, v):
        if v is not None and v not in ("debit", "credit"):
            raise ValueError("Must be debit or credit")
        return v


class AccountUpdate(BaseModel):
    account_name: str | None = None
    description: str | None = None
    is_active: bool | None = None


class JournalLineIn(BaseModel):
    account_id: uuid.UUID
    debit_amount: float = 0.0
    credit_amount: float = 0.0
    memo: str | None = None


class JournalEntryCreate(BaseModel):
    entry_date: date
    memo: str | None = None
    reference_number: str | None = None
    lines: list[JournalLineIn]


class TrialBalanceItem(BaseModel):
    account_code: str
    account_name: str
    account_type: str
    debit_balance: float
    credit_balance: float


class TrialBalanceResponse(BaseModel):
    as_of: date | None = None
    items: list[TrialBalanceItem]
    total_debits: float
    total_credits: float
    balanced: bool


def _account_dict(a) -> dict:
    return {
        "id": str(a.id),
        "account_code": a.account_code,
        "account_name": a.account_name,
        "account_type": a.account_type,
        "normal_balance": a.normal_balance,
        "opening_balance": float(a.opening_balance or 0),
        "current_balance": float(a.current_balance or 0),
        "parent_id": str(a.parent_id) if a.parent_id else None,
        "is_system": a.is_system,
        "is_active": a.is_active,
        "description": a.description,
    }


def entry_dict(je, with_lines: bool = True) -> dict:
    data = {
        "id": str(je.id),
        "entry_number": je.entry_number,
        "journal_number": je.journal_number,
        "entry_date": str(je.entry_date),
        "memo": je.memo,
        "reference_number": je.reference_number,
        "source_document_type": je.source_document_type,
        "source_document_id": str(je.source_document_id) if je.source_document_id else None,
        "status": je.status,
        "reversal_of_id": str(je.reversal_of_id) if je.reversal_of_id else None,
        "reversed_by_id": str(je.reversed_by_id) if je.reversed_by_id else None,
        "posted_at": je.posted_at.isoformat() if je.posted_at else None,
        "total_debits": float(je.total_debit),
        "total_credits": float(je.total_credit),
    }
    if with_lines:
        data["lines"] = [
            {
                "id": str(l.id),
                "line_number": l.line_number,
                "account_id": str(l.account_id),
                "account_code": l.account.account_code if l.account else None,
                "account_name": l.account.account_name if l.account else None,
                "debit_amount": float(l.debit_amount or 0),
                "credit_amount": float(l.credit_amount or 0),
                "memo": l.memo,
            }
            for l in je.lines
        ]
    else:
        data["line_count"] = len(je.lines)
    return data


# ---------------------------------------------------------------------------
# CHART OF ACCOUNTS
# ---------------------------------------------------------------------------

@router.get("/accounts")
async def list_accounts(
    account_type: str | None = Query(None),
    is_active: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("gl.accounts.view")),
):
    from finledger.models.gl import Account

    stmt = select(Account).where(Account.is_active == is_active)
    if account_type:
        stmt = stmt.where(Account.account_type == account_type)
    stmt = stmt.order_by(Account.account_code)

    result = await db.execute(stmt)
    items = [_account_dict(a) for a in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.post("/accounts/initialize")
async def initialize_accounts(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.accounts.create")),
):
    """Seed the system chart of accounts and the default cash box."""
    from finledger.services.chart import initialize_chart

    created = await initialize_chart(db)
    await write_audit_log(
        db, user, "gl.accounts.initialize",
        resource_type="account",
        details={"created": created},
    )
    await db.commit()
    return {"created": created, "total_created": len(created)}


@router.get("/accounts/{account_id}")
async def get_account(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("gl.accounts.view")),
):
    from finledger.models.gl import Account

    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return _account_dict(account)


@router.post("/accounts", status_code=201)
async def create_account(
    body: AccountCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.accounts.create")),
):
    from finledger.models.gl import Account

    existing = await db.execute(select(Account.id).where(Account.account_code == body.account_code))
    if existing.first():
        raise HTTPException(status_code=409, detail=f"Account code {body.account_code} already exists")

    normal_balance = body.normal_balance or (
        "debit" if body.account_type in ("asset", "expense") else "credit"
    )
    opening = Decimal(str(body.opening_balance))
    account = Account(
        account_code=body.account_code,
        account_name=body.account_name,
        account_type=body.account_type,
        normal_balance=normal_balance,
        opening_balance=opening,
        current_balance=opening,
        parent_id=body.parent_id,
        description=body.description,
    )
    db.add(account)
    await db.flush()
    await write_audit_log(
        db, user, "gl.accounts.create",
        resource_type="account",
        resource_id=str(account.id),
        details={"account_code": account.account_code},
    )
    await db.commit()

    return {"id": str(account.id), "account_code": account.account_code, "account_name": account.account_name}


@router.put("/accounts/{account_id}")
async def update_account(
    account_id: uuid.UUID,
    body: AccountUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.accounts.update")),
):
    from finledger.models.gl import Account

    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    if body.account_name is not None:
        account.account_name = body.account_name
    if body.description is not None:
        account.description = body.description
    if body.is_active is not None:
        if account.is_system and not body.is_active:
            raise HTTPException(status_code=422, detail="System accounts cannot be deactivated")
        account.is_active = body.is_active

    await write_audit_log(
        db, user, "gl.accounts.update",
        resource_type="account",
        resource_id=str(account.id),
        details=body.model_dump(exclude_none=True),
    )
    await db.commit()
    return {"status": "updated"}


# ---------------------------------------------------------------------------
# JOURNAL ENTRIES
# ---------------------------------------------------------------------------

@router.get("/journal-entries")
async def list_journal_entries(
    source_type: str | None = Query(None),
    je_status: str | None = Query(None, alias="status"),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("gl.journal_entries.view")),
):
    from finledger.models.gl import JournalEntry

    filters = []
    if source_type:
        filters.append(JournalEntry.source_document_type == source_type.upper())
    if je_status:
        filters.append(JournalEntry.status == je_status)
    if date_from:
        filters.append(JournalEntry.entry_date >= date_from)
    if date_to:
        filters.append(JournalEntry.entry_date <= date_to)

    total = (await db.execute(select(func.count(JournalEntry.id)).where(*filters))).scalar_one()

    data_stmt = (
        select(JournalEntry)
        .where(*filters)
        .order_by(JournalEntry.entry_number.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    entries = (await db.execute(data_stmt)).scalars().all()

    items = [entry_dict(je, with_lines=False) for je in entries]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/journal-entries/{je_id}")
async def get_journal_entry(
    je_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("gl.journal_entries.view")),
):
    from finledger.models.gl import JournalEntry

    result = await db.execute(select(JournalEntry).where(JournalEntry.id == je_id))
    je = result.scalar_one_or_none()
    if not je:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry_dict(je)


@router.post("/journal-entries", status_code=201)
async def create_journal_entry(
    body: JournalEntryCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.journal_entries.create")),
):
    from finledger.services.posting import JournalPoster, ManualLine

    poster = JournalPoster(db, user_id=user["user_id"])
    try:
        entry = await poster.post_manual(
            [
                ManualLine(
                    account_id=l.account_id,
                    debit=Decimal(str(l.debit_amount)),
                    credit=Decimal(str(l.credit_amount)),
                    memo=l.memo,
                )
                for l in body.lines
            ],
            entry_date=body.entry_date,
            memo=body.memo,
            reference=body.reference_number,
        )
        await write_audit_log(
            db, user, "gl.journal_entries.create",
            resource_type="journal_entry",
            resource_id=str(entry.id),
            details={"journal_number": entry.journal_number},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return entry_dict(entry)


@router.post("/journal-entries/{je_id}/reverse")
async def reverse_journal_entry(
    je_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.journal_entries.reverse")),
):
    """Reverse a manual entry. Document postings are voided through their document."""
    from finledger.services.posting import JournalPoster

    poster = JournalPoster(db, user_id=user["user_id"])
    try:
        reversal = await poster.reverse_entry(je_id)
        await write_audit_log(
            db, user, "gl.journal_entries.reverse",
            resource_type="journal_entry",
            resource_id=str(je_id),
            details={"reversal": reversal.journal_number},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return {
        "original_id": str(je_id),
        "reversal_id": str(reversal.id),
        "reversal_journal_number": reversal.journal_number,
        "status": "reversed",
    }


# ---------------------------------------------------------------------------
# TRIAL BALANCE
# ---------------------------------------------------------------------------

@router.get("/trial-balance")
async def get_trial_balance(
    as_of: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("gl.trial_balance.view")),
):
    """Net debit/credit per account over every applied entry up to ``as_of``.

    Reversed entries and their reversals both count, so they cancel out.
    """
    from finledger.models.gl import Account, JournalEntry, JournalLine

    stmt = (
        select(
            Account.account_code,
            Account.account_name,
            Account.account_type,
            func.coalesce(func.sum(JournalLine.debit_amount), 0).label("total_debits"),
            func.coalesce(func.sum(JournalLine.credit_amount), 0).label("total_credits"),
        )
        .join(JournalLine, JournalLine.account_id == Account.id)
        .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
    )
    if as_of:
        stmt = stmt.where(JournalEntry.entry_date <= as_of)
    stmt = stmt.group_by(
        Account.account_code, Account.account_name, Account.account_type
    ).order_by(Account.account_code)

    rows = (await db.execute(stmt)).all()

    items = []
    grand_debits = Decimal("0")
    grand_credits = Decimal("0")
    for row in rows:
        net = Decimal(str(row.total_debits)) - Decimal(str(row.total_credits))
        dr = net if net > 0 else Decimal("0")
        cr = -net if net < 0 else Decimal("0")
        if dr == 0 and cr == 0:
            continue
        items.append(TrialBalanceItem(
            account_code=row.account_code,
            account_name=row.account_name,
            account_type=row.account_type,
            debit_balance=float(dr),
            credit_balance=float(cr),
        ))
        grand_debits += dr
        grand_credits += cr

    return TrialBalanceResponse(
        as_of=as_of,
        items=items,
        total_debits=float(grand_debits),
        total_credits=float(grand_credits),
        balanced=grand_debits == grand_credits,
    )
