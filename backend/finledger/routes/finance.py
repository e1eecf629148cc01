"""Finance routes — expenses, customer invoices, payments and refunds.

Every write goes through a document service, which posts or reverses the
matching journal entry in the same transaction.
"""
from __future__ import annotations

import datetime
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.database import get_db
from finledger.middleware.auth import require_permission
from finledger.services.events import (
    ExpenseService,
    InvoiceService,
    PaymentService,
    RefundService,
)

router = APIRouter(prefix="/api/finance", tags=["finance"])

PAYMENT_METHODS = ("cash", "bank_transfer", "cheque", "upi", "card", "online", "other")


# ---------------------------------------------------------------------------
# Pydantic Schemas
# ---------------------------------------------------------------------------

class _SettlementFields(BaseModel):
    """Shared validation for documents that move money."""

    @field_validator("payment_method", "method", "refund_method", check_fields=False)
    @classmethod
    def validate_method(cls, v):
        if v is not None and v not in PAYMENT_METHODS:
            raise ValueError(f"Must be one of: {', '.join(PAYMENT_METHODS)}")
        return v

    @field_validator("amount", "refund_amount", "total", check_fields=False)
    @classmethod
    def validate_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Must be greater than zero")
        return v

    # Optional on updates means "leave unchanged"; the columns themselves are NOT NULL.
    @field_validator(
        "date", "amount", "category", "payment_method",
        "processed_at", "refund_amount", "refund_method",
        check_fields=False,
    )
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("Cannot be null")
        return v


class ExpenseCreate(_SettlementFields):
    date: datetime.date
    amount: float
    category: str
    description: str | None = None
    reference_number: str | None = None
    account_code: str | None = None
    payment_method: str = "cash"
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None


class ExpenseUpdate(_SettlementFields):
    date: datetime.date | None = None
    amount: float | None = None
    category: str | None = None
    description: str | None = None
    reference_number: str | None = None
    account_code: str | None = None
    payment_method: str | None = None
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None


class InvoiceCreate(_SettlementFields):
    customer_name: str
    invoice_date: datetime.date
    total: float
    notes: str | None = None


class PaymentCreate(_SettlementFields):
    amount: float
    payment_date: datetime.date
    method: str = "cash"
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None
    reference_number: str | None = None


class RefundCreate(_SettlementFields):
    refund_amount: float
    processed_at: datetime.date
    reason: str | None = None
    refund_method: str = "cash"
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None
    reference_number: str | None = None


class RefundUpdate(_SettlementFields):
    refund_amount: float | None = None
    processed_at: datetime.date | None = None
    reason: str | None = None
    refund_method: str | None = None
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None
    reference_number: str | None = None


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def _expense_dict(e) -> dict:
    return {
        "id": str(e.id),
        "date": str(e.date),
        "amount": float(e.amount),
        "category": e.category,
        "description": e.description,
        "reference_number": e.reference_number,
        "account_code": e.account_code,
        "payment_method": e.payment_method,
        "bank_account_id": str(e.bank_account_id) if e.bank_account_id else None,
        "cash_account_id": str(e.cash_account_id) if e.cash_account_id else None,
        "journal_entry_id": str(e.journal_entry_id) if e.journal_entry_id else None,
    }


def _invoice_dict(inv) -> dict:
    return {
        "id": str(inv.id),
        "customer_name": inv.customer_name,
        "invoice_date": str(inv.invoice_date),
        "total": float(inv.total),
        "paid_amount": float(inv.paid_amount),
        "total_refunded": float(inv.total_refunded),
        "outstanding": float(inv.outstanding),
        "status": inv.status,
        "notes": inv.notes,
        "journal_entry_id": str(inv.journal_entry_id) if inv.journal_entry_id else None,
    }


def _payment_dict(p) -> dict:
    return {
        "id": str(p.id),
        "invoice_id": str(p.invoice_id),
        "amount": float(p.amount),
        "payment_date": str(p.payment_date),
        "method": p.method,
        "bank_account_id": str(p.bank_account_id) if p.bank_account_id else None,
        "cash_account_id": str(p.cash_account_id) if p.cash_account_id else None,
        "reference_number": p.reference_number,
        "journal_entry_id": str(p.journal_entry_id) if p.journal_entry_id else None,
    }


def _refund_dict(r) -> dict:
    return {
        "id": str(r.id),
        "invoice_id": str(r.invoice_id),
        "refund_amount": float(r.refund_amount),
        "processed_at": str(r.processed_at),
        "reason": r.reason,
        "refund_method": r.refund_method,
        "bank_account_id": str(r.bank_account_id) if r.bank_account_id else None,
        "cash_account_id": str(r.cash_account_id) if r.cash_account_id else None,
        "reference_number": r.reference_number,
        "journal_entry_id": str(r.journal_entry_id) if r.journal_entry_id else None,
    }


# ---------------------------------------------------------------------------
# EXPENSES
# ---------------------------------------------------------------------------

@router.get("/expenses")
async def list_expenses(
    category: str | None = Query(None),
    date_from: datetime.date | None = Query(None),
    date_to: datetime.date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("finance.expenses.view")),
):
    from finledger.models.finance import Expense

    filters = []
    if category:
        filters.append(Expense.category == category)
    if date_from:
        filters.append(Expense.date >= date_from)
    if date_to:
        filters.append(Expense.date <= date_to)

    total = (await db.execute(select(func.count(Expense.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(Expense)
        .where(*filters)
        .order_by(Expense.date.desc(), Expense.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [_expense_dict(e) for e in result.scalars().all()]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/expenses/{expense_id}")
async def get_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("finance.expenses.view")),
):
    from finledger.models.finance import Expense

    expense = (await db.execute(select(Expense).where(Expense.id == expense_id))).scalar_one_or_none()
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return _expense_dict(expense)


@router.post("/expenses", status_code=201)
async def create_expense(
    body: ExpenseCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.expenses.manage")),
):
    expense = await ExpenseService(db, user).create(body.model_dump())
    return _expense_dict(expense)


@router.put("/expenses/{expense_id}")
async def update_expense(
    expense_id: uuid.UUID,
    body: ExpenseUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.expenses.manage")),
):
    expense = await ExpenseService(db, user).update(expense_id, body.model_dump(exclude_unset=True))
    return _expense_dict(expense)


@router.delete("/expenses/{expense_id}")
async def delete_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.expenses.manage")),
):
    await ExpenseService(db, user).delete(expense_id)
    return {"status": "deleted", "id": str(expense_id)}


# ---------------------------------------------------------------------------
# INVOICES
# ---------------------------------------------------------------------------

@router.get("/invoices")
async def list_invoices(
    inv_status: str | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("finance.invoices.view")),
):
    from finledger.models.finance import Invoice

    stmt = select(Invoice).order_by(Invoice.invoice_date.desc(), Invoice.created_at.desc())
    if inv_status:
        stmt = stmt.where(Invoice.status == inv_status)
    items = [_invoice_dict(i) for i in (await db.execute(stmt)).scalars().all()]
    return {"items": items, "total": len(items)}


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("finance.invoices.view")),
):
    from finledger.models.finance import Invoice

    invoice = (await db.execute(select(Invoice).where(Invoice.id == invoice_id))).scalar_one_or_none()
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")

    data = _invoice_dict(invoice)
    data["payments"] = [_payment_dict(p) for p in invoice.payments]
    data["refunds"] = [_refund_dict(r) for r in invoice.refunds]
    return data


@router.post("/invoices", status_code=201)
async def create_invoice(
    body: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.invoices.manage")),
):
    invoice = await InvoiceService(db, user).create(body.model_dump())
    return _invoice_dict(invoice)


@router.post("/invoices/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.invoices.manage")),
):
    invoice = await InvoiceService(db, user).cancel(invoice_id)
    return _invoice_dict(invoice)


# ---------------------------------------------------------------------------
# PAYMENTS
# ---------------------------------------------------------------------------

@router.get("/invoices/{invoice_id}/payments")
async def list_payments(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("finance.invoices.view")),
):
    from finledger.models.finance import Payment

    result = await db.execute(
        select(Payment)
        .where(Payment.invoice_id == invoice_id)
        .order_by(Payment.payment_date, Payment.created_at)
    )
    items = [_payment_dict(p) for p in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.post("/invoices/{invoice_id}/payments", status_code=201)
async def create_payment(
    invoice_id: uuid.UUID,
    body: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.payments.manage")),
):
    payment = await PaymentService(db, user).create(invoice_id, body.model_dump())
    return _payment_dict(payment)


@router.delete("/payments/{payment_id}")
async def delete_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.payments.manage")),
):
    invoice = await PaymentService(db, user).delete(payment_id)
    return {"status": "deleted", "id": str(payment_id), "invoice": _invoice_dict(invoice)}


# ---------------------------------------------------------------------------
# REFUNDS
# ---------------------------------------------------------------------------

@router.get("/invoices/{invoice_id}/refunds")
async def list_refunds(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("finance.invoices.view")),
):
    from finledger.models.finance import Refund

    result = await db.execute(
        select(Refund)
        .where(Refund.invoice_id == invoice_id)
        .order_by(Refund.processed_at, Refund.created_at)
    )
    items = [_refund_dict(r) for r in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.post("/invoices/{invoice_id}/refunds", status_code=201)
async def create_refund(
    invoice_id: uuid.UUID,
    body: RefundCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.refunds.manage")),
):
    refund = await RefundService(db, user).create(invoice_id, body.model_dump())
    return _refund_dict(refund)


@router.put("/refunds/{refund_id}")
async def update_refund(
    refund_id: uuid.UUID,
    body: RefundUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.refunds.manage")),
):
    refund = await RefundService(db, user).update(refund_id, body.model_dump(exclude_unset=True))
    return _refund_dict(refund)


@router.delete("/refunds/{refund_id}")
async def delete_refund(
    refund_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("finance.refunds.manage")),
):
    invoice = await RefundService(db, user).delete(refund_id)
    return {"status": "deleted", "id": str(refund_id), "invoice": _invoice_dict(invoice)}
