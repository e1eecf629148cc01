"""Vendor routes — vendors, bills, bill payments and purchase returns."""
from __future__ import annotations

import datetime
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.database import get_db
from finledger.middleware.auth import require_permission, write_audit_log
from finledger.routes.finance import PAYMENT_METHODS
from finledger.services.events import (
    PurchaseReturnService,
    VendorBillService,
    VendorPaymentService,
)

router = APIRouter(prefix="/api/vendors", tags=["vendors"])


# ---------------------------------------------------------------------------
# Pydantic Schemas
# ---------------------------------------------------------------------------

class VendorCreate(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    notes: str | None = None


class BillCreate(BaseModel):
    bill_number: str
    bill_date: datetime.date
    total_amount: float
    category: str = "Raw Materials"
    description: str | None = None

    @field_validator("total_amount")
    @classmethod
    def validate_total(cls, v):
        if v <= 0:
            raise ValueError("Must be greater than zero")
        return v


class BillPaymentCreate(BaseModel):
    amount: float
    payment_date: datetime.date
    payment_method: str = "cash"
    bank_account_id: uuid.UUID | None = None
    cash_account_id: uuid.UUID | None = None
    reference_number: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError("Must be greater than zero")
        return v

    @field_validator("payment_method")
    @classmethod
    def validate_method(cls, v):
        if v not in PAYMENT_METHODS:
            raise ValueError(f"Must be one of: {', '.join(PAYMENT_METHODS)}")
        return v


class PurchaseReturnCreate(BaseModel):
    amount: float
    return_date: datetime.date
    reason: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError("Must be greater than zero")
        return v


def _bill_dict(b) -> dict:
    return {
        "id": str(b.id),
        "vendor_id": str(b.vendor_id),
        "vendor_name": b.vendor.name if b.vendor else None,
        "bill_number": b.bill_number,
        "bill_date": str(b.bill_date),
        "total_amount": float(b.total_amount),
        "paid_amount": float(b.paid_amount),
        "returned_amount": float(b.returned_amount),
        "outstanding": float(b.outstanding),
        "category": b.category,
        "status": b.status,
        "description": b.description,
        "journal_entry_id": str(b.journal_entry_id) if b.journal_entry_id else None,
    }


# ---------------------------------------------------------------------------
# VENDORS
# ---------------------------------------------------------------------------

@router.get("")
async def list_vendors(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("vendors.view")),
):
    from finledger.models.vendor import Vendor

    result = await db.execute(select(Vendor).where(Vendor.is_active == True).order_by(Vendor.name))
    vendors = result.scalars().all()
    return {
        "items": [
            {"id": str(v.id), "name": v.name, "email": v.email, "phone": v.phone}
            for v in vendors
        ],
        "total": len(vendors),
    }


@router.post("", status_code=201)
async def create_vendor(
    body: VendorCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.manage")),
):
    from finledger.models.vendor import Vendor

    vendor = Vendor(**body.model_dump())
    db.add(vendor)
    await db.flush()
    await write_audit_log(
        db, user, "vendor.create",
        resource_type="vendor",
        resource_id=str(vendor.id),
        details={"name": vendor.name},
    )
    await db.commit()
    return {"id": str(vendor.id), "name": vendor.name}


# ---------------------------------------------------------------------------
# BILLS
# ---------------------------------------------------------------------------

@router.get("/bills")
async def list_bills(
    vendor_id: uuid.UUID | None = Query(None),
    bill_status: str | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("vendors.view")),
):
    from finledger.models.vendor import VendorBill

    stmt = select(VendorBill).order_by(VendorBill.bill_date.desc(), VendorBill.created_at.desc())
    if vendor_id:
        stmt = stmt.where(VendorBill.vendor_id == vendor_id)
    if bill_status:
        stmt = stmt.where(VendorBill.status == bill_status)
    items = [_bill_dict(b) for b in (await db.execute(stmt)).scalars().all()]
    return {"items": items, "total": len(items)}


@router.get("/bills/{bill_id}")
async def get_bill(
    bill_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("vendors.view")),
):
    from finledger.models.vendor import PurchaseReturn, VendorBill, VendorPayment

    bill = (await db.execute(select(VendorBill).where(VendorBill.id == bill_id))).scalar_one_or_none()
    if not bill:
        raise HTTPException(status_code=404, detail="Vendor bill not found")

    payments = (await db.execute(
        select(VendorPayment).where(VendorPayment.vendor_bill_id == bill_id)
        .order_by(VendorPayment.payment_date)
    )).scalars().all()
    returns = (await db.execute(
        select(PurchaseReturn).where(PurchaseReturn.vendor_bill_id == bill_id)
        .order_by(PurchaseReturn.return_date)
    )).scalars().all()

    data = _bill_dict(bill)
    data["payments"] = [
        {
            "id": str(p.id),
            "amount": float(p.amount),
            "payment_date": str(p.payment_date),
            "payment_method": p.payment_method,
            "reference_number": p.reference_number,
            "journal_entry_id": str(p.journal_entry_id) if p.journal_entry_id else None,
        }
        for p in payments
    ]
    data["returns"] = [
        {
            "id": str(r.id),
            "amount": float(r.amount),
            "return_date": str(r.return_date),
            "reason": r.reason,
            "journal_entry_id": str(r.journal_entry_id) if r.journal_entry_id else None,
        }
        for r in returns
    ]
    return data


@router.post("/{vendor_id}/bills", status_code=201)
async def create_bill(
    vendor_id: uuid.UUID,
    body: BillCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.bills.manage")),
):
    bill = await VendorBillService(db, user).create(vendor_id, body.model_dump())
    return _bill_dict(bill)


@router.post("/bills/{bill_id}/cancel")
async def cancel_bill(
    bill_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.bills.manage")),
):
    bill = await VendorBillService(db, user).cancel(bill_id)
    return _bill_dict(bill)


# ---------------------------------------------------------------------------
# BILL PAYMENTS
# ---------------------------------------------------------------------------

@router.post("/bills/{bill_id}/payments", status_code=201)
async def create_bill_payment(
    bill_id: uuid.UUID,
    body: BillPaymentCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.payments.manage")),
):
    payment = await VendorPaymentService(db, user).create(bill_id, body.model_dump())
    return {
        "id": str(payment.id),
        "vendor_bill_id": str(payment.vendor_bill_id),
        "amount": float(payment.amount),
        "payment_date": str(payment.payment_date),
        "payment_method": payment.payment_method,
        "journal_entry_id": str(payment.journal_entry_id) if payment.journal_entry_id else None,
    }


@router.delete("/payments/{payment_id}")
async def delete_bill_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.payments.manage")),
):
    bill = await VendorPaymentService(db, user).delete(payment_id)
    return {"status": "deleted", "id": str(payment_id), "bill": _bill_dict(bill)}


# ---------------------------------------------------------------------------
# PURCHASE RETURNS
# ---------------------------------------------------------------------------

@router.post("/bills/{bill_id}/returns", status_code=201)
async def create_purchase_return(
    bill_id: uuid.UUID,
    body: PurchaseReturnCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.bills.manage")),
):
    purchase_return = await PurchaseReturnService(db, user).create(bill_id, body.model_dump())
    return {
        "id": str(purchase_return.id),
        "vendor_bill_id": str(purchase_return.vendor_bill_id),
        "amount": float(purchase_return.amount),
        "return_date": str(purchase_return.return_date),
        "journal_entry_id": str(purchase_return.journal_entry_id),
    }


@router.delete("/returns/{return_id}")
async def delete_purchase_return(
    return_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("vendors.bills.manage")),
):
    bill = await PurchaseReturnService(db, user).delete(return_id)
    return {"status": "deleted", "id": str(return_id), "bill": _bill_dict(bill)}
