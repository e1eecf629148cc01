"""Document services: record, change and void the business documents that post to the ledger.

Each public method is one unit of work. The document row, its journal entry,
the account balances, the settlement rows and the audit row are committed
together, or rolled back together when anything raises.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.middleware.auth import write_audit_log
from finledger.models.finance import Expense, Invoice, Payment, Refund
from finledger.models.vendor import PurchaseReturn, Vendor, VendorBill, VendorPayment
from finledger.services.errors import (
    LedgerInconsistencyError,
    PostingValidationError,
    SourceDocumentNotFoundError,
)
from finledger.services.posting import ZERO, EventKind, FinancialEvent, JournalPoster, money

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Document → event
# ---------------------------------------------------------------------------


def expense_event(expense: Expense) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.EXPENSE,
        source_id=expense.id,
        amount=expense.amount,
        entry_date=expense.date,
        description=expense.description or f"{expense.category} expense",
        reference=expense.reference_number,
        category=expense.category,
        account_code=expense.account_code,
        payment_method=expense.payment_method,
        bank_account_id=expense.bank_account_id,
        cash_account_id=expense.cash_account_id,
    )


def invoice_event(invoice: Invoice) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.INVOICE,
        source_id=invoice.id,
        amount=invoice.total,
        entry_date=invoice.invoice_date,
        description=f"Invoice for {invoice.customer_name}",
    )


def payment_event(payment: Payment, invoice: Invoice) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.PAYMENT,
        source_id=payment.id,
        amount=payment.amount,
        entry_date=payment.payment_date,
        description=f"Payment from {invoice.customer_name}",
        reference=payment.reference_number,
        payment_method=payment.method,
        bank_account_id=payment.bank_account_id,
        cash_account_id=payment.cash_account_id,
    )


def refund_event(refund: Refund, invoice: Invoice) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.REFUND,
        source_id=refund.id,
        amount=refund.refund_amount,
        entry_date=refund.processed_at,
        description=f"Refund to {invoice.customer_name}",
        reference=refund.reference_number,
        payment_method=refund.refund_method,
        bank_account_id=refund.bank_account_id,
        cash_account_id=refund.cash_account_id,
    )


def vendor_bill_event(bill: VendorBill) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.VENDOR_BILL,
        source_id=bill.id,
        amount=bill.total_amount,
        entry_date=bill.bill_date,
        description=f"Vendor bill {bill.bill_number}",
        reference=bill.bill_number,
        category=bill.category,
        vendor_id=bill.vendor_id,
    )


def vendor_payment_event(payment: VendorPayment, bill: VendorBill) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.VENDOR_PAYMENT,
        source_id=payment.id,
        amount=payment.amount,
        entry_date=payment.payment_date,
        description=f"Payment for bill {bill.bill_number}",
        reference=payment.reference_number,
        payment_method=payment.payment_method,
        bank_account_id=payment.bank_account_id,
        cash_account_id=payment.cash_account_id,
        vendor_id=bill.vendor_id,
        vendor_bill_id=bill.id,
    )


def purchase_return_event(purchase_return: PurchaseReturn, bill: VendorBill) -> FinancialEvent:
    return FinancialEvent(
        kind=EventKind.PURCHASE_RETURN,
        source_id=purchase_return.id,
        amount=purchase_return.amount,
        entry_date=purchase_return.return_date,
        description=f"Purchase return on bill {bill.bill_number}",
        category=bill.category,
        vendor_id=bill.vendor_id,
        vendor_bill_id=bill.id,
    )


# ---------------------------------------------------------------------------
# Base service
# ---------------------------------------------------------------------------


class DocumentService:
    resource_type = "document"

    def __init__(self, db: AsyncSession, user: dict[str, Any] | None = None):
        self.db = db
        self.user = user
        user_id = user.get("user_id") if user else None
        if user_id is not None and not isinstance(user_id, uuid.UUID):
            user_id = uuid.UUID(str(user_id))
        self.poster = JournalPoster(db, user_id=user_id)

    @asynccontextmanager
    async def unit_of_work(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _get(self, model, object_id: uuid.UUID, label: str):
        result = await self.db.execute(
            select(model).where(model.id == object_id).with_for_update()
        )
        obj = result.scalar_one_or_none()
        if obj is None:
            raise SourceDocumentNotFoundError(f"{label} not found")
        return obj

    async def _audit(self, action: str, resource_id: uuid.UUID, details: dict | None = None) -> None:
        await write_audit_log(
            self.db,
            self.user,
            action=action,
            resource_type=self.resource_type,
            resource_id=str(resource_id),
            details=details,
        )

    @staticmethod
    def _positive(value: Any, field: str = "amount") -> Decimal:
        amount = money(value)
        if amount <= ZERO:
            raise PostingValidationError(f"{field} must be greater than zero")
        return amount


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

EXPENSE_POSTING_FIELDS = (
    "amount", "date", "category", "account_code",
    "payment_method", "bank_account_id", "cash_account_id",
)
EXPENSE_METADATA_FIELDS = ("description", "reference_number")


class ExpenseService(DocumentService):
    resource_type = "expense"

    async def create(self, data: dict[str, Any]) -> Expense:
        async with self.unit_of_work():
            data = dict(data)
            data["amount"] = self._positive(data.get("amount"))
            expense = Expense(**data)
            self.db.add(expense)
            await self.db.flush()

            entry = await self.poster.post(expense_event(expense))
            expense.journal_entry_id = entry.id
            await self._audit("expense.create", expense.id, {
                "amount": float(expense.amount),
                "category": expense.category,
                "journal_number": entry.journal_number,
            })
        return expense

    async def update(self, expense_id: uuid.UUID, changes: dict[str, Any]) -> Expense:
        """Apply ``changes``; anything that affects the posting reverses and re-posts."""
        async with self.unit_of_work():
            expense = await self._get(Expense, expense_id, "Expense")
            if "amount" in changes:
                changes = {**changes, "amount": self._positive(changes["amount"])}

            reposting = any(
                field in changes and changes[field] != getattr(expense, field)
                for field in EXPENSE_POSTING_FIELDS
            )
            if reposting:
                if expense.journal_entry_id:
                    await self.poster.reverse(expense_event(expense))
                for field, value in changes.items():
                    setattr(expense, field, value)
                await self.db.flush()
                entry = await self.poster.post(expense_event(expense))
                expense.journal_entry_id = entry.id
            else:
                for field in EXPENSE_METADATA_FIELDS:
                    if field in changes:
                        setattr(expense, field, changes[field])

            await self._audit("expense.update", expense.id, {
                "fields": sorted(changes),
                "reposted": reposting,
            })
        return expense

    async def delete(self, expense_id: uuid.UUID) -> None:
        async with self.unit_of_work():
            expense = await self._get(Expense, expense_id, "Expense")
            if expense.journal_entry_id:
                await self.poster.reverse(expense_event(expense))
            await self._audit("expense.delete", expense.id, {
                "amount": float(expense.amount),
                "category": expense.category,
            })
            await self.db.delete(expense)


# ---------------------------------------------------------------------------
# Invoices, payments, refunds
# ---------------------------------------------------------------------------


class InvoiceService(DocumentService):
    resource_type = "invoice"

    async def create(self, data: dict[str, Any]) -> Invoice:
        async with self.unit_of_work():
            data = dict(data)
            data["total"] = self._positive(data.get("total"), "total")
            invoice = Invoice(**data)
            self.db.add(invoice)
            await self.db.flush()

            entry = await self.poster.post(invoice_event(invoice))
            invoice.journal_entry_id = entry.id
            await self._audit("invoice.create", invoice.id, {
                "total": float(invoice.total),
                "journal_number": entry.journal_number,
            })
        return invoice

    async def cancel(self, invoice_id: uuid.UUID) -> Invoice:
        async with self.unit_of_work():
            invoice = await self._get(Invoice, invoice_id, "Invoice")
            if invoice.status == "cancelled":
                raise LedgerInconsistencyError("Invoice is already cancelled")
            if invoice.paid_amount > ZERO:
                raise LedgerInconsistencyError(
                    "Invoice has payments; delete them before cancelling"
                )
            if invoice.total_refunded > ZERO:
                raise LedgerInconsistencyError(
                    "Invoice has refunds; delete them before cancelling"
                )
            if invoice.journal_entry_id:
                await self.poster.reverse(invoice_event(invoice))
            invoice.status = "cancelled"
            await self._audit("invoice.cancel", invoice.id, {"total": float(invoice.total)})
        return invoice


class PaymentService(DocumentService):
    resource_type = "payment"

    async def create(self, invoice_id: uuid.UUID, data: dict[str, Any]) -> Payment:
        async with self.unit_of_work():
            invoice = await self._get(Invoice, invoice_id, "Invoice")
            if invoice.status == "cancelled":
                raise LedgerInconsistencyError("Cannot record a payment on a cancelled invoice")
            data = dict(data)
            amount = data["amount"] = self._positive(data.get("amount"))
            if amount > invoice.outstanding:
                raise PostingValidationError(
                    f"Payment amount ({amount}) exceeds outstanding balance ({invoice.outstanding})"
                )

            payment = Payment(invoice_id=invoice.id, **data)
            self.db.add(payment)
            await self.db.flush()

            entry = await self.poster.post(payment_event(payment, invoice))
            payment.journal_entry_id = entry.id
            invoice.paid_amount += amount
            invoice.refresh_status()
            await self._audit("payment.create", payment.id, {
                "invoice_id": str(invoice.id),
                "amount": float(amount),
                "journal_number": entry.journal_number,
            })
        return payment

    async def delete(self, payment_id: uuid.UUID) -> Invoice:
        async with self.unit_of_work():
            payment = await self._get(Payment, payment_id, "Payment")
            invoice = await self._get(Invoice, payment.invoice_id, "Invoice")
            if invoice.paid_amount - payment.amount < invoice.total_refunded:
                raise LedgerInconsistencyError(
                    f"Payment cannot be deleted: refunds of {invoice.total_refunded} "
                    "would exceed the remaining paid amount"
                )
            if payment.journal_entry_id:
                await self.poster.reverse(payment_event(payment, invoice))
            invoice.paid_amount = max(ZERO, invoice.paid_amount - payment.amount)
            invoice.refresh_status()
            await self._audit("payment.delete", payment.id, {
                "invoice_id": str(invoice.id),
                "amount": float(payment.amount),
            })
            await self.db.delete(payment)
        return invoice


REFUND_POSTING_FIELDS = (
    "refund_amount", "refund_method", "bank_account_id", "cash_account_id", "processed_at",
)
REFUND_METADATA_FIELDS = ("reason", "reference_number")


class RefundService(DocumentService):
    resource_type = "refund"

    @staticmethod
    def _check_refundable(invoice: Invoice, amount: Decimal, already_refunded: Decimal) -> None:
        refundable = invoice.paid_amount - already_refunded
        if amount > refundable:
            raise PostingValidationError(
                f"Refund amount ({amount}) exceeds refundable balance ({refundable})"
            )

    async def create(self, invoice_id: uuid.UUID, data: dict[str, Any]) -> Refund:
        async with self.unit_of_work():
            invoice = await self._get(Invoice, invoice_id, "Invoice")
            data = dict(data)
            amount = data["refund_amount"] = self._positive(data.get("refund_amount"), "refund_amount")
            self._check_refundable(invoice, amount, invoice.total_refunded)

            refund = Refund(invoice_id=invoice.id, **data)
            self.db.add(refund)
            await self.db.flush()

            entry = await self.poster.post(refund_event(refund, invoice))
            refund.journal_entry_id = entry.id
            invoice.total_refunded += amount
            await self._audit("refund.create", refund.id, {
                "invoice_id": str(invoice.id),
                "amount": float(amount),
                "journal_number": entry.journal_number,
            })
        return refund

    async def update(self, refund_id: uuid.UUID, changes: dict[str, Any]) -> Refund:
        async with self.unit_of_work():
            refund = await self._get(Refund, refund_id, "Refund")
            invoice = await self._get(Invoice, refund.invoice_id, "Invoice")
            if "refund_amount" in changes:
                amount = self._positive(changes["refund_amount"], "refund_amount")
                changes = {**changes, "refund_amount": amount}
                self._check_refundable(
                    invoice, amount, invoice.total_refunded - refund.refund_amount
                )

            reposting = any(
                field in changes and changes[field] != getattr(refund, field)
                for field in REFUND_POSTING_FIELDS
            )
            if reposting:
                old_amount = refund.refund_amount
                if refund.journal_entry_id:
                    await self.poster.reverse(refund_event(refund, invoice))
                for field, value in changes.items():
                    setattr(refund, field, value)
                await self.db.flush()
                entry = await self.poster.post(refund_event(refund, invoice))
                refund.journal_entry_id = entry.id
                invoice.total_refunded += refund.refund_amount - old_amount
            else:
                for field in REFUND_METADATA_FIELDS:
                    if field in changes:
                        setattr(refund, field, changes[field])

            await self._audit("refund.update", refund.id, {
                "fields": sorted(changes),
                "reposted": reposting,
            })
        return refund

    async def delete(self, refund_id: uuid.UUID) -> Invoice:
        async with self.unit_of_work():
            refund = await self._get(Refund, refund_id, "Refund")
            invoice = await self._get(Invoice, refund.invoice_id, "Invoice")
            if refund.journal_entry_id:
                await self.poster.reverse(refund_event(refund, invoice))
            invoice.total_refunded = max(ZERO, invoice.total_refunded - refund.refund_amount)
            await self._audit("refund.delete", refund.id, {
                "invoice_id": str(invoice.id),
                "amount": float(refund.refund_amount),
            })
            await self.db.delete(refund)
        return invoice


# ---------------------------------------------------------------------------
# Vendor bills, payments, purchase returns
# ---------------------------------------------------------------------------


class VendorBillService(DocumentService):
    resource_type = "vendor_bill"

    async def create(self, vendor_id: uuid.UUID, data: dict[str, Any]) -> VendorBill:
        async with self.unit_of_work():
            vendor = await self._get(Vendor, vendor_id, "Vendor")
            data = dict(data)
            data["total_amount"] = self._positive(data.get("total_amount"), "total_amount")
            bill = VendorBill(vendor_id=vendor.id, **data)
            bill.vendor = vendor
            self.db.add(bill)
            await self.db.flush()

            entry = await self.poster.post(vendor_bill_event(bill))
            bill.journal_entry_id = entry.id
            await self._audit("vendor_bill.create", bill.id, {
                "vendor": vendor.name,
                "total": float(bill.total_amount),
                "journal_number": entry.journal_number,
            })
        return bill

    async def cancel(self, bill_id: uuid.UUID) -> VendorBill:
        async with self.unit_of_work():
            bill = await self._get(VendorBill, bill_id, "Vendor bill")
            if bill.status == "cancelled":
                raise LedgerInconsistencyError("Bill is already cancelled")
            if bill.paid_amount > ZERO or bill.returned_amount > ZERO:
                raise LedgerInconsistencyError(
                    "Bill has payments or returns; delete them before cancelling"
                )
            if bill.journal_entry_id:
                await self.poster.reverse(vendor_bill_event(bill))
            bill.status = "cancelled"
            await self._audit("vendor_bill.cancel", bill.id, {"total": float(bill.total_amount)})
        return bill


class VendorPaymentService(DocumentService):
    resource_type = "vendor_payment"

    async def create(self, bill_id: uuid.UUID, data: dict[str, Any]) -> VendorPayment:
        async with self.unit_of_work():
            bill = await self._get(VendorBill, bill_id, "Vendor bill")
            if bill.status == "cancelled":
                raise LedgerInconsistencyError("Cannot pay a cancelled bill")
            data = dict(data)
            amount = data["amount"] = self._positive(data.get("amount"))
            if amount > bill.outstanding:
                raise PostingValidationError(
                    f"Payment amount ({amount}) exceeds outstanding balance ({bill.outstanding})"
                )

            payment = VendorPayment(vendor_bill_id=bill.id, **data)
            self.db.add(payment)
            await self.db.flush()

            entry = await self.poster.post(vendor_payment_event(payment, bill))
            payment.journal_entry_id = entry.id
            bill.paid_amount += amount
            bill.refresh_status()
            await self._audit("vendor_payment.create", payment.id, {
                "bill_id": str(bill.id),
                "amount": float(amount),
                "journal_number": entry.journal_number,
            })
        return payment

    async def delete(self, payment_id: uuid.UUID) -> VendorBill:
        async with self.unit_of_work():
            payment = await self._get(VendorPayment, payment_id, "Vendor payment")
            bill = await self._get(VendorBill, payment.vendor_bill_id, "Vendor bill")
            if payment.journal_entry_id:
                await self.poster.reverse(vendor_payment_event(payment, bill))
            bill.paid_amount = max(ZERO, bill.paid_amount - payment.amount)
            bill.refresh_status()
            await self._audit("vendor_payment.delete", payment.id, {
                "bill_id": str(bill.id),
                "amount": float(payment.amount),
            })
            await self.db.delete(payment)
        return bill


class PurchaseReturnService(DocumentService):
    resource_type = "purchase_return"

    async def create(self, bill_id: uuid.UUID, data: dict[str, Any]) -> PurchaseReturn:
        async with self.unit_of_work():
            bill = await self._get(VendorBill, bill_id, "Vendor bill")
            if bill.status == "cancelled":
                raise LedgerInconsistencyError("Cannot return goods on a cancelled bill")
            data = dict(data)
            amount = data["amount"] = self._positive(data.get("amount"))
            if amount > bill.outstanding:
                raise PostingValidationError(
                    f"Return amount ({amount}) exceeds outstanding balance ({bill.outstanding})"
                )

            purchase_return = PurchaseReturn(vendor_bill_id=bill.id, **data)
            self.db.add(purchase_return)
            await self.db.flush()

            entry = await self.poster.post(purchase_return_event(purchase_return, bill))
            purchase_return.journal_entry_id = entry.id
            bill.returned_amount += amount
            bill.refresh_status()
            await self._audit("purchase_return.create", purchase_return.id, {
                "bill_id": str(bill.id),
                "amount": float(amount),
                "journal_number": entry.journal_number,
            })
        return purchase_return

    async def delete(self, return_id: uuid.UUID) -> VendorBill:
        async with self.unit_of_work():
            purchase_return = await self._get(PurchaseReturn, return_id, "Purchase return")
            bill = await self._get(VendorBill, purchase_return.vendor_bill_id, "Vendor bill")
            if purchase_return.journal_entry_id:
                await self.poster.reverse(purchase_return_event(purchase_return, bill))
            bill.returned_amount = max(ZERO, bill.returned_amount - purchase_return.amount)
            bill.refresh_status()
            await self._audit("purchase_return.delete", purchase_return.id, {
                "bill_id": str(bill.id),
                "amount": float(purchase_return.amount),
            })
            await self.db.delete(purchase_return)
        return bill
