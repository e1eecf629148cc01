from finledger.models.audit import AuditLog
from finledger.models.banking import BankAccount, BankTransaction, CashAccount, CashTransaction
from finledger.models.finance import Expense, Invoice, Payment, Refund
from finledger.models.gl import Account, JournalEntry, JournalLine
from finledger.models.user import User
from finledger.models.vendor import (
    PurchaseReturn,
    Vendor,
    VendorBill,
    VendorPayment,
    VendorPaymentHistory,
)

__all__ = [
    # General Ledger
    "Account",
    "JournalEntry",
    "JournalLine",
    # Bank & cash
    "BankAccount",
    "BankTransaction",
    "CashAccount",
    "CashTransaction",
    # Customer side
    "Expense",
    "Invoice",
    "Payment",
    "Refund",
    # Procurement
    "Vendor",
    "VendorBill",
    "VendorPayment",
    "VendorPaymentHistory",
    "PurchaseReturn",
    # Users & audit
    "User",
    "AuditLog",
]
