"""Chart of accounts: system account seeding and account resolution for postings."""
from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.config import settings
from finledger.models.banking import BankAccount, CashAccount
from finledger.models.gl import Account
from finledger.services.errors import AccountResolutionError, SourceDocumentNotFoundError

logger = logging.getLogger(__name__)

# (code, name, type, normal balance)
SYSTEM_ACCOUNTS: list[tuple[str, str, str, str]] = [
    ("1010", "Cash", "asset", "debit"),
    ("1020", "Bank", "asset", "debit"),
    ("1025", "UPI Collections", "asset", "debit"),
    ("1030", "Card Settlements", "asset", "debit"),
    ("1200", "Accounts Receivable", "asset", "debit"),
    ("1400", "Prepaid Expenses", "asset", "debit"),
    ("2010", "Accounts Payable", "liability", "credit"),
    ("3000", "Owner's Equity", "equity", "credit"),
    ("4000", "Sales Revenue", "revenue", "credit"),
    ("4900", "Sales Returns", "revenue", "debit"),
    ("7000", "Other Expenses", "expense", "debit"),
]

CATEGORY_ACCOUNT_CODES: dict[str, str] = {
    "Raw Materials": "5100",
    "Direct Labor": "5200",
    "Manufacturing Overhead": "5300",
    "Administrative": "6100",
    "Salaries & Benefits": "6200",
    "Marketing & Sales": "6300",
    "Logistics & Distribution": "6400",
    "Technology": "6500",
    "Insurance": "6600",
    "Maintenance & Repairs": "6700",
    "Travel & Entertainment": "6800",
    "Vehicle Fleet": "6030",
    "Research & Development": "6900",
    "Accounts Payable": "2010",
    "Prepaid Expenses": "1400",
    "Miscellaneous": "7000",
}

BANK_METHODS = frozenset({"bank_transfer", "cheque", "upi", "card", "online"})

# Preferred asset accounts when no bank account is given
METHOD_ACCOUNT_CODES: dict[str, list[str]] = {
    "cash": ["1010"],
    "bank_transfer": ["1020", "1010"],
    "cheque": ["1020", "1010"],
    "online": ["1020", "1010"],
    "upi": ["1025", "1020", "1010"],
    "card": ["1030", "1020", "1010"],
    "other": ["1010"],
}


def signed_delta(account: Account, debit: Decimal, credit: Decimal) -> Decimal:
    """Balance change a leg causes, in the account's natural sign."""
    if account.normal_balance == "debit":
        return debit - credit
    return credit - debit


def apply_leg(account: Account, debit: Decimal, credit: Decimal) -> Decimal:
    """Mutate ``account.current_balance`` for one journal leg and return the delta."""
    delta = signed_delta(account, debit, credit)
    account.current_balance = (account.current_balance or Decimal("0")) + delta
    return delta


async def initialize_chart(db: AsyncSession) -> list[str]:
    """Create any missing system accounts and the default cash box.

    Safe to call repeatedly; returns the account codes created on this call.
    """
    existing = set(
        (await db.execute(select(Account.account_code))).scalars().all()
    )
    created = []
    for code, name, account_type, normal_balance in SYSTEM_ACCOUNTS:
        if code in existing:
            continue
        db.add(Account(
            account_code=code,
            account_name=name,
            account_type=account_type,
            normal_balance=normal_balance,
            is_system=True,
        ))
        created.append(code)

    has_cash_box = (await db.execute(select(CashAccount.id).limit(1))).first()
    if not has_cash_box:
        db.add(CashAccount(name="Main Cash"))

    await db.flush()
    if created:
        logger.info(f"Initialized chart of accounts: {', '.join(created)}")
    return created


class AccountResolver:
    """Looks up (and where allowed, creates) the accounts a posting touches."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def by_code(self, code: str) -> Account | None:
        result = await self.db.execute(
            select(Account).where(Account.account_code == code).with_for_update()
        )
        return result.scalar_one_or_none()

    async def by_id(self, account_id: uuid.UUID) -> Account:
        result = await self.db.execute(
            select(Account).where(Account.id == account_id).with_for_update()
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountResolutionError(f"Account {account_id} not found")
        return account

    async def _required(self, code: str, label: str) -> Account:
        account = await self.by_code(code)
        if account is None:
            raise AccountResolutionError(
                f"{label} account ({code}) not found in chart of accounts"
            )
        return account

    # ------------------------------------------------------------------
    # Fixed system accounts
    # ------------------------------------------------------------------

    async def cash_account(self) -> Account:
        return await self._required(settings.CASH_ACCOUNT_CODE, "Cash")

    async def receivable_account(self) -> Account:
        for code in settings.RECEIVABLE_ACCOUNT_CODES:
            account = await self.by_code(code)
            if account is not None:
                return account
        codes = "/".join(settings.RECEIVABLE_ACCOUNT_CODES)
        raise AccountResolutionError(
            f"Accounts Receivable account ({codes}) not found in chart of accounts"
        )

    async def payable_account(self) -> Account:
        return await self._required(settings.PAYABLE_ACCOUNT_CODE, "Accounts Payable")

    async def sales_account(self) -> Account:
        return await self._required(settings.SALES_ACCOUNT_CODE, "Sales Revenue")

    async def sales_returns_account(self) -> Account:
        return await self._required(settings.SALES_RETURNS_ACCOUNT_CODE, "Sales Returns")

    async def equity_account(self) -> Account:
        return await self._required(settings.OPENING_EQUITY_ACCOUNT_CODE, "Owner's Equity")

    # ------------------------------------------------------------------
    # Resolved-on-demand accounts
    # ------------------------------------------------------------------

    async def expense_account(self, category: str | None, account_code: str | None = None) -> Account:
        """Expense account for a category: explicit code, mapped category, then Miscellaneous."""
        category = category or "Miscellaneous"
        code = (
            account_code
            or CATEGORY_ACCOUNT_CODES.get(category)
            or settings.DEFAULT_EXPENSE_ACCOUNT_CODE
        )
        account = await self.by_code(code)
        if account is not None:
            return account

        if code.startswith("5"):
            name = f"{category} - COGS"
        else:
            name = f"{category} Expenses"
        account = Account(
            account_code=code,
            account_name=name,
            account_type="expense",
            normal_balance="debit",
        )
        self.db.add(account)
        await self.db.flush()
        logger.info(f"Created expense account {code} {name!r} for category {category!r}")
        return account

    async def bank_chart_account(self, bank_account: BankAccount) -> Account:
        """Chart account linked to a bank account, creating ``1020-<last4>`` if needed."""
        if bank_account.chart_account_id:
            return await self.by_id(bank_account.chart_account_id)

        suffix = (bank_account.account_number or "")[-4:] or bank_account.id.hex[-4:]
        code = f"1020-{suffix}"
        account = await self.by_code(code)
        if account is None:
            account = Account(
                account_code=code,
                account_name=f"Bank - {bank_account.name}",
                account_type="asset",
                normal_balance="debit",
            )
            self.db.add(account)
            await self.db.flush()
            logger.info(f"Created bank chart account {code} for {bank_account.name!r}")
        bank_account.chart_account_id = account.id
        bank_account.chart_account = account
        return account

    async def payment_account(
        self,
        method: str | None,
        bank_account: BankAccount | None = None,
    ) -> Account:
        """Asset account money moves through for a payment method."""
        method = method or "cash"
        if bank_account is not None and method in BANK_METHODS:
            return await self.bank_chart_account(bank_account)

        codes = METHOD_ACCOUNT_CODES.get(method, METHOD_ACCOUNT_CODES["cash"])
        for code in codes:
            account = await self.by_code(code)
            if account is not None:
                return account
        raise AccountResolutionError(
            f"No appropriate account found for payment method: {method}"
        )

    # ------------------------------------------------------------------
    # Bank / cash boxes
    # ------------------------------------------------------------------

    async def bank_account(self, bank_account_id: uuid.UUID) -> BankAccount:
        result = await self.db.execute(
            select(BankAccount).where(BankAccount.id == bank_account_id).with_for_update()
        )
        bank_account = result.scalar_one_or_none()
        if bank_account is None:
            raise SourceDocumentNotFoundError(f"Bank account {bank_account_id} not found")
        return bank_account

    async def cash_box(self, cash_account_id: uuid.UUID | None = None) -> CashAccount | None:
        """Explicit cash box, or the oldest active one when none is given."""
        if cash_account_id is not None:
            result = await self.db.execute(
                select(CashAccount).where(CashAccount.id == cash_account_id).with_for_update()
            )
            cash_account = result.scalar_one_or_none()
            if cash_account is None:
                raise SourceDocumentNotFoundError(f"Cash account {cash_account_id} not found")
            return cash_account

        result = await self.db.execute(
            select(CashAccount)
            .where(CashAccount.is_active == True)
            .order_by(CashAccount.created_at)
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()
