"""
RBAC Permission Registry — finledger

Defines the canonical role-to-permission mapping.

Permission string format: {module}.{resource}.{action}
"""
from __future__ import annotations

# ---------------------------------------------------------------------------
# All permission strings used across the system
# ---------------------------------------------------------------------------

ALL_PERMISSIONS: list[str] = sorted([
    # General Ledger
    "gl.accounts.view",
    "gl.accounts.create",
    "gl.accounts.update",
    "gl.journal_entries.view",
    "gl.journal_entries.create",
    "gl.journal_entries.reverse",
    "gl.trial_balance.view",
    # Finance documents
    "finance.expenses.view",
    "finance.expenses.manage",
    "finance.invoices.view",
    "finance.invoices.manage",
    "finance.payments.manage",
    "finance.refunds.manage",
    # Procurement
    "vendors.view",
    "vendors.manage",
    "vendors.bills.manage",
    "vendors.payments.manage",
    # Banking
    "banking.accounts.view",
    "banking.accounts.manage",
    # Reports
    "reports.financial.view",
    "reports.reconciliation.view",
    "reports.reconciliation.fix",
])

_READ_ONLY: set[str] = {
    "gl.accounts.view",
    "gl.journal_entries.view",
    "gl.trial_balance.view",
    "finance.expenses.view",
    "finance.invoices.view",
    "vendors.view",
    "banking.accounts.view",
    "reports.financial.view",
}


# ---------------------------------------------------------------------------
# Role → Permissions mapping (source of truth)
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[str, set[str]] = {
    # ── System Admin ─────────────────────────────────────────────────────
    # Full access, including balance repair.
    "system_admin": set(ALL_PERMISSIONS),

    # ── Accountant ───────────────────────────────────────────────────────
    # Maintains the chart, posts manual entries, records every document.
    "accountant": _READ_ONLY | {
        "gl.accounts.create", "gl.accounts.update",
        "gl.journal_entries.create", "gl.journal_entries.reverse",
        "finance.expenses.manage", "finance.invoices.manage",
        "finance.payments.manage", "finance.refunds.manage",
        "vendors.manage", "vendors.bills.manage", "vendors.payments.manage",
        "banking.accounts.manage",
        "reports.reconciliation.view",
    },

    # ── Clerk ────────────────────────────────────────────────────────────
    # Records day-to-day documents.  No GL maintenance, no reports.
    "clerk": {
        "gl.accounts.view",
        "finance.expenses.view", "finance.expenses.manage",
        "finance.invoices.view", "finance.invoices.manage",
        "finance.payments.manage",
        "vendors.view", "vendors.bills.manage", "vendors.payments.manage",
        "banking.accounts.view",
    },

    # ── Viewer ───────────────────────────────────────────────────────────
    # Read-only.
    "viewer": set(_READ_ONLY),
}


# ---------------------------------------------------------------------------
# Valid role names (for validation)
# ---------------------------------------------------------------------------

VALID_ROLES: list[str] = sorted(ROLE_PERMISSIONS.keys())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_role_permissions(role: str) -> set[str]:
    """Return the base permission set for a role, or empty set if unknown."""
    return ROLE_PERMISSIONS.get(role, set())
