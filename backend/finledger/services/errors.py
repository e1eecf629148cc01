"""Ledger service errors.

Every service failure raises one of these. ``finledger.main`` maps them to
HTTP responses via ``status_code`` and ``code``.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger service failures."""

    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PostingValidationError(LedgerError):
    """Raised when posting input is invalid (amount, line shape, balance)."""

    status_code = 422
    code = "INVALID_POSTING"


class AccountResolutionError(LedgerError):
    """Raised when an expected account cannot be resolved."""

    status_code = 422
    code = "ACCOUNT_RESOLUTION_FAILED"


class SourceDocumentNotFoundError(LedgerError):
    """Raised when the document or account an operation targets does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class DuplicatePostingError(LedgerError):
    """Raised when a source document already has a live journal entry."""

    status_code = 409
    code = "DUPLICATE_POSTING"


class LedgerInconsistencyError(LedgerError):
    """Raised when ledger state does not allow the requested operation."""

    status_code = 409
    code = "LEDGER_INCONSISTENT"


class AmbiguousMatchError(LedgerInconsistencyError):
    """Raised when reversal matching finds more than one candidate row."""

    code = "AMBIGUOUS_MATCH"
