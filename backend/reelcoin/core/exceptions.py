"""Typed ledger errors surfaced to callers"""


class LedgerError(Exception):
    """Base class for errors a caller can act on.

    ``message`` is safe to show to users; diagnostic detail belongs in logs.
    """
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Malformed input: bad amounts, unknown transfer code, self-transfer, unknown item"""
    code = "validation_error"
    status_code = 400


class AccountNotFoundError(LedgerError):
    code = "account_not_found"
    status_code = 404


class InsufficientBalanceError(LedgerError):
    code = "insufficient_balance"
    status_code = 402


class ConflictError(LedgerError):
    """A concurrent mutation invalidated the read, even after one retry"""
    code = "conflict"
    status_code = 409


class UpstreamUnavailableError(LedgerError):
    """Database or payment collaborator unreachable. Safe to retry."""
    code = "upstream_unavailable"
    status_code = 503
