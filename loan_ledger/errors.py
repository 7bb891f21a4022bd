"""Exception hierarchy for the loan ledger core."""


class LoanLedgerError(Exception):
    """Base exception for all ledger errors."""


class ValidationError(LoanLedgerError, ValueError):
    """Raised for invalid input: negative or zero amounts, amounts above the
    allowed maximum, missing reason codes. Not retryable."""


class PreconditionError(LoanLedgerError, ValueError):
    """Raised when the loan is not in a state that allows the operation:
    overdue installments blocking a prepayment, edits to a closed loan,
    settlement capital underpayment. Not retryable."""


class ReconciliationError(LoanLedgerError):
    """Raised when a recalculated schedule does not add up to its target.
    Internal fault; the mutation is aborted before anything is persisted."""


class LoanNotFoundError(LoanLedgerError, LookupError):
    """Raised when a referenced loan does not exist."""


class LockTimeoutError(LoanLedgerError):
    """Raised when the per-loan lock could not be obtained in time."""
