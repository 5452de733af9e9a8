"""
Ledger Error Taxonomy

Every failure the engine reports is one of these. Validation and business-rule
errors are raised before any write; StorageError means the atomic unit was
rolled back.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors"""
    pass


class ValidationError(LedgerError):
    """Bad or missing input: amount, currency, cursor, username, product id"""
    pass


class NotFoundError(LedgerError):
    """Unknown account, recipient or product"""
    pass


class InsufficientFundsError(LedgerError):
    """Raised when a debit would take a balance below zero"""

    def __init__(self, available, requested):
        super().__init__(f"Insufficient funds: available {available}, requested {requested}")
        self.available = available
        self.requested = requested


class ConversionUnavailableError(LedgerError):
    """The rate source could not supply a rate for the requested currency"""
    pass


class StorageError(LedgerError):
    """The atomic unit could not commit; nothing was applied"""
    pass
