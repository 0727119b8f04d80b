"""
Exceptions for the debt ledger.

Every error is a ValueError so callers that catch ValueError around
schedule building or payment processing keep working.
"""

from typing import Any, Dict, Optional


class DebtLedgerError(ValueError):
    """Base exception for all debt ledger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class InvalidTermsError(DebtLedgerError):
    """Raised when debt terms cannot produce a schedule."""
    pass


class InvalidPaymentError(DebtLedgerError):
    """Raised when a payment event is rejected before replay."""
    pass


class DebtNotFoundError(DebtLedgerError):
    """Raised when a debt cannot be found."""

    def __init__(self, debt_id: Any):
        super().__init__(f"Debt {debt_id} not found", {"debt_id": debt_id})
        self.debt_id = debt_id


class InstallmentNotFoundError(DebtLedgerError):
    """Raised when an installment does not exist or belongs to another debt."""

    def __init__(self, installment_id: Any, debt_id: Any = None):
        details = {"installment_id": installment_id}
        if debt_id is not None:
            details["debt_id"] = debt_id
        message = f"Installment {installment_id} not found"
        if debt_id is not None:
            message = f"Installment {installment_id} not found for debt {debt_id}"
        super().__init__(message, details)
        self.installment_id = installment_id
        self.debt_id = debt_id
