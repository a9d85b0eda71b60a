"""Ledger exceptions.

Validation errors are raised before anything is written. ``PersistenceError``
wraps whatever the storage layer raised, so callers can tell a rejected
request from an infrastructure failure.
"""
from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"

    def __init__(self, message: str, field_name: Optional[str] = None, value=None):
        super().__init__(message, {"field_name": field_name, "value": value})


class DuplicateActiveLoanError(ValidationError):
    code = "DUPLICATE_ACTIVE_LOAN"

    def __init__(self, member_id: str):
        super().__init__(
            f"Member {member_id} already has an active loan",
            {"member_id": member_id},
        )


class BelowMinimumSavingsError(ValidationError):
    code = "BELOW_MINIMUM_SAVINGS"

    def __init__(self, savings_balance: float, min_required: float):
        super().__init__(
            f"Savings of {savings_balance:.2f} are below the required minimum of {min_required:.2f}",
            {"savings_balance": savings_balance, "min_required_savings": min_required},
        )


class AmountExceedsLimitError(ValidationError):
    code = "AMOUNT_EXCEEDS_LIMIT"

    def __init__(self, requested: float, max_loan_amount: float):
        super().__init__(
            f"Requested {requested:.2f} exceeds the loan limit of {max_loan_amount:.2f}",
            {"requested_amount": requested, "max_loan_amount": max_loan_amount},
        )


class BelowMinimumRepaymentError(ValidationError):
    code = "BELOW_MINIMUM_REPAYMENT"

    def __init__(self, amount: float, min_repayment: float):
        super().__init__(
            f"Repayment of {amount:.2f} is below the monthly installment of {min_repayment:.2f}",
            {"amount": amount, "min_repayment": min_repayment},
        )


class ExceedsOutstandingError(ValidationError):
    code = "EXCEEDS_OUTSTANDING"

    def __init__(self, amount: float, outstanding: float):
        super().__init__(
            f"Repayment of {amount:.2f} exceeds the outstanding balance of {outstanding:.2f}",
            {"amount": amount, "outstanding_amount": outstanding},
        )


class InvalidLoanStatusError(ValidationError):
    code = "INVALID_LOAN_STATUS"

    def __init__(self, loan_id: str, status: str, operation: str):
        super().__init__(
            f"Cannot {operation} loan {loan_id} while it is {status}",
            {"loan_id": loan_id, "status": status, "operation": operation},
        )


class RecordNotFoundError(LedgerError):
    code = "RECORD_NOT_FOUND"

    def __init__(self, record_type: str, record_id: str):
        super().__init__(
            f"No {record_type} with id {record_id}",
            {"record_type": record_type, "record_id": record_id},
        )


class PermissionDeniedError(LedgerError):
    code = "PERMISSION_DENIED"

    def __init__(self, member_id: str, operation: str):
        super().__init__(
            f"Member {member_id} is not allowed to {operation}",
            {"member_id": member_id, "operation": operation},
        )


class PersistenceError(LedgerError):
    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, operation: Optional[str] = None, table: Optional[str] = None):
        super().__init__(message, {"operation": operation, "table": table})


class ConcurrentUpdateError(PersistenceError):
    code = "CONCURRENT_UPDATE"

    def __init__(self, loan_id: str, expected: float, found: float):
        super().__init__(
            f"Loan {loan_id} changed while the repayment was being processed "
            f"(expected outstanding {expected:.2f}, found {found:.2f})",
            operation="update",
            table="loans",
        )
        self.details.update({"loan_id": loan_id, "expected": expected, "found": found})
