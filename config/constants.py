from enum import Enum


class LoanStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAID = "paid"

    @property
    def label(self) -> str:
        return {
            "pending": "Awaiting approval",
            "active": "Repaying",
            "paid": "Paid off",
        }[self.value]

    @classmethod
    def normalize(cls, value: str) -> "LoanStatus":
        """Older records use "cleared" (and "approved") for the same states."""
        value = str(value).strip().lower()
        return cls(LEGACY_STATUS_ALIASES.get(value, value))


LEGACY_STATUS_ALIASES = {
    "cleared": LoanStatus.PAID.value,
    "approved": LoanStatus.ACTIVE.value,
}


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    LOAN_DISBURSEMENT = "loan_disbursement"
    INTEREST_EARNED = "interest_earned"

    @property
    def label(self) -> str:
        return {
            "deposit": "Savings Deposit",
            "loan_disbursement": "Loan Disbursement",
            "interest_earned": "Interest Earned",
        }[self.value]


# Entries that count towards a member's savings balance
BALANCE_TRANSACTION_TYPES = (
    TransactionType.DEPOSIT.value,
    TransactionType.INTEREST_EARNED.value,
)


class HistoryKind(str, Enum):
    ALL = "all"
    SAVINGS = "savings"
    LOANS = "loans"


class HistoryEntryType(str, Enum):
    SAVINGS = "savings"
    INTEREST = "interest_earned"
    LOAN_ISSUED = "loan_issued"
    LOAN_REPAYMENT = "loan_repayment"

    @property
    def label(self) -> str:
        return {
            "savings": "Savings Deposit",
            "interest_earned": "Interest Earned",
            "loan_issued": "Loan Received",
            "loan_repayment": "Loan Repayment",
        }[self.value]


# Sheet names
SHEET_MEMBERS = "members"
SHEET_SAVINGS = "savings"
SHEET_LOANS = "loans"
SHEET_REPAYMENTS = "loan_repayments"
SHEET_SETTINGS = "settings"
SHEET_FINES = "fines"
SHEET_MEETINGS = "meetings"

# Column definitions
MEMBERS_COLUMNS = [
    "member_id", "first_name", "last_name", "phone", "email",
    "is_executive", "created_at",
]

SAVINGS_COLUMNS = [
    "entry_id", "member_id", "amount", "saving_date", "transaction_type",
    "proof_reference", "related_loan_id", "created_at",
]

LOANS_COLUMNS = [
    "loan_id", "member_id", "principal", "term_months", "interest_rate",
    "monthly_repayment", "total_repayment", "outstanding_amount", "status",
    "start_date", "due_date", "purpose", "created_at",
]

REPAYMENTS_COLUMNS = [
    "repayment_id", "loan_id", "member_id", "amount", "principal_portion",
    "interest_portion", "repayment_date", "is_final_payment",
]

SETTINGS_COLUMNS = [
    "loan_interest_rate", "max_loan_multiplier", "min_required_savings",
    "cycle_tenure_months", "created_at",
]

FINES_COLUMNS = [
    "fine_id", "member_id", "amount", "reason", "due_date", "paid", "created_at",
]

MEETINGS_COLUMNS = [
    "meeting_id", "agenda", "minutes", "meeting_date", "created_by", "created_at",
]

# Numeric columns read back as float so fractional amounts can be written in place
FLOAT_COLUMNS = {
    "principal", "interest_rate", "monthly_repayment", "total_repayment",
    "outstanding_amount", "amount", "principal_portion", "interest_portion",
    "loan_interest_rate", "max_loan_multiplier", "min_required_savings",
}

SCHEDULE_COLUMNS = [
    "loan_id", "period", "due_date", "installment", "principal",
    "interest", "remaining_balance", "cumulative_principal", "cumulative_interest",
]

HISTORY_COLUMNS = [
    "entry_id", "type", "title", "date", "amount", "loan_id", "loan_amount",
]

SHEET_COLUMNS = {
    SHEET_MEMBERS: MEMBERS_COLUMNS,
    SHEET_SAVINGS: SAVINGS_COLUMNS,
    SHEET_LOANS: LOANS_COLUMNS,
    SHEET_REPAYMENTS: REPAYMENTS_COLUMNS,
    SHEET_SETTINGS: SETTINGS_COLUMNS,
    SHEET_FINES: FINES_COLUMNS,
    SHEET_MEETINGS: MEETINGS_COLUMNS,
}
