from dataclasses import dataclass, field, asdict, replace
from datetime import date, datetime
from typing import Optional

import pandas as pd

from config.constants import LoanStatus
from config.settings import (
    DEFAULT_LOAN_INTEREST_RATE, DEFAULT_MAX_LOAN_MULTIPLIER,
    DEFAULT_MIN_REQUIRED_SAVINGS, DEFAULT_CYCLE_TENURE_MONTHS,
)
from utils.date_utils import parse_date, parse_datetime


def _opt_str(value) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    value = str(value)
    return value or None


def _bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if value is None or pd.isna(value):
        return False
    return bool(value)


def _to_row(record) -> dict:
    """dataclass -> sheet row, dates as ISO strings"""
    row = asdict(record)
    for key, value in row.items():
        if isinstance(value, (date, datetime)):
            row[key] = value.isoformat()
        elif isinstance(value, LoanStatus):
            row[key] = value.value
    return row


@dataclass
class Member:
    member_id: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    is_executive: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "Member":
        return cls(
            member_id=str(row["member_id"]),
            first_name=str(row["first_name"]),
            last_name=_opt_str(row.get("last_name")) or "",
            phone=_opt_str(row.get("phone")),
            email=_opt_str(row.get("email")),
            is_executive=_bool(row.get("is_executive")),
            created_at=parse_datetime(row.get("created_at")) or datetime.now(),
        )


@dataclass
class SavingsEntry:
    entry_id: str
    member_id: str
    amount: float
    saving_date: date
    transaction_type: str  # deposit / loan_disbursement / interest_earned
    proof_reference: Optional[str] = None
    related_loan_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "SavingsEntry":
        return cls(
            entry_id=str(row["entry_id"]),
            member_id=str(row["member_id"]),
            amount=float(row["amount"]),
            saving_date=parse_date(row["saving_date"]),
            transaction_type=str(row["transaction_type"]),
            proof_reference=_opt_str(row.get("proof_reference")),
            related_loan_id=_opt_str(row.get("related_loan_id")),
            created_at=parse_datetime(row.get("created_at")) or datetime.now(),
        )


@dataclass
class Loan:
    loan_id: str
    member_id: str
    principal: float
    term_months: int
    interest_rate: float  # percent
    monthly_repayment: float
    total_repayment: float
    outstanding_amount: float
    status: LoanStatus
    start_date: date
    due_date: date
    purpose: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def evolve(self, **changes) -> "Loan":
        return replace(self, **changes)

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "Loan":
        return cls(
            loan_id=str(row["loan_id"]),
            member_id=str(row["member_id"]),
            principal=float(row["principal"]),
            term_months=int(row["term_months"]),
            interest_rate=float(row["interest_rate"]),
            monthly_repayment=float(row["monthly_repayment"]),
            total_repayment=float(row["total_repayment"]),
            outstanding_amount=float(row["outstanding_amount"]),
            status=LoanStatus.normalize(row["status"]),
            start_date=parse_date(row["start_date"]),
            due_date=parse_date(row["due_date"]),
            purpose=_opt_str(row.get("purpose")),
            created_at=parse_datetime(row.get("created_at")) or datetime.now(),
        )


@dataclass
class RepaymentEntry:
    repayment_id: str
    loan_id: str
    member_id: str
    amount: float
    principal_portion: float
    interest_portion: float
    repayment_date: datetime
    is_final_payment: bool = False

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "RepaymentEntry":
        return cls(
            repayment_id=str(row["repayment_id"]),
            loan_id=str(row["loan_id"]),
            member_id=str(row["member_id"]),
            amount=float(row["amount"]),
            principal_portion=float(row["principal_portion"]),
            interest_portion=float(row["interest_portion"]),
            repayment_date=parse_datetime(row["repayment_date"]),
            is_final_payment=_bool(row.get("is_final_payment")),
        )


@dataclass
class Settings:
    loan_interest_rate: float = DEFAULT_LOAN_INTEREST_RATE
    max_loan_multiplier: float = DEFAULT_MAX_LOAN_MULTIPLIER
    min_required_savings: float = DEFAULT_MIN_REQUIRED_SAVINGS
    cycle_tenure_months: int = DEFAULT_CYCLE_TENURE_MONTHS
    created_at: Optional[datetime] = None

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "Settings":
        return cls(
            loan_interest_rate=float(row["loan_interest_rate"]),
            max_loan_multiplier=float(row["max_loan_multiplier"]),
            min_required_savings=float(row["min_required_savings"]),
            cycle_tenure_months=int(row["cycle_tenure_months"]),
            created_at=parse_datetime(row.get("created_at")),
        )


@dataclass
class Fine:
    fine_id: str
    member_id: str
    amount: float
    reason: str
    due_date: Optional[date] = None
    paid: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "Fine":
        return cls(
            fine_id=str(row["fine_id"]),
            member_id=str(row["member_id"]),
            amount=float(row["amount"]),
            reason=_opt_str(row.get("reason")) or "",
            due_date=parse_date(row.get("due_date")),
            paid=_bool(row.get("paid")),
            created_at=parse_datetime(row.get("created_at")) or datetime.now(),
        )


@dataclass
class Meeting:
    meeting_id: str
    agenda: str
    minutes: str
    meeting_date: date
    created_by: str
    created_at: datetime = field(default_factory=datetime.now)

    def to_row(self) -> dict:
        return _to_row(self)

    @classmethod
    def from_row(cls, row) -> "Meeting":
        return cls(
            meeting_id=str(row["meeting_id"]),
            agenda=_opt_str(row.get("agenda")) or "",
            minutes=_opt_str(row.get("minutes")) or "",
            meeting_date=parse_date(row.get("meeting_date")),
            created_by=str(row["created_by"]),
            created_at=parse_datetime(row.get("created_at")) or datetime.now(),
        )


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    max_loan_amount: float


@dataclass(frozen=True)
class RepaymentOutcome:
    """Everything a repayment writes: the loan update, the repayment row and the interest credit."""
    loan: Loan
    repayment: RepaymentEntry
    interest_credit: Optional[SavingsEntry] = None
