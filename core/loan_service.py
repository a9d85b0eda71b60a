"""Read what the ledger needs, run it, and commit what it returns.

Validation errors from the ledger pass through untouched; anything the
storage layer raises is re-raised as ``PersistenceError``.
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from config.constants import LoanStatus, TransactionType
from config.settings import EXCEL_FILE
from core import ledger
from core.errors import (
    LedgerError, InvalidAmountError, PermissionDeniedError, PersistenceError, RecordNotFoundError,
    ValidationError,
)
from core.statement import savings_balance
from data_manager import excel_handler as store
from data_manager.data_validator import (
    coerce_number, validate_meeting, validate_member, validate_savings_entry, validate_settings,
)
from data_manager.schema import (
    Fine, Loan, Meeting, Member, RepaymentEntry, RepaymentOutcome, SavingsEntry, Settings,
)
from utils.id_generator import (
    generate_fine_id, generate_meeting_id, generate_member_id, generate_savings_id,
)

logger = logging.getLogger(__name__)


@contextmanager
def _storage(operation: str, table: str):
    try:
        yield
    except LedgerError:
        raise
    except Exception as exc:
        logger.error("%s on %s failed: %s", operation, table, exc)
        raise PersistenceError(f"Could not {operation} {table}: {exc}", operation, table) from exc


# ---- Members ----

def register_member(
    first_name: str,
    last_name: str = "",
    phone: Optional[str] = None,
    email: Optional[str] = None,
    is_executive: bool = False,
    filepath: Path = EXCEL_FILE,
) -> Member:
    ok, msg = validate_member(first_name, phone, email)
    if not ok:
        raise ValidationError(msg)
    member = Member(
        member_id=generate_member_id(),
        first_name=first_name.strip(),
        last_name=(last_name or "").strip(),
        phone=phone.strip() if phone else None,
        email=email.strip() if email else None,
        is_executive=is_executive,
    )
    with _storage("save", "members"):
        store.save_member(member, filepath)
    logger.info("registered member %s (%s)", member.member_id, member.full_name)
    return member


def get_member(member_id: str, filepath: Path = EXCEL_FILE) -> Member:
    with _storage("read", "members"):
        member = store.get_member(member_id, filepath)
    if member is None:
        raise RecordNotFoundError("member", member_id)
    return member


# ---- Savings ----

def record_deposit(
    member_id: str,
    amount,
    saving_date: Optional[date] = None,
    proof_reference: Optional[str] = None,
    filepath: Path = EXCEL_FILE,
) -> SavingsEntry:
    ok, msg = validate_savings_entry(amount, TransactionType.DEPOSIT.value)
    if not ok:
        raise InvalidAmountError(msg, "amount", amount)
    get_member(member_id, filepath)
    entry = SavingsEntry(
        entry_id=generate_savings_id(),
        member_id=member_id,
        amount=coerce_number(amount)[1],
        saving_date=saving_date or date.today(),
        transaction_type=TransactionType.DEPOSIT.value,
        proof_reference=proof_reference or None,
    )
    with _storage("append", "savings"):
        store.add_savings_entry(entry, filepath)
    logger.info("deposit %.2f for %s", entry.amount, member_id)
    return entry


def list_members(filepath: Path = EXCEL_FILE) -> List[Member]:
    with _storage("read", "members"):
        return store.get_all_members(filepath)


def get_member_savings(member_id: str, filepath: Path = EXCEL_FILE) -> List[SavingsEntry]:
    with _storage("read", "savings"):
        return store.get_savings(member_id, filepath)


def get_member_savings_balance(member_id: str, filepath: Path = EXCEL_FILE) -> float:
    return savings_balance(get_member_savings(member_id, filepath))


# ---- Settings ----

def get_settings(filepath: Path = EXCEL_FILE) -> Settings:
    with _storage("read", "settings"):
        return store.get_current_settings(filepath)


def update_settings(
    loan_interest_rate: Optional[float] = None,
    max_loan_multiplier: Optional[float] = None,
    min_required_savings: Optional[float] = None,
    cycle_tenure_months: Optional[int] = None,
    filepath: Path = EXCEL_FILE,
) -> Settings:
    """Append a new settings version; unspecified values carry over from the current one"""
    current = get_settings(filepath)
    new = Settings(
        loan_interest_rate=current.loan_interest_rate if loan_interest_rate is None else float(loan_interest_rate),
        max_loan_multiplier=current.max_loan_multiplier if max_loan_multiplier is None else float(max_loan_multiplier),
        min_required_savings=current.min_required_savings if min_required_savings is None else float(min_required_savings),
        cycle_tenure_months=current.cycle_tenure_months if cycle_tenure_months is None else int(cycle_tenure_months),
        created_at=datetime.now(),
    )
    ok, msg = validate_settings(
        new.loan_interest_rate, new.max_loan_multiplier,
        new.min_required_savings, new.cycle_tenure_months,
    )
    if not ok:
        raise ValidationError(msg)
    with _storage("append", "settings"):
        store.add_settings(new, filepath)
    logger.info(
        "settings updated: rate=%s multiplier=%s min_savings=%s tenure=%s",
        new.loan_interest_rate, new.max_loan_multiplier,
        new.min_required_savings, new.cycle_tenure_months,
    )
    return new


# ---- Loans ----

def get_loan(loan_id: str, filepath: Path = EXCEL_FILE) -> Loan:
    with _storage("read", "loans"):
        loan = store.get_loan(loan_id, filepath)
    if loan is None:
        raise RecordNotFoundError("loan", loan_id)
    return loan


def list_loans(member_id: Optional[str] = None, filepath: Path = EXCEL_FILE) -> List[Loan]:
    with _storage("read", "loans"):
        return store.get_loans(member_id, filepath)


def get_member_loans(member_id: str, filepath: Path = EXCEL_FILE) -> List[Loan]:
    return list_loans(member_id, filepath)


def get_loan_repayments(loan_id: str, filepath: Path = EXCEL_FILE) -> List[RepaymentEntry]:
    with _storage("read", "loan_repayments"):
        return store.get_repayments(loan_id=loan_id, filepath=filepath)


def get_member_repayments(member_id: str, filepath: Path = EXCEL_FILE) -> List[RepaymentEntry]:
    with _storage("read", "loan_repayments"):
        return store.get_repayments(member_id=member_id, filepath=filepath)


def check_eligibility(member_id: str, filepath: Path = EXCEL_FILE):
    get_member(member_id, filepath)
    return ledger.compute_eligibility(
        get_member_savings_balance(member_id, filepath), get_settings(filepath),
    )


def apply_for_member_loan(
    member_id: str,
    amount,
    term_months,
    purpose: Optional[str] = None,
    start_date: Optional[date] = None,
    auto_approve: bool = True,
    record_disbursement: bool = True,
    filepath: Path = EXCEL_FILE,
) -> Loan:
    get_member(member_id, filepath)
    balance = get_member_savings_balance(member_id, filepath)
    settings = get_settings(filepath)
    with _storage("read", "loans"):
        active = store.get_active_loan(member_id, filepath)

    loan = ledger.apply_for_loan(
        member_id, amount, term_months, settings,
        has_active_loan=active is not None,
        member_savings_balance=balance,
        start_date=start_date,
        purpose=purpose,
        auto_approve=auto_approve,
    )
    disbursement = None
    if record_disbursement and loan.status == LoanStatus.ACTIVE:
        disbursement = _disbursement_entry(loan)
    with _storage("save", "loans"):
        store.save_loan(loan, disbursement, filepath)
    logger.info(
        "loan %s issued to %s: principal=%.2f total=%.2f term=%d status=%s",
        loan.loan_id, member_id, loan.principal, loan.total_repayment,
        loan.term_months, loan.status.value,
    )
    return loan


def approve_member_loan(loan_id: str, record_disbursement: bool = True, filepath: Path = EXCEL_FILE) -> Loan:
    loan = get_loan(loan_id, filepath)
    with _storage("read", "loans"):
        active = store.get_active_loan(loan.member_id, filepath)
    approved = ledger.approve_loan(loan, has_active_loan=active is not None)
    disbursement = _disbursement_entry(approved) if record_disbursement else None
    with _storage("save", "loans"):
        store.save_loan(approved, disbursement, filepath)
    logger.info("loan %s approved", loan_id)
    return approved


def _disbursement_entry(loan: Loan) -> SavingsEntry:
    return SavingsEntry(
        entry_id=generate_savings_id(),
        member_id=loan.member_id,
        amount=loan.principal,
        saving_date=date.today(),
        transaction_type=TransactionType.LOAN_DISBURSEMENT.value,
        related_loan_id=loan.loan_id,
    )


def repay_loan(loan_id: str, amount, now: Optional[datetime] = None, filepath: Path = EXCEL_FILE) -> RepaymentOutcome:
    loan = get_loan(loan_id, filepath)
    outcome = ledger.process_repayment(loan, amount, now)
    with _storage("commit", "loan_repayments"):
        store.record_repayment(outcome, loan.outstanding_amount, filepath)
    logger.info(
        "repayment %.2f on %s (principal %.2f, interest %.2f), outstanding now %.2f",
        outcome.repayment.amount, loan_id, outcome.repayment.principal_portion,
        outcome.repayment.interest_portion, outcome.loan.outstanding_amount,
    )
    if outcome.repayment.is_final_payment:
        logger.info("loan %s paid off", loan_id)
    return outcome


# ---- Fines ----

def issue_fine(
    member_id: str,
    amount,
    reason: str,
    due_date: Optional[date] = None,
    filepath: Path = EXCEL_FILE,
) -> Fine:
    ok, number = coerce_number(amount)
    if not ok or number <= 0:
        raise InvalidAmountError("Fine amount must be greater than 0", "amount", amount)
    get_member(member_id, filepath)
    fine = Fine(
        fine_id=generate_fine_id(),
        member_id=member_id,
        amount=number,
        reason=reason,
        due_date=due_date,
    )
    with _storage("save", "fines"):
        store.save_fine(fine, filepath)
    logger.info("fine %s of %.2f issued to %s", fine.fine_id, number, member_id)
    return fine


def list_fines(member_id: Optional[str] = None, filepath: Path = EXCEL_FILE) -> List[Fine]:
    with _storage("read", "fines"):
        return store.get_fines(member_id, filepath)


def pay_fine(fine_id: str, filepath: Path = EXCEL_FILE) -> Fine:
    with _storage("read", "fines"):
        fines = {f.fine_id: f for f in store.get_fines(filepath=filepath)}
    if fine_id not in fines:
        raise RecordNotFoundError("fine", fine_id)
    fine = fines[fine_id]
    if fine.paid:
        raise ValidationError(f"Fine {fine_id} is already paid")
    fine.paid = True
    with _storage("save", "fines"):
        store.save_fine(fine, filepath)
    logger.info("fine %s paid", fine_id)
    return fine


# ---- Meetings ----

def schedule_meeting(
    member_id: str,
    agenda: str,
    minutes: str,
    meeting_date: date,
    filepath: Path = EXCEL_FILE,
) -> Meeting:
    """Record a group meeting. Only executive members may do this."""
    member = get_member(member_id, filepath)
    if not member.is_executive:
        raise PermissionDeniedError(member_id, "schedule meetings")
    ok, msg = validate_meeting(agenda, minutes, meeting_date)
    if not ok:
        raise ValidationError(msg)
    meeting = Meeting(
        meeting_id=generate_meeting_id(),
        agenda=agenda.strip(),
        minutes=minutes.strip(),
        meeting_date=meeting_date,
        created_by=member_id,
    )
    with _storage("save", "meetings"):
        store.save_meeting(meeting, filepath)
    logger.info("meeting %s on %s recorded by %s", meeting.meeting_id, meeting_date, member_id)
    return meeting


def list_meetings(filepath: Path = EXCEL_FILE) -> List[Meeting]:
    """Meetings, newest meeting date first"""
    with _storage("read", "meetings"):
        meetings = store.get_meetings(filepath)
    return sorted(meetings, key=lambda m: (m.meeting_date or date.min, m.created_at), reverse=True)
