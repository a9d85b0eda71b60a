"""Loan ledger: eligibility, flat-rate amortization and repayment splits.

Everything here is a pure calculation over the values passed in. Reading
and writing the tables is left to ``core.loan_service``.
"""
import logging
from datetime import date, datetime
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import optimize

from config.constants import LoanStatus, TransactionType, SCHEDULE_COLUMNS
from config.settings import FINAL_PAYMENT_EPSILON
from core.errors import (
    InvalidAmountError, DuplicateActiveLoanError, BelowMinimumSavingsError,
    AmountExceedsLimitError, BelowMinimumRepaymentError, ExceedsOutstandingError,
    InvalidLoanStatusError,
)
from data_manager.data_validator import coerce_number, validate_amount, validate_term
from data_manager.schema import (
    Eligibility, Loan, RepaymentEntry, RepaymentOutcome, SavingsEntry, Settings,
)
from utils.date_utils import add_months
from utils.id_generator import generate_loan_id, generate_repayment_id, generate_savings_id

logger = logging.getLogger(__name__)


def calc_total_repayment(principal: float, interest_rate: float) -> float:
    """Flat rate: interest is charged once on the full principal."""
    return principal * (1 + interest_rate / 100)


def calc_monthly_repayment(total_repayment: float, term_months: int) -> float:
    return total_repayment / term_months


def split_payment(amount: float, interest_rate: float) -> Tuple[float, float]:
    """Split a payment into (principal, interest).

    Each payment carries the same share of interest as the total repayment
    does, i.e. rate / (1 + rate) of it.
    """
    r = interest_rate / 100
    interest = amount * r / (1 + r)
    return amount - interest, interest


def is_final_payment(amount: float, outstanding: float) -> bool:
    return abs(amount - outstanding) < FINAL_PAYMENT_EPSILON


def compute_eligibility(member_savings_balance: float, settings: Settings) -> Eligibility:
    eligible = member_savings_balance >= settings.min_required_savings
    max_amount = member_savings_balance * settings.max_loan_multiplier if eligible else 0.0
    return Eligibility(eligible=eligible, max_loan_amount=max_amount)


def apply_for_loan(
    member_id: str,
    requested_amount,
    term_months,
    settings: Settings,
    has_active_loan: bool,
    member_savings_balance: float,
    start_date: Optional[date] = None,
    purpose: Optional[str] = None,
    auto_approve: bool = True,
) -> Loan:
    """Build a new loan for the member, or raise the reason it cannot be issued."""
    if has_active_loan:
        logger.debug("loan rejected for %s: active loan exists", member_id)
        raise DuplicateActiveLoanError(member_id)

    eligibility = compute_eligibility(member_savings_balance, settings)
    if not eligibility.eligible:
        logger.debug("loan rejected for %s: savings %.2f", member_id, member_savings_balance)
        raise BelowMinimumSavingsError(member_savings_balance, settings.min_required_savings)

    ok, msg = validate_amount(requested_amount, "requested_amount")
    if not ok:
        raise InvalidAmountError(msg, "requested_amount", requested_amount)
    ok, msg = validate_term(term_months)
    if not ok:
        raise InvalidAmountError(msg, "term_months", term_months)
    amount = coerce_number(requested_amount)[1]
    term = int(coerce_number(term_months)[1])

    if amount > eligibility.max_loan_amount:
        logger.debug("loan rejected for %s: %.2f over limit", member_id, amount)
        raise AmountExceedsLimitError(amount, eligibility.max_loan_amount)

    start = start_date or date.today()
    rate = settings.loan_interest_rate
    total = calc_total_repayment(amount, rate)
    return Loan(
        loan_id=generate_loan_id(),
        member_id=member_id,
        principal=amount,
        term_months=term,
        interest_rate=rate,
        monthly_repayment=calc_monthly_repayment(total, term),
        total_repayment=total,
        outstanding_amount=total,
        status=LoanStatus.ACTIVE if auto_approve else LoanStatus.PENDING,
        start_date=start,
        due_date=add_months(start, term),
        purpose=purpose,
    )


def approve_loan(loan: Loan, has_active_loan: bool) -> Loan:
    if loan.status != LoanStatus.PENDING:
        raise InvalidLoanStatusError(loan.loan_id, loan.status.value, "approve")
    if has_active_loan:
        raise DuplicateActiveLoanError(loan.member_id)
    return loan.evolve(status=LoanStatus.ACTIVE)


def process_repayment(loan: Loan, payment_amount, now: Optional[datetime] = None) -> RepaymentOutcome:
    """Apply one repayment to a loan.

    A payment within FINAL_PAYMENT_EPSILON of the outstanding amount settles
    the loan and is booked as exactly the outstanding amount.
    """
    if loan.status != LoanStatus.ACTIVE:
        raise InvalidLoanStatusError(loan.loan_id, loan.status.value, "repay")

    ok, msg = validate_amount(payment_amount, "payment_amount")
    if not ok:
        raise InvalidAmountError(msg, "payment_amount", payment_amount)
    amount = coerce_number(payment_amount)[1]

    outstanding = loan.outstanding_amount
    final = is_final_payment(amount, outstanding)
    if amount > outstanding + FINAL_PAYMENT_EPSILON:
        raise ExceedsOutstandingError(amount, outstanding)
    if not final and amount < loan.monthly_repayment:
        raise BelowMinimumRepaymentError(amount, loan.monthly_repayment)

    effective = outstanding if final else amount
    principal_part, interest_part = split_payment(effective, loan.interest_rate)
    now = now or datetime.now()

    updated = loan.evolve(
        outstanding_amount=0.0 if final else outstanding - effective,
        status=LoanStatus.PAID if final else LoanStatus.ACTIVE,
    )
    repayment = RepaymentEntry(
        repayment_id=generate_repayment_id(),
        loan_id=loan.loan_id,
        member_id=loan.member_id,
        amount=effective,
        principal_portion=principal_part,
        interest_portion=interest_part,
        repayment_date=now,
        is_final_payment=final,
    )
    credit = None
    if interest_part > 0:
        credit = SavingsEntry(
            entry_id=generate_savings_id(),
            member_id=loan.member_id,
            amount=interest_part,
            saving_date=now.date(),
            transaction_type=TransactionType.INTEREST_EARNED.value,
            related_loan_id=loan.loan_id,
            created_at=now,
        )
    return RepaymentOutcome(loan=updated, repayment=repayment, interest_credit=credit)


def generate_schedule(loan: Loan) -> pd.DataFrame:
    """Expected installment plan; the last period absorbs rounding."""
    term = loan.term_months
    installments = np.full(term, round(loan.monthly_repayment, 2))
    installments[-1] = round(loan.total_repayment - installments[:-1].sum(), 2)

    r = loan.interest_rate / 100
    interest = np.round(installments * r / (1 + r), 2)
    principal = installments - interest
    remaining = np.clip(np.round(loan.total_repayment - np.cumsum(installments), 2), 0, None)

    records = []
    for i in range(term):
        records.append({
            "loan_id": loan.loan_id,
            "period": i + 1,
            "due_date": add_months(loan.start_date, i + 1).isoformat(),
            "installment": float(installments[i]),
            "principal": round(float(principal[i]), 2),
            "interest": float(interest[i]),
            "remaining_balance": float(remaining[i]),
            "cumulative_principal": round(float(principal[: i + 1].sum()), 2),
            "cumulative_interest": round(float(interest[: i + 1].sum()), 2),
        })
    return pd.DataFrame(records, columns=SCHEDULE_COLUMNS)


def calc_effective_rate(principal: float, monthly_repayment: float, term_months: int) -> float:
    """Annualised rate (%) a flat-rate loan really costs, by IRR."""
    if principal <= 0 or term_months <= 0 or monthly_repayment * term_months <= principal:
        return 0.0
    cash_flows = [-principal] + [monthly_repayment] * term_months

    def npv(rate):
        return sum(cf / (1 + rate) ** i for i, cf in enumerate(cash_flows))

    try:
        monthly_irr = optimize.brentq(npv, 1e-9, 1.0)
    except (ValueError, RuntimeError):
        return 0.0
    return round(((1 + monthly_irr) ** 12 - 1) * 100, 4)
