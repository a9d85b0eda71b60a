"""Loan ledger calculation tests"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from datetime import date, datetime
import pytest

from config.constants import LoanStatus, TransactionType
from core.errors import (
    AmountExceedsLimitError, BelowMinimumRepaymentError, BelowMinimumSavingsError,
    DuplicateActiveLoanError, ExceedsOutstandingError, InvalidAmountError,
    InvalidLoanStatusError,
)
from core.ledger import (
    apply_for_loan, approve_loan, calc_effective_rate, calc_monthly_repayment,
    calc_total_repayment, compute_eligibility, generate_schedule, is_final_payment,
    process_repayment, split_payment,
)
from data_manager.schema import Settings


def make_loan(amount=1000, term=10, balance=1000, settings=None, **kwargs):
    return apply_for_loan(
        "MB-1", amount, term, settings or Settings(),
        has_active_loan=False, member_savings_balance=balance,
        start_date=kwargs.pop("start_date", date(2024, 1, 15)), **kwargs,
    )


class TestAmortization:
    def test_scenario_1000_at_15_over_10(self):
        total = calc_total_repayment(1000, 15)
        assert total == pytest.approx(1150.00)
        assert calc_monthly_repayment(total, 10) == pytest.approx(115.00)

    @pytest.mark.parametrize("principal,rate,term", [
        (1000, 15, 10), (333.33, 12.5, 7), (50, 0, 3), (12000, 20, 36),
    ])
    def test_installments_add_up_to_total(self, principal, rate, term):
        total = calc_total_repayment(principal, rate)
        assert total == pytest.approx(principal + principal * rate / 100, abs=1e-6)
        assert calc_monthly_repayment(total, term) * term == pytest.approx(total, abs=1e-6)

    @pytest.mark.parametrize("amount,rate", [(115, 15), (77.7, 12.5), (10, 0)])
    def test_split_adds_up(self, amount, rate):
        principal, interest = split_payment(amount, rate)
        assert principal + interest == pytest.approx(amount, abs=1e-6)

    def test_split_at_15_percent(self):
        principal, interest = split_payment(115, 15)
        assert interest == pytest.approx(15.00)
        assert principal == pytest.approx(100.00)

    def test_final_payment_tolerance(self):
        assert is_final_payment(115.0, 115.0)
        assert is_final_payment(115.0009, 115.0)
        assert not is_final_payment(115.002, 115.0)


class TestEligibility:
    def test_at_minimum_is_eligible(self, default_settings):
        result = compute_eligibility(100.0, default_settings)
        assert result.eligible
        assert result.max_loan_amount == pytest.approx(300.0)

    def test_just_below_minimum(self, default_settings):
        result = compute_eligibility(99.99, default_settings)
        assert not result.eligible
        assert result.max_loan_amount == 0

    def test_pure(self, default_settings):
        assert compute_eligibility(250, default_settings) == compute_eligibility(250, default_settings)

    def test_uses_settings_multiplier(self):
        result = compute_eligibility(500, Settings(max_loan_multiplier=2.0, min_required_savings=50))
        assert result.max_loan_amount == pytest.approx(1000.0)


class TestApplyForLoan:
    def test_issues_active_loan(self):
        loan = make_loan()
        assert loan.status == LoanStatus.ACTIVE
        assert loan.total_repayment == pytest.approx(1150.0)
        assert loan.monthly_repayment == pytest.approx(115.0)
        assert loan.outstanding_amount == pytest.approx(loan.total_repayment)
        assert loan.interest_rate == 15.0
        assert loan.due_date == date(2024, 11, 15)

    def test_rate_comes_from_settings(self):
        loan = make_loan(settings=Settings(loan_interest_rate=10.0))
        assert loan.total_repayment == pytest.approx(1100.0)

    def test_due_date_clamps_to_month_end(self):
        loan = make_loan(term=1, start_date=date(2024, 1, 31))
        assert loan.due_date == date(2024, 2, 29)

    def test_numeric_strings_accepted(self):
        loan = make_loan(amount="500", term="6")
        assert loan.principal == 500.0
        assert loan.term_months == 6

    def test_pending_when_not_auto_approved(self):
        assert make_loan(auto_approve=False).status == LoanStatus.PENDING

    def test_duplicate_active_loan(self, default_settings):
        with pytest.raises(DuplicateActiveLoanError):
            apply_for_loan("MB-1", 1, 1, default_settings, has_active_loan=True, member_savings_balance=10_000)

    def test_duplicate_checked_before_amount(self, default_settings):
        with pytest.raises(DuplicateActiveLoanError):
            apply_for_loan("MB-1", -5, 0, default_settings, has_active_loan=True, member_savings_balance=0)

    @pytest.mark.parametrize("amount", [10, 1000, -1])
    def test_below_minimum_savings(self, default_settings, amount):
        with pytest.raises(BelowMinimumSavingsError):
            apply_for_loan("MB-1", amount, 6, default_settings, has_active_loan=False, member_savings_balance=50)

    @pytest.mark.parametrize("amount,term", [
        (0, 6), (-100, 6), ("abc", 6), (float("nan"), 6), (float("inf"), 6),
        (100, 0), (100, -3), (100, 2.5), (100, "six"), (None, 6),
    ])
    def test_invalid_amount(self, amount, term):
        with pytest.raises(InvalidAmountError):
            make_loan(amount=amount, term=term)

    def test_exceeds_limit(self):
        with pytest.raises(AmountExceedsLimitError) as exc:
            make_loan(amount=601, balance=200)
        assert exc.value.details["max_loan_amount"] == pytest.approx(600.0)

    def test_limit_is_inclusive(self):
        assert make_loan(amount=600, balance=200).principal == 600


class TestApproveLoan:
    def test_pending_to_active(self):
        loan = approve_loan(make_loan(auto_approve=False), has_active_loan=False)
        assert loan.status == LoanStatus.ACTIVE

    def test_only_pending_can_be_approved(self):
        with pytest.raises(InvalidLoanStatusError):
            approve_loan(make_loan(), has_active_loan=False)

    def test_blocked_by_other_active_loan(self):
        with pytest.raises(DuplicateActiveLoanError):
            approve_loan(make_loan(auto_approve=False), has_active_loan=True)


class TestProcessRepayment:
    def test_final_payment_scenario(self):
        loan = make_loan().evolve(outstanding_amount=115.0)
        outcome = process_repayment(loan, 115.0, datetime(2024, 3, 1, 10, 0))
        assert outcome.repayment.is_final_payment
        assert outcome.repayment.interest_portion == pytest.approx(15.00)
        assert outcome.repayment.principal_portion == pytest.approx(100.00)
        assert outcome.loan.outstanding_amount == 0
        assert outcome.loan.status == LoanStatus.PAID

    def test_partial_payment(self):
        loan = make_loan()
        outcome = process_repayment(loan, 200)
        assert not outcome.repayment.is_final_payment
        assert outcome.loan.outstanding_amount == pytest.approx(950.0)
        assert outcome.loan.status == LoanStatus.ACTIVE
        assert outcome.repayment.amount == 200

    def test_original_loan_untouched(self):
        loan = make_loan()
        process_repayment(loan, 200)
        assert loan.outstanding_amount == pytest.approx(1150.0)

    def test_marginal_overpayment_books_outstanding(self):
        loan = make_loan().evolve(outstanding_amount=115.0)
        outcome = process_repayment(loan, 115.0008)
        assert outcome.repayment.is_final_payment
        assert outcome.repayment.amount == 115.0
        assert outcome.loan.outstanding_amount == 0

    def test_final_payment_below_installment_allowed(self):
        loan = make_loan().evolve(outstanding_amount=40.0)
        outcome = process_repayment(loan, 40)
        assert outcome.loan.status == LoanStatus.PAID

    def test_below_minimum_repayment(self):
        with pytest.raises(BelowMinimumRepaymentError):
            process_repayment(make_loan(), 100)

    def test_exceeds_outstanding(self):
        with pytest.raises(ExceedsOutstandingError):
            process_repayment(make_loan(), 1150.01)

    @pytest.mark.parametrize("amount", [0, -10, "x", float("nan"), float("inf"), None])
    def test_invalid_amount(self, amount):
        with pytest.raises(InvalidAmountError):
            process_repayment(make_loan(), amount)

    def test_paid_loan_rejects_repayment(self):
        loan = make_loan().evolve(outstanding_amount=0.0, status=LoanStatus.PAID)
        with pytest.raises(InvalidLoanStatusError):
            process_repayment(loan, 10)

    def test_pending_loan_rejects_repayment(self):
        with pytest.raises(InvalidLoanStatusError):
            process_repayment(make_loan(auto_approve=False), 115)

    def test_interest_credited_to_member(self):
        now = datetime(2024, 2, 15, 9, 30)
        outcome = process_repayment(make_loan(), 230, now)
        credit = outcome.interest_credit
        assert credit is not None
        assert credit.member_id == "MB-1"
        assert credit.transaction_type == TransactionType.INTEREST_EARNED.value
        assert credit.amount == pytest.approx(outcome.repayment.interest_portion)
        assert credit.related_loan_id == outcome.loan.loan_id
        assert credit.saving_date == date(2024, 2, 15)

    def test_no_credit_at_zero_rate(self):
        loan = make_loan(settings=Settings(loan_interest_rate=0.0))
        outcome = process_repayment(loan, 100)
        assert outcome.repayment.interest_portion == 0
        assert outcome.interest_credit is None

    def test_repay_to_zero(self):
        loan = make_loan()
        for _ in range(10):
            loan = process_repayment(loan, loan.monthly_repayment).loan
        assert loan.status == LoanStatus.PAID
        assert loan.outstanding_amount == 0


class TestSchedule:
    def test_rows_and_totals(self):
        loan = make_loan(term=3)
        sch = generate_schedule(loan)
        assert len(sch) == 3
        assert list(sch["installment"]) == [383.33, 383.33, 383.34]
        assert sch["installment"].sum() == pytest.approx(1150.0)
        assert sch.iloc[-1]["remaining_balance"] == 0.0
        assert sch.iloc[-1]["cumulative_interest"] == pytest.approx(150.0, abs=0.02)

    def test_due_dates_monthly(self):
        sch = generate_schedule(make_loan(term=2, start_date=date(2024, 1, 31)))
        assert list(sch["due_date"]) == ["2024-02-29", "2024-03-31"]


class TestEffectiveRate:
    def test_flat_rate_costs_more_than_quoted(self):
        loan = make_loan()
        rate = calc_effective_rate(loan.principal, loan.monthly_repayment, loan.term_months)
        assert rate > 15.0

    def test_zero_rate(self):
        assert calc_effective_rate(1000, 100, 10) == 0.0
