"""Service layer tests: ledger + storage together"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from datetime import date, datetime

import pytest

from config.constants import LoanStatus, TransactionType
from core import loan_service
from core.errors import (
    BelowMinimumRepaymentError, BelowMinimumSavingsError, ConcurrentUpdateError,
    DuplicateActiveLoanError, InvalidAmountError, PermissionDeniedError, PersistenceError,
    RecordNotFoundError, ValidationError,
)
from data_manager import excel_handler


@pytest.fixture
def member(temp_excel):
    return loan_service.register_member("Mutale", "Banda", phone="0966000111", filepath=temp_excel)


@pytest.fixture
def saver(temp_excel, member):
    loan_service.record_deposit(member.member_id, 500, date(2024, 1, 5), filepath=temp_excel)
    return member


class TestMembers:
    def test_register(self, temp_excel, member):
        stored = loan_service.get_member(member.member_id, temp_excel)
        assert stored.full_name == "Mutale Banda"
        assert [m.member_id for m in loan_service.list_members(temp_excel)] == [member.member_id]

    def test_register_requires_name(self, temp_excel):
        with pytest.raises(ValidationError):
            loan_service.register_member("  ", filepath=temp_excel)

    def test_unknown_member(self, temp_excel):
        with pytest.raises(RecordNotFoundError):
            loan_service.get_member("MB-missing", temp_excel)


class TestDeposits:
    def test_balance_sums_deposits(self, temp_excel, member):
        loan_service.record_deposit(member.member_id, 120, filepath=temp_excel)
        loan_service.record_deposit(member.member_id, "30.5", filepath=temp_excel)
        assert loan_service.get_member_savings_balance(member.member_id, temp_excel) == pytest.approx(150.5)

    @pytest.mark.parametrize("amount", [0, -5, "ten"])
    def test_invalid_deposit(self, temp_excel, member, amount):
        with pytest.raises(InvalidAmountError):
            loan_service.record_deposit(member.member_id, amount, filepath=temp_excel)

    def test_deposit_for_unknown_member(self, temp_excel):
        with pytest.raises(RecordNotFoundError):
            loan_service.record_deposit("MB-missing", 100, filepath=temp_excel)


class TestLoanLifecycle:
    def test_apply_records_disbursement_without_changing_balance(self, temp_excel, saver):
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, "seed", filepath=temp_excel)
        assert loan.status == LoanStatus.ACTIVE
        assert loan.total_repayment == pytest.approx(1150.0)

        entries = loan_service.get_member_savings(saver.member_id, temp_excel)
        assert [e.transaction_type for e in entries] == ["deposit", "loan_disbursement"]
        assert loan_service.get_member_savings_balance(saver.member_id, temp_excel) == pytest.approx(500.0)

    def test_second_loan_rejected(self, temp_excel, saver):
        loan_service.apply_for_member_loan(saver.member_id, 100, 2, filepath=temp_excel)
        with pytest.raises(DuplicateActiveLoanError):
            loan_service.apply_for_member_loan(saver.member_id, 100, 2, filepath=temp_excel)

    def test_low_savings_rejected(self, temp_excel, member):
        loan_service.record_deposit(member.member_id, 50, filepath=temp_excel)
        with pytest.raises(BelowMinimumSavingsError):
            loan_service.apply_for_member_loan(member.member_id, 10, 2, filepath=temp_excel)
        assert loan_service.list_loans(filepath=temp_excel) == []

    def test_repay_until_paid(self, temp_excel, saver):
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, filepath=temp_excel)

        first = loan_service.repay_loan(loan.loan_id, 115, datetime(2024, 2, 1), filepath=temp_excel)
        assert first.loan.outstanding_amount == pytest.approx(1035.0)
        assert loan_service.get_loan(loan.loan_id, temp_excel).outstanding_amount == pytest.approx(1035.0)
        assert loan_service.get_member_savings_balance(saver.member_id, temp_excel) == pytest.approx(515.0)

        last = loan_service.repay_loan(loan.loan_id, 1035, datetime(2024, 3, 1), filepath=temp_excel)
        assert last.repayment.is_final_payment
        stored = loan_service.get_loan(loan.loan_id, temp_excel)
        assert stored.status == LoanStatus.PAID
        assert stored.outstanding_amount == 0
        assert loan_service.get_member_savings_balance(saver.member_id, temp_excel) == pytest.approx(650.0)

        repayments = loan_service.get_loan_repayments(loan.loan_id, temp_excel)
        assert sum(r.amount for r in repayments) == pytest.approx(1150.0)
        assert sum(r.principal_portion for r in repayments) == pytest.approx(1000.0)

        # a paid loan no longer blocks a new one
        loan_service.apply_for_member_loan(saver.member_id, 100, 2, filepath=temp_excel)

    def test_fractional_repayment_is_stored(self, temp_excel, saver):
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, filepath=temp_excel)
        outcome = loan_service.repay_loan(loan.loan_id, 200.5, filepath=temp_excel)
        assert outcome.loan.outstanding_amount == pytest.approx(949.5)
        stored = loan_service.get_loan(loan.loan_id, temp_excel)
        assert stored.outstanding_amount == pytest.approx(949.5)
        assert stored.status == LoanStatus.ACTIVE

        loan_service.repay_loan(loan.loan_id, 949.5, filepath=temp_excel)
        assert loan_service.get_loan(loan.loan_id, temp_excel).status == LoanStatus.PAID

    def test_rejected_repayment_writes_nothing(self, temp_excel, saver):
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, filepath=temp_excel)
        with pytest.raises(BelowMinimumRepaymentError):
            loan_service.repay_loan(loan.loan_id, 50, filepath=temp_excel)
        assert loan_service.get_loan_repayments(loan.loan_id, temp_excel) == []
        assert loan_service.get_loan(loan.loan_id, temp_excel).outstanding_amount == pytest.approx(1150.0)

    def test_stale_loan_read_is_detected(self, temp_excel, saver, monkeypatch):
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, filepath=temp_excel)
        stale = loan_service.get_loan(loan.loan_id, temp_excel)
        loan_service.repay_loan(loan.loan_id, 115, filepath=temp_excel)

        monkeypatch.setattr(loan_service, "get_loan", lambda loan_id, filepath=None: stale)
        with pytest.raises(ConcurrentUpdateError) as exc:
            loan_service.repay_loan(loan.loan_id, 115, filepath=temp_excel)
        assert isinstance(exc.value, PersistenceError)

    def test_unknown_loan(self, temp_excel):
        with pytest.raises(RecordNotFoundError):
            loan_service.repay_loan("LN-missing", 100, filepath=temp_excel)

    def test_pending_then_approved(self, temp_excel, saver):
        loan = loan_service.apply_for_member_loan(saver.member_id, 300, 3, auto_approve=False, filepath=temp_excel)
        assert loan.status == LoanStatus.PENDING
        assert [e.transaction_type for e in loan_service.get_member_savings(saver.member_id, temp_excel)] == ["deposit"]

        approved = loan_service.approve_member_loan(loan.loan_id, filepath=temp_excel)
        assert approved.status == LoanStatus.ACTIVE
        assert loan_service.get_loan(loan.loan_id, temp_excel).status == LoanStatus.ACTIVE
        types = [e.transaction_type for e in loan_service.get_member_savings(saver.member_id, temp_excel)]
        assert TransactionType.LOAN_DISBURSEMENT.value in types


class TestSettings:
    def test_update_carries_unchanged_values(self, temp_excel):
        new = loan_service.update_settings(loan_interest_rate=10.0, filepath=temp_excel)
        assert new.loan_interest_rate == 10.0
        assert new.max_loan_multiplier == 3.0
        assert loan_service.get_settings(temp_excel).loan_interest_rate == 10.0

    def test_new_rate_applies_to_new_loans(self, temp_excel, saver):
        loan_service.update_settings(loan_interest_rate=10.0, filepath=temp_excel)
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, filepath=temp_excel)
        assert loan.total_repayment == pytest.approx(1100.0)

    def test_invalid_settings(self, temp_excel):
        with pytest.raises(ValidationError):
            loan_service.update_settings(max_loan_multiplier=0, filepath=temp_excel)

    def test_stricter_minimum(self, temp_excel, saver):
        loan_service.update_settings(min_required_savings=1000, filepath=temp_excel)
        assert not loan_service.check_eligibility(saver.member_id, temp_excel).eligible


class TestFines:
    def test_issue_and_pay(self, temp_excel, member):
        fine = loan_service.issue_fine(member.member_id, 20, "Late to meeting", date(2024, 2, 1), temp_excel)
        assert loan_service.list_fines(member.member_id, temp_excel)[0].paid is False

        loan_service.pay_fine(fine.fine_id, temp_excel)
        assert loan_service.list_fines(member.member_id, temp_excel)[0].paid is True
        with pytest.raises(ValidationError):
            loan_service.pay_fine(fine.fine_id, temp_excel)

    def test_unknown_fine(self, temp_excel):
        with pytest.raises(RecordNotFoundError):
            loan_service.pay_fine("FN-missing", temp_excel)


class TestMeetings:
    def test_executive_records_meeting(self, temp_excel):
        chair = loan_service.register_member("Mwape", "Lungu", is_executive=True, filepath=temp_excel)
        loan_service.schedule_meeting(chair.member_id, "Savings review", "All present", date(2024, 1, 6), temp_excel)
        loan_service.schedule_meeting(chair.member_id, "Loan review", "Two loans approved", date(2024, 3, 2), temp_excel)

        meetings = loan_service.list_meetings(temp_excel)
        assert [m.agenda for m in meetings] == ["Loan review", "Savings review"]
        assert meetings[0].created_by == chair.member_id

    def test_non_executive_rejected(self, temp_excel, member):
        with pytest.raises(PermissionDeniedError):
            loan_service.schedule_meeting(member.member_id, "Agenda", "Minutes", date(2024, 1, 6), temp_excel)
        assert loan_service.list_meetings(temp_excel) == []

    def test_minutes_required(self, temp_excel):
        chair = loan_service.register_member("Mwape", is_executive=True, filepath=temp_excel)
        with pytest.raises(ValidationError):
            loan_service.schedule_meeting(chair.member_id, "Agenda", "  ", date(2024, 1, 6), temp_excel)

    def test_unknown_member(self, temp_excel):
        with pytest.raises(RecordNotFoundError):
            loan_service.schedule_meeting("MB-missing", "Agenda", "Minutes", date(2024, 1, 6), temp_excel)


class TestPersistenceErrors:
    def test_storage_failure_is_wrapped(self, temp_excel, member, monkeypatch):
        def broken(*args, **kwargs):
            raise OSError("workbook locked")

        monkeypatch.setattr(excel_handler, "get_savings", broken)
        with pytest.raises(PersistenceError) as exc:
            loan_service.get_member_savings_balance(member.member_id, temp_excel)
        assert isinstance(exc.value.__cause__, OSError)
        assert exc.value.details["table"] == "savings"

    def test_commit_failure_is_wrapped(self, temp_excel, saver, monkeypatch):
        loan = loan_service.apply_for_member_loan(saver.member_id, 1000, 10, filepath=temp_excel)

        def broken(*args, **kwargs):
            raise PermissionError("read-only")

        monkeypatch.setattr(excel_handler, "write_sheets", broken)
        with pytest.raises(PersistenceError):
            loan_service.repay_loan(loan.loan_id, 115, filepath=temp_excel)
