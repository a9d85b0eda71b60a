import math
from typing import Tuple

from config.constants import TransactionType


def coerce_number(value) -> Tuple[bool, float]:
    """Numbers and numeric strings pass; bools, blanks, NaN and infinities do not."""
    if isinstance(value, bool) or value is None:
        return False, 0.0
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return False, 0.0
    if not math.isfinite(number):
        return False, 0.0
    return True, number


def validate_amount(value, field_name: str = "amount") -> Tuple[bool, str]:
    ok, number = coerce_number(value)
    if not ok:
        return False, f"{field_name} must be a number"
    if number <= 0:
        return False, f"{field_name} must be greater than 0"
    return True, ""


def validate_term(value) -> Tuple[bool, str]:
    ok, number = coerce_number(value)
    if not ok:
        return False, "term_months must be a number"
    if number != int(number):
        return False, "term_months must be a whole number of months"
    if number <= 0:
        return False, "term_months must be greater than 0"
    return True, ""


def validate_savings_entry(amount, transaction_type: str) -> Tuple[bool, str]:
    ok, msg = validate_amount(amount)
    if not ok:
        return False, msg
    if transaction_type not in [e.value for e in TransactionType]:
        return False, f"Unknown transaction type: {transaction_type}"
    return True, ""


def validate_member(first_name: str, phone: str = None, email: str = None) -> Tuple[bool, str]:
    if not first_name or not first_name.strip():
        return False, "First name is required"
    if phone is not None and phone.strip():
        digits = phone.strip().lstrip("+").replace(" ", "")
        if not digits.isdigit() or not 9 <= len(digits) <= 15:
            return False, f"Invalid phone number: {phone}"
    if email is not None and email.strip() and "@" not in email:
        return False, f"Invalid email address: {email}"
    return True, ""


def validate_settings(
    loan_interest_rate: float,
    max_loan_multiplier: float,
    min_required_savings: float,
    cycle_tenure_months: int,
) -> Tuple[bool, str]:
    if loan_interest_rate < 0 or loan_interest_rate > 100:
        return False, "Interest rate must be between 0 and 100%"
    if max_loan_multiplier <= 0:
        return False, "Loan multiplier must be greater than 0"
    if min_required_savings < 0:
        return False, "Minimum savings cannot be negative"
    if cycle_tenure_months <= 0:
        return False, "Cycle tenure must be at least one month"
    return True, ""


def validate_meeting(agenda: str, minutes: str, meeting_date) -> Tuple[bool, str]:
    if not agenda or not agenda.strip():
        return False, "Meeting agenda is required"
    if not minutes or not minutes.strip():
        return False, "Meeting minutes are required"
    if meeting_date is None:
        return False, "Meeting date is required"
    return True, ""
