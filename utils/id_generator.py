import uuid
from datetime import datetime


def _generate(prefix: str) -> str:
    return f"{prefix}-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6]}"


def generate_member_id() -> str:
    return _generate("MB")


def generate_savings_id() -> str:
    return _generate("SV")


def generate_loan_id() -> str:
    return _generate("LN")


def generate_repayment_id() -> str:
    return _generate("RP")


def generate_fine_id() -> str:
    return _generate("FN")


def generate_meeting_id() -> str:
    return _generate("MT")
