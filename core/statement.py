"""Member statements: balances, loan progress and transaction history."""
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from config.constants import (
    BALANCE_TRANSACTION_TYPES, HISTORY_COLUMNS, HistoryEntryType, HistoryKind, LoanStatus,
    TransactionType,
)
from config.settings import EXCEL_FILE
from core.ledger import compute_eligibility
from data_manager.schema import Loan, RepaymentEntry, SavingsEntry


def savings_balance(entries: Iterable[SavingsEntry]) -> float:
    """Deposits plus interest earned. Disbursement rows are history only."""
    return float(sum(e.amount for e in entries if e.transaction_type in BALANCE_TRANSACTION_TYPES))


def loan_progress(loan: Loan, repayments: Iterable[RepaymentEntry]) -> Dict[str, float]:
    total_paid = sum(r.amount for r in repayments if r.loan_id == loan.loan_id)
    progress = total_paid / loan.total_repayment * 100 if loan.total_repayment > 0 else 100.0
    return {
        "total_repayment": loan.total_repayment,
        "total_paid": round(total_paid, 2),
        "outstanding_amount": loan.outstanding_amount,
        "progress_percent": round(min(progress, 100.0), 2),
    }


def transaction_history(
    savings: Iterable[SavingsEntry],
    loans: Iterable[Loan],
    repayments: Iterable[RepaymentEntry],
    kind: str = HistoryKind.ALL.value,
) -> pd.DataFrame:
    """Savings, loans issued and repayments as one table, newest first"""
    kind = HistoryKind(kind)
    loans = list(loans)
    loan_amounts = {loan.loan_id: loan.principal for loan in loans}
    records = []

    if kind in (HistoryKind.ALL, HistoryKind.SAVINGS):
        for e in savings:
            if e.transaction_type == TransactionType.DEPOSIT.value:
                entry_type = HistoryEntryType.SAVINGS
            elif e.transaction_type == TransactionType.INTEREST_EARNED.value:
                entry_type = HistoryEntryType.INTEREST
            else:
                # disbursements already appear as the loan itself
                continue
            records.append({
                "entry_id": e.entry_id,
                "type": entry_type.value,
                "title": entry_type.label,
                "date": pd.Timestamp(e.created_at),
                "amount": e.amount,
                "loan_id": e.related_loan_id,
                "loan_amount": loan_amounts.get(e.related_loan_id),
            })

    if kind in (HistoryKind.ALL, HistoryKind.LOANS):
        for loan in loans:
            if loan.status == LoanStatus.PENDING:
                continue
            records.append({
                "entry_id": loan.loan_id,
                "type": HistoryEntryType.LOAN_ISSUED.value,
                "title": HistoryEntryType.LOAN_ISSUED.label,
                "date": pd.Timestamp(loan.created_at),
                "amount": loan.principal,
                "loan_id": loan.loan_id,
                "loan_amount": loan.principal,
            })
        for r in repayments:
            records.append({
                "entry_id": r.repayment_id,
                "type": HistoryEntryType.LOAN_REPAYMENT.value,
                "title": HistoryEntryType.LOAN_REPAYMENT.label,
                "date": pd.Timestamp(r.repayment_date),
                "amount": r.amount,
                "loan_id": r.loan_id,
                "loan_amount": loan_amounts.get(r.loan_id),
            })

    df = pd.DataFrame(records, columns=HISTORY_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("date", ascending=False, kind="stable").reset_index(drop=True)


def group_by_day(history: pd.DataFrame) -> List[Dict]:
    """[{"title": "October 17, 2026", "data": [...]}, ...] in history order"""
    sections: List[Dict] = []
    for _, row in history.iterrows():
        title = row["date"].strftime("%B %d, %Y")
        if not sections or sections[-1]["title"] != title:
            sections.append({"title": title, "data": []})
        sections[-1]["data"].append(row.to_dict())
    return sections


def member_summary(member_id: str, filepath: Path = EXCEL_FILE) -> Dict:
    from core import loan_service

    member = loan_service.get_member(member_id, filepath)
    balance = loan_service.get_member_savings_balance(member_id, filepath)
    eligibility = compute_eligibility(balance, loan_service.get_settings(filepath))
    loans = sorted(
        loan_service.get_member_loans(member_id, filepath),
        key=lambda loan: loan.created_at, reverse=True,
    )
    current: Optional[Loan] = loans[0] if loans else None
    summary = {
        "member_id": member.member_id,
        "name": member.full_name,
        "savings_balance": balance,
        "eligible": eligibility.eligible,
        "max_loan_amount": eligibility.max_loan_amount,
        "loan": None,
    }
    if current is not None:
        repayments = loan_service.get_loan_repayments(current.loan_id, filepath)
        summary["loan"] = {
            "loan_id": current.loan_id,
            "status": current.status.value,
            "monthly_repayment": current.monthly_repayment,
            "due_date": current.due_date.isoformat(),
            **loan_progress(current, repayments),
        }
    return summary


def member_history(member_id: str, kind: str = HistoryKind.ALL.value, filepath: Path = EXCEL_FILE) -> pd.DataFrame:
    from core import loan_service

    loan_service.get_member(member_id, filepath)
    return transaction_history(
        loan_service.get_member_savings(member_id, filepath),
        loan_service.get_member_loans(member_id, filepath),
        loan_service.get_member_repayments(member_id, filepath),
        kind,
    )
