import logging
import os
import shutil
import tempfile
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from openpyxl import load_workbook

from config.constants import (
    FLOAT_COLUMNS, LoanStatus, SHEET_COLUMNS,
    SHEET_MEMBERS, SHEET_SAVINGS, SHEET_LOANS, SHEET_REPAYMENTS, SHEET_SETTINGS, SHEET_FINES,
    SHEET_MEETINGS,
)
from config.settings import EXCEL_FILE, BACKUP_KEEP, FINAL_PAYMENT_EPSILON
from core.errors import ConcurrentUpdateError
from data_manager.schema import (
    Fine, Loan, Meeting, Member, RepaymentEntry, RepaymentOutcome, SavingsEntry, Settings,
)

logger = logging.getLogger(__name__)


def init_excel(filepath: Path = EXCEL_FILE):
    """Create the workbook with every sheet and its header row"""
    filepath = Path(filepath)
    if filepath.exists():
        return
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
        for sheet, columns in SHEET_COLUMNS.items():
            pd.DataFrame(columns=columns).to_excel(writer, sheet_name=sheet, index=False)
    logger.info("created workbook %s", filepath)


def backup_excel(filepath: Path = EXCEL_FILE):
    """Copy the workbook aside before a write, keeping the latest few copies"""
    filepath = Path(filepath)
    if filepath.exists():
        ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_path = filepath.with_suffix(f".xlsx.bak_{ts}")
        shutil.copy2(filepath, backup_path)
        backups = sorted(filepath.parent.glob(f"{filepath.stem}.xlsx.bak_*"))
        for old in backups[:-BACKUP_KEEP]:
            old.unlink()


def read_sheet(sheet_name: str, filepath: Path = EXCEL_FILE) -> pd.DataFrame:
    init_excel(filepath)
    columns = SHEET_COLUMNS.get(sheet_name)
    try:
        df = pd.read_excel(filepath, sheet_name=sheet_name, engine="openpyxl")
    except ValueError:
        df = pd.DataFrame(columns=columns)
    if columns is not None:
        for col in columns:
            if col not in df.columns:
                df[col] = None
        for col in FLOAT_COLUMNS.intersection(columns):
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)
    return df


def write_sheets(frames: Dict[str, pd.DataFrame], filepath: Path = EXCEL_FILE):
    """Replace several sheets in one save.

    The new workbook is built in a temporary file next to the original and
    moved into place, so either every sheet is updated or none is.
    """
    filepath = Path(filepath)
    init_excel(filepath)
    backup_excel(filepath)

    fd, tmp_name = tempfile.mkstemp(suffix=".xlsx", dir=filepath.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copy2(filepath, tmp_path)
        wb = load_workbook(tmp_path)
        for sheet_name in frames:
            if sheet_name in wb.sheetnames:
                del wb[sheet_name]
        wb.save(tmp_path)
        with pd.ExcelWriter(tmp_path, engine="openpyxl", mode="a", if_sheet_exists="replace") as writer:
            for sheet_name, df in frames.items():
                df.to_excel(writer, sheet_name=sheet_name, index=False)
        os.replace(tmp_path, filepath)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def write_sheet(df: pd.DataFrame, sheet_name: str, filepath: Path = EXCEL_FILE):
    write_sheets({sheet_name: df}, filepath)


def _append(df: pd.DataFrame, rows: List[dict]) -> pd.DataFrame:
    new_rows = pd.DataFrame(rows, columns=df.columns)
    if df.empty:
        return new_rows
    return pd.concat([df, new_rows], ignore_index=True)


# ---- Members ----

def save_member(member: Member, filepath: Path = EXCEL_FILE):
    df = read_sheet(SHEET_MEMBERS, filepath)
    df = df[df["member_id"].astype(str) != member.member_id]
    write_sheet(_append(df, [member.to_row()]), SHEET_MEMBERS, filepath)


def get_all_members(filepath: Path = EXCEL_FILE) -> List[Member]:
    df = read_sheet(SHEET_MEMBERS, filepath)
    return [Member.from_row(row) for _, row in df.iterrows()]


def get_member(member_id: str, filepath: Path = EXCEL_FILE) -> Optional[Member]:
    df = read_sheet(SHEET_MEMBERS, filepath)
    match = df[df["member_id"].astype(str) == member_id]
    if match.empty:
        return None
    return Member.from_row(match.iloc[0])


# ---- Savings ----

def get_savings(member_id: Optional[str] = None, filepath: Path = EXCEL_FILE) -> List[SavingsEntry]:
    df = read_sheet(SHEET_SAVINGS, filepath)
    if member_id is not None:
        df = df[df["member_id"].astype(str) == member_id]
    return [SavingsEntry.from_row(row) for _, row in df.iterrows()]


def add_savings_entry(entry: SavingsEntry, filepath: Path = EXCEL_FILE):
    df = read_sheet(SHEET_SAVINGS, filepath)
    write_sheet(_append(df, [entry.to_row()]), SHEET_SAVINGS, filepath)


# ---- Loans ----

def get_loans(member_id: Optional[str] = None, filepath: Path = EXCEL_FILE) -> List[Loan]:
    df = read_sheet(SHEET_LOANS, filepath)
    if member_id is not None:
        df = df[df["member_id"].astype(str) == member_id]
    return [Loan.from_row(row) for _, row in df.iterrows()]


def get_loan(loan_id: str, filepath: Path = EXCEL_FILE) -> Optional[Loan]:
    df = read_sheet(SHEET_LOANS, filepath)
    match = df[df["loan_id"].astype(str) == loan_id]
    if match.empty:
        return None
    return Loan.from_row(match.iloc[0])


def get_active_loan(member_id: str, filepath: Path = EXCEL_FILE) -> Optional[Loan]:
    """The member's active loan, newest first if the table somehow holds more than one"""
    loans = [loan for loan in get_loans(member_id, filepath) if loan.status == LoanStatus.ACTIVE]
    if not loans:
        return None
    return sorted(loans, key=lambda loan: loan.start_date, reverse=True)[0]


def save_loan(loan: Loan, disbursement: Optional[SavingsEntry] = None, filepath: Path = EXCEL_FILE):
    """Insert or update a loan, with its disbursement entry in the same write"""
    loans = read_sheet(SHEET_LOANS, filepath)
    loans = loans[loans["loan_id"].astype(str) != loan.loan_id]
    frames = {SHEET_LOANS: _append(loans, [loan.to_row()])}
    if disbursement is not None:
        savings = read_sheet(SHEET_SAVINGS, filepath)
        frames[SHEET_SAVINGS] = _append(savings, [disbursement.to_row()])
    write_sheets(frames, filepath)


# ---- Repayments ----

def get_repayments(
    loan_id: Optional[str] = None,
    member_id: Optional[str] = None,
    filepath: Path = EXCEL_FILE,
) -> List[RepaymentEntry]:
    df = read_sheet(SHEET_REPAYMENTS, filepath)
    if loan_id is not None:
        df = df[df["loan_id"].astype(str) == loan_id]
    if member_id is not None:
        df = df[df["member_id"].astype(str) == member_id]
    return [RepaymentEntry.from_row(row) for _, row in df.iterrows()]


def record_repayment(outcome: RepaymentOutcome, expected_outstanding: float, filepath: Path = EXCEL_FILE):
    """Commit a repayment: the repayment row, the loan update and the interest credit.

    The loan is only updated if its stored outstanding amount still equals
    ``expected_outstanding``; otherwise another repayment got there first.
    """
    loans = read_sheet(SHEET_LOANS, filepath)
    mask = loans["loan_id"].astype(str) == outcome.loan.loan_id
    if not mask.any():
        raise KeyError(f"loan {outcome.loan.loan_id} not found")
    current = float(loans.loc[mask, "outstanding_amount"].iloc[0])
    if abs(current - expected_outstanding) >= FINAL_PAYMENT_EPSILON:
        raise ConcurrentUpdateError(outcome.loan.loan_id, expected_outstanding, current)

    loans["status"] = loans["status"].astype(object)
    loans.loc[mask, "outstanding_amount"] = outcome.loan.outstanding_amount
    loans.loc[mask, "status"] = outcome.loan.status.value

    repayments = read_sheet(SHEET_REPAYMENTS, filepath)
    frames = {
        SHEET_LOANS: loans,
        SHEET_REPAYMENTS: _append(repayments, [outcome.repayment.to_row()]),
    }
    if outcome.interest_credit is not None:
        savings = read_sheet(SHEET_SAVINGS, filepath)
        frames[SHEET_SAVINGS] = _append(savings, [outcome.interest_credit.to_row()])
    write_sheets(frames, filepath)


# ---- Settings ----

def get_current_settings(filepath: Path = EXCEL_FILE) -> Settings:
    """Latest settings row by creation time; defaults when none has been saved"""
    df = read_sheet(SHEET_SETTINGS, filepath).dropna(subset=["loan_interest_rate"])
    if df.empty:
        return Settings()
    df = df.assign(created_at=pd.to_datetime(df["created_at"], errors="coerce"))
    df = df.sort_values("created_at", kind="stable", na_position="first")
    return Settings.from_row(df.iloc[-1])


def add_settings(settings: Settings, filepath: Path = EXCEL_FILE):
    if settings.created_at is None:
        settings = replace(settings, created_at=datetime.now())
    df = read_sheet(SHEET_SETTINGS, filepath)
    write_sheet(_append(df, [settings.to_row()]), SHEET_SETTINGS, filepath)


# ---- Fines ----

def get_fines(member_id: Optional[str] = None, filepath: Path = EXCEL_FILE) -> List[Fine]:
    df = read_sheet(SHEET_FINES, filepath)
    if member_id is not None:
        df = df[df["member_id"].astype(str) == member_id]
    return [Fine.from_row(row) for _, row in df.iterrows()]


def save_fine(fine: Fine, filepath: Path = EXCEL_FILE):
    df = read_sheet(SHEET_FINES, filepath)
    df = df[df["fine_id"].astype(str) != fine.fine_id]
    write_sheet(_append(df, [fine.to_row()]), SHEET_FINES, filepath)


# ---- Meetings ----

def get_meetings(filepath: Path = EXCEL_FILE) -> List[Meeting]:
    df = read_sheet(SHEET_MEETINGS, filepath)
    return [Meeting.from_row(row) for _, row in df.iterrows()]


def save_meeting(meeting: Meeting, filepath: Path = EXCEL_FILE):
    df = read_sheet(SHEET_MEETINGS, filepath)
    write_sheet(_append(df, [meeting.to_row()]), SHEET_MEETINGS, filepath)
