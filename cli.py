import logging
from functools import wraps
from pathlib import Path

import click
import pandas as pd

from config.constants import HistoryKind
from config.settings import EXCEL_FILE, LOG_FORMAT, LOG_LEVEL
from core import ledger, loan_service
from core.errors import PersistenceError, LedgerError
from core.statement import group_by_day, member_history, member_summary
from data_manager.excel_handler import init_excel
from utils.formatters import fmt_amount, fmt_months, fmt_percent, fmt_rate


DATE = click.DateTime(formats=["%Y-%m-%d"])


def _as_date(value):
    return value.date() if value is not None else None


def _rows(records) -> pd.DataFrame:
    return pd.DataFrame([r.to_row() for r in records])


def reports_errors(f):
    """Print ledger errors instead of a traceback; exit 1 for rejections, 2 for storage failures"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except PersistenceError as e:
            click.echo(f"Storage error: {e.message}", err=True)
            raise SystemExit(2)
        except LedgerError as e:
            click.echo(f"Error: {e.message}", err=True)
            raise SystemExit(1)
    return wrapper


@click.group()
@click.option('--data-file', type=click.Path(dir_okay=False, path_type=Path), default=EXCEL_FILE, show_default=True, help='Workbook holding the ledger tables')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False), default=LOG_LEVEL, help='Logging level')
@click.pass_context
def cli(ctx, data_file, log_level):
    """Village bank savings and loan ledger."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    ctx.obj = {"filepath": data_file}


@cli.command()
@click.pass_obj
def init(obj):
    """Creates the ledger workbook."""
    init_excel(obj["filepath"])
    click.echo(f"Ledger ready at {obj['filepath']}")


# ---- Members ----

@cli.command('add-member')
@click.option('--first-name', type=str, required=True, help='First name')
@click.option('--last-name', type=str, default='', help='Last name')
@click.option('--phone', type=str, help='Phone number')
@click.option('--email', type=str, help='Email address')
@click.option('--executive', is_flag=True, help='Member sits on the executive committee')
@click.pass_obj
@reports_errors
def add_member(obj, first_name, last_name, phone, email, executive):
    """Registers a new member."""
    member = loan_service.register_member(first_name, last_name, phone, email, executive, obj["filepath"])
    click.echo(f"Member '{member.full_name}' registered with ID '{member.member_id}'.")


@cli.command('list-members')
@click.pass_obj
@reports_errors
def list_members(obj):
    """Lists all members."""
    members = loan_service.list_members(obj["filepath"])
    if not members:
        click.echo("No members registered.")
        return
    click.echo(_rows(members).to_string(index=False))


# ---- Savings ----

@cli.command()
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.option('--amount', type=str, required=True, help='Deposit amount')
@click.option('--date', 'saving_date', type=DATE, help='Saving date (YYYY-MM-DD), defaults to today')
@click.option('--proof', type=str, help='Payment proof reference')
@click.pass_obj
@reports_errors
def deposit(obj, member_id, amount, saving_date, proof):
    """Records a savings deposit."""
    entry = loan_service.record_deposit(member_id, amount, _as_date(saving_date), proof, obj["filepath"])
    balance = loan_service.get_member_savings_balance(member_id, obj["filepath"])
    click.echo(f"Deposited {fmt_amount(entry.amount)}. Savings balance: {fmt_amount(balance)}")


@cli.command()
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.pass_obj
@reports_errors
def balance(obj, member_id):
    """Shows a member's savings balance."""
    loan_service.get_member(member_id, obj["filepath"])
    click.echo(fmt_amount(loan_service.get_member_savings_balance(member_id, obj["filepath"])))


@cli.command()
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.pass_obj
@reports_errors
def eligibility(obj, member_id):
    """Shows whether a member can borrow, and how much."""
    result = loan_service.check_eligibility(member_id, obj["filepath"])
    click.echo(f"Eligible: {'yes' if result.eligible else 'no'}")
    click.echo(f"Maximum loan: {fmt_amount(result.max_loan_amount)}")


# ---- Loans ----

@cli.command('apply-loan')
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.option('--amount', type=str, required=True, help='Requested principal')
@click.option('--term-months', type=str, required=True, help='Loan term in months')
@click.option('--purpose', type=str, help='Purpose of the loan')
@click.option('--start-date', type=DATE, help='Start date (YYYY-MM-DD), defaults to today')
@click.option('--pending', is_flag=True, help='Leave the loan awaiting approval')
@click.pass_obj
@reports_errors
def apply_loan(obj, member_id, amount, term_months, purpose, start_date, pending):
    """Applies for a loan against the member's savings."""
    loan = loan_service.apply_for_member_loan(
        member_id, amount, term_months, purpose,
        start_date=_as_date(start_date),
        auto_approve=not pending,
        filepath=obj["filepath"],
    )
    click.echo(f"Loan '{loan.loan_id}' created ({loan.status.label}).")
    click.echo(f"Principal: {fmt_amount(loan.principal)} at {fmt_rate(loan.interest_rate)} over {fmt_months(loan.term_months)}")
    click.echo(f"Total repayment: {fmt_amount(loan.total_repayment)}")
    click.echo(f"Monthly repayment: {fmt_amount(loan.monthly_repayment)}")
    click.echo(f"Due date: {loan.due_date.isoformat()}")


@cli.command('approve-loan')
@click.option('--loan-id', type=str, required=True, help='Loan ID')
@click.pass_obj
@reports_errors
def approve_loan(obj, loan_id):
    """Approves a pending loan."""
    loan = loan_service.approve_member_loan(loan_id, filepath=obj["filepath"])
    click.echo(f"Loan '{loan.loan_id}' approved.")


@cli.command()
@click.option('--loan-id', type=str, required=True, help='Loan ID')
@click.option('--amount', type=str, required=True, help='Repayment amount')
@click.pass_obj
@reports_errors
def repay(obj, loan_id, amount):
    """Records a loan repayment."""
    outcome = loan_service.repay_loan(loan_id, amount, filepath=obj["filepath"])
    r = outcome.repayment
    click.echo(f"Repaid {fmt_amount(r.amount)} (principal {fmt_amount(r.principal_portion)}, interest {fmt_amount(r.interest_portion)})")
    if r.is_final_payment:
        click.echo("Loan fully repaid.")
    else:
        click.echo(f"Outstanding: {fmt_amount(outcome.loan.outstanding_amount)}")


@cli.command('list-loans')
@click.option('--member-id', type=str, help='Only this member\'s loans')
@click.pass_obj
@reports_errors
def list_loans(obj, member_id):
    """Lists loans."""
    loans = loan_service.list_loans(member_id, obj["filepath"])
    if not loans:
        click.echo("No loans found.")
        return
    click.echo(_rows(loans).to_string(index=False))


@cli.command()
@click.option('--loan-id', type=str, required=True, help='Loan ID')
@click.pass_obj
@reports_errors
def schedule(obj, loan_id):
    """Outputs a loan's installment plan as CSV."""
    loan = loan_service.get_loan(loan_id, obj["filepath"])
    click.echo(ledger.generate_schedule(loan).to_csv(index=False))


@cli.command('effective-rate')
@click.option('--principal', type=float, required=True, help='Loan principal')
@click.option('--rate', type=float, required=True, help='Flat interest rate (%)')
@click.option('--term-months', type=click.IntRange(min=1), required=True, help='Loan term in months')
def effective_rate(principal, rate, term_months):
    """Calculates the true annual rate of a flat-rate loan."""
    total = ledger.calc_total_repayment(principal, rate)
    monthly = ledger.calc_monthly_repayment(total, term_months)
    click.echo(f"Monthly repayment: {monthly:.2f}")
    click.echo(f"Effective annual rate: {ledger.calc_effective_rate(principal, monthly, term_months):.4f}%")


# ---- Statements ----

@cli.command()
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.option('--kind', type=click.Choice([k.value for k in HistoryKind]), default=HistoryKind.ALL.value, help='Which transactions to show')
@click.pass_obj
@reports_errors
def history(obj, member_id, kind):
    """Shows a member's transaction history, grouped by day."""
    sections = group_by_day(member_history(member_id, kind, obj["filepath"]))
    if not sections:
        click.echo("No transactions found.")
        return
    for section in sections:
        click.echo(section["title"])
        for item in section["data"]:
            click.echo(f"  {item['title']:<18} {fmt_amount(item['amount'])}")


@cli.command()
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.pass_obj
@reports_errors
def summary(obj, member_id):
    """Shows a member's savings and current loan."""
    s = member_summary(member_id, obj["filepath"])
    click.echo(f"{s['name']} ({s['member_id']})")
    click.echo(f"Savings: {fmt_amount(s['savings_balance'])}")
    click.echo(f"Can borrow up to: {fmt_amount(s['max_loan_amount'])}")
    loan = s["loan"]
    if loan is None:
        click.echo("No loans.")
        return
    click.echo(f"Loan {loan['loan_id']} ({loan['status']})")
    click.echo(f"  Outstanding: {fmt_amount(loan['outstanding_amount'])}")
    click.echo(f"  Repaid: {fmt_amount(loan['total_paid'])} ({fmt_percent(loan['progress_percent'] / 100)})")


# ---- Settings ----

@cli.command('show-settings')
@click.pass_obj
@reports_errors
def show_settings(obj):
    """Shows the loan policy in force."""
    s = loan_service.get_settings(obj["filepath"])
    click.echo(f"Interest rate: {fmt_rate(s.loan_interest_rate)}")
    click.echo(f"Max loan multiplier: {s.max_loan_multiplier}")
    click.echo(f"Minimum savings: {fmt_amount(s.min_required_savings)}")
    click.echo(f"Cycle tenure: {fmt_months(s.cycle_tenure_months)}")


@cli.command('set-settings')
@click.option('--interest-rate', type=float, help='Loan interest rate (%)')
@click.option('--max-multiplier', type=float, help='Loan limit as a multiple of savings')
@click.option('--min-savings', type=float, help='Savings required before borrowing')
@click.option('--cycle-months', type=int, help='Savings cycle length in months')
@click.pass_obj
@reports_errors
def set_settings(obj, interest_rate, max_multiplier, min_savings, cycle_months):
    """Saves a new version of the loan policy."""
    loan_service.update_settings(interest_rate, max_multiplier, min_savings, cycle_months, obj["filepath"])
    click.echo("Settings saved.")


# ---- Fines ----

@cli.command()
@click.option('--member-id', type=str, required=True, help='Member ID')
@click.option('--amount', type=str, required=True, help='Fine amount')
@click.option('--reason', type=str, required=True, help='Reason for the fine')
@click.option('--due-date', type=DATE, help='Due date (YYYY-MM-DD)')
@click.pass_obj
@reports_errors
def fine(obj, member_id, amount, reason, due_date):
    """Fines a member."""
    f = loan_service.issue_fine(member_id, amount, reason, _as_date(due_date), obj["filepath"])
    click.echo(f"Fine '{f.fine_id}' of {fmt_amount(f.amount)} issued.")


@cli.command('pay-fine')
@click.option('--fine-id', type=str, required=True, help='Fine ID')
@click.pass_obj
@reports_errors
def pay_fine(obj, fine_id):
    """Marks a fine as paid."""
    loan_service.pay_fine(fine_id, obj["filepath"])
    click.echo(f"Fine '{fine_id}' paid.")


@cli.command('list-fines')
@click.option('--member-id', type=str, help='Only this member\'s fines')
@click.pass_obj
@reports_errors
def list_fines(obj, member_id):
    """Lists fines."""
    fines = loan_service.list_fines(member_id, obj["filepath"])
    if not fines:
        click.echo("No fines found.")
        return
    click.echo(_rows(fines).to_string(index=False))


# ---- Meetings ----

@cli.command('add-meeting')
@click.option('--member-id', type=str, required=True, help='Executive member recording the meeting')
@click.option('--agenda', type=str, required=True, help='Meeting agenda')
@click.option('--minutes', type=str, required=True, help='Meeting minutes')
@click.option('--date', 'meeting_date', type=DATE, required=True, help='Meeting date (YYYY-MM-DD)')
@click.pass_obj
@reports_errors
def add_meeting(obj, member_id, agenda, minutes, meeting_date):
    """Records a group meeting."""
    m = loan_service.schedule_meeting(member_id, agenda, minutes, _as_date(meeting_date), obj["filepath"])
    click.echo(f"Meeting '{m.meeting_id}' on {m.meeting_date.isoformat()} recorded.")


@cli.command('list-meetings')
@click.pass_obj
@reports_errors
def list_meetings(obj):
    """Lists meetings, newest first."""
    meetings = loan_service.list_meetings(obj["filepath"])
    if not meetings:
        click.echo("No meetings recorded.")
        return
    for m in meetings:
        click.echo(f"{m.meeting_date.isoformat()}  {m.agenda}")
        click.echo(f"  {m.minutes}")


if __name__ == "__main__":
    cli()
