import os
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data file location
DATA_DIR = PROJECT_ROOT / "data"
EXCEL_FILE = Path(os.environ.get("VILLAGE_BANK_DATA_FILE", DATA_DIR / "village_bank.xlsx"))
BACKUP_KEEP = 5

# Default loan policy, used when the settings table is empty
DEFAULT_LOAN_INTEREST_RATE = 15.0
DEFAULT_MAX_LOAN_MULTIPLIER = 3.0
DEFAULT_MIN_REQUIRED_SAVINGS = 100.0
DEFAULT_CYCLE_TENURE_MONTHS = 12

# Payments within this many currency units of the outstanding amount settle the loan
FINAL_PAYMENT_EPSILON = 0.001

# Currency
CURRENCY = "ZMW"
AMOUNT_PRECISION = 2
RATE_PRECISION = 4

# Logging
LOG_LEVEL = os.environ.get("VILLAGE_BANK_LOG_LEVEL", "WARNING")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
