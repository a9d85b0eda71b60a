import sys
import pytest
from pathlib import Path

# Make the project root importable
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from data_manager.excel_handler import init_excel  # noqa: E402
from data_manager.schema import Settings  # noqa: E402


@pytest.fixture
def temp_excel(tmp_path):
    """Empty ledger workbook"""
    filepath = tmp_path / "test_ledger.xlsx"
    init_excel(filepath)
    return filepath


@pytest.fixture
def default_settings():
    return Settings()
