"""Tests for the Google Sheets export/import (client mocked)."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from controlmoney.models.records import ExternalSheetConfig
from controlmoney.services.sheets import (
    GoogleSheetsSyncService,
    MonthlySummary,
    build_sheet_rows,
    parse_sheet_rows,
)
from controlmoney.services.sheets.google_sheets import SHEET_HEADERS
from controlmoney.services.storage import ConfigurationError, StorageError
from tests.factories import make_balance, make_expense


def this_month() -> datetime:
    now = datetime.now()
    return datetime(now.year, now.month, 1)


def sheet_config(expiry: datetime) -> ExternalSheetConfig:
    return ExternalSheetConfig(
        client_id="client",
        client_secret="secret",
        access_token="access",
        refresh_token="refresh",
        token_expiry=expiry,
        spreadsheet_id="sheet-123",
    )


@pytest.fixture
def sheets_client():
    return MagicMock()


@pytest.fixture
def sheets_service(local_repo, sheets_client):
    async def get_repository():
        return local_repo
    
    return GoogleSheetsSyncService(
        get_repository,
        client_factory=lambda config: sheets_client,
        months_ahead=6,
    )


class TestSheetLayout:
    """Tests for building and parsing the sheet."""
    
    def test_summary_balances(self):
        """Test real and projected balance."""
        summary = MonthlySummary(
            month="2024-05",
            balance_amount=Decimal("1000"),
            monthly_income=Decimal("2500"),
            total_paid=Decimal("50"),
            total_pending=Decimal("100"),
        )
        assert summary.total_expenses == Decimal("150")
        assert summary.real_balance == Decimal("900")
        assert summary.projected_balance == Decimal("2400")
    
    def test_build_rows(self):
        """Test the header rows and one row per month."""
        summary = MonthlySummary(
            month="2024-05",
            balance_amount=Decimal("1000"),
            monthly_income=Decimal("2500"),
            total_pending=Decimal("100"),
        )
        rows = build_sheet_rows([summary], datetime(2024, 5, 2, 8, 0, 0))
        assert rows[1] == ["Synced at:", "02/05/2024 08:00:00"]
        assert rows[2] == SHEET_HEADERS
        assert rows[3] == ["2024-05", "100.00", "0.00", "100.00", "1000.00", "900.00", "2400.00"]
    
    def test_parse_rows_recovers_income(self):
        """Test that income is projected + pending."""
        rows = [
            ["title"], ["Synced at:", "x"], SHEET_HEADERS,
            ["2024-05", "150 €", "50 €", "100 €", "1,000.00 €", "900 €", "2,400.00 €"],
            ["notes", "", "", "", "", "", ""],
        ]
        [summary] = parse_sheet_rows(rows)
        assert summary.balance_amount == Decimal("1000.00")
        assert summary.monthly_income == Decimal("2500.00")


class TestExport:
    """Tests for export_to_sheet."""
    
    async def test_export_writes_seven_months(self, sheets_service, sheets_client, local_repo):
        """Test the exported rows and last sync update."""
        await local_repo.external_sheets.create(sheet_config(datetime.now() + timedelta(hours=1)))
        await local_repo.balance.upsert(make_balance())
        await local_repo.expenses.create(make_expense(date=this_month()))
        
        current = await sheets_service.export_to_sheet()
        
        [rows] = sheets_client.write_rows.call_args.args
        assert len(rows) == 3 + 7
        assert rows[3][0] == this_month().strftime("%Y-%m")
        assert rows[3][3] == "100.00"
        assert current.projected_balance == Decimal("2400")
        sheets_client.refresh_token.assert_not_called()
        assert (await local_repo.external_sheets.get_active()).last_sync is not None
    
    async def test_expired_token_is_refreshed(self, sheets_service, sheets_client, local_repo):
        """Test that new tokens are written back before exporting."""
        await local_repo.external_sheets.create(sheet_config(datetime.now() - timedelta(minutes=1)))
        await local_repo.balance.upsert(make_balance())
        new_expiry = datetime.now() + timedelta(hours=1)
        sheets_client.refresh_token.return_value = ("new-access", None, new_expiry)
        
        await sheets_service.export_to_sheet()
        
        stored = await local_repo.external_sheets.get_active()
        assert stored.access_token == "new-access"
        assert stored.refresh_token == "refresh"
        assert stored.token_expiry == new_expiry
    
    async def test_export_without_config(self, sheets_service):
        """Test a clear error when nothing is configured."""
        with pytest.raises(ConfigurationError, match="No Google Sheets configuration"):
            await sheets_service.export_to_sheet()
    
    async def test_export_without_balance(self, sheets_service, local_repo):
        """Test that a balance is required."""
        await local_repo.external_sheets.create(sheet_config(datetime.now() + timedelta(hours=1)))
        with pytest.raises(StorageError, match="No balance"):
            await sheets_service.export_to_sheet()


class TestImport:
    """Tests for import_from_sheet."""
    
    async def test_import_updates_balance_only(self, sheets_service, sheets_client, local_repo):
        """Test that the current month's row sets balance and income."""
        await local_repo.external_sheets.create(sheet_config(datetime.now() + timedelta(hours=1)))
        await local_repo.balance.upsert(make_balance())
        summary = MonthlySummary(
            month=this_month().strftime("%Y-%m"),
            balance_amount=Decimal("750"),
            monthly_income=Decimal("3000"),
            total_pending=Decimal("100"),
        )
        sheets_client.read_rows.return_value = build_sheet_rows([summary], datetime.now())
        
        imported = await sheets_service.import_from_sheet()
        
        assert imported.month == summary.month
        [balance] = await local_repo.balance.find_all()
        assert balance.amount == Decimal("750")
        assert balance.monthly_income == Decimal("3000")
        assert await local_repo.expenses.find_all() == []
    
    async def test_import_without_current_month(self, sheets_service, sheets_client, local_repo):
        """Test that the balance is untouched when the month is missing."""
        await local_repo.external_sheets.create(sheet_config(datetime.now() + timedelta(hours=1)))
        await local_repo.balance.upsert(make_balance())
        sheets_client.read_rows.return_value = build_sheet_rows([], datetime.now())
        assert await sheets_service.import_from_sheet() is None
        assert (await local_repo.balance.get_current()).amount == Decimal("1000")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
