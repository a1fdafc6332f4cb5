"""Google Sheets export/import package."""

from controlmoney.services.sheets.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsSyncService,
    MonthlySummary,
    build_sheet_rows,
    parse_sheet_rows,
)

__all__ = [
    "GoogleSheetsClient",
    "GoogleSheetsSyncService",
    "MonthlySummary",
    "build_sheet_rows",
    "parse_sheet_rows",
]
