"""
Google Sheets Export / Import

DESIGN DECISION: The spreadsheet is a REPORT, not a backend.
Export writes a fixed monthly summary (current month plus the next few);
import reads the same layout back and only updates the Balance. Expenses
never flow from the sheet into the app.

Layout:
    row 1   title
    row 2   "Synced at:" | timestamp
    row 3   column headers
    row 4+  one row per month (YYYY-MM)

TRADEOFFS:
- The user can edit any cell; only the balance columns are read back
- OAuth tokens are refreshed on demand and written back to storage
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional

import gspread
from dateutil.relativedelta import relativedelta
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from controlmoney.audit import get_logger
from controlmoney.config import get_settings
from controlmoney.models.records import Balance, ExternalSheetConfig
from controlmoney.services.storage.interface import (
    BackendConnectionError,
    ConfigurationError,
    DatabaseRepository,
    StorageError,
)


logger = get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

SHEET_TITLE = "Control Money - Monthly Summary"
SYNCED_AT_LABEL = "Synced at:"
SHEET_HEADERS = [
    "Month",
    "Total expenses",
    "Paid",
    "Pending",
    "Current balance",
    "Real balance",
    "Projected balance",
]
HEADER_ROWS = 3
MONTH_FORMAT = "%Y-%m"


# =============================================================================
# SHEET ROWS
# =============================================================================

class MonthlySummary(BaseModel):
    """One exported month."""
    
    month: str
    balance_amount: Decimal
    monthly_income: Decimal
    total_paid: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    
    @property
    def total_expenses(self) -> Decimal:
        return self.total_paid + self.total_pending
    
    @property
    def real_balance(self) -> Decimal:
        """Balance once the still-pending expenses are paid."""
        return self.balance_amount - self.total_pending
    
    @property
    def projected_balance(self) -> Decimal:
        """Income left over after the pending expenses."""
        return self.monthly_income - self.total_pending


def _money_cell(value: Decimal) -> str:
    return f"{value:.2f}"


def _parse_money(cell: str) -> Decimal:
    """Read a money cell, tolerating currency symbols and spaces."""
    cleaned = "".join(ch for ch in str(cell) if ch.isdigit() or ch in "-.,")
    cleaned = cleaned.replace(",", "")
    try:
        return Decimal(cleaned) if cleaned else Decimal("0")
    except InvalidOperation:
        raise ValueError(f"Not an amount: {cell!r}")


def build_sheet_rows(summaries: list[MonthlySummary], synced_at: datetime) -> list[list[str]]:
    """Rows for the whole sheet, headers included."""
    rows = [
        [SHEET_TITLE],
        [SYNCED_AT_LABEL, synced_at.strftime("%d/%m/%Y %H:%M:%S")],
        list(SHEET_HEADERS),
    ]
    for summary in summaries:
        rows.append([
            summary.month,
            _money_cell(summary.total_expenses),
            _money_cell(summary.total_paid),
            _money_cell(summary.total_pending),
            _money_cell(summary.balance_amount),
            _money_cell(summary.real_balance),
            _money_cell(summary.projected_balance),
        ])
    return rows


def parse_sheet_rows(values: list[list[str]]) -> list[MonthlySummary]:
    """
    Read month rows back. Rows that are not months are skipped.
    
    Monthly income is not a column; it is recovered as
    projected balance + pending.
    """
    summaries = []
    for row in values[HEADER_ROWS:]:
        if len(row) < len(SHEET_HEADERS) or not row[0]:
            continue
        try:
            datetime.strptime(row[0].strip(), MONTH_FORMAT)
        except ValueError:
            logger.warning("sheet_row_skipped", first_cell=row[0])
            continue
        paid = _parse_money(row[2])
        pending = _parse_money(row[3])
        projected = _parse_money(row[6])
        summaries.append(MonthlySummary(
            month=row[0].strip(),
            balance_amount=_parse_money(row[4]),
            monthly_income=projected + pending,
            total_paid=paid,
            total_pending=pending,
        ))
    return summaries


# =============================================================================
# CLIENT
# =============================================================================

class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.
    
    Authenticates with the user's OAuth tokens from ExternalSheetConfig
    and provides retry logic for API calls.
    """
    
    def __init__(self, config: ExternalSheetConfig, token_uri: Optional[str] = None):
        self._config = config
        self._token_uri = token_uri or get_settings().google_sheets.token_uri
        self._credentials: Optional[Credentials] = None
        self._client: Optional[gspread.Client] = None
    
    def _build_credentials(self) -> Credentials:
        if self._credentials is None:
            self._credentials = Credentials(
                token=self._config.access_token or None,
                refresh_token=self._config.refresh_token or None,
                token_uri=self._token_uri,
                client_id=self._config.client_id,
                client_secret=self._config.client_secret,
                scopes=SCOPES,
            )
        return self._credentials
    
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def refresh_token(self) -> tuple[str, Optional[str], datetime]:
        """
        Exchange the refresh token for a new access token.
        
        Returns:
            (access_token, refresh_token, expiry in local time)
        """
        if not self._config.refresh_token:
            raise ConfigurationError("Google Sheets refresh token is missing; reconnect the account")
        credentials = self._build_credentials()
        credentials.refresh(Request())
        if credentials.expiry is None:
            local_expiry = datetime.now()
        else:
            # google-auth reports expiry as naive UTC
            local_expiry = (
                credentials.expiry.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
            )
        self._client = None
        return credentials.token, credentials.refresh_token, local_expiry
    
    def connect(self) -> gspread.Client:
        if self._client is None:
            try:
                self._client = gspread.authorize(self._build_credentials())
            except Exception as e:
                raise BackendConnectionError(f"Failed to connect to Google Sheets: {e}")
        return self._client
    
    def get_worksheet(self) -> gspread.Worksheet:
        """The configured sheet, created when missing."""
        try:
            spreadsheet = self.connect().open_by_key(self._config.spreadsheet_id)
        except gspread.SpreadsheetNotFound:
            raise ConfigurationError(
                f"Spreadsheet not found: {self._config.spreadsheet_id}. "
                "Check the ID and that the account can open it."
            )
        try:
            return spreadsheet.worksheet(self._config.sheet_name)
        except gspread.WorksheetNotFound:
            return spreadsheet.add_worksheet(
                title=self._config.sheet_name,
                rows=50,
                cols=len(SHEET_HEADERS),
            )
    
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def write_rows(self, rows: list[list[str]]) -> None:
        worksheet = self.get_worksheet()
        worksheet.clear()
        worksheet.update(values=rows, range_name="A1")
    
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def read_rows(self) -> list[list[str]]:
        return self.get_worksheet().get_all_values()


# =============================================================================
# SYNC SERVICE
# =============================================================================

class GoogleSheetsSyncService:
    """
    Exports the monthly summary to the sheet and imports the balance back.
    
    Args:
        get_repository: Coroutine function returning the active backend
        client_factory: Callable (config) -> GoogleSheetsClient. Replaced in tests.
        months_ahead: Months exported after the current one
    """
    
    def __init__(
        self,
        get_repository: Callable[[], Awaitable[DatabaseRepository]],
        client_factory: Callable[[ExternalSheetConfig], GoogleSheetsClient] = GoogleSheetsClient,
        months_ahead: Optional[int] = None,
    ):
        self._get_repository = get_repository
        self._client_factory = client_factory
        self._months_ahead = (
            get_settings().google_sheets.months_ahead if months_ahead is None else months_ahead
        )
    
    async def _prepare(self, repository: DatabaseRepository) -> tuple[ExternalSheetConfig, GoogleSheetsClient]:
        """Load the config, refreshing the token first when it has expired."""
        config = await repository.external_sheets.get_active()
        if config is None:
            raise ConfigurationError("No Google Sheets configuration found")
        
        client = self._client_factory(config)
        if config.is_token_expired:
            access_token, refresh_token, expiry = client.refresh_token()
            config = await repository.external_sheets.update_tokens(
                config.id, access_token, refresh_token, expiry
            )
            logger.info("sheets_token_refreshed", expiry=expiry.isoformat())
        return config, client
    
    async def _mark_synced(self, repository: DatabaseRepository, config: ExternalSheetConfig) -> None:
        config.last_sync = datetime.now()
        await repository.external_sheets.update(config)
    
    async def collect_summaries(
        self,
        repository: DatabaseRepository,
        today: Optional[datetime] = None,
    ) -> list[MonthlySummary]:
        """Current month plus `months_ahead`, from the projected expenses."""
        balance = await repository.balance.get_current()
        if balance is None:
            raise StorageError("No balance information found")
        
        today = today or datetime.now()
        first = datetime(today.year, today.month, 1)
        summaries = []
        for offset in range(self._months_ahead + 1):
            month = first + relativedelta(months=offset)
            expenses = await repository.expenses.find_by_month(month)
            summaries.append(MonthlySummary(
                month=month.strftime(MONTH_FORMAT),
                balance_amount=balance.amount,
                monthly_income=balance.monthly_income,
                total_paid=sum((e.amount for e in expenses if e.is_paid), Decimal("0")),
                total_pending=sum((e.amount for e in expenses if not e.is_paid), Decimal("0")),
            ))
        return summaries
    
    async def export_to_sheet(self) -> MonthlySummary:
        """
        Write the monthly summary to the sheet.
        
        Returns:
            The current month's summary
        """
        repository = await self._get_repository()
        config, client = await self._prepare(repository)
        summaries = await self.collect_summaries(repository)
        
        client.write_rows(build_sheet_rows(summaries, datetime.now()))
        await self._mark_synced(repository, config)
        logger.info("sheets_exported", months=len(summaries))
        return summaries[0]
    
    async def import_from_sheet(self) -> Optional[MonthlySummary]:
        """
        Read the sheet and update the balance from the current month's row.
        
        Returns:
            The current month's summary, or None if the sheet has no row for it
        """
        repository = await self._get_repository()
        config, client = await self._prepare(repository)
        summaries = parse_sheet_rows(client.read_rows())
        
        current_key = datetime.now().strftime(MONTH_FORMAT)
        current = next((s for s in summaries if s.month == current_key), None)
        if current is not None:
            balance = await repository.balance.get_current() or Balance()
            balance.amount = current.balance_amount
            balance.monthly_income = current.monthly_income
            balance.date = datetime.now()
            await repository.balance.upsert(balance)
        else:
            logger.warning("sheets_import_no_current_month", month=current_key)
        
        await self._mark_synced(repository, config)
        logger.info("sheets_imported", months=len(summaries))
        return current

