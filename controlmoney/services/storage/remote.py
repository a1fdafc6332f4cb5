"""
Remote Storage Implementation (Turso / libSQL)

DESIGN DECISION: The remote backend maps records to plain relational rows
so the data stays readable from any SQL client:
- dates are ISO-8601 text
- booleans are 0/1 integers
- money is REAL, read back as Decimal
- an expense's payment_history is JSON text

The schema is created once, when the backend is constructed
(initialize_remote_schema); repository calls assume it exists.

TRADEOFFS:
- Every call is a network round trip
- Bulk import is one statement per row (no transaction)
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import libsql_client

from controlmoney.audit import get_logger
from controlmoney.models.records import (
    BackendType,
    Expense,
    ExternalSheetConfig,
    Investment,
    SavingsGoal,
)
from controlmoney.models.sync import SyncMetadata
from controlmoney.services.storage.interface import (
    BalanceRepository,
    BackendConnectionError,
    DatabaseRepository,
    EntityRepository,
    ExpenseRepository,
    ExternalSheetRepository,
    InvestmentRepository,
    NotFoundError,
    SavingsRepository,
    StorageError,
)
from controlmoney.services.storage.serialization import (
    bool_to_int,
    date_to_string,
    int_to_bool,
    string_to_date,
)


logger = get_logger(__name__)

# Export key -> remote table
REMOTE_TABLES = {
    "expenses": "expenses",
    "balance": "balance",
    "savings": "savings_goals",
    "investments": "investments",
    "sheet_config": "google_sheets_config",
}

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS expenses (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  amount REAL NOT NULL,
  category TEXT NOT NULL,
  description TEXT NOT NULL,
  date TEXT NOT NULL,
  frequency TEXT NOT NULL CHECK (frequency IN ('one-time', 'monthly', 'bi-monthly', 'quarterly', 'annual')),
  next_payment_date TEXT,
  is_paid BOOLEAN NOT NULL DEFAULT 0,
  payment_history TEXT,
  duration INTEGER,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS balance (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  amount REAL NOT NULL,
  monthly_income REAL NOT NULL,
  date TEXT NOT NULL,
  projected_amount REAL,
  real_amount REAL,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS savings_goals (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  description TEXT NOT NULL,
  target_amount REAL NOT NULL,
  current_amount REAL NOT NULL DEFAULT 0,
  monthly_contribution REAL NOT NULL,
  start_date TEXT NOT NULL,
  target_date TEXT,
  completed BOOLEAN NOT NULL DEFAULT 0,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS investments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  type TEXT NOT NULL CHECK (type IN ('fixed-deposit', 'savings-account', 'government-bond', 'mutual-fund', 'other')),
  initial_amount REAL NOT NULL,
  current_amount REAL NOT NULL,
  annual_rate REAL NOT NULL,
  start_date TEXT NOT NULL,
  term_months INTEGER NOT NULL,
  maturity_date TEXT NOT NULL,
  compounding_frequency TEXT NOT NULL CHECK (compounding_frequency IN ('daily', 'monthly', 'quarterly', 'semi-annual', 'annual')),
  is_active BOOLEAN NOT NULL DEFAULT 1,
  notes TEXT,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS google_sheets_config (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  client_id TEXT NOT NULL,
  client_secret TEXT NOT NULL,
  access_token TEXT NOT NULL,
  refresh_token TEXT NOT NULL,
  token_expiry TEXT,
  spreadsheet_id TEXT NOT NULL,
  sheet_name TEXT NOT NULL,
  last_sync TEXT,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sync_metadata (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  table_name TEXT NOT NULL UNIQUE,
  last_sync TEXT NOT NULL,
  record_count INTEGER NOT NULL DEFAULT 0,
  checksum TEXT,
  source TEXT NOT NULL DEFAULT 'turso',
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date);
CREATE INDEX IF NOT EXISTS idx_expenses_category ON expenses(category);
CREATE INDEX IF NOT EXISTS idx_expenses_frequency ON expenses(frequency);
CREATE INDEX IF NOT EXISTS idx_expenses_is_paid ON expenses(is_paid);
CREATE INDEX IF NOT EXISTS idx_balance_date ON balance(date);
CREATE INDEX IF NOT EXISTS idx_savings_start_date ON savings_goals(start_date);
CREATE INDEX IF NOT EXISTS idx_savings_completed ON savings_goals(completed);
CREATE INDEX IF NOT EXISTS idx_investments_start_date ON investments(start_date);
CREATE INDEX IF NOT EXISTS idx_investments_type ON investments(type);
CREATE INDEX IF NOT EXISTS idx_investments_is_active ON investments(is_active);
CREATE INDEX IF NOT EXISTS idx_investments_maturity_date ON investments(maturity_date);
CREATE INDEX IF NOT EXISTS idx_google_sheets_last_sync ON google_sheets_config(last_sync);
CREATE INDEX IF NOT EXISTS idx_google_sheets_token_expiry ON google_sheets_config(token_expiry)
"""


def create_remote_client(url: str, auth_token: str):
    """
    Create an async libSQL client.
    
    Raises:
        BackendConnectionError: If the client cannot be created
    """
    try:
        return libsql_client.create_client(url, auth_token=auth_token)
    except Exception as e:
        raise BackendConnectionError(f"Failed to connect to remote database: {e}")


async def initialize_remote_schema(client) -> None:
    """
    Create tables and indexes, and seed one sync_metadata row per table.
    
    Idempotent. Seeded rows carry no checksum; only a real sync sets one.
    """
    statements = [s.strip() for s in CREATE_TABLES_SQL.split(";") if s.strip()]
    try:
        for statement in statements:
            await client.execute(statement)
        now = date_to_string(datetime.now())
        for table in REMOTE_TABLES.values():
            await client.execute(
                "INSERT OR IGNORE INTO sync_metadata "
                "(table_name, last_sync, record_count, source) VALUES (?, ?, 0, 'turso')",
                [table, now],
            )
    except Exception as e:
        raise StorageError(f"Failed to initialize remote schema: {e}")
    logger.info("remote_schema_ready", tables=len(REMOTE_TABLES))


def _rows(result) -> list[dict]:
    columns = list(result.columns)
    return [{col: row[i] for i, col in enumerate(columns)} for row in result.rows]


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _to_real(value: Any) -> Optional[float]:
    return None if value is None else float(value)


class _RemoteEntityRepository(EntityRepository):
    """
    CRUD over one table.
    
    Subclasses declare the table, its columns (without id) and which
    columns need conversion.
    """
    
    table: str
    columns: tuple[str, ...]
    date_columns: frozenset = frozenset()
    bool_columns: frozenset = frozenset()
    money_columns: frozenset = frozenset()
    
    def __init__(self, client):
        self._client = client
    
    async def _query(self, sql: str, args: Optional[list] = None) -> list[dict]:
        result = await self._client.execute(sql, args or [])
        return _rows(result)
    
    def _encode(self, column: str, value: Any) -> Any:
        if column in self.date_columns:
            return None if value is None else date_to_string(value)
        if column in self.bool_columns:
            return bool_to_int(value)
        if column in self.money_columns:
            return _to_real(value)
        return value
    
    def _decode(self, column: str, value: Any) -> Any:
        if column in self.date_columns:
            return string_to_date(value)
        if column in self.bool_columns:
            return int_to_bool(value)
        if column in self.money_columns:
            return _to_decimal(value)
        return value
    
    def _to_row(self, entity) -> list:
        data = entity.model_dump()
        return [self._encode(column, data.get(column)) for column in self.columns]
    
    def _from_row(self, row: dict):
        data = {"id": row["id"]}
        for column in self.columns:
            data[column] = self._decode(column, row.get(column))
        return self.model.model_validate(data)
    
    async def _select(self, where: str = "", args: Optional[list] = None) -> list:
        sql = f"SELECT * FROM {self.table}"
        if where:
            sql += f" WHERE {where}"
        sql += " ORDER BY id"
        return [self._from_row(row) for row in await self._query(sql, args)]
    
    async def create(self, entity):
        placeholders = ", ".join("?" for _ in self.columns)
        result = await self._client.execute(
            f"INSERT INTO {self.table} ({', '.join(self.columns)}) "
            f"VALUES ({placeholders}) RETURNING *",
            self._to_row(entity),
        )
        rows = _rows(result)
        if not rows:
            raise StorageError(f"Insert returned no {self.model.__name__} row")
        return self._from_row(rows[0])
    
    async def update(self, entity):
        entity_id = self._require_id(entity)
        assignments = ", ".join(f"{column} = ?" for column in self.columns)
        result = await self._client.execute(
            f"UPDATE {self.table} SET {assignments}, updated_at = CURRENT_TIMESTAMP "
            f"WHERE id = ?",
            [*self._to_row(entity), entity_id],
        )
        if not result.rows_affected:
            raise NotFoundError(f"{self.model.__name__} not found: {entity_id}")
        return entity.model_copy(deep=True)
    
    async def delete(self, entity_id: int) -> bool:
        try:
            result = await self._client.execute(
                f"DELETE FROM {self.table} WHERE id = ?", [entity_id]
            )
            return result.rows_affected > 0
        except Exception as e:
            logger.warning(
                "delete_failed",
                table=self.table,
                entity_id=entity_id,
                error=str(e),
            )
            return False
    
    async def find_by_id(self, entity_id: int):
        records = await self._select("id = ?", [entity_id])
        return records[0] if records else None
    
    async def find_all(self) -> list:
        return await self._select()
    
    async def clear(self) -> None:
        await self._client.execute(f"DELETE FROM {self.table}")
    
    async def insert_many(self, records: list[dict]) -> int:
        for record in records:
            entity = self.model.model_validate(record)
            if entity.id is None:
                columns = list(self.columns)
                args = self._to_row(entity)
            else:
                columns = ["id", *self.columns]
                args = [entity.id, *self._to_row(entity)]
            await self._client.execute(
                f"INSERT INTO {self.table} ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                args,
            )
        return len(records)


class RemoteExpenseRepository(_RemoteEntityRepository, ExpenseRepository):
    table = "expenses"
    columns = (
        "amount", "category", "description", "date", "frequency",
        "next_payment_date", "is_paid", "payment_history", "duration",
    )
    date_columns = frozenset({"date", "next_payment_date"})
    bool_columns = frozenset({"is_paid"})
    money_columns = frozenset({"amount"})
    
    def _encode(self, column: str, value: Any) -> Any:
        if column == "payment_history":
            if value is None:
                return None
            return json.dumps([
                {
                    "date": date_to_string(record["date"]),
                    "is_paid": bool(record["is_paid"]),
                    "amount": None if record.get("amount") is None else str(record["amount"]),
                }
                for record in value
            ])
        return super()._encode(column, value)
    
    def _decode(self, column: str, value: Any) -> Any:
        if column == "payment_history":
            if not value:
                return None
            return [
                {
                    "date": string_to_date(record.get("date")),
                    "is_paid": bool(record.get("is_paid")),
                    "amount": _to_decimal(record.get("amount")),
                }
                for record in json.loads(value)
            ]
        return super()._decode(column, value)
    
    async def find_by_category(self, category: str) -> list[Expense]:
        return await self._select("category = ?", [category])
    
    async def find_by_frequency(self, frequency: str) -> list[Expense]:
        return await self._select("frequency = ?", [frequency])
    
    async def find_by_paid_status(self, is_paid: bool) -> list[Expense]:
        return await self._select("is_paid = ?", [bool_to_int(is_paid)])


class RemoteBalanceRepository(_RemoteEntityRepository, BalanceRepository):
    table = "balance"
    columns = ("amount", "monthly_income", "date", "projected_amount", "real_amount")
    date_columns = frozenset({"date"})
    money_columns = frozenset({"amount", "monthly_income", "projected_amount", "real_amount"})


class RemoteSavingsRepository(_RemoteEntityRepository, SavingsRepository):
    table = "savings_goals"
    columns = (
        "name", "description", "target_amount", "current_amount",
        "monthly_contribution", "start_date", "target_date", "completed",
    )
    date_columns = frozenset({"start_date", "target_date"})
    bool_columns = frozenset({"completed"})
    money_columns = frozenset({"target_amount", "current_amount", "monthly_contribution"})
    
    async def find_by_status(self, completed: bool) -> list[SavingsGoal]:
        return await self._select("completed = ?", [bool_to_int(completed)])


class RemoteInvestmentRepository(_RemoteEntityRepository, InvestmentRepository):
    table = "investments"
    columns = (
        "name", "type", "initial_amount", "current_amount", "annual_rate",
        "start_date", "term_months", "maturity_date", "compounding_frequency",
        "is_active", "notes",
    )
    date_columns = frozenset({"start_date", "maturity_date"})
    bool_columns = frozenset({"is_active"})
    money_columns = frozenset({"initial_amount", "current_amount", "annual_rate"})
    
    async def find_by_type(self, investment_type: str) -> list[Investment]:
        return await self._select("type = ?", [investment_type])
    
    async def find_active(self) -> list[Investment]:
        return await self._select("is_active = 1")


class RemoteExternalSheetRepository(_RemoteEntityRepository, ExternalSheetRepository):
    table = "google_sheets_config"
    columns = (
        "client_id", "client_secret", "access_token", "refresh_token",
        "token_expiry", "spreadsheet_id", "sheet_name", "last_sync",
    )
    date_columns = frozenset({"token_expiry", "last_sync"})
    
    async def find_by_last_sync(self, since: datetime) -> list[ExternalSheetConfig]:
        return await self._select("last_sync >= ?", [date_to_string(since)])


class RemoteRepository(DatabaseRepository):
    """Remote backend over an async libSQL client with the schema in place."""
    
    backend_type = BackendType.TURSO
    
    def __init__(self, client):
        self._client = client
        self.expenses = RemoteExpenseRepository(client)
        self.balance = RemoteBalanceRepository(client)
        self.savings = RemoteSavingsRepository(client)
        self.investments = RemoteInvestmentRepository(client)
        self.external_sheets = RemoteExternalSheetRepository(client)
    
    async def get_last_sync(self) -> Optional[datetime]:
        result = await self._client.execute(
            "SELECT MAX(last_sync) AS last_sync FROM sync_metadata WHERE checksum IS NOT NULL"
        )
        rows = _rows(result)
        return string_to_date(rows[0]["last_sync"]) if rows else None
    
    async def record_sync(self, metadata: SyncMetadata) -> None:
        for name, count in metadata.table_counts.items():
            await self._client.execute(
                "INSERT INTO sync_metadata (table_name, last_sync, record_count, checksum, source) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(table_name) DO UPDATE SET "
                "last_sync = excluded.last_sync, record_count = excluded.record_count, "
                "checksum = excluded.checksum, source = excluded.source, "
                "updated_at = CURRENT_TIMESTAMP",
                [
                    REMOTE_TABLES.get(name, name),
                    date_to_string(metadata.last_sync),
                    count,
                    metadata.checksum,
                    metadata.source,
                ],
            )
    
    async def close(self) -> None:
        await self._client.close()
