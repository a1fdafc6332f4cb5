"""
Local Storage Implementation

DESIGN DECISION: The local backend is a versioned object store kept in
one SQLite file. Each store is a table holding the record as JSON text
plus one indexed column per secondary index, so records keep their
document shape (no row mapping) while index lookups stay cheap. Dates
and Decimals are tagged in the JSON and come back with their own types.

The schema version lives in PRAGMA user_version. Opening the store
creates missing stores and then upgrades old record shapes step by step.

TRADEOFFS:
- Not suitable for large data (full scans for anything not indexed)
- Indexed fields are stored twice (in the JSON and in their column)
"""

import os
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

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
    MigrationError,
    NotFoundError,
    SavingsRepository,
    StorageError,
)
from controlmoney.services.storage.serialization import decode_record, encode_record


logger = get_logger(__name__)

SCHEMA_VERSION = 3

# Store name -> indexed fields
STORE_INDEXES: dict[str, tuple[str, ...]] = {
    "expenses": ("date", "category", "frequency", "is_paid"),
    "balance": ("date",),
    "savings": ("start_date", "completed"),
    "investments": ("start_date", "type", "is_active", "maturity_date"),
    "sheet_config": ("last_sync", "token_expiry"),
    "sync_metadata": ("table_name",),
}


def _index_value(value: Any) -> Any:
    """Column value for an indexed field."""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


# =============================================================================
# MIGRATIONS
# =============================================================================

def _default_monthly_income(record: dict) -> Optional[dict]:
    if record.get("monthly_income") is None:
        record["monthly_income"] = Decimal("0")
        return record
    return None


def _backfill_payment_history(record: dict) -> Optional[dict]:
    if record.get("payment_history") is not None:
        return None
    history = []
    if record.get("is_paid") and record.get("next_payment_date"):
        history.append({
            "date": record["next_payment_date"],
            "is_paid": True,
            "amount": record.get("amount"),
        })
    record["payment_history"] = history
    return record


# Target version -> (store, per-record upgrade). An upgrade returns the
# changed record, or None when the record is already in shape.
MIGRATIONS: dict[int, tuple[str, Callable[[dict], Optional[dict]]]] = {
    2: ("balance", _default_monthly_income),
    3: ("expenses", _backfill_payment_history),
}


class ObjectStore:
    """
    Low-level object store over a SQLite file.
    
    Values are plain dicts. The "id" key is owned by the store: it is
    stripped on write and filled in on read.
    """
    
    def __init__(self, path: str):
        self._path = path
        self._conn: Optional[sqlite3.Connection] = None
    
    @property
    def path(self) -> str:
        return self._path
    
    @property
    def is_open(self) -> bool:
        return self._conn is not None
    
    def open(self) -> "ObjectStore":
        """
        Open the file, create missing stores and run pending migrations.
        
        Raises:
            BackendConnectionError: If the file cannot be opened
            MigrationError: If upgrading stored records fails
        """
        if self._conn is not None:
            return self
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path)
        except (sqlite3.Error, OSError) as e:
            raise BackendConnectionError(f"Failed to open local store {self._path}: {e}")
        
        try:
            self._create_stores()
            self._migrate()
        except MigrationError:
            self.close()
            raise
        except sqlite3.Error as e:
            self.close()
            raise MigrationError(f"Failed to prepare local store: {e}")
        return self
    
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Local store is not open")
        return self._conn
    
    def _create_stores(self) -> None:
        conn = self._connection()
        for store, indexes in STORE_INDEXES.items():
            columns = "".join(f", idx_{field}" for field in indexes)
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {store} "
                f"(id INTEGER PRIMARY KEY AUTOINCREMENT, value TEXT NOT NULL{columns})"
            )
            for field in indexes:
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{store}_{field} "
                    f"ON {store} (idx_{field})"
                )
        conn.commit()
    
    def schema_version(self) -> int:
        return self._connection().execute("PRAGMA user_version").fetchone()[0]
    
    def _migrate(self) -> None:
        conn = self._connection()
        current = self.schema_version()
        if current >= SCHEMA_VERSION:
            return
        
        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version not in MIGRATIONS:
                continue
            store, upgrade = MIGRATIONS[version]
            try:
                for record in self.get_all(store):
                    changed = upgrade(record)
                    if changed is not None:
                        self.put(store, changed, changed["id"], commit=False)
            except Exception as e:
                conn.rollback()
                raise MigrationError(
                    f"Migration to version {version} failed on store {store}: {e}"
                )
            logger.info("local_store_migrated", store=store, version=version)
        
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()
    
    def _row_values(self, store: str, value: dict) -> tuple[list[str], list[Any]]:
        payload = {k: v for k, v in value.items() if k != "id"}
        columns = ["value"]
        params: list[Any] = [encode_record(payload)]
        for field in STORE_INDEXES[store]:
            columns.append(f"idx_{field}")
            params.append(_index_value(payload.get(field)))
        return columns, params
    
    def _decode(self, row: tuple) -> dict:
        record = decode_record(row[1])
        record["id"] = row[0]
        return record
    
    def add(self, store: str, value: dict) -> int:
        """Insert a new record and return its generated id."""
        columns, params = self._row_values(store, value)
        conn = self._connection()
        cursor = conn.execute(
            f"INSERT INTO {store} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in params)})",
            params,
        )
        conn.commit()
        return cursor.lastrowid
    
    def put(self, store: str, value: dict, key: int, commit: bool = True) -> int:
        """Insert or replace the record stored under `key`."""
        columns, params = self._row_values(store, value)
        conn = self._connection()
        conn.execute(
            f"INSERT OR REPLACE INTO {store} (id, {', '.join(columns)}) "
            f"VALUES (?, {', '.join('?' for _ in params)})",
            [key, *params],
        )
        if commit:
            conn.commit()
        return key
    
    def get(self, store: str, key: int) -> Optional[dict]:
        row = self._connection().execute(
            f"SELECT id, value FROM {store} WHERE id = ?", (key,)
        ).fetchone()
        return self._decode(row) if row else None
    
    def get_all(self, store: str) -> list[dict]:
        rows = self._connection().execute(
            f"SELECT id, value FROM {store} ORDER BY id"
        ).fetchall()
        return [self._decode(row) for row in rows]
    
    def get_all_from_index(self, store: str, index: str, value: Any) -> list[dict]:
        """Records whose indexed field equals `value`."""
        if index not in STORE_INDEXES[store]:
            raise StorageError(f"Store {store} has no index {index}")
        rows = self._connection().execute(
            f"SELECT id, value FROM {store} WHERE idx_{index} = ? ORDER BY id",
            (_index_value(value),),
        ).fetchall()
        return [self._decode(row) for row in rows]
    
    def get_range_from_index(self, store: str, index: str, lower: Any) -> list[dict]:
        """Records whose indexed field is >= `lower`."""
        if index not in STORE_INDEXES[store]:
            raise StorageError(f"Store {store} has no index {index}")
        rows = self._connection().execute(
            f"SELECT id, value FROM {store} WHERE idx_{index} >= ? ORDER BY id",
            (_index_value(lower),),
        ).fetchall()
        return [self._decode(row) for row in rows]
    
    def delete(self, store: str, key: int) -> bool:
        conn = self._connection()
        cursor = conn.execute(f"DELETE FROM {store} WHERE id = ?", (key,))
        conn.commit()
        return cursor.rowcount > 0
    
    def clear(self, store: str) -> None:
        conn = self._connection()
        conn.execute(f"DELETE FROM {store}")
        conn.commit()
    
    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
    
    def delete_database(self) -> None:
        """Close and remove the whole file (full reset)."""
        self.close()
        if self._path != ":memory:" and os.path.exists(self._path):
            os.remove(self._path)
            logger.info("local_store_deleted", path=self._path)


# =============================================================================
# REPOSITORIES
# =============================================================================

class _LocalEntityRepository(EntityRepository):
    """CRUD over one store. Subclasses set `store` and `model`."""
    
    store: str
    
    def __init__(self, object_store: ObjectStore):
        self._db = object_store
    
    def _to_model(self, record: dict):
        return self.model.model_validate(record)
    
    def _to_models(self, records: list[dict]) -> list:
        return [self._to_model(record) for record in records]
    
    async def create(self, entity):
        data = entity.model_dump(exclude={"id"})
        new_id = self._db.add(self.store, data)
        return self._to_model({**data, "id": new_id})
    
    async def update(self, entity):
        entity_id = self._require_id(entity)
        if self._db.get(self.store, entity_id) is None:
            raise NotFoundError(f"{self.model.__name__} not found: {entity_id}")
        self._db.put(self.store, entity.model_dump(), entity_id)
        return entity.model_copy(deep=True)
    
    async def delete(self, entity_id: int) -> bool:
        try:
            return self._db.delete(self.store, entity_id)
        except Exception as e:
            logger.warning(
                "delete_failed",
                store=self.store,
                entity_id=entity_id,
                error=str(e),
            )
            return False
    
    async def find_by_id(self, entity_id: int):
        record = self._db.get(self.store, entity_id)
        return self._to_model(record) if record else None
    
    async def find_all(self) -> list:
        return self._to_models(self._db.get_all(self.store))
    
    async def clear(self) -> None:
        self._db.clear(self.store)
    
    async def insert_many(self, records: list[dict]) -> int:
        for record in records:
            # Validate first so bad imports fail before touching the store
            entity = self.model.model_validate(record)
            data = entity.model_dump()
            if entity.id is None:
                self._db.add(self.store, data)
            else:
                self._db.put(self.store, data, entity.id)
        return len(records)


class LocalExpenseRepository(_LocalEntityRepository, ExpenseRepository):
    store = "expenses"
    
    async def find_by_category(self, category: str) -> list[Expense]:
        return self._to_models(self._db.get_all_from_index(self.store, "category", category))
    
    async def find_by_frequency(self, frequency: str) -> list[Expense]:
        return self._to_models(self._db.get_all_from_index(self.store, "frequency", frequency))
    
    async def find_by_paid_status(self, is_paid: bool) -> list[Expense]:
        return self._to_models(self._db.get_all_from_index(self.store, "is_paid", is_paid))


class LocalBalanceRepository(_LocalEntityRepository, BalanceRepository):
    store = "balance"


class LocalSavingsRepository(_LocalEntityRepository, SavingsRepository):
    store = "savings"
    
    async def find_by_status(self, completed: bool) -> list[SavingsGoal]:
        return self._to_models(self._db.get_all_from_index(self.store, "completed", completed))


class LocalInvestmentRepository(_LocalEntityRepository, InvestmentRepository):
    store = "investments"
    
    async def find_by_type(self, investment_type: str) -> list[Investment]:
        return self._to_models(self._db.get_all_from_index(self.store, "type", investment_type))
    
    async def find_active(self) -> list[Investment]:
        return self._to_models(self._db.get_all_from_index(self.store, "is_active", True))


class LocalExternalSheetRepository(_LocalEntityRepository, ExternalSheetRepository):
    store = "sheet_config"
    
    async def find_by_last_sync(self, since: datetime) -> list[ExternalSheetConfig]:
        return self._to_models(self._db.get_range_from_index(self.store, "last_sync", since))


class LocalRepository(DatabaseRepository):
    """Local backend over an ObjectStore. The store must already be open."""
    
    backend_type = BackendType.LOCAL
    
    def __init__(self, object_store: ObjectStore):
        self._db = object_store
        self.expenses = LocalExpenseRepository(object_store)
        self.balance = LocalBalanceRepository(object_store)
        self.savings = LocalSavingsRepository(object_store)
        self.investments = LocalInvestmentRepository(object_store)
        self.external_sheets = LocalExternalSheetRepository(object_store)
    
    @property
    def object_store(self) -> ObjectStore:
        return self._db
    
    async def get_last_sync(self) -> Optional[datetime]:
        syncs = [r["last_sync"] for r in self._db.get_all("sync_metadata") if r.get("last_sync")]
        return max(syncs) if syncs else None
    
    async def record_sync(self, metadata: SyncMetadata) -> None:
        existing = {
            r["table_name"]: r["id"] for r in self._db.get_all("sync_metadata")
        }
        for table, count in metadata.table_counts.items():
            record = {
                "table_name": table,
                "last_sync": metadata.last_sync,
                "record_count": count,
                "checksum": metadata.checksum,
                "source": metadata.source,
            }
            if table in existing:
                self._db.put("sync_metadata", record, existing[table])
            else:
                self._db.add("sync_metadata", record)
    
    async def delete_database(self) -> None:
        """Remove the local file entirely. The repository is unusable afterwards."""
        self._db.delete_database()
    
    async def close(self) -> None:
        self._db.close()
