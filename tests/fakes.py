"""
Test doubles for external services.

FakeSqlClient is an in-memory SQLite database behind the same async
execute() interface as the libSQL client.
"""

import sqlite3


class FakeResultSet:
    """Mirrors the attributes of libsql_client.ResultSet that we use."""
    
    def __init__(self, columns, rows, rows_affected, last_insert_rowid):
        self.columns = columns
        self.rows = rows
        self.rows_affected = rows_affected
        self.last_insert_rowid = last_insert_rowid


class FakeSqlClient:
    """Async libSQL client stand-in over an in-memory SQLite database."""
    
    def __init__(self):
        self._conn = sqlite3.connect(":memory:")
        self.closed = False
        self.statements: list[str] = []
    
    async def execute(self, sql, args=None):
        self.statements.append(sql)
        cursor = self._conn.execute(sql, list(args or []))
        if cursor.description:
            columns = tuple(d[0] for d in cursor.description)
            rows = cursor.fetchall()
        else:
            columns, rows = (), []
        self._conn.commit()
        return FakeResultSet(
            columns=columns,
            rows=rows,
            rows_affected=max(cursor.rowcount, 0),
            last_insert_rowid=cursor.lastrowid,
        )
    
    async def close(self):
        # Stays usable so a shared "remote database" survives reconnects
        self.closed = True


class FailingSqlClient(FakeSqlClient):
    """A remote database that cannot be reached."""
    
    async def execute(self, sql, args=None):
        raise ConnectionError("remote unreachable")
