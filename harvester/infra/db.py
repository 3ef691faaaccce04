"""
Database infrastructure with SQLite and async support.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite


logger = logging.getLogger(__name__)


# (version, statements) – applied once each, in order.
MIGRATIONS: List[Tuple[int, List[str]]] = [
    (1, [
        """
        CREATE TABLE IF NOT EXISTS organizations (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS event_sources (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            keywords TEXT NOT NULL DEFAULT '[]',
            location TEXT NOT NULL DEFAULT '{}',
            scraping_config TEXT,
            performance_metrics TEXT NOT NULL DEFAULT '{}',
            is_active INTEGER NOT NULL DEFAULT 1,
            last_scraped_at TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_event_sources_org_id ON event_sources(organization_id)",
        """
        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT DEFAULT '',
            date_start TEXT NOT NULL,
            date_end TEXT,
            location TEXT DEFAULT '',
            url TEXT DEFAULT '',
            source_name TEXT NOT NULL,
            source_id TEXT REFERENCES event_sources(id) ON DELETE SET NULL,
            keywords_matched TEXT NOT NULL DEFAULT '[]',
            relevance_score INTEGER DEFAULT 0 CHECK (relevance_score >= 0 AND relevance_score <= 100),
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(organization_id, title, date_start, source_name)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS scraping_filters (
            organization_id TEXT PRIMARY KEY REFERENCES organizations(id) ON DELETE CASCADE,
            filter_enabled INTEGER NOT NULL DEFAULT 0
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS scraping_cache (
            cache_key TEXT PRIMARY KEY,
            source_id TEXT NOT NULL,
            cached_data TEXT NOT NULL,
            method_used TEXT NOT NULL,
            events_count INTEGER DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_scraping_cache_created_at ON scraping_cache(created_at)",
    ]),
]


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: str = "harvester.db"):
        # Handle SQLite URL format if provided
        if db_path.startswith("sqlite"):
            # Handle sqlite+aiosqlite:///path format
            if "///" in db_path:
                actual_path = db_path.split("///")[-1]
            else:
                actual_path = db_path.split("//")[-1]
            self.db_path = Path(actual_path)
        else:
            self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        if self._connection:
            return

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Open connection with a longer busy timeout
        self._connection = await aiosqlite.connect(self.db_path, timeout=30)
        self._connection.row_factory = aiosqlite.Row
        # Improve concurrency: use WAL journal mode and set busy timeout (ms)
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self):
        """Context manager for database transactions."""
        if not self._connection:
            await self.connect()

        try:
            if not self._connection.in_transaction:
                await self._connection.execute("BEGIN")
            yield self._connection
            await self._connection.commit()
        except Exception:
            await self._connection.rollback()
            raise

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        if not self._connection:
            await self.connect()
        return await self._connection.execute(sql, tuple(params))

    async def execute_commit(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a write statement, commit, and return the affected row count."""
        cursor = await self.execute(sql, params)
        await self._connection.commit()
        return cursor.rowcount

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()

    @staticmethod
    def _upsert_sql(table: str, columns: List[str], pk_columns: List[str], ignore_duplicates: bool) -> str:
        placeholders = ", ".join("?" * len(columns))

        # Build the conflict resolution clause
        update_columns = [col for col in columns if col not in pk_columns]
        if update_columns and not ignore_duplicates:
            update_clause = ", ".join(f"{col} = excluded.{col}" for col in update_columns)
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO UPDATE SET {update_clause}"
        else:
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO NOTHING"

        return f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            {conflict_clause}
        """

    async def upsert(
        self,
        table: str,
        data: Dict[str, Any],
        pk_columns: List[str],
        *,
        ignore_duplicates: bool = False,
    ) -> int:
        """Upsert one row; returns the affected row count."""
        columns = list(data.keys())
        sql = self._upsert_sql(table, columns, pk_columns, ignore_duplicates)

        # Execute and immediately commit to persist data
        return await self.execute_commit(sql, list(data.values()))

    async def upsert_many(
        self,
        table: str,
        rows: Sequence[Dict[str, Any]],
        pk_columns: List[str],
        *,
        ignore_duplicates: bool = False,
    ) -> int:
        """Upsert rows sharing one column set inside a single transaction."""
        if not rows:
            return 0
        columns = list(rows[0].keys())
        sql = self._upsert_sql(table, columns, pk_columns, ignore_duplicates)

        affected = 0
        async with self.transaction() as conn:
            for row in rows:
                cursor = await conn.execute(sql, tuple(row[col] for col in columns))
                affected += max(cursor.rowcount, 0)
        return affected

    async def _run_migrations(self) -> None:
        """Run database migrations."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor = await self._connection.execute("SELECT version FROM migrations")
        applied = {row[0] for row in await cursor.fetchall()}

        for version, statements in MIGRATIONS:
            if version in applied:
                continue
            for statement in statements:
                await self._connection.execute(statement)
            await self._connection.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
            logger.info(f"Applied migration {version}")
        await self._connection.commit()
