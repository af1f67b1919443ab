# grid_server/database.py - Row store operations

import json
import uuid
import aiosqlite
import asyncpg
from typing import List, Dict, Any, Optional, Sequence
from datetime import datetime, timezone
import logging

from grid_server.cell_values import NUMERIC_PATTERN, parse_number

logger = logging.getLogger(__name__)

# Same rule as cell_values.parse_number; IMMUTABLE so it can back expression indexes
POSTGRES_TO_NUMBER = """
    CREATE OR REPLACE FUNCTION grid_to_number(value text) RETURNS double precision
    LANGUAGE plpgsql IMMUTABLE STRICT PARALLEL SAFE AS $$
    BEGIN
        IF btrim(value) ~ '""" + NUMERIC_PATTERN + """' THEN
            RETURN btrim(value)::double precision;
        END IF;
        RETURN NULL;
    EXCEPTION WHEN numeric_value_out_of_range THEN
        RETURN NULL;
    END
    $$
"""

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS grid_tables (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at {timestamp}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_columns (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL REFERENCES grid_tables(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        order_index INTEGER NOT NULL DEFAULT 0,
        is_hidden BOOLEAN NOT NULL DEFAULT FALSE,
        config {json}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_rows (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL REFERENCES grid_tables(id) ON DELETE CASCADE,
        row_index INTEGER NOT NULL,
        data {json} NOT NULL,
        created_at {timestamp}
    )
    """,
    "CREATE INDEX IF NOT EXISTS grid_rows_table_index_idx ON grid_rows(table_id, row_index)",
    "CREATE INDEX IF NOT EXISTS grid_rows_table_id_idx ON grid_rows(table_id)",
    "CREATE INDEX IF NOT EXISTS grid_columns_table_order_idx ON grid_columns(table_id, order_index)",
]

ROW_FIELDS = "id, table_id, row_index, data, created_at"


def json_path(column_id: str) -> str:
    """SQLite JSON path addressing one key of a row's value map"""
    return '$."' + column_id.replace('"', '""') + '"'


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    def __init__(self, database_url: str):
        self.database_url = database_url
        self.is_postgres = database_url.startswith("postgresql://")
        self.conn = None
        self.pool = None

    @property
    def dialect(self) -> str:
        return "postgres" if self.is_postgres else "sqlite"

    async def init(self):
        """Initialize database connection and create tables"""
        if self.is_postgres:
            await self._init_postgres()
        else:
            await self._init_sqlite()

    async def _init_sqlite(self):
        """Initialize SQLite database"""
        self.conn = await aiosqlite.connect(self.database_url.replace("sqlite:///", ""))
        self.conn.row_factory = aiosqlite.Row
        await self.conn.execute("PRAGMA foreign_keys = ON")

        # Numeric parsing for filters, sorts and the numeric column indexes
        await self.conn.create_function("grid_to_number", 1, parse_number, deterministic=True)

        for statement in SCHEMA_STATEMENTS:
            await self.conn.execute(statement.format(timestamp="TEXT", json="TEXT"))

        await self.conn.commit()

    async def _init_postgres(self):
        """Initialize PostgreSQL database"""
        self.pool = await asyncpg.create_pool(self.database_url)

        async with self.pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement.format(timestamp="TIMESTAMPTZ DEFAULT now()", json="JSONB"))
            await conn.execute(POSTGRES_TO_NUMBER)

    async def close(self):
        """Close database connection"""
        if self.is_postgres and self.pool:
            await self.pool.close()
        elif self.conn:
            await self.conn.close()

    # Generic statement helpers
    async def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Any]:
        """Run a query and return every record"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *params)
        async with self.conn.execute(query, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def fetch_value(self, query: str, params: Sequence[Any] = ()) -> Any:
        """Run a query and return the first column of the first record"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, *params)
        async with self.conn.execute(query, tuple(params)) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None

    async def execute(self, query: str, params: Sequence[Any] = ()):
        """Run a statement outside of any result handling (DDL included)"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                await conn.execute(query, *params)
        else:
            await self.conn.execute(query, tuple(params))
            await self.conn.commit()

    # Table operations
    async def create_table(self, name: str) -> Dict[str, Any]:
        """Create a new table"""
        table_id = str(uuid.uuid4())
        created_at = _now()

        if self.is_postgres:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    "INSERT INTO grid_tables (id, name, created_at) VALUES ($1, $2, $3)",
                    table_id, name, created_at
                )
        else:
            await self.conn.execute(
                "INSERT INTO grid_tables (id, name, created_at) VALUES (?, ?, ?)",
                (table_id, name, created_at.isoformat())
            )
            await self.conn.commit()

        return {"id": table_id, "name": name, "createdAt": created_at.isoformat()}

    async def get_table(self, table_id: str) -> Optional[Dict[str, Any]]:
        """Get a specific table"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM grid_tables WHERE id = $1", table_id)
        else:
            async with self.conn.execute("SELECT * FROM grid_tables WHERE id = ?", (table_id,)) as cursor:
                row = await cursor.fetchone()
        return self._parse_table_row(row) if row else None

    # Column operations
    async def get_columns(self, table_id: str) -> List[Dict[str, Any]]:
        """Get a table's columns ordered by order_index"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM grid_columns WHERE table_id = $1 ORDER BY order_index, id",
                    table_id
                )
        else:
            async with self.conn.execute(
                "SELECT * FROM grid_columns WHERE table_id = ? ORDER BY order_index, id",
                (table_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._parse_column_row(row) for row in rows]

    async def get_column(self, column_id: str) -> Optional[Dict[str, Any]]:
        """Get a specific column"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM grid_columns WHERE id = $1", column_id)
        else:
            async with self.conn.execute("SELECT * FROM grid_columns WHERE id = ?", (column_id,)) as cursor:
                row = await cursor.fetchone()
        return self._parse_column_row(row) if row else None

    async def create_column(self, table_id: str, name: str, column_type: str) -> Dict[str, Any]:
        """Append a column after the current highest order_index"""
        column_id = str(uuid.uuid4())

        if self.is_postgres:
            async with self.pool.acquire() as conn:
                order_index = await conn.fetchval(
                    """INSERT INTO grid_columns (id, table_id, name, type, order_index, is_hidden, config)
                       SELECT $1, $2, $3, $4, COALESCE(MAX(order_index), -1) + 1, FALSE, NULL
                       FROM grid_columns WHERE table_id = $2
                       RETURNING order_index""",
                    column_id, table_id, name, column_type
                )
        else:
            await self.conn.execute(
                """INSERT INTO grid_columns (id, table_id, name, type, order_index, is_hidden, config)
                   SELECT ?, ?, ?, ?, COALESCE(MAX(order_index), -1) + 1, 0, NULL
                   FROM grid_columns WHERE table_id = ?""",
                (column_id, table_id, name, column_type, table_id)
            )
            await self.conn.commit()
            order_index = await self.fetch_value(
                "SELECT order_index FROM grid_columns WHERE id = ?", (column_id,)
            )

        return {
            "id": column_id,
            "tableId": table_id,
            "name": name,
            "type": column_type,
            "orderIndex": order_index,
            "hidden": False,
            "config": None,
        }

    # Row operations
    async def get_row(self, row_id: str) -> Optional[Dict[str, Any]]:
        """Get a specific row"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"SELECT {ROW_FIELDS} FROM grid_rows WHERE id = $1", row_id)
        else:
            async with self.conn.execute(f"SELECT {ROW_FIELDS} FROM grid_rows WHERE id = ?", (row_id,)) as cursor:
                row = await cursor.fetchone()
        return self.parse_row(row) if row else None

    async def create_row(self, table_id: str) -> Dict[str, Any]:
        """Append an empty row at max(row_index) + 1"""
        row_id = str(uuid.uuid4())
        created_at = _now()

        # The value map starts empty; columns are never prefilled
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                index = await conn.fetchval(
                    """INSERT INTO grid_rows (id, table_id, row_index, data, created_at)
                       SELECT $1, $2, COALESCE(MAX(row_index), -1) + 1, '{}'::jsonb, $3
                       FROM grid_rows WHERE table_id = $2
                       RETURNING row_index""",
                    row_id, table_id, created_at
                )
        else:
            await self.conn.execute(
                """INSERT INTO grid_rows (id, table_id, row_index, data, created_at)
                   SELECT ?, ?, COALESCE(MAX(row_index), -1) + 1, '{}', ?
                   FROM grid_rows WHERE table_id = ?""",
                (row_id, table_id, created_at.isoformat(), table_id)
            )
            await self.conn.commit()
            index = await self.fetch_value("SELECT row_index FROM grid_rows WHERE id = ?", (row_id,))

        return {"id": row_id, "index": index}

    async def append_rows(self, table_id: str, values_list: List[Dict[str, Any]]) -> int:
        """Bulk append rows with consecutive placement keys"""
        if not values_list:
            return 0

        created_at = _now()
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    start = await conn.fetchval(
                        "SELECT COALESCE(MAX(row_index), -1) + 1 FROM grid_rows WHERE table_id = $1",
                        table_id
                    )
                    await conn.executemany(
                        """INSERT INTO grid_rows (id, table_id, row_index, data, created_at)
                           VALUES ($1, $2, $3, $4, $5)""",
                        [
                            (str(uuid.uuid4()), table_id, start + offset, json.dumps(values), created_at)
                            for offset, values in enumerate(values_list)
                        ]
                    )
        else:
            start = await self.fetch_value(
                "SELECT COALESCE(MAX(row_index), -1) + 1 FROM grid_rows WHERE table_id = ?",
                (table_id,)
            )
            await self.conn.executemany(
                """INSERT INTO grid_rows (id, table_id, row_index, data, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (str(uuid.uuid4()), table_id, start + offset, json.dumps(values), created_at.isoformat())
                    for offset, values in enumerate(values_list)
                ]
            )
            await self.conn.commit()

        return len(values_list)

    async def set_cell_value(self, row_id: str, column_id: str, value: Any) -> bool:
        """Overwrite one key of a row's value map in a single statement"""
        encoded = json.dumps(value)

        if self.is_postgres:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    """UPDATE grid_rows
                       SET data = data || jsonb_build_object($2::text, $3::jsonb)
                       WHERE id = $1""",
                    row_id, column_id, encoded
                )
                return result != "UPDATE 0"
        else:
            cursor = await self.conn.execute(
                "UPDATE grid_rows SET data = json_set(data, ?, json(?)) WHERE id = ?",
                (json_path(column_id), encoded, row_id)
            )
            await self.conn.commit()
            return cursor.rowcount > 0

    # Helper methods
    def parse_row(self, row) -> Dict[str, Any]:
        """Parse a grid_rows record from either driver"""
        data = json.loads(row["data"]) if isinstance(row["data"], str) else row["data"]
        return {
            "id": row["id"],
            "tableId": row["table_id"],
            "index": row["row_index"],
            "values": data or {},
            "createdAt": self._timestamp(row["created_at"]),
        }

    def _parse_table_row(self, row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "name": row["name"],
            "createdAt": self._timestamp(row["created_at"]),
        }

    def _parse_column_row(self, row) -> Dict[str, Any]:
        config = row["config"]
        if isinstance(config, str):
            config = json.loads(config)
        return {
            "id": row["id"],
            "tableId": row["table_id"],
            "name": row["name"],
            "type": row["type"],
            "orderIndex": row["order_index"],
            "hidden": bool(row["is_hidden"]),
            "config": config,
        }

    @staticmethod
    def _timestamp(value) -> Optional[str]:
        if value is None:
            return None
        return value.isoformat() if hasattr(value, "isoformat") else str(value)
