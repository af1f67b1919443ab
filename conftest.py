"""
Pytest configuration and fixtures for the grid backend and client tests.
"""
import os

import pytest
import pytest_asyncio

# Set test environment variables before importing the application
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENABLE_TRIGRAM_INDEXES", "false")
os.environ.setdefault("COMMIT_DEBOUNCE_MS", "20")

from grid_server.column_indexes import ColumnIndexManager  # noqa: E402
from grid_server.database import Database  # noqa: E402
from grid_server.models import ColumnType  # noqa: E402
from grid_server.query_engine import WindowQueryEngine  # noqa: E402


class GridFixture:
    """Builds tables with typed columns on an in-memory row store."""

    def __init__(self, db: Database):
        self.db = db
        self.engine = WindowQueryEngine(db)
        self.indexes = ColumnIndexManager(db, enable_trigram=False)

    async def table(self, *columns, name: str = "People"):
        """Create a table; columns are (name, type) pairs.

        Returns:
            (table_id, {column name: column id})
        """
        table = await self.db.create_table(name)
        ids = {}
        for column_name, column_type in columns:
            column = await self.db.create_column(table["id"], column_name, column_type)
            await self.indexes.ensure_indexes(table["id"], column["id"], ColumnType(column_type))
            ids[column_name] = column["id"]
        return table["id"], ids


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite row store."""
    database = Database("sqlite:///:memory:")
    await database.init()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def grid(db):
    """Fixture providing table builders, the query engine and the index manager."""
    return GridFixture(db)


@pytest.fixture
def row_values():
    """Extract one column's values from window rows, in order."""
    def extract(rows, column_id):
        return [row.values.get(column_id) for row in rows]
    return extract
