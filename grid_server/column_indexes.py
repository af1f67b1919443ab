# grid_server/column_indexes.py - Per-column expression indexes over grid_rows

"""
Per-column expression indexes over the JSON value map of grid_rows.

The value expressions below are the only way a column's value reaches SQL
text, both here (index DDL) and in the query engine (filters and sorts), so
every filter or sort term is written exactly as its index is. Index names
are derived from (table id, column id, purpose) and every id is
format-checked before it is placed into a statement, since DDL cannot take
bind parameters.
"""
import logging
import re
from typing import List, Tuple

import asyncpg

from grid_server.database import Database, json_path
from grid_server.errors import InvalidIdentifier
from grid_server.models import ColumnType

logger = logging.getLogger(__name__)

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_INDEX_NAME_RE = re.compile(r"^[a-z0-9_]+$")

# Hex characters of each id kept in an index name (PostgreSQL caps names at 63)
SHORT_ID_LENGTH = 12

ROWS_TABLE = "grid_rows"


def validate_identifier(value: str, what: str = "identifier") -> str:
    """Return value when it is a UUID-shaped id, else raise InvalidIdentifier"""
    if not isinstance(value, str) or not UUID_RE.match(value):
        raise InvalidIdentifier(f"Invalid {what}: {value!r}")
    return value


def short_id(value: str) -> str:
    return value.replace("-", "")[:SHORT_ID_LENGTH].lower()


def make_index_name(table_id: str, column_id: str, suffix: str) -> str:
    """Deterministic index name for one purpose of one column"""
    validate_identifier(table_id, "tableId")
    validate_identifier(column_id, "columnId")
    name = f"r_{short_id(table_id)}_{short_id(column_id)}_{suffix}".lower()
    if not _INDEX_NAME_RE.match(name):
        raise InvalidIdentifier(f"Bad index name: {name!r}")
    return name


def key_literal(column_id: str) -> str:
    """SQL string literal of a validated column id, for ->> extraction"""
    validate_identifier(column_id, "columnId")
    return "'" + column_id.replace("'", "''") + "'"


def sqlite_path_literal(column_id: str) -> str:
    """SQL string literal of the json_extract path for a validated column id"""
    validate_identifier(column_id, "columnId")
    return "'" + json_path(column_id).replace("'", "''") + "'"


# ---------- value expressions ----------

def text_value_expr(dialect: str, column_id: str) -> str:
    """String form of a column's value, NULL when absent"""
    if dialect == "postgres":
        return f"(data ->> {key_literal(column_id)})"
    return f"CAST(json_extract(data, {sqlite_path_literal(column_id)}) AS TEXT)"


def folded_text_expr(dialect: str, column_id: str) -> str:
    """Lower-cased string form, for case-insensitive equality"""
    return f"lower({text_value_expr(dialect, column_id)})"


def number_value_expr(dialect: str, column_id: str) -> str:
    """Parsed double of a column's value, NULL when absent or not a numeric literal"""
    if dialect == "postgres":
        return f"grid_to_number({text_value_expr(dialect, column_id)})"
    return f"grid_to_number(json_extract(data, {sqlite_path_literal(column_id)}))"


# ---------- index statements ----------

def _btree(name: str, expr: str, where: str = "") -> Tuple[str, str]:
    statement = f"CREATE INDEX IF NOT EXISTS \"{name}\" ON {ROWS_TABLE} (table_id, {expr})"
    if where:
        statement += f" WHERE {where}"
    return name, statement


def index_statements(dialect: str, table_id: str, column_id: str, column_type: ColumnType) -> List[Tuple[str, str]]:
    """(name, statement) pairs for one column"""
    if column_type == ColumnType.NUMBER:
        # Partial: values that are not numeric literals stay out of the index
        number = number_value_expr(dialect, column_id)
        return [_btree(make_index_name(table_id, column_id, "num_sort"), number, f"{number} IS NOT NULL")]

    text = text_value_expr(dialect, column_id)
    statements = [
        _btree(make_index_name(table_id, column_id, "txt_sort"), text),
        _btree(make_index_name(table_id, column_id, "txt_fold"), folded_text_expr(dialect, column_id)),
    ]
    if dialect == "postgres":
        trigram_name = make_index_name(table_id, column_id, "txt_trgm")
        statements.append((
            trigram_name,
            f"CREATE INDEX IF NOT EXISTS \"{trigram_name}\" ON {ROWS_TABLE} "
            f"USING gin ({text} gin_trgm_ops)",
        ))
    return statements


def postgres_index_statements(table_id: str, column_id: str, column_type: ColumnType) -> List[Tuple[str, str]]:
    return index_statements("postgres", table_id, column_id, column_type)


def sqlite_index_statements(table_id: str, column_id: str, column_type: ColumnType) -> List[Tuple[str, str]]:
    """SQLite has no trigram indexes; substring search scans the table's rows"""
    return index_statements("sqlite", table_id, column_id, column_type)


class ColumnIndexManager:
    def __init__(self, db: Database, enable_trigram: bool = True):
        self.db = db
        self.enable_trigram = enable_trigram
        self._trigram_checked = False
        self._trigram_available = False

    async def ensure_indexes(self, table_id: str, column_id: str, column_type: ColumnType) -> List[str]:
        """Create the indexes for a column if absent; returns the index names.

        Safe to call repeatedly, including after a crash part-way through.
        """
        column_type = ColumnType(column_type)
        statements = index_statements(self.db.dialect, table_id, column_id, column_type)

        created = []
        for name, statement in statements:
            if name.endswith("_txt_trgm") and not await self._ensure_trigram():
                logger.warning(f"Skipping trigram index {name}: pg_trgm unavailable")
                continue
            await self.db.execute(statement)
            created.append(name)

        logger.info(f"Ensured indexes {created} for column {column_id} ({column_type.value})")
        return created

    async def _ensure_trigram(self) -> bool:
        """Enable pg_trgm once per manager"""
        if not self.enable_trigram:
            return False
        if self._trigram_checked:
            return self._trigram_available

        self._trigram_checked = True
        try:
            await self.db.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
            self._trigram_available = True
        except asyncpg.PostgresError as e:
            # Roles without CREATE on the database need the extension installed by migration
            logger.warning(f"Could not enable pg_trgm: {e}")
            self._trigram_available = False
        return self._trigram_available
