# grid_server/query_engine.py - Windowed row queries over the JSON row store

"""
Filters and sorts arrive untyped from the client. They are compiled against
the table's column schema into a small typed IR first (all validation
happens there, so a bad request never partially applies), then lowered to
SQL for the connected dialect. Values are always bound as parameters;
column values only reach SQL text through the value expressions in
column_indexes, the same ones its indexes are built on.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from grid_server.cell_values import parse_number
from grid_server.column_indexes import ROWS_TABLE, folded_text_expr, number_value_expr, text_value_expr
from grid_server.config import settings
from grid_server.database import Database, ROW_FIELDS
from grid_server.errors import InvalidColumn, MalformedFilterValue, NotFound, UnsupportedOperator
from grid_server.models import (
    ColumnType, Filter, FilterOperator, Row, SortDirection, SortKey, WindowResponse,
)

logger = logging.getLogger(__name__)

EMPTY_OPERATORS = {FilterOperator.IS_EMPTY, FilterOperator.IS_NOT_EMPTY}
TEXT_OPERATORS = {
    FilterOperator.CONTAINS,
    FilterOperator.DOES_NOT_CONTAIN,
    FilterOperator.IS,
    FilterOperator.IS_NOT,
}
NUMBER_OPERATORS = {
    FilterOperator.IS,
    FilterOperator.IS_NOT,
    FilterOperator.GT,
    FilterOperator.LT,
}

_NUMBER_COMPARISONS = {
    FilterOperator.IS: "=",
    FilterOperator.IS_NOT: "<>",
    FilterOperator.GT: ">",
    FilterOperator.LT: "<",
}


# ---------- typed intermediate representation ----------

@dataclass(frozen=True)
class EmptyPredicate:
    """Trimmed string form is (or, negated, is not) empty"""
    column_id: str
    negate: bool = False


@dataclass(frozen=True)
class TextPredicate:
    """Case-insensitive substring (contains) or equality match"""
    column_id: str
    needle: str
    substring: bool
    negate: bool = False


@dataclass(frozen=True)
class NumberPredicate:
    """Numeric comparison; unparseable values never match"""
    column_id: str
    comparison: str
    operand: float


Predicate = Union[EmptyPredicate, TextPredicate, NumberPredicate]


@dataclass(frozen=True)
class SortTerm:
    column_id: str
    numeric: bool
    descending: bool = False


@dataclass
class CompiledQuery:
    predicates: List[Predicate] = field(default_factory=list)
    sort_terms: List[SortTerm] = field(default_factory=list)

    @property
    def is_fast_path(self) -> bool:
        return not self.predicates and not self.sort_terms


def _column_type(column_types: Dict[str, ColumnType], column_id: str, where: str) -> ColumnType:
    column_type = column_types.get(column_id)
    if column_type is None:
        raise InvalidColumn(f"Unknown columnId in {where}: {column_id}")
    return ColumnType(column_type)


def _compile_filter(f: Filter, column_type: ColumnType) -> Predicate:
    if f.operator in EMPTY_OPERATORS:
        return EmptyPredicate(f.columnId, negate=f.operator == FilterOperator.IS_NOT_EMPTY)

    if f.value is None or (isinstance(f.value, str) and f.value.strip() == ""):
        raise MalformedFilterValue(f"Operator {f.operator.value} requires a value")

    if column_type == ColumnType.NUMBER:
        if f.operator not in NUMBER_OPERATORS:
            raise UnsupportedOperator(
                f"Operator {f.operator.value} not supported for number columns"
            )
        operand = parse_number(f.value)
        if operand is None:
            raise MalformedFilterValue(f"Filter value {f.value!r} is not a finite number")
        return NumberPredicate(f.columnId, _NUMBER_COMPARISONS[f.operator], operand)

    if f.operator not in TEXT_OPERATORS:
        raise UnsupportedOperator(
            f"Operator {f.operator.value} not supported for non-number columns"
        )
    return TextPredicate(
        f.columnId,
        needle=str(f.value),
        substring=f.operator in (FilterOperator.CONTAINS, FilterOperator.DOES_NOT_CONTAIN),
        negate=f.operator in (FilterOperator.DOES_NOT_CONTAIN, FilterOperator.IS_NOT),
    )


def compile_query(
    column_types: Dict[str, ColumnType],
    filters: Optional[Sequence[Filter]] = None,
    sort: Optional[Sequence[SortKey]] = None,
) -> CompiledQuery:
    """Validate filters/sort against a column schema and build the IR"""
    filters = list(filters or [])
    sort = list(sort or [])

    # Unknown columns are reported before any operator problem
    for f in filters:
        _column_type(column_types, f.columnId, "filters")
    for s in sort:
        _column_type(column_types, s.columnId, "sort")

    predicates = [_compile_filter(f, ColumnType(column_types[f.columnId])) for f in filters]
    sort_terms = [
        SortTerm(
            s.columnId,
            numeric=ColumnType(column_types[s.columnId]) == ColumnType.NUMBER,
            descending=s.direction == SortDirection.DESC,
        )
        for s in sort
    ]
    return CompiledQuery(predicates=predicates, sort_terms=sort_terms)


# ---------- lowering to SQL ----------

def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlBuilder:
    """Accumulates bind parameters while rendering IR nodes for one dialect.

    Column values are rendered with the expressions column_indexes builds its
    indexes on; positive predicates use them bare so those indexes apply.
    """

    def __init__(self, dialect: str):
        self.dialect = dialect
        self.params: List[Any] = []

    @property
    def is_postgres(self) -> bool:
        return self.dialect == "postgres"

    def param(self, value: Any) -> str:
        self.params.append(value)
        return f"${len(self.params)}" if self.is_postgres else "?"

    def text_expr(self, column_id: str) -> str:
        return text_value_expr(self.dialect, column_id)

    def number_expr(self, column_id: str) -> str:
        return number_value_expr(self.dialect, column_id)

    def sort_expr(self, term: SortTerm) -> str:
        return self.number_expr(term.column_id) if term.numeric else self.text_expr(term.column_id)

    def predicate(self, node: Predicate) -> str:
        if isinstance(node, EmptyPredicate):
            trim = "btrim" if self.is_postgres else "trim"
            op = "<>" if node.negate else "="
            return f"{trim}(coalesce({self.text_expr(node.column_id)}, '')) {op} ''"

        if isinstance(node, TextPredicate):
            value = self.text_expr(node.column_id)
            if node.substring:
                pattern = self.param("%" + escape_like(node.needle) + "%")
                if self.is_postgres:
                    clause = f"{value} ILIKE {pattern}"
                else:
                    clause = f"lower({value}) LIKE lower({pattern}) ESCAPE '\\'"
            else:
                clause = f"{folded_text_expr(self.dialect, node.column_id)} = lower({self.param(node.needle)})"
            # The needle is never empty, so an absent value matches only the negated form
            return f"({value} IS NULL OR NOT ({clause}))" if node.negate else clause

        if isinstance(node, NumberPredicate):
            return f"{self.number_expr(node.column_id)} {node.comparison} {self.param(node.operand)}"

        raise TypeError(f"Unknown predicate node: {node!r}")

    def where(self, table_id: str, predicates: Sequence[Predicate]) -> str:
        clauses = [f"table_id = {self.param(table_id)}"]
        clauses.extend(self.predicate(p) for p in predicates)
        return " AND ".join(clauses)

    def partition(self, lead: SortTerm, present: bool) -> str:
        """Rows whose leading sort value is present (or, if not present, null)"""
        return f"{self.sort_expr(lead)} IS {'NOT ' if present else ''}NULL"

    def order_by(self, sort_terms: Sequence[SortTerm], lead_present: bool = True) -> str:
        """ORDER BY for one partition of the leading sort key.

        Within the present partition the leading key is never null, so it is
        ordered bare and its index serves both directions. Later keys keep
        nulls last explicitly.
        """
        if not sort_terms:
            return "row_index ASC, id ASC"
        lead, rest = sort_terms[0], sort_terms[1:]
        parts = []
        if lead_present:
            parts.append(f"{self.sort_expr(lead)} {'DESC' if lead.descending else 'ASC'}")
        for term in rest:
            expr = self.sort_expr(term)
            direction = "DESC" if term.descending else "ASC"
            parts.append(f"({expr} IS NULL) ASC, {expr} {direction}")
        parts.append("id ASC")
        return ", ".join(parts)


def clamp_window_start(start_index: int, total_count: int) -> int:
    return max(0, min(start_index, max(0, total_count - 1)))


# ---------- engine ----------

class WindowQueryEngine:
    def __init__(self, db: Database, max_window_size: Optional[int] = None):
        self.db = db
        self.max_window_size = max_window_size or settings.MAX_WINDOW_SIZE

    async def load_column_types(self, table_id: str) -> Dict[str, ColumnType]:
        table = await self.db.get_table(table_id)
        if not table:
            raise NotFound(f"Table not found: {table_id}")
        columns = await self.db.get_columns(table_id)
        return {c["id"]: ColumnType(c["type"]) for c in columns}

    async def query(
        self,
        table_id: str,
        start_index: int = 0,
        window_size: Optional[int] = None,
        filters: Optional[Sequence[Filter]] = None,
        sort: Optional[Sequence[SortKey]] = None,
    ) -> WindowResponse:
        """Return one window of the filtered, ordered rows of a table"""
        if window_size is None:
            window_size = settings.DEFAULT_WINDOW_SIZE
        if start_index < 0:
            raise ValueError("startIndex must be >= 0")
        if not 1 <= window_size <= self.max_window_size:
            raise ValueError(f"windowSize must be within [1, {self.max_window_size}]")

        column_types = await self.load_column_types(table_id)
        compiled = compile_query(column_types, filters, sort)
        lead = compiled.sort_terms[0] if compiled.sort_terms else None

        total_count, present_count = await self._count(table_id, compiled, lead)
        if total_count == 0:
            return WindowResponse(rows=[], totalCount=0, windowStart=0)

        window_start = clamp_window_start(start_index, total_count)

        if compiled.is_fast_path:
            records = await self._fetch_placement_range(table_id, window_start, window_size)
        else:
            # Rows with a leading sort value come first in either direction, nulls after
            records = []
            if window_start < present_count:
                records += await self._fetch_ordered(
                    table_id, compiled, True,
                    limit=min(window_size, present_count - window_start),
                    offset=window_start,
                )
            remaining = window_size - len(records)
            if lead is not None and remaining > 0 and present_count < total_count:
                records += await self._fetch_ordered(
                    table_id, compiled, False,
                    limit=remaining,
                    offset=max(0, window_start - present_count),
                )

        rows = [Row(**self.db.parse_row(record)) for record in records]

        logger.debug(
            f"Window table={table_id} start={window_start} size={window_size} "
            f"total={total_count} fast={compiled.is_fast_path} returned={len(rows)}"
        )
        return WindowResponse(rows=rows, totalCount=total_count, windowStart=window_start)

    async def _count(self, table_id: str, compiled: CompiledQuery, lead: Optional[SortTerm]):
        """Matching rows, and how many of them have a leading sort value"""
        builder = SqlBuilder(self.db.dialect)
        where = builder.where(table_id, compiled.predicates)
        present = f"COUNT({builder.sort_expr(lead)})" if lead is not None else "COUNT(*)"
        records = await self.db.fetch_all(
            f"SELECT COUNT(*), {present} FROM {ROWS_TABLE} WHERE {where}", builder.params
        )
        return int(records[0][0] or 0), int(records[0][1] or 0)

    async def _fetch_placement_range(self, table_id: str, window_start: int, window_size: int) -> List[Any]:
        # Placement-key range scan on (table_id, row_index)
        builder = SqlBuilder(self.db.dialect)
        where = builder.where(table_id, [])
        lower = builder.param(window_start)
        upper = builder.param(window_start + window_size)
        limit = builder.param(window_size)
        sql = (
            f"SELECT {ROW_FIELDS} FROM {ROWS_TABLE} "
            f"WHERE {where} AND row_index >= {lower} AND row_index < {upper} "
            f"ORDER BY row_index ASC, id ASC LIMIT {limit}"
        )
        return await self.db.fetch_all(sql, builder.params)

    async def _fetch_ordered(
        self, table_id: str, compiled: CompiledQuery, lead_present: bool, limit: int, offset: int
    ) -> List[Any]:
        builder = SqlBuilder(self.db.dialect)
        clauses = [builder.where(table_id, compiled.predicates)]
        if compiled.sort_terms:
            clauses.append(builder.partition(compiled.sort_terms[0], lead_present))
        order_by = builder.order_by(compiled.sort_terms, lead_present)
        limit_param = builder.param(limit)
        offset_param = builder.param(offset)
        sql = (
            f"SELECT {ROW_FIELDS} FROM {ROWS_TABLE} "
            f"WHERE {' AND '.join(clauses)} ORDER BY {order_by} "
            f"LIMIT {limit_param} OFFSET {offset_param}"
        )
        return await self.db.fetch_all(sql, builder.params)

    async def iter_pages(self, table_id: str, page_size: Optional[int] = None) -> AsyncIterator[List[Row]]:
        """Yield the table in placement order one window at a time"""
        page_size = min(page_size or settings.EXPORT_PAGE_SIZE, self.max_window_size)
        start = 0
        while True:
            page = await self.query(table_id, start, page_size)
            if not page.rows:
                return
            yield page.rows
            start = page.windowStart + page_size
            if start >= page.totalCount:
                return
