"""
Safe dynamic WHERE / ORDER BY / LIMIT construction.

QueryBuilder accumulates typed conditions.  Each condition contributes its
own ``?`` placeholders and the matching values, in order, so the predicate
text never contains a caller-supplied value.  Column names are identifiers
chosen by repository code, and are still checked against a strict identifier
pattern; sort columns are checked against a per-table allow-list.

Nothing in this module raises for bad input.  Blank or malformed filter
values turn the condition into a no-op, unknown sort columns fall back to
``created_at DESC`` and unparseable page numbers fall back to page 1.

Usage:
    qb = (QueryBuilder()
          .equality_condition("tenant_scope_id", scope)
          .search_condition(["invoice_number"], "2024")
          .membership_condition("status", ["sent", "overdue"]))
    where, params = qb.build_where()
    order = order_by("invoices", sort_by, sort_order)
    page = paginate(page, page_size)
    sql = f"SELECT * FROM invoices {where} {order} LIMIT ? OFFSET ?"
    rows = db.fetch_all(sql, params + [page.limit, page.offset])
"""
import math
import re
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

DEFAULT_SORT_COLUMN = "created_at"
DEFAULT_SORT_ORDER = "DESC"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Sortable columns per table.  Anything else sorts by created_at.
ALLOWED_SORT_COLUMNS: dict[str, tuple[str, ...]] = {
    "invoices": ("created_at", "updated_at", "invoice_number", "status",
                 "issue_date", "due_date", "total"),
    "quotes": ("created_at", "updated_at", "quote_number", "status",
               "issue_date", "valid_until", "total"),
    "delivery_notes": ("created_at", "updated_at", "delivery_number", "status",
                       "ship_date", "delivery_date"),
    "documents": ("created_at", "updated_at", "title", "name", "date"),
    "document_tags": ("created_at", "name", "slug"),
}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_identifier(name: Any) -> bool:
    return isinstance(name, str) and bool(_IDENTIFIER_RE.match(name))


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


class QueryBuilder:
    """
    Immutable accumulator of parameterised conditions.

    Every ``*_condition`` method returns a new builder; the receiver is left
    untouched, so a base builder (e.g. the tenant-scope condition) can be
    shared between a count query and a select query.
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self, clauses: Sequence[str] = (), params: Sequence[Any] = ()) -> None:
        self._clauses: tuple[str, ...] = tuple(clauses)
        self._params: tuple[Any, ...] = tuple(params)

    def _with(self, clause: str, params: Sequence[Any]) -> "QueryBuilder":
        return QueryBuilder(self._clauses + (clause,), self._params + tuple(params))

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def equality_condition(self, column: str, value: Any) -> "QueryBuilder":
        """``column = ?``; skipped for None and the empty string."""
        if _is_blank(value) or not is_identifier(column):
            return self
        return self._with(f"{column} = ?", [value])

    def uuid_condition(self, column: str, value: Any) -> "QueryBuilder":
        """Equality that only applies when value is a well-formed UUID."""
        if not is_valid_uuid(value):
            return self
        return self.equality_condition(column, value)

    def search_condition(self, columns: Iterable[str], term: Any) -> "QueryBuilder":
        """
        Case-insensitive substring match over several columns, OR-ed together.

        The wildcarded term is bound once per column.  SQLite's LIKE is
        case-insensitive for ASCII.
        """
        if not isinstance(term, str) or not term.strip():
            return self
        cols = [c for c in columns if is_identifier(c)]
        if not cols:
            return self
        pattern = f"%{term.strip()}%"
        clause = "(" + " OR ".join(f"{c} LIKE ?" for c in cols) + ")"
        return self._with(clause, [pattern] * len(cols))

    def range_condition(self, column: str, min_value: Any = None,
                        max_value: Any = None) -> "QueryBuilder":
        """Inclusive lower and/or upper bound; each side is optional."""
        if not is_identifier(column):
            return self
        qb = self
        if not _is_blank(min_value):
            qb = qb._with(f"{column} >= ?", [min_value])
        if not _is_blank(max_value):
            qb = qb._with(f"{column} <= ?", [max_value])
        return qb

    def membership_condition(self, column: str, values: Optional[Iterable[Any]]) -> "QueryBuilder":
        """``column IN (?, ?, ...)``; skipped when values is empty."""
        if values is None or isinstance(values, (str, bytes)) or not is_identifier(column):
            return self
        vals = list(values)
        if not vals:
            return self
        placeholders = ", ".join("?" for _ in vals)
        return self._with(f"{column} IN ({placeholders})", vals)

    def subquery_condition(self, column: str, table: str, select: str,
                           inner: "QueryBuilder") -> "QueryBuilder":
        """
        ``column IN (SELECT select FROM table WHERE <inner>)``.

        The inner builder's params are carried over, so the bound variable
        count depends only on the inner filters, never on how many rows the
        subquery matches.  Skipped when inner has no conditions.
        """
        if not len(inner) or not all(is_identifier(c) for c in (column, table, select)):
            return self
        predicate, params = inner.build_predicate()
        return self._with(f"{column} IN (SELECT {select} FROM {table} WHERE {predicate})", params)

    def boolean_condition(self, column: str, value: Optional[bool]) -> "QueryBuilder":
        """Skipped only when value is None; False is a real filter."""
        if value is None or not is_identifier(column):
            return self
        return self._with(f"{column} = ?", [1 if value else 0])

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def build_predicate(self) -> tuple[str, list[Any]]:
        """
        Return ``(predicate, params)``: the AND-joined conditions (empty
        string when there are none) and the values in placeholder order.
        """
        return " AND ".join(self._clauses), list(self._params)

    def build_where(self) -> tuple[str, list[Any]]:
        """Like build_predicate() but prefixed with WHERE when non-empty."""
        predicate, params = self.build_predicate()
        return (f"WHERE {predicate}" if predicate else ""), params

    @property
    def param_count(self) -> int:
        return len(self._params)

    def __len__(self) -> int:
        return len(self._clauses)

    def __repr__(self) -> str:
        return f"QueryBuilder({' AND '.join(self._clauses)!r}, {list(self._params)!r})"


# ----------------------------------------------------------------------
# Sorting
# ----------------------------------------------------------------------

def sanitize_sort_column(table: str, column: Any) -> str:
    allowed = ALLOWED_SORT_COLUMNS.get(table, (DEFAULT_SORT_COLUMN,))
    return column if isinstance(column, str) and column in allowed else DEFAULT_SORT_COLUMN


def sanitize_sort_order(order: Any) -> str:
    return "ASC" if isinstance(order, str) and order.lower() == "asc" else "DESC"


def order_by(table: str, sort_by: Any = None, sort_order: Any = None,
             alias: Optional[str] = None) -> str:
    """
    Build an ORDER BY clause from allow-listed parts.

    An unknown column falls back to created_at DESC as a whole: a rejected
    column never keeps a caller-chosen direction.
    """
    column = sanitize_sort_column(table, sort_by)
    if column == DEFAULT_SORT_COLUMN and sort_by != DEFAULT_SORT_COLUMN:
        direction = DEFAULT_SORT_ORDER
    else:
        direction = sanitize_sort_order(sort_order)
    prefix = f"{alias}." if alias and is_identifier(alias) else ""
    return f"ORDER BY {prefix}{column} {direction}"


# ----------------------------------------------------------------------
# Pagination
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    limit: int
    offset: int


def _floor_int(value: Any, default: int) -> int:
    try:
        return math.floor(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def paginate(page: Any = 1, page_size: Any = DEFAULT_PAGE_SIZE) -> Pagination:
    """Clamp page to >= 1 and page_size to [1, 100]; offset = (page - 1) * page_size."""
    safe_page = max(1, _floor_int(page, 1))
    safe_size = min(MAX_PAGE_SIZE, max(1, _floor_int(page_size, DEFAULT_PAGE_SIZE)))
    return Pagination(
        page=safe_page,
        page_size=safe_size,
        limit=safe_size,
        offset=(safe_page - 1) * safe_size,
    )


def clamp_page_size(page_size: Any, default: int = DEFAULT_PAGE_SIZE) -> int:
    return min(MAX_PAGE_SIZE, max(1, _floor_int(page_size, default)))


def decode_cursor(cursor: Any) -> int:
    """Opaque cursor -> row offset.  Anything that is not a non-negative integer is 0."""
    if cursor is None:
        return 0
    try:
        offset = int(str(cursor).strip())
    except (TypeError, ValueError):
        return 0
    return offset if offset > 0 else 0


def next_cursor(offset: int, page_size: int, returned: int) -> Optional[str]:
    """The following page's cursor, or None when the page came back short."""
    if returned < page_size:
        return None
    return str(offset + page_size)
