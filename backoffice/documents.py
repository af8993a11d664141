"""
Shared repository for business documents (invoices, quotes, delivery notes).

Each subclass names its table, number column, item table, number sequence,
and mapper; everything else (scoped listing, detail, create, update with
wholesale item replacement, delete) is identical across document types.

Read path:   resolve scope -> QueryBuilder predicate -> COUNT + SELECT
             -> BatchLoader for items -> DocumentMapper
Write path:  one transaction for parent row + items.
"""
import logging
import sqlite3
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from models.pagination import ListResult, PageRequest
from models.requests import DocumentFilters

from .batch_loader import BatchLoader
from .database import Database, new_id, utcnow
from .errors import NotFoundError
from .mapper import DocumentMapper, dump_json_blob
from .numbering import NumberGenerator, NumberSequence
from .query_builder import QueryBuilder, order_by, paginate
from .tenant import TenantResolver

logger = logging.getLogger(__name__)

COMMON_COLUMNS = (
    "id", "tenant_scope_id", "company_id", "contact_id", "status", "issue_date",
    "gross_total", "discount_amount", "subtotal", "vat_rate", "tax_rate",
    "include_vat", "include_tax", "vat_amount", "tax_amount", "total", "currency",
    "notes", "from_details", "customer_details", "template_settings",
    "created_by", "created_at", "updated_at",
)
JSON_COLUMNS = ("from_details", "customer_details", "template_settings")
ITEM_COLUMNS = (
    "product_name", "description", "quantity", "unit", "unit_price",
    "discount_percent", "vat_rate_percent", "line_total", "sort_order",
)
# Never changed by update()
IMMUTABLE_COLUMNS = ("id", "tenant_scope_id", "created_by", "created_at")


def _to_db_value(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS:
        return dump_json_blob(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class DocumentRepository:

    entity: str = "Document"
    table: str = ""
    alias: str = "d"
    number_column: str = ""
    items_table: str = ""
    items_fk: str = ""
    sequence: NumberSequence
    mapper: DocumentMapper
    extra_columns: tuple[str, ...] = ()

    def __init__(self, db: Database, resolver: Optional[TenantResolver] = None,
                 number_fetch_limit: int = 100) -> None:
        self.db = db
        self.resolver = resolver or TenantResolver(db)
        self.items = BatchLoader(
            db, self.items_table, self.items_fk,
            order_by=f"{self.items_table}.sort_order, {self.items_table}.rowid",
        )
        self.numbers = NumberGenerator(db, self.sequence, number_fetch_limit)

    @property
    def columns(self) -> tuple[str, ...]:
        return COMMON_COLUMNS + (self.number_column,) + self.extra_columns

    # ------------------------------------------------------------------
    # SQL fragments
    # ------------------------------------------------------------------

    def _from_sql(self) -> str:
        joins = " ".join(rel.join_sql(self.alias) for rel in self.mapper.relations)
        return f"{self.table} {self.alias} {joins}".strip()

    def _select_sql(self) -> str:
        parts = [f"{self.alias}.*"] + [rel.select_sql() for rel in self.mapper.relations]
        return ", ".join(parts)

    def _col(self, name: str) -> str:
        return f"{self.alias}.{name}"

    def _scoped(self, scope: str) -> QueryBuilder:
        # Built directly rather than via equality_condition so that a blank
        # scope still filters (and matches nothing) instead of being skipped.
        return QueryBuilder([f"{self._col('tenant_scope_id')} = ?"], [scope])

    def _search_columns(self) -> list[str]:
        cols = [self._col(self.number_column)]
        if any(rel.name == "company" for rel in self.mapper.relations):
            cols.append("co.name")
        return cols

    def _filtered(self, scope: str, filters: Optional[DocumentFilters]) -> QueryBuilder:
        qb = self._scoped(scope)
        if filters is None:
            return qb
        return (
            qb.search_condition(self._search_columns(), filters.search)
            .equality_condition(self._col("status"), filters.status)
            .membership_condition(self._col("status"), filters.statuses)
            .uuid_condition(self._col("company_id"), filters.company_id)
            .range_condition(self._col("issue_date"), filters.date_from, filters.date_to)
            .range_condition(self._col("total"), filters.min_total, filters.max_total)
        )

    def _select(self, qb: QueryBuilder, order: str = "",
                limit: Optional[int] = None, offset: int = 0) -> list:
        where, params = qb.build_where()
        sql = f"SELECT {self._select_sql()} FROM {self._from_sql()} {where} {order}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + [limit, offset]
        rows = self.db.fetch_all(sql, params)
        children = self.items.load(r["id"] for r in rows)
        return self.mapper.assemble_many(rows, children)

    def _count(self, qb: QueryBuilder) -> int:
        where, params = qb.build_where()
        return int(self.db.fetch_value(
            f"SELECT COUNT(*) AS n FROM {self._from_sql()} {where}", params, 0
        ))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_all(self, company_id: str, page: Optional[PageRequest] = None,
                 filters: Optional[DocumentFilters] = None) -> ListResult:
        page = page or PageRequest()
        scope = self.resolver.resolve(company_id)
        qb = self._filtered(scope, filters)
        pg = paginate(page.page, page.page_size)

        total = self._count(qb)
        data = self._select(
            qb,
            order=order_by(self.table, page.sort_by, page.sort_order, alias=self.alias),
            limit=pg.limit,
            offset=pg.offset,
        )
        return ListResult(data=data, total=total, page=pg.page, page_size=pg.page_size)

    def find_by_id(self, company_id: str, document_id: str):
        scope = self.resolver.resolve(company_id)
        qb = self._scoped(scope).equality_condition(self._col("id"), document_id)
        found = self._select(qb, limit=1) if document_id else []
        if not found:
            raise NotFoundError(self.entity, document_id)
        return found[0]

    def find_by_number(self, company_id: str, number: str):
        scope = self.resolver.resolve(company_id)
        qb = self._scoped(scope).equality_condition(self._col(self.number_column), number)
        found = self._select(qb, limit=1) if number else []
        if not found:
            raise NotFoundError(self.entity, number)
        return found[0]

    def find_by_status(self, company_id: str, statuses: Sequence[str],
                       page: Optional[PageRequest] = None) -> ListResult:
        return self.find_all(company_id, page, DocumentFilters(statuses=list(statuses)))

    def count(self, company_id: str, filters: Optional[DocumentFilters] = None) -> int:
        scope = self.resolver.resolve(company_id)
        return self._count(self._filtered(scope, filters))

    def next_number(self, year: Optional[int] = None) -> str:
        return self.numbers.next_number(year)

    def iter_all(self, batch_size: int = 100) -> Iterable:
        """Every document of this type across all scopes, a page at a time."""
        offset = 0
        while True:
            batch = self._select(QueryBuilder(), order=f"ORDER BY {self._col('created_at')}",
                                 limit=batch_size, offset=offset)
            yield from batch
            if len(batch) < batch_size:
                return
            offset += batch_size

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert_items(self, conn: sqlite3.Connection, parent_id: str,
                      items: Sequence[dict]) -> None:
        cols = ("id", self.items_fk) + ITEM_COLUMNS
        sql = (
            f"INSERT INTO {self.items_table} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)})"
        )
        for idx, item in enumerate(items):
            values = {"id": item.get("id") or new_id(), self.items_fk: parent_id, "sort_order": idx}
            values.update({c: item[c] for c in ITEM_COLUMNS if c in item and item[c] is not None})
            values.setdefault("unit", "pcs")
            conn.execute(sql, [values.get(c) for c in cols])

    def create(self, row: dict, items: Sequence[dict] = ()) -> str:
        """Insert the parent row and its items in one transaction.  Returns the new id."""
        row = dict(row)
        now = utcnow()
        row.setdefault("id", new_id())
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        cols = [c for c in self.columns if c in row]

        with self.db.transaction() as conn:
            conn.execute(
                f"INSERT INTO {self.table} ({', '.join(cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)})",
                [_to_db_value(c, row[c]) for c in cols],
            )
            self._insert_items(conn, row["id"], items)

        logger.info("Created %s %s (%s)", self.entity.lower(), row.get(self.number_column), row["id"])
        return row["id"]

    def update(self, company_id: str, document_id: str, changes: dict,
               items: Optional[Sequence[dict]] = None) -> None:
        """
        Apply column changes and, when items is not None, replace every item.

        The item delete and re-insert share the parent's transaction, so a
        concurrent reader sees either the old items or the new ones.
        """
        scope = self.resolver.resolve(company_id)
        sets = {c: v for c, v in changes.items() if c in self.columns and c not in IMMUTABLE_COLUMNS}
        sets["updated_at"] = utcnow()

        with self.db.transaction() as conn:
            exists = conn.execute(
                f"SELECT 1 FROM {self.table} WHERE id = ? AND tenant_scope_id = ?",
                [document_id, scope],
            ).fetchone()
            if not exists:
                raise NotFoundError(self.entity, document_id)

            assignments = ", ".join(f"{c} = ?" for c in sets)
            conn.execute(
                f"UPDATE {self.table} SET {assignments} WHERE id = ?",
                [_to_db_value(c, v) for c, v in sets.items()] + [document_id],
            )
            if items is not None:
                conn.execute(f"DELETE FROM {self.items_table} WHERE {self.items_fk} = ?", [document_id])
                self._insert_items(conn, document_id, items)

        logger.info("Updated %s %s", self.entity.lower(), document_id)

    def delete(self, company_id: str, document_id: str) -> None:
        scope = self.resolver.resolve(company_id)
        changed = self.db.execute(
            f"DELETE FROM {self.table} WHERE id = ? AND tenant_scope_id = ?",
            [document_id, scope],
        )
        if not changed:
            raise NotFoundError(self.entity, document_id)
        logger.info("Deleted %s %s", self.entity.lower(), document_id)
