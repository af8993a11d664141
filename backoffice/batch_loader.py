"""
Batch child-row loading.

Loads the children (line items, tag assignments) of a whole page of parents
in one query instead of one query per parent, then groups them by parent id.
"""
import logging
from collections import OrderedDict
from typing import Iterable, Optional

from .database import Database
from .query_builder import is_identifier

logger = logging.getLogger(__name__)


class BatchLoader:
    """
    One instance per child table.

      table        child table name
      foreign_key  column holding the parent id
      select       column list, defaults to ``<table>.*``
      join         optional JOIN clause (e.g. tag assignments -> tags)
      order_by     optional ORDER BY column list applied within the query
    """

    def __init__(
        self,
        db: Database,
        table: str,
        foreign_key: str,
        select: Optional[str] = None,
        join: str = "",
        order_by: Optional[str] = None,
    ) -> None:
        if not is_identifier(table) or not is_identifier(foreign_key):
            raise ValueError(f"Invalid child table or key: {table}.{foreign_key}")
        self.db = db
        self.table = table
        self.foreign_key = foreign_key
        self.select = select or f"{table}.*"
        self.join = join
        self.order_by = order_by

    def load(self, parent_ids: Iterable[str]) -> dict[str, list[dict]]:
        """
        Return ``{parent_id: [child, ...]}`` for every requested parent id.

        Zero ids issue no query.  Parents without children map to an empty
        list.  Store errors propagate; there is no partial result.
        """
        ids = list(OrderedDict.fromkeys(pid for pid in parent_ids if pid))
        if not ids:
            return {}

        placeholders = ", ".join("?" for _ in ids)
        fk = f"{self.table}.{self.foreign_key}"
        sql = (
            f"SELECT {self.select}, {fk} AS _parent_id FROM {self.table} {self.join} "
            f"WHERE {fk} IN ({placeholders})"
        )
        if self.order_by:
            sql += f" ORDER BY {self.order_by}"

        rows = self.db.fetch_all(sql, ids)

        grouped: dict[str, list[dict]] = {pid: [] for pid in ids}
        for row in rows:
            parent_id = row.pop("_parent_id")
            grouped.setdefault(parent_id, []).append(row)

        logger.debug("Loaded %d %s rows for %d parents", len(rows), self.table, len(ids))
        return grouped
