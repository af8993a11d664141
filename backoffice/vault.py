"""
Document vault repositories.

Vault listings use cursor pagination (the cursor is an opaque row offset),
unlike the business documents which use page/page_size.  Folder placeholder
rows (``*.folderPlaceholder``) exist only to keep empty folders visible in
storage and are never listed.
"""
import logging
import re
from typing import Optional

from models.pagination import CursorPage, CursorRequest
from models.vault import DocumentTag, VaultDocument, VaultFilters

from .batch_loader import BatchLoader
from .database import Database, new_id, utcnow
from .errors import NotFoundError, ValidationError
from .mapper import VAULT_MAPPER, dump_json_blob
from .query_builder import (
    QueryBuilder, clamp_page_size, decode_cursor, next_cursor, order_by,
)
from .tenant import TenantResolver

logger = logging.getLogger(__name__)

FOLDER_PLACEHOLDER_PATTERN = "%.folderPlaceholder"

DOCUMENT_COLUMNS = (
    "id", "name", "title", "summary", "content", "tag", "date", "language",
    "path_tokens", "metadata", "processing_status", "tenant_scope_id", "owner_id",
    "created_at", "updated_at",
)
UPDATABLE_COLUMNS = ("title", "summary", "tag", "date", "language", "processing_status")
PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")
# Sending null for these in an update leaves them unchanged
NON_NULLABLE_COLUMNS = ("processing_status",)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")


class VaultRepository:

    def __init__(self, db: Database, resolver: Optional[TenantResolver] = None) -> None:
        self.db = db
        self.resolver = resolver or TenantResolver(db)
        self.tags = BatchLoader(
            db,
            "document_tag_assignments",
            "document_id",
            select="t.id AS id, t.name AS name, t.slug AS slug",
            join="JOIN document_tags t ON t.id = document_tag_assignments.tag_id",
            order_by="t.name",
        )

    def _scoped(self, scope: str) -> QueryBuilder:
        return QueryBuilder(
            ["d.tenant_scope_id = ?", "(d.name IS NULL OR d.name NOT LIKE ?)"],
            [scope, FOLDER_PLACEHOLDER_PATTERN],
        )

    def _tag_filter(self, scope: str, tag_ids: list[str]) -> QueryBuilder:
        return (QueryBuilder(["tenant_scope_id = ?"], [scope])
                .membership_condition("tag_id", tag_ids))

    def _assemble(self, rows: list[dict]) -> list[VaultDocument]:
        tags = self.tags.load(r["id"] for r in rows)
        return VAULT_MAPPER.assemble_many(rows, tags)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_all(self, company_id: str, request: Optional[CursorRequest] = None,
                 filters: Optional[VaultFilters] = None) -> CursorPage:
        request = request or CursorRequest()
        filters = filters or VaultFilters()
        scope = self.resolver.resolve(company_id)
        page_size = clamp_page_size(request.page_size)
        offset = decode_cursor(request.cursor)

        qb = (
            self._scoped(scope)
            .search_condition(["d.title", "d.name", "d.summary"], filters.search)
            .range_condition("d.date", filters.date_from, filters.date_to)
            .equality_condition("d.owner_id", filters.owner_id)
        )
        if filters.tags:
            qb = qb.subquery_condition(
                "d.id", "document_tag_assignments", "document_id",
                self._tag_filter(scope, filters.tags),
            )

        where, params = qb.build_where()
        rows = self.db.fetch_all(
            f"SELECT d.* FROM documents d {where} "
            f"{order_by('documents', request.sort_by, request.sort_order, alias='d')} "
            f"LIMIT ? OFFSET ?",
            params + [page_size, offset],
        )
        return CursorPage(
            data=self._assemble(rows),
            next_cursor=next_cursor(offset, page_size, len(rows)),
            page_size=page_size,
        )

    def find_by_id(self, company_id: str, document_id: str) -> VaultDocument:
        scope = self.resolver.resolve(company_id)
        row = self.db.fetch_one(
            "SELECT d.* FROM documents d WHERE d.id = ? AND d.tenant_scope_id = ?",
            [document_id, scope],
        )
        if not row:
            raise NotFoundError("Document", document_id)
        return self._assemble([row])[0]

    def find_recent(self, company_id: str, limit: int = 10) -> list[VaultDocument]:
        scope = self.resolver.resolve(company_id)
        where, params = self._scoped(scope).build_where()
        rows = self.db.fetch_all(
            f"SELECT d.* FROM documents d {where} ORDER BY d.created_at DESC LIMIT ?",
            params + [clamp_page_size(limit, 10)],
        )
        return self._assemble(rows)

    def count(self, company_id: str) -> int:
        scope = self.resolver.resolve(company_id)
        where, params = self._scoped(scope).build_where()
        return int(self.db.fetch_value(f"SELECT COUNT(*) FROM documents d {where}", params, 0))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, row: dict) -> str:
        row = dict(row)
        now = utcnow()
        row.setdefault("id", new_id())
        row.setdefault("processing_status", "pending")
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        for key in ("path_tokens", "metadata"):
            if key in row and not isinstance(row[key], str):
                row[key] = dump_json_blob(row[key])
        cols = [c for c in DOCUMENT_COLUMNS if c in row]
        self.db.execute(
            f"INSERT INTO documents ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            [row[c] for c in cols],
        )
        return row["id"]

    def update(self, company_id: str, document_id: str, changes: dict) -> VaultDocument:
        """Partial update: only the given, updatable columns change."""
        sets = {k: v for k, v in changes.items()
                if k in UPDATABLE_COLUMNS and not (v is None and k in NON_NULLABLE_COLUMNS)}
        status = sets.get("processing_status")
        if status is not None and status not in PROCESSING_STATUSES:
            raise ValidationError(f"Unknown processing status: {status}")
        scope = self.resolver.resolve(company_id)
        sets["updated_at"] = utcnow()
        assignments = ", ".join(f"{c} = ?" for c in sets)
        changed = self.db.execute(
            f"UPDATE documents SET {assignments} WHERE id = ? AND tenant_scope_id = ?",
            list(sets.values()) + [document_id, scope],
        )
        if not changed:
            raise NotFoundError("Document", document_id)
        return self.find_by_id(company_id, document_id)

    def delete(self, company_id: str, document_id: str) -> VaultDocument:
        """Delete the row (tag assignments cascade).  Returns what was deleted."""
        doc = self.find_by_id(company_id, document_id)
        self.db.execute(
            "DELETE FROM documents WHERE id = ? AND tenant_scope_id = ?",
            [document_id, doc.tenant_scope_id],
        )
        return doc


class TagRepository:

    def __init__(self, db: Database, resolver: Optional[TenantResolver] = None) -> None:
        self.db = db
        self.resolver = resolver or TenantResolver(db)

    def find_all(self, company_id: str) -> list[DocumentTag]:
        scope = self.resolver.resolve(company_id)
        rows = self.db.fetch_all(
            f"SELECT id, name, slug FROM document_tags WHERE tenant_scope_id = ? "
            f"{order_by('document_tags', 'name', 'asc')}",
            [scope],
        )
        return [DocumentTag.model_validate(r) for r in rows]

    def upsert(self, company_id: str, name: str) -> DocumentTag:
        """Return the scope's tag with this slug, creating it first if needed."""
        slug = slugify(name)
        if not slug:
            raise ValidationError("Tag name must contain letters or digits", {"name": name})
        scope = self.resolver.resolve(company_id)
        self.db.execute(
            """INSERT INTO document_tags (id, name, slug, tenant_scope_id, created_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT (slug, tenant_scope_id) DO NOTHING""",
            [new_id(), name.strip(), slug, scope, utcnow()],
        )
        row = self.db.fetch_one(
            "SELECT id, name, slug FROM document_tags WHERE slug = ? AND tenant_scope_id = ?",
            [slug, scope],
        )
        return DocumentTag.model_validate(row)

    def assign(self, company_id: str, document_id: str, tag_id: str) -> None:
        """Attach a tag to a document.  Assigning twice is a no-op."""
        scope = self.resolver.resolve(company_id)
        if not self.db.fetch_one(
            "SELECT 1 AS hit FROM documents WHERE id = ? AND tenant_scope_id = ?", [document_id, scope]
        ):
            raise NotFoundError("Document", document_id)
        if not self.db.fetch_one(
            "SELECT 1 AS hit FROM document_tags WHERE id = ? AND tenant_scope_id = ?", [tag_id, scope]
        ):
            raise NotFoundError("Tag", tag_id)
        self.db.execute(
            """INSERT OR IGNORE INTO document_tag_assignments
               (document_id, tag_id, tenant_scope_id, created_at) VALUES (?, ?, ?, ?)""",
            [document_id, tag_id, scope, utcnow()],
        )

    def unassign(self, company_id: str, document_id: str, tag_id: str) -> bool:
        scope = self.resolver.resolve(company_id)
        return self.db.execute(
            "DELETE FROM document_tag_assignments "
            "WHERE document_id = ? AND tag_id = ? AND tenant_scope_id = ?",
            [document_id, tag_id, scope],
        ) > 0
