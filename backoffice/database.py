"""
SQLite persistence layer for the sales back-office.

One database file (output/backoffice.db) holds every tenant's business
documents.  Rows are owned by a *tenant scope*: the tenant a company belongs
to, or the company itself when it has no tenant (see backoffice.tenant).

Tables
------
  tenants / companies / contacts        ownership and customer references
  invoices / quotes / delivery_notes    business documents (parent rows)
  *_items                               line items, replaced wholesale on update
  documents / document_tags /
  document_tag_assignments              the document vault
  audit_log                             fire-and-forget action log
  jobs                                  background job queue (email, processing)

All statements use positional ``?`` placeholders.  Callers never format
values into SQL text; only identifiers vetted by backoffice.query_builder
are interpolated.
"""
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence

from .errors import ConflictError, InternalError

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tenants (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    slug        TEXT NOT NULL UNIQUE,
    status      TEXT NOT NULL DEFAULT 'active',
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS companies (
    id          TEXT PRIMARY KEY,
    tenant_id   TEXT REFERENCES tenants (id),
    name        TEXT NOT NULL,
    industry    TEXT,
    address     TEXT,
    email       TEXT,
    vat_number  TEXT,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_companies_tenant ON companies (tenant_id);

CREATE TABLE IF NOT EXISTS contacts (
    id          TEXT PRIMARY KEY,
    company_id  TEXT REFERENCES companies (id),
    first_name  TEXT,
    last_name   TEXT,
    email       TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quotes (
    id                TEXT PRIMARY KEY,
    quote_number      TEXT NOT NULL,
    tenant_scope_id   TEXT NOT NULL,
    company_id        TEXT,
    contact_id        TEXT,
    status            TEXT NOT NULL DEFAULT 'draft',
    issue_date        TEXT,
    valid_until       TEXT,

    -- Money (derived by backoffice.calculator, never hand-assembled)
    gross_total       REAL NOT NULL DEFAULT 0,
    discount_amount   REAL NOT NULL DEFAULT 0,
    subtotal          REAL NOT NULL DEFAULT 0,
    vat_rate          REAL NOT NULL DEFAULT 0,
    tax_rate          REAL NOT NULL DEFAULT 0,
    include_vat       INTEGER NOT NULL DEFAULT 1,
    include_tax       INTEGER NOT NULL DEFAULT 0,
    vat_amount        REAL NOT NULL DEFAULT 0,
    tax_amount        REAL NOT NULL DEFAULT 0,
    total             REAL NOT NULL DEFAULT 0,
    currency          TEXT NOT NULL DEFAULT 'EUR',

    notes             TEXT,
    terms             TEXT,

    -- Opaque JSON blobs, round-tripped verbatim
    from_details      TEXT,
    customer_details  TEXT,
    template_settings TEXT,

    created_by        TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_quotes_number ON quotes (quote_number);
CREATE INDEX IF NOT EXISTS idx_quotes_scope  ON quotes (tenant_scope_id, created_at DESC);

CREATE TABLE IF NOT EXISTS quote_items (
    id                TEXT PRIMARY KEY,
    quote_id          TEXT NOT NULL REFERENCES quotes (id) ON DELETE CASCADE,
    product_name      TEXT NOT NULL,
    description       TEXT,
    quantity          REAL NOT NULL DEFAULT 0,
    unit              TEXT NOT NULL DEFAULT 'pcs',
    unit_price        REAL NOT NULL DEFAULT 0,
    discount_percent  REAL NOT NULL DEFAULT 0,
    vat_rate_percent  REAL NOT NULL DEFAULT 0,
    line_total        REAL NOT NULL DEFAULT 0,
    sort_order        INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_quote_items_parent ON quote_items (quote_id);

CREATE TABLE IF NOT EXISTS invoices (
    id                TEXT PRIMARY KEY,
    invoice_number    TEXT NOT NULL,
    tenant_scope_id   TEXT NOT NULL,
    company_id        TEXT,
    contact_id        TEXT,
    quote_id          TEXT,
    status            TEXT NOT NULL DEFAULT 'draft',
    issue_date        TEXT,
    due_date          TEXT,

    gross_total       REAL NOT NULL DEFAULT 0,
    discount_amount   REAL NOT NULL DEFAULT 0,
    subtotal          REAL NOT NULL DEFAULT 0,
    vat_rate          REAL NOT NULL DEFAULT 0,
    tax_rate          REAL NOT NULL DEFAULT 0,
    include_vat       INTEGER NOT NULL DEFAULT 1,
    include_tax       INTEGER NOT NULL DEFAULT 0,
    vat_amount        REAL NOT NULL DEFAULT 0,
    tax_amount        REAL NOT NULL DEFAULT 0,
    total             REAL NOT NULL DEFAULT 0,
    paid_amount       REAL NOT NULL DEFAULT 0,
    currency          TEXT NOT NULL DEFAULT 'EUR',

    notes             TEXT,
    terms             TEXT,
    from_details      TEXT,
    customer_details  TEXT,
    template_settings TEXT,

    created_by        TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_invoices_number ON invoices (invoice_number);
CREATE INDEX IF NOT EXISTS idx_invoices_scope  ON invoices (tenant_scope_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices (status);

CREATE TABLE IF NOT EXISTS invoice_items (
    id                TEXT PRIMARY KEY,
    invoice_id        TEXT NOT NULL REFERENCES invoices (id) ON DELETE CASCADE,
    product_name      TEXT NOT NULL,
    description       TEXT,
    quantity          REAL NOT NULL DEFAULT 0,
    unit              TEXT NOT NULL DEFAULT 'pcs',
    unit_price        REAL NOT NULL DEFAULT 0,
    discount_percent  REAL NOT NULL DEFAULT 0,
    vat_rate_percent  REAL NOT NULL DEFAULT 0,
    line_total        REAL NOT NULL DEFAULT 0,
    sort_order        INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_invoice_items_parent ON invoice_items (invoice_id);

CREATE TABLE IF NOT EXISTS delivery_notes (
    id                TEXT PRIMARY KEY,
    delivery_number   TEXT NOT NULL,
    tenant_scope_id   TEXT NOT NULL,
    company_id        TEXT,
    contact_id        TEXT,
    invoice_id        TEXT,
    status            TEXT NOT NULL DEFAULT 'pending',
    issue_date        TEXT,
    ship_date         TEXT,
    delivery_date     TEXT,
    shipping_address  TEXT,
    tracking_number   TEXT,
    carrier           TEXT,

    gross_total       REAL NOT NULL DEFAULT 0,
    discount_amount   REAL NOT NULL DEFAULT 0,
    subtotal          REAL NOT NULL DEFAULT 0,
    vat_rate          REAL NOT NULL DEFAULT 0,
    tax_rate          REAL NOT NULL DEFAULT 0,
    include_vat       INTEGER NOT NULL DEFAULT 1,
    include_tax       INTEGER NOT NULL DEFAULT 0,
    vat_amount        REAL NOT NULL DEFAULT 0,
    tax_amount        REAL NOT NULL DEFAULT 0,
    total             REAL NOT NULL DEFAULT 0,
    currency          TEXT NOT NULL DEFAULT 'EUR',

    notes             TEXT,
    from_details      TEXT,
    customer_details  TEXT,
    template_settings TEXT,

    created_by        TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_delivery_notes_number ON delivery_notes (delivery_number);
CREATE INDEX IF NOT EXISTS idx_delivery_notes_scope  ON delivery_notes (tenant_scope_id, created_at DESC);

CREATE TABLE IF NOT EXISTS delivery_note_items (
    id                TEXT PRIMARY KEY,
    delivery_note_id  TEXT NOT NULL REFERENCES delivery_notes (id) ON DELETE CASCADE,
    product_name      TEXT NOT NULL,
    description       TEXT,
    quantity          REAL NOT NULL DEFAULT 0,
    unit              TEXT NOT NULL DEFAULT 'pcs',
    unit_price        REAL NOT NULL DEFAULT 0,
    discount_percent  REAL NOT NULL DEFAULT 0,
    vat_rate_percent  REAL NOT NULL DEFAULT 0,
    line_total        REAL NOT NULL DEFAULT 0,
    sort_order        INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_delivery_note_items_parent ON delivery_note_items (delivery_note_id);

CREATE TABLE IF NOT EXISTS documents (
    id                TEXT PRIMARY KEY,
    name              TEXT,
    title             TEXT,
    summary           TEXT,
    content           TEXT,
    tag               TEXT,
    date              TEXT,
    language          TEXT,
    path_tokens       TEXT,          -- JSON array
    metadata          TEXT,          -- JSON object: size, mimetype, original_name
    processing_status TEXT NOT NULL DEFAULT 'pending',
    tenant_scope_id   TEXT NOT NULL,
    owner_id          TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_scope ON documents (tenant_scope_id, created_at DESC);

CREATE TABLE IF NOT EXISTS document_tags (
    id                TEXT PRIMARY KEY,
    name              TEXT NOT NULL,
    slug              TEXT NOT NULL,
    tenant_scope_id   TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    UNIQUE (slug, tenant_scope_id)
);

CREATE TABLE IF NOT EXISTS document_tag_assignments (
    document_id       TEXT NOT NULL REFERENCES documents (id) ON DELETE CASCADE,
    tag_id            TEXT NOT NULL REFERENCES document_tags (id) ON DELETE CASCADE,
    tenant_scope_id   TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    PRIMARY KEY (document_id, tag_id)
);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    actor       TEXT    NOT NULL DEFAULT 'system',
    action      TEXT    NOT NULL,   -- created | updated | deleted | payment_recorded | ...
    entity_type TEXT    NOT NULL,
    entity_id   TEXT,
    metadata    TEXT                -- optional JSON blob
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);

CREATE TABLE IF NOT EXISTS jobs (
    id          TEXT PRIMARY KEY,
    job_type    TEXT NOT NULL,      -- send_email | process_document
    payload     TEXT NOT NULL,      -- JSON
    status      TEXT NOT NULL DEFAULT 'pending',
    attempts    INTEGER NOT NULL DEFAULT 0,
    last_error  TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status, created_at);
"""


class Database:
    """
    Thin wrapper around an SQLite database file.

    Acts as the store driver for the core: it accepts SQL text with
    positional placeholders plus an ordered parameter list and returns rows
    as plain dicts.  sqlite3 errors are translated into the back-office
    error taxonomy (UNIQUE violations become ConflictError, everything else
    InternalError).
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.query_count = 0
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as exc:
            raise InternalError(f"Could not open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            if "UNIQUE" in str(exc).upper():
                raise ConflictError(f"Unique constraint violated: {exc}") from exc
            raise InternalError(f"Integrity error: {exc}") from exc
        except sqlite3.Error as exc:
            conn.rollback()
            raise InternalError(f"Database error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run several statements as one unit of work.

        BEGIN IMMEDIATE takes the write lock up front, so concurrent readers
        keep seeing the previous committed snapshot until the whole unit
        commits.
        """
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    # ------------------------------------------------------------------
    # Statement helpers
    # ------------------------------------------------------------------

    def fetch_all(self, sql: str, params: Sequence = ()) -> list[dict]:
        """Run a SELECT and return every row as a dict."""
        self.query_count += 1
        with self._conn() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [dict(r) for r in rows]

    def fetch_one(self, sql: str, params: Sequence = ()) -> Optional[dict]:
        """Run a SELECT and return the first row, or None."""
        self.query_count += 1
        with self._conn() as conn:
            row = conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row else None

    def fetch_value(self, sql: str, params: Sequence = (), default=None):
        """Run a SELECT and return the first column of the first row."""
        row = self.fetch_one(sql, params)
        if not row:
            return default
        return next(iter(row.values()))

    def execute(self, sql: str, params: Sequence = ()) -> int:
        """Run a write statement and return the number of rows changed."""
        self.query_count += 1
        with self._conn() as conn:
            cur = conn.execute(sql, tuple(params))
            return cur.rowcount

    def reset_query_count(self) -> None:
        self.query_count = 0
