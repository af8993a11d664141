"""
Integration tests for the SQLite store driver, audit log, and job queue.
"""
import pytest

from backoffice.audit import AuditLog
from backoffice.database import Database, new_id, utcnow
from backoffice.errors import ConflictError, InternalError
from backoffice.jobs import JOB_SEND_EMAIL, MAX_ATTEMPTS, JobQueue


def _insert_invoice(db: Database, number: str, scope: str = "scope-1") -> str:
    invoice_id = new_id()
    now = utcnow()
    db.execute(
        "INSERT INTO invoices (id, invoice_number, tenant_scope_id, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?)",
        [invoice_id, number, scope, now, now],
    )
    return invoice_id


@pytest.mark.integration
class TestDatabase:
    """Integration tests for the Database wrapper."""

    def test_schema_created(self, test_db):
        """Every table exists after construction."""
        rows = test_db.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        names = {r["name"] for r in rows}
        assert {
            "tenants", "companies", "contacts", "invoices", "invoice_items", "quotes",
            "quote_items", "delivery_notes", "delivery_note_items", "documents",
            "document_tags", "document_tag_assignments", "audit_log", "jobs",
        } <= names

    def test_schema_init_is_idempotent(self, test_config, test_db):
        """Opening the same file twice keeps the data."""
        _insert_invoice(test_db, "INV-2024-00001")
        again = Database(test_config.db_path)
        assert again.fetch_value("SELECT COUNT(*) FROM invoices") == 1

    def test_rows_are_dicts(self, test_db):
        invoice_id = _insert_invoice(test_db, "INV-2024-00001")
        row = test_db.fetch_one("SELECT id, invoice_number FROM invoices WHERE id = ?", [invoice_id])
        assert row == {"id": invoice_id, "invoice_number": "INV-2024-00001"}

    def test_fetch_one_none_and_fetch_value_default(self, test_db):
        assert test_db.fetch_one("SELECT * FROM invoices WHERE id = ?", ["missing"]) is None
        assert test_db.fetch_value("SELECT total FROM invoices WHERE id = ?", ["missing"], 0) == 0

    def test_execute_returns_rowcount(self, test_db):
        _insert_invoice(test_db, "INV-2024-00001")
        _insert_invoice(test_db, "INV-2024-00002")
        assert test_db.execute("UPDATE invoices SET status = ?", ["sent"]) == 2

    def test_duplicate_number_is_conflict(self, test_db):
        """The UNIQUE index on the number column surfaces as ConflictError."""
        _insert_invoice(test_db, "INV-2024-00001")
        with pytest.raises(ConflictError):
            _insert_invoice(test_db, "INV-2024-00001")

    def test_sql_error_is_internal(self, test_db):
        with pytest.raises(InternalError):
            test_db.fetch_all("SELECT * FROM no_such_table")

    def test_not_null_violation_is_internal(self, test_db):
        """Integrity errors other than UNIQUE are not conflicts."""
        with pytest.raises(InternalError):
            test_db.execute("INSERT INTO invoices (id) VALUES (?)", [new_id()])

    def test_transaction_rolls_back_on_error(self, test_db):
        """Nothing from a failed unit of work is committed."""
        _insert_invoice(test_db, "INV-2024-00001")
        now = utcnow()
        with pytest.raises(ConflictError):
            with test_db.transaction() as conn:
                conn.execute(
                    "INSERT INTO invoices (id, invoice_number, tenant_scope_id, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [new_id(), "INV-2024-00002", "s", now, now],
                )
                conn.execute(
                    "INSERT INTO invoices (id, invoice_number, tenant_scope_id, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [new_id(), "INV-2024-00001", "s", now, now],
                )
        assert test_db.fetch_value("SELECT COUNT(*) FROM invoices") == 1

    def test_query_count(self, test_db):
        test_db.reset_query_count()
        test_db.fetch_all("SELECT * FROM invoices")
        test_db.fetch_value("SELECT COUNT(*) FROM invoices")
        test_db.execute("DELETE FROM invoices")
        assert test_db.query_count == 3

    def test_item_rows_cascade(self, test_db):
        """Deleting a parent removes its line items."""
        invoice_id = _insert_invoice(test_db, "INV-2024-00001")
        test_db.execute(
            "INSERT INTO invoice_items (id, invoice_id, product_name) VALUES (?, ?, ?)",
            [new_id(), invoice_id, "Widget"],
        )
        test_db.execute("DELETE FROM invoices WHERE id = ?", [invoice_id])
        assert test_db.fetch_value("SELECT COUNT(*) FROM invoice_items") == 0


@pytest.mark.integration
class TestAuditLog:
    """Integration tests for the audit log."""

    def test_log_and_read_back(self, test_db):
        audit = AuditLog(test_db)
        audit.log_action("user-1", "created", "invoice", "inv-1", {"total": 276})
        audit.log_action(None, "deleted", "invoice", "inv-2")

        entries = audit.entries("invoice")
        assert [e["action"] for e in entries] == ["deleted", "created"]
        assert entries[0]["actor"] == "system"
        assert entries[1]["metadata"] == {"total": 276}

    def test_entries_for_one_entity(self, test_db):
        audit = AuditLog(test_db)
        audit.log_action("u", "created", "invoice", "inv-1")
        audit.log_action("u", "created", "invoice", "inv-2")
        assert len(audit.entries("invoice", "inv-1")) == 1

    def test_write_failure_is_swallowed(self, test_db, monkeypatch):
        """A failing audit write never fails the caller."""
        def broken(*args, **kwargs):
            raise InternalError("disk full")

        monkeypatch.setattr(test_db, "execute", broken)
        AuditLog(test_db).log_action("u", "created", "invoice", "inv-1")


@pytest.mark.integration
class TestJobQueue:
    """Integration tests for the background job queue."""

    def test_enqueue_and_pending(self, test_db):
        queue = JobQueue(test_db)
        job_id = queue.enqueue(JOB_SEND_EMAIL, {"document_id": "inv-1"})
        pending = queue.pending()
        assert [j["id"] for j in pending] == [job_id]
        assert pending[0]["payload"] == {"document_id": "inv-1"}
        assert pending[0]["status"] == "pending"

    def test_done_jobs_leave_the_queue(self, test_db):
        queue = JobQueue(test_db)
        job_id = queue.enqueue(JOB_SEND_EMAIL, {})
        assert queue.mark_done(job_id)
        assert queue.pending() == []
        assert queue.stats() == {"done": 1}

    def test_failed_jobs_retry_until_max_attempts(self, test_db):
        queue = JobQueue(test_db)
        job_id = queue.enqueue(JOB_SEND_EMAIL, {})
        for _ in range(MAX_ATTEMPTS - 1):
            queue.mark_failed(job_id, "smtp timeout")
            assert [j["id"] for j in queue.pending()] == [job_id]
        queue.mark_failed(job_id, "smtp timeout")
        assert queue.pending() == []
        assert queue.get(job_id)["last_error"] == "smtp timeout"

    def test_filter_by_type(self, test_db):
        queue = JobQueue(test_db)
        queue.enqueue(JOB_SEND_EMAIL, {})
        queue.enqueue("process_document", {})
        assert len(queue.pending(job_type=JOB_SEND_EMAIL)) == 1

    def test_enqueue_failure_returns_none(self, test_db, monkeypatch):
        def broken(*args, **kwargs):
            raise InternalError("locked")

        monkeypatch.setattr(test_db, "execute", broken)
        assert JobQueue(test_db).enqueue(JOB_SEND_EMAIL, {}) is None
