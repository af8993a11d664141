"""
Integration tests for SalesService: create / update / payment / totals flows.
"""
import pytest

from backoffice.errors import ConflictError, InternalError, NotFoundError, ValidationError
from backoffice.jobs import JOB_SEND_EMAIL
from backoffice.numbering import INVOICE_SEQUENCE, NumberGenerator, current_year, format_number
from models.pagination import PageRequest


@pytest.mark.integration
class TestCreate:
    """Integration tests for document creation."""

    def test_invoice_totals_persisted(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload, actor="user-1")

        assert invoice.gross_total == pytest.approx(250)
        assert invoice.discount_amount == pytest.approx(20)
        assert invoice.subtotal == pytest.approx(230)
        assert invoice.vat_amount == pytest.approx(46)
        assert invoice.total == pytest.approx(276)
        assert [i.line_total for i in invoice.items] == [pytest.approx(180), pytest.approx(50)]
        assert invoice.created_by == "user-1"
        assert invoice.currency == "EUR"
        assert invoice.status == "draft"

    def test_read_back_matches_create_response(self, sales, seeded, invoice_payload):
        created = sales.create_invoice(seeded["other"], invoice_payload)
        assert sales.get_invoice(seeded["other"], created.id) == created

    def test_numbers_are_sequential(self, sales, seeded, invoice_payload):
        year = current_year()
        first = sales.create_invoice(seeded["other"], invoice_payload)
        second = sales.create_invoice(seeded["acme"], invoice_payload)
        assert first.invoice_number == format_number("INV", year, 1)
        assert second.invoice_number == format_number("INV", year, 2)

    def test_each_type_has_its_own_sequence(self, sales, seeded, sample_items):
        year = current_year()
        sales.create_invoice(seeded["acme"], {"items": sample_items})
        quote = sales.create_quote(seeded["acme"], {"items": sample_items})
        note = sales.create_delivery_note(seeded["acme"], {"items": sample_items})
        assert quote.quote_number == f"QUO-{year}-00001"
        assert note.delivery_number == f"DEL-{year}-00001"

    def test_sequence_continues_after_gap(self, sales, seeded, invoice_payload):
        year = current_year()
        sales.create_invoice(seeded["other"], dict(invoice_payload,
                                                   invoice_number=format_number("INV", year, 47)))
        nxt = sales.create_invoice(seeded["other"], invoice_payload)
        assert nxt.invoice_number == format_number("INV", year, 48)

    def test_non_ascii_digit_number_does_not_block_minting(self, sales, seeded, invoice_payload):
        """A client number like INV-<year>-0² parses as 0 and is skipped."""
        year = current_year()
        sales.create_invoice(seeded["other"], dict(invoice_payload,
                                                   invoice_number=f"INV-{year}-0²"))
        minted = sales.create_invoice(seeded["other"], invoice_payload)
        assert minted.invoice_number == format_number("INV", year, 1)

    def test_taken_candidate_moves_to_next_number(self, sales, seeded, invoice_payload):
        """Only the newest row is read; the candidate it implies is already taken."""
        older = sales.create_invoice(seeded["other"], dict(invoice_payload,
                                                           invoice_number="INV-2024-00002"))
        newer = sales.create_invoice(seeded["other"], dict(invoice_payload,
                                                           invoice_number="INV-2024-00001"))
        sales.db.execute("UPDATE invoices SET created_at = ? WHERE id = ?",
                         ["2024-01-01T00:00:00+00:00", older.id])
        sales.db.execute("UPDATE invoices SET created_at = ? WHERE id = ?",
                         ["2024-02-01T00:00:00+00:00", newer.id])

        generator = NumberGenerator(sales.db, INVOICE_SEQUENCE, fetch_limit=1)
        assert generator.next_number(2024) == "INV-2024-00003"

    def test_duplicate_client_number_is_conflict(self, sales, seeded, invoice_payload):
        payload = dict(invoice_payload, invoice_number="INV-2024-00001")
        sales.create_invoice(seeded["other"], payload)
        with pytest.raises(ConflictError):
            sales.create_invoice(seeded["other"], payload)

    def test_minted_number_retried_once_on_conflict(self, sales, seeded, invoice_payload, monkeypatch):
        """A concurrent writer took the minted number; the retry mints a fresh one."""
        taken = sales.create_invoice(seeded["other"], invoice_payload).invoice_number
        minted = iter([taken, "INV-2024-00099"])
        monkeypatch.setattr(sales.invoices, "next_number", lambda year=None: next(minted))

        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        assert invoice.invoice_number == "INV-2024-00099"

    def test_conflict_after_retries_propagates(self, sales, seeded, invoice_payload, monkeypatch):
        taken = sales.create_invoice(seeded["other"], invoice_payload).invoice_number
        monkeypatch.setattr(sales.invoices, "next_number", lambda year=None: taken)
        with pytest.raises(ConflictError):
            sales.create_invoice(seeded["other"], invoice_payload)
        assert sales.invoices.count(seeded["other"]) == 1

    def test_vat_defaults_per_type(self, sales, seeded, sample_items):
        invoice = sales.create_invoice(seeded["acme"], {"items": sample_items})
        quote = sales.create_quote(seeded["acme"], {"items": sample_items})
        note = sales.create_delivery_note(seeded["acme"], {"items": sample_items})
        assert invoice.vat_rate == 20
        assert quote.vat_rate == 20
        assert note.vat_rate == 0
        assert note.include_vat is False
        assert note.total == pytest.approx(230)

    def test_item_vat_defaults_to_document_rate(self, sales, seeded, sample_items):
        items = [dict(sample_items[0], vat_rate_percent=10), sample_items[1]]
        invoice = sales.create_invoice(seeded["acme"], {"items": items, "vat_rate": 20})
        assert [i.vat_rate_percent for i in invoice.items] == [10, 20]

    @pytest.mark.parametrize("bad", [
        {"items": [{"product_name": "", "quantity": 1}]},
        {"items": [{"product_name": "X", "quantity": -1}]},
        {"items": [{"product_name": "X", "discount_percent": 150}]},
        {"vat_rate": 120},
        {"status": "archived"},
        {"currency": "EURO"},
    ])
    def test_invalid_payload_rejected_before_write(self, sales, seeded, bad):
        with pytest.raises(ValidationError) as exc_info:
            sales.create_invoice(seeded["acme"], bad)
        assert exc_info.value.detail["errors"]
        assert sales.invoices.count(seeded["acme"]) == 0

    def test_created_action_audited(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload, actor="user-1")
        entries = sales.audit.entries("invoice", invoice.id)
        assert [e["action"] for e in entries] == ["created"]
        assert entries[0]["actor"] == "user-1"
        assert entries[0]["metadata"]["number"] == invoice.invoice_number


@pytest.mark.integration
class TestEmailJobs:
    """Sending a document enqueues an email job."""

    def test_created_as_sent(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], dict(invoice_payload, status="sent"))
        jobs = sales.jobs.pending(job_type=JOB_SEND_EMAIL)
        assert len(jobs) == 1
        assert jobs[0]["payload"]["document_id"] == invoice.id
        assert jobs[0]["payload"]["document_number"] == invoice.invoice_number

    def test_draft_enqueues_nothing(self, sales, seeded, invoice_payload):
        sales.create_invoice(seeded["other"], invoice_payload)
        assert sales.jobs.pending() == []

    def test_transition_to_sent(self, sales, seeded, sample_items):
        quote = sales.create_quote(seeded["acme"], {"items": sample_items})
        sales.update_quote(seeded["acme"], quote.id, {"status": "sent"})
        sales.update_quote(seeded["acme"], quote.id, {"status": "sent", "notes": "again"})
        jobs = sales.jobs.pending(job_type=JOB_SEND_EMAIL)
        assert [j["payload"]["document_type"] for j in jobs] == ["quote"]


@pytest.mark.integration
class TestUpdate:
    """Integration tests for partial updates."""

    def test_items_replaced_and_totals_recomputed(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        updated = sales.update_invoice(seeded["other"], invoice.id, {
            "items": [{"product_name": "Audit", "quantity": 3, "unit_price": 100}],
        })
        assert [i.product_name for i in updated.items] == ["Audit"]
        assert updated.subtotal == pytest.approx(300)
        assert updated.total == pytest.approx(360)
        assert updated.invoice_number == invoice.invoice_number

    def test_omitted_items_kept(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        updated = sales.update_invoice(seeded["other"], invoice.id, {"notes": "Updated"})
        assert updated.notes == "Updated"
        assert len(updated.items) == 2
        assert updated.total == pytest.approx(276)

    def test_rate_change_recomputes_totals(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        updated = sales.update_invoice(seeded["other"], invoice.id, {"vat_rate": 10})
        assert updated.vat_amount == pytest.approx(23)
        assert updated.total == pytest.approx(253)

    def test_null_vat_resets_to_default(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], dict(invoice_payload, vat_rate=10))
        updated = sales.update_invoice(seeded["other"], invoice.id, {"vat_rate": None})
        assert updated.vat_rate == 20

    def test_null_status_ignored(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], dict(invoice_payload, status="sent"))
        updated = sales.update_invoice(seeded["other"], invoice.id, {"status": None})
        assert updated.status == "sent"

    def test_empty_items_list_clears_items(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        updated = sales.update_invoice(seeded["other"], invoice.id, {"items": []})
        assert updated.items == []
        assert updated.total == 0

    def test_update_in_other_scope_not_found(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        with pytest.raises(NotFoundError):
            sales.update_invoice(seeded["acme"], invoice.id, {"notes": "x"})

    def test_paid_invoice_reclassified_when_total_grows(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], dict(invoice_payload, status="sent"))
        paid = sales.record_payment(seeded["other"], invoice.id, 276)
        assert paid.status == "paid"

        updated = sales.update_invoice(seeded["other"], invoice.id, {
            "items": [{"product_name": "Bigger job", "quantity": 1, "unit_price": 500}],
        })
        assert updated.status == "partial"
        assert updated.balance_due == pytest.approx(600 - 276)


@pytest.mark.integration
class TestPaymentsAndQueries:
    """Payments, overdue, expired, and pending deliveries through the service."""

    def test_record_payment_accepts_payload_or_number(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], dict(invoice_payload, status="sent"))
        sales.record_payment(seeded["other"], invoice.id, {"amount": 76})
        result = sales.record_payment(seeded["other"], invoice.id, 200, actor="user-2")
        assert result.status == "paid"
        actions = [e["action"] for e in sales.audit.entries("invoice", invoice.id)]
        assert actions.count("payment_recorded") == 2

    def test_invalid_payment_payload(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        with pytest.raises(ValidationError):
            sales.record_payment(seeded["other"], invoice.id, {"amount": "lots"})

    def test_pending_deliveries(self, sales, seeded, sample_items):
        sales.create_delivery_note(seeded["acme"], {"items": sample_items})
        sales.create_delivery_note(seeded["acme"], {"items": sample_items, "status": "in_transit"})
        sales.create_delivery_note(seeded["acme"], {"items": sample_items, "status": "delivered"})
        assert sales.pending_deliveries(seeded["acme"]).total == 2

    def test_mark_delivered_audited(self, sales, seeded, sample_items):
        note = sales.create_delivery_note(seeded["acme"], {"items": sample_items})
        sales.mark_delivered(seeded["acme"], note.id)
        actions = [e["action"] for e in sales.audit.entries("delivery_note", note.id)]
        assert actions[0] == "delivered"


@pytest.mark.integration
class TestListAndDelete:
    """Service-level listing and deletion."""

    def test_list_failure_returns_error_result(self, sales, seeded, monkeypatch):
        def broken(*args, **kwargs):
            raise InternalError("database is locked")

        monkeypatch.setattr(sales.invoices, "find_all", broken)
        result = sales.list_invoices(seeded["acme"], PageRequest(page=3, page_size=500))
        assert result.data == []
        assert result.total == 0
        assert result.error == "database is locked"
        assert (result.page, result.page_size) == (3, 100)

    def test_delete(self, sales, seeded, invoice_payload):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        sales.delete_invoice(seeded["other"], invoice.id, actor="user-1")
        with pytest.raises(NotFoundError):
            sales.get_invoice(seeded["other"], invoice.id)
        assert sales.db.fetch_value("SELECT COUNT(*) FROM invoice_items", default=0) == 0

    def test_unknown_document_type(self, sales):
        with pytest.raises(ValidationError):
            sales.doc_type("purchase_order")


@pytest.mark.integration
class TestTotals:
    """Draft preview and recalculation."""

    def test_preview_matches_create(self, sales, seeded, invoice_payload):
        preview = sales.preview_totals(invoice_payload)
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        assert preview.total == invoice.total
        assert preview.vat_amount == invoice.vat_amount

    @pytest.mark.parametrize("payload", [
        None,
        "garbage",
        {"items": "not a list"},
        {"items": [{"unit_price": "abc", "quantity": None}], "vat_rate": "x"},
    ])
    def test_preview_never_raises(self, sales, payload):
        totals = sales.preview_totals(payload)
        assert totals.total == 0

    def test_preview_bad_flags_keep_defaults(self, sales, invoice_payload):
        """An unparseable flag falls back to its default instead of zeroing the items."""
        expected = sales.preview_totals(invoice_payload)
        totals = sales.preview_totals(dict(invoice_payload, include_vat="maybe",
                                           include_tax={"x": 1}))
        assert totals.total == expected.total
        assert totals.vat_amount == pytest.approx(46)
        assert totals.tax_amount == 0

    def test_preview_loose_flags_parsed(self, sales, invoice_payload):
        totals = sales.preview_totals(dict(invoice_payload, include_vat="false"))
        assert totals.vat_amount == 0
        assert totals.total == pytest.approx(230)

    def test_recalculate_clean(self, sales, seeded, invoice_payload, sample_items):
        sales.create_invoice(seeded["other"], invoice_payload)
        sales.create_quote(seeded["acme"], {"items": sample_items})
        sales.create_delivery_note(seeded["acme"], {"items": sample_items})
        assert sales.recalculate() == []

    def test_recalculate_reports_drift(self, sales, seeded, invoice_payload, sample_items):
        invoice = sales.create_invoice(seeded["other"], invoice_payload)
        sales.create_quote(seeded["acme"], {"items": sample_items})
        sales.db.execute("UPDATE invoices SET total = ? WHERE id = ?", [1.0, invoice.id])

        drift = sales.recalculate()
        assert len(drift) == 1
        assert drift[0]["document_type"] == "invoice"
        assert drift[0]["number"] == invoice.invoice_number
        assert drift[0]["fields"] == ["total"]
        assert drift[0]["computed_total"] == pytest.approx(276)
        assert sales.recalculate(["quote"]) == []
