"""
Sales service: the write/read orchestration for invoices, quotes, and
delivery notes.

Create / update:
  1. Validate the payload through its pydantic request model
  2. Derive line totals and document totals with the calculator
  3. Mint a document number (create only, unless the client sent one)
  4. Persist parent + items in one transaction
  5. Audit the action; enqueue an email job when the status becomes "sent"

A duplicate number on create (two writers minted the same one) is retried
with a fresh number, config.number_conflict_retries times.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Sequence, Type

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from config import Config
from models.document import DeliveryNote, DocumentTotals, Invoice, Quote
from models.pagination import ListResult, PageRequest
from models.requests import (
    DeliveryNoteCreate, DeliveryNoteUpdate, DocumentFilters, InvoiceCreate,
    InvoiceUpdate, LineItemInput, PaymentRequest, QuoteCreate, QuoteUpdate,
    TotalsPreviewRequest,
)

from .audit import AuditLog
from .calculator import (
    compute_totals, line_total, payment_status, totals_differ, totals_for,
)
from .database import Database
from .delivery_notes import DeliveryNoteRepository
from .documents import DocumentRepository
from .errors import BackofficeError, ConflictError, ValidationError, validate_payload
from .invoices import InvoiceRepository
from .jobs import JOB_SEND_EMAIL, JobQueue
from .query_builder import paginate
from .quotes import QuoteRepository
from .tenant import TenantResolver

logger = logging.getLogger(__name__)

_FLAG = TypeAdapter(bool)

# Columns that cannot be cleared by sending null in an update
_NON_NULLABLE = ("status", "tax_rate", "include_vat", "include_tax", "currency")


@dataclass(frozen=True)
class _DocType:
    name: str                       # invoice | quote | delivery_note
    repo: DocumentRepository
    create_model: Type[BaseModel]
    update_model: Type[BaseModel]


def item_rows(items: Sequence[LineItemInput], default_vat_rate: float) -> list[dict]:
    """Persistable item rows with line_total derived by the calculator."""
    rows = []
    for idx, item in enumerate(items):
        row = item.model_dump()
        if row.get("vat_rate_percent") is None:
            row["vat_rate_percent"] = default_vat_rate
        row["line_total"] = line_total(item)
        row["sort_order"] = idx
        rows.append(row)
    return rows


def _lenient_flag(value: Any, default: bool) -> bool:
    """Parse a loose boolean ("true", 1, "no", ...); anything else is default."""
    try:
        return _FLAG.validate_python(value)
    except PydanticValidationError:
        return default


class SalesService:

    def __init__(
        self,
        db: Database,
        config: Optional[Config] = None,
        audit: Optional[AuditLog] = None,
        jobs: Optional[JobQueue] = None,
    ) -> None:
        self.db = db
        self.config = config or Config()
        self.resolver = TenantResolver(db)
        self.audit = audit or AuditLog(db)
        self.jobs = jobs or JobQueue(db)

        limit = self.config.number_fetch_limit
        self.invoices = InvoiceRepository(db, self.resolver, limit)
        self.quotes = QuoteRepository(db, self.resolver, limit)
        self.delivery_notes = DeliveryNoteRepository(db, self.resolver, limit)

        self._types = {
            "invoice": _DocType("invoice", self.invoices, InvoiceCreate, InvoiceUpdate),
            "quote": _DocType("quote", self.quotes, QuoteCreate, QuoteUpdate),
            "delivery_note": _DocType("delivery_note", self.delivery_notes,
                                      DeliveryNoteCreate, DeliveryNoteUpdate),
        }

    def doc_type(self, name: str) -> _DocType:
        try:
            return self._types[name]
        except KeyError:
            raise ValidationError(f"Unknown document type: {name}") from None

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    def _list(self, name: str, company_id: str, page: Optional[PageRequest],
              filters: Optional[DocumentFilters]) -> ListResult:
        try:
            return self.doc_type(name).repo.find_all(company_id, page, filters)
        except BackofficeError as exc:
            logger.error("Listing %ss for company %s failed: %s", name, company_id, exc)
            pg = paginate(page.page, page.page_size) if page else paginate(1, self.config.default_page_size)
            return ListResult(data=[], total=0, page=pg.page, page_size=pg.page_size, error=str(exc))

    def _get(self, name: str, company_id: str, document_id: str):
        return self.doc_type(name).repo.find_by_id(company_id, document_id)

    def _create(self, name: str, company_id: str, payload: Any, actor: Optional[str]):
        dt = self.doc_type(name)
        req = validate_payload(dt.create_model, payload)
        repo = dt.repo
        scope = self.resolver.resolve(company_id)

        vat_rate = req.vat_rate if req.vat_rate is not None else self.config.vat_rate_for(name)
        totals = compute_totals(req.items, vat_rate, req.tax_rate, req.include_vat, req.include_tax)

        row = req.model_dump(exclude={"items"})
        row.update(totals.model_dump())
        row.update(
            vat_rate=vat_rate,
            tenant_scope_id=scope,
            created_by=actor,
            currency=req.currency or self.config.default_currency,
        )
        items = item_rows(req.items, vat_rate)

        client_number = row.get(repo.number_column)
        attempts = 1 if client_number else 1 + max(0, self.config.number_conflict_retries)
        for attempt in range(1, attempts + 1):
            if not client_number:
                row[repo.number_column] = repo.next_number()
            try:
                document_id = repo.create(row, items)
                break
            except ConflictError:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "%s number %s taken by a concurrent writer, retrying (%d/%d)",
                    name, row[repo.number_column], attempt, attempts - 1,
                )

        self.audit.log_action(actor, "created", name, document_id,
                              {"number": row[repo.number_column], "total": totals.total})
        if row.get("status") == "sent":
            self._enqueue_email(name, document_id, row[repo.number_column], company_id)
        return repo.find_by_id(company_id, document_id)

    def _update(self, name: str, company_id: str, document_id: str, payload: Any,
                actor: Optional[str]):
        dt = self.doc_type(name)
        req = validate_payload(dt.update_model, payload)
        repo = dt.repo
        current = repo.find_by_id(company_id, document_id)

        changes = req.model_dump(exclude_unset=True, exclude={"items"})
        for col in _NON_NULLABLE:
            if col in changes and changes[col] is None:
                del changes[col]
        if "vat_rate" in changes and changes["vat_rate"] is None:
            changes["vat_rate"] = self.config.vat_rate_for(name)

        replace_items = "items" in req.model_fields_set and req.items is not None
        vat_rate = changes.get("vat_rate", current.vat_rate)
        totals = compute_totals(
            req.items if replace_items else current.items,
            vat_rate,
            changes.get("tax_rate", current.tax_rate),
            changes.get("include_vat", current.include_vat),
            changes.get("include_tax", current.include_tax),
        )
        changes.update(totals.model_dump())

        # Totals moved under an already (partly) paid invoice: reclassify
        if name == "invoice" and "status" not in changes and current.status in ("partial", "paid"):
            changes["status"] = payment_status(current.paid_amount, totals.total, current.status)

        items = item_rows(req.items, vat_rate) if replace_items else None
        repo.update(company_id, document_id, changes, items)

        self.audit.log_action(actor, "updated", name, document_id,
                              {"fields": sorted(req.model_fields_set)})
        if changes.get("status") == "sent" and current.status != "sent":
            self._enqueue_email(name, document_id, getattr(current, repo.number_column), company_id)
        return repo.find_by_id(company_id, document_id)

    def _delete(self, name: str, company_id: str, document_id: str, actor: Optional[str]) -> None:
        self.doc_type(name).repo.delete(company_id, document_id)
        self.audit.log_action(actor, "deleted", name, document_id)

    def _enqueue_email(self, name: str, document_id: str, number: str, company_id: str) -> None:
        job_id = self.jobs.enqueue(JOB_SEND_EMAIL, {
            "document_type": name,
            "document_id": document_id,
            "document_number": number,
            "company_id": company_id,
        })
        if job_id is None:
            logger.warning("Email for %s %s was not queued", name, number)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def list_invoices(self, company_id: str, page: Optional[PageRequest] = None,
                      filters: Optional[DocumentFilters] = None) -> ListResult:
        return self._list("invoice", company_id, page, filters)

    def get_invoice(self, company_id: str, invoice_id: str) -> Invoice:
        return self._get("invoice", company_id, invoice_id)

    def create_invoice(self, company_id: str, payload: Any, actor: Optional[str] = None) -> Invoice:
        return self._create("invoice", company_id, payload, actor)

    def update_invoice(self, company_id: str, invoice_id: str, payload: Any,
                       actor: Optional[str] = None) -> Invoice:
        return self._update("invoice", company_id, invoice_id, payload, actor)

    def delete_invoice(self, company_id: str, invoice_id: str, actor: Optional[str] = None) -> None:
        self._delete("invoice", company_id, invoice_id, actor)

    def record_payment(self, company_id: str, invoice_id: str, payload: Any,
                       actor: Optional[str] = None) -> Invoice:
        if isinstance(payload, (int, float)) and not isinstance(payload, bool):
            payload = {"amount": payload}
        req = validate_payload(PaymentRequest, payload)
        invoice = self.invoices.record_payment(company_id, invoice_id, req.amount)
        self.audit.log_action(actor, "payment_recorded", "invoice", invoice_id,
                              {"amount": req.amount, "paid_amount": invoice.paid_amount,
                               "status": invoice.status})
        return invoice

    def overdue_invoices(self, company_id: str, today: Optional[date] = None) -> list[Invoice]:
        return self.invoices.find_overdue(company_id, today)

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def list_quotes(self, company_id: str, page: Optional[PageRequest] = None,
                    filters: Optional[DocumentFilters] = None) -> ListResult:
        return self._list("quote", company_id, page, filters)

    def get_quote(self, company_id: str, quote_id: str) -> Quote:
        return self._get("quote", company_id, quote_id)

    def create_quote(self, company_id: str, payload: Any, actor: Optional[str] = None) -> Quote:
        return self._create("quote", company_id, payload, actor)

    def update_quote(self, company_id: str, quote_id: str, payload: Any,
                     actor: Optional[str] = None) -> Quote:
        return self._update("quote", company_id, quote_id, payload, actor)

    def delete_quote(self, company_id: str, quote_id: str, actor: Optional[str] = None) -> None:
        self._delete("quote", company_id, quote_id, actor)

    def expired_quotes(self, company_id: str, today: Optional[date] = None) -> list[Quote]:
        return self.quotes.find_expired(company_id, today)

    # ------------------------------------------------------------------
    # Delivery notes
    # ------------------------------------------------------------------

    def list_delivery_notes(self, company_id: str, page: Optional[PageRequest] = None,
                            filters: Optional[DocumentFilters] = None) -> ListResult:
        return self._list("delivery_note", company_id, page, filters)

    def get_delivery_note(self, company_id: str, note_id: str) -> DeliveryNote:
        return self._get("delivery_note", company_id, note_id)

    def create_delivery_note(self, company_id: str, payload: Any,
                             actor: Optional[str] = None) -> DeliveryNote:
        return self._create("delivery_note", company_id, payload, actor)

    def update_delivery_note(self, company_id: str, note_id: str, payload: Any,
                             actor: Optional[str] = None) -> DeliveryNote:
        return self._update("delivery_note", company_id, note_id, payload, actor)

    def delete_delivery_note(self, company_id: str, note_id: str, actor: Optional[str] = None) -> None:
        self._delete("delivery_note", company_id, note_id, actor)

    def mark_delivered(self, company_id: str, note_id: str, delivery_date: Optional[date] = None,
                       actor: Optional[str] = None) -> DeliveryNote:
        note = self.delivery_notes.mark_delivered(company_id, note_id, delivery_date)
        self.audit.log_action(actor, "delivered", "delivery_note", note_id,
                              {"delivery_date": note.delivery_date})
        return note

    def pending_deliveries(self, company_id: str, page: Optional[PageRequest] = None) -> ListResult:
        return self.delivery_notes.find_by_status(company_id, ("pending", "in_transit"), page)

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def preview_totals(self, payload: Any) -> DocumentTotals:
        """
        Draft autosave path.  Lenient: an unparseable payload previews as
        all-zero totals and bad item numbers count as 0.  Never raises.
        """
        try:
            req = TotalsPreviewRequest.model_validate(payload if isinstance(payload, dict) else {})
        except PydanticValidationError as exc:
            logger.debug("Preview payload rejected, showing zero totals: %s", exc)
            req = TotalsPreviewRequest()
        return compute_totals(req.items, req.vat_rate, req.tax_rate,
                              _lenient_flag(req.include_vat, True),
                              _lenient_flag(req.include_tax, False))

    def recalculate(self, names: Optional[Sequence[str]] = None) -> list[dict]:
        """
        Re-derive totals for every stored document and report the ones whose
        stored money fields differ from the recomputed values.
        """
        drift = []
        for name in names or self._types:
            repo = self.doc_type(name).repo
            for doc in repo.iter_all():
                computed = totals_for(doc)
                fields = totals_differ(doc, computed)
                if fields:
                    drift.append({
                        "document_type": name,
                        "id": doc.id,
                        "number": getattr(doc, repo.number_column),
                        "fields": fields,
                        "stored_total": doc.total,
                        "computed_total": computed.total,
                    })
        return drift
