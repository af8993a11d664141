"""
Sales back-office — FastAPI backend.

Thin HTTP boundary over backoffice.SalesService and backoffice.VaultService.
The caller's company comes from the X-Company-Id header and the acting user
from X-User-Id; every read and write is scoped through the tenant resolver.

List endpoints never fail with a 5xx: a store failure comes back as
``{"data": [], "total": 0, "error": "..."}`` so dashboards keep rendering.

Endpoints
---------
  GET    /api/health                        → liveness probe
  GET    /api/invoices                      → page of invoices (?page= &page_size= &sort_by= ...)
  POST   /api/invoices                      → create (number minted when omitted)
  GET    /api/invoices/{id}                 → one invoice with items and relations
  PATCH  /api/invoices/{id}                 → partial update; items replace all items
  DELETE /api/invoices/{id}
  POST   /api/invoices/{id}/payments        → record a payment, reclassify status
  ...    /api/quotes, /api/delivery-notes   → same CRUD
  POST   /api/delivery-notes/{id}/deliver   → mark delivered
  POST   /api/totals/preview                → draft autosave totals, never fails
  GET    /api/documents                     → vault, cursor pagination (?cursor=)
  POST   /api/documents                     → upload a file to the vault
  GET    /api/documents/{id}                → one vault document with tags
  GET    /api/documents/{id}/url            → signed download URL
  DELETE /api/documents/{id}
"""
import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from backoffice.classifier import LLMClassifier
from backoffice.database import Database
from backoffice.errors import (
    BackofficeError, ConflictError, InternalError, NotFoundError, ValidationError,
)
from backoffice.sales_service import SalesService
from backoffice.storage import LocalFileStorage
from backoffice.vault_service import VaultService
from config import Config
from models.pagination import CursorRequest, PageRequest
from models.requests import DocumentFilters
from models.vault import VaultFilters

from dashboard.models import DeliverRequest, TagRequest

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Services (lazy: created on first request so importing the app never
# touches the filesystem)
# ---------------------------------------------------------------------------
_config: Optional[Config] = None
_db: Optional[Database] = None
_sales: Optional[SalesService] = None
_vault: Optional[VaultService] = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_db() -> Database:
    global _db
    if _db is None:
        _db = Database(get_config().db_path)
    return _db


def get_sales() -> SalesService:
    global _sales
    if _sales is None:
        _sales = SalesService(get_db(), get_config())
    return _sales


def get_vault() -> VaultService:
    global _vault
    if _vault is None:
        config = get_config()
        classifier = LLMClassifier.from_config(config) if config.classifier_enabled else None
        storage = LocalFileStorage(config.storage_dir, config.storage_signing_secret)
        _vault = VaultService(get_db(), storage, config, classifier=classifier)
    return _vault


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Sales Back-Office", docs_url=None, redoc_url=None)


_STATUS_CODES = {
    NotFoundError:    404,
    ValidationError:  422,
    ConflictError:    409,
    InternalError:    500,
}


@app.exception_handler(BackofficeError)
def _backoffice_error(request: Request, exc: BackofficeError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _detail(fn, *args):
    """Run a detail read; a store failure degrades to {"data": null, "error": ...}."""
    try:
        return fn(*args)
    except InternalError as exc:
        logger.error("Detail read failed: %s", exc)
        return JSONResponse(status_code=200, content={"data": None, "error": str(exc)})


# ── Query helpers ────────────────────────────────────────────────────────────

def _float_or_none(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _page(
    page: Optional[str] = Query(default=None),
    page_size: Optional[str] = Query(default=None),
    sort_by: Optional[str] = Query(default=None),
    sort_order: Optional[str] = Query(default=None),
    config: Config = Depends(get_config),
) -> PageRequest:
    return PageRequest(
        page=page if page is not None else 1,
        page_size=page_size if page_size is not None else config.default_page_size,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def _filters(
    search: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    status_in: Optional[str] = Query(default=None, description="comma-separated statuses"),
    customer_id: Optional[str] = Query(default=None),
    date_from: Optional[str] = Query(default=None),
    date_to: Optional[str] = Query(default=None),
    min_total: Optional[str] = Query(default=None),
    max_total: Optional[str] = Query(default=None),
) -> DocumentFilters:
    return DocumentFilters(
        search=search,
        status=status,
        statuses=[s.strip() for s in (status_in or "").split(",") if s.strip()],
        company_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        min_total=_float_or_none(min_total),
        max_total=_float_or_none(max_total),
    )


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health(config: Config = Depends(get_config)):
    return {
        "status":     "ok",
        "db_path":    str(config.db_path),
        "db_exists":  config.db_path.exists(),
        "classifier": config.classifier_enabled,
    }


@app.post("/api/totals/preview")
def preview_totals(payload: dict, sales: SalesService = Depends(get_sales)):
    return sales.preview_totals(payload)


# ── Invoices ─────────────────────────────────────────────────────────────────

@app.get("/api/invoices")
def list_invoices(
    page: PageRequest = Depends(_page),
    filters: DocumentFilters = Depends(_filters),
    x_company_id: str = Header(...),
    sales: SalesService = Depends(get_sales),
):
    return sales.list_invoices(x_company_id, page, filters)


@app.post("/api/invoices", status_code=201)
def create_invoice(
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.create_invoice(x_company_id, payload, actor=x_user_id)


@app.get("/api/invoices/{invoice_id}")
def get_invoice(invoice_id: str, x_company_id: str = Header(...),
                sales: SalesService = Depends(get_sales)):
    return _detail(sales.get_invoice, x_company_id, invoice_id)


@app.patch("/api/invoices/{invoice_id}")
def update_invoice(
    invoice_id: str,
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.update_invoice(x_company_id, invoice_id, payload, actor=x_user_id)


@app.delete("/api/invoices/{invoice_id}")
def delete_invoice(
    invoice_id: str,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    sales.delete_invoice(x_company_id, invoice_id, actor=x_user_id)
    return {"deleted": invoice_id}


@app.post("/api/invoices/{invoice_id}/payments")
def record_payment(
    invoice_id: str,
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.record_payment(x_company_id, invoice_id, payload, actor=x_user_id)


# ── Quotes ───────────────────────────────────────────────────────────────────

@app.get("/api/quotes")
def list_quotes(
    page: PageRequest = Depends(_page),
    filters: DocumentFilters = Depends(_filters),
    x_company_id: str = Header(...),
    sales: SalesService = Depends(get_sales),
):
    return sales.list_quotes(x_company_id, page, filters)


@app.post("/api/quotes", status_code=201)
def create_quote(
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.create_quote(x_company_id, payload, actor=x_user_id)


@app.get("/api/quotes/{quote_id}")
def get_quote(quote_id: str, x_company_id: str = Header(...),
              sales: SalesService = Depends(get_sales)):
    return _detail(sales.get_quote, x_company_id, quote_id)


@app.patch("/api/quotes/{quote_id}")
def update_quote(
    quote_id: str,
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.update_quote(x_company_id, quote_id, payload, actor=x_user_id)


@app.delete("/api/quotes/{quote_id}")
def delete_quote(
    quote_id: str,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    sales.delete_quote(x_company_id, quote_id, actor=x_user_id)
    return {"deleted": quote_id}


# ── Delivery notes ───────────────────────────────────────────────────────────

@app.get("/api/delivery-notes")
def list_delivery_notes(
    page: PageRequest = Depends(_page),
    filters: DocumentFilters = Depends(_filters),
    x_company_id: str = Header(...),
    sales: SalesService = Depends(get_sales),
):
    return sales.list_delivery_notes(x_company_id, page, filters)


@app.post("/api/delivery-notes", status_code=201)
def create_delivery_note(
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.create_delivery_note(x_company_id, payload, actor=x_user_id)


@app.get("/api/delivery-notes/{note_id}")
def get_delivery_note(note_id: str, x_company_id: str = Header(...),
                      sales: SalesService = Depends(get_sales)):
    return _detail(sales.get_delivery_note, x_company_id, note_id)


@app.patch("/api/delivery-notes/{note_id}")
def update_delivery_note(
    note_id: str,
    payload: dict,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    return sales.update_delivery_note(x_company_id, note_id, payload, actor=x_user_id)


@app.delete("/api/delivery-notes/{note_id}")
def delete_delivery_note(
    note_id: str,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    sales.delete_delivery_note(x_company_id, note_id, actor=x_user_id)
    return {"deleted": note_id}


@app.post("/api/delivery-notes/{note_id}/deliver")
def deliver(
    note_id: str,
    body: Optional[DeliverRequest] = None,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    sales: SalesService = Depends(get_sales),
):
    delivered_on: Optional[date] = body.delivery_date if body else None
    return sales.mark_delivered(x_company_id, note_id, delivered_on, actor=x_user_id)


# ── Document vault ───────────────────────────────────────────────────────────

@app.get("/api/documents")
def list_documents(
    cursor: Optional[str] = Query(default=None),
    page_size: Optional[str] = Query(default=None),
    sort_by: Optional[str] = Query(default=None),
    sort_order: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    tags: Optional[str] = Query(default=None, description="comma-separated tag ids"),
    date_from: Optional[str] = Query(default=None),
    date_to: Optional[str] = Query(default=None),
    x_company_id: str = Header(...),
    vault: VaultService = Depends(get_vault),
    config: Config = Depends(get_config),
):
    request = CursorRequest(
        cursor=cursor,
        page_size=page_size if page_size is not None else config.default_page_size,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    filters = VaultFilters(
        search=search,
        tags=[t.strip() for t in (tags or "").split(",") if t.strip()],
        date_from=date_from,
        date_to=date_to,
    )
    return vault.list_documents(x_company_id, request, filters)


@app.post("/api/documents", status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    vault: VaultService = Depends(get_vault),
):
    contents = await file.read()
    if len(contents) == 0:
        raise HTTPException(400, "Uploaded file is empty")
    return vault.upload(
        x_company_id,
        contents,
        file.filename or "document",
        file.content_type or "application/octet-stream",
        owner_id=x_user_id,
    )


@app.get("/api/documents/{document_id}")
def get_document(document_id: str, x_company_id: str = Header(...),
                 vault: VaultService = Depends(get_vault)):
    return _detail(vault.get_document, x_company_id, document_id)


@app.get("/api/documents/{document_id}/url")
def document_url(
    document_id: str,
    ttl: Optional[int] = Query(default=None, ge=1, le=7 * 24 * 3600),
    x_company_id: str = Header(...),
    vault: VaultService = Depends(get_vault),
):
    return {"url": vault.signed_url(x_company_id, document_id, ttl)}


@app.post("/api/documents/{document_id}/tags")
def add_document_tag(
    document_id: str,
    body: TagRequest,
    x_company_id: str = Header(...),
    vault: VaultService = Depends(get_vault),
):
    return vault.add_tag(x_company_id, document_id, body.name)


@app.delete("/api/documents/{document_id}")
def delete_document(
    document_id: str,
    x_company_id: str = Header(...),
    x_user_id: Optional[str] = Header(default=None),
    vault: VaultService = Depends(get_vault),
):
    vault.delete(x_company_id, document_id, actor=x_user_id)
    return {"deleted": document_id}
