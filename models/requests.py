"""
Write-side payloads.

Create/update bodies are strict: they are validated before anything touches
the database and a failure becomes backoffice.errors.ValidationError.
Filter bodies are lenient: blank values simply mean "no filter".
"""
from datetime import date
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

InvoiceStatus = Literal["draft", "sent", "partial", "paid", "overdue", "cancelled"]
QuoteStatus = Literal["draft", "sent", "accepted", "rejected", "expired"]
DeliveryNoteStatus = Literal["pending", "in_transit", "delivered", "returned"]


class LineItemInput(BaseModel):
    """One line item as submitted by a client."""
    product_name: str = Field(min_length=1)
    description: Optional[str] = None
    quantity: float = Field(default=0, ge=0, allow_inf_nan=False)
    unit: str = "pcs"
    unit_price: float = Field(default=0, allow_inf_nan=False)
    discount_percent: float = Field(default=0, ge=0, le=100)
    vat_rate_percent: Optional[float] = Field(default=None, ge=0, le=100)   # None -> document type default


class _DocumentWrite(BaseModel):
    company_id: Optional[str] = None      # customer company
    contact_id: Optional[str] = None
    issue_date: Optional[date] = None

    vat_rate: Optional[float] = Field(default=None, ge=0, le=100)   # None -> document type default
    tax_rate: float = Field(default=0, ge=0, le=100)
    include_vat: bool = True
    include_tax: bool = False
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)

    notes: Optional[str] = None
    from_details: Optional[Any] = None
    customer_details: Optional[Any] = None
    template_settings: Optional[Any] = None

    items: List[LineItemInput] = Field(default_factory=list)


class InvoiceCreate(_DocumentWrite):
    invoice_number: Optional[str] = None  # minted when omitted
    status: InvoiceStatus = "draft"
    due_date: Optional[date] = None
    quote_id: Optional[str] = None
    terms: Optional[str] = None


class QuoteCreate(_DocumentWrite):
    quote_number: Optional[str] = None
    status: QuoteStatus = "draft"
    valid_until: Optional[date] = None
    terms: Optional[str] = None


class DeliveryNoteCreate(_DocumentWrite):
    delivery_number: Optional[str] = None
    status: DeliveryNoteStatus = "pending"
    invoice_id: Optional[str] = None
    ship_date: Optional[date] = None
    delivery_date: Optional[date] = None
    shipping_address: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    vat_rate: Optional[float] = Field(default=None, ge=0, le=100)
    include_vat: bool = False


class _DocumentPatch(BaseModel):
    """Partial update.  Only fields the client actually sent are applied."""
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    issue_date: Optional[date] = None
    vat_rate: Optional[float] = Field(default=None, ge=0, le=100)
    tax_rate: Optional[float] = Field(default=None, ge=0, le=100)
    include_vat: Optional[bool] = None
    include_tax: Optional[bool] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = None
    from_details: Optional[Any] = None
    customer_details: Optional[Any] = None
    template_settings: Optional[Any] = None
    items: Optional[List[LineItemInput]] = None     # replaces all items when present


class InvoiceUpdate(_DocumentPatch):
    status: Optional[InvoiceStatus] = None
    due_date: Optional[date] = None
    quote_id: Optional[str] = None
    terms: Optional[str] = None


class QuoteUpdate(_DocumentPatch):
    status: Optional[QuoteStatus] = None
    valid_until: Optional[date] = None
    terms: Optional[str] = None


class DeliveryNoteUpdate(_DocumentPatch):
    status: Optional[DeliveryNoteStatus] = None
    invoice_id: Optional[str] = None
    ship_date: Optional[date] = None
    delivery_date: Optional[date] = None
    shipping_address: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: float = Field(gt=0, allow_inf_nan=False)


class TotalsPreviewRequest(BaseModel):
    """Draft autosave payload.  Items are loose dicts; bad numbers count as 0
    and unparseable flags keep their defaults."""
    items: List[Any] = Field(default_factory=list)
    vat_rate: Any = 0
    tax_rate: Any = 0
    include_vat: Any = True
    include_tax: Any = False


class DocumentFilters(BaseModel):
    """List filters for invoices, quotes, and delivery notes."""
    search: Optional[str] = None              # substring of the document number
    status: Optional[str] = None
    statuses: List[str] = Field(default_factory=list)
    company_id: Optional[str] = None          # customer company (UUID)
    date_from: Optional[str] = None           # issue_date lower bound, inclusive
    date_to: Optional[str] = None
    min_total: Optional[float] = None
    max_total: Optional[float] = None
