from pydantic import BaseModel, Field
from typing import Any, Optional, List


class DocumentTotals(BaseModel):
    """Money fields derived by backoffice.calculator.compute_totals()."""
    gross_total: float = 0.0        # sum of unit_price * quantity, before discounts
    discount_amount: float = 0.0    # sum of per-line discounts
    subtotal: float = 0.0           # gross_total - discount_amount
    vat_amount: float = 0.0
    tax_amount: float = 0.0
    total: float = 0.0              # subtotal + vat_amount + tax_amount


class LineItem(BaseModel):
    """A persisted line item of a business document."""
    id: Optional[str] = None
    product_name: str
    description: Optional[str] = None
    quantity: float = 0.0
    unit: str = "pcs"
    unit_price: float = 0.0
    discount_percent: float = 0.0       # 0-100
    vat_rate_percent: float = 0.0       # 0-100, defaults per document type
    line_total: float = 0.0             # (unit_price * quantity) * (1 - discount_percent / 100)
    sort_order: int = 0


class CompanyRef(BaseModel):
    """Customer company, nested when joined."""
    id: str
    name: Optional[str] = None
    industry: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None


class ContactRef(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None


class QuoteRef(BaseModel):
    id: str
    quote_number: Optional[str] = None
    status: Optional[str] = None


class InvoiceRef(BaseModel):
    id: str
    invoice_number: Optional[str] = None
    status: Optional[str] = None


class BusinessDocument(DocumentTotals):
    """
    Fields shared by invoices, quotes, and delivery notes.

    Dates are ISO 8601 strings (YYYY-MM-DD); timestamps are ISO 8601 UTC.
    from_details / customer_details / template_settings are opaque JSON,
    returned exactly as stored (None when the stored blob is malformed).
    """
    id: str
    tenant_scope_id: str
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    status: str
    issue_date: Optional[str] = None

    vat_rate: float = 0.0
    tax_rate: float = 0.0
    include_vat: bool = True
    include_tax: bool = False
    currency: str = "EUR"

    notes: Optional[str] = None

    from_details: Optional[Any] = None
    customer_details: Optional[Any] = None
    template_settings: Optional[Any] = None

    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    items: List[LineItem] = Field(default_factory=list)

    company: Optional[CompanyRef] = None
    contact: Optional[ContactRef] = None


class Invoice(BusinessDocument):
    invoice_number: str
    due_date: Optional[str] = None
    quote_id: Optional[str] = None
    paid_amount: float = 0.0
    terms: Optional[str] = None
    quote: Optional[QuoteRef] = None

    @property
    def document_number(self) -> str:
        return self.invoice_number

    @property
    def balance_due(self) -> float:
        return self.total - self.paid_amount


class Quote(BusinessDocument):
    quote_number: str
    valid_until: Optional[str] = None
    terms: Optional[str] = None

    @property
    def document_number(self) -> str:
        return self.quote_number


class DeliveryNote(BusinessDocument):
    delivery_number: str
    invoice_id: Optional[str] = None
    ship_date: Optional[str] = None
    delivery_date: Optional[str] = None
    shipping_address: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    invoice: Optional[InvoiceRef] = None

    @property
    def document_number(self) -> str:
        return self.delivery_number
