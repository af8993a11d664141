from .document import (
    DocumentTotals, LineItem, CompanyRef, ContactRef, QuoteRef, InvoiceRef,
    BusinessDocument, Invoice, Quote, DeliveryNote,
)
from .pagination import PageRequest, CursorRequest, ListResult, CursorPage
from .requests import (
    LineItemInput, InvoiceCreate, InvoiceUpdate, QuoteCreate, QuoteUpdate,
    DeliveryNoteCreate, DeliveryNoteUpdate, PaymentRequest, TotalsPreviewRequest,
    DocumentFilters,
)
from .vault import DocumentTag, VaultDocument, VaultFilters, VaultDocumentUpdate, Classification, StoredFile

__all__ = [
    "DocumentTotals", "LineItem", "CompanyRef", "ContactRef", "QuoteRef", "InvoiceRef",
    "BusinessDocument", "Invoice", "Quote", "DeliveryNote",
    "PageRequest", "CursorRequest", "ListResult", "CursorPage",
    "LineItemInput", "InvoiceCreate", "InvoiceUpdate", "QuoteCreate", "QuoteUpdate",
    "DeliveryNoteCreate", "DeliveryNoteUpdate", "PaymentRequest", "TotalsPreviewRequest",
    "DocumentFilters",
    "DocumentTag", "VaultDocument", "VaultFilters", "VaultDocumentUpdate", "Classification", "StoredFile",
]
