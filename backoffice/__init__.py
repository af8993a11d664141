from .database import Database
from .errors import BackofficeError, NotFoundError, ValidationError, ConflictError, InternalError
from .tenant import TenantResolver
from .query_builder import QueryBuilder, Pagination, paginate, order_by, decode_cursor, next_cursor
from .batch_loader import BatchLoader
from .numbering import NumberGenerator, format_number, parse_sequence
from .calculator import compute_totals, line_total, payment_status, totals_for
from .mapper import DocumentMapper, assemble
from .invoices import InvoiceRepository
from .quotes import QuoteRepository
from .delivery_notes import DeliveryNoteRepository
from .vault import VaultRepository, TagRepository
from .audit import AuditLog
from .jobs import JobQueue
from .storage import LocalFileStorage
from .classifier import LLMClassifier
from .sales_service import SalesService
from .vault_service import VaultService

__all__ = [
    "Database",
    "BackofficeError", "NotFoundError", "ValidationError", "ConflictError", "InternalError",
    "TenantResolver",
    "QueryBuilder", "Pagination", "paginate", "order_by", "decode_cursor", "next_cursor",
    "BatchLoader",
    "NumberGenerator", "format_number", "parse_sequence",
    "compute_totals", "line_total", "payment_status", "totals_for",
    "DocumentMapper", "assemble",
    "InvoiceRepository", "QuoteRepository", "DeliveryNoteRepository",
    "VaultRepository", "TagRepository",
    "AuditLog", "JobQueue", "LocalFileStorage", "LLMClassifier",
    "SalesService", "VaultService",
]
