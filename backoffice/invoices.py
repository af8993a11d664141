"""
Invoice repository.

Statuses:
  draft      → being edited, not yet sent to the customer
  sent       → delivered to the customer, awaiting payment
  partial    → some payment recorded, balance outstanding
  paid       → paid_amount >= total
  overdue    → past due_date without full payment
  cancelled  → voided
"""
import logging
from datetime import date, timedelta
from typing import Optional

from models.document import Invoice

from .calculator import payment_status
from .database import utcnow
from .documents import DocumentRepository
from .errors import NotFoundError, ValidationError
from .mapper import INVOICE_MAPPER
from .numbering import INVOICE_SEQUENCE
from .query_builder import order_by

logger = logging.getLogger(__name__)

INVOICE_STATUSES = ("draft", "sent", "partial", "paid", "overdue", "cancelled")
# Statuses that can still become overdue
OPEN_STATUSES = ("sent", "partial", "overdue")


class InvoiceRepository(DocumentRepository):

    entity = "Invoice"
    table = "invoices"
    number_column = "invoice_number"
    items_table = "invoice_items"
    items_fk = "invoice_id"
    sequence = INVOICE_SEQUENCE
    mapper = INVOICE_MAPPER
    extra_columns = ("quote_id", "due_date", "paid_amount", "terms")

    def record_payment(self, company_id: str, invoice_id: str, amount: float) -> Invoice:
        """
        Add amount to paid_amount and reclassify the status from the new
        total paid (paid / partial / unchanged).
        """
        if amount is None or amount <= 0:
            raise ValidationError("Payment amount must be greater than zero", {"amount": amount})
        scope = self.resolver.resolve(company_id)

        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT paid_amount, total, status FROM invoices "
                "WHERE id = ? AND tenant_scope_id = ?",
                [invoice_id, scope],
            ).fetchone()
            if not row:
                raise NotFoundError(self.entity, invoice_id)
            if row["status"] == "cancelled":
                raise ValidationError("Cannot record a payment on a cancelled invoice",
                                      {"id": invoice_id})

            paid = (row["paid_amount"] or 0) + amount
            status = payment_status(paid, row["total"], row["status"])
            conn.execute(
                "UPDATE invoices SET paid_amount = ?, status = ?, updated_at = ? WHERE id = ?",
                [paid, status, utcnow(), invoice_id],
            )

        logger.info("Payment of %.2f recorded on invoice %s → %s", amount, invoice_id, status)
        return self.find_by_id(company_id, invoice_id)

    def find_overdue(self, company_id: str, today: Optional[date] = None) -> list[Invoice]:
        """Open invoices whose due_date is before today."""
        today = today or date.today()
        yesterday = (today - timedelta(days=1)).isoformat()
        scope = self.resolver.resolve(company_id)
        qb = (
            self._scoped(scope)
            .membership_condition(self._col("status"), OPEN_STATUSES)
            .range_condition(self._col("due_date"), None, yesterday)
        )
        return self._select(qb, order=order_by(self.table, "due_date", "asc", alias=self.alias))
