"""
Quote repository.

Statuses: draft → sent → accepted | rejected | expired.
"""
from datetime import date, timedelta
from typing import Optional

from models.document import Quote

from .documents import DocumentRepository
from .mapper import QUOTE_MAPPER
from .numbering import QUOTE_SEQUENCE
from .query_builder import order_by

QUOTE_STATUSES = ("draft", "sent", "accepted", "rejected", "expired")


class QuoteRepository(DocumentRepository):

    entity = "Quote"
    table = "quotes"
    number_column = "quote_number"
    items_table = "quote_items"
    items_fk = "quote_id"
    sequence = QUOTE_SEQUENCE
    mapper = QUOTE_MAPPER
    extra_columns = ("valid_until", "terms")

    def find_expired(self, company_id: str, today: Optional[date] = None) -> list[Quote]:
        """Draft or sent quotes whose valid_until has passed."""
        today = today or date.today()
        scope = self.resolver.resolve(company_id)
        qb = (
            self._scoped(scope)
            .membership_condition(self._col("status"), ("draft", "sent"))
            .range_condition(self._col("valid_until"), None,
                             (today - timedelta(days=1)).isoformat())
        )
        return self._select(qb, order=order_by(self.table, "valid_until", "asc", alias=self.alias))
