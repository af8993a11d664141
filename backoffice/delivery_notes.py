"""
Delivery note repository.

Statuses: pending → in_transit → delivered | returned.
Delivery notes carry line items but are not taxable documents; their VAT
default is 0.
"""
import logging
from datetime import date
from typing import Optional

from models.document import DeliveryNote

from .documents import DocumentRepository
from .mapper import DELIVERY_NOTE_MAPPER
from .numbering import DELIVERY_NOTE_SEQUENCE

logger = logging.getLogger(__name__)

DELIVERY_NOTE_STATUSES = ("pending", "in_transit", "delivered", "returned")


class DeliveryNoteRepository(DocumentRepository):

    entity = "DeliveryNote"
    table = "delivery_notes"
    number_column = "delivery_number"
    items_table = "delivery_note_items"
    items_fk = "delivery_note_id"
    sequence = DELIVERY_NOTE_SEQUENCE
    mapper = DELIVERY_NOTE_MAPPER
    extra_columns = (
        "invoice_id", "ship_date", "delivery_date",
        "shipping_address", "tracking_number", "carrier",
    )

    def mark_delivered(self, company_id: str, note_id: str,
                       delivery_date: Optional[date] = None) -> DeliveryNote:
        delivered_on = (delivery_date or date.today()).isoformat()
        self.update(company_id, note_id, {"status": "delivered", "delivery_date": delivered_on})
        logger.info("Delivery note %s delivered on %s", note_id, delivered_on)
        return self.find_by_id(company_id, note_id)
