"""
Document aggregate mapper.

Turns a parent row (optionally carrying LEFT JOINed relation columns), plus
its batch-loaded children, into the public pydantic document.  Pure; never
raises for malformed stored data:

  - JSON blob columns are decoded; a malformed blob becomes None for that
    field only.
  - Dates become YYYY-MM-DD, timestamps ISO 8601 with a UTC offset.
  - Joined relation columns follow the ``<relation>_<field>_join`` naming.
    A relation is nested only when its ``<relation>_id_join`` column is
    non-NULL; a missed LEFT JOIN never produces an empty sub-object.
"""
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional, Sequence, Type

from pydantic import BaseModel

from models.document import (
    CompanyRef, ContactRef, DeliveryNote, Invoice, InvoiceRef, Quote, QuoteRef,
)
from models.vault import VaultDocument

logger = logging.getLogger(__name__)

JOIN_SUFFIX = "_join"

DOCUMENT_JSON_FIELDS = ("from_details", "customer_details", "template_settings")
DOCUMENT_DATE_FIELDS = ("issue_date", "due_date", "valid_until", "ship_date", "delivery_date")
TIMESTAMP_FIELDS = ("created_at", "updated_at")


@dataclass(frozen=True)
class Relation:
    """A to-one relation joined into the parent query."""
    name: str                       # key on the document, e.g. "company"
    table: str                      # joined table
    alias: str                      # SQL alias used in the JOIN
    local_key: str                  # parent column holding the foreign id
    fields: tuple[str, ...]         # columns copied into the nested object
    model: Type[BaseModel]

    def select_sql(self) -> str:
        return ", ".join(
            f"{self.alias}.{f} AS {self.name}_{f}{JOIN_SUFFIX}" for f in self.fields
        )

    def join_sql(self, parent_alias: str) -> str:
        return (
            f"LEFT JOIN {self.table} {self.alias} "
            f"ON {self.alias}.id = {parent_alias}.{self.local_key}"
        )


COMPANY = Relation("company", "companies", "co", "company_id",
                   ("id", "name", "industry", "address", "email"), CompanyRef)
CONTACT = Relation("contact", "contacts", "ct", "contact_id",
                   ("id", "first_name", "last_name", "email"), ContactRef)
QUOTE = Relation("quote", "quotes", "q", "quote_id",
                 ("id", "quote_number", "status"), QuoteRef)
INVOICE = Relation("invoice", "invoices", "inv", "invoice_id",
                   ("id", "invoice_number", "status"), InvoiceRef)


# ----------------------------------------------------------------------
# Field normalisation
# ----------------------------------------------------------------------

def parse_json_blob(value: Any, field_name: str = "") -> Any:
    """Decode a stored JSON column.  Malformed text yields None."""
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return json.loads(value)
    except (ValueError, TypeError) as exc:
        logger.warning("Malformed JSON in %s, returning null: %s", field_name or "blob", exc)
        return None


def dump_json_blob(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def normalize_date(value: Any) -> Optional[str]:
    """Any date/datetime representation -> YYYY-MM-DD.  Unparseable text is kept as is."""
    if value is None or value == "":
        return None
    parsed = _parse_datetime(value)
    if parsed is None:
        return str(value)
    return parsed.date().isoformat()


def normalize_timestamp(value: Any) -> Optional[str]:
    """Any timestamp representation -> ISO 8601 in UTC.  Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    parsed = _parse_datetime(value)
    if parsed is None:
        return str(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


# ----------------------------------------------------------------------
# Assembly
# ----------------------------------------------------------------------

def extract_relations(row: dict, relations: Iterable[Relation]) -> dict[str, Any]:
    """
    Pop every ``*_join`` column from row and return the nested relation
    objects whose id column is present.
    """
    nested: dict[str, Any] = {}
    for rel in relations:
        values = {f: row.pop(f"{rel.name}_{f}{JOIN_SUFFIX}", None) for f in rel.fields}
        if values.get("id") is not None:
            nested[rel.name] = rel.model.model_validate(values)
    # Leftover join columns from relations this mapper does not know about
    for key in [k for k in row if k.endswith(JOIN_SUFFIX)]:
        row.pop(key)
    return nested


class DocumentMapper:
    """Row + children + joined relations -> pydantic document."""

    def __init__(
        self,
        model: Type[BaseModel],
        relations: Sequence[Relation] = (),
        child_key: str = "items",
        json_fields: Sequence[str] = DOCUMENT_JSON_FIELDS,
        date_fields: Sequence[str] = DOCUMENT_DATE_FIELDS,
        timestamp_fields: Sequence[str] = TIMESTAMP_FIELDS,
    ) -> None:
        self.model = model
        self.relations = tuple(relations)
        self.child_key = child_key
        self.json_fields = tuple(json_fields)
        self.date_fields = tuple(date_fields)
        self.timestamp_fields = tuple(timestamp_fields)

    def assemble(self, row: dict, children: Optional[list] = None) -> BaseModel:
        data = dict(row)
        nested = extract_relations(data, self.relations)

        for f in self.json_fields:
            if f in data:
                data[f] = parse_json_blob(data[f], f)
        for f in self.date_fields:
            if f in data:
                data[f] = normalize_date(data[f])
        for f in self.timestamp_fields:
            if f in data:
                data[f] = normalize_timestamp(data[f])

        data[self.child_key] = list(children or [])
        data.update(nested)
        return self.model.model_validate(data)

    def assemble_many(self, rows: Iterable[dict], children: dict[str, list]) -> list:
        return [self.assemble(r, children.get(r["id"], [])) for r in rows]


INVOICE_MAPPER = DocumentMapper(Invoice, relations=(COMPANY, CONTACT, QUOTE))
QUOTE_MAPPER = DocumentMapper(Quote, relations=(COMPANY, CONTACT))
DELIVERY_NOTE_MAPPER = DocumentMapper(DeliveryNote, relations=(COMPANY, CONTACT, INVOICE))
VAULT_MAPPER = DocumentMapper(
    VaultDocument,
    child_key="tags",
    json_fields=("path_tokens", "metadata"),
    date_fields=("date",),
)


def assemble(row: dict, children: Optional[list] = None,
             mapper: DocumentMapper = INVOICE_MAPPER) -> BaseModel:
    return mapper.assemble(row, children)
