"""
Financial line-item calculator.

Single source of truth for document money.  The draft preview, create,
update, and recalculation paths all call compute_totals(), so stored totals
and re-derived totals are computed by the same float operations in the same
order.

Per line:
    gross    = unit_price * quantity
    discount = gross * discount_percent / 100
    net      = gross - discount              (persisted as line_total)

Per document:
    gross_total     = sum(gross)
    discount_amount = sum(discount)
    subtotal        = gross_total - discount_amount
    vat_amount      = subtotal * vat_rate / 100   if include_vat else 0
    tax_amount      = subtotal * tax_rate / 100   if include_tax else 0
    total           = subtotal + vat_amount + tax_amount

Missing, non-numeric, or non-finite inputs count as 0.  Nothing here raises.
"""
import math
from typing import Any, Iterable, Mapping, Optional

from models.document import DocumentTotals


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def to_number(value: Any) -> float:
    """Coerce value to a finite float, 0.0 for anything else."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    return num if math.isfinite(num) else 0.0


def line_amounts(item: Any) -> tuple[float, float, float]:
    """Return (gross, discount, net) for one line item (model or mapping)."""
    gross = to_number(_field(item, "unit_price")) * to_number(_field(item, "quantity"))
    discount = gross * (to_number(_field(item, "discount_percent")) / 100)
    return gross, discount, gross - discount


def line_total(item: Any) -> float:
    return line_amounts(item)[2]


def compute_totals(
    items: Optional[Iterable[Any]],
    vat_rate: Any = 0,
    tax_rate: Any = 0,
    include_vat: bool = True,
    include_tax: bool = False,
) -> DocumentTotals:
    gross_total = 0.0
    discount_amount = 0.0
    for item in items or ():
        gross, discount, _ = line_amounts(item)
        gross_total += gross
        discount_amount += discount

    subtotal = gross_total - discount_amount
    vat_amount = subtotal * to_number(vat_rate) / 100 if include_vat else 0.0
    tax_amount = subtotal * to_number(tax_rate) / 100 if include_tax else 0.0

    return DocumentTotals(
        gross_total=gross_total,
        discount_amount=discount_amount,
        subtotal=subtotal,
        vat_amount=vat_amount,
        tax_amount=tax_amount,
        total=subtotal + vat_amount + tax_amount,
    )


def totals_for(document: Any) -> DocumentTotals:
    """Re-derive totals from an assembled document's items and stored rates/flags."""
    return compute_totals(
        _field(document, "items"),
        vat_rate=_field(document, "vat_rate"),
        tax_rate=_field(document, "tax_rate"),
        include_vat=bool(_field(document, "include_vat")),
        include_tax=bool(_field(document, "include_tax")),
    )


def payment_status(paid_amount: Any, total: Any, current_status: str) -> str:
    """
    paid when paid_amount >= total, partial when 0 < paid_amount < total,
    otherwise current_status.  Always recomputed from the full paid amount.
    """
    paid = to_number(paid_amount)
    if paid >= to_number(total):
        return "paid"
    if paid > 0:
        return "partial"
    return current_status


# Money columns a document row stores, in DocumentTotals field order.
TOTAL_FIELDS = ("gross_total", "discount_amount", "subtotal", "vat_amount", "tax_amount", "total")


def totals_differ(stored: Any, computed: DocumentTotals) -> list[str]:
    """Names of the money fields whose stored value differs from computed."""
    return [
        name for name in TOTAL_FIELDS
        if to_number(_field(stored, name)) != getattr(computed, name)
    ]
