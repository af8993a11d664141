"""
Sequential, year-scoped document numbers: ``{PREFIX}-{YEAR}-{00001}``.

The next number is max(parsed suffixes) + 1 over the most recent numbers of
the year, not a lexicographic ORDER BY, so historical numbers of a different
width still count.  The candidate is re-checked once before it is returned;
a second collision is left to the UNIQUE index on the number column, which
surfaces it as ConflictError for the caller to retry.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from .database import Database

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 5


@dataclass(frozen=True)
class NumberSequence:
    prefix: str     # e.g. "INV"
    table: str      # e.g. "invoices"
    column: str     # e.g. "invoice_number"


INVOICE_SEQUENCE       = NumberSequence("INV", "invoices", "invoice_number")
QUOTE_SEQUENCE         = NumberSequence("QUO", "quotes", "quote_number")
DELIVERY_NOTE_SEQUENCE = NumberSequence("DEL", "delivery_notes", "delivery_number")

SEQUENCES: dict[str, NumberSequence] = {
    "invoice":        INVOICE_SEQUENCE,
    "quote":          QUOTE_SEQUENCE,
    "delivery_note":  DELIVERY_NOTE_SEQUENCE,
}


def year_prefix(prefix: str, year: int) -> str:
    return f"{prefix}-{year}-"


def format_number(prefix: str, year: int, seq: int) -> str:
    return f"{year_prefix(prefix, year)}{seq:0{SEQUENCE_WIDTH}d}"


def parse_sequence(number: Optional[str], prefix: str) -> int:
    """
    Numeric suffix of number after prefix (e.g. "INV-2024-").

    Returns 0 for anything that does not parse; never raises.
    """
    if not number or not number.startswith(prefix):
        return 0
    suffix = number[len(prefix):]
    if not (suffix.isascii() and suffix.isdigit()):
        return 0
    return int(suffix)


def next_sequence(numbers: Iterable[Optional[str]], prefix: str) -> int:
    """max(parsed suffixes) + 1, or 1 when none parse."""
    parsed = [n for n in (parse_sequence(num, prefix) for num in numbers) if n > 0]
    return max(parsed) + 1 if parsed else 1


def current_year() -> int:
    return datetime.now(timezone.utc).year


class NumberGenerator:

    def __init__(self, db: Database, sequence: NumberSequence, fetch_limit: int = 100) -> None:
        self.db = db
        self.sequence = sequence
        self.fetch_limit = fetch_limit

    def _exists(self, number: str) -> bool:
        seq = self.sequence
        row = self.db.fetch_one(
            f"SELECT 1 AS hit FROM {seq.table} WHERE {seq.column} = ? LIMIT 1", [number]
        )
        return row is not None

    def next_number(self, year: Optional[int] = None) -> str:
        year = year or current_year()
        seq = self.sequence
        prefix = year_prefix(seq.prefix, year)

        rows = self.db.fetch_all(
            f"SELECT {seq.column} AS number FROM {seq.table} "
            f"WHERE {seq.column} LIKE ? ORDER BY created_at DESC LIMIT ?",
            [prefix + "%", self.fetch_limit],
        )
        candidate_seq = next_sequence((r["number"] for r in rows), prefix)
        candidate = format_number(seq.prefix, year, candidate_seq)

        if self._exists(candidate):
            logger.warning("Number %s already taken, moving to the next one", candidate)
            candidate = format_number(seq.prefix, year, candidate_seq + 1)

        return candidate
