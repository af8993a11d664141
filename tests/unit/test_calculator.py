"""
Unit tests for the line-item / document totals calculator.
"""
import pytest

from backoffice.calculator import (
    compute_totals, line_amounts, line_total, payment_status, to_number, totals_differ,
    totals_for,
)
from models.document import LineItem


@pytest.mark.unit
class TestLineAmounts:
    """Tests for per-line gross, discount, and net."""

    def test_discounted_line(self):
        gross, discount, net = line_amounts(
            {"unit_price": 100, "quantity": 2, "discount_percent": 10}
        )
        assert gross == pytest.approx(200)
        assert discount == pytest.approx(20)
        assert net == pytest.approx(180)

    def test_missing_fields_count_as_zero(self):
        assert line_amounts({}) == (0.0, 0.0, 0.0)
        assert line_amounts({"unit_price": 10}) == (0.0, 0.0, 0.0)
        assert line_total({"unit_price": 10, "quantity": 3}) == pytest.approx(30)

    def test_accepts_model_instances(self):
        item = LineItem(product_name="Widget", quantity=4, unit_price=2.5)
        assert line_total(item) == pytest.approx(10)

    @pytest.mark.parametrize("value, expected", [
        (None, 0.0), ("", 0.0), ("abc", 0.0), (True, 0.0), (float("nan"), 0.0),
        (float("inf"), 0.0), ("12.5", 12.5), (3, 3.0),
    ])
    def test_to_number(self, value, expected):
        assert to_number(value) == expected


@pytest.mark.unit
class TestComputeTotals:
    """Tests for document-level totals."""

    def test_worked_example(self, sample_items):
        """100 x 2 at 10% off plus 50 x 1, VAT 20%."""
        totals = compute_totals(sample_items, vat_rate=20, include_vat=True)
        assert totals.gross_total == pytest.approx(250)
        assert totals.discount_amount == pytest.approx(20)
        assert totals.subtotal == pytest.approx(230)
        assert totals.vat_amount == pytest.approx(46)
        assert totals.tax_amount == 0
        assert totals.total == pytest.approx(276)

    def test_vat_excluded(self, sample_items):
        totals = compute_totals(sample_items, vat_rate=20, include_vat=False)
        assert totals.vat_amount == 0
        assert totals.total == pytest.approx(230)

    def test_tax_added_when_included(self, sample_items):
        totals = compute_totals(sample_items, vat_rate=20, tax_rate=5,
                                include_vat=True, include_tax=True)
        assert totals.tax_amount == pytest.approx(11.5)
        assert totals.total == pytest.approx(230 + 46 + 11.5)

    def test_tax_ignored_when_not_included(self, sample_items):
        totals = compute_totals(sample_items, vat_rate=0, tax_rate=5, include_tax=False)
        assert totals.tax_amount == 0

    @pytest.mark.parametrize("items", [None, []])
    def test_no_items(self, items):
        totals = compute_totals(items, vat_rate=20)
        assert totals.model_dump() == {
            "gross_total": 0, "discount_amount": 0, "subtotal": 0,
            "vat_amount": 0, "tax_amount": 0, "total": 0,
        }

    def test_garbage_inputs_never_raise(self):
        totals = compute_totals(
            [{"unit_price": "abc", "quantity": None}, {"unit_price": 10, "quantity": "2"}],
            vat_rate="twenty",
        )
        assert totals.subtotal == pytest.approx(20)
        assert totals.vat_amount == 0
        assert totals.total == pytest.approx(20)

    def test_totals_for_document(self, sample_items):
        """totals_for() re-derives from the document's own rates and flags."""
        doc = {"items": sample_items, "vat_rate": 20, "include_vat": True,
               "tax_rate": 0, "include_tax": False}
        assert totals_for(doc) == compute_totals(sample_items, 20, 0, True, False)


@pytest.mark.unit
class TestTotalsDiffer:
    """Tests for stored-vs-computed drift detection."""

    def test_identical_totals(self, sample_items):
        computed = compute_totals(sample_items, vat_rate=20)
        assert totals_differ(computed.model_dump(), computed) == []

    def test_drifted_fields_reported(self, sample_items):
        computed = compute_totals(sample_items, vat_rate=20)
        stored = computed.model_dump()
        stored["total"] = 999
        stored["vat_amount"] = None
        assert totals_differ(stored, computed) == ["vat_amount", "total"]


@pytest.mark.unit
class TestPaymentStatus:
    """Tests for status derived from the paid amount."""

    @pytest.mark.parametrize("paid, total, current, expected", [
        (276, 276, "sent", "paid"),
        (300, 276, "overdue", "paid"),
        (100, 276, "sent", "partial"),
        (100, 276, "overdue", "partial"),
        (0, 276, "sent", "sent"),
        (0, 276, "overdue", "overdue"),
        (None, 276, "draft", "draft"),
    ])
    def test_status(self, paid, total, current, expected):
        assert payment_status(paid, total, current) == expected

    def test_zero_total_counts_as_paid(self):
        """paid_amount >= total holds for 0 >= 0."""
        assert payment_status(0, 0, "sent") == "paid"
