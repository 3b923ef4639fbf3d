"""Tests for variance, cost and progress computations."""

from decimal import Decimal
from types import SimpleNamespace

from stockcount.variance import (
    VarianceSummary,
    compute_variance,
    compute_variance_percent,
    summarize,
    uncounted_items,
    variance_items,
)


def line(expected: int, counted: int | None, unit_cost: str = "1.00", name: str = "") -> SimpleNamespace:
    return SimpleNamespace(expected_qty=expected, counted_qty=counted, unit_cost=Decimal(unit_cost), name=name)


class TestComputeVariance:
    """Tests for per-item variance."""

    def test_uncounted_has_no_variance(self) -> None:
        assert compute_variance(10, None) is None

    def test_shortage_is_negative(self) -> None:
        assert compute_variance(100, 95) == -5

    def test_overage_is_positive(self) -> None:
        assert compute_variance(10, 13) == 3

    def test_variance_percent(self) -> None:
        assert compute_variance_percent(100, 95) == -5.0
        assert compute_variance_percent(0, 4) == 100.0
        assert compute_variance_percent(0, 0) == 0.0
        assert compute_variance_percent(5, None) is None


class TestSummarize:
    """Tests for summarize."""

    def test_empty_count(self) -> None:
        summary = summarize([])

        assert summary.total_items == 0
        assert summary.progress_percent == 0.0
        assert summary.accuracy_rate == 100.0
        assert summary.accuracy_display == "100.0"

    def test_nothing_counted_is_fully_accurate(self) -> None:
        summary = summarize([line(10, None), line(5, None)])

        assert summary.counted_items == 0
        assert summary.items_with_variance == 0
        assert summary.accuracy_display == "100.0"
        assert summary.progress_percent == 0.0

    def test_two_item_scenario(self) -> None:
        """A expected 100 counted 95, B expected 50 counted 50."""
        summary = summarize([line(100, 95, "2.50"), line(50, 50, "10.00")])

        assert summary.counted_items == 2
        assert summary.items_with_variance == 1
        assert summary.accuracy_rate == 50.0
        assert summary.accuracy_display == "50.0"
        assert summary.total_negative_variance == 5
        assert summary.total_positive_variance == 0
        assert summary.negative_variance_cost == Decimal("12.50")
        assert summary.net_variance_cost == Decimal("-12.50")

    def test_costs_split_by_direction(self) -> None:
        summary = summarize(
            [
                line(10, 12, "3.00"),  # +2 -> +6.00
                line(10, 7, "1.50"),  # -3 -> -4.50
                line(4, None, "99.00"),
            ]
        )

        assert summary.total_positive_variance == 2
        assert summary.total_negative_variance == 3
        assert summary.positive_variance_cost == Decimal("6.00")
        assert summary.negative_variance_cost == Decimal("4.50")
        assert summary.net_variance_cost == Decimal("1.50")
        assert summary.total_items == 3
        assert round(summary.progress_percent, 2) == 66.67

    def test_missing_unit_cost_counts_as_zero(self) -> None:
        item = SimpleNamespace(expected_qty=3, counted_qty=1, unit_cost=None)

        summary = summarize([item])

        assert summary.total_negative_variance == 2
        assert summary.negative_variance_cost == Decimal("0")

    def test_recomputed_after_recount(self) -> None:
        """Summaries are derived on every call, never cached."""
        item = line(10, 8)
        assert summarize([item]).items_with_variance == 1

        item.counted_qty = 10
        assert summarize([item]).items_with_variance == 0

    def test_to_dict_formats_money_and_accuracy(self) -> None:
        data = VarianceSummary(counted_items=4, items_with_variance=1, total_items=4).to_dict()

        assert data["accuracy_rate"] == "75.0"
        assert data["progress_percent"] == 100.0
        assert data["net_variance_cost"] == "0"


class TestVarianceItems:
    """Tests for variance_items and uncounted_items."""

    def test_only_counted_nonzero_items(self) -> None:
        exact = line(5, 5, name="exact")
        short = line(10, 9, name="short")
        pending = line(3, None, name="pending")

        assert variance_items([exact, short, pending]) == [short]

    def test_largest_relative_drift_first(self) -> None:
        small = line(100, 99, name="small")
        large_negative = line(10, 5, name="large")
        medium = line(10, 12, name="medium")

        ordered = variance_items([small, large_negative, medium])

        assert [item.name for item in ordered] == ["large", "medium", "small"]

    def test_uncounted_items(self) -> None:
        pending = line(3, None)

        assert uncounted_items([line(1, 1), pending]) == [pending]
