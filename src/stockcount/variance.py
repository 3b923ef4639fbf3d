"""Variance, cost and progress computations for cycle counts.

Everything here is a pure function of the item list. Nothing is cached or
persisted, so a summary can be rebuilt on every request without going
stale after a recount.

Items are duck-typed: any object exposing ``expected_qty``, ``counted_qty``
and ``unit_cost`` works, which includes ``CycleCountItem`` rows.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

ZERO = Decimal("0")


def compute_variance(expected_qty: int, counted_qty: Optional[int]) -> Optional[int]:
    """Return ``counted_qty - expected_qty``, or None while uncounted."""
    if counted_qty is None:
        return None
    return counted_qty - expected_qty


def compute_variance_percent(expected_qty: int, counted_qty: Optional[int]) -> Optional[float]:
    """Return the variance as a percentage of the expected quantity.

    An item expected at zero but found on the shelf reports 100%.
    """
    variance = compute_variance(expected_qty, counted_qty)
    if variance is None:
        return None
    if expected_qty > 0:
        return variance / expected_qty * 100
    return 100.0 if counted_qty else 0.0


def _unit_cost(item: Any) -> Decimal:
    cost = getattr(item, "unit_cost", None)
    if cost is None:
        return ZERO
    return cost if isinstance(cost, Decimal) else Decimal(str(cost))


@dataclass(frozen=True)
class VarianceSummary:
    """Aggregated view of a count's progress and drift."""

    total_items: int = 0
    counted_items: int = 0
    items_with_variance: int = 0
    total_positive_variance: int = 0
    total_negative_variance: int = 0
    positive_variance_cost: Decimal = ZERO
    negative_variance_cost: Decimal = ZERO

    @property
    def net_variance_cost(self) -> Decimal:
        return self.positive_variance_cost - self.negative_variance_cost

    @property
    def progress_percent(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.counted_items / self.total_items * 100

    @property
    def accuracy_rate(self) -> float:
        # Nothing counted yet means nothing found wrong
        if self.counted_items == 0:
            return 100.0
        return (self.counted_items - self.items_with_variance) / self.counted_items * 100

    @property
    def accuracy_display(self) -> str:
        return f"{self.accuracy_rate:.1f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_items": self.total_items,
            "counted_items": self.counted_items,
            "progress_percent": round(self.progress_percent, 1),
            "items_with_variance": self.items_with_variance,
            "total_positive_variance": self.total_positive_variance,
            "total_negative_variance": self.total_negative_variance,
            "positive_variance_cost": str(self.positive_variance_cost),
            "negative_variance_cost": str(self.negative_variance_cost),
            "net_variance_cost": str(self.net_variance_cost),
            "accuracy_rate": self.accuracy_display,
        }


def summarize(items: Iterable[Any]) -> VarianceSummary:
    """Build a VarianceSummary from a count's items."""
    total_items = 0
    counted_items = 0
    items_with_variance = 0
    positive_units = 0
    negative_units = 0
    positive_cost = ZERO
    negative_cost = ZERO

    for item in items:
        total_items += 1
        variance = compute_variance(item.expected_qty, item.counted_qty)
        if variance is None:
            continue
        counted_items += 1
        if variance == 0:
            continue
        items_with_variance += 1
        cost = _unit_cost(item)
        if variance > 0:
            positive_units += variance
            positive_cost += variance * cost
        else:
            negative_units += abs(variance)
            negative_cost += abs(variance) * cost

    return VarianceSummary(
        total_items=total_items,
        counted_items=counted_items,
        items_with_variance=items_with_variance,
        total_positive_variance=positive_units,
        total_negative_variance=negative_units,
        positive_variance_cost=positive_cost,
        negative_variance_cost=negative_cost,
    )


def variance_items(items: Iterable[Any]) -> list[Any]:
    """Return counted items whose count differs from the expected quantity.

    Largest relative drift first, so reviewers see the worst lines on top.
    """
    flagged = [
        item
        for item in items
        if compute_variance(item.expected_qty, item.counted_qty) not in (None, 0)
    ]
    return sorted(
        flagged,
        key=lambda item: abs(compute_variance_percent(item.expected_qty, item.counted_qty) or 0.0),
        reverse=True,
    )


def uncounted_items(items: Sequence[Any]) -> list[Any]:
    return [item for item in items if item.counted_qty is None]
