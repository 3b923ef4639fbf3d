"""Rules for choosing which stock positions a new cycle count covers."""

import random
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .database.models import InventoryRecord
from .exceptions import ValidationError

SELECTION_MODES = ("all", "random", "specific", "abc")
ABC_CLASSES = ("A", "B", "C", "ALL")


@dataclass
class SelectionRule:
    """How to pick products from the inventory in scope.

    - ``all``: every stock position
    - ``random``: every position of ``sample_size`` randomly chosen products
      (scheduling fills in the configured default when it is None)
    - ``specific``: every position of the listed ``product_ids``
    - ``abc``: every position whose product has ``abc_class`` ("all" = any class)
    """

    mode: str = "all"
    sample_size: Optional[int] = None
    product_ids: list[int] = field(default_factory=list)
    abc_class: str = "all"
    seed: Optional[int] = None

    def validate(self) -> None:
        if self.mode not in SELECTION_MODES:
            raise ValidationError(f"Unknown product selection '{self.mode}'", field="selection")
        if self.mode == "random" and (self.sample_size is None or self.sample_size < 1):
            raise ValidationError("Sample size must be at least 1", field="sample_size")
        if self.mode == "specific" and not self.product_ids:
            raise ValidationError("Select at least one product to count", field="product_ids")
        if self.mode == "abc" and self.abc_class.upper() not in ABC_CLASSES:
            raise ValidationError(f"Unknown ABC class '{self.abc_class}'", field="abc_class")


def select_records(rule: SelectionRule, records: Sequence[InventoryRecord]) -> list[InventoryRecord]:
    """Filter stock records down to the ones the rule selects.

    Records keep their input order. Records must have ``product`` loaded
    for the ``abc`` mode.
    """
    rule.validate()

    if rule.mode == "all":
        return list(records)

    if rule.mode == "specific":
        wanted = set(rule.product_ids)
        return [record for record in records if record.product_id in wanted]

    if rule.mode == "abc":
        abc_class = rule.abc_class.upper()
        if abc_class == "ALL":
            return list(records)
        return [
            record
            for record in records
            if record.product is not None and (record.product.abc_class or "").upper() == abc_class
        ]

    product_ids = sorted({record.product_id for record in records})
    if len(product_ids) > rule.sample_size:
        product_ids = random.Random(rule.seed).sample(product_ids, rule.sample_size)
    sampled = set(product_ids)
    return [record for record in records if record.product_id in sampled]
