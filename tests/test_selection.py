"""Tests for product selection rules."""

from types import SimpleNamespace

import pytest

from stockcount.exceptions import ValidationError
from stockcount.selection import SelectionRule, select_records


def record(product_id: int, abc_class: str | None = None, sublocation_id: int | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        product_id=product_id,
        sublocation_id=sublocation_id,
        product=SimpleNamespace(id=product_id, abc_class=abc_class),
    )


@pytest.fixture
def records() -> list[SimpleNamespace]:
    return [
        record(1, "A", sublocation_id=10),
        record(1, "A", sublocation_id=11),
        record(2, "B"),
        record(3, "C"),
        record(4, None),
    ]


class TestSelectionRuleValidation:
    """Tests for SelectionRule.validate."""

    def test_unknown_mode(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            SelectionRule(mode="everything").validate()
        assert exc_info.value.field == "selection"

    def test_random_needs_positive_sample(self) -> None:
        with pytest.raises(ValidationError):
            SelectionRule(mode="random", sample_size=0).validate()

    def test_random_without_sample_size(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            SelectionRule(mode="random").validate()
        assert exc_info.value.field == "sample_size"

    def test_specific_needs_products(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            SelectionRule(mode="specific").validate()
        assert exc_info.value.field == "product_ids"

    def test_abc_class_checked(self) -> None:
        with pytest.raises(ValidationError):
            SelectionRule(mode="abc", abc_class="D").validate()

    def test_abc_class_case_insensitive(self) -> None:
        SelectionRule(mode="abc", abc_class="b").validate()


class TestSelectRecords:
    """Tests for select_records."""

    def test_all(self, records: list[SimpleNamespace]) -> None:
        assert select_records(SelectionRule(), records) == records

    def test_specific_keeps_every_position(self, records: list[SimpleNamespace]) -> None:
        selected = select_records(SelectionRule(mode="specific", product_ids=[1, 3]), records)

        assert [r.product_id for r in selected] == [1, 1, 3]

    def test_abc_filters_by_class(self, records: list[SimpleNamespace]) -> None:
        selected = select_records(SelectionRule(mode="abc", abc_class="a"), records)

        assert [r.product_id for r in selected] == [1, 1]

    def test_abc_all_selects_everything(self, records: list[SimpleNamespace]) -> None:
        assert len(select_records(SelectionRule(mode="abc", abc_class="all"), records)) == 5

    def test_random_samples_whole_products(self, records: list[SimpleNamespace]) -> None:
        selected = select_records(SelectionRule(mode="random", sample_size=2, seed=7), records)

        product_ids = {r.product_id for r in selected}
        assert len(product_ids) == 2
        if 1 in product_ids:
            assert sum(1 for r in selected if r.product_id == 1) == 2

    def test_random_is_reproducible_with_seed(self, records: list[SimpleNamespace]) -> None:
        rule = SelectionRule(mode="random", sample_size=2, seed=42)

        assert select_records(rule, records) == select_records(rule, records)

    def test_random_sample_larger_than_population(self, records: list[SimpleNamespace]) -> None:
        selected = select_records(SelectionRule(mode="random", sample_size=50), records)

        assert selected == records

    def test_invalid_rule_raises(self, records: list[SimpleNamespace]) -> None:
        with pytest.raises(ValidationError):
            select_records(SelectionRule(mode="specific"), records)
