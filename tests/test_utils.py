"""Tests for utility functions."""

from datetime import date

import pytest

from stockcount.utils import normalize_scan_token, parse_schedule_date

TODAY = date(2026, 10, 18)


class TestParseScheduleDate:
    """Tests for parse_schedule_date."""

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_input(self, value: str | None) -> None:
        assert parse_schedule_date(value, today=TODAY) is None

    def test_iso_format(self) -> None:
        assert parse_schedule_date("2026-11-02", today=TODAY) == date(2026, 11, 2)

    def test_slash_format(self) -> None:
        assert parse_schedule_date("2026/11/02", today=TODAY) == date(2026, 11, 2)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("today", date(2026, 10, 18)),
            ("Tomorrow", date(2026, 10, 19)),
            ("next week", date(2026, 10, 25)),
            ("next month", date(2026, 11, 18)),
        ],
    )
    def test_relative_terms(self, value: str, expected: date) -> None:
        assert parse_schedule_date(value, today=TODAY) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("in 3 days", date(2026, 10, 21)),
            ("in 1 day", date(2026, 10, 19)),
            ("in 2 weeks", date(2026, 11, 1)),
            ("in 2 months", date(2026, 12, 18)),
        ],
    )
    def test_in_n_units(self, value: str, expected: date) -> None:
        assert parse_schedule_date(value, today=TODAY) == expected

    def test_month_day_upcoming(self) -> None:
        assert parse_schedule_date("Nov 2", today=TODAY) == date(2026, 11, 2)

    def test_month_day_already_past_rolls_over(self) -> None:
        assert parse_schedule_date("Mar 5", today=TODAY) == date(2027, 3, 5)

    def test_leap_day_past_has_no_next_year_date(self) -> None:
        assert parse_schedule_date("Feb 29", today=date(2028, 3, 1)) is None

    def test_leap_day_upcoming(self) -> None:
        assert parse_schedule_date("Feb 29", today=date(2028, 1, 10)) == date(2028, 2, 29)

    def test_explicit_past_year_kept(self) -> None:
        assert parse_schedule_date("2025-03-05", today=TODAY) == date(2025, 3, 5)

    def test_garbage_returns_none(self) -> None:
        assert parse_schedule_date("not a date at all", today=TODAY) is None


class TestNormalizeScanToken:
    """Tests for normalize_scan_token."""

    def test_strips_and_lowercases(self) -> None:
        assert normalize_scan_token("  WID-001\n") == "wid-001"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value: str | None) -> None:
        assert normalize_scan_token(value) == ""
