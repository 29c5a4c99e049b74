"""
Unit tests for the Period value type.

Tests cover:
- Construction and normalization
- Containment and boundedness
- Parsing PostgreSQL range literals
- Rendering back to range literals
"""

from datetime import datetime, timedelta, timezone

import pytest

from temporal_tables.versioning.period import Period

UTC = timezone.utc
A = datetime(2024, 1, 1, tzinfo=UTC)
B = datetime(2024, 6, 1, tzinfo=UTC)


class TestPeriodConstruction:
    """Tests for Period invariants."""

    def test_open_ended(self):
        period = Period.starting(A)
        assert period.upper_inf
        assert not period.lower_inf
        assert period.is_current

    def test_closed_is_not_current(self):
        period = Period.closed(A, B)
        assert not period.upper_inf
        assert not period.is_current

    def test_equal_bounds_normalize_to_empty(self):
        period = Period(A, A)
        assert period.empty
        assert not period.upper_inf
        assert not period.is_current

    def test_reversed_bounds_rejected(self):
        with pytest.raises(ValueError):
            Period(B, A)

    def test_value_equality(self):
        assert Period(A, B) == Period.closed(A, B)
        assert Period.starting(A) != Period.closed(A, B)


class TestPeriodContains:
    """Tests for half-open containment."""

    def test_lower_bound_inclusive(self):
        assert Period(A, B).contains(A)

    def test_upper_bound_exclusive(self):
        assert not Period(A, B).contains(B)

    def test_open_ended_contains_future(self):
        assert Period.starting(A).contains(A + timedelta(days=3650))

    def test_empty_contains_nothing(self):
        assert not Period(empty=True).contains(A)


class TestPeriodParse:
    """Tests for parsing tstzrange output."""

    def test_parse_postgres_output(self):
        period = Period.parse('["2024-01-01 00:00:00+00","2024-06-01 00:00:00+00")')
        assert period == Period(A, B)

    def test_parse_open_upper(self):
        assert Period.parse('["2024-01-01 00:00:00+00",)') == Period.starting(A)

    def test_parse_infinity(self):
        assert Period.parse('["2024-01-01 00:00:00+00",infinity)') == Period.starting(A)

    def test_parse_unbounded_lower(self):
        period = Period.parse('(,"2024-06-01 00:00:00+00")')
        assert period.lower_inf
        assert period.upper == B

    def test_parse_fractional_seconds_and_offset(self):
        period = Period.parse('["2024-01-01 02:00:00.25+02",)')
        assert period.lower == datetime(2024, 1, 1, 0, 0, 0, 250000, tzinfo=UTC)

    @pytest.mark.parametrize(
        "text,microsecond",
        [
            ('["2024-01-01 12:00:00.1+00",)', 100000),
            ('["2024-01-01 12:00:00.12+00",)', 120000),
            ('["2024-01-01 12:00:00.1234+00",)', 123400),
            ('["2024-01-01 12:00:00.12345+05:30",)', 123450),
            ('["2024-01-01 12:00:00.123456+00",)', 123456),
        ],
    )
    def test_parse_trimmed_fraction(self, text, microsecond):
        assert Period.parse(text).lower.microsecond == microsecond

    def test_parse_empty(self):
        assert Period.parse("empty").empty

    def test_parse_malformed(self):
        with pytest.raises(ValueError):
            Period.parse("not a range")


class TestPeriodStr:
    """Tests for rendering range literals."""

    def test_open_ended(self):
        assert str(Period.starting(A)) == '["2024-01-01 00:00:00+00:00",)'

    def test_closed(self):
        assert str(Period(A, B)) == '["2024-01-01 00:00:00+00:00","2024-06-01 00:00:00+00:00")'

    def test_empty(self):
        assert str(Period(empty=True)) == "empty"

    def test_parse_of_str_is_identity(self):
        period = Period(A, B)
        assert Period.parse(str(period)) == period
