"""
Tests for query-string date parsing used by the list endpoints.
"""
from datetime import datetime

import pytest

from app.routers.filters import parse_date
from app.services.lifecycle import ValidationError


class TestParseDate:

    def test_empty_means_no_filter(self):
        assert parse_date(None, "dateFrom") is None
        assert parse_date("", "dateTo", end_of_day=True) is None

    def test_date_only_lower_bound_is_midnight(self):
        assert parse_date("2026-10-18", "dateFrom") == datetime(2026, 10, 18)

    def test_date_only_upper_bound_covers_the_day(self):
        assert parse_date("2026-10-18", "dateTo", end_of_day=True) == datetime(2026, 10, 18, 23, 59, 59, 999999)

    def test_explicit_time_is_kept(self):
        assert parse_date("2026-10-18T12:30:00", "dateTo", end_of_day=True) == datetime(2026, 10, 18, 12, 30)

    def test_offset_is_converted_to_utc(self):
        assert parse_date("2026-10-18T12:00:00+06:00", "dateFrom") == datetime(2026, 10, 18, 6, 0)

    def test_garbage_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_date("yesterday", "dateFrom")
