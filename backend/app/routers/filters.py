"""
Traffic Watch - Query Filters
Shared query-string parsing for the report and ledger list endpoints.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from dateutil import parser as dateparser
from fastapi import Query

from ..models.db_models import ReportStatus, ViolationType
from ..services.lifecycle import ValidationError

# "2026-10-18"
DATE_ONLY_LENGTH = 10


def parse_date(value: Optional[str], field: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime query value.

    With end_of_day, a bare date ("2026-10-18") means the last instant of
    that day, so an inclusive upper bound keeps the whole day.
    """
    if not value:
        return None
    try:
        parsed = dateparser.isoparse(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    # Stored timestamps are naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    if end_of_day and len(value.strip()) <= DATE_ONLY_LENGTH:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def parse_enum(enum_cls, value: Optional[str], field: str):
    if not value:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise ValidationError(f"Unknown {field}: {value}")


def report_filters(
    search: Optional[str] = None,
    status: Optional[str] = None,
    violation_type: Optional[str] = Query(None, alias="violationType"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
) -> Dict[str, Any]:
    """Dependency collecting the report list filters."""
    return {
        "search": search,
        "status": parse_enum(ReportStatus, status, "status"),
        "violation_type": parse_enum(ViolationType, violation_type, "violationType"),
        "date_from": parse_date(date_from, "dateFrom"),
        "date_to": parse_date(date_to, "dateTo", end_of_day=True),
    }
