"""Civil-calendar date helpers.

Every date-bearing field is reduced to a zero-padded ``YYYY-MM-DD`` string in
one fixed civil calendar so that lexicographic comparison equals chronological
comparison.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser
from dateutil import tz

DEFAULT_TIMEZONE = "Asia/Taipei"
MISSING_DATE = "0000-00-00"


def civil_zone(name: str = DEFAULT_TIMEZONE):
    zone = tz.gettz(name)
    return zone if zone is not None else tz.tzoffset(name, 8 * 3600)


def today(timezone: str = DEFAULT_TIMEZONE) -> str:
    return datetime.now(civil_zone(timezone)).date().isoformat()


def now(timezone: str = DEFAULT_TIMEZONE) -> datetime:
    return datetime.now(civil_zone(timezone))


def normalise_date(value: object, timezone: str = DEFAULT_TIMEZONE) -> str:
    """Return ``value`` as a civil ``YYYY-MM-DD`` string, or ``""``.

    Aware timestamps (the macro serialises sheet dates as UTC instants) are
    shifted into the civil zone before the calendar day is taken; naive
    values are assumed to already be civil.
    """

    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        return _civil_day(value, timezone)
    if isinstance(value, date):
        return value.isoformat()
    stringified = str(value).strip()
    if not stringified or stringified in {"NaT", "nan", "None", "null", "undefined"}:
        return ""
    try:
        parsed = date_parser.isoparse(stringified)
    except (ValueError, OverflowError):
        try:
            parsed = date_parser.parse(stringified)
        except (ValueError, OverflowError):
            return ""
    return _civil_day(parsed, timezone)


def sortable_date(value: str) -> str:
    """Key for ordering by date; malformed values sort before every real date."""

    if is_valid_date(value):
        return value
    return MISSING_DATE


def is_valid_date(value: Optional[str]) -> bool:
    if not value or len(value) != 10:
        return False
    try:
        return date.fromisoformat(value).isoformat() == value
    except ValueError:
        return False


def split_year_month(value: str) -> tuple[str, str]:
    """Return the ``("YYYY", "MM")`` parts of a civil date string."""

    parts = value.split("-")
    if len(parts) < 2:
        return (parts[0] if parts else "", "")
    return parts[0], parts[1]


def _civil_day(moment: datetime, timezone: str) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(civil_zone(timezone))
    return moment.date().isoformat()
