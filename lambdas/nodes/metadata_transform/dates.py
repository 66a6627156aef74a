"""Date and year normalization.

Parses free-form date strings from source records into PrimitiveDates and
derives the YEAR / CENTURY / YEARMONTH / YEARMONTHDAY / MONTHDAY index fields
from them. Also fills gaps between collected years and centuries so that
range facets stay contiguous.

Known absolute formats are tried first, in this order:

    2014-08-05T10:15:00     ISO local date-time
    2014-08-05T10:15:00Z    ISO instant
    05.08.2014              day.month.year
    2014-08-05              ISO date
    2014-08                 year-month
    08/05/2014              US (month/day/year)
    2014.08.05              Chinese (year.month.day)
    2014/08/05              Japanese (year/month/day)

Anything else is scanned for numbers: a string with an inner ``-`` is taken
as a year range, otherwise every signed number long enough counts as a year.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

try:
    from nodes.metadata_transform.models import (
        CENTURY,
        MONTHDAY,
        YEAR,
        YEARMONTH,
        YEARMONTHDAY,
        OutputField,
    )
except ImportError:
    from models import CENTURY, MONTHDAY, YEAR, YEARMONTH, YEARMONTHDAY, OutputField

logger = logging.getLogger(__name__)

_TIME = r"(?P<hour>\d{2}):(?P<minute>\d{2})(?::(?P<second>\d{2})(?:\.\d{1,9})?)?"
_ISO_DATE = r"(?P<year>\d{4,})-(?P<month>\d{2})-(?P<day>\d{2})"

# Ordered by priority
DATE_FORMATS: tuple[tuple[str, re.Pattern], ...] = (
    ("iso_local_datetime", re.compile(rf"^{_ISO_DATE}T{_TIME}$")),
    ("iso_instant", re.compile(rf"^{_ISO_DATE}T{_TIME}(?:Z|[+-]\d{{2}}:\d{{2}})$")),
    ("de_date", re.compile(r"^(?P<day>\d{2})\.(?P<month>\d{2})\.(?P<year>\d{4,})$")),
    ("iso_date", re.compile(rf"^{_ISO_DATE}$")),
    ("iso_yearmonth", re.compile(r"^(?P<year>\d{4,})-(?P<month>\d{2})$")),
    ("us_date", re.compile(r"^(?P<month>\d{2})/(?P<day>\d{2})/(?P<year>\d{4,})$")),
    ("cn_date", re.compile(r"^(?P<year>\d{4,})\.(?P<month>\d{2})\.(?P<day>\d{2})$")),
    ("jp_date", re.compile(r"^(?P<year>\d{4,})/(?P<month>\d{2})/(?P<day>\d{2})$")),
)

YEAR_RANGE_NUMBER = re.compile(r"[\d+]\d+")
SIGNED_NUMBER = re.compile(r"-?\d+")


@dataclass(frozen=True)
class PrimitiveDate:
    """A partial calendar date: year, optionally month and day."""

    year: int
    month: int | None = None
    day: int | None = None


def _is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def _days_in_month(year: int, month: int) -> int:
    if month == 2:
        return 29 if _is_leap_year(year) else 28
    if month in (4, 6, 9, 11):
        return 30
    return 31


def _from_match(match: re.Match) -> PrimitiveDate | None:
    parts = match.groupdict()
    year = int(parts["year"])
    month = int(parts["month"])
    if not 1 <= month <= 12:
        return None

    day = None
    if parts.get("day") is not None:
        day = int(parts["day"])
        if not 1 <= day <= _days_in_month(year, month):
            return None

    if parts.get("hour") is not None:
        if int(parts["hour"]) > 23 or int(parts["minute"]) > 59:
            return None
        if parts.get("second") is not None and int(parts["second"]) > 59:
            return None

    return PrimitiveDate(year=year, month=month, day=day)


def normalize_date(date_string: str, min_year_digits: int) -> list[PrimitiveDate]:
    """Extract dates from the given string.

    Args:
        date_string: Raw date value
        min_year_digits: Minimum number of digits a bare number must have to
            count as a year (a leading minus sign needs one more character)

    Returns:
        List of parsed dates (empty if nothing usable was found)

    Raises:
        ValueError: If date_string is None or min_year_digits is less than 1

    Examples:
        >>> normalize_date("03.05.1999", 3)
        [PrimitiveDate(year=1999, month=5, day=3)]
        >>> normalize_date("1870-1880", 4)
        [PrimitiveDate(year=1870, month=None, day=None), PrimitiveDate(year=1880, month=None, day=None)]
    """
    if date_string is None:
        raise ValueError("date_string may not be None")
    if min_year_digits < 1:
        raise ValueError("min_year_digits must be at least 1")

    value = date_string.strip()
    if not value:
        return []

    for format_name, pattern in DATE_FORMATS:
        match = pattern.match(value)
        if match is None:
            continue
        date = _from_match(match)
        if date is not None:
            logger.debug(f"Parsed date {date} using format {format_name}")
            return [date]

    dates: list[PrimitiveDate] = []

    # Year ranges
    if "-" in value and not value.startswith("-"):
        for number in YEAR_RANGE_NUMBER.findall(value):
            if len(number) >= min_year_digits:
                dates.append(PrimitiveDate(year=int(number)))
        if not dates:
            logger.debug(f"No years found in range value '{value}'")
        return dates

    for number in SIGNED_NUMBER.findall(value):
        required = min_year_digits + 1 if number.startswith("-") else min_year_digits
        if len(number) >= required:
            dates.append(PrimitiveDate(year=int(number)))

    if not dates:
        logger.debug(f"Could not parse a date from '{value}'")
    return dates


def normalize_date_field_value(value: str) -> str:
    """Convert a date value to an ISO instant at midnight UTC.

    Values already in ISO instant form are returned unchanged. Returns an
    empty string if no date could be parsed.

    Examples:
        >>> normalize_date_field_value("05.08.2014")
        '2014-08-05T00:00:00Z'
    """
    if not value:
        return ""

    stripped = value.strip()
    if DATE_FORMATS[1][1].match(stripped) and stripped.endswith("Z"):
        return stripped

    match = DATE_FORMATS[0][1].match(stripped)
    if match is not None and _from_match(match) is not None:
        seconds = match.group("second") or "00"
        return (
            f"{match.group('year')}-{match.group('month')}-{match.group('day')}"
            f"T{match.group('hour')}:{match.group('minute')}:{seconds}Z"
        )

    dates = normalize_date(stripped, 4)
    if not dates:
        return ""
    date = dates[0]
    return f"{date.year:04d}-{date.month or 1:02d}-{date.day or 1:02d}T00:00:00Z"


def get_century(year: int) -> int:
    """Return the century a year belongs to.

    Years 1-100 form century 1, 101-200 century 2 and so on; negative years
    mirror this (-1 to -100 is century -1). There is no century 0; year 0 is
    counted as century 1.
    """
    if year == 0:
        return 1
    century = (abs(year) - 1) // 100 + 1
    return century if year > 0 else -century


def parse_dates_and_centuries(
    centuries: set[int],
    value: str,
    min_year_digits: int,
    custom_field: str | None = None,
) -> list[OutputField]:
    """Derive date fields from a value.

    Args:
        centuries: Centuries already emitted for this record; updated in place
        value: Field value to parse
        min_year_digits: See normalize_date
        custom_field: Optional additional field to receive the year

    Returns:
        YEAR, CENTURY (only if new), custom, YEARMONTH, YEARMONTHDAY and
        MONTHDAY fields, as available
    """
    if not value:
        return []

    fields: list[OutputField] = []
    for date in normalize_date(value, min_year_digits):
        fields.append(OutputField(YEAR, str(date.year)))

        century = get_century(date.year)
        if century not in centuries:
            fields.append(OutputField(CENTURY, str(century)))
            centuries.add(century)

        if custom_field:
            fields.append(OutputField(custom_field, str(date.year)))

        if date.month is not None:
            year = f"{date.year:04d}"
            fields.append(OutputField(YEARMONTH, f"{year}{date.month:02d}"))
            if date.day is not None:
                fields.append(
                    OutputField(YEARMONTHDAY, f"{year}{date.month:02d}{date.day:02d}")
                )
                fields.append(OutputField(MONTHDAY, f"{date.month:02d}{date.day:02d}"))

    return fields


def complete_integer_values(
    fields: Iterable[OutputField],
    field_name: str,
    skip_values: Iterable[int] = (),
) -> list[OutputField]:
    """Return fields for every integer missing between the min and max value.

    Existing values are never repeated. Values that do not parse as integers
    are ignored.

    Raises:
        ValueError: If field_name is empty
    """
    if not field_name:
        raise ValueError("field_name may not be empty")

    existing: set[int] = set()
    for field in fields:
        if field.name != field_name:
            continue
        try:
            existing.add(int(field.value))
        except ValueError:
            logger.warning(f"Non-integer {field_name} value ignored: {field.value}")

    if not existing:
        return []

    skip = set(skip_values)
    added: list[OutputField] = []
    for number in range(min(existing), max(existing)):
        if number not in existing and number not in skip:
            added.append(OutputField(field_name, str(number)))
            logger.debug(f"Added implicit {field_name}:{number}")
    return added


def complete_years(fields: Iterable[OutputField], field_name: str = YEAR) -> list[OutputField]:
    """Fill gaps between collected years (1990 and 1993 imply 1991 and 1992)."""
    return complete_integer_values(fields, field_name)


def complete_centuries(fields: Iterable[OutputField]) -> list[OutputField]:
    """Fill gaps between collected centuries, never producing century 0."""
    return complete_integer_values(fields, CENTURY, skip_values=(0,))
