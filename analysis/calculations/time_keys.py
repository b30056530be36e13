"""
Month key utilities.
Pure functions for "YYYY-MM" keys, inclusive month ranges and analysis windows.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Tuple, Union

import pandas as pd

from analysis.guardrails import ProgrammingInvariantError


MIN_YEAR = 1900
MAX_YEAR = 2100

DAYS_PER_YEAR = 365.25

_KEY_PATTERN = re.compile(r'^(\d{4})-(\d{1,2})(?:-\d{1,2})?$')


class TimeKeyError(ValueError):
    """Raised when a month key or window cannot be built."""
    pass


def month_key(year: int, month: int) -> str:
    """
    Convert year and month to a sortable "YYYY-MM" key.

    Args:
        year: Calendar year (1900-2100)
        month: Month number (1-12)

    Returns:
        Key in "YYYY-MM" format

    Raises:
        TimeKeyError: If year or month is out of range
    """
    if isinstance(year, bool) or not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
        raise TimeKeyError(f"Invalid year: {year}")
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise TimeKeyError(f"Invalid month: {month}. Must be 1-12")

    return f"{year:04d}-{month:02d}"


def parse_key(key: str) -> Tuple[int, int]:
    """Split a "YYYY-MM" key into (year, month)."""
    if not isinstance(key, str) or not re.fullmatch(r'\d{4}-\d{2}', key):
        raise TimeKeyError(f'Invalid key format: {key}. Expected "YYYY-MM"')

    year, month = int(key[:4]), int(key[5:7])
    month_key(year, month)
    return year, month


def normalize_key(value: Union[str, date, datetime, pd.Timestamp, pd.Period]) -> str:
    """
    Normalize a loosely formatted month reference to a "YYYY-MM" key.

    Accepts "YYYY-MM", "YYYY-M", "YYYY-MM-DD" strings as well as date,
    datetime, pandas Timestamp and monthly pandas Period objects.

    Raises:
        TimeKeyError: If the value cannot be interpreted as a month
    """
    if isinstance(value, pd.Period):
        return month_key(value.year, value.month)

    # datetime and Timestamp are date subclasses
    if isinstance(value, date):
        return month_key(value.year, value.month)

    if isinstance(value, str):
        match = _KEY_PATTERN.match(value.strip())
        if match:
            return month_key(int(match.group(1)), int(match.group(2)))

    raise TimeKeyError(f"Cannot interpret month key: {value!r}")


def key_to_date(key: str) -> date:
    """Return the first day of the month a key refers to."""
    year, month = parse_key(key)
    return date(year, month, 1)


def date_to_key(value: date) -> str:
    """Return the month key a date falls in."""
    if not isinstance(value, date):
        raise TimeKeyError(f"Invalid date provided: {value!r}")
    return month_key(value.year, value.month)


def _month_index(key: str) -> int:
    year, month = parse_key(key)
    return year * 12 + (month - 1)


def _key_from_index(index: int) -> str:
    return month_key(index // 12, index % 12 + 1)


def months_between(start_key: str, end_key: str) -> int:
    """
    Number of months from start_key to end_key.

    Example:
        months_between("2024-01", "2024-12") == 11
        months_between("2024-06", "2024-01") == -5
    """
    return _month_index(end_key) - _month_index(start_key)


def add_months(key: str, months: int) -> str:
    """Shift a key by a (possibly negative) number of months."""
    return _key_from_index(_month_index(key) + months)


def month_range(start_key: str, end_key: str) -> List[str]:
    """
    Generate every key from start_key to end_key, both inclusive.

    Raises:
        TimeKeyError: If end_key is before start_key
    """
    span = months_between(start_key, end_key)
    if span < 0:
        raise TimeKeyError("Start month must be before or equal to end month")

    first = _month_index(start_key)
    return [_key_from_index(first + i) for i in range(span + 1)]


def last_n_months(end_key: str, n: int) -> List[str]:
    """The n keys ending at end_key, oldest first."""
    if n < 1:
        raise TimeKeyError("n must be at least 1")
    return month_range(add_months(end_key, -(n - 1)), end_key)


def compare_keys(key_a: str, key_b: str) -> int:
    """Return -1, 0 or 1 depending on the order of two keys."""
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


def is_key_in_range(key: str, start_key: str, end_key: str) -> bool:
    """Check whether key lies in [start_key, end_key]."""
    return start_key <= key <= end_key


def year_fraction(start: date, end: date) -> float:
    """Exact fractional years between two dates using a 365.25-day year."""
    return (end - start).days / DAYS_PER_YEAR


@dataclass(frozen=True)
class AnalysisWindow:
    """Inclusive month window over which prices exist and analysis runs."""
    start_key: str
    end_key: str

    def __post_init__(self):
        try:
            parse_key(self.start_key)
            parse_key(self.end_key)
        except TimeKeyError as e:
            raise ProgrammingInvariantError(f"Invalid analysis window: {e}") from e

        if self.end_key < self.start_key:
            raise ProgrammingInvariantError(
                f"Analysis window ends ({self.end_key}) before it starts ({self.start_key})"
            )

    def months(self) -> List[str]:
        return month_range(self.start_key, self.end_key)

    def contains(self, key: str) -> bool:
        return is_key_in_range(key, self.start_key, self.end_key)

    @property
    def start_date(self) -> date:
        return key_to_date(self.start_key)

    @property
    def closing_date(self) -> date:
        """First day of the closing month, the date every valuation is struck at."""
        return key_to_date(self.end_key)

    def to_dict(self) -> dict:
        return {'start': self.start_key, 'end': self.end_key}


def analysis_window(start, end) -> AnalysisWindow:
    """
    Build an AnalysisWindow from loosely formatted month references.

    Args:
        start: Window start (key, date, Timestamp or Period)
        end: Window end (key, date, Timestamp or Period)

    Returns:
        Validated AnalysisWindow
    """
    try:
        start_key = normalize_key(start)
        end_key = normalize_key(end)
    except TimeKeyError as e:
        raise ProgrammingInvariantError(f"Invalid analysis window: {e}") from e

    return AnalysisWindow(start_key, end_key)
