"""
Price series normalization utilities.
Pure functions that turn a sparse month->price map into a dense window.

Input format:
    {"2024-01": 145.23, "2024-03": 148.50, ...}
"""

import logging
import math
from typing import Any, Dict, Mapping, Optional, Tuple

import pandas as pd

from analysis.calculations.time_keys import TimeKeyError, month_range, normalize_key


logger = logging.getLogger(__name__)

FILL_METHODS = ('carry', 'linear')


class PriceSeriesError(Exception):
    """Raised when a price series cannot be normalized or filled."""
    pass


def _clean_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def normalize_price_series(raw: Optional[Mapping[Any, Any]]) -> Dict[str, float]:
    """
    Normalize a raw price map.

    - Keys are coerced to "YYYY-MM" (dates, Timestamps, "YYYY-M" accepted)
    - Non-positive, non-numeric and NaN prices are treated as absent
    - Entries are returned in chronological order

    Args:
        raw: Mapping of month reference to price, or a pandas Series

    Returns:
        Sorted dictionary of month key to positive price

    Raises:
        PriceSeriesError: If raw is not a mapping
    """
    if raw is None:
        return {}

    if isinstance(raw, pd.Series):
        raw = raw.to_dict()

    if not isinstance(raw, Mapping):
        raise PriceSeriesError(f"Price data must be a mapping, got {type(raw).__name__}")

    normalized: Dict[str, float] = {}
    dropped = 0

    for key, value in raw.items():
        try:
            month = normalize_key(key)
        except TimeKeyError:
            dropped += 1
            continue

        price = _clean_price(value)
        if price is None:
            dropped += 1
            continue

        normalized[month] = price

    if dropped:
        logger.debug("Dropped %d unusable price entries", dropped)

    return {key: normalized[key] for key in sorted(normalized)}


def fill_price_series(
    raw: Optional[Mapping[Any, Any]],
    start_key: str,
    end_key: str,
    method: str = 'carry'
) -> Dict[str, float]:
    """
    Fill every month in [start_key, end_key] with a price.

    Strategy ("carry"):
    - Observed months keep their price
    - Gaps take the nearest earlier known price (forward fill), including
      known prices from before the window
    - Months before the first known price take the nearest later one

    Strategy ("linear"):
    - Interior gaps are linearly interpolated between neighbouring prices
    - Edges are carried as above

    Args:
        raw: Sparse month->price mapping
        start_key: Window start (inclusive)
        end_key: Window end (inclusive)
        method: "carry" or "linear"

    Returns:
        Dense month->price dictionary, or {} when no usable price exists

    Example:
        fill_price_series({"2024-01": 100, "2024-03": 110}, "2024-01", "2024-04")
        -> {"2024-01": 100, "2024-02": 100, "2024-03": 110, "2024-04": 110}
    """
    if method not in FILL_METHODS:
        raise PriceSeriesError(f"Unknown fill method: {method}. Expected one of {FILL_METHODS}")

    window_months = month_range(start_key, end_key)
    normalized = normalize_price_series(raw)

    if not normalized:
        return {}

    known_keys = list(normalized)
    full_keys = month_range(min(known_keys[0], start_key), max(known_keys[-1], end_key))

    series = pd.Series(normalized, dtype=float).reindex(full_keys)

    if method == 'linear':
        series = series.interpolate(method='linear', limit_area='inside')

    series = series.ffill().bfill()

    return {month: float(series[month]) for month in window_months}


def price_coverage(
    raw: Optional[Mapping[Any, Any]],
    start_key: str,
    end_key: str
) -> Dict[str, Any]:
    """
    Measure how much of a window is backed by observed prices.

    Returns:
        Dictionary with is_valid, missing months and coverage percent
    """
    normalized = normalize_price_series(raw)
    required = month_range(start_key, end_key)
    missing = [month for month in required if month not in normalized]
    coverage = (len(required) - len(missing)) / len(required) * 100

    return {
        'is_valid': len(missing) == 0,
        'missing': missing,
        'coverage': round(coverage, 2)
    }


def latest_price(raw: Optional[Mapping[Any, Any]]) -> Tuple[str, float]:
    """Most recent (month, price) pair."""
    normalized = normalize_price_series(raw)
    if not normalized:
        raise PriceSeriesError("Price data is empty")
    key = next(reversed(normalized))
    return key, normalized[key]


def earliest_price(raw: Optional[Mapping[Any, Any]]) -> Tuple[str, float]:
    """Oldest (month, price) pair."""
    normalized = normalize_price_series(raw)
    if not normalized:
        raise PriceSeriesError("Price data is empty")
    key = next(iter(normalized))
    return key, normalized[key]
