"""
Cashflow expansion utilities.
Pure functions that turn contribution schedules into dated, priced cashflows.

Assumptions:
- Every contribution is made on the 1st of its month
- Units = amount / price of that month
- Schedules are clamped to the analysis window: earlier starts move to the
  window start, later ends move to the window end
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from analysis.calculations.time_keys import AnalysisWindow, month_range
from analysis.models import (
    Cashflow,
    CashflowKind,
    FundPosition,
    OneTimeContribution,
    RecurringContribution,
)


logger = logging.getLogger(__name__)


@dataclass
class ContributionExpansion:
    """Cashflows and units produced by one or more contributions."""
    invested: float = 0.0
    units: float = 0.0
    cashflows: List[Cashflow] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


@dataclass
class FundExpansion:
    """All contributions of one fund expanded against its price series."""
    invested: float = 0.0
    units: float = 0.0
    cashflows: List[Cashflow] = field(default_factory=list)
    recurring_details: List[Dict[str, Any]] = field(default_factory=list)
    one_time_details: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def effective_recurring_range(
    entry: RecurringContribution,
    window: AnalysisWindow
) -> Optional[Tuple[str, str]]:
    """
    Clamp a recurring schedule to the window.

    Returns:
        (effective_start, effective_end) or None when the entry contributes
        nothing: incomplete dates, start after window end, or end before start
    """
    start_key = entry.start_key
    if start_key is None:
        return None

    if entry.is_ongoing:
        declared_end = window.end_key
    else:
        declared_end = entry.end_key
        if declared_end is None:
            return None

    if start_key > window.end_key:
        return None

    effective_start = max(start_key, window.start_key)
    effective_end = min(declared_end, window.end_key)

    if effective_start > effective_end:
        return None

    return effective_start, effective_end


def scheduled_months(entry: RecurringContribution, window: AnalysisWindow) -> List[str]:
    """Months a recurring contribution is scheduled for inside the window."""
    bounds = effective_recurring_range(entry, window)
    if bounds is None:
        return []
    return month_range(*bounds)


def scheduled_one_time_month(entry: OneTimeContribution, window: AnalysisWindow) -> Optional[str]:
    """Month a one-time contribution counts in, or None if excluded."""
    key = entry.key
    if key is None or key > window.end_key:
        return None
    return max(key, window.start_key)


def scheduled_invested(fund: FundPosition, window: AnalysisWindow) -> float:
    """
    Total scheduled contributions of a fund within the window.
    No price lookup: used for weighting, where prices play no part.
    """
    total = 0.0
    for entry in fund.recurring:
        total += entry.amount * len(scheduled_months(entry, window))
    for entry in fund.one_time:
        if scheduled_one_time_month(entry, window) is not None:
            total += entry.amount
    return total


def _resolve_price(prices: Mapping[str, float], month: str) -> Optional[float]:
    price = prices.get(month)
    if price is None or price <= 0:
        return None
    return price


def expand_recurring(
    entry: RecurringContribution,
    prices: Mapping[str, float],
    window: AnalysisWindow,
    fund_name: str
) -> ContributionExpansion:
    """
    Expand a recurring contribution into monthly cashflows.

    Each month with a positive price buys amount / price units. Months
    without a price are skipped: neither invested nor counted as units.

    Args:
        entry: Recurring contribution
        prices: Dense month->price map for the fund
        window: Analysis window
        fund_name: Fund the cashflows belong to

    Returns:
        ContributionExpansion with per-installment detail
    """
    result = ContributionExpansion()
    details = {
        'amount': entry.amount,
        'start_month': entry.start_key,
        'end_month': None if entry.is_ongoing else entry.end_key,
        'is_ongoing': entry.is_ongoing,
        'effective_start': None,
        'effective_end': None,
        'installment_count': 0,
        'skipped_months': [],
        'total_invested': 0.0,
        'units_acquired': 0.0,
        'installments': [],
    }
    result.details = details

    if entry.start_key is None or (not entry.is_ongoing and entry.end_key is None):
        result.warnings.append(
            f"{fund_name}: recurring contribution of {entry.amount:g} has an incomplete "
            f"schedule and was ignored"
        )
        return result

    bounds = effective_recurring_range(entry, window)
    if bounds is None:
        if entry.start_key > window.end_key:
            result.warnings.append(
                f"{fund_name}: recurring contribution starting {entry.start_key} begins "
                f"after the analysis window and was excluded"
            )
        else:
            logger.debug("%s: recurring contribution %s..%s lies outside the window",
                         fund_name, entry.start_key, entry.end_key)
        return result

    details['effective_start'], details['effective_end'] = bounds

    for month in month_range(*bounds):
        price = _resolve_price(prices, month)
        if price is None:
            details['skipped_months'].append(month)
            continue

        units = entry.amount / price
        result.invested += entry.amount
        result.units += units
        result.cashflows.append(Cashflow(month, entry.amount, fund_name, CashflowKind.RECURRING))
        details['installments'].append({
            'month': month,
            'amount': entry.amount,
            'price': round(price, 4),
            'units': round(units, 4)
        })

    if details['skipped_months']:
        result.warnings.append(
            f"{fund_name}: no price for {len(details['skipped_months'])} month(s) of a "
            f"recurring contribution; those installments were skipped"
        )

    details['installment_count'] = len(details['installments'])
    details['total_invested'] = round(result.invested, 2)
    details['units_acquired'] = round(result.units, 4)

    return result


def expand_one_time(
    entry: OneTimeContribution,
    prices: Mapping[str, float],
    window: AnalysisWindow,
    fund_name: str
) -> ContributionExpansion:
    """
    Expand a one-time contribution into at most one cashflow.

    Contributions dated before the window count at the window start;
    contributions dated after the window end are excluded.
    """
    result = ContributionExpansion()
    result.details = {
        'month': entry.key,
        'effective_month': None,
        'amount': entry.amount,
        'price': None,
        'units_acquired': 0.0,
    }

    if entry.key is None:
        result.warnings.append(
            f"{fund_name}: one-time contribution of {entry.amount:g} has no valid date and was ignored"
        )
        return result

    month = scheduled_one_time_month(entry, window)
    if month is None:
        result.warnings.append(
            f"{fund_name}: one-time contribution dated {entry.key} is after the analysis "
            f"window and was excluded"
        )
        return result

    result.details['effective_month'] = month

    price = _resolve_price(prices, month)
    if price is None:
        result.warnings.append(
            f"{fund_name}: no price for {month}; one-time contribution was skipped"
        )
        return result

    result.invested = entry.amount
    result.units = entry.amount / price
    result.cashflows.append(Cashflow(month, entry.amount, fund_name, CashflowKind.ONE_TIME))
    result.details['price'] = round(price, 4)
    result.details['units_acquired'] = round(result.units, 4)

    return result


def expand_fund(
    fund: FundPosition,
    prices: Mapping[str, float],
    window: AnalysisWindow
) -> FundExpansion:
    """Expand every contribution of a fund and fold the results."""
    expansion = FundExpansion()

    for entry in fund.recurring:
        part = expand_recurring(entry, prices, window, fund.name)
        expansion.invested += part.invested
        expansion.units += part.units
        expansion.cashflows.extend(part.cashflows)
        expansion.recurring_details.append(part.details)
        expansion.warnings.extend(part.warnings)

    for entry in fund.one_time:
        part = expand_one_time(entry, prices, window, fund.name)
        expansion.invested += part.invested
        expansion.units += part.units
        expansion.cashflows.extend(part.cashflows)
        expansion.one_time_details.append(part.details)
        expansion.warnings.extend(part.warnings)

    return expansion
