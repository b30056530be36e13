"""
Performance analysis - folds per-fund cashflows into portfolio metrics.
Pure function of its inputs: funds, price series and an analysis window.

Outputs:
- Total invested, current value, absolute return
- CAGR from the earliest cashflow to the window close
- Internal rate of return per fund and for the portfolio
- Per-fund breakdown with contribution detail
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from analysis.calculations.cashflows import expand_fund
from analysis.calculations.price_series import (
    FILL_METHODS,
    PriceSeriesError,
    fill_price_series,
    price_coverage,
)
from analysis.calculations.time_keys import AnalysisWindow, year_fraction
from analysis.calculations.xirr import RateSolverError, xirr
from analysis.guardrails import ProgrammingInvariantError, validate_fund_positions
from analysis.models import (
    Cashflow,
    FundPerformanceResult,
    FundPosition,
    PortfolioPerformanceSummary,
    coerce_fund_positions,
)


logger = logging.getLogger(__name__)

SOLVER_SETTING_KEYS = {'guess', 'tolerance', 'max_iterations'}


def calculate_cagr(total_invested: float, current_value: float, years: float) -> Optional[float]:
    """
    Compound annual growth rate as a decimal.

    Formula: (current_value / total_invested) ** (1 / years) - 1

    Returns:
        CAGR, -1.0 for a complete loss, or None when invested or years is not positive
    """
    if total_invested <= 0 or years <= 0:
        return None

    if current_value <= 0:
        return -1.0

    return (current_value / total_invested) ** (1 / years) - 1


def _solve_rate(
    cashflows: Sequence[Cashflow],
    terminal_value: float,
    window: AnalysisWindow,
    solver_settings: Mapping[str, Any],
    label: str
) -> Tuple[Optional[float], Optional[str]]:
    """Outflows for every contribution plus one inflow at the window close."""
    flows = [(cf.date, -abs(cf.amount)) for cf in cashflows]
    flows.append((window.closing_date, terminal_value))

    try:
        return xirr(flows, **solver_settings), None
    except RateSolverError as e:
        logger.warning("IRR failed for %s: %s", label, e)
        return None, f"IRR could not be computed for {label}: {e}"


def calculate_fund_performance(
    fund: FundPosition,
    prices: Mapping[str, float],
    window: AnalysisWindow,
    solver_settings: Optional[Mapping[str, Any]] = None
) -> Tuple[FundPerformanceResult, List[str]]:
    """
    Performance of a single fund against its dense price series.

    Args:
        fund: Fund position
        prices: Dense month->price map covering the window
        window: Analysis window
        solver_settings: Keyword overrides for the rate solver

    Returns:
        Tuple of (FundPerformanceResult with unrounded totals, warnings)
    """
    solver_settings = solver_settings or {}
    closing_price = prices[window.end_key]

    expansion = expand_fund(fund, prices, window)
    warnings = list(expansion.warnings)

    current_value = expansion.units * closing_price
    absolute_return = current_value - expansion.invested

    absolute_return_percent = None
    internal_rate = None

    if expansion.invested > 0:
        absolute_return_percent = absolute_return / expansion.invested * 100
        internal_rate, warning = _solve_rate(
            expansion.cashflows, current_value, window, solver_settings, fund.name
        )
        if warning:
            warnings.append(warning)
    else:
        warnings.append(f"{fund.name}: no priced contributions within the analysis window")

    result = FundPerformanceResult(
        fund_name=fund.name,
        declared_type=fund.declared_type,
        total_invested=expansion.invested,
        current_value=current_value,
        total_units=expansion.units,
        closing_price=closing_price,
        absolute_return=absolute_return,
        absolute_return_percent=absolute_return_percent,
        internal_rate_of_return=internal_rate,
        cashflows=expansion.cashflows,
        recurring_details=expansion.recurring_details,
        one_time_details=expansion.one_time_details,
    )
    return result, warnings


def _round_or_none(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round(value, digits)


def _round_fund_result(result: FundPerformanceResult) -> None:
    result.total_invested = round(result.total_invested, 2)
    result.current_value = round(result.current_value, 2)
    result.total_units = round(result.total_units, 4)
    result.closing_price = round(result.closing_price, 4)
    result.absolute_return = round(result.absolute_return, 2)
    result.absolute_return_percent = _round_or_none(result.absolute_return_percent, 2)
    result.internal_rate_of_return = _round_or_none(result.internal_rate_of_return, 6)


def _check_solver_settings(solver_settings: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    settings = dict(solver_settings or {})
    unknown = set(settings) - SOLVER_SETTING_KEYS
    if unknown:
        raise ProgrammingInvariantError(f"Unknown solver settings: {sorted(unknown)}")
    return settings


def analyze_performance(
    funds: List[Any],
    price_series_by_fund: Mapping[str, Mapping[Any, Any]],
    window: AnalysisWindow,
    fill_method: str = 'carry',
    solver_settings: Optional[Mapping[str, Any]] = None
) -> PortfolioPerformanceSummary:
    """
    Analyze portfolio performance over an analysis window.

    Funds without any price data are reported in warnings and excluded from
    totals. Rate solver failures degrade to a None rate plus a warning.

    Args:
        funds: FundPosition objects or equivalent mappings
        price_series_by_fund: Fund name -> sparse month->price map (read-only)
        window: Analysis window; its end month is the valuation date
        fill_method: Gap-fill strategy for prices ("carry" or "linear")
        solver_settings: Optional guess/tolerance/max_iterations overrides

    Returns:
        PortfolioPerformanceSummary

    Raises:
        ProgrammingInvariantError: For invalid amounts, months, fund names,
            window or solver settings
    """
    if not isinstance(window, AnalysisWindow):
        raise ProgrammingInvariantError("window must be an AnalysisWindow")

    positions = coerce_fund_positions(funds)
    validate_fund_positions(positions)
    settings = _check_solver_settings(solver_settings)
    if fill_method not in FILL_METHODS:
        raise ProgrammingInvariantError(f"Unknown fill method: {fill_method}")
    price_series_by_fund = price_series_by_fund or {}

    summary = PortfolioPerformanceSummary(window_start=window.start_key, window_end=window.end_key)
    all_cashflows: List[Cashflow] = []
    months_in_window = len(window.months())

    for fund in positions:
        raw = price_series_by_fund.get(fund.name)

        try:
            prices = fill_price_series(raw, window.start_key, window.end_key, fill_method)
        except PriceSeriesError as e:
            summary.warnings.append(f"Unusable price data for fund: {fund.name} ({e})")
            continue

        if not prices:
            logger.info("No price data for fund %s", fund.name)
            summary.warnings.append(f"No price data for fund: {fund.name}")
            continue

        missing = price_coverage(raw, window.start_key, window.end_key)['missing']
        if missing:
            summary.warnings.append(
                f"{fund.name}: {len(missing)} of {months_in_window} month(s) had no "
                f"observed price and were filled"
            )

        result, warnings = calculate_fund_performance(fund, prices, window, settings)
        summary.warnings.extend(warnings)
        summary.fund_results.append(result)

        summary.total_invested += result.total_invested
        summary.current_value += result.current_value
        all_cashflows.extend(result.cashflows)

    if summary.total_invested > 0:
        summary.absolute_return = summary.current_value - summary.total_invested
        summary.absolute_return_percent = summary.absolute_return / summary.total_invested * 100

        earliest = min(cf.date for cf in all_cashflows)
        years_elapsed = year_fraction(earliest, window.closing_date)
        summary.cagr = calculate_cagr(summary.total_invested, summary.current_value, years_elapsed)

        summary.internal_rate_of_return, warning = _solve_rate(
            all_cashflows, summary.current_value, window, settings, 'portfolio'
        )
        if warning:
            summary.warnings.append(warning)

    summary.cashflows = sorted(all_cashflows, key=lambda cf: cf.month_key)

    for result in summary.fund_results:
        _round_fund_result(result)

    summary.total_invested = round(summary.total_invested, 2)
    summary.current_value = round(summary.current_value, 2)
    summary.absolute_return = round(summary.absolute_return, 2)
    summary.absolute_return_percent = _round_or_none(summary.absolute_return_percent, 2)
    summary.cagr = _round_or_none(summary.cagr, 6)
    summary.internal_rate_of_return = _round_or_none(summary.internal_rate_of_return, 6)

    return summary
