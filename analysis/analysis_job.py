"""
Orchestrated analysis job - gateway to analysis JSON.
Fetches reference data through the gateway, calls the pure aggregators,
and assembles a JSON-ready result.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from analysis.calculations.time_keys import AnalysisWindow
from analysis.config import (
    merge_engine_config,
    solver_settings_from_config,
    thresholds_from_config,
    window_from_config,
)
from analysis.diversification import analyze_diversification
from analysis.guardrails import validate_portfolio_for_analysis
from analysis.models import coerce_fund_positions
from analysis.performance import analyze_performance
from reports.risk_messages import describe_risks
from storage.gateway import PortfolioDataGateway, PortfolioRecordProvider


logger = logging.getLogger(__name__)

ANALYSIS_VERSION = '1.0'


class AnalysisJobError(Exception):
    """Raised when a portfolio cannot be analysed."""
    pass


def _unique_names(funds) -> List[str]:
    seen = []
    for fund in funds:
        if fund.name not in seen:
            seen.append(fund.name)
    return seen


def run_portfolio_analysis(
    gateway: PortfolioDataGateway,
    funds: List[Any],
    window: Optional[AnalysisWindow] = None,
    config: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Run performance and diversification analysis for a list of funds.

    Args:
        gateway: Source of price series, classifications and templates
        funds: FundPosition objects or equivalent mappings
        window: Analysis window (defaults to the configured window)
        config: Engine configuration overrides merged over the defaults

    Returns:
        Dictionary with window, performance, diversification, risk_messages,
        generated_at and analysis_version

    Raises:
        AnalysisJobError: If the portfolio has no funds or a fund has no
            contributions
        EngineConfigError: If the configuration is invalid
        ProgrammingInvariantError: For invalid amounts, months or fund names
    """
    config = merge_engine_config(config)
    if window is None:
        window = window_from_config(config)

    positions = coerce_fund_positions(funds)
    validation = validate_portfolio_for_analysis(positions)
    if not validation['is_valid']:
        raise AnalysisJobError("; ".join(validation['errors']))

    names = _unique_names(positions)
    price_series = gateway.get_price_series(names)
    classifications = gateway.get_classifications(names)
    templates = gateway.get_holding_templates()

    logger.info(
        "Analysing %d fund(s) over %s..%s (%d priced, %d classified)",
        len(positions), window.start_key, window.end_key, len(price_series), len(classifications)
    )

    performance = analyze_performance(
        positions,
        price_series,
        window,
        fill_method=config['price_fill_method'],
        solver_settings=solver_settings_from_config(config)
    )
    diversification = analyze_diversification(
        positions,
        classifications,
        templates,
        window,
        thresholds_from_config(config)
    )

    return {
        'window': window.to_dict(),
        'performance': performance.to_dict(),
        'diversification': diversification.to_dict(),
        'risk_messages': describe_risks(diversification.concentration_risks),
        'generated_at': datetime.now().isoformat(timespec='seconds'),
        'analysis_version': ANALYSIS_VERSION,
    }


def analyze_portfolio(
    gateway: PortfolioDataGateway,
    portfolio_id: str,
    owner_id: Optional[str] = None,
    window: Optional[AnalysisWindow] = None,
    config: Optional[Mapping[str, Any]] = None,
    records: Optional[PortfolioRecordProvider] = None
) -> Dict[str, Any]:
    """
    Analyse a stored portfolio after checking ownership.

    The gateway doubles as the record provider unless one is given.

    Raises:
        PortfolioNotFoundError: If the portfolio is absent or owned by someone else
    """
    records = records if records is not None else gateway
    funds = records.get_funds(portfolio_id, owner_id)
    result = run_portfolio_analysis(gateway, funds, window, config)
    result['portfolio_id'] = portfolio_id
    return result
