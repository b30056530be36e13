"""
Diversification analysis - weights classification metadata by invested capital.
Does not use price data: weights come from scheduled contributions in the window.

Outputs:
- Asset allocation and category distribution
- Sector and market-cap exposure from holding templates
- Fund weights and concentration risk findings
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from analysis.calculations.cashflows import scheduled_invested
from analysis.calculations.concentration import (
    RiskThresholds,
    evaluate_concentration_risks,
    fund_count_warning,
)
from analysis.calculations.time_keys import AnalysisWindow
from analysis.guardrails import (
    InputShapeError,
    ProgrammingInvariantError,
    validate_fund_positions,
)
from analysis.models import (
    MARKET_CAP_BUCKETS,
    AssetType,
    ClassificationRecord,
    DiversificationResult,
    HoldingTemplate,
    coerce_fund_positions,
)


logger = logging.getLogger(__name__)

UNCLASSIFIED_CATEGORY = 'Unclassified'


def _add(allocation: Dict[str, float], key: str, value: float) -> None:
    allocation[key] = allocation.get(key, 0.0) + value


def _to_percentages(allocation: Mapping[str, float]) -> Dict[str, float]:
    """Raw weights (0-1) to percentages rounded to 2 decimals."""
    return {key: round(value * 100, 2) for key, value in allocation.items()}


def coerce_templates(templates_by_key: Optional[Mapping[str, Any]]) -> Tuple[Dict[str, HoldingTemplate], List[str]]:
    """
    Accept HoldingTemplate objects or mappings keyed by template key.

    Returns:
        Tuple of (templates keyed by upper-case key, warnings for skipped entries)
    """
    templates: Dict[str, HoldingTemplate] = {}
    warnings = []

    for key, value in (templates_by_key or {}).items():
        try:
            template = value if isinstance(value, HoldingTemplate) else HoldingTemplate.from_dict(value, key)
        except (InputShapeError, TypeError, ValueError, AttributeError) as e:
            warnings.append(f"Invalid holding template {key}: {e}")
            continue
        templates[str(key).strip().upper()] = template

    return templates, warnings


def resolve_template(
    record: ClassificationRecord,
    templates: Mapping[str, HoldingTemplate]
) -> Optional[HoldingTemplate]:
    """
    Find the holding template for a classification record.

    Lookup order: explicit template key, a template keyed by the category,
    then a template describing the same category.
    """
    if record.holding_template_key and record.holding_template_key in templates:
        return templates[record.holding_template_key]

    by_category_key = record.category.strip().upper().replace(' ', '_')
    if by_category_key in templates:
        return templates[by_category_key]

    for template in templates.values():
        if template.category and template.category.strip().lower() == record.category.lower():
            return template

    return None


def resolve_exposures(
    record: ClassificationRecord,
    templates: Mapping[str, HoldingTemplate]
) -> Tuple[Dict[str, float], Dict[str, float]]:
    """
    Sector and market-cap exposure for a fund.

    Each half is resolved on its own: the record's data wins, and a missing
    half falls back to the matching template.
    """
    if record.sector_exposure and record.market_cap_exposure:
        return record.sector_exposure, record.market_cap_exposure

    template = resolve_template(record, templates)
    if template is None:
        return record.sector_exposure, record.market_cap_exposure

    return (
        record.sector_exposure or template.sector_exposure,
        record.market_cap_exposure or template.market_cap_exposure,
    )


def _resolve_classification(value: Any, fund_name: str) -> ClassificationRecord:
    if isinstance(value, ClassificationRecord):
        return value
    if not isinstance(value, Mapping):
        raise InputShapeError(f"expected a mapping, got {type(value).__name__}")
    return ClassificationRecord.from_dict({'fund_name': fund_name, **value})


def analyze_diversification(
    funds: List[Any],
    classification_by_fund: Mapping[str, Any],
    templates_by_key: Mapping[str, Any],
    window: AnalysisWindow,
    thresholds: Optional[RiskThresholds] = None
) -> DiversificationResult:
    """
    Analyze portfolio diversification.

    Each fund is weighted by its invested capital within the window. Funds
    without classification fall into asset "Other" and category
    "Unclassified" so the allocation still totals 100%, but add nothing to
    sector or market-cap exposure.

    Asset, category and sector rules read the rounded distributions the
    result reports. Single-fund dominance reads each position's own
    unrounded share, so duplicate positions in one fund are assessed
    separately even though fund_weights sums them by name.

    Args:
        funds: FundPosition objects or equivalent mappings
        classification_by_fund: Fund name -> ClassificationRecord (or mapping)
        templates_by_key: Template key -> HoldingTemplate (or mapping)
        window: Analysis window used to clamp contribution schedules
        thresholds: Concentration thresholds (defaults when None)

    Returns:
        DiversificationResult with percentages rounded to 2 decimals
    """
    if not isinstance(window, AnalysisWindow):
        raise ProgrammingInvariantError("window must be an AnalysisWindow")

    positions = coerce_fund_positions(funds)
    validate_fund_positions(positions)
    classification_by_fund = classification_by_fund or {}
    templates, template_warnings = coerce_templates(templates_by_key)

    result = DiversificationResult(fund_count=len(positions))
    result.warnings.extend(template_warnings)

    invested = [(fund, scheduled_invested(fund, window)) for fund in positions]
    total_invested = sum(amount for _, amount in invested)
    result.total_invested = round(total_invested, 2)

    count_warning = fund_count_warning(result.fund_count, thresholds)

    if total_invested <= 0:
        result.warnings.append("No investments found in portfolio")
        if count_warning:
            result.warnings.append(count_warning)
        return result

    asset_weights: Dict[str, float] = {}
    category_weights: Dict[str, float] = {}
    sector_weights: Dict[str, float] = {}
    market_cap_weights = {bucket: 0.0 for bucket in MARKET_CAP_BUCKETS}
    fund_weights: Dict[str, float] = {}

    for fund, amount in invested:
        weight = amount / total_invested
        _add(fund_weights, fund.name, weight)

        if weight == 0:
            continue

        raw_record = classification_by_fund.get(fund.name)
        record = None
        if raw_record is not None:
            try:
                record = _resolve_classification(raw_record, fund.name)
            except (InputShapeError, TypeError, ValueError, AttributeError) as e:
                result.warnings.append(f"Invalid classification data for fund {fund.name}: {e}")

        if record is None:
            if raw_record is None:
                result.warnings.append(f"No classification data for fund: {fund.name}")
            _add(asset_weights, AssetType.OTHER.value, weight)
            _add(category_weights, UNCLASSIFIED_CATEGORY, weight)
            continue

        _add(asset_weights, record.asset_type, weight)
        _add(category_weights, record.category, weight)

        sector_exposure, market_cap_exposure = resolve_exposures(record, templates)
        if not sector_exposure and not market_cap_exposure:
            logger.debug("No holding template for %s (%s)", fund.name, record.category)

        for sector, percent in sector_exposure.items():
            _add(sector_weights, sector, weight * percent / 100)

        for bucket in MARKET_CAP_BUCKETS:
            market_cap_weights[bucket] += weight * market_cap_exposure.get(bucket, 0.0) / 100

    result.asset_allocation = _to_percentages(asset_weights)
    result.category_distribution = _to_percentages(category_weights)
    result.sector_exposure = _to_percentages(sector_weights)
    result.market_cap_exposure = _to_percentages(market_cap_weights)
    result.fund_weights = _to_percentages(fund_weights)

    # Dominance is judged per position on its unrounded share
    position_percents = [
        (fund.name, amount * 100 / total_invested) for fund, amount in invested if amount > 0
    ]

    result.concentration_risks = evaluate_concentration_risks(
        result.asset_allocation,
        result.category_distribution,
        result.sector_exposure,
        position_percents,
        thresholds
    )

    if count_warning:
        result.warnings.append(count_warning)

    return result
