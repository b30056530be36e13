"""
Concentration risk evaluation.
Deterministic threshold rules over percentage distributions and fund weights.

Default thresholds (percent of invested weight, upper edges exclusive):
- Asset type:  > 80 high, (60, 80] medium
- Category:    > 70 high, (50, 70] medium
- Sector:      > 40 high, (30, 40] medium
- Single fund: > 50 high, (40, 50] medium
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from analysis.models import RiskFinding, RiskKind, Severity


class ConcentrationError(Exception):
    """Raised when concentration thresholds are invalid."""
    pass


@dataclass(frozen=True)
class RiskThresholds:
    asset_medium: float = 60.0
    asset_high: float = 80.0
    category_medium: float = 50.0
    category_high: float = 70.0
    sector_medium: float = 30.0
    sector_high: float = 40.0
    fund_medium: float = 40.0
    fund_high: float = 50.0
    min_fund_count: int = 3

    def __post_init__(self):
        for group in ('asset', 'category', 'sector', 'fund'):
            medium = getattr(self, f'{group}_medium')
            high = getattr(self, f'{group}_high')
            if not 0 <= medium < high <= 100:
                raise ConcentrationError(
                    f"{group} thresholds must satisfy 0 <= medium < high <= 100, "
                    f"got medium={medium}, high={high}"
                )
        if self.min_fund_count < 1:
            raise ConcentrationError("min_fund_count must be at least 1")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'RiskThresholds':
        data = dict(data or {})
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConcentrationError(f"Unknown risk threshold keys: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify_share(percent: float, medium: float, high: float) -> Optional[Severity]:
    """
    Severity of a share against a (medium, high) threshold pair.

    Both comparisons are strict: a share exactly at a threshold stays in
    the lower band.
    """
    if percent > high:
        return Severity.HIGH
    if percent > medium:
        return Severity.MEDIUM
    return None


def evaluate_distribution(
    distribution: Union[Mapping[str, float], Iterable[Tuple[str, float]]],
    kind: RiskKind,
    medium: float,
    high: float
) -> List[RiskFinding]:
    """
    Findings for every entry of a percent distribution above medium.

    Accepts a mapping or (subject, percent) pairs, so one subject may be
    assessed more than once. Reported percents are rounded to 2 decimals.
    """
    items = distribution.items() if isinstance(distribution, Mapping) else distribution

    findings = []
    for subject, percent in items:
        severity = classify_share(percent, medium, high)
        if severity is not None:
            findings.append(RiskFinding(kind, subject, round(percent, 2), severity))
    return findings


def evaluate_concentration_risks(
    asset_allocation: Mapping[str, float],
    category_distribution: Mapping[str, float],
    sector_exposure: Mapping[str, float],
    fund_weights: Union[Mapping[str, float], Iterable[Tuple[str, float]]],
    thresholds: Optional[RiskThresholds] = None
) -> List[RiskFinding]:
    """
    Apply every concentration rule independently.

    Args:
        asset_allocation: Asset type -> percent
        category_distribution: Category -> percent
        sector_exposure: Sector -> percent
        fund_weights: Fund name -> percent of portfolio invested, or
            (fund name, percent) pairs, one per position
        thresholds: Threshold overrides (defaults apply when None)

    Returns:
        Findings ordered asset, category, sector, single fund
    """
    t = thresholds or RiskThresholds()

    findings = []
    findings += evaluate_distribution(
        asset_allocation, RiskKind.ASSET_CONCENTRATION, t.asset_medium, t.asset_high
    )
    findings += evaluate_distribution(
        category_distribution, RiskKind.CATEGORY_CONCENTRATION, t.category_medium, t.category_high
    )
    findings += evaluate_distribution(
        sector_exposure, RiskKind.SECTOR_CONCENTRATION, t.sector_medium, t.sector_high
    )
    findings += evaluate_distribution(
        fund_weights, RiskKind.SINGLE_FUND_DOMINANCE, t.fund_medium, t.fund_high
    )
    return findings


def fund_count_warning(fund_count: int, thresholds: Optional[RiskThresholds] = None) -> Optional[str]:
    """Under-diversification is a warning, never a finding."""
    t = thresholds or RiskThresholds()
    if fund_count < t.min_fund_count:
        return (
            f"Portfolio has fewer than {t.min_fund_count} funds - consider diversifying"
        )
    return None
