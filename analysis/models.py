"""
Data model for the portfolio analysis engine.

Inputs (fund positions, classification records, holding templates) are
read-only snapshots supplied by the caller; results are rebuilt on every
call. The from_dict constructors accept both stored-record field names
(assetName, sips, lumpsums, startYear, ...) and snake_case names.
"""

import numbers
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from analysis.calculations.time_keys import TimeKeyError, key_to_date, month_key
from analysis.guardrails import InputShapeError


class CashflowKind(str, Enum):
    """Origin of a cashflow."""
    RECURRING = 'recurring'
    ONE_TIME = 'onetime'


class AssetType(str, Enum):
    """Asset classes a fund can be classified under."""
    EQUITY = 'Equity'
    DEBT = 'Debt'
    HYBRID = 'Hybrid'
    GOLD = 'Gold'
    OTHER = 'Other'


CLASSIFIED_ASSET_TYPES = {a.value for a in AssetType if a is not AssetType.OTHER}


class RiskKind(str, Enum):
    """Concentration risk categories."""
    ASSET_CONCENTRATION = 'asset_concentration'
    CATEGORY_CONCENTRATION = 'category_concentration'
    SECTOR_CONCENTRATION = 'sector_concentration'
    SINGLE_FUND_DOMINANCE = 'single_fund_dominance'


class Severity(str, Enum):
    """How far a share sits past its concentration threshold."""
    MEDIUM = 'medium'
    HIGH = 'high'


MARKET_CAP_BUCKETS = ('Large', 'Mid', 'Small')

_MARKET_CAP_ALIASES = {
    'large': 'Large', 'largecap': 'Large', 'large_cap': 'Large', 'large cap': 'Large',
    'mid': 'Mid', 'midcap': 'Mid', 'mid_cap': 'Mid', 'mid cap': 'Mid',
    'small': 'Small', 'smallcap': 'Small', 'small_cap': 'Small', 'small cap': 'Small',
}


def _pick(data: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among names."""
    for name in names:
        if name in data:
            return data[name]
    return default


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise InputShapeError(f"{field_name} must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value)
    if isinstance(value, int):
        return value
    raise InputShapeError(f"{field_name} must be an integer, got {value!r}")


def _amount(value: Any) -> Any:
    # Numeric strings, Decimal and numpy scalars become float; anything else is left for boundary validation
    if isinstance(value, (numbers.Real, Decimal)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def normalize_market_cap(exposure: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """
    Map market-cap exposure keys onto the Large/Mid/Small buckets.

    Accepts LargeCap/MidCap/SmallCap, large_cap and similar spellings.
    Unknown buckets are ignored; missing buckets are absent from the result.
    """
    result: Dict[str, float] = {}
    for key, value in (exposure or {}).items():
        bucket = _MARKET_CAP_ALIASES.get(str(key).strip().lower())
        if bucket is None or value is None:
            continue
        result[bucket] = result.get(bucket, 0.0) + float(value)
    return result


@dataclass
class RecurringContribution:
    """A fixed monthly contribution, optionally open-ended."""
    amount: float
    start_year: Optional[int]
    start_month: Optional[int]
    is_ongoing: bool = False
    end_year: Optional[int] = None
    end_month: Optional[int] = None

    def __post_init__(self):
        self.amount = _amount(self.amount)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'RecurringContribution':
        return cls(
            amount=_amount(_pick(data, 'amount')),
            start_year=_optional_int(_pick(data, 'start_year', 'startYear'), 'start_year'),
            start_month=_optional_int(_pick(data, 'start_month', 'startMonth'), 'start_month'),
            is_ongoing=bool(_pick(data, 'is_ongoing', 'isOngoing', default=False)),
            end_year=_optional_int(_pick(data, 'end_year', 'endYear'), 'end_year'),
            end_month=_optional_int(_pick(data, 'end_month', 'endMonth'), 'end_month'),
        )

    @property
    def start_key(self) -> Optional[str]:
        """Declared first month, or None when the entry is incomplete."""
        if self.start_year is None or self.start_month is None:
            return None
        try:
            return month_key(self.start_year, self.start_month)
        except TimeKeyError:
            return None

    @property
    def end_key(self) -> Optional[str]:
        """Declared last month (ignoring is_ongoing), or None if absent."""
        if self.end_year is None or self.end_month is None:
            return None
        try:
            return month_key(self.end_year, self.end_month)
        except TimeKeyError:
            return None


@dataclass
class OneTimeContribution:
    """A single contribution in a given month."""
    amount: float
    year: Optional[int]
    month: Optional[int]

    def __post_init__(self):
        self.amount = _amount(self.amount)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'OneTimeContribution':
        return cls(
            amount=_amount(_pick(data, 'amount')),
            year=_optional_int(_pick(data, 'year'), 'year'),
            month=_optional_int(_pick(data, 'month'), 'month'),
        )

    @property
    def key(self) -> Optional[str]:
        if self.year is None or self.month is None:
            return None
        try:
            return month_key(self.year, self.month)
        except TimeKeyError:
            return None


@dataclass
class FundPosition:
    """A user's holding in one fund, expressed as contributions."""
    name: str
    declared_type: Optional[str] = None
    recurring: List[RecurringContribution] = field(default_factory=list)
    one_time: List[OneTimeContribution] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FundPosition':
        name = _pick(data, 'name', 'fund_name', 'fundName', 'assetName')
        recurring = _pick(data, 'recurring', 'sips', default=None) or []
        one_time = _pick(data, 'one_time', 'oneTime', 'lumpsums', default=None) or []

        if not isinstance(recurring, list) or not isinstance(one_time, list):
            raise InputShapeError(f"Contributions for fund {name!r} must be lists")

        return cls(
            name=name,
            declared_type=_pick(data, 'declared_type', 'declaredType', 'assetType'),
            recurring=[
                r if isinstance(r, RecurringContribution) else RecurringContribution.from_dict(r)
                for r in recurring
            ],
            one_time=[
                o if isinstance(o, OneTimeContribution) else OneTimeContribution.from_dict(o)
                for o in one_time
            ],
        )


def coerce_fund_positions(funds: List[Any]) -> List[FundPosition]:
    """Accept FundPosition objects or plain mappings."""
    if funds is None:
        return []
    return [f if isinstance(f, FundPosition) else FundPosition.from_dict(f) for f in funds]


@dataclass(frozen=True)
class Cashflow:
    """A priced contribution. Amount is positive; the solver flips the sign."""
    month_key: str
    amount: float
    fund_name: str
    kind: CashflowKind

    @property
    def date(self) -> date:
        return key_to_date(self.month_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'month': self.month_key,
            'amount': self.amount,
            'fund_name': self.fund_name,
            'kind': self.kind.value,
        }


@dataclass
class FundPerformanceResult:
    fund_name: str
    declared_type: Optional[str]
    total_invested: float
    current_value: float
    total_units: float
    closing_price: float
    absolute_return: float
    absolute_return_percent: Optional[float]
    internal_rate_of_return: Optional[float]
    cashflows: List[Cashflow] = field(default_factory=list)
    recurring_details: List[Dict[str, Any]] = field(default_factory=list)
    one_time_details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fund_name': self.fund_name,
            'declared_type': self.declared_type,
            'total_invested': self.total_invested,
            'current_value': self.current_value,
            'total_units': self.total_units,
            'closing_price': self.closing_price,
            'absolute_return': self.absolute_return,
            'absolute_return_percent': self.absolute_return_percent,
            'internal_rate_of_return': self.internal_rate_of_return,
            'recurring_count': len(self.recurring_details),
            'one_time_count': len(self.one_time_details),
            'recurring': self.recurring_details,
            'one_time': self.one_time_details,
            'cashflows': [cf.to_dict() for cf in self.cashflows],
        }


@dataclass
class PortfolioPerformanceSummary:
    window_start: str
    window_end: str
    total_invested: float = 0.0
    current_value: float = 0.0
    absolute_return: float = 0.0
    absolute_return_percent: Optional[float] = None
    cagr: Optional[float] = None
    internal_rate_of_return: Optional[float] = None
    fund_results: List[FundPerformanceResult] = field(default_factory=list)
    cashflows: List[Cashflow] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'window': {'start': self.window_start, 'end': self.window_end},
            'summary': {
                'total_invested': self.total_invested,
                'current_value': self.current_value,
                'absolute_return': self.absolute_return,
                'absolute_return_percent': self.absolute_return_percent,
                'cagr': self.cagr,
                'internal_rate_of_return': self.internal_rate_of_return,
            },
            'fund_performance': [r.to_dict() for r in self.fund_results],
            'cashflows': [cf.to_dict() for cf in self.cashflows],
            'warnings': list(self.warnings),
        }


@dataclass
class ClassificationRecord:
    """Static reference data describing what a fund is."""
    fund_name: str
    asset_type: str
    category: str
    sector_exposure: Dict[str, float] = field(default_factory=dict)
    market_cap_exposure: Dict[str, float] = field(default_factory=dict)
    holding_template_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ClassificationRecord':
        asset_type = _pick(data, 'asset_type', 'assetType')
        if asset_type not in CLASSIFIED_ASSET_TYPES:
            raise InputShapeError(
                f"Asset type must be one of {sorted(CLASSIFIED_ASSET_TYPES)}, got {asset_type!r}"
            )

        category = _pick(data, 'category')
        if not isinstance(category, str) or not category.strip():
            raise InputShapeError("Classification record requires a category")

        template_key = _pick(data, 'holding_template_key', 'holdingTemplateKey')
        return cls(
            fund_name=_pick(data, 'fund_name', 'fundName', 'name'),
            asset_type=asset_type,
            category=category.strip(),
            sector_exposure={
                str(k): float(v)
                for k, v in (_pick(data, 'sector_exposure', 'sectorExposure') or {}).items()
            },
            market_cap_exposure=normalize_market_cap(
                _pick(data, 'market_cap_exposure', 'marketCapExposure')
            ),
            holding_template_key=template_key.strip().upper() if template_key else None,
        )


@dataclass
class HoldingTemplate:
    """Category-level sector and market-cap exposure profile."""
    template_key: str
    asset_type: Optional[str]
    category: Optional[str]
    sector_exposure: Dict[str, float] = field(default_factory=dict)
    market_cap_exposure: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], template_key: Optional[str] = None) -> 'HoldingTemplate':
        key = _pick(data, 'template_key', 'templateKey', default=template_key)
        if not key:
            raise InputShapeError("Holding template requires a template key")
        return cls(
            template_key=str(key).strip().upper(),
            asset_type=_pick(data, 'asset_type', 'assetType'),
            category=_pick(data, 'category'),
            sector_exposure={
                str(k): float(v)
                for k, v in (_pick(data, 'sector_exposure', 'sectorExposure') or {}).items()
            },
            market_cap_exposure=normalize_market_cap(
                _pick(data, 'market_cap_exposure', 'marketCapExposure')
            ),
        )


@dataclass(frozen=True)
class RiskFinding:
    kind: RiskKind
    subject: str
    percent: float
    severity: Severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'subject': self.subject,
            'percent': self.percent,
            'severity': self.severity.value,
        }


@dataclass
class DiversificationResult:
    asset_allocation: Dict[str, float] = field(default_factory=dict)
    category_distribution: Dict[str, float] = field(default_factory=dict)
    sector_exposure: Dict[str, float] = field(default_factory=dict)
    market_cap_exposure: Dict[str, float] = field(
        default_factory=lambda: {bucket: 0.0 for bucket in MARKET_CAP_BUCKETS}
    )
    fund_count: int = 0
    fund_weights: Dict[str, float] = field(default_factory=dict)
    total_invested: float = 0.0
    concentration_risks: List[RiskFinding] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'asset_allocation': dict(self.asset_allocation),
            'category_distribution': dict(self.category_distribution),
            'sector_exposure': dict(self.sector_exposure),
            'market_cap_exposure': dict(self.market_cap_exposure),
            'fund_count': self.fund_count,
            'fund_weights': dict(self.fund_weights),
            'total_invested': self.total_invested,
            'concentration_risks': [r.to_dict() for r in self.concentration_risks],
            'warnings': list(self.warnings),
        }
