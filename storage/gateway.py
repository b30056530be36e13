"""
Data gateway - the narrow seam between storage and the analysis engine.
The engine only ever sees the in-memory maps these methods return.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

import yaml
from analysis.calculations.price_series import PriceSeriesError, normalize_price_series
from analysis.guardrails import InputShapeError
from analysis.models import (
    ClassificationRecord,
    FundPosition,
    HoldingTemplate,
    coerce_fund_positions,
)


logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Raised when reference data cannot be loaded."""
    pass


class PortfolioNotFoundError(Exception):
    """Raised when a portfolio is missing or not owned by the requester."""
    pass


class PortfolioDataGateway(Protocol):
    """Resolves fund names to price series and classification data."""

    def get_price_series(self, fund_names: Sequence[str]) -> Dict[str, Dict[str, float]]:
        ...

    def get_classifications(self, fund_names: Sequence[str]) -> Dict[str, ClassificationRecord]:
        ...

    def get_holding_templates(self) -> Dict[str, HoldingTemplate]:
        ...


class PortfolioRecordProvider(Protocol):
    """Supplies fund positions once ownership has been checked."""

    def get_funds(self, portfolio_id: str, owner_id: Optional[str] = None) -> List[FundPosition]:
        ...


class InMemoryDataGateway:
    """
    Gateway and record provider backed by plain dictionaries.

    Data is validated once at construction; every getter returns a copy so
    callers can never mutate the shared snapshot.
    """

    def __init__(
        self,
        price_series: Optional[Mapping[str, Mapping[Any, Any]]] = None,
        classifications: Optional[Mapping[str, Any]] = None,
        templates: Optional[Mapping[str, Any]] = None,
        portfolios: Optional[Mapping[str, Mapping[str, Any]]] = None
    ):
        try:
            self._prices = {
                name: normalize_price_series(series)
                for name, series in (price_series or {}).items()
            }
            self._classifications = {
                name: record if isinstance(record, ClassificationRecord)
                else ClassificationRecord.from_dict({'fund_name': name, **record})
                for name, record in (classifications or {}).items()
            }
            self._templates = {}
            for key, template in (templates or {}).items():
                if not isinstance(template, HoldingTemplate):
                    template = HoldingTemplate.from_dict(template, key)
                self._templates[template.template_key] = template
            self._portfolios = {
                str(portfolio_id): {
                    'owner_id': record.get('owner_id'),
                    'name': record.get('name', str(portfolio_id)),
                    'funds': coerce_fund_positions(record.get('funds') or []),
                }
                for portfolio_id, record in (portfolios or {}).items()
            }
        except (InputShapeError, PriceSeriesError, TypeError, ValueError, AttributeError) as e:
            raise GatewayError(f"Invalid reference data: {e}") from e

        logger.debug(
            "Gateway loaded %d price series, %d classifications, %d templates, %d portfolios",
            len(self._prices), len(self._classifications), len(self._templates), len(self._portfolios)
        )

    def get_price_series(self, fund_names: Sequence[str]) -> Dict[str, Dict[str, float]]:
        return {name: dict(self._prices[name]) for name in fund_names if name in self._prices}

    def get_classifications(self, fund_names: Sequence[str]) -> Dict[str, ClassificationRecord]:
        return {
            name: copy.deepcopy(self._classifications[name])
            for name in fund_names if name in self._classifications
        }

    def get_holding_templates(self) -> Dict[str, HoldingTemplate]:
        return copy.deepcopy(self._templates)

    def get_funds(self, portfolio_id: str, owner_id: Optional[str] = None) -> List[FundPosition]:
        record = self._portfolios.get(str(portfolio_id))
        if record is None or (owner_id is not None and record['owner_id'] != owner_id):
            raise PortfolioNotFoundError("Portfolio not found or access denied")
        return copy.deepcopy(record['funds'])

    def portfolio_ids(self) -> List[str]:
        return list(self._portfolios)


def _records_by_key(section: Any, key_names: Sequence[str], section_name: str) -> Dict[str, Any]:
    """Sections may be a mapping keyed by name or a list of records carrying the name."""
    if section is None:
        return {}
    if isinstance(section, Mapping):
        return dict(section)
    if isinstance(section, list):
        keyed = {}
        for record in section:
            key = next((record[k] for k in key_names if isinstance(record, Mapping) and k in record), None)
            if key is None:
                raise GatewayError(f"{section_name} entry is missing one of {list(key_names)}")
            keyed[key] = record
        return keyed
    raise GatewayError(f"{section_name} must be a mapping or a list")


def load_fixture_gateway(path: Union[str, Path]) -> InMemoryDataGateway:
    """
    Build an in-memory gateway from a YAML fixture.

    Expected sections (all optional):
        prices: {fund name: {"YYYY-MM": price}}
        classifications: {fund name: record} or [record with fund_name]
        templates: {template key: template} or [template with template_key]
        portfolios: {portfolio id: {owner_id, name, funds: [...]}}

    Raises:
        GatewayError: If the file is missing, unreadable or malformed
    """
    fixture_file = Path(path)
    if not fixture_file.exists():
        raise GatewayError(f"Fixture file not found: {path}")

    try:
        with open(fixture_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise GatewayError(f"Failed to load fixture: {e}") from e

    if not isinstance(data, Mapping):
        raise GatewayError("Fixture must be a mapping at the top level")

    return InMemoryDataGateway(
        price_series=_records_by_key(data.get('prices'), ('fund_name',), 'prices'),
        classifications=_records_by_key(
            data.get('classifications'), ('fund_name', 'fundName'), 'classifications'
        ),
        templates=_records_by_key(data.get('templates'), ('template_key', 'templateKey'), 'templates'),
        portfolios=_records_by_key(data.get('portfolios'), ('id', 'portfolio_id'), 'portfolios'),
    )
