"""
Tests for diversification analysis.
Invested weights come from schedules only, so no price data is needed.
"""

import pytest

from analysis.calculations.concentration import RiskThresholds
from analysis.calculations.time_keys import AnalysisWindow
from analysis.diversification import (
    UNCLASSIFIED_CATEGORY,
    analyze_diversification,
    coerce_templates,
    resolve_exposures,
    resolve_template,
)
from analysis.guardrails import ProgrammingInvariantError
from analysis.models import (
    ClassificationRecord,
    FundPosition,
    HoldingTemplate,
    OneTimeContribution,
    RecurringContribution,
    RiskKind,
    Severity,
)


WINDOW = AnalysisWindow("2024-01", "2024-12")


def one_time(name, amount, month=1, year=2024):
    return FundPosition(name, one_time=[OneTimeContribution(amount, year, month)])


def classification(name, asset_type, category, **extra):
    return ClassificationRecord(name, asset_type, category, **extra)


TEMPLATES = {
    'LARGE_CAP': HoldingTemplate(
        'LARGE_CAP', 'Equity', 'Large Cap',
        sector_exposure={'Technology': 40.0, 'Financial Services': 60.0},
        market_cap_exposure={'Large': 90.0, 'Mid': 10.0},
    ),
    'MID_CAP': HoldingTemplate(
        'MID_CAP', 'Equity', 'Mid Cap',
        sector_exposure={'Technology': 20.0, 'Industrials': 80.0},
        market_cap_exposure={'Mid': 80.0, 'Small': 20.0},
    ),
}


class TestSingleFund:
    """Tests for a one-fund portfolio."""

    def test_single_fund_dominance(self):
        """Test one fund is 100% of everything."""
        funds = [one_time("Alpha", 10000)]
        classes = {"Alpha": classification("Alpha", "Equity", "Large Cap")}

        result = analyze_diversification(funds, classes, TEMPLATES, WINDOW)

        assert result.fund_count == 1
        assert result.fund_weights == {"Alpha": 100.0}
        assert result.asset_allocation == {"Equity": 100.0}
        assert "Portfolio has fewer than 3 funds - consider diversifying" in result.warnings

        dominance = [r for r in result.concentration_risks if r.kind is RiskKind.SINGLE_FUND_DOMINANCE]
        assert len(dominance) == 1
        assert dominance[0].severity is Severity.HIGH
        assert dominance[0].percent == 100.0


class TestWeights:
    """Tests for weighting by invested capital."""

    def test_weighted_allocation(self):
        """Test 75/25 split across asset types and categories."""
        funds = [one_time("Alpha", 7500), one_time("Gamma", 2500)]
        classes = {
            "Alpha": classification("Alpha", "Equity", "Large Cap"),
            "Gamma": classification("Gamma", "Debt", "Short Duration"),
        }

        result = analyze_diversification(funds, classes, TEMPLATES, WINDOW)

        assert result.asset_allocation == {"Equity": 75.0, "Debt": 25.0}
        assert result.category_distribution == {"Large Cap": 75.0, "Short Duration": 25.0}
        assert result.total_invested == 10000.0

    def test_weights_use_window_clamped_schedule(self):
        """Test recurring plans weigh only their months inside the window."""
        funds = [
            FundPosition("Alpha", recurring=[RecurringContribution(1000, 2020, 1, is_ongoing=True)]),
            one_time("Gamma", 12000, year=2025),
            one_time("Delta", 4000),
        ]
        classes = {
            "Alpha": classification("Alpha", "Equity", "Large Cap"),
            "Delta": classification("Delta", "Debt", "Liquid"),
        }

        result = analyze_diversification(funds, classes, TEMPLATES, WINDOW)

        assert result.total_invested == 16000.0
        assert result.fund_weights == {"Alpha": 75.0, "Gamma": 0.0, "Delta": 25.0}
        assert UNCLASSIFIED_CATEGORY not in result.category_distribution

    def test_sector_exposure_weighted(self):
        """Test sector exposure is weight x template share."""
        funds = [one_time("Alpha", 7500), one_time("Beta", 2500)]
        classes = {
            "Alpha": classification("Alpha", "Equity", "Large Cap", holding_template_key="LARGE_CAP"),
            "Beta": classification("Beta", "Equity", "Mid Cap"),
        }

        result = analyze_diversification(funds, classes, TEMPLATES, WINDOW)

        # Technology: 0.75 * 40 + 0.25 * 20 = 35
        assert result.sector_exposure["Technology"] == 35.0
        assert result.sector_exposure["Financial Services"] == 45.0
        assert result.sector_exposure["Industrials"] == 20.0
        # Large: 0.75 * 90; Mid: 0.75 * 10 + 0.25 * 80; Small: 0.25 * 20
        assert result.market_cap_exposure == {"Large": 67.5, "Mid": 27.5, "Small": 5.0}

        sector_risks = {
            r.subject: r.severity for r in result.concentration_risks
            if r.kind is RiskKind.SECTOR_CONCENTRATION
        }
        assert sector_risks == {"Technology": Severity.MEDIUM, "Financial Services": Severity.HIGH}

    def test_allocation_sums_to_100(self):
        """Test percentages add up within rounding."""
        funds = [one_time("A", 1000), one_time("B", 1000), one_time("C", 1000)]
        classes = {
            "A": classification("A", "Equity", "Large Cap"),
            "B": classification("B", "Debt", "Liquid"),
            "C": classification("C", "Gold", "Gold ETF"),
        }

        result = analyze_diversification(funds, classes, TEMPLATES, WINDOW)

        assert abs(sum(result.asset_allocation.values()) - 100) < 0.05
        assert abs(sum(result.fund_weights.values()) - 100) < 0.05
        assert not any("fewer than" in w for w in result.warnings)

    def test_duplicate_names_summed_in_weights(self):
        """Test two positions in one fund share a weight entry."""
        funds = [one_time("Alpha", 1000), one_time("Alpha", 1000), one_time("Beta", 2000)]

        result = analyze_diversification(funds, {}, {}, WINDOW)

        assert result.fund_weights == {"Alpha": 50.0, "Beta": 50.0}
        assert result.fund_count == 3

    def test_duplicate_positions_assessed_separately(self):
        """Test dominance looks at each position, not the summed fund weight."""
        funds = [one_time("Alpha", 1000), one_time("Alpha", 1000), one_time("Beta", 2000)]

        result = analyze_diversification(funds, {}, {}, WINDOW)

        dominance = [(r.subject, r.severity) for r in result.concentration_risks
                     if r.kind is RiskKind.SINGLE_FUND_DOMINANCE]
        assert dominance == [("Beta", Severity.MEDIUM)]

    def test_dominance_uses_unrounded_share(self):
        """Test 50.004% is above the 50% edge even though it reports as 50.0."""
        funds = [one_time("Alpha", 50004), one_time("Beta", 49996)]

        result = analyze_diversification(funds, {}, {}, WINDOW)

        assert result.fund_weights["Alpha"] == 50.0
        dominance = [r for r in result.concentration_risks if r.kind is RiskKind.SINGLE_FUND_DOMINANCE]
        assert [(r.subject, r.severity, r.percent) for r in dominance] == [
            ("Alpha", Severity.HIGH, 50.0),
            ("Beta", Severity.MEDIUM, 50.0),
        ]


class TestUnclassified:
    """Tests for funds without classification data."""

    def test_unclassified_bucket(self):
        """Test unclassified funds land in Other / Unclassified."""
        funds = [one_time("Alpha", 5000), one_time("Mystery", 5000)]
        classes = {"Alpha": classification("Alpha", "Equity", "Large Cap")}

        result = analyze_diversification(funds, classes, TEMPLATES, WINDOW)

        assert result.asset_allocation == {"Equity": 50.0, "Other": 50.0}
        assert result.category_distribution[UNCLASSIFIED_CATEGORY] == 50.0
        assert abs(sum(result.category_distribution.values()) - 100) < 0.05
        assert "No classification data for fund: Mystery" in result.warnings

    def test_invalid_classification_is_unclassified(self):
        """Test a malformed record falls back to Unclassified with a warning."""
        funds = [one_time("Alpha", 5000)]
        classes = {"Alpha": {'asset_type': 'Crypto', 'category': 'Coins'}}

        result = analyze_diversification(funds, classes, {}, WINDOW)

        assert result.category_distribution == {UNCLASSIFIED_CATEGORY: 100.0}
        assert any(w.startswith("Invalid classification data for fund Alpha") for w in result.warnings)

    def test_classification_mappings_accepted(self):
        """Test plain dictionaries work as classification records."""
        funds = [one_time("Alpha", 5000)]
        classes = {"Alpha": {'assetType': 'Debt', 'category': 'Liquid'}}

        result = analyze_diversification(funds, classes, {}, WINDOW)

        assert result.asset_allocation == {"Debt": 100.0}


class TestZeroTotal:
    """Tests for portfolios with nothing invested in the window."""

    def test_no_investments(self):
        """Test empty distributions and warnings."""
        funds = [one_time("Alpha", 5000, year=2025)]

        result = analyze_diversification(funds, {}, {}, WINDOW)

        assert result.total_invested == 0
        assert result.asset_allocation == {}
        assert result.concentration_risks == []
        assert result.market_cap_exposure == {"Large": 0.0, "Mid": 0.0, "Small": 0.0}
        assert result.warnings == [
            "No investments found in portfolio",
            "Portfolio has fewer than 3 funds - consider diversifying",
        ]

    def test_empty_portfolio(self):
        """Test no funds at all."""
        result = analyze_diversification([], {}, {}, WINDOW)

        assert result.fund_count == 0
        assert "No investments found in portfolio" in result.warnings


class TestTemplateResolution:
    """Tests for locating holding templates."""

    def test_explicit_key(self):
        """Test the record's template key wins."""
        record = classification("A", "Equity", "Flexi Cap", holding_template_key="MID_CAP")
        assert resolve_template(record, TEMPLATES).template_key == "MID_CAP"

    def test_category_as_key(self):
        """Test a template keyed by the category."""
        record = classification("A", "Equity", "Large Cap")
        assert resolve_template(record, TEMPLATES).template_key == "LARGE_CAP"

    def test_category_match(self):
        """Test a template describing the same category."""
        templates = {'LC_V2': HoldingTemplate('LC_V2', 'Equity', 'large cap')}
        record = classification("A", "Equity", "Large Cap")
        assert resolve_template(record, templates).template_key == "LC_V2"

    def test_no_template(self):
        """Test unknown categories have no template."""
        record = classification("A", "Debt", "Gilt")
        assert resolve_template(record, TEMPLATES) is None
        assert resolve_exposures(record, TEMPLATES) == ({}, {})

    def test_record_exposure_wins(self):
        """Test the record's own exposure beats any template."""
        record = classification(
            "A", "Equity", "Large Cap", sector_exposure={'Energy': 100.0}
        )
        sectors, caps = resolve_exposures(record, TEMPLATES)
        assert sectors == {'Energy': 100.0}
        assert caps == {'Large': 90.0, 'Mid': 10.0}

    def test_missing_half_from_template(self):
        """Test market-cap exposure comes from the template when the record only has sectors."""
        funds = [one_time("A", 1000)]
        classes = {
            "A": classification("A", "Equity", "Large Cap", sector_exposure={'Technology': 50.0}),
        }
        templates = {
            'LC': HoldingTemplate('LC', 'Equity', 'Large Cap', market_cap_exposure={'Large': 90.0, 'Mid': 10.0}),
        }

        result = analyze_diversification(funds, classes, templates, WINDOW)

        assert result.sector_exposure == {'Technology': 50.0}
        assert result.market_cap_exposure == {'Large': 90.0, 'Mid': 10.0, 'Small': 0.0}

    def test_record_halves_without_template(self):
        """Test a record's own half is kept when no template matches."""
        record = classification("A", "Debt", "Gilt", market_cap_exposure={'Large': 100.0})
        assert resolve_exposures(record, TEMPLATES) == ({}, {'Large': 100.0})

    def test_coerce_templates_skips_invalid(self):
        """Test bad templates are reported, good ones kept."""
        templates, warnings = coerce_templates({
            'flexi_cap': {'sector_exposure': {'Technology': 30}},
            'BROKEN': {'sector_exposure': {'Technology': 'lots'}},
        })

        assert list(templates) == ['FLEXI_CAP']
        assert warnings[0].startswith("Invalid holding template BROKEN")


class TestBoundary:
    """Tests for argument validation."""

    def test_window_required(self):
        """Test the window must be an AnalysisWindow."""
        with pytest.raises(ProgrammingInvariantError, match="AnalysisWindow"):
            analyze_diversification([], {}, {}, None)

    def test_custom_thresholds(self):
        """Test threshold overrides flow through."""
        funds = [one_time(name, 1000) for name in "ABCD"]

        result = analyze_diversification(
            funds, {}, {}, WINDOW, RiskThresholds(fund_medium=20, fund_high=30, min_fund_count=5)
        )

        assert [r.severity for r in result.concentration_risks
                if r.kind is RiskKind.SINGLE_FUND_DOMINANCE] == [Severity.MEDIUM] * 4
        assert "Portfolio has fewer than 5 funds - consider diversifying" in result.warnings
