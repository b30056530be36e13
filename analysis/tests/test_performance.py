"""
Tests for performance analysis.
Hand-checkable portfolios: one lump sum, one flat recurring plan, and gaps.
"""

import pytest
import copy

from analysis.calculations.time_keys import AnalysisWindow, month_range
from analysis.guardrails import ProgrammingInvariantError
from analysis.models import FundPosition, OneTimeContribution, RecurringContribution
from analysis.performance import (
    analyze_performance,
    calculate_cagr,
    calculate_fund_performance,
)


WINDOW = AnalysisWindow("2024-01", "2024-12")

# 2024-01-01 to 2024-12-01
DAYS_TO_CLOSE = 335


def lump_sum_fund(name="Alpha Fund", amount=100000, year=2024, month=1):
    return FundPosition(name, declared_type="Equity", one_time=[OneTimeContribution(amount, year, month)])


def recurring_fund(name="Beta Fund", amount=1000):
    return FundPosition(name, recurring=[RecurringContribution(amount, 2024, 1, is_ongoing=True)])


def flat_prices(price):
    return {month: price for month in month_range("2024-01", "2024-12")}


class TestCalculateCagr:
    """Tests for compound annual growth."""

    def test_doubling_over_one_year(self):
        """Test 100 -> 200 over a year is 100%."""
        assert abs(calculate_cagr(100, 200, 1.0) - 1.0) < 1e-12

    def test_two_years(self):
        """Test 100 -> 121 over two years is 10%."""
        assert abs(calculate_cagr(100, 121, 2.0) - 0.1) < 1e-12

    def test_complete_loss(self):
        """Test zero value is a -100% rate."""
        assert calculate_cagr(100, 0, 1.0) == -1.0

    def test_undefined(self):
        """Test nothing invested or no elapsed time has no CAGR."""
        assert calculate_cagr(0, 100, 1.0) is None
        assert calculate_cagr(100, 120, 0) is None


class TestAnalyzePerformance:
    """Tests for portfolio performance."""

    def test_lump_sum_gain(self):
        """Test 100000 at 10 valued at 12 is +20%."""
        funds = [lump_sum_fund()]
        prices = {"Alpha Fund": {"2024-01": 10.0, "2024-12": 12.0}}

        summary = analyze_performance(funds, prices, WINDOW)

        assert summary.total_invested == 100000.0
        assert summary.current_value == 120000.0
        assert summary.absolute_return == 20000.0
        assert summary.absolute_return_percent == 20.0

        fund = summary.fund_results[0]
        assert fund.total_units == 10000.0
        assert fund.closing_price == 12.0
        assert fund.declared_type == "Equity"

        expected_rate = 1.2 ** (365.25 / DAYS_TO_CLOSE) - 1
        assert abs(summary.internal_rate_of_return - expected_rate) < 1e-5
        assert abs(summary.cagr - expected_rate) < 1e-5
        assert abs(fund.internal_rate_of_return - expected_rate) < 1e-5

    def test_flat_recurring_plan(self):
        """Test 1000 x 12 at a flat 10 is 0% with 1200 units."""
        summary = analyze_performance([recurring_fund()], {"Beta Fund": flat_prices(10.0)}, WINDOW)

        fund = summary.fund_results[0]
        assert fund.total_invested == 12000.0
        assert fund.total_units == 1200.0
        assert fund.current_value == 12000.0
        assert summary.absolute_return_percent == 0.0
        assert abs(summary.internal_rate_of_return) < 1e-6
        assert summary.warnings == []

    def test_filled_months_warning(self):
        """Test gap-filled windows are flagged with a count."""
        funds = [lump_sum_fund()]
        prices = {"Alpha Fund": {"2024-01": 10.0, "2024-12": 12.0}}

        summary = analyze_performance(funds, prices, WINDOW)

        assert "Alpha Fund: 10 of 12 month(s) had no observed price and were filled" in summary.warnings

    def test_fund_without_prices_excluded(self):
        """Test a fund with no price data is skipped with a warning."""
        funds = [lump_sum_fund(), recurring_fund("Ghost Fund")]
        prices = {"Alpha Fund": flat_prices(10.0)}

        summary = analyze_performance(funds, prices, WINDOW)

        assert [r.fund_name for r in summary.fund_results] == ["Alpha Fund"]
        assert summary.total_invested == 100000.0
        assert "No price data for fund: Ghost Fund" in summary.warnings

    def test_unusable_price_data(self):
        """Test a non-mapping price series is reported, not raised."""
        summary = analyze_performance([lump_sum_fund()], {"Alpha Fund": [10.0, 12.0]}, WINDOW)

        assert summary.fund_results == []
        assert summary.warnings[0].startswith("Unusable price data for fund: Alpha Fund")

    def test_no_priced_contributions(self):
        """Test a fund with prices but nothing in the window reports zeros."""
        funds = [lump_sum_fund(year=2025, month=3)]

        summary = analyze_performance(funds, {"Alpha Fund": flat_prices(10.0)}, WINDOW)

        fund = summary.fund_results[0]
        assert fund.total_invested == 0
        assert fund.absolute_return_percent is None
        assert fund.internal_rate_of_return is None
        assert summary.absolute_return_percent is None
        assert summary.cagr is None
        assert summary.internal_rate_of_return is None
        assert any("no priced contributions" in w for w in summary.warnings)

    def test_solver_failure_degrades_to_none(self):
        """Test a single-month window has no rate but still reports value."""
        window = AnalysisWindow("2024-12", "2024-12")
        funds = [lump_sum_fund(month=12)]

        summary = analyze_performance(funds, {"Alpha Fund": {"2024-12": 12.0}}, window)

        assert summary.current_value == 100000.0
        assert summary.internal_rate_of_return is None
        assert summary.cagr is None
        assert any(w.startswith("IRR could not be computed for portfolio") for w in summary.warnings)
        assert any(w.startswith("IRR could not be computed for Alpha Fund") for w in summary.warnings)

    def test_one_month_gain_has_rate(self):
        """Test a 50% gain over one month still solves (annualised past 1000%)."""
        window = AnalysisWindow("2024-11", "2024-12")
        funds = [lump_sum_fund(amount=1000, month=11)]
        prices = {"Alpha Fund": {"2024-11": 10.0, "2024-12": 15.0}}

        summary = analyze_performance(funds, prices, window)

        # 2024-11-01 to 2024-12-01
        expected_rate = 1.5 ** (365.25 / 30) - 1
        assert summary.current_value == 1500.0
        assert abs(summary.internal_rate_of_return - expected_rate) < 1e-2
        assert abs(summary.fund_results[0].internal_rate_of_return - expected_rate) < 1e-2
        assert not any(w.startswith("IRR could not be computed") for w in summary.warnings)

    def test_multiple_funds_fold(self):
        """Test totals and cashflows across funds."""
        funds = [lump_sum_fund(amount=20000, month=6), recurring_fund()]
        prices = {"Alpha Fund": flat_prices(20.0), "Beta Fund": flat_prices(10.0)}
        prices["Alpha Fund"]["2024-12"] = 25.0

        summary = analyze_performance(funds, prices, WINDOW)

        assert summary.total_invested == 32000.0
        assert summary.current_value == 25000.0 + 12000.0
        assert len(summary.cashflows) == 13
        months = [cf.month_key for cf in summary.cashflows]
        assert months == sorted(months)

    def test_linear_fill(self):
        """Test linear fill prices mid-window contributions between neighbours."""
        funds = [lump_sum_fund(amount=1000, month=6)]
        prices = {"Alpha Fund": {"2024-01": 10.0, "2024-12": 21.0}}

        carry = analyze_performance(funds, prices, WINDOW, fill_method='carry')
        linear = analyze_performance(funds, prices, WINDOW, fill_method='linear')

        assert carry.fund_results[0].total_units == 100.0
        # 2024-06 is 5 of 11 steps from 10 to 21
        assert linear.fund_results[0].total_units == round(1000 / 15.0, 4)

    def test_duplicate_fund_names_are_separate(self):
        """Test two positions in one fund are analysed separately."""
        funds = [lump_sum_fund(amount=1000), lump_sum_fund(amount=2000)]

        summary = analyze_performance(funds, {"Alpha Fund": flat_prices(10.0)}, WINDOW)

        assert len(summary.fund_results) == 2
        assert summary.total_invested == 3000.0

    def test_inputs_not_mutated(self):
        """Test price maps and positions are left untouched."""
        funds = [lump_sum_fund()]
        prices = {"Alpha Fund": {"2024-01": 10.0, "2024-12": 12.0}}
        before = (copy.deepcopy(funds), copy.deepcopy(prices))

        analyze_performance(funds, prices, WINDOW)

        assert (funds, prices) == before

    def test_accepts_record_mappings(self):
        """Test stored-record dictionaries work as funds."""
        funds = [{'assetName': 'Alpha Fund', 'lumpsums': [{'amount': 100, 'year': 2024, 'month': 1}]}]

        summary = analyze_performance(funds, {"Alpha Fund": flat_prices(10.0)}, WINDOW)

        assert summary.total_invested == 100.0

    def test_to_dict_shape(self):
        """Test serialized summary sections."""
        summary = analyze_performance([lump_sum_fund()], {"Alpha Fund": flat_prices(10.0)}, WINDOW)

        result = summary.to_dict()

        assert result['window'] == {'start': '2024-01', 'end': '2024-12'}
        assert set(result['summary']) == {
            'total_invested', 'current_value', 'absolute_return',
            'absolute_return_percent', 'cagr', 'internal_rate_of_return',
        }
        assert result['fund_performance'][0]['one_time_count'] == 1
        assert result['cashflows'][0]['kind'] == 'onetime'


class TestBoundaryErrors:
    """Tests for eager rejection of bad inputs."""

    def test_window_type(self):
        """Test windows must be AnalysisWindow objects."""
        with pytest.raises(ProgrammingInvariantError, match="AnalysisWindow"):
            analyze_performance([], {}, ("2024-01", "2024-12"))

    def test_negative_amount(self):
        """Test negative contributions are rejected before any calculation."""
        with pytest.raises(ProgrammingInvariantError, match="must be positive"):
            analyze_performance([lump_sum_fund(amount=-5)], {}, WINDOW)

    def test_unknown_fill_method(self):
        """Test unknown fill methods are rejected."""
        with pytest.raises(ProgrammingInvariantError, match="Unknown fill method"):
            analyze_performance([], {}, WINDOW, fill_method='spline')

    def test_unknown_solver_setting(self):
        """Test unknown solver settings are rejected."""
        with pytest.raises(ProgrammingInvariantError, match="Unknown solver settings"):
            analyze_performance([], {}, WINDOW, solver_settings={'tolerence': 1e-6})

    def test_empty_portfolio(self):
        """Test no funds gives an empty summary."""
        summary = analyze_performance([], {}, WINDOW)

        assert summary.total_invested == 0
        assert summary.fund_results == []
        assert summary.internal_rate_of_return is None


class TestCalculateFundPerformance:
    """Tests for the per-fund calculation."""

    def test_unrounded_values(self):
        """Test fund results carry raw values before portfolio rounding."""
        fund = lump_sum_fund(amount=100)

        result, warnings = calculate_fund_performance(fund, flat_prices(3.0), WINDOW)

        assert abs(result.total_units - 100 / 3.0) < 1e-12
        assert warnings == []
