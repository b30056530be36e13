"""
Guardrails for the analysis engine - boundary validation and error taxonomy.
Rejects inputs that would silently produce nonsense numbers; tolerates gaps.
"""

import math
import numbers
from decimal import Decimal
from typing import Any, Dict, List


class InputShapeError(ValueError):
    """Raised when a record is malformed (missing or mistyped fields)."""
    pass


class ProgrammingInvariantError(ValueError):
    """Raised at the engine boundary for inputs that break hard invariants."""
    pass


def validate_amount(amount: Any, context: str) -> float:
    """
    Validate a contribution amount.

    Args:
        amount: Raw amount value
        context: Human-readable location used in the error message

    Returns:
        Amount as float

    Raises:
        ProgrammingInvariantError: If amount is missing, non-numeric,
            non-finite or not strictly positive
    """
    if isinstance(amount, bool) or not isinstance(amount, (numbers.Real, Decimal)):
        raise ProgrammingInvariantError(f"{context}: amount must be numeric, got {amount!r}")

    if not math.isfinite(amount):
        raise ProgrammingInvariantError(f"{context}: amount must be finite, got {amount}")

    if amount <= 0:
        raise ProgrammingInvariantError(f"{context}: amount must be positive, got {amount}")

    return float(amount)


def validate_month_number(month: Any, context: str) -> None:
    """Months, when present, must be integers in 1..12. None is allowed."""
    if month is None:
        return
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ProgrammingInvariantError(f"{context}: month must be 1-12, got {month!r}")


def validate_fund_positions(funds: List[Any]) -> None:
    """
    Eagerly validate fund positions before any calculation runs.

    Missing date fields are tolerated (such entries contribute nothing);
    negative amounts, impossible months and empty fund names are not.

    Raises:
        ProgrammingInvariantError: On the first invariant violation
    """
    for position, fund in enumerate(funds):
        name = getattr(fund, 'name', None)
        if not isinstance(name, str) or not name.strip():
            raise ProgrammingInvariantError(f"Fund at position {position} has no name")

        for i, entry in enumerate(fund.recurring):
            context = f"{name} recurring contribution #{i + 1}"
            validate_amount(entry.amount, context)
            validate_month_number(entry.start_month, context)
            validate_month_number(entry.end_month, context)

        for i, entry in enumerate(fund.one_time):
            context = f"{name} one-time contribution #{i + 1}"
            validate_amount(entry.amount, context)
            validate_month_number(entry.month, context)


def validate_portfolio_for_analysis(funds: List[Any]) -> Dict[str, Any]:
    """
    Check that a portfolio has something to analyse.

    Returns:
        Dictionary with is_valid flag and a list of error strings
    """
    errors = []

    if not funds:
        errors.append("Portfolio must have at least one fund")

    for fund in funds or []:
        if not fund.recurring and not fund.one_time:
            errors.append(
                f'Fund "{fund.name}" has no investments (recurring or one-time)'
            )

    return {
        'is_valid': len(errors) == 0,
        'errors': errors
    }
