"""
Internal rate of return for irregular cashflows (XIRR).
Pure functions: Newton-Raphson with a bisection fallback.

Formula: sum(cf_i / (1 + r) ** t_i) = 0
where t_i is the year fraction (365.25-day year) from the earliest cashflow.
"""

import logging
import math
from datetime import date
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from analysis.calculations.time_keys import year_fraction


logger = logging.getLogger(__name__)

DEFAULT_GUESS = 0.1
DEFAULT_TOLERANCE = 1e-7
DEFAULT_MAX_ITERATIONS = 100

# Newton steps outside these bounds are damped halfway toward the bound
RATE_FLOOR = -0.99
RATE_CEILING = 1e6

BISECTION_LOW = -0.9999
BISECTION_HIGH = 10.0
# Upper bracket grows tenfold from BISECTION_HIGH until the NPV changes sign
BISECTION_MAX_HIGH = 1e6
MIN_BISECTION_ITERATIONS = 200


class RateSolverError(Exception):
    """Raised when no internal rate of return can be found."""
    pass


def xnpv(rate: float, amounts: Sequence[float], times: Sequence[float]) -> float:
    """
    Net present value of cashflows at year offsets.

    Args:
        rate: Annual discount rate as decimal (0.1 = 10%)
        amounts: Signed cashflow amounts
        times: Year fractions matching amounts

    Returns:
        Net present value
    """
    amounts_arr = np.asarray(amounts, dtype=float)
    times_arr = np.asarray(times, dtype=float)
    return float(np.sum(amounts_arr / np.power(1.0 + rate, times_arr)))


def _npv_and_derivative(rate: float, amounts: np.ndarray, times: np.ndarray) -> Tuple[float, float]:
    factors = np.power(1.0 + rate, times)
    npv = np.sum(amounts / factors)
    derivative = np.sum(-times * amounts / (factors * (1.0 + rate)))
    return float(npv), float(derivative)


def _validate(amounts: np.ndarray, times: np.ndarray) -> None:
    if len(amounts) < 2:
        raise RateSolverError("XIRR requires at least 2 cash flows")

    if len(amounts) != len(times):
        raise RateSolverError("Amounts and times must have same length")

    if not (np.all(np.isfinite(amounts)) and np.all(np.isfinite(times))):
        raise RateSolverError("Cash flows must be finite")

    if not (np.any(amounts > 0) and np.any(amounts < 0)):
        raise RateSolverError("XIRR requires both positive and negative cash flows")

    if np.ptp(times) == 0:
        raise RateSolverError("XIRR requires cash flows on more than one date")


def _newton(
    amounts: np.ndarray,
    times: np.ndarray,
    guess: float,
    tolerance: float,
    max_iterations: int
) -> Optional[float]:
    rate = guess

    for _ in range(max_iterations):
        npv, derivative = _npv_and_derivative(rate, amounts, times)

        if not (math.isfinite(npv) and math.isfinite(derivative)):
            return None

        if abs(npv) < tolerance:
            return rate

        if abs(derivative) < 1e-12:
            return None

        new_rate = rate - npv / derivative

        if new_rate < RATE_FLOOR:
            rate = (rate + RATE_FLOOR) / 2
        elif new_rate > RATE_CEILING:
            rate = (rate + RATE_CEILING) / 2
        else:
            rate = new_rate

    return None


def _bisect(
    amounts: np.ndarray,
    times: np.ndarray,
    tolerance: float,
    max_iterations: int
) -> Optional[float]:
    lo, hi = BISECTION_LOW, BISECTION_HIGH
    f_lo = xnpv(lo, amounts, times)
    f_hi = xnpv(hi, amounts, times)

    while math.isfinite(f_hi) and f_lo * f_hi > 0 and hi < BISECTION_MAX_HIGH:
        lo, f_lo = hi, f_hi
        hi *= 10
        f_hi = xnpv(hi, amounts, times)

    if not (math.isfinite(f_lo) and math.isfinite(f_hi)) or f_lo * f_hi > 0:
        return None

    for _ in range(max(max_iterations, MIN_BISECTION_ITERATIONS)):
        mid = (lo + hi) / 2
        f_mid = xnpv(mid, amounts, times)

        if abs(f_mid) < tolerance or (hi - lo) / 2 < 1e-12:
            return mid

        if f_lo * f_mid <= 0:
            hi = mid
        else:
            lo, f_lo = mid, f_mid

    return None


def xirr_from_times(
    amounts: Sequence[float],
    times: Sequence[float],
    guess: float = DEFAULT_GUESS,
    tolerance: float = DEFAULT_TOLERANCE,
    max_iterations: int = DEFAULT_MAX_ITERATIONS
) -> float:
    """
    Solve for the annual rate zeroing the NPV of cashflows at year offsets.

    Times are shifted so the earliest cashflow sits at t=0.

    Args:
        amounts: Signed amounts (negative = investment, positive = inflow)
        times: Year offsets of each amount
        guess: Starting rate for Newton-Raphson
        tolerance: Absolute NPV tolerance for convergence
        max_iterations: Newton iteration cap

    Returns:
        Annual rate as decimal (0.21 = 21%)

    Raises:
        RateSolverError: Fewer than two cashflows, no sign change, or no
            convergence within the iteration cap

    Example:
        xirr_from_times([-100, 121], [0.0, 1.0]) -> 0.21
    """
    amounts_arr = np.asarray(amounts, dtype=float)
    times_arr = np.asarray(times, dtype=float)

    _validate(amounts_arr, times_arr)

    times_arr = times_arr - times_arr.min()

    rate = _newton(amounts_arr, times_arr, guess, tolerance, max_iterations)
    if rate is not None:
        return rate

    logger.debug("Newton-Raphson did not converge; falling back to bisection")

    rate = _bisect(amounts_arr, times_arr, tolerance, max_iterations)
    if rate is not None:
        return rate

    raise RateSolverError(f"XIRR did not converge within {max_iterations} iterations")


def xirr(
    cashflows: Iterable[Tuple[date, float]],
    guess: float = DEFAULT_GUESS,
    tolerance: float = DEFAULT_TOLERANCE,
    max_iterations: int = DEFAULT_MAX_ITERATIONS
) -> float:
    """
    Internal rate of return for dated cashflows.

    Args:
        cashflows: (date, signed amount) pairs in any order

    Returns:
        Annual rate as decimal

    Raises:
        RateSolverError: See xirr_from_times
    """
    flows = list(cashflows)
    if len(flows) < 2:
        raise RateSolverError("XIRR requires at least 2 cash flows")

    base_date = min(d for d, _ in flows)
    times = [year_fraction(base_date, d) for d, _ in flows]
    amounts = [amount for _, amount in flows]

    return xirr_from_times(amounts, times, guess, tolerance, max_iterations)
