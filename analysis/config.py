"""
Engine configuration.
Defaults live here; a YAML file (path from PORTFOLIO_ENGINE_CONFIG) overrides them.
The engine never reads configuration itself: callers pass the resolved values.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from analysis.calculations.concentration import ConcentrationError, RiskThresholds
from analysis.calculations.price_series import FILL_METHODS
from analysis.calculations.time_keys import AnalysisWindow, analysis_window
from analysis.calculations.xirr import (
    DEFAULT_GUESS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOLERANCE,
)
from analysis.guardrails import ProgrammingInvariantError

# Load environment variables
load_dotenv()

DEFAULT_CONFIG_PATH = './config/engine.yml'

DEFAULT_ENGINE_CONFIG: Dict[str, Any] = {
    'window': {
        'start': '2024-01',
        'end': '2024-12',
    },
    'price_fill_method': 'carry',
    'solver': {
        'guess': DEFAULT_GUESS,
        'tolerance': DEFAULT_TOLERANCE,
        'max_iterations': DEFAULT_MAX_ITERATIONS,
    },
    'risk_thresholds': RiskThresholds().to_dict(),
}


class EngineConfigError(Exception):
    """Raised when engine configuration cannot be loaded or is invalid."""
    pass


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_engine_config(config: Mapping[str, Any]) -> None:
    """
    Validate a merged configuration.

    Raises:
        EngineConfigError: On the first invalid section
    """
    unknown = set(config) - set(DEFAULT_ENGINE_CONFIG)
    if unknown:
        raise EngineConfigError(f"Unknown config sections: {sorted(unknown)}")

    try:
        window_from_config(config)
    except ProgrammingInvariantError as e:
        raise EngineConfigError(str(e)) from e

    if config['price_fill_method'] not in FILL_METHODS:
        raise EngineConfigError(
            f"price_fill_method must be one of {FILL_METHODS}, got {config['price_fill_method']!r}"
        )

    solver = config['solver']
    unknown_solver = set(solver) - set(DEFAULT_ENGINE_CONFIG['solver'])
    if unknown_solver:
        raise EngineConfigError(f"Unknown solver settings: {sorted(unknown_solver)}")
    if not isinstance(solver['max_iterations'], int) or solver['max_iterations'] < 1:
        raise EngineConfigError("solver.max_iterations must be a positive integer")
    if not isinstance(solver['tolerance'], (int, float)) or solver['tolerance'] <= 0:
        raise EngineConfigError("solver.tolerance must be positive")
    if not isinstance(solver['guess'], (int, float)) or solver['guess'] <= -1:
        raise EngineConfigError("solver.guess must be greater than -1")

    try:
        thresholds_from_config(config)
    except (ConcentrationError, TypeError) as e:
        raise EngineConfigError(f"Invalid risk thresholds: {e}") from e


def load_engine_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load engine configuration from a YAML file merged over the defaults.

    Args:
        config_path: Path to config file (defaults to PORTFOLIO_ENGINE_CONFIG
            or ./config/engine.yml)

    Returns:
        Merged, validated configuration dictionary

    Raises:
        EngineConfigError: If the file is missing, unreadable or invalid
    """
    if config_path is None:
        config_path = os.getenv('PORTFOLIO_ENGINE_CONFIG', DEFAULT_CONFIG_PATH)

    config_file = Path(config_path)
    if not config_file.exists():
        raise EngineConfigError(f"Engine config file not found: {config_path}")

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            overrides = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise EngineConfigError(f"Failed to load engine config: {e}") from e

    if not isinstance(overrides, Mapping):
        raise EngineConfigError("Engine config must be a mapping at the top level")

    config = _deep_merge(DEFAULT_ENGINE_CONFIG, overrides)
    validate_engine_config(config)
    return config


def default_engine_config() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_ENGINE_CONFIG)


def window_from_config(config: Mapping[str, Any]) -> AnalysisWindow:
    window = config.get('window') or {}
    return analysis_window(str(window.get('start')), str(window.get('end')))


def thresholds_from_config(config: Mapping[str, Any]) -> RiskThresholds:
    return RiskThresholds.from_dict(config.get('risk_thresholds'))


def solver_settings_from_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    return dict(config.get('solver') or {})


def merge_engine_config(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Merge in-memory overrides over the defaults and validate the result."""
    config = _deep_merge(DEFAULT_ENGINE_CONFIG, overrides or {})
    validate_engine_config(config)
    return config
