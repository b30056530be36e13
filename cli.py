#!/usr/bin/env python3
"""
Main CLI for the portfolio analysis engine.
Usage: python cli.py analyze FIXTURE.yml [options]
"""

import os
import sys
import json
import logging
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from analysis.analysis_job import AnalysisJobError, analyze_portfolio
from analysis.calculations.time_keys import analysis_window
from analysis.config import (
    DEFAULT_CONFIG_PATH,
    EngineConfigError,
    default_engine_config,
    load_engine_config,
    window_from_config,
)
from analysis.guardrails import ProgrammingInvariantError
from storage.gateway import GatewayError, PortfolioNotFoundError, load_fixture_gateway


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Analyze portfolio performance and diversification',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py analyze tests/fixtures/sample_portfolio.yml
  python cli.py analyze tests/fixtures/sample_portfolio.yml --start 2024-01 --end 2024-12
  python cli.py analyze portfolio.yml --portfolio growth --output result.json
        """
    )
    subparsers = parser.add_subparsers(dest='command')

    analyze = subparsers.add_parser('analyze', help='Analyze a portfolio from a YAML fixture')
    analyze.add_argument('fixture', help='YAML fixture with prices, classifications and portfolios')
    analyze.add_argument('--portfolio',
                         help='Portfolio id in the fixture (default: the only portfolio)')
    analyze.add_argument('--owner',
                         help='Owner id; the portfolio must belong to this owner')
    analyze.add_argument('--start',
                         help='First month of the analysis window (YYYY-MM)')
    analyze.add_argument('--end',
                         help='Last month of the analysis window (YYYY-MM)')
    analyze.add_argument('--config',
                         help='Engine config YAML (default: PORTFOLIO_ENGINE_CONFIG or built-in defaults)')
    analyze.add_argument('--output',
                         help='Write the analysis JSON to this file instead of stdout')
    analyze.add_argument('--verbose', '-v',
                         action='store_true',
                         help='Log progress and data-gap details to stderr')
    return parser


def _resolve_config(config_path):
    if config_path is None:
        config_path = os.getenv('PORTFOLIO_ENGINE_CONFIG')
    if config_path is None and not Path(DEFAULT_CONFIG_PATH).exists():
        return default_engine_config()
    return load_engine_config(config_path)


def _resolve_portfolio_id(gateway, requested):
    if requested:
        return requested
    ids = gateway.portfolio_ids()
    if len(ids) != 1:
        raise GatewayError(
            f"Fixture holds {len(ids)} portfolios; choose one with --portfolio ({', '.join(ids)})"
        )
    return ids[0]


def run_analyze(args) -> int:
    """Run the analyze command and return the exit code."""
    try:
        config = _resolve_config(args.config)
        configured = window_from_config(config)
        window = analysis_window(args.start or configured.start_key, args.end or configured.end_key)

        gateway = load_fixture_gateway(args.fixture)
        portfolio_id = _resolve_portfolio_id(gateway, args.portfolio)

        result = analyze_portfolio(gateway, portfolio_id, args.owner, window, config)
    except (EngineConfigError, GatewayError, PortfolioNotFoundError, AnalysisJobError,
            ProgrammingInvariantError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    payload = json.dumps(result, indent=2, default=str)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            f.write(payload)
        print(f"Analysis saved to: {output_path}")
    else:
        print(payload)

    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr
    )

    sys.exit(run_analyze(args))


if __name__ == "__main__":
    main()
