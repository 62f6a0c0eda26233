#!/usr/bin/env python3
"""
Run the Null-Model Simulation Study
===================================

Simulates replications for every configured regime and method, appends
them to the CSV stores in results/, and prints the error-rate tables.

Usage:
    python scripts/run_simulation.py --config config/study_config.json
    python scripts/run_simulation.py --method frequentist --n-replications 100 --n-workers 4
    python scripts/run_simulation.py --skip-simulation      # re-aggregate only
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

# =============================================================================
# PROJECT ROOT SETUP
# =============================================================================
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mixsim import constants as C
from mixsim.config import load_config
from mixsim.pipeline import run_pipeline
from mixsim.utils.logging_config import configure_warnings, setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Mixed-model null-model selection simulation study')
    parser.add_argument('--config', type=str, default=str(PROJECT_ROOT / C.CONFIG_PATH),
                        help='Path to study configuration JSON')
    parser.add_argument('--method', choices=list(C.METHODS) + ['both'], default=None,
                        help='Inference method (default: methods from config)')
    parser.add_argument('--n-replications', type=int, default=None,
                        help='Replications per regime (overrides config)')
    parser.add_argument('--n-workers', type=int, default=None,
                        help='Parallel worker processes (overrides config)')
    parser.add_argument('--results-dir', type=str, default=None,
                        help='Directory for the CSV stores (overrides config)')
    parser.add_argument('--skip-simulation', action='store_true',
                        help='Do not simulate; only re-aggregate existing results')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Also write a detailed log to this file')
    parser.add_argument('--log-format', choices=['standard', 'detailed', 'json'], default='standard')
    parser.add_argument('--quiet', action='store_true', help='No progress printing')
    parser.add_argument('--debug', action='store_true', help='Debug logging and all warnings')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    setup_logging(level=logging.DEBUG if args.debug else logging.INFO,
                  log_file=args.log_file, format_style=args.log_format)
    configure_warnings(debug_mode=args.debug)

    config = load_config(args.config)

    overrides = {}
    if args.n_replications is not None:
        overrides['n_replications'] = args.n_replications
    if args.results_dir is not None:
        overrides['results_dir'] = args.results_dir
    if args.skip_simulation:
        overrides['run_simulation'] = False
    if overrides:
        config = replace(config, **overrides)

    methods = None
    if args.method == 'both':
        methods = C.METHODS
    elif args.method is not None:
        methods = (args.method,)

    try:
        run_pipeline(config, methods=methods, n_workers=args.n_workers, verbose=not args.quiet)
    except (OSError, ValueError) as e:
        logging.getLogger(__name__).error(f"Study aborted: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
