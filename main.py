#!/usr/bin/env python3
"""
Many-Universe Error Bands - Main Entry Point
============================================

Command-line interface for inspecting histograms with systematic errors
saved as JSON documents (see mubands.serialization).

Usage:
    python main.py summary hist.json --frac
    python main.py matrix hist.json total_cov.json --shape
    python main.py chi2 data.json mc.json --mc-scale 0.5

For detailed help:
    python main.py --help
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

# Configure root logger to output to console
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(name)s: %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

from mubands.parameters import MU_PARAMS
from mubands.comparison import chi2_data_mc
from mubands.reporting import error_budget_table, format_error_summary
from mubands.serialization import SerializationError, load_json, write_matrix


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Many-universe systematic error bands: summaries, covariance matrices and chi-square',
        epilog=f'mubands v{MU_PARAMS.version} - {MU_PARAMS.title}',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'mubands v{MU_PARAMS.version}'
    )

    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress progress messages (errors still shown)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    # summary
    summary = subparsers.add_parser('summary', help='Print the error budget of a histogram')
    summary.add_argument('histogram', type=str, help='Histogram JSON file')
    summary.add_argument('--frac', action='store_true', help='Errors relative to the central value')
    summary.add_argument('--shape', action='store_true', help='Shape-only (area normalized) errors')
    summary.add_argument('--no-stat', action='store_true', help='Leave out statistical errors')
    summary.add_argument('--flow', action='store_true', help='Include under/overflow bins')
    summary.add_argument('--csv', type=str, default=None, help='Also write the table to this CSV file')

    # matrix
    matrix = subparsers.add_parser('matrix', help='Write the total covariance (or correlation) matrix')
    matrix.add_argument('histogram', type=str, help='Histogram JSON file')
    matrix.add_argument('output', type=str, help='Output JSON file')
    matrix.add_argument('--correlation', action='store_true', help='Write the correlation matrix')
    matrix.add_argument('--frac', action='store_true', help='Fractional covariance')
    matrix.add_argument('--shape', action='store_true', help='Shape-only covariance')
    matrix.add_argument('--no-stat', action='store_true', help='Leave out statistical errors')
    matrix.add_argument('--source', type=str, default=None,
                        help='Write the matrix of a single error source instead of the total')

    # chi2
    chi2 = subparsers.add_parser('chi2', help='Chi-square between data and MC')
    chi2.add_argument('data', type=str, help='Data histogram JSON file')
    chi2.add_argument('mc', type=str, help='MC histogram JSON file')
    chi2.add_argument('--mc-scale', type=float, default=1.0, help='MC normalization (default: 1.0)')
    chi2.add_argument('--area-normalize', action='store_true',
                      help='Scale MC to the data area before comparing')
    chi2.add_argument('--shape', action='store_true', help='Use shape-only systematic errors')
    chi2.add_argument('--use-data-matrix', action='store_true',
                      help='Take the systematic covariance from data instead of MC')
    chi2.add_argument('--overflow-err', action='store_true',
                      help='Invert the covariance including flow bins')

    return parser.parse_args(argv)


def run_summary(args) -> int:
    hist = load_json(args.histogram)
    table = error_budget_table(hist, as_frac=args.frac, area_normalize=args.shape,
                               include_stat=not args.no_stat, include_flow=args.flow)

    with pd.option_context('display.max_rows', None, 'display.max_columns', None, 'display.width', 200):
        print(table.to_string(float_format=lambda v: f"{v:.6g}"))
    print()
    print(format_error_summary(hist, area_normalize=args.shape))

    if args.csv:
        table.to_csv(args.csv)
        if not args.quiet:
            logger.info(f"Error budget written to {args.csv}")
    return 0


def run_matrix(args) -> int:
    hist = load_json(args.histogram)

    if args.source is not None:
        if args.correlation:
            matrix = hist.get_sys_correlation_matrix(args.source, args.shape)
        else:
            matrix = hist.get_sys_error_matrix(args.source, args.frac, args.shape)
        name = args.source
    elif args.correlation:
        matrix = hist.get_total_correlation_matrix(args.shape)
        name = f"{hist.name}_total_correlation"
    else:
        matrix = hist.get_total_error_matrix(not args.no_stat, args.frac, args.shape)
        name = f"{hist.name}_total_covariance"

    write_matrix(name, matrix, args.output)
    if not args.quiet:
        logger.info(f"{name}: {matrix.shape[0]}x{matrix.shape[1]}, trace = {np.trace(matrix):.6g}")
    return 0


def run_chi2(args) -> int:
    data = load_json(args.data)
    mc = load_json(args.mc)

    mc_scale = args.mc_scale
    if args.area_normalize:
        mc_scale *= mc.get_area_norm_factor(data)

    result = chi2_data_mc(data, mc, mc_scale=mc_scale,
                          use_data_error_matrix=args.use_data_matrix,
                          use_only_shape_errors=args.shape,
                          use_overflow_err=args.overflow_err)

    print(f"chi2 / ndf = {result['chi_squared']:.4f} / {result['degrees_of_freedom']}")
    print(f"p-value    = {result['p_value']:.4g}")
    if not result['used_covariance']:
        print("(statistical errors only: covariance could not be inverted)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    if args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    commands = {
        'summary': run_summary,
        'matrix': run_matrix,
        'chi2': run_chi2,
    }

    try:
        return commands[args.command](args)
    except SerializationError as e:
        logger.error(f"{e}")
        return 1
    except ValueError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
