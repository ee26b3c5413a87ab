"""
Command-line entry point.

Usage:
    python -m arvis
    python -m arvis --analysis study1
    python -m arvis --list
    python -m arvis --config my_config.json --data-dir data/raw --seed 7
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import load_config
from .suite import ANALYSES, list_analyses, run


if sys.platform.startswith("win") and hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ARVIS Scale Development Suite")
    parser.add_argument('--analysis', '-a', type=str, default=None, choices=sorted(ANALYSES),
                        help="Specific analysis to run")
    parser.add_argument('--list', '-l', action='store_true',
                        help="List available analyses")
    parser.add_argument('--quiet', '-q', action='store_true',
                        help="Suppress output")
    parser.add_argument('--config', type=Path, default=None,
                        help="JSON file overriding pipeline settings")
    parser.add_argument('--data-dir', type=Path, default=None,
                        help="Directory holding the input CSV files")
    parser.add_argument('--output-dir', type=Path, default=None,
                        help="Directory for result tables")
    parser.add_argument('--seed', type=int, default=None,
                        help="Random seed for parallel analysis")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.list:
        list_analyses()
        return 0

    config = load_config(args.config, data_dir=args.data_dir, output_dir=args.output_dir, seed=args.seed)
    run(analysis=args.analysis, config=config, verbose=not args.quiet)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
