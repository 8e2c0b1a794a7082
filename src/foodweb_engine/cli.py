# src/foodweb_engine/cli.py
"""Command line driver for chain and web sweeps.

Run with: python -m foodweb_engine {chain,web} [options]

Options left out on the command line keep the configuration defaults.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from typing import Any

import numpy as np

from . import __version__
from .config import REGIMES, load_chain_config, load_web_config
from .errors import ConfigurationError, SweepWorkerError
from .sweep import run_chain_sweep, run_web_sweep

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# option dest -> config field
_RENAMES = {"noC": "n_workers"}


def parse_qrange(text: str) -> tuple[float, ...]:
    """Parse ``"q1,q2,..."`` or ``"start:stop:num"`` (inclusive linspace)."""
    text = text.strip()
    try:
        if ":" in text:
            start, stop, num = text.split(":")
            return tuple(np.linspace(float(start), float(stop), int(num)).tolist())
        return tuple(float(part) for part in text.split(",") if part.strip())
    except ValueError as exc:
        msg = f"invalid qrange {text!r}: expected 'q1,q2,...' or 'start:stop:num'"
        raise argparse.ArgumentTypeError(msg) from exc


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--qrange", type=parse_qrange,
                        help="Sweep points as 'q1,q2,...' or 'start:stop:num'")
    parser.add_argument("--steplength", type=float, help="Nominal output step size")
    parser.add_argument("--output-path", dest="output_path",
                        help="Directory receiving the output tables")
    parser.add_argument("--noC", type=int, help="Number of worker processes")
    parser.add_argument("--seed", type=int, help="Seed for reproducible sweeps")
    parser.add_argument("--method", choices=["euler", "heun", "cash-karp", "rk45", "dop853"],
                        help="Integration method")
    parser.add_argument("--rtol", type=float, help="Relative solver tolerance")
    parser.add_argument("--atol", type=float, help="Absolute solver tolerance")
    parser.add_argument("-a", type=float, help="Allometric constant")
    parser.add_argument("-b", type=float, help="Allometric exponent")
    parser.add_argument("-e", type=float, help="Assimilation efficiency")
    parser.add_argument("-y", type=float, help="Relative maximum feeding rate")
    parser.add_argument("--N0", type=float, help="Half-saturation density")
    parser.add_argument("--no-write", dest="write", action="store_false",
                        help="Run the sweep without writing CSV tables")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="foodweb-engine",
        description="Sweep the functional-response shaping exponent q of "
        "food-chain and food-web models",
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", default=False,
                           help="Log per-q progress")
    verbosity.add_argument("--quiet", action="store_true", default=False,
                           help="Only log errors")

    sub = parser.add_subparsers(dest="command", required=True)

    chain = sub.add_parser("chain", help="Bifurcation sweep of the 3-species chain",
                           argument_default=argparse.SUPPRESS)
    _add_common(chain)
    chain.add_argument("--ts-length", dest="ts_length", type=float,
                       help="Simulated time per q-value")
    chain.add_argument("--analyze-ts", dest="analyze_ts", type=float,
                       help="Trailing share of the time series analyzed, in (0, 1]")
    chain.add_argument("--unique-out", dest="unique_out",
                       action=argparse.BooleanOptionalAction,
                       help="Drop repeated extrema")
    chain.add_argument("--record-substeps", dest="record_substeps",
                       action=argparse.BooleanOptionalAction,
                       help="Search extrema on adaptive substeps too (default: on)")
    chain.add_argument("--max-out", dest="max_out", type=int,
                       help="Cap on extrema per species and q-value (0: no cap)")
    chain.add_argument("-R", type=float, help="Consumer:resource body-mass ratio")

    web = sub.add_parser("web", help="Diversity sweep of the 10-species web",
                         argument_default=argparse.SUPPRESS)
    _add_common(web)
    web.add_argument("--regime", choices=sorted(REGIMES),
                     help="Interaction strength preset (sets y and the output file)")
    web.add_argument("--ts-runs", dest="ts_runs", type=int,
                     help="Number of resumed segments")
    web.add_argument("--ts-run-length", dest="ts_run_length", type=float,
                     help="Simulated time per segment")
    web.add_argument("--Rrange", nargs=2, type=float, metavar=("MIN", "MAX"),
                     help="Body-mass ratio range between trophic levels")
    web.add_argument("--output-filename", dest="output_filename",
                     help="Name of the diversity table")
    return parser


def configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Route library logs and warnings to stderr."""
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.captureWarnings(True)


def _options(ns: argparse.Namespace) -> dict[str, Any]:
    skip = {"command", "verbose", "quiet", "write", "regime"}
    return {_RENAMES.get(k, k): v for k, v in vars(ns).items() if k not in skip}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line driver.

    Returns:
        Exit code: 0 on success, 2 for configuration errors, 1 for failed sweeps.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    options = _options(args)
    write = getattr(args, "write", True)
    try:
        if args.command == "chain":
            config = load_chain_config(options)
            tables = run_chain_sweep(config, write=write)
            logger.info("Extrema per species: %s", {k: len(v) for k, v in tables.items()})
        else:
            regime = getattr(args, "regime", None)
            if regime is not None:
                y, filename = REGIMES[regime]
                options = {"y": y, "output_filename": filename, **options}
            config = load_web_config(options)
            table = run_web_sweep(config, write=write)
            logger.info("Diversity rows: %d", len(table))
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2
    except SweepWorkerError as exc:
        logger.error("Sweep aborted: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
