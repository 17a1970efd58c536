"""
Command-line interface for stackreject.

Usage:
    python -m stackreject stack <frames or folder> [options]
    stackreject stack <frames or folder> [options]
    stackreject critical --frames 22 --alpha 0.05 --fraction 0.3

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from .cli_output import (
    Colors,
    RunProgress,
    Symbols,
    print_error,
    print_header,
    print_metric,
    setup_terminal,
)
from .config import RejectionConfig, RejectionMethod, StackConfig, StackResult
from .critical import gesdt_budget, gesdt_critical_values
from .io import list_frames, read_fits, read_header, write_fits
from .report import write_all_reports
from .stack import stack_mean_with_rejection
from .utils import (
    format_duration,
    get_platform_info,
    get_timestamp_iso,
    get_version,
)

logger = logging.getLogger(__name__)

# Thresholds used when --low/--high are not given
DEFAULT_THRESHOLDS = {
    RejectionMethod.NONE: (0.0, 0.0),
    RejectionMethod.PERCENTILE: (0.2, 0.1),
    RejectionMethod.SIGMA: (4.0, 3.0),
    RejectionMethod.SIGMEDIAN: (4.0, 3.0),
    RejectionMethod.WINSORIZED: (4.0, 3.0),
    RejectionMethod.LINEARFIT: (5.0, 5.0),
    RejectionMethod.GESDT: (0.3, 0.05),
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def resolve_inputs(inputs: list[str]) -> list[Path]:
    """
    Expand command-line inputs into a list of FITS files.

    Parameters
    ----------
    inputs : list[str]
        FITS file paths, or a single folder of FITS files.

    Returns
    -------
    list[Path]
        Frame paths in the given (or sorted folder) order.
    """
    if len(inputs) == 1 and Path(inputs[0]).is_dir():
        return list_frames(inputs[0])

    paths = []
    for item in inputs:
        path = Path(item)
        if path.is_file():
            paths.append(path)
        else:
            logger.warning("Frame not found: %s", item)
    return paths


def run_stack(
    inputs: list[str | Path],
    output_dir: str | Path = "stacked",
    config: StackConfig | None = None,
    quiet: bool = False,
    write_reports: bool = True,
) -> StackResult:
    """
    Stack FITS frames with pixel rejection and write the master.

    Parameters
    ----------
    inputs : list of str or Path
        Aligned FITS frames.
    output_dir : str or Path, default "stacked"
        Directory receiving master.fits and the reports.
    config : StackConfig, optional
        Configuration. Uses defaults if not provided.
    quiet : bool, default False
        If True, suppress colored output (use logging only).
    write_reports : bool, default True
        Write run_manifest.json, report.json and report.md.

    Returns
    -------
    StackResult
        Record of the run, with output paths and rejection statistics.
    """
    start_time = time.time()
    logger.info("stackreject %s on %s", get_version(), get_platform_info())
    output_dir = Path(output_dir).resolve()

    if config is None:
        config = StackConfig()
    config.validate()

    paths = [Path(p) for p in inputs]
    if len(paths) < 2:
        raise ValueError(f"At least 2 frames are required for stacking, got {len(paths)}")

    if not quiet:
        setup_terminal()
        print_header(f"stackreject {get_version()}: stacking {len(paths)} frames")
        print_metric("Rejection", config.rejection.method.value)
        print_metric("Thresholds", f"low={config.rejection.low:g}, high={config.rejection.high:g}")
        print_metric("Workers", config.workers if config.workers is not None else "auto")

    progress = RunProgress(total_stages=3, quiet=quiet)

    # Stage 1: load
    progress.start_stage(1, "Loading frames")
    frames = [read_fits(p) for p in paths]
    header = read_header(paths[0])
    progress.update_detail(f"Read {len(frames)} frames of shape {frames[0].shape}")
    progress.complete_stage()

    # Stage 2: stack
    progress.start_stage(2, "Stacking with rejection")
    outcome = stack_mean_with_rejection(frames, config)
    for channel, (low, high) in enumerate(outcome.rejection_fractions()):
        progress.update_detail(
            f"Channel #{channel}: {100 * low:.3f}% low, {100 * high:.3f}% high rejected"
        )
    progress.complete_stage()

    # Stage 3: write
    progress.start_stage(3, "Writing outputs")
    # Master is float32, input scaling no longer applies
    for key in ("BZERO", "BSCALE"):
        header.remove(key, ignore_missing=True)
    header["NCOMBINE"] = (outcome.n_frames, "Number of stacked frames")
    header["REJMETH"] = (outcome.method.value, "Pixel rejection method")
    header["REJLOW"] = (config.rejection.low, "Low rejection threshold")
    header["REJHIGH"] = (config.rejection.high, "High rejection threshold")
    master_path = output_dir / "master.fits"
    write_fits(master_path, outcome.image, header=header, overwrite=True)
    progress.update_detail(f"FITS: {master_path.name}")

    result = StackResult(
        inputs=[str(p) for p in paths],
        n_frames=outcome.n_frames,
        shape=tuple(outcome.image.shape),
        rejected_low=[c.low for c in outcome.counters],
        rejected_high=[c.high for c in outcome.counters],
        outputs={"master": str(master_path)},
        stats=outcome.statistics(),
        config=config,
        version=get_version(),
        timestamp=get_timestamp_iso(),
        platform=get_platform_info(),
    )
    result.stats["duration_s"] = time.time() - start_time

    if write_reports:
        reports = write_all_reports(result, output_dir)
        for name, path in reports.items():
            result.outputs[f"report_{name}"] = str(path)
            progress.update_detail(f"Report: {path.name}")
    progress.complete_stage()

    if not quiet:
        totals = outcome.total_counters
        print_header(f"{Symbols.CHECK} Stacking complete")
        print_metric("Frames", outcome.n_frames)
        print_metric("Rejected low/high", f"{totals.low} / {totals.high}")
        print_metric("Master", master_path)
        print_metric("Time", format_duration(result.stats["duration_s"]))

    return result


def print_critical_table(nb_frames: int, alpha: float, fraction: float) -> int:
    """Print the GESDT critical values for a stack size; returns an exit code."""
    budget = gesdt_budget(nb_frames, fraction)
    if budget == 0:
        print_error(f"No GESDT iteration for {nb_frames} frames with outlier fraction {fraction:g}")
        return 1

    critical = gesdt_critical_values(nb_frames, alpha, budget)
    print_header(f"GESDT critical values: {nb_frames} frames, alpha={alpha:g}")
    print(f"{'iter':>6}  {'size':>6}  {'lambda':>10}")
    print("-" * 26)
    for i, value in enumerate(critical):
        print(f"{i + 1:>6}  {nb_frames - i:>6}  {Colors.VALUE}{value:>10.4f}{Colors.RESET}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="stackreject",
        description="Mean stacking of aligned FITS frames with per-pixel outlier rejection",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"stackreject {get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Stack command
    stack_parser = subparsers.add_parser(
        "stack",
        help="Stack aligned FITS frames",
    )
    stack_parser.add_argument(
        "inputs",
        nargs="+",
        help="FITS frames, or a folder containing them",
    )
    stack_parser.add_argument(
        "--out",
        type=str,
        default="stacked",
        help="Output directory (default: stacked)",
    )
    stack_parser.add_argument(
        "--method",
        choices=[m.value for m in RejectionMethod],
        default=RejectionMethod.WINSORIZED.value,
        help="Pixel rejection method (default: winsorized)",
    )
    stack_parser.add_argument(
        "--low",
        type=float,
        default=None,
        help="Low threshold: sigma multiplier, percentile fraction or GESDT outlier fraction",
    )
    stack_parser.add_argument(
        "--high",
        type=float,
        default=None,
        help="High threshold: sigma multiplier, percentile fraction or GESDT significance",
    )
    stack_parser.add_argument(
        "--chunk-rows",
        type=int,
        default=64,
        help="Rows processed per work unit (default: 64)",
    )
    stack_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker processes (default: CPU count - 1)",
    )
    stack_parser.add_argument(
        "--no-report",
        action="store_true",
        help="Do not write JSON/Markdown reports",
    )
    stack_parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress colored output",
    )
    stack_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    # Critical values command
    critical_parser = subparsers.add_parser(
        "critical",
        help="Print the GESDT critical-value table for a stack size",
    )
    critical_parser.add_argument(
        "--frames",
        type=int,
        required=True,
        help="Number of frames in the stack",
    )
    critical_parser.add_argument(
        "--alpha",
        type=float,
        default=0.05,
        help="Significance level (default: 0.05)",
    )
    critical_parser.add_argument(
        "--fraction",
        type=float,
        default=0.3,
        help="Expected fraction of outliers (default: 0.3)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "stack":
        setup_logging(args.verbose)

        method = RejectionMethod(args.method)
        default_low, default_high = DEFAULT_THRESHOLDS[method]
        config = StackConfig(
            rejection=RejectionConfig(
                method=method,
                low=args.low if args.low is not None else default_low,
                high=args.high if args.high is not None else default_high,
            ),
            chunk_rows=args.chunk_rows,
            workers=args.workers,
            show_progress=not args.quiet,
        )

        try:
            paths = resolve_inputs(args.inputs)
            run_stack(
                paths,
                output_dir=args.out,
                config=config,
                quiet=args.quiet,
                write_reports=not args.no_report,
            )
            return 0

        except Exception as e:
            print_error(f"Stacking failed: {e}")
            logger.exception("Stacking failed: %s", e)
            return 1

    elif args.command == "critical":
        setup_terminal()
        try:
            return print_critical_table(args.frames, args.alpha, args.fraction)
        except ValueError as e:
            print_error(str(e))
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
