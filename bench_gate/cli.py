#!/usr/bin/env python3
"""
cli.py

CLI for the benchmark regression gate.

Usage:
    # Full two-pass gate (default layout: bench-folder-trunk / bench-folder-branch)
    python3 -m bench_gate run

    # Explicit layout
    python3 -m bench_gate run \\
        --trunk-dir bench-folder-trunk \\
        --branch-dir bench-folder-branch \\
        --harness target/release/deps/time_bench \\
        --harness-arg=--bench \\
        --data-dir target/criterion

    # Regressed benchmarks of an existing captured log
    python3 -m bench_gate extract bench-folder-branch/bench_log_1.txt

    # Apply the reconfirmation rule to two name lists
    python3 -m bench_gate reconcile slow_benches_1.txt slow_benches_2.txt

Exit codes:
    0 = NO_REGRESSION or FLUKE (pass)
    1 = CONFIRMED_REGRESSION (fail)
    2 = usage / configuration error
    3 = HARNESS_ERROR (or the harness's own exit code when >= 2)
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from bench_gate.config import ConfigError, load_config
from bench_gate.confirm import RegressionGate, reconcile
from bench_gate.extract import (
    DEFAULT_LOOKBACK,
    DEFAULT_MARKER,
    extract_regressions,
    read_log,
    read_regression_set,
    write_regression_set,
)
from bench_gate.harness import HarnessExecutionError
from bench_gate.report import (
    EXIT_CONFIG_ERROR,
    build_manifest,
    get_exit_code_description,
    print_ci_summary,
    report,
    report_harness_failure,
    write_github_step_summary,
    write_manifest,
)


# =============================================================================
# Command: run
# =============================================================================

def cmd_run(args: argparse.Namespace) -> int:
    """Run the full detect-then-reconfirm gate."""
    verbose = not args.quiet

    try:
        config = load_config(
            trunk_dir=args.trunk_dir,
            branch_dir=args.branch_dir,
            harness=args.harness,
            harness_args=args.harness_args,
            data_subdir=args.data_dir,
            out_dir=args.out_dir,
            marker=args.marker,
            lookback=args.lookback,
            raise_stack_limit=args.raise_stack_limit,
        )
        config.validate()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if verbose:
        print("=" * 70)
        print("Benchmark Regression Gate")
        print("=" * 70)
        print(f"  Trunk: {config.trunk_dir}")
        print(f"  Branch: {config.branch_dir}")
        print(f"  Harness: {config.harness} {' '.join(config.harness_args)}")
        print(f"  Comparison data: {config.data_subdir}")
        print(f"  Output: {config.out_dir}")
        print()

    gate = RegressionGate.from_config(config, verbose=verbose)

    result = None
    error: Optional[HarnessExecutionError] = None
    try:
        result = gate.run()
        gate_report = report(result)
    except HarnessExecutionError as e:
        error = e
        print(f"ERROR: {e}", file=sys.stderr)
        gate_report = report_harness_failure(e)
    except OSError as e:
        error = HarnessExecutionError(f"Gate I/O failure: {e}")
        print(f"ERROR: {error}", file=sys.stderr)
        gate_report = report_harness_failure(error)

    manifest = build_manifest(
        gate,
        gate_report,
        result=result,
        error=error,
        config=config.to_dict(),
    )
    try:
        write_manifest(config.out_dir, manifest)
    except OSError as e:
        print(f"WARNING: Failed to write gate manifest: {e}", file=sys.stderr)

    if verbose:
        print_ci_summary(manifest)
    else:
        print(gate_report.message)

    write_github_step_summary(manifest)

    return gate_report.exit_code


# =============================================================================
# Command: extract
# =============================================================================

def cmd_extract(args: argparse.Namespace) -> int:
    """Print the regressed benchmarks of a captured log."""
    try:
        lines = read_log(args.log)
    except OSError as e:
        print(f"ERROR: Cannot read log {args.log}: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        names = extract_regressions(
            lines,
            marker=args.marker,
            lookback=args.lookback,
        )
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    for name in sorted(names):
        print(name)

    if args.output is not None:
        try:
            write_regression_set(args.output, names)
        except OSError as e:
            print(f"ERROR: Cannot write {args.output}: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
    return 0


# =============================================================================
# Command: reconcile
# =============================================================================

def cmd_reconcile(args: argparse.Namespace) -> int:
    """Apply the reconfirmation rule to two regression name lists."""
    try:
        first = read_regression_set(args.first)
        second = read_regression_set(args.second)
    except OSError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    gate_report = report(reconcile(first, second))
    print(gate_report.message)
    return gate_report.exit_code


# =============================================================================
# Main
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="python3 -m bench_gate",
        description="Benchmark regression gate: detect, reconfirm, decide.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Commands:
  run        Benchmark trunk and branch, reconfirm any regression, decide
  extract    Print the regressed benchmarks found in a captured log
  reconcile  Decide from two regression name lists (slow_benches_*.txt)

Environment (used when the matching flag is not given):
  BENCH_GATE_TRUNK_DIR, BENCH_GATE_BRANCH_DIR, BENCH_GATE_HARNESS,
  BENCH_GATE_HARNESS_ARGS, BENCH_GATE_DATA_DIR, BENCH_GATE_OUT_DIR,
  BENCH_GATE_LOOKBACK, BENCH_GATE_MARKER, BENCH_GATE_RAISE_STACK_LIMIT

{get_exit_code_description()}
""",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    def add_parse_args(p: argparse.ArgumentParser, use_defaults: bool) -> None:
        p.add_argument(
            "--marker",
            type=str,
            default=DEFAULT_MARKER if use_defaults else None,
            help=f"Literal text announcing a regression (default: {DEFAULT_MARKER})",
        )
        p.add_argument(
            "--lookback",
            type=int,
            default=DEFAULT_LOOKBACK if use_defaults else None,
            help=f"Lines before the marker searched for the benchmark name (default: {DEFAULT_LOOKBACK})",
        )
        p.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress progress output (warnings are always printed)",
        )

    # Command: run
    run_parser = subparsers.add_parser(
        "run",
        help="Run the two-pass regression gate",
        description="Benchmark trunk and branch; if the branch regressed, "
                    "clear comparison data and measure both again.",
    )
    run_parser.add_argument("--trunk-dir", type=Path, default=None,
                            help="Baseline checkout (default: bench-folder-trunk)")
    run_parser.add_argument("--branch-dir", type=Path, default=None,
                            help="Candidate checkout (default: bench-folder-branch)")
    run_parser.add_argument("--harness", type=Path, default=None,
                            help="Harness executable, relative to each checkout "
                                 "(default: target/release/deps/time_bench)")
    run_parser.add_argument("--harness-arg", dest="harness_args", action="append", default=None,
                            help="Argument passed to the harness, repeatable; "
                                 "use --harness-arg=--bench form (default: --bench)")
    run_parser.add_argument("--data-dir", type=Path, default=None,
                            help="Comparison data directory, relative to each checkout "
                                 "(default: target/criterion)")
    run_parser.add_argument("--out-dir", type=Path, default=None,
                            help="Where logs, name lists and the manifest are written "
                                 "(default: branch checkout)")
    run_parser.add_argument("--no-raise-stack-limit", dest="raise_stack_limit",
                            action="store_const", const=False, default=None,
                            help="Do not raise the harness stack limit")
    add_parse_args(run_parser, use_defaults=False)

    # Command: extract
    extract_parser = subparsers.add_parser(
        "extract",
        help="Extract regressed benchmarks from a log",
        description="Print regressed benchmark names found in a captured harness log.",
    )
    extract_parser.add_argument("log", type=Path, help="Captured log file")
    extract_parser.add_argument("--output", "-o", type=Path, default=None,
                                help="Also write the names, one per line, to this file")
    add_parse_args(extract_parser, use_defaults=True)

    # Command: reconcile
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Decide from two regression name lists",
        description="Apply the reconfirmation rule to the name lists of two passes.",
    )
    reconcile_parser.add_argument("first", type=Path, help="First pass names (slow_benches_1.txt)")
    reconcile_parser.add_argument("second", type=Path, help="Second pass names (slow_benches_2.txt)")

    args = parser.parse_args(argv)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "extract":
        return cmd_extract(args)
    elif args.command == "reconcile":
        return cmd_reconcile(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
