"""
bench_gate: Benchmark regression gate with two-pass confirmation.

Runs a benchmark harness against a baseline ("trunk") and a candidate
("branch"); a regression fails the gate only if the same benchmark regresses
again in an independent second measurement pass.

Modules:
- normalize: Terminal escape sequence stripping
- extract: Regressed benchmark names from a captured log
- harness: Harness execution and comparison data handling
- confirm: Detect-then-reconfirm orchestrator
- report: Exit codes, CI summaries, manifest
- config: Settings from flags, environment and defaults
- cli: Command-line interface

Usage:
    python3 -m bench_gate run \\
        --trunk-dir bench-folder-trunk \\
        --branch-dir bench-folder-branch
"""

from bench_gate.normalize import (
    strip_escapes,
    normalize_lines,
)

from bench_gate.extract import (
    extract_regressions,
    extract_with_anomalies,
    find_anomalies,
)

from bench_gate.harness import (
    BenchmarkRun,
    ComparisonStore,
    HarnessExecutionError,
    Variant,
    VariantSpec,
    run_harness,
)

from bench_gate.confirm import (
    ConfirmationResult,
    ConfirmedRegression,
    Fluke,
    GateState,
    NoRegression,
    RegressionGate,
    reconcile,
)

from bench_gate.report import (
    GateReport,
    report,
    report_harness_failure,
)

__all__ = [
    # normalize
    "strip_escapes",
    "normalize_lines",
    # extract
    "extract_regressions",
    "extract_with_anomalies",
    "find_anomalies",
    # harness
    "BenchmarkRun",
    "ComparisonStore",
    "HarnessExecutionError",
    "Variant",
    "VariantSpec",
    "run_harness",
    # confirm
    "ConfirmationResult",
    "ConfirmedRegression",
    "Fluke",
    "GateState",
    "NoRegression",
    "RegressionGate",
    "reconcile",
    # report
    "GateReport",
    "report",
    "report_harness_failure",
]
