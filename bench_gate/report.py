"""
report.py

Exit Reporter: maps the gate's outcome to a process exit code and a
human-readable message, and writes the CI-facing summaries.

Exit codes:
    0 = NO_REGRESSION (clean harness exit) or FLUKE (regression not reproduced)
    1 = CONFIRMED_REGRESSION (same benchmark regressed in both passes)
    2 = usage / configuration error
    3 = HARNESS_ERROR (harness could not run or complete), unless the
        harness exited with its own code >= 2, which is propagated as-is

Only 0 and 1 are performance verdicts. Every other code means the pipeline
itself is broken.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from bench_gate.confirm import (
    ConfirmationResult,
    ConfirmedRegression,
    Fluke,
    NoRegression,
    RegressionGate,
)
from bench_gate.harness import HarnessExecutionError


# =============================================================================
# Exit Code Constants
# =============================================================================

EXIT_PASS = 0             # NO_REGRESSION or FLUKE
EXIT_REGRESSION = 1       # CONFIRMED_REGRESSION
EXIT_CONFIG_ERROR = 2     # invalid arguments / configuration
EXIT_HARNESS_ERROR = 3    # harness could not run or complete

DECISION_HARNESS_ERROR = "HARNESS_ERROR"
DECISION_CONFIG_ERROR = "CONFIG_ERROR"

MANIFEST_NAME = "gate_manifest.json"


class GateReport(NamedTuple):
    """Exit code and message for one gate invocation."""
    exit_code: int
    message: str


# =============================================================================
# Reporting
# =============================================================================

def report(result: ConfirmationResult) -> GateReport:
    """
    Map a ConfirmationResult to its exit code and message.

    Args:
        result: NoRegression, ConfirmedRegression or Fluke

    Returns:
        GateReport

    Raises:
        TypeError: For an unknown result type
    """
    if isinstance(result, NoRegression):
        return GateReport(
            exit_code=result.harness_exit_code,
            message=f"Benchmark execution finished with exit code: {result.harness_exit_code}.",
        )
    if isinstance(result, ConfirmedRegression):
        names = "\n".join(f"  {name}" for name in sorted(result.names))
        return GateReport(
            exit_code=EXIT_REGRESSION,
            message=(
                "Benchmarks were run twice and a regression was detected both times "
                "for the following benchmarks:\n" + names
            ),
        )
    if isinstance(result, Fluke):
        return GateReport(
            exit_code=EXIT_PASS,
            message=(
                "Benchmarks were run twice and a regression was detected on one run. "
                "We assume this was a fluke."
            ),
        )
    raise TypeError(f"Unknown confirmation result: {result!r}")


def harness_failure_exit_code(returncode: Optional[int]) -> int:
    """
    Exit code for a harness failure.

    The harness's own code is propagated when it cannot be mistaken for a
    verdict (>= 2). A process that never started, was killed by a signal, or
    exited with 0/1 maps to EXIT_HARNESS_ERROR.
    """
    if returncode is None or returncode < 2:
        return EXIT_HARNESS_ERROR
    return returncode


def report_harness_failure(error: HarnessExecutionError) -> GateReport:
    """Map a HarnessExecutionError to a distinct, non-verdict exit code."""
    where = []
    if error.variant is not None:
        where.append(f"variant: {error.variant.value}")
    if error.pass_number is not None:
        where.append(f"pass: {error.pass_number}")
    context = f" ({', '.join(where)})" if where else ""
    return GateReport(
        exit_code=harness_failure_exit_code(error.returncode),
        message=(
            f"Benchmark harness failed{context}: {error}\n"
            f"This is a pipeline failure, not a performance result."
        ),
    )


def get_exit_code_description() -> str:
    """Human-readable exit code documentation."""
    return """Exit codes:
    0 = NO_REGRESSION or FLUKE (pass)
    1 = CONFIRMED_REGRESSION (fail)
    2 = usage / configuration error
    3 = HARNESS_ERROR (or the harness's own exit code when >= 2)"""


# =============================================================================
# Manifest
# =============================================================================

def _get_git_commit(cwd: Optional[Path] = None) -> Optional[str]:
    """Get the current git commit hash, or None if not in a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass
    return None


@dataclass
class GateManifest:
    """
    Audit record of one gate invocation, written as gate_manifest.json.
    """
    decision: str  # NO_REGRESSION, CONFIRMED_REGRESSION, FLUKE, HARNESS_ERROR
    exit_code: int
    message: str
    out_dir: str
    timestamp: str
    confirmed: List[str] = field(default_factory=list)
    first_pass: List[str] = field(default_factory=list)
    second_pass: Optional[List[str]] = None
    states: List[str] = field(default_factory=list)
    passes: List[Dict[str, Any]] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)
    git_commit: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "schema_version": 1,
            "decision": self.decision,
            "exit_code": self.exit_code,
            "message": self.message,
            "out_dir": self.out_dir,
            "timestamp": self.timestamp,
            "confirmed": self.confirmed,
            "first_pass": self.first_pass,
            "second_pass": self.second_pass,
            "states": self.states,
            "passes": self.passes,
            "config": self.config,
            "git_commit": self.git_commit,
            "errors": self.errors,
        }


def build_manifest(
    gate: RegressionGate,
    gate_report: GateReport,
    result: Optional[ConfirmationResult] = None,
    error: Optional[Exception] = None,
    config: Optional[Dict[str, Any]] = None,
) -> GateManifest:
    """
    Collect the gate's pass records and outcome into a manifest.

    Exactly one of ``result`` / ``error`` is expected.
    """
    if result is not None:
        decision = result.decision
    else:
        decision = DECISION_HARNESS_ERROR

    first_pass: List[str] = []
    second_pass: Optional[List[str]] = None
    for record in gate.passes:
        if record.pass_number == 1:
            first_pass = sorted(record.regressions)
        elif record.pass_number == 2:
            second_pass = sorted(record.regressions)

    confirmed: List[str] = []
    if isinstance(result, ConfirmedRegression):
        confirmed = sorted(result.names)

    return GateManifest(
        decision=decision,
        exit_code=gate_report.exit_code,
        message=gate_report.message,
        out_dir=str(gate.out_dir),
        timestamp=datetime.now(timezone.utc).isoformat(),
        confirmed=confirmed,
        first_pass=first_pass,
        second_pass=second_pass,
        states=[state.value for state in gate.history],
        passes=[record.to_dict() for record in gate.passes],
        config=dict(config or {}),
        git_commit=_get_git_commit(gate.candidate.workdir),
        errors=[str(error)] if error is not None else [],
    )


def write_manifest(out_dir: Path, manifest: GateManifest) -> Path:
    """Write the gate manifest to the output directory."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    manifest_path = out_dir / MANIFEST_NAME
    with open(manifest_path, "w") as f:
        json.dump(manifest.to_dict(), f, indent=2, sort_keys=True)
        f.write("\n")
    return manifest_path


# =============================================================================
# CI Output
# =============================================================================

def print_ci_summary(manifest: GateManifest) -> None:
    """Print the final decision banner."""
    decision = manifest.decision
    marker = "!!!!!!" if manifest.exit_code != 0 else ">>>>>>"

    print()
    print("=" * 70)
    print("Benchmark Regression Gate Summary")
    print("=" * 70)
    print(f"  Decision: {decision}")
    print(f"  Exit Code: {manifest.exit_code}")
    print()

    if decision == ConfirmedRegression.decision:
        print(f"------<<<<<<{marker}------")
        print(manifest.message)
        print(f"------<<<<<<{marker}------")
    elif decision == DECISION_HARNESS_ERROR:
        print(f"  ✗ {manifest.message}")
    else:
        print(f"  {manifest.message}")

    print()
    print(f"  Manifest: {Path(manifest.out_dir) / MANIFEST_NAME}")
    print("=" * 70)


def write_github_step_summary(manifest: GateManifest) -> None:
    """
    Write a GitHub Actions step summary if running in GitHub Actions.

    Writes to $GITHUB_STEP_SUMMARY if available.
    """
    summary_file = os.environ.get("GITHUB_STEP_SUMMARY")
    if not summary_file:
        return

    decision = manifest.decision
    if decision == ConfirmedRegression.decision:
        status = "❌ CI FAIL"
    elif decision in (NoRegression.decision, Fluke.decision) and manifest.exit_code == 0:
        status = "✅ CI PASS"
    else:
        status = "❌ CI ERROR"

    second = ", ".join(manifest.second_pass) if manifest.second_pass is not None else "(not run)"
    summary = f"""## Benchmark Regression Gate

| Field | Value |
|-------|-------|
| **Status** | {status} |
| **Decision** | `{decision}` |
| **Exit Code** | `{manifest.exit_code}` (0=PASS/FLUKE, 1=REGRESSION, 3=HARNESS ERROR) |
| **First pass** | {", ".join(manifest.first_pass) or "(none)"} |
| **Second pass** | {second or "(none)"} |
| **Confirmed** | {", ".join(manifest.confirmed) or "(none)"} |

### Details

{manifest.message}

---
*Generated by bench_gate*
"""

    try:
        with open(summary_file, "a") as f:
            f.write(summary)
    except OSError as e:
        print(f"WARNING: Failed to write GitHub step summary: {e}", file=sys.stderr)
