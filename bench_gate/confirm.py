"""
confirm.py

Confirmation Orchestrator: the two-pass detect-then-reconfirm protocol.

A single regressed measurement is not trusted; timing is noisy (thermal
throttling, scheduler jitter, background load). A regression only counts when
the same benchmark regresses in two independent, full measurement cycles.

State machine:

    IDLE -> FIRST_PASS -> NO_REGRESSION -> TERMINAL
                       -> RECONFIRM     -> TERMINAL

- FIRST_PASS: measure baseline, publish its comparison data, measure the
  candidate with a captured log, extract set_1
- NO_REGRESSION: set_1 is empty
- RECONFIRM: set_1 is non-empty; comparison data is reset (and verified
  empty) before the baseline and candidate are measured again, giving set_2
- TERMINAL: reconcile(set_1, set_2)
    - set_2 empty            -> Fluke(set_1)
    - set_1 & set_2 nonempty -> ConfirmedRegression(set_1 & set_2)
    - disjoint               -> Fluke(set_1)

Any harness failure, in either pass, raises HarnessExecutionError and ends
the protocol. Nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from bench_gate.config import GateConfig
from bench_gate.extract import (
    DEFAULT_LOOKBACK,
    DEFAULT_MARKER,
    extract_with_anomalies,
    write_regression_set,
)
from bench_gate.harness import (
    BenchmarkRun,
    ComparisonStore,
    ComparisonStoreError,
    HarnessExecutionError,
    VariantSpec,
    locate_harness,
    run_harness,
)


# =============================================================================
# Enums
# =============================================================================

class GateState(Enum):
    """States of the confirmation protocol."""
    IDLE = "idle"
    FIRST_PASS = "first_pass"
    NO_REGRESSION = "no_regression"
    RECONFIRM = "reconfirm"
    TERMINAL = "terminal"


# =============================================================================
# Confirmation Results
# =============================================================================

@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of one gate invocation. Exactly one variant is produced."""
    decision = "UNKNOWN"


@dataclass(frozen=True)
class NoRegression(ConfirmationResult):
    """No benchmark regressed in the first pass."""
    harness_exit_code: int = 0
    decision = "NO_REGRESSION"


@dataclass(frozen=True)
class ConfirmedRegression(ConfirmationResult):
    """The same benchmarks regressed in both passes."""
    names: FrozenSet[str] = frozenset()
    decision = "CONFIRMED_REGRESSION"

    def __post_init__(self):
        object.__setattr__(self, "names", frozenset(self.names))


@dataclass(frozen=True)
class Fluke(ConfirmationResult):
    """
    A regression seen in the first pass that did not reproduce.

    ``second_pass_names`` is kept for the audit trail only.
    """
    first_pass_names: FrozenSet[str] = frozenset()
    second_pass_names: FrozenSet[str] = frozenset()
    decision = "FLUKE"

    def __post_init__(self):
        object.__setattr__(self, "first_pass_names", frozenset(self.first_pass_names))
        object.__setattr__(self, "second_pass_names", frozenset(self.second_pass_names))


def reconcile(first: Iterable[str], second: Iterable[str]) -> ConfirmationResult:
    """
    Decide the outcome from the regression sets of two passes.

    An empty first pass means there was nothing to reconfirm, which is
    NoRegression with a clean harness exit.

    Args:
        first: Regressed names from the first pass
        second: Regressed names from the reconfirmation pass

    Returns:
        NoRegression, ConfirmedRegression or Fluke
    """
    first = frozenset(first)
    second = frozenset(second)

    if not first:
        return NoRegression(harness_exit_code=0)
    if not second:
        return Fluke(first_pass_names=first, second_pass_names=second)

    common = first & second
    if common:
        return ConfirmedRegression(names=common)
    return Fluke(first_pass_names=first, second_pass_names=second)


# =============================================================================
# Pass Records
# =============================================================================

@dataclass
class PassRecord:
    """Audit record of one measurement pass."""
    pass_number: int
    regressions: FrozenSet[str]
    candidate_exit_code: int
    log_path: Optional[Path] = None
    names_path: Optional[Path] = None
    baseline_duration_sec: float = 0.0
    candidate_duration_sec: float = 0.0
    anomalies: List[int] = field(default_factory=list)  # 1-based log lines

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "pass_number": self.pass_number,
            "regressions": sorted(self.regressions),
            "anomalies": list(self.anomalies),
            "candidate_exit_code": self.candidate_exit_code,
            "log_path": str(self.log_path) if self.log_path else None,
            "names_path": str(self.names_path) if self.names_path else None,
            "baseline_duration_sec": round(self.baseline_duration_sec, 3),
            "candidate_duration_sec": round(self.candidate_duration_sec, 3),
        }


# =============================================================================
# Orchestrator
# =============================================================================

Runner = Callable[..., BenchmarkRun]

PASS_NUMBERS = (1, 2)


class RegressionGate:
    """
    Drives the confirmation protocol for one gate invocation.

    Instances are single-use: ``run()`` may be called once. The harness
    runner is injectable; it must accept the keyword arguments of
    :func:`bench_gate.harness.run_harness`.
    """

    def __init__(
        self,
        baseline: VariantSpec,
        candidate: VariantSpec,
        out_dir: Path,
        store: Optional[ComparisonStore] = None,
        marker: str = DEFAULT_MARKER,
        lookback: int = DEFAULT_LOOKBACK,
        raise_stack_limit: bool = True,
        runner: Optional[Runner] = None,
        verbose: bool = True,
    ):
        self.baseline = baseline
        self.candidate = candidate
        self.out_dir = Path(out_dir)
        self.store = store if store is not None else ComparisonStore.for_variants(baseline, candidate)
        self.marker = marker
        self.lookback = lookback
        self.raise_stack_limit = raise_stack_limit
        self.runner = runner if runner is not None else run_harness
        self.verbose = verbose

        self.state = GateState.IDLE
        self.history: List[GateState] = [GateState.IDLE]
        self.passes: List[PassRecord] = []
        self.result: Optional[ConfirmationResult] = None

    @classmethod
    def from_config(
        cls,
        config: GateConfig,
        runner: Optional[Runner] = None,
        verbose: bool = True,
    ) -> "RegressionGate":
        """Build a gate from a resolved GateConfig."""
        baseline = config.baseline_spec()
        candidate = config.candidate_spec()
        return cls(
            baseline=baseline,
            candidate=candidate,
            out_dir=config.out_dir,
            marker=config.marker,
            lookback=config.lookback,
            raise_stack_limit=config.raise_stack_limit,
            runner=runner,
            verbose=verbose,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _enter(self, state: GateState) -> None:
        self.state = state
        self.history.append(state)

    def _prepare_out_dir(self) -> None:
        """Create the output directory and drop artifacts of an earlier run."""
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            for pass_number in PASS_NUMBERS:
                for name in (f"bench_log_{pass_number}.txt", f"slow_benches_{pass_number}.txt"):
                    stale = self.out_dir / name
                    if stale.exists():
                        stale.unlink()
        except OSError as e:
            raise HarnessExecutionError(
                f"Cannot prepare output directory {self.out_dir}: {e}"
            ) from e

    def _measure(
        self,
        spec: VariantSpec,
        pass_number: int,
        log_path: Optional[Path] = None,
    ) -> BenchmarkRun:
        """Run the harness once; any non-zero exit is a harness failure."""
        if self.verbose:
            print(f"  Benchmarking {spec.variant.value}: {' '.join(spec.command)}")

        run = self.runner(
            spec,
            log_path=log_path,
            echo=self.verbose,
            raise_stack_limit=self.raise_stack_limit,
            pass_number=pass_number,
        )

        if run.exit_code < 0:
            raise HarnessExecutionError(
                f"{spec.variant.value} harness was killed by signal {-run.exit_code} "
                f"(pass {pass_number})",
                variant=spec.variant,
                pass_number=pass_number,
                returncode=run.exit_code,
            )
        if run.exit_code != 0:
            raise HarnessExecutionError(
                f"{spec.variant.value} harness exited with code {run.exit_code} "
                f"(pass {pass_number})",
                variant=spec.variant,
                pass_number=pass_number,
                returncode=run.exit_code,
            )
        return run

    def _run_pass(self, pass_number: int) -> PassRecord:
        """Measure baseline then candidate and extract the regression set."""
        baseline_run = self._measure(self.baseline, pass_number)
        self.store.publish()

        log_path = self.out_dir / f"bench_log_{pass_number}.txt"
        candidate_run = self._measure(self.candidate, pass_number, log_path=log_path)

        regressions, anomalies = extract_with_anomalies(
            candidate_run.lines,
            marker=self.marker,
            lookback=self.lookback,
        )
        names_path = self.out_dir / f"slow_benches_{pass_number}.txt"
        try:
            write_regression_set(names_path, regressions)
        except OSError as e:
            raise HarnessExecutionError(
                f"Failed to write {names_path}: {e}",
                pass_number=pass_number,
            ) from e

        record = PassRecord(
            pass_number=pass_number,
            regressions=regressions,
            candidate_exit_code=candidate_run.exit_code,
            log_path=candidate_run.log_path,
            names_path=names_path,
            baseline_duration_sec=baseline_run.duration_sec,
            candidate_duration_sec=candidate_run.duration_sec,
            anomalies=anomalies,
        )
        self.passes.append(record)

        if self.verbose and regressions:
            print()
            print("regression(s) detected in:")
            for name in sorted(regressions):
                print(f"  {name}")
        return record

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------

    def run(self) -> ConfirmationResult:
        """
        Execute the protocol and return its single outcome.

        Raises:
            HarnessExecutionError: A harness could not be located, started or
                completed, in either pass
            RuntimeError: The gate has already been run
        """
        if self.state is not GateState.IDLE:
            raise RuntimeError("RegressionGate.run() may only be called once")

        self._prepare_out_dir()

        if self.verbose:
            print("Locating harness executables...")
        locate_harness(self.baseline, verbose=self.verbose)
        locate_harness(self.candidate, verbose=self.verbose)

        self._enter(GateState.FIRST_PASS)
        if self.verbose:
            print("\n[1/2] First measurement pass...")
        first = self._run_pass(1)

        if not first.regressions:
            self._enter(GateState.NO_REGRESSION)
            result: ConfirmationResult = NoRegression(harness_exit_code=first.candidate_exit_code)
            self._enter(GateState.TERMINAL)
            self.result = result
            return result

        self._enter(GateState.RECONFIRM)
        if self.verbose:
            print()
            print("------<<<<<<>>>>>>------")
            print("Benchmark detected regression. Running benchmark again to confirm...")
            print("------<<<<<<>>>>>>------")
            print("\n[2/2] Reconfirmation pass (comparison data cleared)...")

        self.store.reset()
        if not self.store.is_empty():
            raise ComparisonStoreError(
                f"Comparison data still present after reset: "
                f"{self.store.baseline_dir}, {self.store.candidate_dir}",
                pass_number=2,
            )
        second = self._run_pass(2)

        result = reconcile(first.regressions, second.regressions)
        self._enter(GateState.TERMINAL)
        self.result = result
        return result
