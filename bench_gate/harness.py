"""
harness.py

Benchmark harness invocation for the regression gate.

Provides:
- Variant / VariantSpec: which code version to measure and how to run it
- BenchmarkRun: the captured result of one harness execution
- ComparisonStore: explicit handle on the on-disk comparison data shared
  between the baseline and candidate runs
- run_harness(): blocking, sequential execution with output echoed to the
  console and captured to a log artifact

The harness itself is opaque. This module makes no assumptions about its
output format; parsing lives in ``bench_gate.extract``.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


# =============================================================================
# Exceptions
# =============================================================================

class HarnessExecutionError(Exception):
    """
    Raised when the harness cannot produce a measurement.

    Covers a missing executable, a process that cannot start, a process
    killed by a signal and a non-zero exit. This is never a performance
    verdict; callers must not map it onto a regression outcome.
    """

    def __init__(
        self,
        message: str,
        variant: Optional["Variant"] = None,
        pass_number: Optional[int] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message)
        self.variant = variant
        self.pass_number = pass_number
        self.returncode = returncode


class ComparisonStoreError(HarnessExecutionError):
    """Raised when comparison data is missing or could not be reset."""
    pass


# =============================================================================
# Data structures
# =============================================================================

class Variant(Enum):
    """The two code versions being compared."""
    BASELINE = "trunk"
    CANDIDATE = "branch"


@dataclass
class VariantSpec:
    """
    How to run the harness for one variant.

    Fields
    ------
    variant:
        BASELINE or CANDIDATE.

    workdir:
        Checkout/build directory of the variant. The harness runs from here.

    harness:
        Harness executable, relative to ``workdir`` unless absolute, e.g.
        ``target/release/deps/time_bench``.

    args:
        Arguments passed to the harness, e.g. ``["--bench"]``.

    data_subdir:
        Directory (relative to ``workdir``) where the harness keeps its
        comparison data, e.g. ``target/criterion``.
    """
    variant: Variant
    workdir: Path
    harness: Path
    args: List[str] = field(default_factory=list)
    data_subdir: Path = Path("target/criterion")

    @property
    def harness_path(self) -> Path:
        return Path(self.workdir) / self.harness

    @property
    def data_dir(self) -> Path:
        return Path(self.workdir) / self.data_subdir

    @property
    def command(self) -> List[str]:
        return [str(self.harness_path.resolve())] + list(self.args)


@dataclass(frozen=True)
class BenchmarkRun:
    """
    Result of one harness execution against one variant.

    Fields
    ------
    variant:
        Which variant was measured.

    lines:
        Raw captured output (stdout and stderr merged), in order, without
        trailing newlines. May contain terminal escape sequences.

    exit_code:
        Harness process exit code.

    log_path:
        Captured-log artifact, if the output was written to one.

    duration_sec:
        Wall-clock runtime in seconds.
    """
    variant: Variant
    lines: Tuple[str, ...]
    exit_code: int
    log_path: Optional[Path] = None
    duration_sec: float = 0.0


# =============================================================================
# Comparison data
# =============================================================================

@dataclass
class ComparisonStore:
    """
    Explicit handle on the comparison data of both variants.

    The baseline run writes its measurements under ``baseline_dir``;
    ``publish()`` copies them into ``candidate_dir`` so the candidate run is
    compared against them. ``reset()`` deletes both so a later pass is
    measured independently of earlier ones.
    """
    baseline_dir: Path
    candidate_dir: Path

    @classmethod
    def for_variants(cls, baseline: VariantSpec, candidate: VariantSpec) -> "ComparisonStore":
        return cls(baseline_dir=baseline.data_dir, candidate_dir=candidate.data_dir)

    def publish(self) -> None:
        """Copy baseline comparison data over the candidate's."""
        if not self.baseline_dir.is_dir():
            raise ComparisonStoreError(
                f"Baseline run produced no comparison data.\n"
                f"\n"
                f"Expected directory: {self.baseline_dir}\n"
                f"Check that the harness writes its results there "
                f"(--data-dir) and that the baseline run completed.",
                variant=Variant.BASELINE,
            )
        if self.baseline_dir.resolve() == self.candidate_dir.resolve():
            raise ComparisonStoreError(
                f"Baseline and candidate share one comparison data directory: "
                f"{self.baseline_dir}",
                variant=Variant.BASELINE,
            )
        try:
            self.candidate_dir.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(self.baseline_dir, self.candidate_dir, dirs_exist_ok=True)
        except (shutil.Error, OSError) as e:
            raise ComparisonStoreError(
                f"Failed to publish comparison data to {self.candidate_dir}: {e}",
                variant=Variant.CANDIDATE,
            ) from e

    def reset(self) -> None:
        """Delete all accumulated comparison data for both variants."""
        for directory in (self.baseline_dir, self.candidate_dir):
            if directory.exists():
                try:
                    shutil.rmtree(directory)
                except OSError as e:
                    raise ComparisonStoreError(
                        f"Failed to clear comparison data at {directory}: {e}"
                    ) from e

    def is_empty(self) -> bool:
        """True when neither variant has comparison data on disk."""
        for directory in (self.baseline_dir, self.candidate_dir):
            if directory.exists() and any(directory.iterdir()):
                return False
        return True


# =============================================================================
# Harness execution
# =============================================================================

def locate_harness(spec: VariantSpec, verbose: bool = False) -> Path:
    """
    Check that the variant's harness executable exists and is runnable.

    Args:
        spec: Variant to check
        verbose: Print which binary is being used

    Returns:
        Path to the harness executable

    Raises:
        HarnessExecutionError: If the executable is missing or not executable
    """
    harness_path = spec.harness_path
    if not harness_path.is_file():
        raise HarnessExecutionError(
            f"{spec.variant.value} harness not found.\n"
            f"\n"
            f"Expected executable: {harness_path}\n"
            f"Build the {spec.variant.value} variant first, or pass --harness / "
            f"set BENCH_GATE_HARNESS to the benchmark binary.",
            variant=spec.variant,
        )
    if not os.access(harness_path, os.X_OK):
        raise HarnessExecutionError(
            f"{spec.variant.value} harness is not executable: {harness_path}",
            variant=spec.variant,
        )
    if verbose:
        print(f"  Using {spec.variant.value} harness: {harness_path}")
    return harness_path


def _raise_stack_limit() -> None:
    """Raise the soft stack limit to the hard limit (runs in the child)."""
    import resource

    _soft, hard = resource.getrlimit(resource.RLIMIT_STACK)
    resource.setrlimit(resource.RLIMIT_STACK, (hard, hard))


def run_harness(
    spec: VariantSpec,
    log_path: Optional[Path] = None,
    echo: bool = True,
    raise_stack_limit: bool = True,
    pass_number: Optional[int] = None,
) -> BenchmarkRun:
    """
    Run the harness against one variant and wait for it to exit.

    Output (stdout and stderr merged) is echoed line by line as it arrives
    and, if ``log_path`` is given, written verbatim to that file.

    Args:
        spec: Variant to measure
        log_path: Captured-log artifact to write (None = no artifact)
        echo: Echo harness output to stdout
        raise_stack_limit: Raise RLIMIT_STACK in the child (POSIX only)
        pass_number: Measurement pass, for error reporting

    Returns:
        BenchmarkRun with the captured lines and exit code. A non-zero exit
        is returned, not raised; the caller decides what it means.

    Raises:
        HarnessExecutionError: If the process cannot be started
    """
    cmd = spec.command
    preexec_fn = _raise_stack_limit if raise_stack_limit and os.name == "posix" else None

    lines: List[str] = []
    t0 = time.time()
    with contextlib.ExitStack() as stack:
        log_handle = None
        if log_path is not None:
            try:
                Path(log_path).parent.mkdir(parents=True, exist_ok=True)
                log_handle = stack.enter_context(open(log_path, "w", encoding="utf-8"))
            except OSError as e:
                raise HarnessExecutionError(
                    f"Cannot open log {log_path}: {e}",
                    variant=spec.variant,
                    pass_number=pass_number,
                ) from e

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(spec.workdir),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                preexec_fn=preexec_fn,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise HarnessExecutionError(
                f"Failed to execute {spec.variant.value} harness: {e}\n"
                f"Command: {' '.join(cmd)}",
                variant=spec.variant,
                pass_number=pass_number,
            ) from e

        with proc:
            for line in proc.stdout:
                if echo:
                    sys.stdout.write(line)
                    sys.stdout.flush()
                if log_handle is not None:
                    log_handle.write(line)
                lines.append(line.rstrip("\n"))
            returncode = proc.wait()
    t1 = time.time()

    return BenchmarkRun(
        variant=spec.variant,
        lines=tuple(lines),
        exit_code=returncode,
        log_path=Path(log_path) if log_path is not None else None,
        duration_sec=t1 - t0,
    )
