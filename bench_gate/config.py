"""
config.py

Configuration for the benchmark regression gate.

Resolution order for every setting:
1. Explicit value (CLI flag), if given
2. Environment variable (BENCH_GATE_*)
3. Default, matching the standard CI checkout layout:

    bench-folder-trunk/                      baseline checkout
        target/release/deps/time_bench       harness
        target/criterion/                    comparison data
    bench-folder-branch/                     candidate checkout (+ artifacts)
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from bench_gate.extract import DEFAULT_LOOKBACK, DEFAULT_MARKER
from bench_gate.harness import Variant, VariantSpec


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_TRUNK_DIR = Path("bench-folder-trunk")
DEFAULT_BRANCH_DIR = Path("bench-folder-branch")
DEFAULT_HARNESS = Path("target/release/deps/time_bench")
DEFAULT_HARNESS_ARGS = ["--bench"]
DEFAULT_DATA_SUBDIR = Path("target/criterion")

ENV_TRUNK_DIR = "BENCH_GATE_TRUNK_DIR"
ENV_BRANCH_DIR = "BENCH_GATE_BRANCH_DIR"
ENV_HARNESS = "BENCH_GATE_HARNESS"
ENV_HARNESS_ARGS = "BENCH_GATE_HARNESS_ARGS"
ENV_DATA_DIR = "BENCH_GATE_DATA_DIR"
ENV_OUT_DIR = "BENCH_GATE_OUT_DIR"
ENV_LOOKBACK = "BENCH_GATE_LOOKBACK"
ENV_MARKER = "BENCH_GATE_MARKER"
ENV_RAISE_STACK_LIMIT = "BENCH_GATE_RAISE_STACK_LIMIT"

_FALSE_VALUES = {"0", "false", "no", "off"}


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when the gate configuration is invalid."""
    pass


# =============================================================================
# Config
# =============================================================================

@dataclass
class GateConfig:
    """
    Resolved gate configuration.

    ``out_dir`` defaults to the candidate checkout, where the captured logs
    and name lists have always been written.
    """
    trunk_dir: Path = DEFAULT_TRUNK_DIR
    branch_dir: Path = DEFAULT_BRANCH_DIR
    harness: Path = DEFAULT_HARNESS
    harness_args: List[str] = field(default_factory=lambda: list(DEFAULT_HARNESS_ARGS))
    data_subdir: Path = DEFAULT_DATA_SUBDIR
    out_dir: Optional[Path] = None
    marker: str = DEFAULT_MARKER
    lookback: int = DEFAULT_LOOKBACK
    raise_stack_limit: bool = True

    def __post_init__(self):
        if self.out_dir is None:
            self.out_dir = self.branch_dir

    def baseline_spec(self) -> VariantSpec:
        return VariantSpec(
            variant=Variant.BASELINE,
            workdir=Path(self.trunk_dir),
            harness=Path(self.harness),
            args=list(self.harness_args),
            data_subdir=Path(self.data_subdir),
        )

    def candidate_spec(self) -> VariantSpec:
        return VariantSpec(
            variant=Variant.CANDIDATE,
            workdir=Path(self.branch_dir),
            harness=Path(self.harness),
            args=list(self.harness_args),
            data_subdir=Path(self.data_subdir),
        )

    def validate(self) -> None:
        """
        Check the configuration before any harness is run.

        Raises:
            ConfigError: With every problem found, one per line
        """
        problems: List[str] = []
        for label, directory in (("trunk", self.trunk_dir), ("branch", self.branch_dir)):
            if not Path(directory).is_dir():
                problems.append(f"{label} directory does not exist: {directory}")
        if Path(self.trunk_dir).resolve() == Path(self.branch_dir).resolve():
            problems.append(f"trunk and branch must be different directories: {self.trunk_dir}")
        if Path(self.out_dir).exists() and not Path(self.out_dir).is_dir():
            problems.append(f"output directory is not a directory: {self.out_dir}")
        if self.lookback < 1:
            problems.append(f"lookback must be at least 1, got {self.lookback}")
        if not self.marker:
            problems.append("regression marker must not be empty")
        if Path(self.data_subdir).is_absolute():
            problems.append(
                f"comparison data directory must be relative to each checkout: {self.data_subdir}"
            )
        if problems:
            raise ConfigError("Invalid gate configuration:\n  " + "\n  ".join(problems))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "trunk_dir": str(self.trunk_dir),
            "branch_dir": str(self.branch_dir),
            "harness": str(self.harness),
            "harness_args": list(self.harness_args),
            "data_subdir": str(self.data_subdir),
            "out_dir": str(self.out_dir),
            "marker": self.marker,
            "lookback": self.lookback,
            "raise_stack_limit": self.raise_stack_limit,
        }


# =============================================================================
# Resolution
# =============================================================================

def _env_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def load_config(
    trunk_dir: Optional[Path] = None,
    branch_dir: Optional[Path] = None,
    harness: Optional[Path] = None,
    harness_args: Optional[List[str]] = None,
    data_subdir: Optional[Path] = None,
    out_dir: Optional[Path] = None,
    marker: Optional[str] = None,
    lookback: Optional[int] = None,
    raise_stack_limit: Optional[bool] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GateConfig:
    """
    Resolve a GateConfig from explicit values, then environment, then defaults.

    Args:
        environ: Environment mapping (default: os.environ)
        Remaining arguments: explicit values; None means "not given"

    Returns:
        GateConfig (not yet validated)

    Raises:
        ConfigError: If an environment variable cannot be parsed
    """
    env = os.environ if environ is None else environ

    def pick_path(value: Optional[Path], env_name: str, default: Path) -> Path:
        if value is not None:
            return Path(value)
        if env.get(env_name):
            return Path(env[env_name])
        return default

    if harness_args is None:
        if env.get(ENV_HARNESS_ARGS) is not None:
            harness_args = shlex.split(env[ENV_HARNESS_ARGS])
        else:
            harness_args = list(DEFAULT_HARNESS_ARGS)

    if lookback is None:
        lookback = _env_int(env, ENV_LOOKBACK)
        if lookback is None:
            lookback = DEFAULT_LOOKBACK

    if marker is None:
        marker = env.get(ENV_MARKER) or DEFAULT_MARKER

    if raise_stack_limit is None:
        raw = env.get(ENV_RAISE_STACK_LIMIT)
        raise_stack_limit = raw is None or raw.strip().lower() not in _FALSE_VALUES

    resolved_out: Optional[Path] = None
    if out_dir is not None:
        resolved_out = Path(out_dir)
    elif env.get(ENV_OUT_DIR):
        resolved_out = Path(env[ENV_OUT_DIR])

    return GateConfig(
        trunk_dir=pick_path(trunk_dir, ENV_TRUNK_DIR, DEFAULT_TRUNK_DIR),
        branch_dir=pick_path(branch_dir, ENV_BRANCH_DIR, DEFAULT_BRANCH_DIR),
        harness=pick_path(harness, ENV_HARNESS, DEFAULT_HARNESS),
        harness_args=list(harness_args),
        data_subdir=pick_path(data_subdir, ENV_DATA_DIR, DEFAULT_DATA_SUBDIR),
        out_dir=resolved_out,
        marker=marker,
        lookback=lookback,
        raise_stack_limit=raise_stack_limit,
    )
