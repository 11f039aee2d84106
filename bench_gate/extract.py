"""
extract.py

Regression Extractor: turns the captured log of one candidate run into the
set of benchmark names the harness flagged as regressed.

Two parsers are supported:

1. **Structured records** (preferred)
   - cargo-criterion ``--message-format=json`` lines, one JSON object per
     benchmark with ``"reason": "benchmark-complete"``
   - A benchmark is regressed iff ``change.change == "Regressed"``
   - When any such record is present the log is parsed this way only

2. **Marker window** (legacy text output)
   - Every line containing the marker (``regressed``) is a verdict
   - The benchmark's quoted display name is printed somewhere in the
     ``lookback`` lines before the verdict
   - The last quoted segment in the window wins; the identifier is the last
     whitespace-delimited token inside the quotes
   - A verdict with no quoted name in its window is an extraction anomaly: it
     is reported on stderr and skipped, never fatal

Both parsers reduce display names to the same canonical identifier so sets
from either format can be intersected.
"""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from bench_gate.normalize import normalize_lines


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MARKER = "regressed"
DEFAULT_LOOKBACK = 3

QUOTED_RE = re.compile(r'"([^"]*)"')

STRUCTURED_REASON = "benchmark-complete"
STRUCTURED_REGRESSED = "Regressed"

RegressionSet = FrozenSet[str]


# =============================================================================
# Helpers
# =============================================================================

def canonical_name(display_name: str) -> Optional[str]:
    """
    Reduce a display name to its identifier: the last whitespace-delimited token.

    Returns None for a blank name.
    """
    tokens = display_name.split()
    if not tokens:
        return None
    return tokens[-1]


def _parse_record(line: str) -> Optional[Dict[str, Any]]:
    """Parse a structured benchmark record, or None if the line is not one."""
    stripped = line.strip()
    if not stripped.startswith("{"):
        return None
    try:
        record = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(record, dict):
        return None
    if record.get("reason") != STRUCTURED_REASON:
        return None
    if not isinstance(record.get("id"), str):
        return None
    return record


def structured_records(lines: Sequence[str]) -> List[Tuple[str, str]]:
    """
    Collect ``(id, verdict)`` pairs from structured benchmark records.

    Records without a ``change`` section (first run, nothing to compare
    against) get the verdict ``"NoChange"``.

    Args:
        lines: Normalized log lines

    Returns:
        List of (benchmark id, verdict) in log order
    """
    records: List[Tuple[str, str]] = []
    for line in lines:
        record = _parse_record(line)
        if record is None:
            continue
        change = record.get("change")
        verdict = "NoChange"
        if isinstance(change, dict) and change.get("change"):
            verdict = str(change["change"])
        records.append((record["id"], verdict))
    return records


def _name_in_window(window: Sequence[str]) -> Optional[str]:
    """Return the identifier from the last non-blank quoted segment in the window."""
    for line in reversed(window):
        for body in reversed(QUOTED_RE.findall(line)):
            name = canonical_name(body)
            if name is not None:
                return name
    return None


def scan_markers(
    lines: Sequence[str],
    marker: str = DEFAULT_MARKER,
    lookback: int = DEFAULT_LOOKBACK,
) -> Tuple[List[str], List[int]]:
    """
    Legacy parser: attribute each marker line to the quoted name before it.

    Args:
        lines: Normalized log lines
        marker: Literal substring announcing a regression
        lookback: Number of lines before the marker to search for the name

    Returns:
        (names, anomalies) tuple
        - names: identifiers in the order their markers appear (may repeat)
        - anomalies: 1-based line numbers of markers with no parseable name

    Raises:
        ValueError: lookback is smaller than 1
    """
    if lookback < 1:
        raise ValueError(f"lookback must be at least 1, got {lookback}")

    names: List[str] = []
    anomalies: List[int] = []
    for index, line in enumerate(lines):
        if marker not in line:
            continue
        window = lines[max(0, index - lookback):index]
        name = _name_in_window(window)
        if name is None:
            anomalies.append(index + 1)
        else:
            names.append(name)
    return names, anomalies


def _scan(
    normalized: List[str],
    marker: str,
    lookback: int,
) -> Tuple[RegressionSet, List[int]]:
    """Regressed names and anomalous marker lines of a normalized log."""
    records = structured_records(normalized)
    if records:
        names = set()
        for bench_id, verdict in records:
            if verdict != STRUCTURED_REGRESSED:
                continue
            name = canonical_name(bench_id)
            if name is not None:
                names.add(name)
        return frozenset(names), []

    names_found, anomalies = scan_markers(normalized, marker=marker, lookback=lookback)
    return frozenset(names_found), anomalies


# =============================================================================
# Public API
# =============================================================================

def extract_with_anomalies(
    lines: Iterable[str],
    marker: str = DEFAULT_MARKER,
    lookback: int = DEFAULT_LOOKBACK,
) -> Tuple[RegressionSet, List[int]]:
    """
    Compute the RegressionSet for one run along with its extraction anomalies.

    Raw lines are accepted; escape sequences are stripped before parsing.
    An empty result is the success path, not an error. Every anomaly is
    reported on stderr as a WARNING regardless of verbosity.

    Args:
        lines: Captured log lines of one candidate run
        marker: Literal substring announcing a regression (legacy parser)
        lookback: Window size for the legacy parser

    Returns:
        (names, anomalies) tuple
        - names: frozen set of regressed benchmark identifiers
        - anomalies: 1-based line numbers of markers with no parseable name

    Raises:
        ValueError: lookback is smaller than 1
    """
    if lookback < 1:
        raise ValueError(f"lookback must be at least 1, got {lookback}")

    names, anomalies = _scan(normalize_lines(lines), marker, lookback)
    for lineno in anomalies:
        print(
            f"WARNING: '{marker}' on line {lineno} has no quoted benchmark name "
            f"in the {lookback} preceding lines; skipping it",
            file=sys.stderr,
        )
    return names, anomalies


def extract_regressions(
    lines: Iterable[str],
    marker: str = DEFAULT_MARKER,
    lookback: int = DEFAULT_LOOKBACK,
) -> RegressionSet:
    """Compute the RegressionSet for one run. See :func:`extract_with_anomalies`."""
    names, _ = extract_with_anomalies(lines, marker=marker, lookback=lookback)
    return names


def find_anomalies(
    lines: Iterable[str],
    marker: str = DEFAULT_MARKER,
    lookback: int = DEFAULT_LOOKBACK,
) -> List[int]:
    """Return 1-based line numbers of markers that could not be attributed."""
    _, anomalies = _scan(normalize_lines(lines), marker, lookback)
    return anomalies



# =============================================================================
# Artifact I/O
# =============================================================================

def read_log(path: Path) -> List[str]:
    """Read a captured log file into lines."""
    return Path(path).read_text(encoding="utf-8", errors="replace").splitlines()


def write_regression_set(path: Path, names: Iterable[str]) -> Path:
    """Write regressed names one per line, sorted for stable diffs."""
    path = Path(path)
    ordered = sorted(set(names))
    with open(path, "w", encoding="utf-8") as f:
        for name in ordered:
            f.write(f"{name}\n")
    return path


def read_regression_set(path: Path) -> RegressionSet:
    """Read a names file written by :func:`write_regression_set`."""
    text = Path(path).read_text(encoding="utf-8")
    return frozenset(line.strip() for line in text.splitlines() if line.strip())
