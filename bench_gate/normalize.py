"""
normalize.py

Log Normalizer: strips terminal escape sequences from captured harness output.

Benchmark harnesses colour their verdicts when attached to a terminal, so a
captured log interleaves text with sequences such as ``ESC[1;31m``. Everything
downstream matches on plain text, so those sequences are removed first. Only
the sequences are removed; every other character is left untouched.
"""

from __future__ import annotations

import re
from typing import Iterable, List

# ESC '[' then one or more of [0-9;] then one terminal letter.
ESCAPE_RE = re.compile(r"\x1b\[[0-9;]+[A-Za-z]")


def strip_escapes(text: str) -> str:
    """
    Remove every terminal escape sequence from ``text``.

    Removing one sequence can splice a dangling ESC onto a following ``[1m``
    and form a new one, so substitution repeats until nothing matches. This
    keeps the function idempotent.
    """
    count = 1
    while count:
        text, count = ESCAPE_RE.subn("", text)
    return text


def normalize_lines(lines: Iterable[str]) -> List[str]:
    """
    Strip escape sequences from each line, preserving order and line count.

    Args:
        lines: Raw captured lines (may contain escape sequences)

    Returns:
        The same lines with escape sequences removed
    """
    return [strip_escapes(line) for line in lines]
