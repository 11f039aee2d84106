"""
__main__.py

Allows running the gate as a module:
    python3 -m bench_gate --help
"""

import sys
from bench_gate.cli import main

if __name__ == "__main__":
    sys.exit(main())
