"""Entry point for running a Relay dispatch from a source checkout.

Usage:
    python scripts/run_dispatch.py --tasks 50 --workers 4 --workload primes
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relay.cli import main


if __name__ == "__main__":
    sys.exit(main())
