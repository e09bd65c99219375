"""
Entry point for running approval_gate as a module.

Allows running the permission gate via:
    python -m approval_gate
    python -m approval_gate resolve <approval_id> --allow
"""

import sys

from approval_gate.cli import main

if __name__ == "__main__":
    sys.exit(main())
