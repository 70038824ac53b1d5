#!/usr/bin/env python3
"""Wrapper that delegates to the permit-relay CLI."""

from pathlib import Path
import sys

SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from permit_relay.cli.main import main


if __name__ == "__main__":
    main()
