#!/usr/bin/env python3
"""Refactor Pipeline - Entry Point.

Usage:
    python run.py status                                  # Show session phase
    python run.py -p ./my-project intake                  # Start a session
    python run.py run --changes ./changes.yaml --yes      # Run every phase
    python run.py --help                                  # Show help
"""

import sys
from pathlib import Path

from dotenv import load_dotenv

# Add src to path for development imports
SCRIPT_DIR = Path(__file__).resolve().parent
SRC_DIR = SCRIPT_DIR / "src"
sys.path.insert(0, str(SRC_DIR))

# Load environment variables from .env file if it exists
ENV_PATH = SCRIPT_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

from refactor_pipeline.cli import main

if __name__ == "__main__":
    main()
