#!/usr/bin/env python3
"""
Token scanner launcher script.

Starts the HTTP surface and the hourly refresh job using configs/default.yaml.
Values in the YAML file take precedence over environment variables and .env.
"""

import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from trendscan.runner.pipeline import main


if __name__ == "__main__":
    if len(sys.argv) == 1:
        sys.argv = ["trendscan", "--config", "configs/default.yaml", "--profile", "dev"]

    try:
        main()
    except KeyboardInterrupt:
        print("\nToken scanner stopped by user.")
        sys.exit(0)
