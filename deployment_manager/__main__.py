"""
Deployment manager CLI entry point.
"""

import sys

from deployment_manager.cli import main

if __name__ == "__main__":
    sys.exit(main())
