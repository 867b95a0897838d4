"""
Entry point for running portalsync as a module.

Usage:
    python -m portalsync [command] [options]
"""

from portalsync.cli import main

if __name__ == "__main__":
    main()
