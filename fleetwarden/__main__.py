"""
Entry point for running fleetwarden as a module.

Usage:
    python -m fleetwarden escalations --status pending
    python -m fleetwarden resolve ID --by NAME --resolution TEXT

This is equivalent to:
    python -m fleetwarden.cli.escalations_cli [args]
"""

import sys

from fleetwarden.cli.escalations_cli import main

if __name__ == "__main__":
    sys.exit(main())
