#!/usr/bin/env python3
"""
Entry point for running acme_certsync as a module.
Usage: python -m acme_certsync
"""

import sys

from acme_certsync.cli import main

if __name__ == "__main__":
    sys.exit(main())
