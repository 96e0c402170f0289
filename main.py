#!/usr/bin/env python3
"""
Playtime Farmer - keeps presence sessions alive and accumulates activity playtime.

Main entry point for the application.
"""

import sys

from playtime_farmer.cli import main

if __name__ == "__main__":
    sys.exit(main())
