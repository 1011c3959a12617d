#!/usr/bin/env python3
"""
Startup script for the wallet mirror bot
"""

import sys

from mirrorbot.main import main


if __name__ == "__main__":
    if sys.version_info < (3, 9):
        print("Python 3.9 or higher is required")
        sys.exit(1)
    sys.exit(main())
