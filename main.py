#!/usr/bin/env python3
"""
TweakCore v1.2
Transactional Windows Tweak Engine with snapshots, recovery and portable profiles
"""

import sys

from cli.main import main

if __name__ == "__main__":
    sys.exit(main())
