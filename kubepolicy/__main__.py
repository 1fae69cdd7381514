"""Entry point for `python -m kubepolicy`.

Usage:
    python -m kubepolicy
"""

from __future__ import annotations

import asyncio

from kubepolicy.app import main

asyncio.run(main())
