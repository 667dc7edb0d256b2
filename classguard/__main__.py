"""Entry point for `python -m classguard`.

Usage:
    python -m classguard
"""

from __future__ import annotations

import asyncio

from classguard.app import main

asyncio.run(main())
