#!/usr/bin/env python3
"""
Standby CLI Entry Point

Allows running Standby as a module: python -m standby --mode server|monitor
"""

from __future__ import annotations

import asyncio
import sys

from standby.core.service import main as standby_main


def run() -> None:
    try:
        asyncio.run(standby_main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e.__class__.__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
