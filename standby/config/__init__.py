"""
Standby Configuration Module
"""

from .logging import configure_logging
from .settings import StandbySettings, load_settings

__all__ = [
    "configure_logging",
    "StandbySettings",
    "load_settings",
]
