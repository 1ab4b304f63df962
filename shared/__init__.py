"""
FORMCOACH Shared Module

Common utilities used across all services.
"""

from .utils import RollingWindow, parse_log_level, setup_logger, get_now_iso

__all__ = [
    'RollingWindow',
    'parse_log_level',
    'setup_logger',
    'get_now_iso',
]
