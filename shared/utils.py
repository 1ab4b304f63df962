"""
FORMCOACH Shared Utilities

Logging, rolling buffers and timestamps.
"""

import logging
import sys
from collections import deque
from typing import Deque, Generic, Iterator, List, Optional, TypeVar
from datetime import datetime, timezone


# ============================================
# Logging Configuration
# ============================================

def parse_log_level(name: str, default: int = logging.INFO) -> int:
    """Map a level name such as "debug" to its logging constant."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def setup_logger(name: str = "formcoach", level: int = logging.INFO) -> logging.Logger:
    """
    Set up a configured logger with console output.

    Usage:
        logger = setup_logger("formcoach.readiness")
        logger.info("Readiness changed")
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


logger = setup_logger("formcoach")


# ============================================
# Data Structures
# ============================================

T = TypeVar('T')


class RollingWindow(Generic[T]):
    """
    Fixed-capacity FIFO history.

    Appending to a full window evicts the oldest entry. Iteration runs from
    oldest to newest.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"RollingWindow capacity must be positive, got {capacity}")
        self._items: Deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    def append(self, item: T) -> None:
        self._items.append(item)

    def latest(self, n: Optional[int] = None) -> List[T]:
        """Return the newest ``n`` entries (all when ``n`` is None), oldest first."""
        items = list(self._items)
        if n is None:
            return items
        return items[-n:] if n > 0 else []

    @property
    def last(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


# ============================================
# Utility Functions
# ============================================

def get_now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat()
