"""Core utilities for the shield service."""

from shield.app.core.config import Settings, settings
from shield.app.core.counter_store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)
from shield.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
    "get_logger",
    "setup_logging",
]
