"""Live tab environments."""

from __future__ import annotations

from tabkeeper.environment.memory import InMemoryEnvironment
from tabkeeper.environment.protocol import TabEnvironment

__all__ = ['InMemoryEnvironment', 'TabEnvironment']
