"""
Shared type definitions for the tabkeeper package.

Centralizes common type annotations used across schemas, services and adapters.
"""

from __future__ import annotations

from typing import Literal

# Live-environment identities are volatile: meaningful only inside the
# environment instance that issued them.
TabId = int
WindowId = int
GroupId = int

# Fixed palette accepted by the environment for tab groups
GroupColor = Literal['grey', 'blue', 'red', 'yellow', 'green', 'pink', 'purple', 'cyan', 'orange']

# Epoch milliseconds, the unit every persisted timestamp uses
EpochMillis = int
