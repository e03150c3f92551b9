"""Shared fixtures: an in-memory environment, an in-memory backend and services wired over them."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the repository root is importable when running pytest from any CWD.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tabkeeper.environment.memory import InMemoryEnvironment  # noqa: E402
from tabkeeper.repositories.sessions import SessionStore  # noqa: E402
from tabkeeper.repositories.undo import UndoHistoryRepository  # noqa: E402
from tabkeeper.services.capture import CaptureService  # noqa: E402
from tabkeeper.services.convergence import ConvergencePolicy  # noqa: E402
from tabkeeper.services.restore import SessionRestoreService  # noqa: E402
from tabkeeper.services.undo import UndoService  # noqa: E402
from tabkeeper.storage.memory import MemoryBackend  # noqa: E402

QUOTA = 10 * 1024 * 1024

# Short enough to keep tests quick, long enough for several polls
FAST_POLICY = ConvergencePolicy(interval=0.001, timeout=0.5, stability_threshold=3)


@pytest.fixture
def env() -> InMemoryEnvironment:
    return InMemoryEnvironment()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend: MemoryBackend) -> SessionStore:
    return SessionStore(backend, quota_bytes=QUOTA, warning_threshold=0.9)


@pytest.fixture
def history(backend: MemoryBackend) -> UndoHistoryRepository:
    return UndoHistoryRepository(backend, limit=20)


@pytest.fixture
def capture(env: InMemoryEnvironment) -> CaptureService:
    return CaptureService(env)


@pytest.fixture
def undo(env: InMemoryEnvironment, capture: CaptureService, history: UndoHistoryRepository) -> UndoService:
    return UndoService(env, capture, history, settle_policy=FAST_POLICY)


@pytest.fixture
def target_env() -> InMemoryEnvironment:
    """A second, empty environment issuing ids disjoint from `env`."""
    return InMemoryEnvironment(first_id=1000)


@pytest.fixture
def restorer(target_env: InMemoryEnvironment, store: SessionStore) -> SessionRestoreService:
    return SessionRestoreService(target_env, store, policy=FAST_POLICY)
