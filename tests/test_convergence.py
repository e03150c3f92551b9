"""Tests for the bounded convergence wait."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from tabkeeper.exceptions import PartialEntityFailure
from tabkeeper.services.convergence import ConvergencePolicy, wait_for_convergence

POLICY = ConvergencePolicy(interval=0.001, timeout=0.2, stability_threshold=3)


def scripted(observations: list[list[int]]) -> tuple[Callable[[], Awaitable[list[int]]], list[int]]:
    """Observer returning each observation in turn, then repeating the last. Also returns a call counter."""
    calls = [0]

    async def observe() -> list[int]:
        index = min(calls[0], len(observations) - 1)
        calls[0] += 1
        return observations[index]

    return observe, calls


def test_returns_as_soon_as_complete() -> None:
    observe, calls = scripted([[1], [1, 2], [1, 2, 3]])

    result = asyncio.run(wait_for_convergence(observe, is_complete=lambda o: len(o) >= 3, measure=len, policy=POLICY))

    assert result == [1, 2, 3]
    assert calls[0] == 3


def test_stops_once_size_is_stable() -> None:
    observe, calls = scripted([[1], [1, 2]])

    result = asyncio.run(wait_for_convergence(observe, is_complete=lambda o: len(o) >= 5, measure=len, policy=POLICY))

    assert result == [1, 2]
    # One poll to see the new size, then three unchanged polls
    assert calls[0] == 5


def test_empty_observation_is_never_stable() -> None:
    observe, calls = scripted([[]])
    policy = ConvergencePolicy(interval=0.001, timeout=0.05, stability_threshold=2)

    result = asyncio.run(wait_for_convergence(observe, is_complete=lambda o: False, measure=len, policy=policy))

    assert result == []
    assert calls[0] > 3


def test_observe_failure_ends_polling_with_final_call() -> None:
    calls = [0]

    async def observe() -> list[int]:
        calls[0] += 1
        if calls[0] == 2:
            raise PartialEntityFailure('query_tabs', 1, 'gone')
        return [calls[0]]

    result = asyncio.run(wait_for_convergence(observe, is_complete=lambda o: False, measure=len, policy=POLICY))

    assert result == [3]


def test_final_observe_failure_propagates() -> None:
    async def observe() -> list[int]:
        raise PartialEntityFailure('query_tabs', 1, 'gone')

    with pytest.raises(PartialEntityFailure):
        asyncio.run(wait_for_convergence(observe, is_complete=lambda o: True, measure=len, policy=POLICY))
