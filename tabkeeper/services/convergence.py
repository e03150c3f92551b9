"""
Convergence wait - bounded polling with stability detection.

The environment gives no signal when a batch of asynchronous creations or
removals has finished. Instead we poll an observation until it is complete,
until its size has stopped changing for a number of consecutive polls, or until
a deadline passes, and then proceed with whatever was observed last.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import attrs

from tabkeeper.config import settings
from tabkeeper.exceptions import PartialEntityFailure

__all__ = ['ConvergencePolicy', 'wait_for_convergence']

T = TypeVar('T')

logger = logging.getLogger(__name__)


@attrs.define(frozen=True)
class ConvergencePolicy:
    """Timing of a convergence wait."""

    interval: float = 0.2  # Seconds between polls
    timeout: float = 10.0  # Maximum total wait
    stability_threshold: int = 3  # Unchanged polls that count as settled

    @classmethod
    def from_settings(cls) -> ConvergencePolicy:
        return cls(
            interval=settings.RESTORE_POLL_INTERVAL_SECONDS,
            timeout=settings.RESTORE_MAX_WAIT_SECONDS,
            stability_threshold=settings.RESTORE_STABILITY_POLLS,
        )


async def wait_for_convergence(
    observe: Callable[[], Awaitable[T]],
    *,
    is_complete: Callable[[T], bool],
    measure: Callable[[T], int],
    policy: ConvergencePolicy,
) -> T:
    """
    Poll `observe` until the observation converges.

    Stops when the first of these holds:
    (a) is_complete(observation) is true,
    (b) measure(observation) is unchanged and non-zero for
        `policy.stability_threshold` consecutive polls,
    (c) `policy.timeout` seconds have elapsed.

    An empty observation (measure == 0) never counts as stable. An observe call that
    fails with PartialEntityFailure ends polling early. In cases (c) and the
    failure case `observe` is called one final time and its result returned.

    Args:
        observe: Async callable producing an observation
        is_complete: Predicate for the fully converged observation
        measure: Size of an observation, used for stability detection
        policy: Interval, timeout and stability threshold

    Returns:
        The last observation

    Raises:
        PartialEntityFailure: If the final observation fails
    """
    start = time.monotonic()
    last_size = 0
    stable_polls = 0

    while time.monotonic() - start < policy.timeout:
        try:
            observation = await observe()
        except PartialEntityFailure as e:
            logger.warning('Polling failed, proceeding with final observation: %s', e)
            break

        if is_complete(observation):
            return observation

        size = measure(observation)
        if size == last_size:
            stable_polls += 1
            if stable_polls >= policy.stability_threshold and size > 0:
                return observation
        else:
            stable_polls = 0
            last_size = size

        await asyncio.sleep(policy.interval)

    return await observe()
