# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Bounded polling with an injectable clock.

The Poller replaces ad-hoc sleep-and-count loops. It waits one interval,
runs an async check, and stops at the first truthy result or when the
attempt budget is spent. Intervals may grow with a backoff factor.

Features:
- Fixed cadence by default, optional exponential backoff
- Retryable exceptions count as a failed attempt and are logged
- Other exceptions abort polling immediately
- All waiting goes through a Clock, so tests never sleep

Example:
    >>> poller = Poller(PollConfig(interval=1.0, max_attempts=60))
    >>>
    >>> async def page_ready(attempt: int) -> bool:
    ...     return await inspector.is_ready()
    >>>
    >>> attempts = await poller.until(page_ready, description="page ready")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type

from pagerecorder.exceptions import ConfigurationError, PollTimeoutError
from pagerecorder.utils.clock import Clock, default_clock
from pagerecorder.utils.logger import logger


@dataclass
class PollConfig:
    """Configuration for a Poller.

    Attributes:
        interval: Delay before the first check, in seconds
        max_attempts: Number of checks before timing out
        backoff: Multiplier applied to the delay after each attempt
        max_interval: Upper bound for a single delay (None = unbounded)
    """

    interval: float = 1.0
    max_attempts: int = 60
    backoff: float = 1.0
    max_interval: Optional[float] = None

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ConfigurationError("interval must not be negative")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.backoff < 1.0:
            raise ConfigurationError("backoff must be >= 1.0")

    @property
    def budget(self) -> float:
        """Total time spent waiting if every attempt fails."""
        return sum(self.delay_for(attempt) for attempt in range(self.max_attempts))

    def delay_for(self, attempt: int) -> float:
        """
        Calculate the delay before a given attempt.

        Args:
            attempt: Attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.interval * (self.backoff ** attempt)
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay


class Poller:
    """Runs a check repeatedly until it succeeds or attempts run out."""

    def __init__(self, config: PollConfig, clock: Optional[Clock] = None) -> None:
        self.config = config
        self.clock = clock or default_clock()

    async def until(
        self,
        check: Callable[[int], Awaitable[bool]],
        *,
        description: str = "condition",
        retryable_exceptions: Tuple[Type[BaseException], ...] = (),
    ) -> int:
        """
        Poll until check returns a truthy value.

        Args:
            check: Async callable receiving the 1-based attempt number
            description: Human readable name used in logs and errors
            retryable_exceptions: Exception types treated as "not yet"

        Returns:
            The attempt number that succeeded

        Raises:
            PollTimeoutError: If every attempt failed
            Exception: Anything raised by check that is not retryable
        """
        started = self.clock.monotonic()

        for index in range(self.config.max_attempts):
            attempt = index + 1
            await self.clock.sleep(self.config.delay_for(index))

            try:
                if await check(attempt):
                    return attempt
            except retryable_exceptions as e:
                logger.debug(
                    f"[POLL] {description}: attempt {attempt}/{self.config.max_attempts} "
                    f"errored: {e}"
                )

        elapsed = self.clock.monotonic() - started
        raise PollTimeoutError(
            f"{description} not reached after {self.config.max_attempts} attempts "
            f"({elapsed:.1f}s)",
            attempts=self.config.max_attempts,
            elapsed=elapsed,
        )
