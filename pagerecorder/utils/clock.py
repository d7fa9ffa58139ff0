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
Clock abstraction used by every timed wait in PageRecorder.

Settle windows, polling intervals, stabilization delays and deferred
deletions all sleep through a Clock so they can be driven without real
wall-clock waits. SystemClock is the production implementation;
ManualClock advances virtual time instantly and records every sleep.

Example:
    >>> clock = ManualClock()
    >>> await clock.sleep(3)
    >>> clock.monotonic()
    3.0
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import List


class Clock(ABC):
    """Source of time and suspension points."""

    @abstractmethod
    def time(self) -> float:
        """Wall-clock time in seconds since the epoch."""

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic time in seconds, for measuring durations."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""


class SystemClock(Clock):
    """Clock backed by the real system time and asyncio.sleep."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """Virtual clock for deterministic tests.

    Sleeping advances virtual time immediately and yields once to the
    event loop so other tasks still get a chance to run.

    Attributes:
        sleeps: Every duration passed to sleep(), in call order
    """

    def __init__(self, start: float = 0.0, epoch: float = 1_700_000_000.0) -> None:
        self._now = start
        self._epoch = epoch
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self._epoch + self._now

    def monotonic(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move virtual time forward without suspending."""
        self._now += max(0.0, seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


_default_clock: Clock = SystemClock()


def default_clock() -> Clock:
    """Return the process-wide system clock."""
    return _default_clock
