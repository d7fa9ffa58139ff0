# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures: fake external processes, scripted supervisors and a manual clock."""

import asyncio
import itertools
from typing import Callable, Dict, List, Optional

import pytest

from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor
from pagerecorder.utils.clock import ManualClock

# Above the Linux pid limit, so psutil never resolves a real process.
_fake_pids = itertools.count(5_000_000)


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process.

    Args:
        exit_code: Exit immediately with this code (None = keep running)
        exits_on_terminate: Whether SIGTERM stops the process
        exits_on_kill: Whether SIGKILL stops the process
        stderr: Optional asyncio.StreamReader exposed as stderr
    """

    def __init__(
        self,
        exit_code: Optional[int] = None,
        exits_on_terminate: bool = True,
        exits_on_kill: bool = True,
        stderr: Optional[asyncio.StreamReader] = None,
    ) -> None:
        self.pid = next(_fake_pids)
        self.returncode: Optional[int] = None
        self.stderr = stderr
        self.signals: List[str] = []
        self.exits_on_terminate = exits_on_terminate
        self.exits_on_kill = exits_on_kill
        self._exited = asyncio.Event()
        if exit_code is not None:
            self.exit(exit_code)

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if self.exits_on_terminate and self.returncode is None:
            self.exit(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        if self.exits_on_kill and self.returncode is None:
            self.exit(-9)


class ScriptedSupervisor(ProcessSupervisor):
    """ProcessSupervisor whose spawn() returns fakes instead of real programs.

    Args:
        factories: Process name -> callable returning a FakeProcess
            (or raising, to simulate a spawn error)
    """

    def __init__(self, factories: Optional[Dict[str, Callable[[], FakeProcess]]] = None) -> None:
        super().__init__(grace_period=0.05, kill_descendants=False)
        self.factories = dict(factories or {})
        self.spawned: List[tuple] = []
        self.handles: Dict[str, FakeProcess] = {}
        self.terminate_all_calls = 0

    async def spawn(self, name, argv, *, env=None, capture_stderr=False) -> ManagedProcess:
        self.spawned.append((name, list(argv), env, capture_stderr))
        factory = self.factories.get(name, FakeProcess)
        handle = factory()
        self.handles[name] = handle
        return self.track(handle, name)

    async def terminate_all(self) -> None:
        self.terminate_all_calls += 1
        await super().terminate_all()


@pytest.fixture
def fake_process():
    """The FakeProcess class, for building process handles in tests."""
    return FakeProcess


@pytest.fixture
def scripted_supervisor():
    """Factory for ScriptedSupervisor instances."""
    return ScriptedSupervisor


@pytest.fixture
def clock():
    """A ManualClock starting at zero."""
    return ManualClock()
