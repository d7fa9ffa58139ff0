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
Process supervision for recording jobs.

Every external process a job starts (Xvfb, the browser, ffmpeg) is tracked
by the job's ProcessSupervisor. A supervisor lives exactly as long as one
job, and terminate_all() is what guarantees nothing outlives it.

Termination escalates: SIGTERM first, then SIGKILL once the grace period
expires. Descendants captured before signalling (browser zygote and
renderer processes) are killed if they survive their parent.

Example:
    >>> supervisor = ProcessSupervisor(grace_period=5.0)
    >>> xvfb = await supervisor.spawn("Xvfb", ["Xvfb", ":99"])
    >>> ...
    >>> await supervisor.terminate_all()
    >>> supervisor.active_count
    0
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psutil

from pagerecorder.utils.logger import logger

# Upper bound for reaping after SIGKILL, for the parent and for its descendants.
KILL_WAIT_SECONDS = 1.0


def _snapshot_descendants(pid: Optional[int]) -> List[psutil.Process]:
    if not pid:
        return []
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def _kill_survivors(descendants: List[psutil.Process], timeout: float) -> int:
    """Kill descendants that are still running; returns how many were killed."""
    survivors = []
    for child in descendants:
        try:
            if child.is_running() and child.status() != psutil.STATUS_ZOMBIE:
                child.kill()
                survivors.append(child)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if survivors:
        psutil.wait_procs(survivors, timeout=timeout)
    return len(survivors)


@dataclass(eq=False)
class ManagedProcess:
    """An external process owned by a ProcessSupervisor.

    Attributes:
        handle: asyncio subprocess handle (anything exposing pid, returncode,
            wait(), terminate() and kill())
        name: Label used in logs
        termination_requested: A termination signal has been sent
        terminated: The process is known to have stopped
        kill_descendants: Also kill child processes left behind
    """

    handle: Any
    name: str
    termination_requested: bool = False
    terminated: bool = False
    kill_descendants: bool = True

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.handle, "pid", None)

    @property
    def returncode(self) -> Optional[int]:
        return self.handle.returncode

    @property
    def is_running(self) -> bool:
        return not self.terminated and self.handle.returncode is None

    async def wait(self) -> int:
        """Wait for the process to exit on its own."""
        code = await self.handle.wait()
        self.terminated = True
        return code

    async def terminate(self, grace_period: float = 5.0) -> Optional[int]:
        """
        Stop the process, escalating from SIGTERM to SIGKILL.

        Safe to call repeatedly and on processes that already exited.
        Takes at most the grace period plus KILL_WAIT_SECONDS.

        Args:
            grace_period: Seconds to wait after SIGTERM before SIGKILL

        Returns:
            The exit code, or None if the process could not be reaped
        """
        if self.terminated or self.handle.returncode is not None:
            self.terminated = True
            return self.handle.returncode

        descendants = _snapshot_descendants(self.pid) if self.kill_descendants else []
        kill_wait = min(grace_period, KILL_WAIT_SECONDS)

        logger.info(f"[SUPERVISOR] Terminating {self.name} process (PID: {self.pid})")
        self.termination_requested = True
        try:
            self.handle.terminate()
        except ProcessLookupError:
            pass

        try:
            await asyncio.wait_for(self.handle.wait(), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                f"[SUPERVISOR] {self.name} ignored SIGTERM for {grace_period}s, force killing"
            )
            try:
                self.handle.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.handle.wait(), timeout=kill_wait)
            except asyncio.TimeoutError:
                logger.error(f"[SUPERVISOR] {self.name} (PID: {self.pid}) did not exit after SIGKILL")
                return None

        if descendants:
            killed = await asyncio.to_thread(_kill_survivors, descendants, kill_wait)
            if killed:
                logger.info(f"[SUPERVISOR] Killed {killed} leftover child process(es) of {self.name}")

        self.terminated = True
        logger.debug(f"[SUPERVISOR] {self.name} stopped with code {self.handle.returncode}")
        return self.handle.returncode


class ProcessSupervisor:
    """
    Tracks the external processes of one recording job.

    Attributes:
        grace_period: Seconds between SIGTERM and SIGKILL
        kill_descendants: Whether tracked processes also reap their children
    """

    def __init__(self, grace_period: float = 5.0, kill_descendants: bool = True) -> None:
        self.grace_period = grace_period
        self.kill_descendants = kill_descendants
        self._processes: List[ManagedProcess] = []

    @property
    def processes(self) -> Tuple[ManagedProcess, ...]:
        return tuple(self._processes)

    @property
    def active_count(self) -> int:
        """Number of tracked processes (cleared by terminate_all)."""
        return len(self._processes)

    def track(self, process: Any, name: str) -> ManagedProcess:
        """
        Start tracking a process handle.

        Args:
            process: Process handle to supervise
            name: Label used in logs

        Returns:
            The ManagedProcess wrapping the handle
        """
        managed = ManagedProcess(
            handle=process,
            name=name,
            kill_descendants=self.kill_descendants,
        )
        self._processes.append(managed)
        logger.debug(f"[SUPERVISOR] Tracking {name} (PID: {managed.pid})")
        return managed

    async def spawn(
        self,
        name: str,
        argv: Sequence[str],
        *,
        env: Optional[Dict[str, str]] = None,
        capture_stderr: bool = False,
    ) -> ManagedProcess:
        """
        Spawn a process and track it.

        Args:
            name: Label used in logs
            argv: Program and arguments
            env: Full environment for the child (inherits ours if None)
            capture_stderr: Pipe stderr so the caller can read it

        Returns:
            The tracked ManagedProcess

        Raises:
            OSError: If the program cannot be executed
        """
        logger.info(f"[SUPERVISOR] Starting {name}: {' '.join(argv)}")
        handle = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE if capture_stderr else asyncio.subprocess.DEVNULL,
            env=env,
        )
        return self.track(handle, name)

    async def terminate_all(self) -> None:
        """
        Terminate every tracked process concurrently and forget them.

        Completes within roughly one grace period however many processes
        are tracked. Processes tracked while termination is in progress
        are terminated in a further round. Never raises; failures are logged.
        """
        while self._processes:
            processes = list(self._processes)
            logger.info(f"[SUPERVISOR] Cleaning up {len(processes)} process(es)")
            results = await asyncio.gather(
                *(process.terminate(self.grace_period) for process in processes),
                return_exceptions=True,
            )
            for process, result in zip(processes, results):
                if isinstance(result, BaseException):
                    logger.error(f"[SUPERVISOR] Failed to terminate {process.name}: {result}")

            self._processes = [p for p in self._processes if p not in processes]
