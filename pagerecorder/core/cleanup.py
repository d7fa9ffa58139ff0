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
Per-job cleanup and deferred artifact deletion.

Cleanup runs exactly once at the end of every job, whatever happened
before it. It always stops every supervised process, then decides what
happens to the local recording:

    published  -> delete now (the remote copy is authoritative)
    aborted    -> delete now (partial output of a failed job)
    skipped    -> keep for the retention window, then delete
    failed     -> keep for the retention window, then delete

Deferred deletions are explicit asyncio tasks held by a DeletionScheduler,
so they can be inspected, cancelled, or flushed at shutdown.
"""

from __future__ import annotations

import asyncio
import os
from enum import Enum
from typing import Dict, List, Optional

from pagerecorder.core.supervisor import ProcessSupervisor
from pagerecorder.utils.clock import Clock, default_clock
from pagerecorder.utils.logger import logger


class PublishOutcome(str, Enum):
    """What became of the recording before cleanup."""

    PUBLISHED = "published"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"


def delete_file(path: str) -> bool:
    """Delete a file, logging instead of raising. Returns True if removed."""
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error(f"[CLEANUP] Could not delete {path}: {e}")
        return False
    logger.info(f"[CLEANUP] Deleted {path}")
    return True


class DeletionScheduler:
    """Schedules cancellable deferred file deletions."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or default_clock()
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> List[str]:
        """Paths with a deletion still scheduled."""
        return sorted(path for path, task in self._tasks.items() if not task.done())

    def schedule(self, path: str, delay: float) -> asyncio.Task:
        """
        Delete path after delay seconds. Rescheduling a path replaces
        its previous deletion.

        Returns:
            The task performing the deletion
        """
        self.cancel(path)
        task = asyncio.create_task(self._delete_later(path, delay))
        self._tasks[path] = task
        task.add_done_callback(lambda done, key=path: self._forget(key, done))
        logger.info(f"[CLEANUP] Scheduled deletion of {path} in {delay:.0f}s")
        return task

    async def _delete_later(self, path: str, delay: float) -> None:
        await self.clock.sleep(delay)
        delete_file(path)

    def _forget(self, path: str, task: asyncio.Task) -> None:
        if self._tasks.get(path) is task:
            del self._tasks[path]

    def cancel(self, path: str) -> bool:
        """Cancel a scheduled deletion; the file is kept."""
        task = self._tasks.pop(path, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for path in list(self._tasks):
            if self.cancel(path):
                cancelled += 1
        return cancelled

    def flush(self) -> int:
        """Run every pending deletion now. Used at shutdown."""
        paths = self.pending
        for path in paths:
            self.cancel(path)
            delete_file(path)
        return len(paths)


class CleanupOrchestrator:
    """Final step of every job.

    Attributes:
        scheduler: Where deferred deletions are scheduled
        retention_seconds: How long an unpublished recording is kept
    """

    def __init__(self, scheduler: DeletionScheduler, retention_seconds: float = 60.0) -> None:
        self.scheduler = scheduler
        self.retention_seconds = retention_seconds

    async def run(
        self,
        supervisor: ProcessSupervisor,
        artifact_path: Optional[str],
        outcome: PublishOutcome,
    ) -> None:
        """
        Stop all job processes and dispose of the local recording.

        Never raises.

        Args:
            supervisor: Supervisor of the finished job
            artifact_path: Local recording path, if one was planned
            outcome: What happened to the recording
        """
        await supervisor.terminate_all()

        if not artifact_path:
            return

        if outcome in (PublishOutcome.PUBLISHED, PublishOutcome.ABORTED):
            delete_file(artifact_path)
        elif os.path.exists(artifact_path):
            self.scheduler.schedule(artifact_path, self.retention_seconds)
