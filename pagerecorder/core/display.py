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

"""Virtual display provisioning (Xvfb)."""

from __future__ import annotations

from typing import List, Optional

from pagerecorder.core.config import DisplayConfig
from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor
from pagerecorder.exceptions import DisplayStartFailure
from pagerecorder.utils.clock import Clock, default_clock
from pagerecorder.utils.logger import logger


class DisplayProvisioner:
    """Starts Xvfb and checks that it survives the settle window.

    This is a liveness check only; the display is not probed for
    usability, a process still running after the window is accepted.
    """

    def __init__(self, config: Optional[DisplayConfig] = None, clock: Optional[Clock] = None) -> None:
        self.config = config or DisplayConfig()
        self.clock = clock or default_clock()

    def build_command(self) -> List[str]:
        return [
            self.config.xvfb_path,
            self.config.display,
            "-screen",
            "0",
            self.config.geometry,
            "-nolisten",
            "tcp",
        ]

    async def start(self, supervisor: ProcessSupervisor) -> ManagedProcess:
        """
        Start the virtual display.

        Args:
            supervisor: Supervisor of the current job

        Returns:
            The running Xvfb process

        Raises:
            DisplayStartFailure: If Xvfb cannot be spawned or exits
                within the settle window
        """
        logger.info(f"[DISPLAY] Starting Xvfb virtual display {self.config.display} ({self.config.geometry})")
        try:
            process = await supervisor.spawn("Xvfb", self.build_command())
        except OSError as e:
            raise DisplayStartFailure(f"Xvfb failed to start: {e}") from e

        await self.clock.sleep(self.config.settle_seconds)

        if not process.is_running:
            raise DisplayStartFailure(
                f"Xvfb failed to start (exited with code {process.returncode})"
            )

        logger.info("[DISPLAY] Xvfb started successfully")
        return process
