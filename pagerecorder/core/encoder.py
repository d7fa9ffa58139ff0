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
Screen capture via ffmpeg x11grab.

The encoder grabs the virtual display for a fixed duration and exits on
its own. Its exit status is the only success signal; progress lines on
stderr are parsed for logging.
"""

from __future__ import annotations

import asyncio
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, List, Optional

from pagerecorder.core.config import CaptureConfig, DisplayConfig
from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor
from pagerecorder.exceptions import EncoderFailure
from pagerecorder.utils.logger import logger

_PROGRESS_FIELDS = re.compile(r"(frame|fps|size|time|bitrate|speed)=\s*(\S+)")
_LINE_SPLIT = re.compile(r"[\r\n]+")


@dataclass
class CaptureProgress:
    """One ffmpeg progress line, e.g. ``frame=  120 fps= 30 ... time=00:00:04.00``."""

    frame: int = 0
    fps: float = 0.0
    size: Optional[str] = None
    time: Optional[str] = None
    bitrate: Optional[str] = None
    speed: Optional[str] = None

    @classmethod
    def parse(cls, line: str) -> Optional["CaptureProgress"]:
        """Parse a progress line; returns None for any other output."""
        fields = dict(_PROGRESS_FIELDS.findall(line))
        if "frame" not in fields and "time" not in fields:
            return None
        progress = cls(
            size=fields.get("size"),
            time=fields.get("time"),
            bitrate=fields.get("bitrate"),
            speed=fields.get("speed"),
        )
        try:
            progress.frame = int(fields.get("frame", 0))
        except ValueError:
            pass
        try:
            progress.fps = float(fields.get("fps", 0.0))
        except ValueError:
            pass
        return progress


class CaptureEncoder:
    """
    Records the virtual display to a video file.

    Attributes:
        config: Encoder settings
        display: Display being captured
        grace_period: Grace period used when a hung encoder is stopped
    """

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        display: Optional[DisplayConfig] = None,
        grace_period: float = 5.0,
    ) -> None:
        self.config = config or CaptureConfig()
        self.display = display or DisplayConfig()
        self.grace_period = grace_period
        self.last_progress: Optional[CaptureProgress] = None
        self._diagnostics: Deque[str] = deque(maxlen=20)

    def build_command(self, duration_seconds: int, output_path: str) -> List[str]:
        return [
            self.config.ffmpeg_path,
            "-nostdin",
            "-f", "x11grab",
            "-video_size", self.display.video_size,
            "-framerate", str(self.config.frame_rate),
            "-i", f"{self.display.display}.0",
            "-an",
            "-c:v", self.config.codec,
            "-preset", self.config.preset,
            "-crf", str(self.config.crf),
            "-pix_fmt", self.config.pixel_format,
            "-t", str(duration_seconds),
            "-y",
            output_path,
        ]

    async def _drain_diagnostics(self, process: ManagedProcess) -> None:
        stream = getattr(process.handle, "stderr", None)
        if stream is None:
            return
        pending = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            pending += chunk.decode("utf-8", errors="ignore")
            *lines, pending = _LINE_SPLIT.split(pending)
            for line in lines:
                self._handle_line(line)
        if pending:
            self._handle_line(pending)

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        progress = CaptureProgress.parse(line)
        if progress is not None:
            self.last_progress = progress
            logger.debug(f"[ENCODER] FFmpeg: {line}")
        else:
            self._diagnostics.append(line)

    @property
    def diagnostics(self) -> List[str]:
        """Last non-progress lines ffmpeg wrote to stderr."""
        return list(self._diagnostics)

    async def capture(
        self,
        duration_seconds: int,
        output_path: str,
        supervisor: ProcessSupervisor,
    ) -> None:
        """
        Capture the display for exactly duration_seconds.

        Args:
            duration_seconds: Recording length
            output_path: Destination file (overwritten)
            supervisor: Supervisor of the current job

        Raises:
            EncoderFailure: If ffmpeg cannot start, exits non-zero
                or overruns its time limit
        """
        self.last_progress = None
        self._diagnostics.clear()
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"[ENCODER] Starting FFmpeg recording for {duration_seconds} seconds")
        try:
            process = await supervisor.spawn(
                "FFmpeg",
                self.build_command(duration_seconds, output_path),
                env=self.display.environment(),
                capture_stderr=True,
            )
        except OSError as e:
            raise EncoderFailure(f"FFmpeg failed to start: {e}") from e

        reader = asyncio.create_task(self._drain_diagnostics(process))
        limit = duration_seconds + self.config.timeout_slack
        try:
            try:
                code = await asyncio.wait_for(process.wait(), timeout=limit)
            except asyncio.TimeoutError:
                logger.error(f"[ENCODER] FFmpeg still running after {limit:.0f}s, stopping it")
                await process.terminate(self.grace_period)
                raise EncoderFailure(
                    f"FFmpeg did not finish within {limit:.0f} seconds",
                    exit_code=process.returncode,
                )
            await asyncio.wait({reader}, timeout=2.0)
        finally:
            if not reader.done():
                reader.cancel()

        logger.info(f"[ENCODER] FFmpeg process exited with code {code}")
        if code != 0:
            for line in self._diagnostics:
                logger.error(f"[ENCODER] FFmpeg: {line}")
            raise EncoderFailure(f"FFmpeg failed with exit code {code}", exit_code=code)

        if self.last_progress is not None:
            logger.info(
                f"[ENCODER] Captured {self.last_progress.frame} frames "
                f"(time={self.last_progress.time}, speed={self.last_progress.speed})"
            )
