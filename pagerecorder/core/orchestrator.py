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
Recording job orchestration.

The JobOrchestrator admits at most one job at a time and drives it through
a fixed sequence of stages:

    provisioning -> launching_render_host -> probing_readiness -> capturing
        -> publishing -> cleaning_up -> completed | failed

Any stage failure skips straight to cleaning_up and ends in failed.
Cleanup runs on every exit path (success, failure, cancellation), and the
admission slot is released only after cleanup has finished, so a new job
never overlaps processes or files of the previous one.

Example:
    >>> orchestrator = JobOrchestrator(
    ...     recordings_dir="/usr/src/app/recordings",
    ...     display=DisplayProvisioner(),
    ...     launcher=RenderHostLauncher(),
    ...     encoder=CaptureEncoder(),
    ...     publisher=None,
    ...     cleanup=CleanupOrchestrator(DeletionScheduler()),
    ... )
    >>> result = await orchestrator.submit(
    ...     {"videoId": "v1", "duration": 10, "previewUrl": "https://example.com/v1"}
    ... )
    >>> result.success
    True
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlparse

from pagerecorder.core.cleanup import CleanupOrchestrator, PublishOutcome
from pagerecorder.core.display import DisplayProvisioner
from pagerecorder.core.encoder import CaptureEncoder
from pagerecorder.core.publisher import ArtifactPublisher
from pagerecorder.core.render_host import RenderHostLauncher
from pagerecorder.core.supervisor import ProcessSupervisor
from pagerecorder.exceptions import (
    AdmissionBusyError,
    ArtifactMissingError,
    StageError,
    UploadFailure,
    ValidationError,
)
from pagerecorder.utils.clock import Clock, default_clock
from pagerecorder.utils.logger import logger

MIN_DURATION_SECONDS = 1
MAX_DURATION_SECONDS = 300

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class JobState(str, Enum):
    """Lifecycle states of the recording job."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    LAUNCHING_RENDER_HOST = "launching_render_host"
    PROBING_READINESS = "probing_readiness"
    CAPTURING = "capturing"
    PUBLISHING = "publishing"
    CLEANING_UP = "cleaning_up"
    COMPLETED = "completed"
    FAILED = "failed"


def _coerce_duration(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("duration must be an integer number of seconds")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValidationError("duration must be an integer number of seconds")


@dataclass(frozen=True)
class RecordingRequest:
    """A validated recording request.

    Attributes:
        video_id: Identifier of the recorded video (keys storage and metadata)
        duration: Recording length in seconds, within [1, 300]
        source_url: Page to record
    """

    video_id: str
    duration: int
    source_url: str

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        url_template: Optional[str] = None,
    ) -> "RecordingRequest":
        """
        Validate a wire payload ``{videoId, duration, previewUrl}``.

        Args:
            payload: Decoded JSON body
            url_template: Fallback URL with a ``{video_id}`` placeholder,
                used when previewUrl is absent

        Returns:
            The validated request

        Raises:
            ValidationError: If any field is missing or invalid
        """
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")

        video_id = payload.get("videoId")
        duration = payload.get("duration")
        if video_id is None or duration is None:
            raise ValidationError("videoId and duration are required")
        if isinstance(video_id, bool) or not isinstance(video_id, (str, int)):
            raise ValidationError("videoId must be a string")
        video_id = str(video_id).strip()
        if not video_id:
            raise ValidationError("videoId and duration are required")
        if not video_id.strip("."):
            raise ValidationError("videoId must not consist only of dots")

        duration = _coerce_duration(duration)
        if duration < MIN_DURATION_SECONDS or duration > MAX_DURATION_SECONDS:
            raise ValidationError(
                f"Duration must be between {MIN_DURATION_SECONDS} and "
                f"{MAX_DURATION_SECONDS} seconds"
            )

        source_url = payload.get("previewUrl") or payload.get("sourceUrl")
        if not source_url:
            if not url_template:
                raise ValidationError("previewUrl is required")
            source_url = url_template.format(video_id=quote(video_id, safe=""))
        if not isinstance(source_url, str):
            raise ValidationError("previewUrl must be a string")
        parsed = urlparse(source_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("previewUrl must be an absolute http(s) URL")

        return cls(video_id=video_id, duration=duration, source_url=source_url)


@dataclass
class Artifact:
    """The recorded file and, once published, its remote location."""

    local_path: str
    size_bytes: int
    remote_url: Optional[str] = None
    url_expires_at: Optional[float] = None


@dataclass
class JobContext:
    """Everything owned by the single active job."""

    request: RecordingRequest
    supervisor: ProcessSupervisor
    output_path: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: JobState = JobState.IDLE
    started_at: float = 0.0
    history: List[JobState] = field(default_factory=list)

    def transition(self, state: JobState) -> None:
        logger.debug(f"[ORCHESTRATOR] Job {self.job_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


@dataclass
class RecordingResult:
    """Outcome of a submitted job, successful or not."""

    success: bool
    job_id: str
    video_id: str
    duration: int
    state: JobState
    file_size: int = 0
    output_path: Optional[str] = None
    url: Optional[str] = None
    url_expires_at: Optional[float] = None
    publish_error: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    elapsed_seconds: float = 0.0


class JobOrchestrator:
    """
    Single-flight admission gate and state machine for recording jobs.

    Attributes:
        recordings_dir: Directory receiving local recordings
        display: Virtual display stage
        launcher: Render host launch and readiness stages
        encoder: Capture stage
        publisher: Publish stage, or None when storage is not configured
        cleanup: Final stage run for every job
        last_job: Context of the most recently finished job
    """

    def __init__(
        self,
        *,
        recordings_dir: str,
        display: DisplayProvisioner,
        launcher: RenderHostLauncher,
        encoder: CaptureEncoder,
        publisher: Optional[ArtifactPublisher],
        cleanup: CleanupOrchestrator,
        supervisor_factory: Callable[[], ProcessSupervisor] = ProcessSupervisor,
        url_template: Optional[str] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.recordings_dir = recordings_dir
        self.display = display
        self.launcher = launcher
        self.encoder = encoder
        self.publisher = publisher
        self.cleanup = cleanup
        self.supervisor_factory = supervisor_factory
        self.url_template = url_template
        self.clock = clock or default_clock()
        self._active: Optional[JobContext] = None
        self.last_job: Optional[JobContext] = None

    @property
    def active_job(self) -> Optional[JobContext]:
        return self._active

    @property
    def is_recording(self) -> bool:
        return self._active is not None

    @property
    def state(self) -> JobState:
        return self._active.state if self._active else JobState.IDLE

    @property
    def active_processes(self) -> int:
        return self._active.supervisor.active_count if self._active else 0

    def _output_path(self, video_id: str) -> str:
        safe_id = _UNSAFE_FILENAME_CHARS.sub("_", video_id)
        timestamp = int(self.clock.time() * 1000)
        return str(Path(self.recordings_dir) / f"recording_{safe_id}_{timestamp}.mp4")

    async def submit(self, payload: Any) -> RecordingResult:
        """
        Validate, admit and run one recording job.

        Args:
            payload: Wire payload ``{videoId, duration, previewUrl}``

        Returns:
            RecordingResult describing success or the failed stage

        Raises:
            ValidationError: If the payload is invalid (nothing was started)
            AdmissionBusyError: If a job is already running (nothing was started)
        """
        request = RecordingRequest.from_payload(payload, self.url_template)

        # No await between the check and the assignment: admission is atomic
        # on the event loop.
        if self._active is not None:
            raise AdmissionBusyError()
        ctx = JobContext(
            request=request,
            supervisor=self.supervisor_factory(),
            output_path=self._output_path(request.video_id),
            started_at=self.clock.monotonic(),
        )
        self._active = ctx
        try:
            return await self._run(ctx)
        finally:
            self._active = None
            self.last_job = ctx

    async def _run(self, ctx: JobContext) -> RecordingResult:
        request = ctx.request
        logger.info(
            f"[ORCHESTRATOR] Starting recording job {ctx.job_id} for videoId: "
            f"{request.video_id}, duration: {request.duration}s"
        )

        outcome = PublishOutcome.ABORTED
        artifact: Optional[Artifact] = None
        publish_error: Optional[str] = None
        failure: Optional[Exception] = None
        cancelled = False
        try:
            ctx.transition(JobState.PROVISIONING)
            await self.display.start(ctx.supervisor)

            ctx.transition(JobState.LAUNCHING_RENDER_HOST)
            render_host = await self.launcher.launch(request.source_url, ctx.supervisor)

            ctx.transition(JobState.PROBING_READINESS)
            await self.launcher.wait_ready(render_host)

            ctx.transition(JobState.CAPTURING)
            await self.encoder.capture(request.duration, ctx.output_path, ctx.supervisor)
            artifact = self._collect_artifact(ctx.output_path)

            ctx.transition(JobState.PUBLISHING)
            outcome, publish_error = await self._publish(artifact, request.video_id)
        except asyncio.CancelledError:
            cancelled = True
            outcome = PublishOutcome.ABORTED
            logger.warning(f"[ORCHESTRATOR] Job {ctx.job_id} cancelled in {ctx.state.value}")
            raise
        except Exception as e:
            failure = e
            outcome = PublishOutcome.ABORTED
            if isinstance(e, StageError):
                logger.error(f"[ORCHESTRATOR] Recording failed in {ctx.state.value}: {e}")
            else:
                logger.error(f"[ORCHESTRATOR] Unexpected error in {ctx.state.value}: {e}", exc_info=True)
        finally:
            ctx.transition(JobState.CLEANING_UP)
            await self.cleanup.run(ctx.supervisor, ctx.output_path, outcome)
            if cancelled:
                ctx.transition(JobState.FAILED)

        elapsed = self.clock.monotonic() - ctx.started_at
        if failure is not None or artifact is None:
            ctx.transition(JobState.FAILED)
            return RecordingResult(
                success=False,
                job_id=ctx.job_id,
                video_id=request.video_id,
                duration=request.duration,
                state=ctx.state,
                error=type(failure).__name__ if failure else "RecorderError",
                message=str(failure) if failure else "Recording produced no artifact",
                elapsed_seconds=elapsed,
            )

        ctx.transition(JobState.COMPLETED)
        logger.info(
            f"[ORCHESTRATOR] Recording completed successfully. File size: {artifact.size_bytes} bytes"
        )
        return RecordingResult(
            success=True,
            job_id=ctx.job_id,
            video_id=request.video_id,
            duration=request.duration,
            state=ctx.state,
            file_size=artifact.size_bytes,
            output_path=None if artifact.remote_url else artifact.local_path,
            url=artifact.remote_url,
            url_expires_at=artifact.url_expires_at,
            publish_error=publish_error,
            elapsed_seconds=elapsed,
        )

    @staticmethod
    def _collect_artifact(output_path: str) -> Artifact:
        try:
            size = os.path.getsize(output_path)
        except OSError as e:
            raise ArtifactMissingError("Recording file was not created") from e
        if size <= 0:
            raise ArtifactMissingError("Recording file is empty")
        return Artifact(local_path=output_path, size_bytes=size)

    async def _publish(self, artifact: Artifact, job_id: str) -> Tuple[PublishOutcome, Optional[str]]:
        if self.publisher is None:
            logger.info("[ORCHESTRATOR] Storage not configured, keeping local recording")
            return PublishOutcome.SKIPPED, None

        try:
            published = await self.publisher.publish(artifact.local_path, job_id)
        except UploadFailure as e:
            # Degraded success: the local file stays available for the retention window.
            logger.warning(f"[ORCHESTRATOR] Publishing failed, falling back to local file: {e}")
            return PublishOutcome.FAILED, str(e)

        artifact.remote_url = published.url
        artifact.url_expires_at = published.expires_at
        return PublishOutcome.PUBLISHED, None

    async def shutdown(self) -> None:
        """
        Release everything before the host process exits.

        Terminates the active job's processes (if any), deletes recordings
        waiting for deferred deletion and closes the storage client.
        """
        ctx = self._active
        if ctx is not None:
            logger.warning(
                f"[ORCHESTRATOR] Shutdown during job {ctx.job_id} ({ctx.state.value}), cleaning up"
            )
            await ctx.supervisor.terminate_all()

        flushed = self.cleanup.scheduler.flush()
        if flushed:
            logger.info(f"[ORCHESTRATOR] Removed {flushed} retained recording(s)")

        if self.publisher is not None:
            await self.publisher.close()
