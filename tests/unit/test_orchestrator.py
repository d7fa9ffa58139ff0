# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for RecordingRequest and JobOrchestrator."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from pagerecorder.core.cleanup import CleanupOrchestrator, DeletionScheduler
from pagerecorder.core.config import CaptureConfig, DisplayConfig, RenderHostConfig, StorageConfig
from pagerecorder.core.display import DisplayProvisioner
from pagerecorder.core.encoder import CaptureEncoder
from pagerecorder.core.orchestrator import JobOrchestrator, JobState, RecordingRequest
from pagerecorder.core.publisher import ArtifactPublisher
from pagerecorder.core.render_host import ReadinessProbe, RenderHostLauncher
from pagerecorder.exceptions import (
    AdmissionBusyError,
    RenderReadinessTimeout,
    UploadFailure,
    ValidationError,
)
from pagerecorder.utils.clock import SystemClock

PAYLOAD = {"videoId": "v1", "duration": 10, "previewUrl": "https://example.com/preview/v1"}

RECORDING_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 4096


class WritingEncoder(CaptureEncoder):
    """CaptureEncoder whose fake ffmpeg leaves a file behind, as the real one does."""

    def __init__(self, payload=RECORDING_BYTES):
        super().__init__(CaptureConfig(), DisplayConfig(), grace_period=0.05)
        self.payload = payload

    async def capture(self, duration_seconds, output_path, supervisor):
        if self.payload is not None:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            Path(output_path).write_bytes(self.payload)
        await super().capture(duration_seconds, output_path, supervisor)


@pytest.fixture
def storage_client():
    client = MagicMock()
    client.upload = AsyncMock()
    client.create_signed_url = AsyncMock(return_value="https://xyz.supabase.co/storage/v1/object/sign/x")
    client.update_record = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def probe():
    probe = MagicMock(spec=ReadinessProbe)
    probe.wait_ready = AsyncMock()
    return probe


@pytest.fixture
def build(tmp_path, clock, probe, storage_client, scripted_supervisor, fake_process):
    """Factory building an orchestrator from fakes; returns (orchestrator, supervisors)."""
    created = []

    def factory(
        *,
        ffmpeg_exit=0,
        encoder=None,
        publish=True,
        url_template=None,
    ):
        def supervisor_factory():
            supervisor = scripted_supervisor({"FFmpeg": lambda: fake_process(exit_code=ffmpeg_exit)})
            created.append(supervisor)
            return supervisor

        publisher = None
        if publish:
            publisher = ArtifactPublisher(
                StorageConfig(url="https://xyz.supabase.co", service_key="key"),
                client=storage_client,
                clock=clock,
            )

        orchestrator = JobOrchestrator(
            recordings_dir=str(tmp_path / "recordings"),
            display=DisplayProvisioner(DisplayConfig(), clock),
            launcher=RenderHostLauncher(
                RenderHostConfig(profile_dir=str(tmp_path / "chrome-data"), termination_grace=0.05),
                DisplayConfig(),
                clock=clock,
                probe=probe,
            ),
            encoder=encoder or WritingEncoder(),
            publisher=publisher,
            cleanup=CleanupOrchestrator(DeletionScheduler(SystemClock()), retention_seconds=60.0),
            supervisor_factory=supervisor_factory,
            url_template=url_template,
            clock=clock,
        )
        return orchestrator, created

    yield factory

    for supervisor in created:
        assert supervisor.active_count == 0


def recordings(tmp_path):
    directory = tmp_path / "recordings"
    return sorted(directory.iterdir()) if directory.exists() else []


class TestRecordingRequest:
    """Tests for RecordingRequest.from_payload."""

    def test_valid_payload(self):
        request = RecordingRequest.from_payload(PAYLOAD)

        assert request == RecordingRequest(
            video_id="v1", duration=10, source_url="https://example.com/preview/v1"
        )

    def test_integral_float_duration(self):
        request = RecordingRequest.from_payload({**PAYLOAD, "duration": 10.0})

        assert request.duration == 10

    @pytest.mark.parametrize(
        "payload, message",
        [
            ({"duration": 10, "previewUrl": "https://example.com"}, "videoId and duration are required"),
            ({"videoId": "v1", "previewUrl": "https://example.com"}, "videoId and duration are required"),
            ({**PAYLOAD, "videoId": "  "}, "videoId and duration are required"),
            ({**PAYLOAD, "videoId": ".."}, "only of dots"),
            ({**PAYLOAD, "duration": 0}, "Duration must be between 1 and 300 seconds"),
            ({**PAYLOAD, "duration": 301}, "Duration must be between 1 and 300 seconds"),
            ({**PAYLOAD, "duration": 500}, "Duration must be between 1 and 300 seconds"),
            ({**PAYLOAD, "duration": True}, "integer"),
            ({**PAYLOAD, "duration": 2.5}, "integer"),
            ({**PAYLOAD, "duration": "10"}, "integer"),
            ({"videoId": "v1", "duration": 10}, "previewUrl is required"),
            ({**PAYLOAD, "previewUrl": "ftp://example.com/v1"}, "http"),
            ({**PAYLOAD, "previewUrl": "not a url"}, "http"),
        ],
    )
    def test_invalid_payloads(self, payload, message):
        with pytest.raises(ValidationError, match=message):
            RecordingRequest.from_payload(payload)

    def test_non_object_payload(self):
        with pytest.raises(ValidationError):
            RecordingRequest.from_payload(["v1", 10])

    def test_duration_bounds_inclusive(self):
        assert RecordingRequest.from_payload({**PAYLOAD, "duration": 1}).duration == 1
        assert RecordingRequest.from_payload({**PAYLOAD, "duration": 300}).duration == 300

    def test_url_from_template(self):
        request = RecordingRequest.from_payload(
            {"videoId": "abc 1", "duration": 5},
            url_template="https://app.example/preview-headless/{video_id}?autoplay=true",
        )

        assert request.source_url == "https://app.example/preview-headless/abc%201?autoplay=true"

    def test_explicit_url_wins_over_template(self):
        request = RecordingRequest.from_payload(PAYLOAD, url_template="https://other/{video_id}")

        assert request.source_url == PAYLOAD["previewUrl"]


class TestJobOrchestrator:
    """Tests for the recording job lifecycle."""

    @pytest.mark.asyncio
    async def test_successful_recording(self, build, tmp_path, clock, storage_client):
        """Test the happy path: captured, published, local file removed."""
        orchestrator, supervisors = build()

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is True
        assert result.video_id == "v1"
        assert result.duration == 10
        assert result.file_size == len(RECORDING_BYTES)
        assert result.url == "https://xyz.supabase.co/storage/v1/object/sign/x"
        assert result.output_path is None
        assert result.url_expires_at == clock.time() + 3600
        assert result.state == JobState.COMPLETED
        assert orchestrator.last_job.history == [
            JobState.PROVISIONING,
            JobState.LAUNCHING_RENDER_HOST,
            JobState.PROBING_READINESS,
            JobState.CAPTURING,
            JobState.PUBLISHING,
            JobState.CLEANING_UP,
            JobState.COMPLETED,
        ]
        assert recordings(tmp_path) == []
        storage_client.update_record.assert_awaited_once()
        assert storage_client.update_record.await_args.args[1] == "v1"

        supervisor = supervisors[0]
        assert [spawn[0] for spawn in supervisor.spawned] == ["Xvfb", "Chrome", "FFmpeg"]
        assert supervisor.handles["Xvfb"].signals == ["SIGTERM"]
        assert supervisor.handles["Chrome"].signals == ["SIGTERM"]
        assert supervisor.handles["FFmpeg"].signals == []
        assert orchestrator.state == JobState.IDLE
        assert orchestrator.is_recording is False

    @pytest.mark.asyncio
    async def test_output_path(self, build, tmp_path, clock):
        """Test recordings are named after the sanitized video id and time."""
        orchestrator, _ = build(publish=False)
        started_ms = int(clock.time() * 1000)

        result = await orchestrator.submit({**PAYLOAD, "videoId": "../a b"})

        expected = tmp_path / "recordings" / f"recording_.._a_b_{started_ms}.mp4"
        assert result.output_path == str(expected)
        orchestrator.cleanup.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_readiness_timeout(self, build, tmp_path, probe):
        """Test a page that never plays fails the job and stops the browser."""
        probe.wait_ready.side_effect = RenderReadinessTimeout(
            "Video with effects failed to start within 60 seconds"
        )
        orchestrator, supervisors = build()

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is False
        assert result.state == JobState.FAILED
        assert result.error == "RenderReadinessTimeout"
        assert "failed to start within 60 seconds" in result.message
        supervisor = supervisors[0]
        assert [spawn[0] for spawn in supervisor.spawned] == ["Xvfb", "Chrome"]
        assert supervisor.handles["Chrome"].signals == ["SIGTERM"]
        assert orchestrator.last_job.history[-2:] == [JobState.CLEANING_UP, JobState.FAILED]
        assert JobState.CAPTURING not in orchestrator.last_job.history
        assert recordings(tmp_path) == []

    @pytest.mark.asyncio
    async def test_invalid_request_starts_nothing(self, build):
        """Test a rejected request creates no job at all."""
        orchestrator, supervisors = build()

        with pytest.raises(ValidationError, match="Duration must be between 1 and 300 seconds"):
            await orchestrator.submit({**PAYLOAD, "duration": 500})

        assert supervisors == []
        assert orchestrator.is_recording is False

    @pytest.mark.asyncio
    async def test_concurrent_submission_rejected(self, build, probe):
        """Test a second submission while busy is rejected without side effects."""
        release = asyncio.Event()

        async def blocked(render_host):
            await release.wait()

        probe.wait_ready.side_effect = blocked
        orchestrator, supervisors = build()

        first = asyncio.create_task(orchestrator.submit(PAYLOAD))
        for _ in range(100):
            if orchestrator.state == JobState.PROBING_READINESS:
                break
            await asyncio.sleep(0)
        assert orchestrator.is_recording is True
        assert orchestrator.active_processes == 2

        with pytest.raises(AdmissionBusyError, match="Recording already in progress"):
            await orchestrator.submit({**PAYLOAD, "videoId": "v2"})
        assert len(supervisors) == 1

        release.set()
        result = await first

        assert result.success is True
        assert orchestrator.is_recording is False
        assert orchestrator.active_processes == 0

    @pytest.mark.asyncio
    async def test_admission_released_after_failure(self, build, probe):
        """Test a failed job does not block the next one."""
        probe.wait_ready.side_effect = [RenderReadinessTimeout("timed out"), None]
        orchestrator, _ = build()

        first = await orchestrator.submit(PAYLOAD)
        second = await orchestrator.submit(PAYLOAD)

        assert first.success is False
        assert second.success is True

    @pytest.mark.asyncio
    async def test_encoder_failure_removes_partial_file(self, build, tmp_path):
        """Test an encoder crash fails the job and deletes the partial recording."""
        orchestrator, supervisors = build(ffmpeg_exit=1)

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is False
        assert result.error == "EncoderFailure"
        assert "exit code 1" in result.message
        assert recordings(tmp_path) == []
        supervisor = supervisors[0]
        assert supervisor.handles["Xvfb"].signals == ["SIGTERM"]
        assert supervisor.handles["Chrome"].signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_missing_artifact(self, build):
        """Test a successful encoder exit without a file fails the job."""
        orchestrator, _ = build(encoder=WritingEncoder(payload=None))

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is False
        assert result.error == "ArtifactMissingError"

    @pytest.mark.asyncio
    async def test_empty_artifact(self, build, tmp_path):
        """Test an empty recording counts as missing and is removed."""
        orchestrator, _ = build(encoder=WritingEncoder(payload=b""))

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is False
        assert result.error == "ArtifactMissingError"
        assert recordings(tmp_path) == []

    @pytest.mark.asyncio
    async def test_upload_failure_degrades_to_local_file(self, build, tmp_path, storage_client):
        """Test an upload failure still reports success with the local path."""
        storage_client.upload.side_effect = UploadFailure("Upload failed (503): unavailable")
        orchestrator, _ = build()

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is True
        assert result.url is None
        assert result.output_path is not None
        assert result.publish_error == "Upload failed (503): unavailable"
        assert Path(result.output_path).exists()
        assert orchestrator.cleanup.scheduler.pending == [result.output_path]
        orchestrator.cleanup.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_storage_disabled_keeps_local_file(self, build, tmp_path):
        """Test recordings are kept locally when no storage is configured."""
        orchestrator, _ = build(publish=False)

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is True
        assert result.publish_error is None
        assert orchestrator.cleanup.scheduler.pending == [result.output_path]
        orchestrator.cleanup.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_unexpected_error_still_cleans_up(self, build, probe):
        """Test an unexpected exception is reported as a failed job."""
        probe.wait_ready.side_effect = RuntimeError("bug")
        orchestrator, supervisors = build()

        result = await orchestrator.submit(PAYLOAD)

        assert result.success is False
        assert result.error == "RuntimeError"
        assert supervisors[0].terminate_all_calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_cleans_up_and_releases(self, build, probe):
        """Test a cancelled job (host shutdown) still runs cleanup."""
        async def never_ready(render_host):
            await asyncio.Event().wait()

        probe.wait_ready.side_effect = never_ready
        orchestrator, supervisors = build()

        task = asyncio.create_task(orchestrator.submit(PAYLOAD))
        for _ in range(100):
            if orchestrator.state == JobState.PROBING_READINESS:
                break
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.is_recording is False
        assert orchestrator.last_job.state == JobState.FAILED
        assert orchestrator.last_job.history[-2:] == [JobState.CLEANING_UP, JobState.FAILED]
        assert supervisors[0].handles["Chrome"].signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_shutdown_terminates_active_job(self, build, probe, storage_client, tmp_path):
        """Test shutdown stops the running job's processes and drops retained files."""
        release = asyncio.Event()

        async def blocked(render_host):
            await release.wait()

        probe.wait_ready.side_effect = blocked
        orchestrator, supervisors = build()
        retained = tmp_path / "recordings" / "old.mp4"
        retained.parent.mkdir(parents=True)
        retained.write_bytes(b"old")
        orchestrator.cleanup.scheduler.schedule(str(retained), 60.0)

        task = asyncio.create_task(orchestrator.submit(PAYLOAD))
        for _ in range(100):
            if orchestrator.state == JobState.PROBING_READINESS:
                break
            await asyncio.sleep(0)

        await orchestrator.shutdown()

        assert supervisors[0].handles["Xvfb"].signals == ["SIGTERM"]
        assert supervisors[0].handles["Chrome"].signals == ["SIGTERM"]
        assert not retained.exists()
        storage_client.close.assert_awaited_once()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_shutdown_when_idle(self, build):
        """Test shutdown without a running job."""
        orchestrator, _ = build(publish=False)

        await orchestrator.shutdown()

        assert orchestrator.state == JobState.IDLE
