# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for ManagedProcess and ProcessSupervisor."""

import asyncio
import sys
from unittest.mock import MagicMock, patch

import pytest

from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor


class TestManagedProcess:
    """Tests for escalating termination."""

    @pytest.mark.asyncio
    async def test_terminate_graceful(self, fake_process):
        """Test SIGTERM is enough for a cooperative process."""
        handle = fake_process()
        managed = ManagedProcess(handle=handle, name="Xvfb", kill_descendants=False)

        code = await managed.terminate(grace_period=0.05)

        assert handle.signals == ["SIGTERM"]
        assert code == -15
        assert managed.termination_requested is True
        assert managed.terminated is True
        assert managed.is_running is False

    @pytest.mark.asyncio
    async def test_terminate_escalates_to_sigkill(self, fake_process):
        """Test SIGKILL follows when SIGTERM is ignored for the grace period."""
        handle = fake_process(exits_on_terminate=False)
        managed = ManagedProcess(handle=handle, name="Chrome", kill_descendants=False)

        code = await managed.terminate(grace_period=0.05)

        assert handle.signals == ["SIGTERM", "SIGKILL"]
        assert code == -9
        assert managed.terminated is True

    @pytest.mark.asyncio
    async def test_terminate_unkillable_returns_none(self, fake_process):
        """Test a process surviving SIGKILL is logged, not raised."""
        handle = fake_process(exits_on_terminate=False, exits_on_kill=False)
        managed = ManagedProcess(handle=handle, name="FFmpeg", kill_descendants=False)

        code = await managed.terminate(grace_period=0.01)

        assert code is None
        assert handle.signals == ["SIGTERM", "SIGKILL"]
        assert managed.terminated is False

    @pytest.mark.asyncio
    async def test_reap_after_sigkill_is_capped(self, fake_process):
        """Test an unkillable process costs the grace period plus a short reap wait."""
        handle = fake_process(exits_on_terminate=False, exits_on_kill=False)
        managed = ManagedProcess(handle=handle, name="FFmpeg", kill_descendants=False)
        loop = asyncio.get_running_loop()

        with patch("pagerecorder.core.supervisor.KILL_WAIT_SECONDS", 0.01):
            started = loop.time()
            code = await managed.terminate(grace_period=0.3)
            elapsed = loop.time() - started

        assert code is None
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_descendant_reap_uses_kill_wait(self, fake_process):
        """Test leftover children are reaped with the capped wait."""
        handle = fake_process()
        managed = ManagedProcess(handle=handle, name="Chrome")

        with patch(
            "pagerecorder.core.supervisor._snapshot_descendants", return_value=[MagicMock()]
        ), patch(
            "pagerecorder.core.supervisor._kill_survivors", return_value=1
        ) as kill_survivors:
            await managed.terminate(grace_period=5.0)

        kill_survivors.assert_called_once()
        assert kill_survivors.call_args.args[1] == 1.0

    @pytest.mark.asyncio
    async def test_terminate_already_exited_sends_nothing(self, fake_process):
        """Test exited processes are marked terminated without signals."""
        handle = fake_process(exit_code=0)
        managed = ManagedProcess(handle=handle, name="FFmpeg", kill_descendants=False)

        code = await managed.terminate()

        assert code == 0
        assert handle.signals == []
        assert managed.terminated is True
        assert managed.termination_requested is False

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self, fake_process):
        """Test a second terminate sends no further signals."""
        handle = fake_process()
        managed = ManagedProcess(handle=handle, name="Xvfb", kill_descendants=False)

        await managed.terminate(grace_period=0.05)
        await managed.terminate(grace_period=0.05)

        assert handle.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_terminate_kills_leftover_descendants(self, fake_process):
        """Test children snapshotted before SIGTERM are reaped afterwards."""
        handle = fake_process()
        managed = ManagedProcess(handle=handle, name="Chrome")
        children = [MagicMock(), MagicMock()]

        with patch(
            "pagerecorder.core.supervisor._snapshot_descendants", return_value=children
        ) as snapshot, patch(
            "pagerecorder.core.supervisor._kill_survivors", return_value=2
        ) as kill_survivors:
            await managed.terminate(grace_period=0.05)

        snapshot.assert_called_once_with(handle.pid)
        kill_survivors.assert_called_once_with(children, 0.05)
        assert managed.terminated is True

    @pytest.mark.asyncio
    async def test_wait_marks_terminated(self, fake_process):
        """Test waiting for a natural exit."""
        handle = fake_process(exit_code=0)
        managed = ManagedProcess(handle=handle, name="FFmpeg", kill_descendants=False)

        assert await managed.wait() == 0
        assert managed.terminated is True


class TestProcessSupervisor:
    """Tests for ProcessSupervisor."""

    def test_track(self):
        """Test tracking adds to the active set."""
        supervisor = ProcessSupervisor(kill_descendants=False)
        handle = MagicMock(pid=5_999_999, returncode=None)

        managed = supervisor.track(handle, "Xvfb")

        assert supervisor.active_count == 1
        assert supervisor.processes == (managed,)
        assert managed.name == "Xvfb"
        assert managed.kill_descendants is False

    @pytest.mark.asyncio
    async def test_terminate_all_clears_tracked_set(self, fake_process):
        """Test terminate_all stops every process and forgets them."""
        supervisor = ProcessSupervisor(grace_period=0.05, kill_descendants=False)
        handles = [fake_process(), fake_process(exits_on_terminate=False), fake_process(exit_code=0)]
        for index, handle in enumerate(handles):
            supervisor.track(handle, f"proc-{index}")

        await supervisor.terminate_all()

        assert supervisor.active_count == 0
        assert handles[0].signals == ["SIGTERM"]
        assert handles[1].signals == ["SIGTERM", "SIGKILL"]
        assert handles[2].signals == []

    @pytest.mark.asyncio
    async def test_terminate_all_is_concurrent(self, fake_process):
        """Test N stubborn processes take about one grace period, not N."""
        supervisor = ProcessSupervisor(grace_period=0.2, kill_descendants=False)
        for index in range(5):
            supervisor.track(fake_process(exits_on_terminate=False), f"proc-{index}")

        loop = asyncio.get_running_loop()
        started = loop.time()
        await supervisor.terminate_all()
        elapsed = loop.time() - started

        assert elapsed < 0.2 * 3
        assert supervisor.active_count == 0

    @pytest.mark.asyncio
    async def test_process_tracked_during_terminate_all_is_terminated(self, fake_process):
        """Test a process started while cleanup runs is not forgotten."""
        supervisor = ProcessSupervisor(grace_period=0.2, kill_descendants=False)
        stubborn = fake_process(exits_on_terminate=False)
        supervisor.track(stubborn, "Chrome")

        cleanup = asyncio.create_task(supervisor.terminate_all())
        await asyncio.sleep(0.05)
        late = fake_process()
        supervisor.track(late, "FFmpeg")
        await cleanup

        assert late.signals == ["SIGTERM"]
        assert late.returncode == -15
        assert stubborn.signals == ["SIGTERM", "SIGKILL"]
        assert supervisor.active_count == 0

    @pytest.mark.asyncio
    async def test_terminate_all_never_raises(self, fake_process):
        """Test a failing termination is logged and the set still cleared."""
        supervisor = ProcessSupervisor(grace_period=0.05, kill_descendants=False)
        broken = MagicMock(pid=5_999_998, returncode=None)
        broken.terminate.side_effect = PermissionError("not allowed")
        supervisor.track(broken, "broken")
        healthy = fake_process()
        supervisor.track(healthy, "healthy")

        await supervisor.terminate_all()

        assert supervisor.active_count == 0
        assert healthy.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_terminate_all_empty(self):
        """Test terminate_all on an empty supervisor is a no-op."""
        supervisor = ProcessSupervisor()

        await supervisor.terminate_all()

        assert supervisor.active_count == 0

    @pytest.mark.asyncio
    async def test_spawn_real_process(self):
        """Test spawning and terminating a real child process."""
        supervisor = ProcessSupervisor(grace_period=2.0)

        managed = await supervisor.spawn(
            "sleeper", [sys.executable, "-c", "import time; time.sleep(30)"]
        )
        assert managed.is_running
        assert supervisor.active_count == 1

        await supervisor.terminate_all()

        assert managed.terminated is True
        assert managed.returncode is not None
        assert supervisor.active_count == 0

    @pytest.mark.asyncio
    async def test_spawn_missing_binary(self):
        """Test spawning a missing binary raises OSError and tracks nothing."""
        supervisor = ProcessSupervisor()

        with pytest.raises(OSError):
            await supervisor.spawn("missing", ["/nonexistent/binary-for-tests"])

        assert supervisor.active_count == 0
