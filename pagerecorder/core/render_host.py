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
Render host launch and readiness probing.

The render host is a Chrome process drawing the target page into the
virtual display. It is spawned as a supervised OS process (so cleanup can
always kill it) with a local remote-debugging port; the readiness prober
attaches to that port through Playwright's connect_over_cdp to read the
page's playback state.

Two readiness strategies are supported:

- PlaybackReadinessProbe (strong): the page exposes window.PREVIEW_READY
  and window.PREVIEW_PLAYING, has a <video> that is actually advancing,
  has a <canvas> for WebGL effects, and finished loading.
- LivenessReadinessProbe (weak): the browser survived a fixed window
  without exiting. Used for pages that expose no in-page signals.

Example:
    >>> launcher = RenderHostLauncher(RenderHostConfig(), DisplayConfig())
    >>> chrome = await launcher.launch_and_wait_ready(url, supervisor)
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from pagerecorder.core.config import DisplayConfig, ReadinessStrategy, RenderHostConfig
from pagerecorder.core.polling import PollConfig, Poller
from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor
from pagerecorder.exceptions import (
    PollTimeoutError,
    ProbeError,
    RenderHostStartFailure,
    RenderReadinessTimeout,
)
from pagerecorder.utils.clock import Clock, default_clock
from pagerecorder.utils.logger import logger


# Fixed browser flags. Not configurable per request.
CHROME_FLAGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu-sandbox",
    "--use-gl=swiftshader",
    "--enable-unsafe-swiftshader",
    "--ignore-gpu-blocklist",
    "--enable-webgl",
    "--enable-accelerated-2d-canvas",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--start-fullscreen",
    "--kiosk",
    "--autoplay-policy=no-user-gesture-required",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor,Translate",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-extensions",
    "--disable-sync",
    "--disable-translate",
    "--hide-scrollbars",
    "--mute-audio",
    "--no-first-run",
    "--no-default-browser-check",
)

# Evaluated inside the page on every probe.
STATUS_SCRIPT = """
() => {
    const video = document.querySelector('video');
    const canvas = document.querySelector('canvas');
    return {
        ready: Boolean(window.PREVIEW_READY),
        playing: Boolean(window.PREVIEW_PLAYING),
        videoExists: !!video,
        videoPlaying: video ? !video.paused : false,
        currentTime: video ? video.currentTime : 0,
        hasCanvas: !!canvas,
        pageLoaded: document.readyState === 'complete',
        videoSrc: video ? video.currentSrc || video.src : null,
        videoDuration: video && isFinite(video.duration) ? video.duration : 0,
    };
}
"""

# Errors meaning "could not look at the page this time", not "page broken".
PROBE_RETRYABLE_ERRORS = (ProbeError, PlaywrightError, asyncio.TimeoutError, OSError)


@dataclass
class PlaybackStatus:
    """Snapshot of the page state read by one probe."""

    ready: bool = False
    playing: bool = False
    video_exists: bool = False
    video_playing: bool = False
    current_time: float = 0.0
    has_canvas: bool = False
    page_loaded: bool = False
    video_src: Optional[str] = None
    video_duration: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaybackStatus":
        return cls(
            ready=bool(data.get("ready")),
            playing=bool(data.get("playing")),
            video_exists=bool(data.get("videoExists")),
            video_playing=bool(data.get("videoPlaying")),
            current_time=float(data.get("currentTime") or 0.0),
            has_canvas=bool(data.get("hasCanvas")),
            page_loaded=bool(data.get("pageLoaded")),
            video_src=data.get("videoSrc"),
            video_duration=float(data.get("videoDuration") or 0.0),
        )

    def is_rendering(self, threshold: float) -> bool:
        """Whether every readiness signal is present.

        Args:
            threshold: Playback position the video must have passed
        """
        return (
            self.ready
            and self.playing
            and self.video_exists
            and self.video_playing
            and self.current_time > threshold
            and self.has_canvas
            and self.page_loaded
        )

    def summary(self) -> str:
        return (
            f"ready={self.ready} playing={self.playing} video={self.video_exists} "
            f"video_playing={self.video_playing} t={self.current_time:.2f} "
            f"canvas={self.has_canvas} loaded={self.page_loaded}"
        )


class PageInspector(ABC):
    """Reads playback state from the page shown by the render host."""

    @abstractmethod
    async def read_status(self) -> PlaybackStatus:
        """Read the current page state.

        Raises:
            ProbeError: If the page cannot be inspected right now
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the inspection connection (never the browser itself)."""


class CDPPageInspector(PageInspector):
    """PageInspector attached to Chrome's debugging port via Playwright."""

    def __init__(self, endpoint: str, connect_timeout_ms: float = 5000) -> None:
        self.endpoint = endpoint
        self.connect_timeout_ms = connect_timeout_ms
        self._playwright = None
        self._browser: Optional[Browser] = None

    async def _page(self) -> Page:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        if self._browser is None or not self._browser.is_connected():
            self._browser = await self._playwright.chromium.connect_over_cdp(
                self.endpoint, timeout=self.connect_timeout_ms
            )

        for context in self._browser.contexts:
            for page in context.pages:
                if page.url.startswith(("http://", "https://", "file://")):
                    return page
        raise ProbeError("Render host has no page open yet")

    async def read_status(self) -> PlaybackStatus:
        page = await self._page()
        data = await page.evaluate(STATUS_SCRIPT)
        if not isinstance(data, dict):
            raise ProbeError(f"Unexpected status payload: {data!r}")
        return PlaybackStatus.from_dict(data)

    async def close(self) -> None:
        # For a CDP connection close() only disconnects, the browser keeps running.
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"[READINESS] Error disconnecting from render host: {e}")
            self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.debug(f"[READINESS] Error stopping Playwright: {e}")
            self._playwright = None


InspectorFactory = Callable[[], PageInspector]


def _ensure_alive(render_host: ManagedProcess) -> None:
    if not render_host.is_running:
        raise RenderHostStartFailure(
            f"{render_host.name} exited during readiness probing "
            f"(code {render_host.returncode})"
        )


class ReadinessProbe(ABC):
    """Strategy deciding when the render host is ready for capture."""

    @abstractmethod
    async def wait_ready(self, render_host: ManagedProcess) -> None:
        """Block until ready.

        Raises:
            RenderReadinessTimeout: If readiness is never confirmed
            RenderHostStartFailure: If the render host exits meanwhile
        """


class PlaybackReadinessProbe(ReadinessProbe):
    """Strong probe: waits for real playback with effects on the page."""

    def __init__(
        self,
        config: RenderHostConfig,
        inspector_factory: InspectorFactory,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config
        self.inspector_factory = inspector_factory
        self.clock = clock or default_clock()

    async def wait_ready(self, render_host: ManagedProcess) -> None:
        poll_config = PollConfig(
            interval=self.config.poll_interval,
            max_attempts=self.config.max_attempts,
        )
        poller = Poller(poll_config, self.clock)
        inspector = self.inspector_factory()

        async def check(attempt: int) -> bool:
            _ensure_alive(render_host)
            # A wedged page counts as one failed attempt.
            status = await asyncio.wait_for(
                inspector.read_status(), timeout=self.config.attempt_timeout
            )
            logger.info(f"[READINESS] Check {attempt}/{poll_config.max_attempts}: {status.summary()}")
            return status.is_rendering(self.config.playback_threshold)

        logger.info("[READINESS] Waiting for video to start playing with effects...")
        try:
            attempts = await poller.until(
                check,
                description="video playback",
                retryable_exceptions=PROBE_RETRYABLE_ERRORS,
            )
        except PollTimeoutError as e:
            raise RenderReadinessTimeout(
                f"Video with effects failed to start within {poll_config.budget:.0f} seconds"
            ) from e
        finally:
            await inspector.close()

        logger.info(f"[READINESS] Video confirmed playing after {attempts} check(s)")
        logger.info(
            f"[READINESS] Waiting {self.config.stabilization_seconds}s for effects to stabilize..."
        )
        await self.clock.sleep(self.config.stabilization_seconds)


class LivenessReadinessProbe(ReadinessProbe):
    """Weak probe: the render host is ready once it survived a fixed window."""

    def __init__(self, config: RenderHostConfig, clock: Optional[Clock] = None) -> None:
        self.config = config
        self.clock = clock or default_clock()

    async def wait_ready(self, render_host: ManagedProcess) -> None:
        window = self.config.liveness_window
        interval = self.config.poll_interval or window
        checks = max(1, math.ceil(window / interval)) if interval > 0 else 1
        poller = Poller(PollConfig(interval=window / checks, max_attempts=checks), self.clock)

        async def check(attempt: int) -> bool:
            _ensure_alive(render_host)
            return attempt >= checks

        logger.info(f"[READINESS] Waiting {window}s for render host to settle")
        try:
            await poller.until(check, description="render host liveness")
        except PollTimeoutError as e:
            raise RenderReadinessTimeout(f"Render host did not settle within {window} seconds") from e


def create_readiness_probe(
    config: RenderHostConfig,
    clock: Optional[Clock] = None,
    inspector_factory: Optional[InspectorFactory] = None,
) -> ReadinessProbe:
    """Build the probe selected by config.readiness_strategy."""
    strategy = ReadinessStrategy(config.readiness_strategy)
    if strategy == ReadinessStrategy.LIVENESS:
        return LivenessReadinessProbe(config, clock)
    if inspector_factory is None:
        def inspector_factory() -> PageInspector:
            return CDPPageInspector(
                config.cdp_endpoint, connect_timeout_ms=config.attempt_timeout * 1000
            )
    return PlaybackReadinessProbe(config, inspector_factory, clock)


class RenderHostLauncher:
    """
    Launches the browser inside the virtual display and waits for readiness.

    Attributes:
        config: Browser and probing settings
        display: Display the browser draws into
        probe: Readiness strategy in use
    """

    def __init__(
        self,
        config: Optional[RenderHostConfig] = None,
        display: Optional[DisplayConfig] = None,
        clock: Optional[Clock] = None,
        probe: Optional[ReadinessProbe] = None,
        inspector_factory: Optional[InspectorFactory] = None,
    ) -> None:
        self.config = config or RenderHostConfig()
        self.display = display or DisplayConfig()
        self.probe = probe or create_readiness_probe(self.config, clock, inspector_factory)

    def build_command(self, url: str) -> List[str]:
        return [
            self.config.chrome_path,
            *CHROME_FLAGS,
            f"--display={self.display.display}",
            f"--user-data-dir={self.config.profile_dir}",
            f"--window-size={self.display.width},{self.display.height}",
            "--window-position=0,0",
            "--remote-debugging-address=127.0.0.1",
            f"--remote-debugging-port={self.config.debugging_port}",
            url,
        ]

    async def launch(self, url: str, supervisor: ProcessSupervisor) -> ManagedProcess:
        """
        Start the browser against a URL.

        Args:
            url: Page to render
            supervisor: Supervisor of the current job

        Returns:
            The running browser process

        Raises:
            RenderHostStartFailure: If the browser cannot be spawned
        """
        logger.info(f"[RENDER_HOST] Starting Chrome with URL: {url}")
        try:
            Path(self.config.profile_dir).mkdir(parents=True, exist_ok=True)
            return await supervisor.spawn(
                "Chrome", self.build_command(url), env=self.display.environment()
            )
        except OSError as e:
            raise RenderHostStartFailure(f"Chrome failed to start: {e}") from e

    async def wait_ready(self, render_host: ManagedProcess) -> None:
        """
        Wait until the render host is producing frames.

        A timed out render host is terminated before the error is raised.

        Raises:
            RenderReadinessTimeout: If readiness is never confirmed
            RenderHostStartFailure: If the browser exits while probing
        """
        try:
            await self.probe.wait_ready(render_host)
        except RenderReadinessTimeout:
            logger.error("[RENDER_HOST] Readiness not confirmed, stopping Chrome")
            await render_host.terminate(self.config.termination_grace)
            raise

    async def launch_and_wait_ready(self, url: str, supervisor: ProcessSupervisor) -> ManagedProcess:
        render_host = await self.launch(url, supervisor)
        await self.wait_ready(render_host)
        return render_host
