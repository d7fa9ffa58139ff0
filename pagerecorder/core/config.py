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
Component configuration for the recording pipeline.

Each stage of a recording job reads its settings from one of these
dataclasses. Values are fixed per deployment (see ServiceConfig.from_env)
and never vary per request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class ReadinessStrategy(str, Enum):
    """How the render host is judged ready for capture.

    Attributes:
        PLAYBACK: Strong probe, inspects in-page playback signals
        LIVENESS: Weak probe, the browser survived a fixed window
    """

    PLAYBACK = "playback"
    LIVENESS = "liveness"


@dataclass
class DisplayConfig:
    """Configuration for the virtual display.

    Attributes:
        display: X display name shared by the browser and the encoder
        width: Screen width in pixels
        height: Screen height in pixels
        depth: Color depth in bits
        settle_seconds: Liveness window after spawning Xvfb
        xvfb_path: Xvfb binary
    """

    display: str = ":99"
    width: int = 1920
    height: int = 1080
    depth: int = 24
    settle_seconds: float = 3.0
    xvfb_path: str = "Xvfb"

    @property
    def geometry(self) -> str:
        return f"{self.width}x{self.height}x{self.depth}"

    @property
    def video_size(self) -> str:
        return f"{self.width}x{self.height}"

    def environment(self) -> Dict[str, str]:
        """Environment for processes that draw into or read from the display."""
        env = dict(os.environ)
        env["DISPLAY"] = self.display
        return env


@dataclass
class RenderHostConfig:
    """Configuration for the browser and its readiness probing.

    Attributes:
        chrome_path: Browser binary
        profile_dir: Isolated user data directory
        debugging_port: Local CDP port used by the readiness prober
        readiness_strategy: Strong playback probe or weak liveness probe
        poll_interval: Seconds between probes
        max_attempts: Probe attempts before giving up
        probe_timeout: Time limit for a single probe (None = poll_interval)
        playback_threshold: Minimum video currentTime to count as advancing
        stabilization_seconds: Extra wait after playback is confirmed
        liveness_window: Survival window for the liveness strategy
        termination_grace: Grace period when stopping a timed out browser
    """

    chrome_path: str = "/usr/bin/google-chrome"
    profile_dir: str = "/usr/src/app/chrome-data"
    debugging_port: int = 9222
    readiness_strategy: ReadinessStrategy = ReadinessStrategy.PLAYBACK
    poll_interval: float = 1.0
    max_attempts: int = 60
    probe_timeout: Optional[float] = None
    playback_threshold: float = 2.0
    stabilization_seconds: float = 3.0
    liveness_window: float = 5.0
    termination_grace: float = 5.0

    @property
    def cdp_endpoint(self) -> str:
        return f"http://127.0.0.1:{self.debugging_port}"

    @property
    def attempt_timeout(self) -> float:
        """Upper bound for one probe, connection included."""
        if self.probe_timeout is not None:
            return self.probe_timeout
        return self.poll_interval if self.poll_interval > 0 else 1.0


@dataclass
class CaptureConfig:
    """Configuration for the ffmpeg screen capture.

    Attributes:
        ffmpeg_path: ffmpeg binary
        frame_rate: Capture frames per second
        codec: Video encoder
        preset: Encoder speed preset
        crf: Constant rate factor
        pixel_format: Output pixel format
        timeout_slack: Seconds allowed beyond the duration before the
            encoder is considered hung
    """

    ffmpeg_path: str = "ffmpeg"
    frame_rate: int = 30
    codec: str = "libx264"
    preset: str = "ultrafast"
    crf: int = 28
    pixel_format: str = "yuv420p"
    timeout_slack: float = 30.0


@dataclass
class StorageConfig:
    """Configuration for Supabase storage and the metadata table.

    Attributes:
        url: Project URL, e.g. https://xyz.supabase.co
        service_key: Service role key
        bucket: Storage bucket receiving recordings
        metadata_table: Table whose row (id = job id) receives the URL
        url_column: Column written with the signed URL
        signed_url_ttl: Signed URL lifetime in seconds
        content_type: Content type of uploaded recordings
        cache_control: Cache-Control max age in seconds
        request_timeout: Total timeout for one storage request
    """

    url: Optional[str] = None
    service_key: Optional[str] = None
    bucket: str = "recordings"
    metadata_table: str = "videos"
    url_column: str = "video_url"
    signed_url_ttl: int = 3600
    content_type: str = "video/mp4"
    cache_control: str = "3600"
    request_timeout: float = 300.0

    @property
    def enabled(self) -> bool:
        """Whether credentials are present and publishing should run."""
        return bool(self.url and self.service_key)

    def validate(self) -> List[str]:
        errors = []
        if bool(self.url) != bool(self.service_key):
            errors.append("storage url and service key must be set together")
        if self.signed_url_ttl <= 0:
            errors.append("signed_url_ttl must be positive")
        return errors
