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

"""Service configuration for PageRecorder.

ServiceConfig composes the per-stage configurations with the settings of
the HTTP service itself. All values are read once at startup from the
environment; nothing here varies per request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from pagerecorder.core.config import (
    CaptureConfig,
    DisplayConfig,
    ReadinessStrategy,
    RenderHostConfig,
    StorageConfig,
)
from pagerecorder.exceptions import ConfigurationError

ENV_PREFIX = "PAGERECORDER_"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e


def _parse_resolution(raw: str) -> tuple:
    try:
        width, height = (int(part) for part in raw.lower().split("x"))
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}RESOLUTION must look like 1920x1080, got {raw!r}") from e
    return width, height


@dataclass
class ServiceConfig:
    """Configuration for the recording service.

    Attributes:
        host: Bind host
        port: Bind port
        recordings_dir: Directory receiving local recordings
        retention_seconds: How long unpublished recordings are kept
        termination_grace: SIGTERM to SIGKILL grace period for job processes
        preview_url_template: URL used when a request has no previewUrl,
            with a ``{video_id}`` placeholder
        log_level: Root log level
        graceful_shutdown_seconds: How long uvicorn waits for an in-flight
            recording before cancelling it on shutdown
        display: Virtual display settings
        render_host: Browser and readiness settings
        capture: Encoder settings
        storage: Storage settings
    """

    host: str = "0.0.0.0"
    port: int = 3000
    recordings_dir: str = "/usr/src/app/recordings"
    retention_seconds: float = 60.0
    termination_grace: float = 5.0
    preview_url_template: Optional[str] = None
    log_level: str = "INFO"
    graceful_shutdown_seconds: float = 10.0
    display: DisplayConfig = field(default_factory=DisplayConfig)
    render_host: RenderHostConfig = field(default_factory=RenderHostConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Create ServiceConfig from environment variables.

        Environment variables:
            PAGERECORDER_HOST: Bind host
            PAGERECORDER_PORT: Bind port (PORT also accepted)
            PAGERECORDER_RECORDINGS_DIR: Local recordings directory
            PAGERECORDER_RETENTION_SECONDS: Retention of unpublished recordings
            PAGERECORDER_TERMINATION_GRACE: Process termination grace period
            PAGERECORDER_PREVIEW_URL_TEMPLATE: Fallback URL with {video_id}
            PAGERECORDER_LOG_LEVEL: Log level
            PAGERECORDER_GRACEFUL_SHUTDOWN: Seconds to wait for in-flight jobs
            PAGERECORDER_DISPLAY: X display name
            PAGERECORDER_RESOLUTION: Screen size, e.g. 1920x1080
            PAGERECORDER_XVFB_PATH: Xvfb binary
            PAGERECORDER_CHROME_PATH: Browser binary
            PAGERECORDER_CHROME_PROFILE_DIR: Browser user data directory
            PAGERECORDER_DEBUGGING_PORT: Local CDP port
            PAGERECORDER_READINESS_STRATEGY: playback or liveness
            PAGERECORDER_FFMPEG_PATH: ffmpeg binary
            PAGERECORDER_STORAGE_BUCKET: Storage bucket
            PAGERECORDER_METADATA_TABLE: Metadata table
            PAGERECORDER_METADATA_URL_COLUMN: Column receiving the signed URL
            SUPABASE_URL / PAGERECORDER_SUPABASE_URL: Storage project URL
            SUPABASE_SERVICE_KEY / PAGERECORDER_SUPABASE_SERVICE_KEY: Service key

        Returns:
            ServiceConfig with values from environment

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        termination_grace = _env_float("TERMINATION_GRACE", 5.0)

        width, height = _parse_resolution(_env("RESOLUTION", "1920x1080"))
        display = DisplayConfig(
            display=_env("DISPLAY", ":99"),
            width=width,
            height=height,
            xvfb_path=_env("XVFB_PATH", "Xvfb"),
        )

        strategy_name = _env("READINESS_STRATEGY", ReadinessStrategy.PLAYBACK.value).lower()
        try:
            strategy = ReadinessStrategy(strategy_name)
        except ValueError as e:
            raise ConfigurationError(
                f"{ENV_PREFIX}READINESS_STRATEGY must be one of "
                f"{[s.value for s in ReadinessStrategy]}, got {strategy_name!r}"
            ) from e
        render_host = RenderHostConfig(
            chrome_path=_env("CHROME_PATH", "/usr/bin/google-chrome"),
            profile_dir=_env("CHROME_PROFILE_DIR", "/usr/src/app/chrome-data"),
            debugging_port=_env_int("DEBUGGING_PORT", 9222),
            readiness_strategy=strategy,
            termination_grace=termination_grace,
        )

        capture = CaptureConfig(ffmpeg_path=_env("FFMPEG_PATH", "ffmpeg"))

        storage = StorageConfig(
            url=_env("SUPABASE_URL", os.environ.get("SUPABASE_URL")) or None,
            service_key=_env("SUPABASE_SERVICE_KEY", os.environ.get("SUPABASE_SERVICE_KEY")) or None,
            bucket=_env("STORAGE_BUCKET", "recordings"),
            metadata_table=_env("METADATA_TABLE", "videos"),
            url_column=_env("METADATA_URL_COLUMN", "video_url"),
        )

        port = _env("PORT", os.environ.get("PORT", "3000"))
        try:
            port_number = int(port)
        except ValueError as e:
            raise ConfigurationError(f"port must be an integer, got {port!r}") from e

        return cls(
            host=_env("HOST", "0.0.0.0"),
            port=port_number,
            recordings_dir=_env("RECORDINGS_DIR", "/usr/src/app/recordings"),
            retention_seconds=_env_float("RETENTION_SECONDS", 60.0),
            termination_grace=termination_grace,
            preview_url_template=_env("PREVIEW_URL_TEMPLATE") or None,
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            graceful_shutdown_seconds=_env_float("GRACEFUL_SHUTDOWN", 10.0),
            display=display,
            render_host=render_host,
            capture=capture,
            storage=storage,
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.port < 1 or self.port > 65535:
            errors.append("port must be between 1 and 65535")

        if self.retention_seconds < 0:
            errors.append("retention_seconds must not be negative")

        if self.termination_grace <= 0:
            errors.append("termination_grace must be positive")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}")

        if self.preview_url_template and "{video_id}" not in self.preview_url_template:
            errors.append("preview_url_template must contain a {video_id} placeholder")

        if self.display.width <= 0 or self.display.height <= 0:
            errors.append("display resolution must be positive")

        if self.render_host.max_attempts < 1:
            errors.append("render_host.max_attempts must be at least 1")

        if not 1 <= self.render_host.debugging_port <= 65535:
            errors.append("render_host.debugging_port must be between 1 and 65535")

        errors.extend(self.storage.validate())

        return errors
