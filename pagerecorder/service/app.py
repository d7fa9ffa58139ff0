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
FastAPI application for the PageRecorder service.

Endpoints:
- POST /record-video: record a page for a fixed duration (one job at a time)
- GET /health: liveness and current job state
- GET /: service descriptor

Example Usage:
    Start the service:
    ```bash
    uvicorn pagerecorder.service.app:app --host 0.0.0.0 --port 3000
    ```

    Record a video:
    ```bash
    curl -X POST http://localhost:3000/record-video \\
      -H "Content-Type: application/json" \\
      -d '{"videoId": "abc123", "duration": 10, "previewUrl": "https://example.com/abc123"}'
    ```
"""

from __future__ import annotations

import functools
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pagerecorder import __version__
from pagerecorder.core.cleanup import CleanupOrchestrator, DeletionScheduler
from pagerecorder.core.display import DisplayProvisioner
from pagerecorder.core.encoder import CaptureEncoder
from pagerecorder.core.orchestrator import JobOrchestrator
from pagerecorder.core.publisher import ArtifactPublisher
from pagerecorder.core.render_host import RenderHostLauncher
from pagerecorder.core.supervisor import ProcessSupervisor
from pagerecorder.exceptions import AdmissionBusyError, ValidationError
from pagerecorder.service.config import ServiceConfig
from pagerecorder.service.models import (
    ErrorResponse,
    HealthResponse,
    RecordVideoResponse,
    ServiceInfoResponse,
    isoformat,
)
from pagerecorder.utils.clock import SystemClock
from pagerecorder.utils.logger import logger, set_log_level

SERVICE_NAME = "Video Recording Service"

API_DESCRIPTION = """
# PageRecorder API

Records a rendered web page to an MP4 video.

A recording provisions a virtual display, opens the page in a browser,
waits until the page is actually playing, captures the screen for the
requested duration and publishes the file to object storage with a
signed URL valid for one hour.

Only one recording runs at a time. A request arriving while a recording is
in progress is rejected with `429` and should be retried later.
"""


def build_orchestrator(config: ServiceConfig) -> JobOrchestrator:
    """Wire every recording stage from the service configuration."""
    clock = SystemClock()
    publisher = ArtifactPublisher(config.storage, clock=clock) if config.storage.enabled else None

    return JobOrchestrator(
        recordings_dir=config.recordings_dir,
        display=DisplayProvisioner(config.display, clock),
        launcher=RenderHostLauncher(config.render_host, config.display, clock),
        encoder=CaptureEncoder(config.capture, config.display, grace_period=config.termination_grace),
        publisher=publisher,
        cleanup=CleanupOrchestrator(DeletionScheduler(clock), config.retention_seconds),
        supervisor_factory=functools.partial(ProcessSupervisor, grace_period=config.termination_grace),
        url_template=config.preview_url_template,
        clock=clock,
    )


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    body = ErrorResponse(error=error, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def create_app(
    config: Optional[ServiceConfig] = None,
    orchestrator: Optional[JobOrchestrator] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Service configuration (read from the environment if omitted)
        orchestrator: Job orchestrator (built from config if omitted)

    Returns:
        Configured FastAPI application
    """
    config = config or ServiceConfig.from_env()
    set_log_level(config.log_level)
    orchestrator = orchestrator or build_orchestrator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: create the recordings directory.
        Shutdown: stop any running job's processes and drop retained files.
        """
        logger.info("Starting PageRecorder service...")
        os.makedirs(config.recordings_dir, exist_ok=True)
        if orchestrator.publisher is None:
            logger.warning("Storage credentials not configured, recordings will stay local")
        logger.info("PageRecorder service started successfully")

        yield

        logger.info("Shutting down PageRecorder service...")
        await orchestrator.shutdown()
        logger.info("PageRecorder service shut down")

    app = FastAPI(
        title="PageRecorder API",
        description=API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        license_info={
            "name": "Apache 2.0",
            "url": "https://www.apache.org/licenses/LICENSE-2.0.html",
        },
        openapi_tags=[
            {"name": "Health", "description": "Health check and service status endpoints"},
            {"name": "Recording", "description": "Page recording"},
        ],
    )
    app.state.config = config
    app.state.orchestrator = orchestrator

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed or non-object bodies are plain 400s, like other validation errors."""
        if any(error.get("type") == "json_invalid" for error in exc.errors()):
            message = "Invalid JSON body"
        else:
            message = "Request body must be a JSON object"
        logger.warning(f"[API] Rejected request to {request.url.path}: {message}")
        return _error(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "InternalServerError",
            message="An unexpected error occurred",
        )

    @app.post(
        "/record-video",
        response_model=RecordVideoResponse,
        response_model_exclude_none=True,
        tags=["Recording"],
        summary="Record a page",
        responses={
            400: {"model": ErrorResponse, "description": "Invalid request"},
            429: {"model": ErrorResponse, "description": "Recording already in progress"},
            500: {"model": ErrorResponse, "description": "Recording failed"},
        },
    )
    async def record_video(payload: Dict[str, Any] = Body(...)):
        """
        Record a page for a fixed duration.

        Body: ``{"videoId": str, "duration": 1..300, "previewUrl": str}``.
        previewUrl may be omitted when the deployment configures a URL
        template. The call returns once the recording is finished.
        """
        try:
            result = await orchestrator.submit(payload)
        except ValidationError as e:
            logger.warning(f"[API] Invalid recording request: {e}")
            return _error(status.HTTP_400_BAD_REQUEST, str(e))
        except AdmissionBusyError as e:
            logger.info("[API] Rejected recording request, another recording is in progress")
            return _error(status.HTTP_429_TOO_MANY_REQUESTS, str(e))

        if not result.success:
            return _error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Recording failed",
                success=False,
                message=result.message,
            )

        return RecordVideoResponse.from_result(result)

    @app.get("/health", response_model=HealthResponse, tags=["Health"], summary="Health check")
    async def health_check():
        """Current recording status. Always answers, even during a recording."""
        return HealthResponse(
            is_recording=orchestrator.is_recording,
            timestamp=isoformat(orchestrator.clock.time()),
            active_processes=orchestrator.active_processes,
            state=orchestrator.state.value,
        )

    @app.get("/", response_model=ServiceInfoResponse, tags=["Health"], summary="Service descriptor")
    async def root():
        return ServiceInfoResponse(
            service=SERVICE_NAME,
            version=__version__,
            endpoints={
                "POST /record-video": "Record a video with {videoId, duration, previewUrl}",
                "GET /health": "Health check",
            },
        )

    return app


app = create_app()
