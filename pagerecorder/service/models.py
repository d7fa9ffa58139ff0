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
Pydantic models for the PageRecorder HTTP API.

Field names follow Python conventions; the wire format uses the camelCase
aliases (videoId, fileSize, ...) expected by existing callers.

Example:
    >>> response = RecordVideoResponse.from_result(result)
    >>> response.model_dump(by_alias=True, exclude_none=True)
    {'success': True, 'message': 'Video recorded successfully', 'videoId': 'v1', ...}
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from pagerecorder.core.orchestrator import RecordingResult


def isoformat(timestamp: float) -> str:
    """Format a Unix timestamp as ISO 8601 UTC with milliseconds, e.g. 2026-01-01T00:00:00.000Z."""
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RecordVideoResponse(BaseModel):
    """
    Successful recording response.

    Exactly one of url (published) or output_path (kept locally) is set.
    publish_error is present when publishing failed and the recording
    fell back to the local file.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(True, description="Always true for this response")
    message: str = Field("Video recorded successfully", description="Human readable summary")
    video_id: str = Field(..., alias="videoId", description="Recorded video identifier")
    duration: int = Field(..., description="Recording duration in seconds")
    file_size: int = Field(..., alias="fileSize", description="Size of the recording in bytes")
    url: Optional[str] = Field(None, description="Signed URL of the published recording")
    url_expires_at: Optional[str] = Field(
        None, alias="urlExpiresAt", description="Expiry of the signed URL (ISO 8601)"
    )
    output_path: Optional[str] = Field(
        None, alias="outputPath", description="Local path, when the recording was not published"
    )
    publish_error: Optional[str] = Field(
        None, alias="publishError", description="Why publishing failed, if it did"
    )

    @classmethod
    def from_result(cls, result: RecordingResult) -> "RecordVideoResponse":
        return cls(
            video_id=result.video_id,
            duration=result.duration,
            file_size=result.file_size,
            url=result.url,
            url_expires_at=isoformat(result.url_expires_at) if result.url_expires_at else None,
            output_path=result.output_path,
            publish_error=result.publish_error,
        )


class ErrorResponse(BaseModel):
    """Error response.

    400 and 429 carry only error; a failed recording (500) also carries
    success=false and the failure message.
    """

    success: Optional[bool] = Field(None, description="False for failed recordings")
    error: str = Field(..., description="Error summary")
    message: Optional[str] = Field(None, description="Error details")


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field("healthy", description="Service status")
    is_recording: bool = Field(..., alias="isRecording", description="Whether a job is running")
    timestamp: str = Field(..., description="Current time (ISO 8601)")
    active_processes: int = Field(
        ..., alias="activeProcesses", description="Processes tracked for the running job"
    )
    state: str = Field(..., description="Current job state")


class ServiceInfoResponse(BaseModel):
    """Service descriptor returned by the root endpoint."""

    service: str = Field(..., description="Service name")
    status: str = Field("running", description="Service status")
    version: str = Field(..., description="Service version")
    endpoints: Dict[str, str] = Field(default_factory=dict, description="Endpoint summary")
