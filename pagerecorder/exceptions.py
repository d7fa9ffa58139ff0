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

"""Custom exceptions for PageRecorder.

This module defines the exception hierarchy used throughout PageRecorder.
All exceptions inherit from RecorderError for easy catching and handling.

Exception Hierarchy:
    RecorderError (base)
    ├── ValidationError - Rejected recording request
    ├── AdmissionBusyError - A recording job is already running
    ├── ConfigurationError - Invalid service configuration
    ├── PollTimeoutError - Polling exhausted its attempts
    ├── ProbeError - Page state could not be read (transient)
    ├── StageError - A recording stage failed (job fails)
    │   ├── DisplayStartFailure
    │   ├── RenderHostStartFailure
    │   ├── RenderReadinessTimeout
    │   ├── EncoderFailure
    │   └── ArtifactMissingError
    └── StorageError - Object storage errors
        ├── UploadFailure
        └── MetadataUpdateFailure

Example:
    try:
        result = await orchestrator.submit(payload)
    except AdmissionBusyError:
        # Another recording is in flight
        pass
    except ValidationError as e:
        # Bad request
        pass
"""

from typing import Optional


class RecorderError(Exception):
    """Base exception for all PageRecorder errors.

    All custom exceptions in PageRecorder inherit from this class,
    allowing callers to catch all recorder-specific errors with
    a single except clause.
    """
    pass


class ValidationError(RecorderError):
    """Exception raised when a recording request is invalid.

    Raised before admission, so no resources are ever acquired for
    a request that fails validation.

    Examples:
        - videoId missing
        - duration outside [1, 300]
        - no preview URL and no URL template configured
    """
    pass


class AdmissionBusyError(RecorderError):
    """Exception raised when a recording is already in progress.

    Submissions are never queued; the caller is expected to retry later.
    """

    def __init__(self, message: str = "Recording already in progress") -> None:
        super().__init__(message)


class ConfigurationError(RecorderError):
    """Exception raised for configuration errors.

    Examples:
        - Port out of range
        - Unknown readiness strategy
        - Non-positive timing values
    """
    pass


class PollTimeoutError(RecorderError):
    """Exception raised when a poll loop exhausts its attempt budget."""

    def __init__(self, message: str, attempts: int, elapsed: float = 0.0) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.elapsed = elapsed


class ProbeError(RecorderError):
    """Exception raised when the readiness prober cannot read page state.

    Transient by nature: the debugging endpoint may not be listening yet
    or the page may be mid-navigation. Counts as one failed probe.
    """
    pass


class StageError(RecorderError):
    """Base exception for failures of a recording stage.

    Any StageError ends the current job: processes are terminated,
    partial artifacts are deleted and the job reports failure.
    """
    pass


class DisplayStartFailure(StageError):
    """Exception raised when the virtual display did not stay alive."""
    pass


class RenderHostStartFailure(StageError):
    """Exception raised when the browser could not start or exited early."""
    pass


class RenderReadinessTimeout(StageError):
    """Exception raised when the page never confirmed it is rendering."""
    pass


class EncoderFailure(StageError):
    """Exception raised when the capture encoder fails.

    Attributes:
        exit_code: Encoder exit code, or None when it never started
            or had to be killed.
    """

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ArtifactMissingError(StageError):
    """Exception raised when the encoder succeeded but produced no file."""
    pass


class StorageError(RecorderError):
    """Base exception for object storage errors."""
    pass


class UploadFailure(StorageError):
    """Exception raised when the artifact could not be uploaded or signed."""
    pass


class MetadataUpdateFailure(StorageError):
    """Exception raised when the metadata record could not be updated.

    Never fatal for a job: the publisher logs it and still reports
    the signed URL.
    """
    pass
