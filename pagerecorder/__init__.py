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
PageRecorder - records rendered web pages to video.

A recording job provisions a virtual display, opens the page in a browser,
waits until the page is actually playing, captures the display with ffmpeg
and publishes the result to object storage with a time-limited URL.
"""

__version__ = "1.0.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from pagerecorder.core.orchestrator import (
    JobOrchestrator,
    JobState,
    RecordingRequest,
    RecordingResult,
)
from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor
from pagerecorder.exceptions import (
    AdmissionBusyError,
    RecorderError,
    StageError,
    ValidationError,
)

__all__ = [
    # Orchestration
    "JobOrchestrator",
    "JobState",
    "RecordingRequest",
    "RecordingResult",
    # Processes
    "ManagedProcess",
    "ProcessSupervisor",
    # Errors
    "AdmissionBusyError",
    "RecorderError",
    "StageError",
    "ValidationError",
]
