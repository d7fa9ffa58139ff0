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

"""Recording pipeline: stages, process supervision and the job orchestrator."""

from pagerecorder.core.cleanup import CleanupOrchestrator, DeletionScheduler, PublishOutcome
from pagerecorder.core.config import (
    CaptureConfig,
    DisplayConfig,
    ReadinessStrategy,
    RenderHostConfig,
    StorageConfig,
)
from pagerecorder.core.display import DisplayProvisioner
from pagerecorder.core.encoder import CaptureEncoder, CaptureProgress
from pagerecorder.core.orchestrator import (
    Artifact,
    JobContext,
    JobOrchestrator,
    JobState,
    RecordingRequest,
    RecordingResult,
)
from pagerecorder.core.polling import PollConfig, Poller
from pagerecorder.core.publisher import ArtifactPublisher, PublishedArtifact, SupabaseStorageClient
from pagerecorder.core.render_host import (
    CDPPageInspector,
    LivenessReadinessProbe,
    PageInspector,
    PlaybackReadinessProbe,
    PlaybackStatus,
    RenderHostLauncher,
)
from pagerecorder.core.supervisor import ManagedProcess, ProcessSupervisor

__all__ = [
    "Artifact",
    "ArtifactPublisher",
    "CDPPageInspector",
    "CaptureConfig",
    "CaptureEncoder",
    "CaptureProgress",
    "CleanupOrchestrator",
    "DeletionScheduler",
    "DisplayConfig",
    "DisplayProvisioner",
    "JobContext",
    "JobOrchestrator",
    "JobState",
    "LivenessReadinessProbe",
    "ManagedProcess",
    "PageInspector",
    "PlaybackReadinessProbe",
    "PlaybackStatus",
    "PollConfig",
    "Poller",
    "ProcessSupervisor",
    "PublishOutcome",
    "PublishedArtifact",
    "ReadinessStrategy",
    "RecordingRequest",
    "RecordingResult",
    "RenderHostConfig",
    "RenderHostLauncher",
    "StorageConfig",
    "SupabaseStorageClient",
]
