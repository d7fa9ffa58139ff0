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
PageRecorder HTTP service.

This module provides:
- The FastAPI application factory (create_app) and orchestrator wiring
- Service configuration read from the environment

The ASGI application itself lives in ``pagerecorder.service.app:app``.

Example:
    >>> uvicorn pagerecorder.service.app:app --host 0.0.0.0 --port 3000
"""

from typing import TYPE_CHECKING

from pagerecorder.service.config import ServiceConfig

# app.py builds the module-level application on import, so it is loaded lazily.
if TYPE_CHECKING:
    from pagerecorder.service.app import build_orchestrator, create_app

__all__ = [
    "ServiceConfig",
    "build_orchestrator",
    "create_app",
]


def __getattr__(name: str):
    """Lazy import of the application factory."""
    if name in ("build_orchestrator", "create_app"):
        import importlib

        app_module = importlib.import_module("pagerecorder.service.app")
        return getattr(app_module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
