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

"""PageRecorder Server CLI.

Command-line interface for starting the recording service.

Usage:
    pagerecorder-serve [--host HOST] [--port PORT] [--log-level LEVEL]

    Or with Python:
    python -m pagerecorder.cli.serve

Command-line options override the corresponding PAGERECORDER_* environment
variables; everything else is read from the environment by the service.
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

import uvicorn

from pagerecorder import __version__
from pagerecorder.core.config import ReadinessStrategy
from pagerecorder.exceptions import ConfigurationError
from pagerecorder.service.config import ENV_PREFIX, ServiceConfig

APP_MODULE = "pagerecorder.service.app:app"

BANNER = r"""                                                          _
 _ __   __ _  __ _  ___ _ __ ___  ___ ___  _ __ __| | ___ _ __
| '_ \ / _` |/ _` |/ _ \ '__/ _ \/ __/ _ \| '__/ _` |/ _ \ '__|
| |_) | (_| | (_| |  __/ | |  __/ (_| (_) | | | (_| |  __/ |
| .__/ \__,_|\__, |\___|_|  \___|\___\___/|_|  \__,_|\___|_|
|_|          |___/"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagerecorder-serve",
        description="Start the PageRecorder service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pagerecorder-serve                          # Start on port 3000
  pagerecorder-serve --port 8080              # Custom port
  pagerecorder-serve --readiness-strategy liveness

  # Storage is enabled through the environment:
  SUPABASE_URL=https://xyz.supabase.co SUPABASE_SERVICE_KEY=... pagerecorder-serve
        """,
    )
    parser.add_argument(
        "--host",
        default=os.environ.get(f"{ENV_PREFIX}HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get(f"{ENV_PREFIX}PORT", os.environ.get("PORT", "3000"))),
        help="Port to bind to (default: 3000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get(f"{ENV_PREFIX}LOG_LEVEL", "info").lower(),
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--recordings-dir",
        default=None,
        help="Directory for local recordings",
    )
    parser.add_argument(
        "--readiness-strategy",
        default=None,
        choices=[strategy.value for strategy in ReadinessStrategy],
        help="How the page is judged ready for capture (default: playback)",
    )
    parser.add_argument(
        "--preview-url-template",
        default=None,
        help="URL used when a request has no previewUrl, with a {video_id} placeholder",
    )
    parser.add_argument(
        "--graceful-shutdown",
        type=float,
        default=None,
        help="Seconds to wait for a running recording on shutdown (default: 10)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def apply_overrides(args: argparse.Namespace) -> None:
    """Export command-line options so the service reads them from the environment."""
    os.environ[f"{ENV_PREFIX}HOST"] = args.host
    os.environ[f"{ENV_PREFIX}PORT"] = str(args.port)
    os.environ[f"{ENV_PREFIX}LOG_LEVEL"] = args.log_level.upper()
    if args.recordings_dir:
        os.environ[f"{ENV_PREFIX}RECORDINGS_DIR"] = args.recordings_dir
    if args.readiness_strategy:
        os.environ[f"{ENV_PREFIX}READINESS_STRATEGY"] = args.readiness_strategy
    if args.preview_url_template:
        os.environ[f"{ENV_PREFIX}PREVIEW_URL_TEMPLATE"] = args.preview_url_template
    if args.graceful_shutdown is not None:
        os.environ[f"{ENV_PREFIX}GRACEFUL_SHUTDOWN"] = str(args.graceful_shutdown)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the serve command."""
    args = build_parser().parse_args(argv)
    apply_overrides(args)

    try:
        config = ServiceConfig.from_env()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    errors = config.validate()
    if errors:
        print("Error: invalid configuration:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        sys.exit(1)

    print()
    print(BANNER)
    print()
    print("  Web Page Video Recording")
    print()
    print(f"  Version:   {__version__}")
    print(f"  Host:      {config.host}")
    print(f"  Port:      {config.port}")
    print(f"  Log Level: {args.log_level}")
    print(f"  Display:   {config.display.display} ({config.display.video_size})")
    print(f"  Readiness: {config.render_host.readiness_strategy.value}")
    print(f"  Storage:   {'enabled' if config.storage.enabled else 'disabled (local files only)'}")
    print()
    print(f"  API Docs:  http://{config.host}:{config.port}/docs")
    print(f"  Health:    http://{config.host}:{config.port}/health")
    print()

    # A single worker: the admission gate is per process.
    uvicorn.run(
        APP_MODULE,
        host=config.host,
        port=config.port,
        workers=1,
        log_level=args.log_level,
        timeout_graceful_shutdown=config.graceful_shutdown_seconds,
    )


if __name__ == "__main__":
    main()
