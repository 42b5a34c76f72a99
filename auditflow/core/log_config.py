# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
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

"""Logging setup for host applications embedding auditflow."""

from __future__ import annotations

import logging
from typing import Optional

from auditflow.config.settings import Settings, get_settings

# Third-party loggers that flood DEBUG output during streaming
NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "urllib3",
    "asyncio",
    "google",
    "google.auth",
    "grpc",
]

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(
    log_level: str = "INFO",
    handler: Optional[logging.Handler] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Configure the ``auditflow`` logger and silence noisy third-party loggers.

    Args:
        log_level: Level name for auditflow loggers (DEBUG, INFO, ...).
            Unknown names fall back to INFO.
        handler: Optional handler to attach. When omitted a stderr
            ``StreamHandler`` is attached once.
        fmt: Format string for the attached handler.

    Returns:
        The configured ``auditflow`` logger.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger("auditflow")
    root.setLevel(level)

    if handler is not None:
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)
    elif not root.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(stream_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    return root


def configure_logging_from_settings(
    settings: Optional[Settings] = None,
    handler: Optional[logging.Handler] = None,
) -> logging.Logger:
    """Apply ``settings.log_level`` (``AUDITFLOW_LOG_LEVEL``) to the auditflow logger.

    Uses the process-wide settings when none are given.
    """
    settings = settings or get_settings()
    return configure_logging(settings.log_level, handler=handler)
