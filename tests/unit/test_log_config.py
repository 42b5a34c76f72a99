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

"""Tests for configure_logging."""

import logging

from auditflow.config.settings import Settings
from auditflow.core.log_config import (
    NOISY_LOGGERS,
    configure_logging,
    configure_logging_from_settings,
)


def test_sets_level_and_attaches_handler():
    handler = logging.NullHandler()
    logger = configure_logging("DEBUG", handler=handler)
    assert logger.name == "auditflow"
    assert logger.level == logging.DEBUG
    assert handler in logger.handlers


def test_unknown_level_falls_back_to_info():
    logger = configure_logging("LOUD", handler=logging.NullHandler())
    assert logger.level == logging.INFO


def test_silences_noisy_loggers():
    configure_logging("DEBUG", handler=logging.NullHandler())
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_default_handler_attached_once():
    logger = logging.getLogger("auditflow")
    logger.handlers = []
    configure_logging("INFO")
    configure_logging("INFO")
    assert len(logger.handlers) == 1


def test_level_taken_from_settings():
    settings = Settings(log_level="debug")
    logger = configure_logging_from_settings(settings, handler=logging.NullHandler())
    assert logger.level == logging.DEBUG


def test_level_taken_from_environment(monkeypatch):
    monkeypatch.setenv("AUDITFLOW_LOG_LEVEL", "WARNING")
    logger = configure_logging_from_settings(Settings(), handler=logging.NullHandler())
    assert logger.level == logging.WARNING
