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

"""Shared pytest fixtures and configuration."""

import pytest

from auditflow.agent.collaborators import InMemoryProjectStore, PinnedDocument
from auditflow.config.settings import Settings, reset_settings


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Isolate tests from environment variables and .env files.

    Prevents tests from picking up real API keys or a local profiles file so
    they stay deterministic and never leak credentials.
    """
    monkeypatch.setenv("AUDITFLOW_SKIP_ENV_FILE", "1")

    api_key_vars = [
        "GOOGLE_API_KEY",
        "DEEPSEEK_API_KEY",
        "AUDITFLOW_GOOGLE_API_KEY",
        "AUDITFLOW_DEEPSEEK_API_KEY",
        "AUDITFLOW_PROFILES_FILE",
        "AUDITFLOW_DEFAULT_PROFILE",
        "AUDITFLOW_OFFER_RETRY_ON_CANCEL",
    ]
    for var in api_key_vars:
        monkeypatch.delenv(var, raising=False)

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    """Settings with defaults only."""
    return Settings()


@pytest.fixture
def store():
    """Project store with one pinned document and a current program."""
    return InMemoryProjectStore(
        documents=[PinnedDocument(name="policy.txt", text="Purchases above 50k need two quotes.")],
        artifacts={"current_program": {"objective": "Procurement", "procedures": []}},
    )


@pytest.fixture
def empty_store():
    return InMemoryProjectStore()
