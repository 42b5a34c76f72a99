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

"""Provider factory keyed on the profile's ``ProviderKind`` tag."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from auditflow.config.settings import LLMProfile, ProviderKind, Settings
from auditflow.core.errors import ConfigurationError
from auditflow.providers.base import BaseProvider
from auditflow.providers.deepseek_provider import DeepSeekProvider
from auditflow.providers.google_provider import GoogleProvider

logger = logging.getLogger(__name__)


def _create_google(profile: LLMProfile, timeout: float) -> BaseProvider:
    return GoogleProvider(
        api_key=profile.api_key,
        model=profile.model,
        temperature=profile.temperature,
        timeout=timeout,
    )


def _create_deepseek(profile: LLMProfile, timeout: float) -> BaseProvider:
    return DeepSeekProvider(
        api_key=profile.api_key,
        model=profile.model,
        api_endpoint=profile.api_endpoint,
        temperature=profile.temperature,
        timeout=timeout,
    )


PROVIDER_FACTORIES: Dict[ProviderKind, Callable[[LLMProfile, float], BaseProvider]] = {
    ProviderKind.GOOGLE: _create_google,
    ProviderKind.DEEPSEEK: _create_deepseek,
}


def create_provider(
    profile: Optional[LLMProfile],
    settings: Optional[Settings] = None,
) -> BaseProvider:
    """Build the provider for ``profile``.

    Raises:
        ConfigurationError: If no profile is given, the provider kind is not
            registered, or the credential is missing.
    """
    if profile is None:
        raise ConfigurationError("No LLM profile configured", config_key="default_profile")

    factory = PROVIDER_FACTORIES.get(profile.provider)
    if factory is None:
        raise ConfigurationError(
            f"Unsupported provider: {profile.provider}", config_key="provider"
        )

    if not profile.api_key and settings is not None:
        profile = profile.model_copy(update={"api_key": settings.api_key_for(profile.provider)})

    timeout = settings.request_timeout if settings is not None else 120.0
    logger.debug(f"Creating {profile.provider.value} provider for model {profile.model}")
    return factory(profile, timeout)
