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

"""Configuration management for auditflow.

Settings come from (highest priority first) constructor arguments,
``AUDITFLOW_*`` environment variables, and a ``.env`` file. LLM profiles are
loaded from a YAML file shaped like::

    default_profile: deepseek
    profiles:
      deepseek:
        provider: deepseek
        model: deepseek-reasoner
        api_endpoint: https://api.deepseek.com
        context_window: 64000
      gemini:
        provider: google
        model: gemini-1.5-pro
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from auditflow.config.constants import (
    DECODER_LIMITS,
    DEFAULT_CONTEXT_WINDOW,
    GUARD_LIMITS,
    FunnelLimits,
)
from auditflow.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """Supported LLM vendors."""

    GOOGLE = "google"
    DEEPSEEK = "deepseek"


class LLMProfile(BaseModel):
    """Configuration for one model endpoint."""

    name: str = "default"
    provider: ProviderKind = Field(..., description="Vendor adapter to use")
    model: str = Field(..., description="Model identifier")
    api_key: Optional[str] = Field(None, description="Credential; falls back to Settings")
    api_endpoint: Optional[str] = Field(None, description="Base URL for HTTP providers")
    context_window: int = Field(DEFAULT_CONTEXT_WINDOW, gt=0)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    description: Optional[str] = None

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip().lower()
            if v in ("gemini", "google-genai"):
                return ProviderKind.GOOGLE
        return v

    def funnel_limits(self) -> FunnelLimits:
        return FunnelLimits.for_context_window(self.context_window)


DEFAULT_PROFILES: Dict[str, Dict[str, object]] = {
    "gemini": {"provider": "google", "model": "gemini-1.5-pro"},
    "deepseek": {
        "provider": "deepseek",
        "model": "deepseek-reasoner",
        "api_endpoint": "https://api.deepseek.com",
        "context_window": 64_000,
    },
}


class Settings(BaseSettings):
    """Main library settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUDITFLOW_",
        env_file=".env" if not os.getenv("AUDITFLOW_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Profiles
    default_profile: str = "gemini"
    profiles_file: Optional[Path] = None

    # API Keys
    google_api_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("AUDITFLOW_GOOGLE_API_KEY", "GOOGLE_API_KEY")
    )
    deepseek_api_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("AUDITFLOW_DEEPSEEK_API_KEY", "DEEPSEEK_API_KEY")
    )

    # Transport
    request_timeout: float = Field(120.0, gt=0)

    # Decoding
    structured_output_max_attempts: int = Field(DECODER_LIMITS.max_attempts, ge=1)

    # Conversation guards and prompt context
    duplicate_window_seconds: float = Field(GUARD_LIMITS.duplicate_window_seconds, ge=0)
    volatile_context_messages: int = Field(GUARD_LIMITS.volatile_context_messages, ge=0)
    volatile_context_chars: int = Field(GUARD_LIMITS.volatile_context_chars, gt=0)
    pinned_document_chars: int = Field(GUARD_LIMITS.pinned_document_chars, gt=0)
    distill_keep_recent: int = Field(GUARD_LIMITS.distill_keep_recent, ge=0)
    offer_retry_on_cancel: bool = False

    # Inline reasoning markers
    reasoning_open_tag: str = "<think>"
    reasoning_close_tag: str = "</think>"

    @field_validator("reasoning_open_tag", "reasoning_close_tag")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        if not v:
            raise ValueError("reasoning markers must be non-empty")
        return v

    def load_profiles(self) -> Dict[str, LLMProfile]:
        """Load profiles from ``profiles_file``, or the built-in defaults.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed.
        """
        if self.profiles_file is None or not Path(self.profiles_file).exists():
            return {
                name: LLMProfile(name=name, **config)  # type: ignore[arg-type]
                for name, config in DEFAULT_PROFILES.items()
            }

        try:
            with open(self.profiles_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to read profiles file {self.profiles_file}: {e}",
                config_key="profiles_file",
                cause=e,
            ) from e

        profiles: Dict[str, LLMProfile] = {}
        for name, config in (data.get("profiles") or {}).items():
            try:
                profiles[name] = LLMProfile(name=name, **(config or {}))
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid profile '{name}': {e}", config_key=f"profiles.{name}", cause=e
                ) from e
        logger.debug(f"Loaded {len(profiles)} profile(s) from {self.profiles_file}")
        return profiles

    def get_profile(self, name: Optional[str] = None) -> LLMProfile:
        """Resolve a profile by name and fill in its credential.

        Raises:
            ConfigurationError: If the profile is unknown.
        """
        profile_name = name or self.default_profile
        profiles = self.load_profiles()
        if profile_name not in profiles:
            available = ", ".join(sorted(profiles)) or "none"
            raise ConfigurationError(
                f"Unknown LLM profile '{profile_name}'. Available: {available}",
                config_key="default_profile",
            )
        profile = profiles[profile_name]
        if not profile.api_key:
            profile = profile.model_copy(update={"api_key": self.api_key_for(profile.provider)})
        return profile

    def api_key_for(self, provider: ProviderKind) -> Optional[str]:
        if provider == ProviderKind.GOOGLE:
            return self.google_api_key
        if provider == ProviderKind.DEEPSEEK:
            return self.deepseek_api_key
        return None


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, creating them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
