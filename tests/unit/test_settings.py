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

"""Tests for settings, LLM profiles and tunable limits."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from auditflow.config.constants import FunnelLimits
from auditflow.config.settings import (
    LLMProfile,
    ProviderKind,
    Settings,
    get_settings,
    reset_settings,
)
from auditflow.core.errors import ConfigurationError


class TestLLMProfile:
    def test_provider_aliases(self):
        assert LLMProfile(provider="gemini", model="m").provider == ProviderKind.GOOGLE
        assert LLMProfile(provider=" DeepSeek ", model="m").provider == ProviderKind.DEEPSEEK

    def test_unknown_provider_rejected(self):
        with pytest.raises(PydanticValidationError):
            LLMProfile(provider="openai", model="gpt")

    def test_funnel_limits_from_context_window(self):
        limits = LLMProfile(provider="deepseek", model="m", context_window=64_000).funnel_limits()
        assert limits.summarize_threshold == 16_000
        assert limits.hard_threshold == 32_000


class TestSettings:
    def test_defaults(self, settings):
        assert settings.default_profile == "gemini"
        assert settings.structured_output_max_attempts == 2
        assert settings.duplicate_window_seconds == 0.8
        assert settings.distill_keep_recent == 6
        assert settings.offer_retry_on_cancel is False
        assert settings.reasoning_open_tag == "<think>"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("AUDITFLOW_OFFER_RETRY_ON_CANCEL", "true")
        monkeypatch.setenv("AUDITFLOW_STRUCTURED_OUTPUT_MAX_ATTEMPTS", "3")
        settings = Settings()
        assert settings.offer_retry_on_cancel is True
        assert settings.structured_output_max_attempts == 3

    def test_api_key_from_plain_env_var(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-plain")
        assert Settings().deepseek_api_key == "sk-plain"

    def test_empty_marker_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(reasoning_open_tag="")

    def test_builtin_profiles(self, settings):
        profiles = settings.load_profiles()
        assert set(profiles) == {"gemini", "deepseek"}
        assert profiles["deepseek"].context_window == 64_000

    def test_get_profile_fills_credential(self):
        settings = Settings(google_api_key="g-key")
        profile = settings.get_profile()
        assert profile.name == "gemini"
        assert profile.api_key == "g-key"

    def test_unknown_profile(self, settings):
        with pytest.raises(ConfigurationError, match="Unknown LLM profile 'nope'"):
            settings.get_profile("nope")


class TestProfilesFile:
    def test_loads_yaml_profiles(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text(
            "profiles:\n"
            "  local:\n"
            "    provider: deepseek\n"
            "    model: deepseek-chat\n"
            "    api_key: sk-file\n"
            "    context_window: 32000\n",
            encoding="utf-8",
        )
        settings = Settings(profiles_file=path, deepseek_api_key="sk-env")
        profile = settings.get_profile("local")
        assert profile.model == "deepseek-chat"
        assert profile.api_key == "sk-file"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text("profiles: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to read profiles file"):
            Settings(profiles_file=path).load_profiles()

    def test_invalid_profile(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text("profiles:\n  bad:\n    provider: deepseek\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid profile 'bad'"):
            Settings(profiles_file=path).load_profiles()

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = Settings(profiles_file=tmp_path / "absent.yaml")
        assert "gemini" in settings.load_profiles()


class TestCachedSettings:
    def test_get_settings_is_cached_until_reset(self):
        first = get_settings()
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first


class TestFunnelLimits:
    def test_hard_keep_must_allow_a_user_turn(self):
        with pytest.raises(ValueError):
            FunnelLimits(hard_keep_messages=1)

    def test_hard_keep_below_summary_keep(self):
        with pytest.raises(ValueError):
            FunnelLimits(summary_keep_messages=4, hard_keep_messages=4)

    def test_thresholds_ordered(self):
        with pytest.raises(ValueError):
            FunnelLimits(summarize_threshold=10, hard_threshold=5)
