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

"""LLM provider adapters."""

from auditflow.providers.base import BaseProvider, EventKind, Message, StreamEvent
from auditflow.providers.deepseek_provider import DeepSeekProvider
from auditflow.providers.google_provider import GoogleProvider
from auditflow.providers.registry import create_provider

__all__ = [
    "BaseProvider",
    "DeepSeekProvider",
    "EventKind",
    "GoogleProvider",
    "Message",
    "StreamEvent",
    "create_provider",
]
