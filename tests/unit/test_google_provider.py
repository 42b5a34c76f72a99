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

"""Tests for the Google Gemini provider."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from auditflow.core.cancellation import CancellationToken
from auditflow.core.errors import CancellationError, ConfigurationError, ProviderError
from auditflow.providers.base import EventKind, Message
from auditflow.providers.google_provider import GoogleProvider


class _EmptyChunk:
    """Chunk whose ``text`` accessor raises, as the SDK does for blocked candidates."""

    @property
    def text(self):
        raise ValueError("no text parts")


def _chunks(*texts):
    async def gen():
        for text in texts:
            if isinstance(text, str):
                yield MagicMock(text=text)
            else:
                yield text

    return gen()


@pytest.fixture
def google_provider():
    """Create GoogleProvider instance for testing."""
    with patch("auditflow.providers.google_provider.genai.configure"):
        provider = GoogleProvider(api_key="test-api-key", timeout=30)
    return provider


def _mock_model(stream):
    mock_chat = MagicMock()
    mock_chat.send_message_async = AsyncMock(return_value=stream)
    mock_model = MagicMock()
    mock_model.start_chat = MagicMock(return_value=mock_chat)
    return mock_model, mock_chat


async def _collect(provider, messages, **kwargs):
    return [event async for event in provider.stream(messages, **kwargs)]


def test_initialization():
    with patch("auditflow.providers.google_provider.genai.configure") as mock_configure:
        provider = GoogleProvider(api_key="test-key", timeout=45)

    assert provider.api_key == "test-key"
    assert provider.timeout == 45
    assert provider.name == "google"
    mock_configure.assert_called_once_with(api_key="test-key")


def test_missing_api_key():
    with pytest.raises(ConfigurationError):
        GoogleProvider(api_key=None)


def test_convert_messages_folds_system_and_maps_roles():
    system, contents = GoogleProvider._convert_messages(
        [
            Message(role="system", content="Be brief."),
            Message(role="user", content="Hi"),
            Message(role="assistant", content="Hello"),
            Message(role="user", content="Plan please"),
        ],
        "You are an auditor.",
    )
    assert system == "You are an auditor.\n\nBe brief."
    assert contents == [
        {"role": "user", "parts": ["Hi"]},
        {"role": "model", "parts": ["Hello"]},
        {"role": "user", "parts": ["Plan please"]},
    ]


@pytest.mark.asyncio
async def test_stream_yields_content_events(google_provider):
    mock_model, mock_chat = _mock_model(_chunks("Focus on ", _EmptyChunk(), "procurement"))

    with patch("auditflow.providers.google_provider.genai.GenerativeModel") as mock_gen_model:
        mock_gen_model.return_value = mock_model
        events = await _collect(
            google_provider,
            [Message(role="user", content="Earlier"), Message(role="assistant", content="Ok"),
             Message(role="user", content="Now")],
            system_prompt="sys",
            json_mode=True,
        )

    assert [e.text for e in events] == ["Focus on ", "procurement"]
    assert all(e.kind == EventKind.CONTENT for e in events)

    kwargs = mock_gen_model.call_args.kwargs
    assert kwargs["system_instruction"] == "sys"
    assert kwargs["generation_config"]["response_mime_type"] == "application/json"
    mock_model.start_chat.assert_called_once_with(
        history=[{"role": "user", "parts": ["Earlier"]}, {"role": "model", "parts": ["Ok"]}]
    )
    mock_chat.send_message_async.assert_awaited_once_with("Now", stream=True)


@pytest.mark.asyncio
async def test_stream_without_dialog_yields_nothing(google_provider):
    with patch("auditflow.providers.google_provider.genai.GenerativeModel") as mock_gen_model:
        events = await _collect(google_provider, [Message(role="system", content="only system")])

    assert events == []
    mock_gen_model.assert_not_called()


@pytest.mark.asyncio
async def test_sdk_error_is_wrapped(google_provider):
    mock_model = MagicMock()
    mock_model.start_chat.side_effect = RuntimeError("quota exceeded")

    with patch("auditflow.providers.google_provider.genai.GenerativeModel") as mock_gen_model:
        mock_gen_model.return_value = mock_model
        with pytest.raises(ProviderError, match="Google streaming error: quota exceeded") as exc:
            await _collect(google_provider, [Message(role="user", content="Hi")])

    assert exc.value.provider == "google"
    assert isinstance(exc.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_cancelled_token_raises_before_request(google_provider):
    token = CancellationToken()
    token.cancel("user")

    with patch("auditflow.providers.google_provider.genai.GenerativeModel") as mock_gen_model:
        with pytest.raises(CancellationError):
            await _collect(google_provider, [Message(role="user", content="Hi")], cancellation=token)

    mock_gen_model.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_mid_stream(google_provider):
    token = CancellationToken()

    async def slow_stream():
        yield MagicMock(text="first")
        await asyncio.sleep(60)
        yield MagicMock(text="never")

    mock_model, _ = _mock_model(slow_stream())
    received = []

    with patch("auditflow.providers.google_provider.genai.GenerativeModel") as mock_gen_model:
        mock_gen_model.return_value = mock_model
        with pytest.raises(CancellationError):
            async for event in google_provider.stream(
                [Message(role="user", content="Hi")], cancellation=token
            ):
                received.append(event.text)
                token.cancel("stop")

    assert received == ["first"]


@pytest.mark.asyncio
async def test_cancel_while_request_is_pending(google_provider):
    token = CancellationToken()

    async def slow_send(*args, **kwargs):
        await asyncio.sleep(3)
        return _chunks("late")

    mock_chat = MagicMock()
    mock_chat.send_message_async = slow_send
    mock_model = MagicMock()
    mock_model.start_chat = MagicMock(return_value=mock_chat)

    loop = asyncio.get_running_loop()
    loop.call_later(0.05, token.cancel, "stop")
    started = loop.time()

    with patch("auditflow.providers.google_provider.genai.GenerativeModel") as mock_gen_model:
        mock_gen_model.return_value = mock_model
        with pytest.raises(CancellationError):
            await _collect(google_provider, [Message(role="user", content="Hi")], cancellation=token)

    assert loop.time() - started < 0.5
