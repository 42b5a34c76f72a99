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

"""Cooperative cancellation for streaming tasks.

A single ``CancellationToken`` is shared by every call a task makes. Provider
clients race each network read against the token with
``iterate_with_cancellation`` so that a cancel lands promptly even when the
server is silent, and wrap the request itself in ``await_with_cancellation``
so a cancel also lands while the connection is still being set up.

Usage:
    token = CancellationToken()
    async for item in iterate_with_cancellation(source, token):
        ...
    # elsewhere
    token.cancel("user aborted")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from auditflow.core.errors import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Signal cancellation. Calling it twice keeps the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug(f"Cancellation requested: {reason or 'no reason given'}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(reason=self._reason)

    async def wait(self) -> None:
        await self._event.wait()


async def iterate_with_cancellation(
    source: AsyncIterator[T],
    token: Optional[CancellationToken],
) -> AsyncIterator[T]:
    """Yield from ``source`` until it ends or ``token`` is signalled.

    Each ``__anext__`` is raced against the token. When the token wins the
    pending read is cancelled and ``CancellationError`` is raised, which lets
    the caller's ``async with`` blocks close the underlying response.
    """
    iterator = source.__aiter__()
    if token is None:
        async for item in iterator:
            yield item
        return

    waiter = asyncio.ensure_future(token.wait())
    next_item: Optional[asyncio.Future] = None
    try:
        while True:
            token.raise_if_cancelled()
            next_item = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait(
                {next_item, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if next_item not in done:
                next_item.cancel()
                try:
                    await next_item
                except (asyncio.CancelledError, StopAsyncIteration):
                    pass
                raise CancellationError(reason=token.reason)
            try:
                item = next_item.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        waiter.cancel()
        # the consumer itself was cancelled mid-read
        if next_item is not None and not next_item.done():
            next_item.cancel()


async def await_with_cancellation(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
    discard: Optional[Callable[[T], Awaitable[Any]]] = None,
) -> T:
    """Await ``awaitable`` unless ``token`` is signalled first.

    Covers the phase before a stream yields anything: sending the request
    and waiting for response headers. When the token wins the pending call is
    cancelled and ``CancellationError`` is raised. If the call finished anyway,
    its result is handed to ``discard`` so the caller can release it.
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancellationError(reason=token.reason)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        result = await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Call failed after cancellation: {e}")
    else:
        if discard is not None:
            await discard(result)
    raise CancellationError(reason=token.reason)
